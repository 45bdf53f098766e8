"""
WebSocket Package

Client runtime driving the 'websockets' Sans-I/O protocol over a Duplex
Stream, and the options it accepts.
"""

from secure_ws.websocket.client_runtime import WebSocketConnection, run_client_with_stream
from secure_ws.websocket.options import ConnectionOptions, Headers, default_connection_options

__all__ = [
    'WebSocketConnection',
    'run_client_with_stream',
    'ConnectionOptions',
    'Headers',
    'default_connection_options',
]
