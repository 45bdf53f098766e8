"""
secure_ws

Run WebSocket clients over TLS (WSS) with certificate validation always on.
"""

from secure_ws.client import (
    connection_params,
    reader,
    run_secure_client,
    run_secure_client_with,
    tls_settings,
    writer,
)
from secure_ws.transports.stream import Stream, make_stream
from secure_ws.transports.tls_connection import (
    Connection,
    ConnectionContext,
    ConnectionParams,
    TLSSettings,
    connect_to,
    init_connection_context,
)
from secure_ws.websocket.client_runtime import WebSocketConnection, run_client_with_stream
from secure_ws.websocket.options import ConnectionOptions, default_connection_options

__all__ = [
    'run_secure_client',
    'run_secure_client_with',
    'tls_settings',
    'connection_params',
    'reader',
    'writer',
    'Stream',
    'make_stream',
    'Connection',
    'ConnectionContext',
    'ConnectionParams',
    'TLSSettings',
    'connect_to',
    'init_connection_context',
    'WebSocketConnection',
    'run_client_with_stream',
    'ConnectionOptions',
    'default_connection_options',
]
