"""
Transport Package

TLS connections and the Duplex Stream the WebSocket runtime reads and
writes through.
"""

from secure_ws.transports.stream import Stream, make_stream
from secure_ws.transports.tls_connection import (
    Connection,
    ConnectionContext,
    ConnectionParams,
    TLSSettings,
    connect_to,
    init_connection_context,
)

__all__ = [
    'Stream',
    'make_stream',
    'Connection',
    'ConnectionContext',
    'ConnectionParams',
    'TLSSettings',
    'connect_to',
    'init_connection_context',
]
