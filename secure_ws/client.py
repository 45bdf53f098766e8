#!/usr/bin/env python3
# secure_ws/client.py
"""
Secure WebSocket Client

Entry points for running a WebSocket client over TLS (WSS). A TLS connection
is opened with a fixed Security Policy, wrapped in a Duplex Stream, and handed
to the WebSocket client runtime, which performs the handshake and then runs
the application callback.

Example:

    async def app(connection):
        await connection.send("Hello")
        return await connection.recv()

    reply = asyncio.run(run_secure_client("echo.websocket.org", 443, "/", app))

Certificate validation cannot be turned off through these functions. A client
that needs a different Security Policy can compose the same pieces itself:

    context = init_connection_context()
    params = ConnectionParams(
        hostname=host,
        port=port,
        # This is the important setting.
        use_secure=TLSSettings(disable_certificate_validation=True),
    )
    connection = await connect_to(context, params)
    try:
        stream = make_stream(reader(connection), writer(connection))
        await run_client_with_stream(stream, host, path, options, headers, app)
    finally:
        await connection.close()
"""
import logging
from typing import Awaitable, Callable, Optional, TypeVar

from secure_ws.transports.stream import Receive, Send, make_stream
from secure_ws.transports.tls_connection import (
    Connection, ConnectionParams, TLSSettings, connect_to, init_connection_context
)
from secure_ws.websocket.client_runtime import WebSocketConnection, run_client_with_stream
from secure_ws.websocket.options import ConnectionOptions, Headers, default_connection_options

logger = logging.getLogger('secure-client')

T = TypeVar('T')
ClientApp = Callable[[WebSocketConnection], Awaitable[T]]


async def run_secure_client(host: str, port: int, path: str, app: ClientApp) -> T:
    """
    Run a WebSocket client over TLS with default options and no extra headers.

    Args:
        host: Server host name
        port: Server port
        path: Request path
        app: Application callback, called with the open connection

    Returns:
        The result of app
    """
    return await run_secure_client_with(host, port, path, default_connection_options(), [], app)


async def run_secure_client_with(
    host: str,
    port: int,
    path: str,
    options: ConnectionOptions,
    headers: Headers,
    app: ClientApp,
) -> T:
    """
    Run a WebSocket client over TLS.

    Certificate validation is always on. Connection, TLS, handshake and
    application errors propagate unchanged.

    Args:
        host: Server host name
        port: Server port
        path: Request path
        options: WebSocket connection options, passed through untouched
        headers: Extra handshake headers, passed through untouched
        app: Application callback, called with the open connection

    Returns:
        The result of app
    """
    logger.debug(f"Opening wss://{host}:{port}{path}")
    context = init_connection_context()
    connection = await connect_to(context, connection_params(host, port))
    try:
        stream = make_stream(reader(connection), writer(connection))
        return await run_client_with_stream(stream, host, path, options, headers, app)
    finally:
        await connection.close()


def tls_settings() -> TLSSettings:
    """Security Policy used by the entry points."""
    return TLSSettings(
        disable_certificate_validation=False,
        disable_session=False,
        use_server_name=False,
    )


def connection_params(host: str, port: int) -> ConnectionParams:
    return ConnectionParams(
        hostname=host,
        port=port,
        use_secure=tls_settings(),
    )


def reader(connection: Connection) -> Receive:
    """Chunked reads from connection; an empty read means end-of-stream."""
    async def receive() -> Optional[bytes]:
        chunk = await connection.get_chunk()
        return chunk if chunk else None
    return receive


def writer(connection: Connection) -> Send:
    """Chunked writes to connection; the close signal (None or b"") is ignored."""
    async def send(data: Optional[bytes]) -> None:
        if not data:
            return
        await connection.put(data)
    return send
