#!/usr/bin/env python3
# secure_ws/websocket/client_runtime.py
"""
WebSocket Client Runtime

Runs a WebSocket client over any Duplex Stream. The protocol itself (opening
handshake, framing, masking, ping/pong replies, close handshake) is handled by
the Sans-I/O ClientProtocol from the 'websockets' package; this module moves
bytes between the stream and the protocol and hands the application a
connection object to send and receive messages with.
"""
import asyncio
import logging
import random
import struct
from typing import Awaitable, Callable, Dict, List, Optional, TypeVar, Union

from websockets.client import ClientProtocol
from websockets.exceptions import ConnectionClosed, ConnectionClosedError, ConnectionClosedOK
from websockets.extensions.permessage_deflate import enable_client_permessage_deflate
from websockets.frames import Frame, Opcode
from websockets.http11 import Request, Response
from websockets.protocol import State
from websockets.uri import WebSocketURI

from secure_ws.transports.stream import Stream
from secure_ws.websocket.options import COMPRESSION_DEFLATE, ConnectionOptions, Headers

logger = logging.getLogger('ws-runtime')

WSS_DEFAULT_PORT = 443

CLOSE_NORMAL = 1000
CLOSE_INVALID_DATA = 1007

# Queued after the last message once the connection is gone
_CLOSED = object()

T = TypeVar('T')
Message = Union[str, bytes]


class WebSocketConnection:
    """
    An open WebSocket connection, as seen by the application callback.

    Messages are received by a background task that reads the stream for the
    whole lifetime of the connection. Everything the protocol wants to send
    is written through a single lock so frames leave in the order they were
    produced.
    """

    def __init__(self, stream: Stream, protocol: ClientProtocol, options: ConnectionOptions):
        self.stream = stream
        self.protocol = protocol
        self.options = options
        self.request: Optional[Request] = None
        self.response: Optional[Response] = None

        self._loop = asyncio.get_running_loop()
        self._handshake_done = self._loop.create_future()
        self._closed = asyncio.Event()
        self._messages: asyncio.Queue = asyncio.Queue()
        self._write_lock = asyncio.Lock()
        self._fragments: List[bytes] = []
        self._fragment_opcode: Optional[Opcode] = None
        self._pong_waiters: Dict[bytes, asyncio.Future] = {}
        self._read_exc: Optional[Exception] = None
        self._reader_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> State:
        return self.protocol.state

    @property
    def read_exc(self) -> Optional[Exception]:
        """Error that stopped the background reader, if any."""
        return self._read_exc

    @property
    def subprotocol(self) -> Optional[str]:
        """Subprotocol selected by the server, if any."""
        if self.response is None:
            return None
        return self.response.headers.get('Sec-WebSocket-Protocol')

    async def handshake(self, headers: Headers) -> None:
        """
        Send the opening handshake and wait for the server's response.

        Args:
            headers: Extra request headers, appended in order

        Raises:
            websockets.exceptions.InvalidHandshake: If the server refused the upgrade
            asyncio.TimeoutError: If open_timeout elapsed first
        """
        request = self.protocol.connect()
        if headers:
            request.headers.update(headers)
        if self.options.user_agent is not None and 'User-Agent' not in request.headers:
            request.headers['User-Agent'] = self.options.user_agent
        self.request = request

        self.protocol.send_request(request)
        await self._send_pending()
        self._reader_task = asyncio.create_task(self._read_stream())

        await asyncio.wait_for(asyncio.shield(self._handshake_done), self.options.open_timeout)

        if self.protocol.handshake_exc is not None:
            raise self.protocol.handshake_exc
        if self._read_exc is not None:
            raise self._read_exc
        logger.info(f"WebSocket connection open: {request.path}")

    async def recv(self) -> Message:
        """
        Receive the next message.

        Returns:
            str for a text message, bytes for a binary message

        Raises:
            ConnectionClosedOK: After a normal closure
            ConnectionClosedError: After an abnormal closure
        """
        message = await self._messages.get()
        if message is _CLOSED:
            # Leave the marker in place for later callers
            self._messages.put_nowait(_CLOSED)
            raise self._connection_closed()
        return message

    async def send(self, message: Union[str, bytes, bytearray, memoryview]) -> None:
        """
        Send a message: str as a text frame, bytes-like as a binary frame.
        """
        if isinstance(message, str):
            data = message.encode('utf-8')
            opcode = Opcode.TEXT
        elif isinstance(message, (bytes, bytearray, memoryview)):
            data = bytes(message)
            opcode = Opcode.BINARY
        else:
            raise TypeError(f"message must be str or bytes-like, not {type(message).__name__}")

        if not self._is_open():
            raise self._connection_closed()
        if opcode is Opcode.TEXT:
            self.protocol.send_text(data)
        else:
            self.protocol.send_binary(data)
        await self._send_pending()

    async def ping(self, data: Optional[bytes] = None) -> asyncio.Future:
        """
        Send a ping.

        Returns:
            A future that completes when the matching pong arrives
        """
        if not self._is_open():
            raise self._connection_closed()
        if data is None:
            data = struct.pack('!I', random.getrandbits(32))
            while data in self._pong_waiters:
                data = struct.pack('!I', random.getrandbits(32))
        elif data in self._pong_waiters:
            raise ValueError("already waiting for a pong with the same data")

        waiter = self._loop.create_future()
        self._pong_waiters[data] = waiter
        self.protocol.send_ping(data)
        await self._send_pending()
        return waiter

    async def close(self, code: int = CLOSE_NORMAL, reason: str = '') -> None:
        """
        Run the closing handshake, waiting at most close_timeout for the
        server to finish it.
        """
        if self._is_open():
            logger.debug(f"Closing WebSocket connection ({code} {reason})")
            self.protocol.send_close(code, reason)
            await self._send_pending()
        try:
            await asyncio.wait_for(self._closed.wait(), self.options.close_timeout)
        except asyncio.TimeoutError:
            logger.warning("Timed out waiting for the closing handshake")

    async def shutdown(self) -> None:
        """Stop the reader task and close the stream."""
        if self._reader_task is not None and not self._reader_task.done():
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
        await self.stream.close()

    async def __aiter__(self):
        try:
            while True:
                yield await self.recv()
        except ConnectionClosedOK:
            return

    async def _read_stream(self) -> None:
        try:
            while True:
                chunk = await self.stream.read()
                if chunk is None:
                    self.protocol.receive_eof()
                else:
                    self.protocol.receive_data(chunk)
                self._process_events()
                await self._send_pending()
                if chunk is None:
                    break
        except Exception as e:
            logger.warning(f"Reading from the stream failed: {e!r}")
            self._read_exc = e
        finally:
            self._connection_lost()

    def _process_events(self) -> None:
        for event in self.protocol.events_received():
            if isinstance(event, Response):
                self.response = event
                if not self._handshake_done.done():
                    self._handshake_done.set_result(None)
            else:
                self._process_frame(event)
        # A malformed response produces no event
        if self.protocol.handshake_exc is not None and not self._handshake_done.done():
            self._handshake_done.set_result(None)

    def _process_frame(self, frame: Frame) -> None:
        if frame.opcode is Opcode.TEXT or frame.opcode is Opcode.BINARY:
            self._fragment_opcode = frame.opcode
            self._fragments = [bytes(frame.data)]
        elif frame.opcode is Opcode.CONT:
            self._fragments.append(bytes(frame.data))
        elif frame.opcode is Opcode.PONG:
            waiter = self._pong_waiters.pop(bytes(frame.data), None)
            if waiter is not None and not waiter.done():
                waiter.set_result(None)
            if self.options.on_pong is not None:
                self._notify_pong()
            return
        else:
            # ping and close frames are answered by the protocol
            return

        if not frame.fin:
            return

        data = b''.join(self._fragments)
        opcode = self._fragment_opcode
        self._fragments = []
        self._fragment_opcode = None

        if opcode is Opcode.TEXT:
            try:
                message = data.decode('utf-8')
            except UnicodeDecodeError as e:
                logger.warning(f"Received invalid UTF-8 in a text message: {e}")
                self.protocol.fail(CLOSE_INVALID_DATA, "invalid UTF-8")
                return
        else:
            message = data
        self._messages.put_nowait(message)

    def _notify_pong(self) -> None:
        try:
            self.options.on_pong()
        except Exception as e:
            logger.warning(f"Error in on_pong callback: {e}")

    def _is_open(self) -> bool:
        return self.protocol.state is State.OPEN and self._read_exc is None

    async def _send_pending(self) -> None:
        async with self._write_lock:
            for data in self.protocol.data_to_send():
                # An empty write is the protocol's end-of-stream signal
                await self.stream.write(data if data else None)

    def _connection_lost(self) -> None:
        self._closed.set()
        if not self._handshake_done.done():
            self._handshake_done.set_result(None)
        for waiter in self._pong_waiters.values():
            waiter.cancel()
        self._pong_waiters.clear()
        self._messages.put_nowait(_CLOSED)
        logger.debug(f"WebSocket connection lost (state={self.protocol.state.name})")

    def _connection_closed(self) -> ConnectionClosed:
        protocol = self.protocol
        if protocol.state is State.CLOSED:
            exc = protocol.close_exc
        else:
            exc = ConnectionClosedError(
                protocol.close_rcvd, protocol.close_sent, protocol.close_rcvd_then_sent
            )
        if self._read_exc is not None:
            exc.__cause__ = self._read_exc
        return exc


def wss_uri(host: str, path: str) -> WebSocketURI:
    """
    Target of the handshake request. The port is fixed to the WSS default,
    so the Host header carries the bare host name.
    """
    return WebSocketURI(
        secure=True,
        host=host,
        port=WSS_DEFAULT_PORT,
        path=path or '/',
        query='',
    )


def _extensions(options: ConnectionOptions):
    if options.compression == COMPRESSION_DEFLATE:
        return enable_client_permessage_deflate(None)
    if options.compression is not None:
        raise ValueError(f"Unsupported compression: {options.compression}")
    return None


async def run_client_with_stream(
    stream: Stream,
    host: str,
    path: str,
    options: ConnectionOptions,
    headers: Headers,
    app: Callable[[WebSocketConnection], Awaitable[T]],
) -> T:
    """
    Run a WebSocket client application over an existing stream.

    Performs the opening handshake, calls app with the open connection, and
    closes the connection once app returns.

    Args:
        stream: Duplex Stream to the server
        host: Server host name, sent in the Host header
        path: Request path
        options: Connection options
        headers: Extra handshake headers
        app: Application callback

    Returns:
        Whatever app returns

    Raises:
        Anything raised by the handshake, the stream, or app, unchanged
    """
    protocol = ClientProtocol(
        wss_uri(host, path),
        origin=options.origin,
        extensions=_extensions(options),
        subprotocols=options.subprotocols,
        max_size=options.max_size,
    )
    connection = WebSocketConnection(stream, protocol, options)
    try:
        await connection.handshake(headers)
        result = await app(connection)
        await connection.close()
        if connection.read_exc is not None:
            raise connection.read_exc
        return result
    finally:
        await connection.shutdown()
