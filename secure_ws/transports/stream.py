#!/usr/bin/env python3
# secure_ws/transports/stream.py
"""
Duplex Stream

A pair of async operations, read-next-chunk and write-chunk, over a single
underlying connection. The WebSocket runtime only ever talks to a Stream, so
any byte transport can be plugged in with make_stream().
"""
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger('duplex-stream')

Receive = Callable[[], Awaitable[Optional[bytes]]]
Send = Callable[[Optional[bytes]], Awaitable[None]]


class Stream:
    """
    Duplex byte stream built from a receive and a send callable.

    receive() returns the next chunk or None at end-of-stream.
    send() takes a chunk, or None as the close signal.
    """

    def __init__(self, receive: Receive, send: Send):
        self._receive = receive
        self._send = send
        self.eof = False
        self.closed = False

    async def read(self) -> Optional[bytes]:
        """
        Read the next chunk.

        Returns:
            A chunk of bytes, or None once the end of the stream was reached
        """
        if self.eof or self.closed:
            return None
        chunk = await self._receive()
        if chunk is None:
            logger.debug("End of stream reached")
            self.eof = True
        return chunk

    async def write(self, data: Optional[bytes]) -> None:
        """
        Write a chunk, or pass the close signal through with None.

        Raises:
            BrokenPipeError: If a chunk is written after close()
        """
        if data is not None and self.closed:
            raise BrokenPipeError("write to a closed stream")
        await self._send(data)

    async def close(self) -> None:
        """Send the close signal and stop reading. Safe to call twice."""
        if self.closed:
            return
        self.closed = True
        await self._send(None)


def make_stream(receive: Receive, send: Send) -> Stream:
    """Build a Stream from a receive and a send callable."""
    return Stream(receive, send)
