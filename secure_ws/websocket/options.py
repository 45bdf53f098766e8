#!/usr/bin/env python3
# secure_ws/websocket/options.py
"""
Connection options for the WebSocket client runtime.
"""
from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple

# Extra handshake headers, sent in this order
Headers = Sequence[Tuple[str, str]]

COMPRESSION_DEFLATE = "deflate"
SUPPORTED_COMPRESSION = [None, COMPRESSION_DEFLATE]


@dataclass(frozen=True)
class ConnectionOptions:
    """
    Settings for a single WebSocket connection.

    Attributes:
        compression: None, or "deflate" to negotiate permessage-deflate
        max_size: Largest incoming message in bytes, None for no limit
        origin: Value of the Origin header, if any
        subprotocols: Subprotocols to offer, in order of preference
        user_agent: Value of the User-Agent header, None to omit it
        open_timeout: Seconds to wait for the handshake response, None to wait forever
        close_timeout: Seconds to wait for the close handshake
        on_pong: Called each time a pong frame is received
    """
    compression: Optional[str] = None
    max_size: Optional[int] = 2 ** 20
    origin: Optional[str] = None
    subprotocols: Optional[Sequence[str]] = None
    user_agent: Optional[str] = None
    open_timeout: Optional[float] = None
    close_timeout: Optional[float] = 10.0
    on_pong: Optional[Callable[[], None]] = None


def default_connection_options() -> ConnectionOptions:
    return ConnectionOptions()


