#!/usr/bin/env python3
# secure_ws/client_launcher.py
"""
Interactive Secure Client

Connects to a WSS endpoint, prints every message the server sends, and sends
each line typed on standard input. An empty line closes the connection.

Usage:
    secure-ws echo.websocket.org
    secure-ws --config client.yaml -H "Authorization: Bearer ..."
"""

import asyncio
import argparse
import logging
import sys
from typing import AsyncIterator, Callable, List, Optional, Tuple

from websockets.exceptions import ConnectionClosedError

from secure_ws.client import run_secure_client_with
from secure_ws.client_config import ClientConfig, DEFAULT_PATH, DEFAULT_PORT
from secure_ws.websocket.client_runtime import WebSocketConnection

# How long to keep printing messages that arrived before the close
PRINTER_DRAIN_TIMEOUT = 1.0

logger = logging.getLogger('client-launcher')


def setup_logging(verbosity: int = 1) -> None:
    """
    Configure logging based on verbosity level.

    Logging levels:
    - 0: WARNING
    - 1: INFO
    - 2: DEBUG
    """
    log_levels = {
        0: logging.WARNING,
        1: logging.INFO,
        2: logging.DEBUG
    }
    level = log_levels.get(verbosity, logging.DEBUG)
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def parse_header(text: str) -> Tuple[str, str]:
    """
    Parse a 'Name: value' command-line header.

    Raises:
        ValueError: If there is no colon or the name is empty
    """
    name, sep, value = text.partition(':')
    name = name.strip()
    if not sep or not name:
        raise ValueError(f"Invalid header {text!r}. Expected 'Name: value'")
    return name, value.strip()


async def _stdin_lines() -> AsyncIterator[str]:
    loop = asyncio.get_running_loop()
    while True:
        line = await loop.run_in_executor(None, sys.stdin.readline)
        if not line:
            return
        yield line.rstrip('\r\n')


async def _print_messages(connection: WebSocketConnection, output: Callable[[str], None]) -> None:
    try:
        async for message in connection:
            output(message if isinstance(message, str) else repr(message))
    except ConnectionClosedError as e:
        logger.warning(f"Connection closed abnormally: {e}")


async def interactive_session(
    connection: WebSocketConnection,
    lines: Optional[AsyncIterator[str]] = None,
    output: Callable[[str], None] = print,
) -> None:
    """
    Print incoming messages while sending lines until an empty one.

    Args:
        connection: The open WebSocket connection
        lines: Lines to send; standard input when omitted
        output: Where to print messages
    """
    output("Connected!")
    printer = asyncio.create_task(_print_messages(connection, output))
    try:
        async for line in (lines if lines is not None else _stdin_lines()):
            if not line:
                break
            await connection.send(line)
        await connection.close(reason="Bye!")
        await asyncio.wait({printer}, timeout=PRINTER_DRAIN_TIMEOUT)
    finally:
        printer.cancel()
        await asyncio.gather(printer, return_exceptions=True)


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the interactive client.

    Returns:
        Exit code (0 for success, 1 for error)
    """
    parser = argparse.ArgumentParser(
        description='Interactive secure WebSocket client',
        epilog='Type lines to send them; an empty line closes the connection'
    )

    target_group = parser.add_mutually_exclusive_group(required=True)
    target_group.add_argument(
        'host',
        type=str,
        nargs='?',
        default=None,
        help='Server host name (e.g., "echo.websocket.org")'
    )
    target_group.add_argument(
        '--config', '-c',
        type=str,
        help='Path to YAML configuration file'
    )

    parser.add_argument(
        '--port',
        type=int,
        default=DEFAULT_PORT,
        help=f'Server port (default: {DEFAULT_PORT})'
    )
    parser.add_argument(
        '--path',
        type=str,
        default=DEFAULT_PATH,
        help=f'Request path (default: {DEFAULT_PATH})'
    )
    parser.add_argument(
        '-H', '--header',
        action='append',
        default=[],
        help='Extra handshake header as "Name: value" (repeatable)'
    )
    parser.add_argument(
        '-v', '--verbose',
        action='count',
        default=1,
        help='Increase verbosity (can be used multiple times)'
    )

    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        if args.config:
            config = ClientConfig.load_config(args.config)
            logger.info(f"Loaded configuration from {args.config}")

            # Command-line args take precedence over config file
            if args.port != DEFAULT_PORT:
                config['port'] = args.port
            if args.path != DEFAULT_PATH:
                config['path'] = args.path
        else:
            config = {
                'host': args.host,
                'port': args.port,
                'path': args.path
            }

        ClientConfig.validate_config(config)
        options = ClientConfig.options_from_config(config)
        headers = ClientConfig.headers_from_config(config)
        headers.extend(parse_header(h) for h in args.header)

        logger.info(f"Connecting to wss://{config['host']}:{config['port']}{config['path']}")
        asyncio.run(run_secure_client_with(
            config['host'],
            config['port'],
            config['path'],
            options,
            headers,
            interactive_session,
        ))

    except KeyboardInterrupt:
        logger.info("Client stopped by user.")
        return 0

    except Exception as e:
        logger.error(f"Error running client: {e}")
        if args.verbose >= 2:
            import traceback
            traceback.print_exc()
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
