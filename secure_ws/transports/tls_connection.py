#!/usr/bin/env python3
# secure_ws/transports/tls_connection.py
"""
TLS Connection Provider

Opens byte-oriented, full-duplex connections over TCP and TLS using asyncio
streams and the standard ssl module. Peer hostnames are checked with
service_identity when the handshake itself cannot do it. A ConnectionContext stands for the TLS
backend: it owns the SSL contexts (and the system trust store they load) and
is passed explicitly to connect_to().
"""
import asyncio
import ipaddress
import logging
import ssl
from dataclasses import dataclass
from typing import Dict, Optional

from cryptography import x509
from service_identity import CertificateError, VerificationError
from service_identity.cryptography import verify_certificate_hostname, verify_certificate_ip_address

logger = logging.getLogger('tls-connection')

# Size of a single chunk handed out by Connection.get_chunk()
CHUNK_SIZE = 65536

# Upper bound on waiting for the TLS shutdown when closing
CLOSE_WAIT_TIMEOUT = 3.0


@dataclass(frozen=True)
class TLSSettings:
    """
    Security Policy applied to a TLS connection.

    Attributes:
        disable_certificate_validation: Skip chain and hostname verification
        disable_session: Turn off TLS session tickets
        use_server_name: Send the server name indication (SNI) extension
    """
    disable_certificate_validation: bool = False
    disable_session: bool = False
    use_server_name: bool = False


@dataclass(frozen=True)
class ConnectionParams:
    """Where to connect and how. use_secure=None means plain TCP."""
    hostname: str
    port: int
    use_secure: Optional[TLSSettings] = None


class ConnectionContext:
    """
    TLS backend resource shared by the connections opened through it.

    One ssl.SSLContext is built lazily for each distinct TLSSettings value.
    With cafile set, that CA bundle is trusted instead of the system store.
    """

    def __init__(self, cafile: Optional[str] = None):
        self.cafile = cafile
        self._ssl_contexts: Dict[TLSSettings, ssl.SSLContext] = {}

    def ssl_context_for(self, settings: TLSSettings) -> ssl.SSLContext:
        """
        Return the SSL context implementing the given settings.

        Args:
            settings: The Security Policy to apply

        Returns:
            A client-side ssl.SSLContext
        """
        context = self._ssl_contexts.get(settings)
        if context is None:
            context = self._create_ssl_context(settings)
            self._ssl_contexts[settings] = context
        return context

    def _create_ssl_context(self, settings: TLSSettings) -> ssl.SSLContext:
        context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH, cafile=self.cafile)

        if settings.disable_certificate_validation:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        elif not settings.use_server_name:
            # Hostname matching needs server_hostname, which also turns on SNI.
            # connect_to() checks the hostname itself after the handshake.
            context.check_hostname = False
            context.verify_mode = ssl.CERT_REQUIRED

        if settings.disable_session:
            context.options |= ssl.OP_NO_TICKET

        logger.debug(f"Created SSL context for {settings}")
        return context


def init_connection_context(cafile: Optional[str] = None) -> ConnectionContext:
    """Create a fresh TLS backend context."""
    return ConnectionContext(cafile)


def _is_ip_address(hostname: str) -> bool:
    try:
        ipaddress.ip_address(hostname)
    except ValueError:
        return False
    return True


def verify_peer_hostname(der_cert: Optional[bytes], hostname: str) -> None:
    """
    Check that a validated peer certificate was issued for hostname.

    Args:
        der_cert: Certificate as returned by SSLObject.getpeercert(binary_form=True)
        hostname: The name or IP address that was connected to

    Raises:
        ssl.SSLCertVerificationError: If the certificate does not match
    """
    if not der_cert:
        raise ssl.SSLCertVerificationError("no peer certificate available")

    try:
        certificate = x509.load_der_x509_certificate(der_cert)
        if _is_ip_address(hostname):
            verify_certificate_ip_address(certificate, hostname)
        else:
            verify_certificate_hostname(certificate, hostname)
    except (VerificationError, CertificateError, ValueError) as e:
        raise ssl.SSLCertVerificationError(
            f"hostname {hostname!r} doesn't match the peer certificate: {e}"
        ) from e


class Connection:
    """
    An established connection exposing chunked reads and writes.
    """

    def __init__(self, params: ConnectionParams,
                 reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.params = params
        self.reader = reader
        self.writer = writer
        self.closed = False

    @property
    def addr(self):
        """Peer socket address."""
        return self.writer.get_extra_info('peername')

    async def get_chunk(self) -> bytes:
        """
        Read the next chunk of data.

        Returns:
            Up to CHUNK_SIZE bytes, or b"" once the peer has closed
        """
        return await self.reader.read(CHUNK_SIZE)

    async def put(self, data: bytes) -> None:
        """
        Write data and wait until the transport buffer has drained.

        Args:
            data: Bytes to send
        """
        self.writer.write(data)
        await self.writer.drain()

    async def close(self) -> None:
        """
        Close the connection. Errors raised while shutting TLS down are
        logged rather than propagated.
        """
        if self.closed:
            return
        self.closed = True
        self.writer.close()
        try:
            await asyncio.wait_for(self.writer.wait_closed(), timeout=CLOSE_WAIT_TIMEOUT)
        except (OSError, ssl.SSLError, asyncio.TimeoutError) as e:
            logger.debug(f"Error while closing connection to {self.params.hostname}: {e}")
        logger.debug(f"Connection to {self.params.hostname} ({self.addr}) closed")


async def connect_to(context: ConnectionContext, params: ConnectionParams) -> Connection:
    """
    Open a connection described by params.

    Args:
        context: TLS backend context
        params: Target and Security Policy

    Returns:
        The established Connection

    Raises:
        OSError: On name resolution or TCP failures
        ssl.SSLError: On TLS handshake or certificate verification failures
    """
    settings = params.use_secure
    ssl_context = None
    server_hostname = None
    verify_hostname = False

    if settings is not None:
        ssl_context = context.ssl_context_for(settings)
        if settings.use_server_name:
            server_hostname = params.hostname
        else:
            # An empty server_hostname makes asyncio skip SNI
            server_hostname = ''
            verify_hostname = not settings.disable_certificate_validation

    logger.debug(f"Connecting to {params.hostname}:{params.port} (tls={settings is not None})")
    reader, writer = await asyncio.open_connection(
        params.hostname,
        params.port,
        ssl=ssl_context,
        server_hostname=server_hostname,
    )
    connection = Connection(params, reader, writer)

    if verify_hostname:
        try:
            ssl_object = writer.get_extra_info('ssl_object')
            der_cert = ssl_object.getpeercert(binary_form=True) if ssl_object is not None else None
            verify_peer_hostname(der_cert, params.hostname)
        except ssl.SSLCertVerificationError:
            await connection.close()
            raise

    logger.info(f"Connected to {params.hostname}:{params.port} ({connection.addr})")
    return connection
