"""Shared fixtures: an in-memory WebSocket server and a throwaway certificate authority."""

from __future__ import annotations

import asyncio
import datetime
import ipaddress
import ssl
from typing import List, Optional

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID
from websockets.frames import Frame, Opcode
from websockets.http11 import Request
from websockets.protocol import State
from websockets.server import ServerProtocol

from secure_ws.transports.stream import Stream, make_stream


class LoopbackServer:
    """Server side of an in-memory WebSocket connection.

    Bytes written by the client are fed straight into a ServerProtocol; bytes
    the server produces are queued for the client to read. The server's
    end-of-stream signal becomes None on the client side.
    """

    def __init__(self, reject_status=None, echo: bool = True, subprotocols=None):
        self.protocol = ServerProtocol(subprotocols=subprotocols)
        self.reject_status = reject_status
        self.echo = echo
        self.request: Optional[Request] = None
        self.received: List = []
        self.written: List[bytes] = []
        self.close_signals = 0
        self._to_client: asyncio.Queue = asyncio.Queue()

    def stream(self) -> Stream:
        return make_stream(self.client_receive, self.client_send)

    async def client_receive(self) -> Optional[bytes]:
        item = await self._to_client.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def client_send(self, data: Optional[bytes]) -> None:
        if data is None:
            self.close_signals += 1
            return
        self.written.append(data)
        self.protocol.receive_data(data)
        for event in self.protocol.events_received():
            if isinstance(event, Request):
                self.request = event
                if self.reject_status is not None:
                    response = self.protocol.reject(self.reject_status, "Not Found\n")
                else:
                    response = self.protocol.accept(event)
                self.protocol.send_response(response)
            elif isinstance(event, Frame):
                self._handle_frame(event)
        self.flush()

    def _handle_frame(self, frame: Frame) -> None:
        if frame.opcode is Opcode.TEXT:
            self.received.append(bytes(frame.data).decode("utf-8"))
        elif frame.opcode is Opcode.BINARY:
            self.received.append(bytes(frame.data))
        else:
            return
        if self.echo and self.protocol.state is State.OPEN:
            if frame.opcode is Opcode.TEXT:
                self.protocol.send_text(bytes(frame.data))
            else:
                self.protocol.send_binary(bytes(frame.data))

    def flush(self) -> None:
        for data in self.protocol.data_to_send():
            self._to_client.put_nowait(data if data else None)

    def send_text(self, text: str) -> None:
        self.protocol.send_text(text.encode("utf-8"))
        self.flush()

    def close(self, code: int = 1000, reason: str = "") -> None:
        self.protocol.send_close(code, reason)
        self.flush()

    def fail_reads(self, error: Exception) -> None:
        """Make the client's next read raise error."""
        self._to_client.put_nowait(error)


class LoopbackConnection:
    """Stands in for a TLS Connection, backed by a LoopbackServer."""

    def __init__(self, server: LoopbackServer):
        self.server = server
        self.closed = False

    async def get_chunk(self) -> bytes:
        chunk = await self.server.client_receive()
        return b"" if chunk is None else chunk

    async def put(self, data: bytes) -> None:
        await self.server.client_send(data)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def loopback_server():
    """Factory for LoopbackServer; call it inside the running event loop."""
    return LoopbackServer


@pytest.fixture
def loopback_connection():
    """Factory for LoopbackConnection."""
    return LoopbackConnection


def _name(common_name: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def _general_name(name: str) -> x509.GeneralName:
    try:
        return x509.IPAddress(ipaddress.ip_address(name))
    except ValueError:
        return x509.DNSName(name)


def _pem_key(key) -> bytes:
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )


class LocalAuthority:
    """Throwaway certificate authority for loopback TLS servers."""

    def __init__(self, directory):
        self.directory = directory
        self.key = ec.generate_private_key(ec.SECP256R1())
        now = datetime.datetime.now(datetime.timezone.utc)
        self.cert = (
            x509.CertificateBuilder()
            .subject_name(_name("secure-ws test CA"))
            .issuer_name(_name("secure-ws test CA"))
            .public_key(self.key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(days=1))
            .not_valid_after(now + datetime.timedelta(days=30))
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .add_extension(x509.KeyUsage(
                digital_signature=True, content_commitment=False, key_encipherment=False,
                data_encipherment=False, key_agreement=False, key_cert_sign=True,
                crl_sign=True, encipher_only=False, decipher_only=False,
            ), critical=True)
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(self.key.public_key()), critical=False)
            .sign(self.key, hashes.SHA256())
        )
        self.cafile = str(directory / "ca.pem")
        with open(self.cafile, "wb") as f:
            f.write(self.cert.public_bytes(serialization.Encoding.PEM))

    def issue(self, *names: str):
        """Issue a server certificate for names. Returns (key, certificate)."""
        key = ec.generate_private_key(ec.SECP256R1())
        now = datetime.datetime.now(datetime.timezone.utc)
        cert = (
            x509.CertificateBuilder()
            .subject_name(_name(names[0]))
            .issuer_name(self.cert.subject)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - datetime.timedelta(days=1))
            .not_valid_after(now + datetime.timedelta(days=30))
            .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
            .add_extension(x509.SubjectAlternativeName([_general_name(n) for n in names]), critical=False)
            .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(self.key.public_key()), critical=False
            )
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
            .sign(self.key, hashes.SHA256())
        )
        return key, cert

    def der(self, *names: str) -> bytes:
        """DER bytes of a fresh certificate for names."""
        _, cert = self.issue(*names)
        return cert.public_bytes(serialization.Encoding.DER)

    def server_context(self, *names: str, server_names: Optional[List] = None) -> ssl.SSLContext:
        """
        Server-side SSL context presenting a certificate for names. The server
        name each client sends (None without SNI) is appended to server_names.
        """
        key, cert = self.issue(*names)
        certfile = self.directory / f"{names[0]}-{cert.serial_number}.pem"
        with open(certfile, "wb") as f:
            f.write(cert.public_bytes(serialization.Encoding.PEM))
            f.write(_pem_key(key))

        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.load_cert_chain(str(certfile))
        if server_names is not None:
            def record_server_name(ssl_object, server_name, ssl_context):
                server_names.append(server_name)
            context.sni_callback = record_server_name
        return context


@pytest.fixture(scope="session")
def local_authority(tmp_path_factory):
    """A LocalAuthority whose CA bundle lives in a temporary directory."""
    return LocalAuthority(tmp_path_factory.mktemp("pki"))
