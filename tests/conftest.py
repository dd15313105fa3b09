import ipaddress
import socket
import ssl
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, List, Optional

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from daemonctl.tls import IdentityMaterial


def _generate_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


def _issue_certificate(
    common_name: str,
    key: ec.EllipticCurvePrivateKey,
    *,
    issuer: Optional[x509.Certificate] = None,
    issuer_key: Optional[ec.EllipticCurvePrivateKey] = None,
    usage: Optional[x509.ObjectIdentifier] = None,
) -> x509.Certificate:
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    signing_key = issuer_key or key
    is_ca = usage is None
    now = datetime.now(timezone.utc)

    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer.subject if issuer is not None else subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + timedelta(days=1))
        .add_extension(x509.BasicConstraints(ca=is_ca, path_length=None), critical=True)
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False
        )
        .add_extension(
            x509.AuthorityKeyIdentifier.from_issuer_public_key(signing_key.public_key()),
            critical=False,
        )
    )

    if is_ca:
        builder = builder.add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=True,
                crl_sign=True,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
    else:
        builder = builder.add_extension(
            x509.ExtendedKeyUsage([usage]), critical=False
        ).add_extension(
            x509.SubjectAlternativeName(
                [
                    x509.DNSName("localhost"),
                    x509.IPAddress(ipaddress.ip_address("127.0.0.1")),
                ]
            ),
            critical=False,
        )

    return builder.sign(signing_key, hashes.SHA256())


def _write_pair(
    directory: Path, name: str, cert: x509.Certificate, key: ec.EllipticCurvePrivateKey
) -> tuple[Path, Path]:
    cert_path = directory / f"{name}.pem"
    key_path = directory / f"{name}.key"
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    key_path.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )
    return cert_path, key_path


@dataclass(slots=True)
class Pki:
    """Certificates for one trusted CA plus an unrelated rogue CA.

    ``chained_server_cert`` holds a leaf issued by an intermediate CA followed
    by that intermediate, so the server presents the full path to the root.
    """

    directory: Path
    ca_cert: Path
    server_cert: Path
    server_key: Path
    client_cert: Path
    client_key: Path
    rogue_server_cert: Path
    rogue_server_key: Path
    chained_server_cert: Path
    chained_server_key: Path
    server_der: bytes
    rogue_server_der: bytes
    chained_server_der: bytes
    intermediate_der: bytes

    @property
    def identity(self) -> IdentityMaterial:
        return IdentityMaterial(
            client_cert=self.client_cert,
            client_key=self.client_key,
            trusted_issuer=self.ca_cert,
        )

    def server_context(
        self, *, rogue: bool = False, chained: bool = False
    ) -> ssl.SSLContext:
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        if chained:
            context.load_cert_chain(self.chained_server_cert, self.chained_server_key)
        elif rogue:
            context.load_cert_chain(self.rogue_server_cert, self.rogue_server_key)
        else:
            context.load_cert_chain(self.server_cert, self.server_key)
        context.load_verify_locations(cafile=str(self.ca_cert))
        context.verify_mode = ssl.CERT_REQUIRED
        return context


@pytest.fixture(scope="session")
def pki(tmp_path_factory) -> Pki:
    directory = tmp_path_factory.mktemp("pki")

    ca_key = _generate_key()
    ca = _issue_certificate("daemon-ca", ca_key)
    ca_cert, _ = _write_pair(directory, "ca", ca, ca_key)

    server_key = _generate_key()
    server = _issue_certificate(
        "daemon-server",
        server_key,
        issuer=ca,
        issuer_key=ca_key,
        usage=ExtendedKeyUsageOID.SERVER_AUTH,
    )
    server_cert, server_key_path = _write_pair(directory, "server", server, server_key)

    client_key = _generate_key()
    client = _issue_certificate(
        "daemon-control",
        client_key,
        issuer=ca,
        issuer_key=ca_key,
        usage=ExtendedKeyUsageOID.CLIENT_AUTH,
    )
    client_cert, client_key_path = _write_pair(directory, "client", client, client_key)

    rogue_ca_key = _generate_key()
    rogue_ca = _issue_certificate("rogue-ca", rogue_ca_key)
    rogue_key = _generate_key()
    rogue = _issue_certificate(
        "daemon-server",
        rogue_key,
        issuer=rogue_ca,
        issuer_key=rogue_ca_key,
        usage=ExtendedKeyUsageOID.SERVER_AUTH,
    )
    rogue_cert, rogue_key_path = _write_pair(directory, "rogue", rogue, rogue_key)

    intermediate_key = _generate_key()
    intermediate = _issue_certificate(
        "daemon-intermediate", intermediate_key, issuer=ca, issuer_key=ca_key
    )
    leaf_key = _generate_key()
    leaf = _issue_certificate(
        "daemon-server",
        leaf_key,
        issuer=intermediate,
        issuer_key=intermediate_key,
        usage=ExtendedKeyUsageOID.SERVER_AUTH,
    )
    chained_cert, chained_key_path = _write_pair(directory, "chained", leaf, leaf_key)
    with chained_cert.open("ab") as handle:
        handle.write(intermediate.public_bytes(serialization.Encoding.PEM))

    return Pki(
        directory=directory,
        ca_cert=ca_cert,
        server_cert=server_cert,
        server_key=server_key_path,
        client_cert=client_cert,
        client_key=client_key_path,
        rogue_server_cert=rogue_cert,
        rogue_server_key=rogue_key_path,
        chained_server_cert=chained_cert,
        chained_server_key=chained_key_path,
        server_der=server.public_bytes(serialization.Encoding.DER),
        rogue_server_der=rogue.public_bytes(serialization.Encoding.DER),
        chained_server_der=leaf.public_bytes(serialization.Encoding.DER),
        intermediate_der=intermediate.public_bytes(serialization.Encoding.DER),
    )


Handler = Callable[[ssl.SSLSocket, bytes], None]


def send_close_notify(conn: ssl.SSLSocket) -> None:
    try:
        conn.unwrap()
    except (ssl.SSLError, OSError):
        pass


def reply_with(*chunks: bytes) -> Handler:
    """Handler sending ``chunks`` one TLS write at a time, then close_notify."""

    def handler(conn: ssl.SSLSocket, _request: bytes) -> None:
        for chunk in chunks:
            conn.sendall(chunk)
        send_close_notify(conn)

    return handler


class MockControlServer:
    """Threaded TLS server accepting a fixed number of control connections."""

    def __init__(
        self, context: ssl.SSLContext, handler: Handler, *, connections: int = 1
    ) -> None:
        self._context = context
        self._handler = handler
        self._connections = connections
        self._listener = socket.create_server(("127.0.0.1", 0))
        self._listener.settimeout(10)
        self.port = self._listener.getsockname()[1]
        self.requests: List[bytes] = []
        self.errors: List[BaseException] = []
        self._thread = threading.Thread(target=self._serve, daemon=True)

    @property
    def address(self) -> str:
        return f"127.0.0.1@{self.port}"

    def start(self) -> "MockControlServer":
        self._thread.start()
        return self

    def stop(self) -> None:
        self._thread.join(timeout=10)
        self._listener.close()

    def _serve(self) -> None:
        for _ in range(self._connections):
            try:
                raw, _ = self._listener.accept()
            except OSError as exc:
                self.errors.append(exc)
                return
            raw.settimeout(None)

            try:
                conn = self._context.wrap_socket(raw, server_side=True)
            except (ssl.SSLError, OSError) as exc:
                self.errors.append(exc)
                raw.close()
                continue

            try:
                request = _read_line(conn)
                self.requests.append(request)
                self._handler(conn, request)
            except (ssl.SSLError, OSError) as exc:
                self.errors.append(exc)
            finally:
                conn.close()


def _read_line(conn: ssl.SSLSocket) -> bytes:
    data = b""
    while not data.endswith(b"\n"):
        chunk = conn.recv(1024)
        if not chunk:
            break
        data += chunk
    return data


@pytest.fixture
def mock_server():
    """Factory starting mock servers that are joined at teardown."""

    servers: List[MockControlServer] = []

    def factory(
        context: ssl.SSLContext, handler: Handler, *, connections: int = 1
    ) -> MockControlServer:
        server = MockControlServer(context, handler, connections=connections)
        servers.append(server)
        return server.start()

    yield factory

    for server in servers:
        server.stop()


@pytest.fixture
def write_config(tmp_path: Path, pki: Pki):
    """Write a daemonctl config pointing at the test certificates."""

    def factory(*, enabled: bool = True, extra: str = "") -> Path:
        config_path = tmp_path / "daemonctl.conf"
        config_path.write_text(
            "[remote-control]\n"
            f"control-enable = {'yes' if enabled else 'no'}\n"
            f"server-cert-file = {pki.ca_cert}\n"
            f"control-key-file = {pki.client_key}\n"
            f"control-cert-file = {pki.client_cert}\n" + extra,
            encoding="utf-8",
        )
        return config_path

    return factory
