"""Shared test fixtures for health probe tests.

Servers run on a thread pool so they answer both grpc.aio clients inside
pytest-asyncio loops and the CLI's own asyncio.run() loop.
"""

from __future__ import annotations

import ipaddress
import socket
import threading
from concurrent import futures
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterator, Optional

import grpc
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID
from grpc_health.v1 import health_pb2, health_pb2_grpc

from grpc_health_probe.logging import setup_logging
from grpc_health_probe.settings import LogSettings


class ScriptedHealthServicer(health_pb2_grpc.HealthServicer):
    """Health servicer with per-service statuses and an optional delay."""

    def __init__(self) -> None:
        self.statuses: dict[str, int] = {"": health_pb2.HealthCheckResponse.SERVING}
        self.delay: float = 0.0
        self.requests: list[str] = []
        self.metadata: list[dict[str, str]] = []
        self._release = threading.Event()

    def Check(self, request, context):
        self.requests.append(request.service)
        self.metadata.append({k: v for k, v in context.invocation_metadata()})
        if self.delay:
            self._release.wait(self.delay)
        if request.service not in self.statuses:
            context.abort(grpc.StatusCode.NOT_FOUND, "unknown service")
        return health_pb2.HealthCheckResponse(status=self.statuses[request.service])

    def release(self) -> None:
        self._release.set()


@dataclass
class RunningServer:
    """Handle on a started test server."""

    port: int
    servicer: Optional[ScriptedHealthServicer]

    @property
    def addr(self) -> str:
        return f"127.0.0.1:{self.port}"


@dataclass
class TlsFiles:
    """PEM files written for a TLS test."""

    ca_cert: Path
    server_cert: Path
    server_key: Path
    client_cert: Path
    client_key: Path
    self_signed_cert: Path
    self_signed_key: Path


# ---------------------------------------------------------------------------
# Certificates
# ---------------------------------------------------------------------------


def _name(common_name: str) -> x509.Name:
    return x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])


def _issue(
    common_name: str,
    key: ec.EllipticCurvePrivateKey,
    *,
    issuer: Optional[tuple[x509.Certificate, ec.EllipticCurvePrivateKey]] = None,
    is_ca: bool = False,
    san: Optional[list[x509.GeneralName]] = None,
) -> x509.Certificate:
    now = datetime.now(timezone.utc)
    issuer_name = issuer[0].subject if issuer else _name(common_name)
    signing_key = issuer[1] if issuer else key

    builder = (
        x509.CertificateBuilder()
        .subject_name(_name(common_name))
        .issuer_name(issuer_name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + timedelta(days=1))
        .add_extension(x509.BasicConstraints(ca=is_ca, path_length=None), critical=True)
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
    if san:
        builder = builder.add_extension(x509.SubjectAlternativeName(san), critical=False)
    return builder.sign(signing_key, hashes.SHA256())


def _write_cert(path: Path, cert: x509.Certificate) -> Path:
    path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    return path


def _write_key(path: Path, key: ec.EllipticCurvePrivateKey) -> Path:
    path.write_bytes(
        key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )
    return path


@pytest.fixture(scope="session")
def tls_files(tmp_path_factory: pytest.TempPathFactory) -> TlsFiles:
    """Throwaway CA, CA-issued server and client pairs, and a self-signed server pair."""
    out = tmp_path_factory.mktemp("pki")
    localhost = [
        x509.DNSName("localhost"),
        x509.IPAddress(ipaddress.ip_address("127.0.0.1")),
    ]

    ca_key = ec.generate_private_key(ec.SECP256R1())
    ca_cert = _issue("probe-test-ca", ca_key, is_ca=True)

    server_key = ec.generate_private_key(ec.SECP256R1())
    server_cert = _issue("localhost", server_key, issuer=(ca_cert, ca_key), san=localhost)

    client_key = ec.generate_private_key(ec.SECP256R1())
    client_cert = _issue("probe-client", client_key, issuer=(ca_cert, ca_key))

    self_signed_key = ec.generate_private_key(ec.SECP256R1())
    self_signed_cert = _issue("localhost", self_signed_key, is_ca=True, san=localhost)

    return TlsFiles(
        ca_cert=_write_cert(out / "ca.pem", ca_cert),
        server_cert=_write_cert(out / "server.pem", server_cert),
        server_key=_write_key(out / "server.key", server_key),
        client_cert=_write_cert(out / "client.pem", client_cert),
        client_key=_write_key(out / "client.key", client_key),
        self_signed_cert=_write_cert(out / "self-signed.pem", self_signed_cert),
        self_signed_key=_write_key(out / "self-signed.key", self_signed_key),
    )


# ---------------------------------------------------------------------------
# Servers
# ---------------------------------------------------------------------------


def _start(
    servicer: Optional[ScriptedHealthServicer],
    credentials: Optional[grpc.ServerCredentials] = None,
) -> tuple[grpc.Server, int]:
    server = grpc.server(futures.ThreadPoolExecutor(max_workers=4))
    if servicer is not None:
        health_pb2_grpc.add_HealthServicer_to_server(servicer, server)
    if credentials is None:
        port = server.add_insecure_port("127.0.0.1:0")
    else:
        port = server.add_secure_port("127.0.0.1:0", credentials)
    server.start()
    return server, port


def _stop(server: grpc.Server, servicer: Optional[ScriptedHealthServicer]) -> None:
    if servicer is not None:
        servicer.release()
    server.stop(grace=None)


@pytest.fixture
def health_server() -> Iterator[RunningServer]:
    """Plaintext server implementing grpc.health.v1.Health."""
    servicer = ScriptedHealthServicer()
    server, port = _start(servicer)
    yield RunningServer(port=port, servicer=servicer)
    _stop(server, servicer)


@pytest.fixture
def bare_server() -> Iterator[RunningServer]:
    """Plaintext server with no services registered (every method is UNIMPLEMENTED)."""
    server, port = _start(None)
    yield RunningServer(port=port, servicer=None)
    _stop(server, None)


def _tls_server(
    cert: Path, key: Path, ca: Optional[Path] = None, require_client_auth: bool = False
) -> tuple[grpc.Server, RunningServer]:
    credentials = grpc.ssl_server_credentials(
        [(key.read_bytes(), cert.read_bytes())],
        root_certificates=ca.read_bytes() if ca else None,
        require_client_auth=require_client_auth,
    )
    servicer = ScriptedHealthServicer()
    server, port = _start(servicer, credentials)
    return server, RunningServer(port=port, servicer=servicer)


@pytest.fixture
def tls_server(tls_files: TlsFiles) -> Iterator[RunningServer]:
    """TLS server presenting the CA-issued localhost certificate."""
    server, running = _tls_server(tls_files.server_cert, tls_files.server_key)
    yield running
    _stop(server, running.servicer)


@pytest.fixture
def mtls_server(tls_files: TlsFiles) -> Iterator[RunningServer]:
    """TLS server that requires a client certificate issued by the test CA."""
    server, running = _tls_server(
        tls_files.server_cert,
        tls_files.server_key,
        ca=tls_files.ca_cert,
        require_client_auth=True,
    )
    yield running
    _stop(server, running.servicer)


@pytest.fixture
def self_signed_server(tls_files: TlsFiles) -> Iterator[RunningServer]:
    """TLS server presenting a self-signed certificate no CA vouches for."""
    server, running = _tls_server(tls_files.self_signed_cert, tls_files.self_signed_key)
    yield running
    _stop(server, running.servicer)


@pytest.fixture
def unused_addr() -> str:
    """Address of a local port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
    return f"127.0.0.1:{port}"


@pytest.fixture(autouse=True)
def _probe_logging() -> None:
    """Route probe logs to stderr so stdout only carries the result line."""
    setup_logging(settings=LogSettings(level="DEBUG", format="human"))
