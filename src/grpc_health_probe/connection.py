"""Channel construction for the health probe.

Turns a validated ProbeConfig into a ready grpc.aio channel. Every failure
on the way (unreadable PEM files, DNS, refused connections, TLS handshake,
connect timeout) is raised as ConnectionFailedError with the cause preserved.
"""

from __future__ import annotations

import asyncio
import socket
import ssl
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import AsyncIterator, Optional

import grpc
from cryptography import x509
from cryptography.x509.oid import NameOID

from .config import ProbeConfig
from .errors import ConnectionFailedError
from .logging import get_logger

logger = get_logger(__name__)

DEFAULT_TLS_PORT = 443


@dataclass(frozen=True)
class TlsMaterial:
    """PEM bytes handed to grpc.ssl_channel_credentials."""

    root_certificates: Optional[bytes] = None
    private_key: Optional[bytes] = None
    certificate_chain: Optional[bytes] = None
    server_name: Optional[str] = None


def split_host_port(addr: str) -> tuple[str, int]:
    """Split a gRPC target into host and port.

    Accepts "host:port", "[v6addr]:port" and the "dns:", "ipv4:" and "ipv6:"
    schemes. Only the first address of an ipv4/ipv6 list is used.

    Raises:
        ConnectionFailedError: If the port is not a number.
    """
    target = addr
    if target.startswith("dns:"):
        target = target[len("dns:"):]
        if target.startswith("//"):
            # dns://authority/host:port; the authority names a resolver
            target = target[2:].partition("/")[2]
    elif target.startswith(("ipv4:", "ipv6:")):
        target = target[len("ipv4:"):].split(",")[0]

    if target.startswith("["):
        host, _, rest = target[1:].partition("]")
        port_str = rest[1:] if rest.startswith(":") else ""
    elif target.count(":") == 1:
        host, _, port_str = target.partition(":")
    else:
        host, port_str = target, ""

    if not port_str:
        return host, DEFAULT_TLS_PORT
    try:
        return host, int(port_str)
    except ValueError:
        raise ConnectionFailedError(addr, f"invalid port {port_str!r}") from None


def _read_pem(addr: str, path: str, what: str) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as e:
        raise ConnectionFailedError(
            addr, f"failed to read {what} from {path!r}: {e.strerror or e}"
        ) from e


def certificate_hostname(pem: bytes) -> Optional[str]:
    """Pick a name the certificate is valid for.

    Prefers the first DNS subjectAltName, then the first IP subjectAltName,
    then the subject commonName. Wildcard names get a concrete first label.
    """
    cert = x509.load_pem_x509_certificate(pem)
    try:
        san = cert.extensions.get_extension_for_class(x509.SubjectAlternativeName).value
    except x509.ExtensionNotFound:
        san = None

    if san is not None:
        dns_names = san.get_values_for_type(x509.DNSName)
        if dns_names:
            name = dns_names[0]
            if name.startswith("*."):
                name = "probe" + name[1:]
            return name
        ip_addresses = san.get_values_for_type(x509.IPAddress)
        if ip_addresses:
            return str(ip_addresses[0])

    common_names = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    if common_names:
        return str(common_names[0].value)
    return None


def fetch_server_certificate(
    host: str, port: int, server_name: Optional[str], timeout: float
) -> bytes:
    """Complete an unverified TLS handshake and return the peer certificate as PEM."""
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    context.set_alpn_protocols(["h2"])

    with socket.create_connection((host, port), timeout=timeout) as sock:
        with context.wrap_socket(sock, server_hostname=server_name or host) as tls_sock:
            der = tls_sock.getpeercert(binary_form=True)
    if not der:
        raise ssl.SSLError("server did not present a certificate")
    return ssl.DER_cert_to_PEM_cert(der).encode("ascii")


async def _pin_server_certificate(
    config: ProbeConfig, timeout: float
) -> tuple[bytes, Optional[str]]:
    """Fetch the server certificate and the name gRPC should check it against.

    tls_server_name is only sent as SNI here. The name checked by gRPC always
    comes from the pinned certificate, so a mismatching override cannot fail
    the handshake.
    """
    host, port = split_host_port(config.addr)
    try:
        pem = await asyncio.wait_for(
            asyncio.to_thread(
                fetch_server_certificate,
                host,
                port,
                config.tls_server_name,
                timeout,
            ),
            timeout=timeout,
        )
    except asyncio.TimeoutError:
        raise ConnectionFailedError(
            config.addr, f"tls handshake timed out after {config.connect_timeout_ms}ms"
        ) from None
    except (OSError, ValueError) as e:
        raise ConnectionFailedError(config.addr, f"tls handshake failed: {e}") from e

    try:
        return pem, certificate_hostname(pem)
    except ValueError as e:
        raise ConnectionFailedError(
            config.addr, f"unreadable server certificate: {e}"
        ) from e


async def load_tls_material(
    config: ProbeConfig, timeout: Optional[float] = None
) -> TlsMaterial:
    """Gather trust roots, client identity and verification hostname.

    With tls_no_verify the server's own certificate becomes the trust root,
    and any tls_ca_cert is ignored. timeout bounds the certificate fetch and
    defaults to the connect timeout.
    """
    root_certificates = None
    server_name = config.tls_server_name

    if config.tls_no_verify:
        if timeout is None:
            timeout = config.connect_timeout
        root_certificates, server_name = await _pin_server_certificate(config, timeout)
        logger.warning(
            "tls_verification_disabled",
            addr=config.addr,
            sni=config.tls_server_name,
            server_name=server_name,
            ignored_ca_cert=config.tls_ca_cert,
        )
    elif config.tls_ca_cert is not None:
        root_certificates = _read_pem(config.addr, config.tls_ca_cert, "CA certificate")

    private_key = certificate_chain = None
    if config.tls_client_cert is not None and config.tls_client_key is not None:
        certificate_chain = _read_pem(
            config.addr, config.tls_client_cert, "client certificate"
        )
        private_key = _read_pem(config.addr, config.tls_client_key, "client key")

    return TlsMaterial(
        root_certificates=root_certificates,
        private_key=private_key,
        certificate_chain=certificate_chain,
        server_name=server_name,
    )


def build_channel_options(
    config: ProbeConfig, server_name: Optional[str] = None
) -> list[tuple[str, object]]:
    """Channel arguments applied to every probe channel."""
    options: list[tuple[str, object]] = [
        ("grpc.primary_user_agent", config.user_agent),
        ("grpc.enable_retries", 0),
    ]
    if server_name:
        options.append(("grpc.ssl_target_name_override", server_name))
    return options


async def _create_channel(config: ProbeConfig, timeout: float) -> grpc.aio.Channel:
    if not config.tls:
        logger.debug("creating_channel", addr=config.addr, transport="plaintext")
        return grpc.aio.insecure_channel(
            config.addr, options=build_channel_options(config)
        )

    material = await load_tls_material(config, timeout)
    credentials = grpc.ssl_channel_credentials(
        root_certificates=material.root_certificates,
        private_key=material.private_key,
        certificate_chain=material.certificate_chain,
    )
    logger.debug(
        "creating_channel",
        addr=config.addr,
        transport="tls",
        verification="skipped" if config.tls_no_verify else "verified",
        client_identity=material.certificate_chain is not None,
        server_name=material.server_name,
    )
    return grpc.aio.secure_channel(
        config.addr,
        credentials,
        options=build_channel_options(config, material.server_name),
    )


async def connect(config: ProbeConfig) -> grpc.aio.Channel:
    """Build a channel and wait until it is READY.

    connect_timeout_ms covers the whole connect, including the certificate
    fetch done for tls_no_verify.

    Raises:
        ConnectionFailedError: If the channel is not ready within
            connect_timeout_ms, or TLS material could not be loaded.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + config.connect_timeout
    channel = await _create_channel(config, config.connect_timeout)
    try:
        remaining = max(deadline - loop.time(), 0.0)
        await asyncio.wait_for(channel.channel_ready(), timeout=remaining)
    except asyncio.TimeoutError:
        state = channel.get_state()
        await channel.close()
        raise ConnectionFailedError(
            config.addr,
            f"not ready within {config.connect_timeout_ms}ms (last state: {state.name})",
        ) from None
    except BaseException:
        await channel.close()
        raise

    logger.info("connected", addr=config.addr)
    return channel


@asynccontextmanager
async def open_channel(config: ProbeConfig) -> AsyncIterator[grpc.aio.Channel]:
    """Ready channel scoped to a single probe run; always closed on exit."""
    channel = await connect(config)
    try:
        yield channel
    finally:
        await channel.close()
        logger.debug("channel_closed", addr=config.addr)
