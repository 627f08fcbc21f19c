"""Probe configuration and its validation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .outcome import InvalidConfiguration

DEFAULT_USER_AGENT = "grpc_health_probe_py"
DEFAULT_CONNECT_TIMEOUT_MS = 1000
DEFAULT_RPC_TIMEOUT_MS = 1000


@dataclass(frozen=True)
class ProbeConfig:
    """Everything a single probe run needs.

    Attributes:
        addr: Target host:port.
        service: Service name to check; empty means overall server health.
        user_agent: User-agent sent with the call.
        connect_timeout_ms: Budget for establishing the channel.
        rpc_timeout_ms: Deadline for the Check RPC.
        tls: Use a TLS transport.
        tls_ca_cert: PEM file with trusted roots (with tls).
        tls_client_cert: PEM client certificate (with tls, needs tls_client_key).
        tls_client_key: PEM client private key (with tls, needs tls_client_cert).
        tls_server_name: Hostname used to verify the server certificate (with tls).
        tls_no_verify: Skip server certificate verification (with tls).
        rpc_headers: Extra metadata sent with the call, each "key: value".
    """

    addr: str
    service: str = ""
    user_agent: str = DEFAULT_USER_AGENT
    connect_timeout_ms: int = DEFAULT_CONNECT_TIMEOUT_MS
    rpc_timeout_ms: int = DEFAULT_RPC_TIMEOUT_MS
    tls: bool = False
    tls_ca_cert: Optional[str] = None
    tls_client_cert: Optional[str] = None
    tls_client_key: Optional[str] = None
    tls_server_name: Optional[str] = None
    tls_no_verify: bool = False
    rpc_headers: tuple[str, ...] = ()

    @property
    def connect_timeout(self) -> float:
        """Connect timeout in seconds."""
        return self.connect_timeout_ms / 1000.0

    def metadata(self) -> tuple[tuple[str, str], ...]:
        """rpc_headers as gRPC metadata pairs (config must be validated)."""
        return tuple(parse_rpc_header(h) for h in self.rpc_headers)


def parse_rpc_header(raw: str) -> tuple[str, str]:
    """Split a 'key: value' header into a (key, value) pair.

    Keys are lower-cased because gRPC metadata keys must be.

    Raises:
        ValueError: If there is no colon or the key is empty.
    """
    key, sep, value = raw.partition(":")
    key = key.strip().lower()
    if not sep or not key:
        raise ValueError(f"--rpc-header must be in the form 'key: value' (got {raw!r})")
    return key, value.strip()


def validate_config(config: ProbeConfig) -> Optional[InvalidConfiguration]:
    """Check a configuration before any I/O happens.

    Rules are applied in order and the first violation is returned.

    Returns:
        None if the configuration is usable, otherwise the rejection.
    """
    if not config.addr:
        return InvalidConfiguration("--addr not specified")

    if config.connect_timeout_ms <= 0:
        return InvalidConfiguration("--connect-timeout must be greater than zero")

    if config.rpc_timeout_ms <= 0:
        return InvalidConfiguration("--rpc-timeout must be greater than zero")

    if not config.tls:
        tls_only = (
            ("--tls-ca-cert", config.tls_ca_cert is not None),
            ("--tls-server-name", config.tls_server_name is not None),
            ("--tls-client-cert", config.tls_client_cert is not None),
            ("--tls-client-key", config.tls_client_key is not None),
            ("--tls-no-verify", config.tls_no_verify),
        )
        for flag, is_set in tls_only:
            if is_set:
                return InvalidConfiguration(f"specified {flag} without specifying --tls")

    if config.tls_client_cert is not None and config.tls_client_key is None:
        return InvalidConfiguration(
            "specified --tls-client-cert without specifying --tls-client-key"
        )

    if config.tls_client_key is not None and config.tls_client_cert is None:
        return InvalidConfiguration(
            "specified --tls-client-key without specifying --tls-client-cert"
        )

    for header in config.rpc_headers:
        try:
            parse_rpc_header(header)
        except ValueError as e:
            return InvalidConfiguration(str(e))

    return None
