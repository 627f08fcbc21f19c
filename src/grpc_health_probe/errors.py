"""Exceptions raised inside the probe pipeline.

These never reach the CLI: run_probe() converts them into outcomes.
"""


class ProbeError(Exception):
    """Base class for probe errors."""


class ConnectionFailedError(ProbeError):
    """The channel could not be established.

    Covers DNS failures, refused connections, TLS handshake errors, connect
    timeouts and unreadable certificate/key files.
    """

    def __init__(self, addr: str, cause: str) -> None:
        super().__init__(f"failed to connect service at {addr!r}: {cause}")
        self.addr = addr
        self.cause = cause
