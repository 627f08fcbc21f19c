"""Terminal outcomes of a probe run and their exit codes.

A run produces exactly one HealthOutcome. The CLI turns it into a single
stdout line (message()) and a process exit status (exit_code).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import ClassVar

HEALTH_SERVICE_NAME = "grpc.health.v1.Health"


class ExitCode(IntEnum):
    """Process exit status for each outcome category."""

    SUCCESS = 0
    INVALID_ARGUMENTS = 1
    CONNECTION_FAILURE = 2
    RPC_FAILURE = 3
    UNHEALTHY = 4


@dataclass(frozen=True)
class HealthOutcome:
    """Base class for all outcomes."""

    exit_code: ClassVar[ExitCode]

    def message(self) -> str:
        raise NotImplementedError

    @property
    def ok(self) -> bool:
        return self.exit_code == ExitCode.SUCCESS


@dataclass(frozen=True)
class Healthy(HealthOutcome):
    """The remote reported SERVING."""

    exit_code: ClassVar[ExitCode] = ExitCode.SUCCESS
    status: str = "SERVING"

    def message(self) -> str:
        return f"status: {self.status}"


@dataclass(frozen=True)
class Unhealthy(HealthOutcome):
    """The call succeeded but reported a non-serving status."""

    exit_code: ClassVar[ExitCode] = ExitCode.UNHEALTHY
    status: str

    def message(self) -> str:
        return f"service unhealthy (responded with {self.status})"


@dataclass(frozen=True)
class InvalidConfiguration(HealthOutcome):
    """Rejected before any network activity."""

    exit_code: ClassVar[ExitCode] = ExitCode.INVALID_ARGUMENTS
    reason: str

    def message(self) -> str:
        return self.reason


@dataclass(frozen=True)
class ConnectionFailed(HealthOutcome):
    """Transport could not be established (includes TLS material load errors)."""

    exit_code: ClassVar[ExitCode] = ExitCode.CONNECTION_FAILURE
    addr: str
    cause: str

    def message(self) -> str:
        return f'error: failed to connect service at "{self.addr}": {self.cause}'


@dataclass(frozen=True)
class RpcUnimplemented(HealthOutcome):
    """The remote does not serve grpc.health.v1.Health."""

    exit_code: ClassVar[ExitCode] = ExitCode.RPC_FAILURE
    details: str

    def message(self) -> str:
        return (
            "error: this server does not implement the grpc health protocol "
            f"({HEALTH_SERVICE_NAME}): {self.details}"
        )


@dataclass(frozen=True)
class RpcTimedOut(HealthOutcome):
    """The Check call did not finish within the rpc timeout."""

    exit_code: ClassVar[ExitCode] = ExitCode.RPC_FAILURE
    timeout_ms: int

    def message(self) -> str:
        return f"timeout: health rpc did not complete within {self.timeout_ms}ms"


@dataclass(frozen=True)
class RpcFailed(HealthOutcome):
    """Any other failure of the Check call."""

    exit_code: ClassVar[ExitCode] = ExitCode.RPC_FAILURE
    code: str
    cause: str

    def message(self) -> str:
        return f"error: health rpc failed: {self.code}: {self.cause}"
