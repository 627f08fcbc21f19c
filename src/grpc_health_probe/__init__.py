"""gRPC Health Checking Protocol probe.

Runs a single grpc.health.v1.Health/Check against a server and reports the
result through one line of output and the process exit status.
"""

__version__ = "0.1.0"

from .config import ProbeConfig, validate_config
from .outcome import (
    ConnectionFailed,
    ExitCode,
    Healthy,
    HealthOutcome,
    InvalidConfiguration,
    RpcFailed,
    RpcTimedOut,
    RpcUnimplemented,
    Unhealthy,
)
from .probe import run_probe

__all__ = [
    # Configuration
    "ProbeConfig",
    "validate_config",
    # Outcomes
    "HealthOutcome",
    "Healthy",
    "Unhealthy",
    "InvalidConfiguration",
    "ConnectionFailed",
    "RpcUnimplemented",
    "RpcTimedOut",
    "RpcFailed",
    "ExitCode",
    # Pipeline
    "run_probe",
]
