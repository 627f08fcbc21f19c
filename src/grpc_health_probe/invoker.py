"""Health Check RPC and classification of its result."""

from __future__ import annotations

from typing import Sequence

import grpc
from grpc_health.v1 import health_pb2, health_pb2_grpc

from .logging import get_logger
from .outcome import (
    Healthy,
    HealthOutcome,
    RpcFailed,
    RpcTimedOut,
    RpcUnimplemented,
    Unhealthy,
)

logger = get_logger(__name__)

ServingStatus = health_pb2.HealthCheckResponse.ServingStatus


def status_name(status: int) -> str:
    """Enum name for a serving status, tolerating values newer than our stubs."""
    try:
        return ServingStatus.Name(status)
    except ValueError:
        return f"UNRECOGNIZED({status})"


def classify_response(status: int) -> HealthOutcome:
    """Map a successful Check response to Healthy or Unhealthy."""
    if status == health_pb2.HealthCheckResponse.SERVING:
        return Healthy(status_name(status))
    return Unhealthy(status_name(status))


def classify_rpc_error(
    code: grpc.StatusCode, details: str, rpc_timeout_ms: int
) -> HealthOutcome:
    """Map a failed Check call to an outcome.

    UNIMPLEMENTED is checked before DEADLINE_EXCEEDED, which is checked before
    the generic case.
    """
    if code == grpc.StatusCode.UNIMPLEMENTED:
        return RpcUnimplemented(details)
    if code == grpc.StatusCode.DEADLINE_EXCEEDED:
        return RpcTimedOut(rpc_timeout_ms)
    return RpcFailed(code.name, details)


async def check_health(
    channel: grpc.aio.Channel,
    service: str,
    rpc_timeout_ms: int,
    metadata: Sequence[tuple[str, str]] = (),
) -> HealthOutcome:
    """Issue exactly one Health.Check and classify the result.

    Args:
        channel: Ready channel owned by the caller.
        service: Service name; empty string asks for overall server health.
        rpc_timeout_ms: Deadline for the call.
        metadata: Extra request metadata.
    """
    stub = health_pb2_grpc.HealthStub(channel)
    request = health_pb2.HealthCheckRequest(service=service)

    try:
        response = await stub.Check(
            request,
            timeout=rpc_timeout_ms / 1000.0,
            metadata=tuple(metadata) or None,
        )
    except grpc.aio.AioRpcError as e:
        logger.debug("health_rpc_failed", code=e.code().name, details=e.details())
        return classify_rpc_error(e.code(), e.details() or "", rpc_timeout_ms)

    logger.debug("health_rpc_succeeded", service=service, status=status_name(response.status))
    return classify_response(response.status)
