"""The probe pipeline: validate, connect, check, close."""

from __future__ import annotations

import time

from .config import ProbeConfig, validate_config
from .connection import open_channel
from .errors import ConnectionFailedError
from .invoker import check_health
from .logging import get_logger
from .outcome import ConnectionFailed, HealthOutcome

logger = get_logger(__name__)


async def run_probe(config: ProbeConfig) -> HealthOutcome:
    """Run one health check and return its outcome.

    Never raises for expected failures; each one becomes an outcome. The
    channel is closed before this returns.
    """
    invalid = validate_config(config)
    if invalid is not None:
        logger.debug("invalid_configuration", reason=invalid.reason)
        return invalid

    logger.debug(
        "probe_started",
        addr=config.addr,
        service=config.service,
        tls=config.tls,
        connect_timeout_ms=config.connect_timeout_ms,
        rpc_timeout_ms=config.rpc_timeout_ms,
    )
    started = time.perf_counter()

    try:
        async with open_channel(config) as channel:
            connected = time.perf_counter()
            outcome = await check_health(
                channel,
                config.service,
                config.rpc_timeout_ms,
                metadata=config.metadata(),
            )
    except ConnectionFailedError as e:
        logger.warning("connection_failed", addr=e.addr, cause=e.cause)
        return ConnectionFailed(e.addr, e.cause)

    finished = time.perf_counter()
    logger.info(
        "probe_finished",
        outcome=type(outcome).__name__,
        connect_ms=round((connected - started) * 1000, 2),
        rpc_ms=round((finished - connected) * 1000, 2),
    )
    return outcome
