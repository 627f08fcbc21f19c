"""Structured logging for the health probe.

Diagnostics go to stderr (and optionally a rotating log file) so that stdout
carries nothing but the single result line.

Usage:
    from grpc_health_probe.logging import setup_logging, get_logger

    setup_logging()
    logger = get_logger(__name__)
    logger.info("connected", addr=addr)

Configuration via environment variables (see settings.LogSettings):
    LOG_LEVEL: DEBUG, INFO, WARN, ERROR (default: WARNING)
    LOG_FORMAT: human, json (default: human)
    LOG_FILE: Path to log file (optional)
    LOG_FILE_LEVEL: Level for file output (default: same as LOG_LEVEL)
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

import structlog

from .settings import LogSettings

LOGGER_NAME = "grpc_health_probe"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024  # 10MB
LOG_FILE_BACKUP_COUNT = 5


def _get_log_level(level_str: str) -> int:
    """Convert string log level to logging constant."""
    levels = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARN": logging.WARNING,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
    }
    return levels.get(level_str.upper(), logging.WARNING)


def _create_file_handler(log_file: str, level: int) -> RotatingFileHandler:
    """Create a rotating file handler."""
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    handler = RotatingFileHandler(
        log_file,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setLevel(level)
    return handler


def setup_logging(verbose: bool = False, settings: LogSettings | None = None) -> None:
    """Configure logging for a probe run.

    Args:
        verbose: Force DEBUG on the console regardless of LOG_LEVEL.
        settings: Explicit settings (default: read from the environment).
    """
    settings = settings or LogSettings()

    level = logging.DEBUG if verbose else _get_log_level(settings.level)
    file_level = _get_log_level(settings.file_level or settings.level)

    # Only the probe's own logger is touched; the root logger is left alone
    probe_logger = logging.getLogger(LOGGER_NAME)
    probe_logger.setLevel(min(level, file_level) if settings.file else level)
    probe_logger.handlers.clear()
    probe_logger.propagate = False

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    probe_logger.addHandler(console_handler)

    if settings.file:
        probe_logger.addHandler(_create_file_handler(settings.file, file_level))

    pre_chain = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.ExtraAdder(),
    ]

    if settings.format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=pre_chain,
    )
    for handler in probe_logger.handlers:
        handler.setFormatter(formatter)

    structlog.configure(
        processors=pre_chain + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(component="probe")


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger.

    Args:
        name: Logger name, normally the calling module's __name__.
    """
    return structlog.get_logger(name)
