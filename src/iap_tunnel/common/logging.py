"""Centralized logging configuration using structlog.

Handlers are attached to the package logger only, so embedding
applications keep control of the root logger.
"""

import logging
import os
import sys
from pathlib import Path

import structlog
from structlog.typing import Processor

PACKAGE_LOGGER = "iap_tunnel"
LOG_LEVEL_ENV = "IAP_TUNNEL_LOG_LEVEL"
DEFAULT_LOG_LEVEL = "INFO"


def _resolve_level(level: str | None) -> int:
    name = (level or os.environ.get(LOG_LEVEL_ENV) or DEFAULT_LOG_LEVEL).upper()
    log_level = logging.getLevelName(name)
    if not isinstance(log_level, int):
        raise ValueError(f"Unknown log level: {name}")
    return log_level


def setup_logging(
    level: str | None = None,
    json_format: bool = False,
    log_file: str | Path | None = None,
) -> None:
    """Configure structured logging for the tunnel manager.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL); read
            from IAP_TUNNEL_LOG_LEVEL when None, INFO if that is unset
        json_format: If True, output JSON formatted logs
        log_file: Optional file path to write logs to

    Raises:
        ValueError: If the level name is unknown
    """
    log_level = _resolve_level(level)

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in package_logger.handlers[:]:
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.setLevel(log_level)
    package_logger.propagate = False

    # Diagnostics go to stderr; stdout belongs to the embedding program
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter("%(message)s"))
    package_logger.addHandler(console_handler)

    processors: list[Processor] = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setLevel(log_level)
        file_handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
        package_logger.addHandler(file_handler)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a configured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)  # type: ignore[no-any-return]
