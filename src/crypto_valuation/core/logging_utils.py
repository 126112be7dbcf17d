"""
Logging utilities for the valuation engine.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Optional

from loguru import logger

DEFAULT_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    rotation: str = "10 MB",
    retention: str = "1 month",
    format_string: Optional[str] = None,
) -> None:
    """Setup application logging using loguru.

    Standard library loggers (used by LoggerMixin classes) are routed to the
    same level through logging.basicConfig.

    Args:
        level: Logging level
        log_file: Path to log file, None for console only
        rotation: Loguru rotation policy (size or interval)
        retention: Loguru retention policy
        format_string: Custom loguru format string
    """
    logger.remove()

    fmt = format_string or DEFAULT_FORMAT
    logger.add(sys.stdout, format=fmt, level=level.upper(), colorize=True)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(log_path),
            format=fmt,
            level=level.upper(),
            rotation=rotation,
            retention=retention,
            compression="zip",
        )

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


def setup_logging_from_config(config: dict[str, Any]) -> None:
    """Apply the `logging` section of the engine configuration."""
    setup_logging(
        level=config.get("level", "INFO"),
        log_file=config.get("file"),
        rotation=config.get("rotation", "10 MB"),
        retention=config.get("retention", "1 month"),
    )


def format_fields(**fields: Any) -> str:
    """Render structured fields as `key=value` pairs joined by spaces."""
    return " ".join(f"{key}={value}" for key, value in fields.items())


def event_message(event: str, **fields: Any) -> str:
    """Build an `EVENT: key=value ...` log line."""
    if not fields:
        return f"{event}:"
    return f"{event}: {format_fields(**fields)}"


def get_logger(name: str) -> logging.Logger:
    """Get a standard library logger routed through setup_logging."""
    return logging.getLogger(name)


class LoggerMixin:
    """Mixin class to add a per-class standard library logger."""

    _logger: Optional[logging.Logger] = None

    @property
    def logger(self) -> logging.Logger:
        """Get logger for this class."""
        if self._logger is None:
            self._logger = logging.getLogger(
                f"{self.__class__.__module__}.{self.__class__.__name__}"
            )
        return self._logger
