"""Logging helpers built on structlog."""

from __future__ import annotations

import logging
from typing import Any

import structlog


def get_logger(name: str | None = None, **initial_values: Any) -> Any:  # noqa: ANN401
    """Gets a structlog logger, optionally bound to a logger name."""
    if name is None:
        return structlog.get_logger(**initial_values)
    return structlog.get_logger(name, **initial_values)


def configure_logging(level: int | str = logging.INFO) -> None:
    """Installs a level-filtering structlog configuration.

    Args:
        level: minimum level to emit, either a logging constant or its name
    """
    if isinstance(level, str):
        resolved = logging.getLevelNamesMapping().get(level.upper())
        if resolved is None:
            msg = f"Unknown log level: {level!r}"
            raise ValueError(msg)
        level = resolved

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        cache_logger_on_first_use=False,
    )
