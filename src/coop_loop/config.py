"""Scheduler configuration, with overrides from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from coop_loop.workers import default_pool_size

if TYPE_CHECKING:
    from collections.abc import Mapping

POOL_SIZE_ENV_VAR = "COOP_LOOP_POOL_SIZE"
LOG_LEVEL_ENV_VAR = "COOP_LOOP_LOG_LEVEL"


@dataclass(slots=True, kw_only=True, frozen=True)
class SchedulerConfig:
    """Tunables of a Scheduler."""

    """Number of worker slots."""
    pool_size: int = field(default_factory=default_pool_size)

    """Minimum level of emitted log events."""
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.pool_size < 1:
            msg = f"pool_size must be at least 1, got {self.pool_size}"
            raise ValueError(msg)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> SchedulerConfig:
        """Builds a config from COOP_LOOP_* environment variables.

        Args:
            environ: mapping to read instead of os.environ
        """
        if environ is None:
            environ = os.environ

        kwargs: dict[str, int | str] = {}
        if raw_pool_size := environ.get(POOL_SIZE_ENV_VAR):
            try:
                kwargs["pool_size"] = int(raw_pool_size)
            except ValueError as e:
                msg = f"{POOL_SIZE_ENV_VAR} must be an integer, got {raw_pool_size!r}"
                raise ValueError(msg) from e
        if raw_log_level := environ.get(LOG_LEVEL_ENV_VAR):
            kwargs["log_level"] = raw_log_level.upper()

        return cls(**kwargs)  # pyrefly: ignore
