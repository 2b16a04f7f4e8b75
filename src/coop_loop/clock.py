"""Clocks used by the scheduler to read time and idle until the next deadline."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Protocol, override


class Clock(Protocol):
    """Time source for timers and sleeps."""

    def now(self) -> float:
        """Current time in seconds."""
        ...

    def wait(
        self,
        wakeup: threading.Event,
        deadline: float | None,
        *,
        may_advance: bool = True,
    ) -> None:
        """Blocks until `wakeup` is set or `deadline` is reached.

        Args:
            wakeup: set by other threads when the scheduler has new work
            deadline: absolute time to wait until, or None to wait for `wakeup` only
            may_advance: False while a step is executing. Clocks that move time
                themselves must then wait for `wakeup` instead.
        """
        ...


class MonotonicClock:
    """Wall time, backed by time.monotonic."""

    def now(self) -> float:
        """Current monotonic time."""
        return time.monotonic()

    def wait(
        self,
        wakeup: threading.Event,
        deadline: float | None,
        *,
        may_advance: bool = True,  # noqa: ARG002
    ) -> None:
        """Sleeps on the wakeup event until the deadline."""
        if deadline is None:
            wakeup.wait()
            return
        wakeup.wait(max(0.0, deadline - time.monotonic()))

    @override
    def __repr__(self) -> str:
        return "MonotonicClock()"


@dataclass(slots=True)
class VirtualClock:
    """Simulated time that jumps straight to the next deadline.

    Lets tests simulate seconds of sleeping without waiting for them. Waiting with
    no deadline still blocks on the wakeup event, since only another thread can
    make progress then.
    """

    """Current simulated time."""
    _now: float = field(default=0.0)

    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def now(self) -> float:
        """Current simulated time."""
        with self._lock:
            return self._now

    def advance(self, seconds: float) -> None:
        """Moves simulated time forwards."""
        if seconds < 0:
            raise ValueError("Cannot move a clock backwards")
        with self._lock:
            self._now += seconds

    def wait(
        self,
        wakeup: threading.Event,
        deadline: float | None,
        *,
        may_advance: bool = True,
    ) -> None:
        """Jumps to the deadline unless woken already.

        Time stays put when `may_advance` is False: a running step must not see
        the clock jump under it.
        """
        if deadline is None or not may_advance:
            wakeup.wait()
            return
        if wakeup.is_set():
            return
        with self._lock:
            self._now = max(self._now, deadline)
