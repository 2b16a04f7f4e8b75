"""Shared test fixtures for coop-loop."""

import time
from dataclasses import dataclass, field
from collections.abc import Callable, Iterator

import pytest

from coop_loop.clock import VirtualClock
from coop_loop.log import configure_logging
from coop_loop.scheduler import Scheduler, run
from coop_loop.typedefs import Coro


@dataclass
class TimingContext:
    """Captures elapsed time and provides tolerance-aware assertions."""

    _start: float = field(default=0, repr=False)
    _end: float = field(default=0, repr=False)

    def start(self) -> None:
        self._start = time.monotonic()

    def stop(self) -> None:
        self._end = time.monotonic()

    @property
    def elapsed(self) -> float:
        if self._end == 0.0:
            return time.monotonic() - self._start
        return self._end - self._start

    def assert_elapsed_between(
        self, lower: float, upper: float, *, msg: str = ""
    ) -> None:
        """Assert elapsed time is within [lower, upper] seconds."""
        elapsed = self.elapsed
        context = f" ({msg})" if msg else ""
        assert lower <= elapsed <= upper, (
            f"Expected elapsed time in [{lower}, {upper}]s, got {elapsed:.3f}s{context}"
        )


@pytest.fixture(autouse=True, scope="session")
def _quiet_logging() -> None:
    configure_logging("WARNING")


@pytest.fixture
def virtual_clock() -> VirtualClock:
    """Simulated clock starting at 0."""
    return VirtualClock()


@pytest.fixture
def scheduler(virtual_clock: VirtualClock) -> Iterator[Scheduler]:
    """Two-slot scheduler on simulated time, closed after the test."""
    with Scheduler(pool_size=2, clock=virtual_clock) as scheduler:
        yield scheduler


@pytest.fixture
def run_coro(virtual_clock: VirtualClock) -> Callable[[Coro], object]:
    """Run a generator coroutine to completion on simulated time."""

    def _run(coro: Coro) -> object:
        return run(coro, pool_size=2, clock=virtual_clock)

    return _run


@pytest.fixture
def timing() -> TimingContext:
    """Provide a timing context for measuring elapsed time in tests."""
    return TimingContext()
