"""Timer service: fires callbacks once their deadline has passed."""

from __future__ import annotations

import heapq
import itertools
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from coop_loop.lowlevel import checkpoint
from coop_loop.operations import Sleep

if TYPE_CHECKING:
    from collections.abc import Callable

    from coop_loop.typedefs import Coro


@dataclass(slots=True, kw_only=True, eq=False)
class TimerHandle:
    """Handle to a scheduled timer. Dispose it to stop the timer from firing."""

    """Absolute clock time at which the timer fires."""
    deadline: float

    callback: Callable[[], None] = field(repr=False)

    """Whether the timer was disposed before firing."""
    disposed: bool = field(default=False, init=False)

    """Whether the callback has run."""
    fired: bool = field(default=False, init=False)

    def dispose(self) -> None:
        """Cancels the timer. No-op if it has already fired."""
        self.disposed = True

    @property
    def pending(self) -> bool:
        """If the timer will still fire."""
        return not (self.disposed or self.fired)


@dataclass(slots=True)
class TimerQueue:
    """Heap of timers ordered by deadline, then tie-break key, then insertion."""

    _heap: list[tuple[float, int, int, TimerHandle]] = field(
        default_factory=list, init=False
    )

    _counter: itertools.count = field(default_factory=itertools.count, init=False)

    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    def schedule(
        self, deadline: float, callback: Callable[[], None], *, order: int = 0
    ) -> TimerHandle:
        """Schedules `callback` to fire at `deadline`.

        Args:
            deadline: absolute clock time
            callback: called without arguments when the timer fires
            order: tie-break between timers sharing a deadline, lower fires first
        """
        handle = TimerHandle(deadline=deadline, callback=callback)
        with self._lock:
            heapq.heappush(self._heap, (deadline, order, next(self._counter), handle))
        return handle

    def next_deadline(self) -> float | None:
        """Deadline of the earliest pending timer, if any."""
        with self._lock:
            self._drop_disposed()
            return self._heap[0][0] if self._heap else None

    def pop_due(self, now: float) -> list[TimerHandle]:
        """Removes and returns all pending timers due at `now`, in firing order."""
        due: list[TimerHandle] = []
        with self._lock:
            self._drop_disposed()
            while self._heap and self._heap[0][0] <= now:
                *_, handle = heapq.heappop(self._heap)
                if handle.pending:
                    due.append(handle)
        return due

    def fire_due(self, now: float) -> int:
        """Runs callbacks of all timers due at `now`. Returns how many fired."""
        due = self.pop_due(now)
        for handle in due:
            # A callback of an earlier timer may have disposed this one.
            if not handle.pending:
                continue
            handle.fired = True
            handle.callback()
        return len(due)

    def clear(self) -> None:
        """Disposes every pending timer."""
        with self._lock:
            for *_, handle in self._heap:
                handle.dispose()
            self._heap.clear()

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for *_, handle in self._heap if handle.pending)

    def _drop_disposed(self) -> None:
        while self._heap and not self._heap[0][3].pending:
            heapq.heappop(self._heap)


def sleep(delay: float) -> Coro[None]:
    """Suspends the current task for `delay` seconds of scheduler time."""
    if delay <= 0:
        yield from checkpoint()
    else:
        yield Sleep(delay=delay)
