"""Bounded pool of execution lanes.

Each WorkerSlot runs at most one task step at a time. The actual threads come
from a ThreadPoolExecutor sized to the number of slots, so a step never waits
for a thread once it holds a slot.
"""

from __future__ import annotations

import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Self

if TYPE_CHECKING:
    from collections.abc import Callable
    from concurrent.futures import Future
    from types import TracebackType

    from coop_loop.typedefs import TaskID


def default_pool_size() -> int:
    """Twice the number of CPUs, the usual thread-pool heuristic."""
    return (os.cpu_count() or 1) * 2


@dataclass(slots=True, kw_only=True)
class WorkerSlot:
    """One lane of concurrent execution."""

    index: int

    """The task whose step occupies the slot."""
    task_id: TaskID | None = None

    @property
    def is_free(self) -> bool:
        """If no task occupies the slot."""
        return self.task_id is None


@dataclass(slots=True, kw_only=True)
class WorkerPool:
    """Fixed number of worker slots backed by a thread pool."""

    size: int

    slots: list[WorkerSlot] = field(init=False)

    _executor: ThreadPoolExecutor | None = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.size < 1:
            msg = f"Pool size must be at least 1, got {self.size}"
            raise ValueError(msg)
        self.slots = [WorkerSlot(index=index) for index in range(self.size)]

    def __enter__(self) -> Self:
        """Starts the executor backing the slots."""
        self.start()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Shuts down the executor."""
        self.shutdown()

    def start(self) -> None:
        """Creates the executor if it is not running."""
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.size, thread_name_prefix="coop-lane"
            )

    def shutdown(self) -> None:
        """Waits for running steps and stops the executor."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    @property
    def free_slots(self) -> int:
        """Number of slots without a task."""
        return sum(1 for slot in self.slots if slot.is_free)

    @property
    def occupied_slots(self) -> int:
        """Number of slots currently running a step."""
        return self.size - self.free_slots

    def acquire(self, task_id: TaskID) -> WorkerSlot | None:
        """Assigns the first free slot to a task, or returns None if all are busy."""
        for slot in self.slots:
            if slot.is_free:
                slot.task_id = task_id
                return slot
        return None

    def release(self, slot: WorkerSlot) -> None:
        """Frees a slot."""
        slot.task_id = None

    def run[T](self, slot: WorkerSlot, fn: Callable[[], T]) -> Future[T]:
        """Runs `fn` on the lane of an acquired slot."""
        if slot.is_free:
            msg = f"Slot {slot.index} was not acquired"
            raise RuntimeError(msg)
        if self._executor is None:
            raise RuntimeError("Worker pool is not running")
        return self._executor.submit(fn)
