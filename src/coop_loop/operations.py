"""Wait-descriptors a task yields at its suspension points.

The scheduler inspects the yielded descriptor to decide when the task becomes
ready again.
"""

from __future__ import annotations

from concurrent.futures import Future
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from coop_loop.task import Task
    from coop_loop.typedefs import TaskID


@dataclass(slots=True)
class Sleep:
    """Ready again once `delay` seconds have passed on the scheduler clock."""

    delay: float


@dataclass(slots=True)
class Checkpoint:
    """Yields control back to the scheduler; ready again immediately."""


@dataclass(slots=True)
class WaitsOn:
    """Ready again once any of the given tasks has reached a terminal state."""

    tasks: tuple[Task, ...]

    @property
    def task_ids(self) -> tuple[TaskID, ...]:
        """IDs of the awaited tasks."""
        return tuple(task.task_id for task in self.tasks)


@dataclass(slots=True)
class AwaitsFuture:
    """Ready again once an externally resolved future is done."""

    future: Future


type WaitDescriptor = Sleep | Checkpoint | WaitsOn | AwaitsFuture
