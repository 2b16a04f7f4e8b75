"""Error kinds raised by the scheduler and its tasks."""

from __future__ import annotations

from typing import TYPE_CHECKING, override

if TYPE_CHECKING:
    from coop_loop.typedefs import TaskID


class Cancelled(BaseException):  # noqa: N818
    """Cooperative cancellation observed at a suspension point.

    Derives from BaseException so that ``except Exception`` in step bodies does not
    swallow it.
    """


class SchedulerShutdown(Cancelled):
    """The scheduler was torn down while the task was still pending."""


class StepFailure(Exception):  # noqa: N818
    """A task's own logic raised an error.

    Raised to whoever observes the result of the failed task. The original error is
    kept on ``error`` and chained as ``__cause__``.
    """

    def __init__(self, task_id: TaskID, error: BaseException) -> None:
        super().__init__(task_id, error)
        self.task_id = task_id
        self.error = error

    @override
    def __str__(self) -> str:
        return f"Task {self.task_id} failed: {self.error!r}"


class InvalidStateError(RuntimeError):
    """A task was used in a way its current state does not allow."""


class Deadlock(RuntimeError):  # noqa: N818
    """Every active task is waiting on another task and nothing can make progress."""


__all__ = [
    "Cancelled",
    "Deadlock",
    "InvalidStateError",
    "SchedulerShutdown",
    "StepFailure",
]
