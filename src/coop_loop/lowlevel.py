from __future__ import annotations

from typing import TYPE_CHECKING

from coop_loop._utils import _local
from coop_loop.operations import AwaitsFuture, Checkpoint

if TYPE_CHECKING:
    from concurrent.futures import Future

    from coop_loop.scheduler import Scheduler
    from coop_loop.task import Task
    from coop_loop.typedefs import Coro


def get_running_scheduler() -> Scheduler:
    """Gets the scheduler driving the current thread."""
    if _local.scheduler is None:
        raise RuntimeError("No scheduler running")

    return _local.scheduler


def get_current_task() -> Task:
    """Gets the task whose step is executing on the current lane."""
    if _local.task is None:
        raise RuntimeError("No task currently executing")

    return _local.task


def checkpoint() -> Coro[None]:
    """Nop that yields control back to the scheduler."""
    yield Checkpoint()


def wait_future[T](future: Future[T]) -> Coro[T]:
    """Suspends until an externally resolved future is done and returns its result.

    The future may be resolved from any thread. Its exception, if any, is raised
    inside the waiting task.
    """
    if not future.done():
        yield AwaitsFuture(future=future)
    return future.result()
