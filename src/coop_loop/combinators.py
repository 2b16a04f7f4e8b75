"""Combinators composing several task handles into one."""

from __future__ import annotations

from typing import TYPE_CHECKING

from coop_loop.exceptions import Cancelled
from coop_loop.lowlevel import get_running_scheduler
from coop_loop.operations import WaitsOn
from coop_loop.task import Task

if TYPE_CHECKING:
    from coop_loop.scheduler import Scheduler
    from coop_loop.typedefs import Coro


def when_all(*handles: Task, scheduler: Scheduler | None = None) -> Task[tuple]:
    """Combines tasks into a handle that resolves once, when the group is decided.

    - Completed with the member results, in argument order, once every member
      completed.
    - Failed with the error of the first member to fail, as soon as it fails. The
      other members keep running; their results are discarded.
    - Cancelled if a member was cancelled and none failed.

    With no handles, the returned handle has already completed with ().

    Args:
        handles: the member tasks
        scheduler: scheduler to run the combinator on, defaults to the running one
    """
    if not handles:
        return Task.completed(())
    if scheduler is None:
        scheduler = get_running_scheduler()

    return scheduler.submit(_when_all(handles), name="when_all")


def _first_retired(handles: list[Task]) -> Task:
    return min(handles, key=lambda handle: handle.retirement or 0)


def _when_all(handles: tuple[Task, ...]) -> Coro[tuple]:
    while True:
        if failed := [handle for handle in handles if handle.is_failed]:
            error = _first_retired(failed).exception()
            raise error  # pyrefly: ignore

        unfinished = tuple(handle for handle in handles if not handle.is_done)
        if not unfinished:
            break
        yield WaitsOn(tasks=unfinished)

    if cancelled := [handle for handle in handles if handle.is_cancelled]:
        first = _first_retired(cancelled)
        msg = f"Task {first.task_id} of when_all was cancelled"
        raise Cancelled(msg) from first.exception()

    return tuple(handle.result() for handle in handles)


__all__ = [
    "when_all",
]
