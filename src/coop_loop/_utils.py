from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from coop_loop.scheduler import Scheduler
    from coop_loop.task import Task
    from coop_loop.typedefs import TaskID

_task_ids = itertools.count(1)
_task_ids_lock = threading.Lock()


def _get_new_task_id() -> TaskID:
    """Gets an unused task ID, unique across schedulers in the process."""
    with _task_ids_lock:
        return next(_task_ids)


@dataclass(kw_only=True)
class _Local(threading.local):
    """Wrapper around threading.local for proper type annotations."""

    scheduler: Scheduler | None = None
    task: Task | None = None

    def cleanup(self) -> None:
        """Resets all attributes."""
        self.scheduler = None
        self.task = None


_local = _Local()

__all__ = [
    "_get_new_task_id",
    "_local",
]
