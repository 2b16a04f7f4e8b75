from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from coop_loop.exceptions import Cancelled as CancelledError
    from coop_loop.operations import WaitDescriptor


@dataclass(slots=True, kw_only=True)
class Pending:
    """Task has been created but not yet assigned a worker slot."""


@dataclass(slots=True, kw_only=True)
class Running:
    """Task is executing a step on a worker slot."""


@dataclass(slots=True)
class Suspended:
    """Task yielded at a suspension point and waits for its condition."""

    wait: WaitDescriptor


@dataclass(slots=True)
class Completed[T]:
    """Task returned a value."""

    value: T


@dataclass(slots=True)
class Failed:
    """Task logic raised an error."""

    error: BaseException


@dataclass(slots=True)
class Cancelled:
    """Task observed a cancellation request."""

    error: CancelledError


type TaskState[T] = Pending | Running | Suspended | Completed[T] | Failed | Cancelled
type StepOutcome[T] = Suspended | Completed[T] | Failed
