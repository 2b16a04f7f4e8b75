from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from coop_loop._utils import _get_new_task_id
from coop_loop.cancellation import CancellationToken
from coop_loop.exceptions import Cancelled as CancelledError
from coop_loop.exceptions import InvalidStateError, StepFailure
from coop_loop.log import get_logger
from coop_loop.operations import WaitsOn
from coop_loop.task.state import (
    Cancelled,
    Completed,
    Failed,
    Pending,
    Running,
    StepOutcome,
    Suspended,
    TaskState,
)

if TYPE_CHECKING:
    from collections.abc import Callable, Generator

    from coop_loop.typedefs import Coro, TaskID

logger = get_logger(__name__)


@dataclass(slots=True, kw_only=True, eq=False)
class Task[TResult]:
    """Drives a coroutine forwards, one step per resume.

    The task is also the handle returned to callers: once it is terminal its result
    stays on it until observed.
    """

    """The generator coroutine wrapped by the task."""
    gen: Coro[TResult] = field(repr=False)

    """The ID of the task."""
    task_id: TaskID = field(default_factory=_get_new_task_id)

    """Optional label, only used for logging."""
    name: str | None = None

    """Token consulted before every resumption."""
    token: CancellationToken = field(
        default_factory=CancellationToken.none, repr=False
    )

    """Union encompassing the current state of the task."""
    state: TaskState[TResult] = field(default_factory=Pending)

    """Number of steps driven so far."""
    steps: int = field(default=0, init=False)

    """Whether someone has looked at the outcome of the task."""
    observed: bool = field(default=False, init=False, repr=False)

    """Position in the order in which tasks reached a terminal state."""
    retirement: int | None = field(default=None, init=False, repr=False)

    @classmethod
    def completed(cls, value: TResult) -> Task[TResult]:
        """Creates a task that has already completed with `value`."""
        gen = _returning(value)
        gen.close()
        return cls(gen=gen, state=Completed(value))

    def resume(
        self, value: object = None, *, error: BaseException | None = None
    ) -> TaskState[TResult]:
        """Advances the coroutine by exactly one step.

        The cancellation token is consulted first. If cancellation was requested,
        Cancelled is thrown into the coroutine instead of resuming its normal logic.

        Args:
            value: sent into the coroutine as the result of its last yield
            error: thrown into the coroutine instead of sending `value`

        Returns:
            The new state: Suspended, Completed, Failed or Cancelled.
        """
        if self.is_done:
            msg = f"Task {self.task_id} already finished as {self.state!r}"
            raise InvalidStateError(msg)

        self.state = Running()
        self.steps += 1
        with self._handle_step_exc():
            if self.token.is_requested():
                logger.debug("Cancellation observed", task_id=self.task_id)
                wait = self.gen.throw(
                    CancelledError(f"Task {self.task_id} was cancelled")
                )
            elif error is not None:
                wait = self.gen.throw(error)
            else:
                wait = self.gen.send(value)
            self.state = Suspended(wait)

        return self.state

    def abort(self, exc: CancelledError) -> None:
        """Cancels the task without waiting for a suspension point to resume it.

        The exception is thrown into the coroutine so its cleanup runs. A coroutine
        that suspends again is closed.
        """
        if self.is_done:
            return

        with self._handle_step_exc():
            self.gen.throw(exc)
            self.gen.close()
            self.state = Cancelled(exc)

    @property
    def is_pending(self) -> bool:
        """If the task has never been resumed."""
        return isinstance(self.state, Pending)

    @property
    def is_running(self) -> bool:
        """If a step of the task is currently executing."""
        return isinstance(self.state, Running)

    @property
    def is_suspended(self) -> bool:
        """If the task is parked at a suspension point."""
        return isinstance(self.state, Suspended)

    @property
    def is_done(self) -> bool:
        """If the task has reached a terminal state."""
        return isinstance(self.state, Completed | Failed | Cancelled)

    @property
    def is_completed(self) -> bool:
        """If the task returned a value."""
        return isinstance(self.state, Completed)

    @property
    def is_failed(self) -> bool:
        """If the task logic raised."""
        return isinstance(self.state, Failed)

    @property
    def is_cancelled(self) -> bool:
        """If the task ended through cancellation."""
        return isinstance(self.state, Cancelled)

    def result(self) -> TResult:
        """Gets the result of a finished task, raising its error if it has one."""
        match self.state:
            case Completed(value=value):
                self.observed = True
                return value
            case Failed(error=error):
                self.observed = True
                raise StepFailure(self.task_id, error) from error
            case Cancelled(error=error):
                self.observed = True
                raise error
            case _:
                msg = f"Result of task {self.task_id} accessed before it finished"
                raise InvalidStateError(msg)

    def exception(self) -> BaseException | None:
        """Gets the error of a finished task without raising it."""
        match self.state:
            case Completed():
                self.observed = True
                return None
            case Failed(error=error) | Cancelled(error=error):
                self.observed = True
                return error
            case _:
                msg = f"Exception of task {self.task_id} accessed before it finished"
                raise InvalidStateError(msg)

    def wait(self) -> Coro[TResult]:
        """Waits on the task from inside another task and returns its result."""
        yield from wait_on(self)
        return self.result()

    @contextmanager
    def _handle_step_exc(self) -> Generator[None]:
        try:
            yield
        except StopIteration as e:
            self.state = Completed(e.value)
        except CancelledError as e:
            self.state = Cancelled(e)
        except Exception as e:  # noqa: BLE001
            self.state = Failed(e)


def wait_on(*tasks: Task) -> Coro[None]:
    """Yield until all given tasks are done.

    Args:
        tasks: the tasks for which we want to wait for
    """
    while not all(task.is_done for task in tasks):
        unfinished = tuple(task for task in tasks if not task.is_done)
        yield WaitsOn(tasks=unfinished)


def from_step_body[T](body: Callable[[object], StepOutcome[T]]) -> Coro[T]:
    """Adapts an opaque step callable into a coroutine.

    `body` is called with the value the previous suspension resumed with (None for
    the first step) and returns Suspended, Completed or Failed.
    """
    value: object = None
    while True:
        match body(value):
            case Suspended(wait=wait):
                value = yield wait
            case Completed(value=result):
                return result
            case Failed(error=error):
                raise error
            case other:
                msg = f"Step body returned {other!r}, expected a step outcome"
                raise TypeError(msg)


def _returning[T](value: T) -> Coro[T]:
    return value
    yield  # pyrefly: ignore


__all__ = [
    "Task",
    "from_step_body",
    "wait_on",
]
