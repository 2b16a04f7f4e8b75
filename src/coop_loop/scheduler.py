from __future__ import annotations

import threading
from collections import defaultdict, deque
from concurrent.futures import wait as wait_futures
from contextlib import contextmanager
from dataclasses import dataclass, field
from functools import partial
from typing import TYPE_CHECKING, Any, Self

from coop_loop._utils import _local
from coop_loop.cancellation import CancellationSource, CancellationToken
from coop_loop.clock import MonotonicClock
from coop_loop.combinators import when_all
from coop_loop.exceptions import Deadlock, InvalidStateError, SchedulerShutdown
from coop_loop.log import configure_logging, get_logger
from coop_loop.operations import AwaitsFuture, Checkpoint, Sleep, WaitsOn
from coop_loop.task import Task
from coop_loop.task.state import Suspended
from coop_loop.timers import TimerQueue
from coop_loop.workers import WorkerPool, default_pool_size

if TYPE_CHECKING:
    from collections.abc import Callable, Generator
    from concurrent.futures import Future
    from types import TracebackType

    from coop_loop.cancellation import Registration
    from coop_loop.clock import Clock
    from coop_loop.config import SchedulerConfig
    from coop_loop.operations import WaitDescriptor
    from coop_loop.task.state import TaskState
    from coop_loop.timers import TimerHandle
    from coop_loop.typedefs import Coro, TaskID
    from coop_loop.workers import WorkerSlot

logger = get_logger(__name__)


@dataclass(slots=True, kw_only=True, eq=False)
class Scheduler:
    """Multiplexes cooperative tasks onto a fixed number of worker slots.

    All bookkeeping happens on the thread calling `run`. Worker lanes only execute
    `Task.resume`. Other threads talk to the loop through the incoming, cancel and
    wake queues, followed by setting the wakeup event.
    """

    """Number of worker slots. Defaults to twice the CPU count."""
    pool_size: int | None = None

    """Time source for sleeps and timeouts."""
    clock: Clock = field(default_factory=MonotonicClock)

    """Timer service shared by sleeping tasks and cancellation timeouts."""
    timers: TimerQueue = field(default_factory=TimerQueue, init=False)

    """The tasks currently active, in submission order."""
    tasks: dict[TaskID, Task] = field(default_factory=dict, init=False)

    """Maps a task to the tasks waiting on it, with the suspension they wait in."""
    task_dependencies: defaultdict[TaskID, dict[TaskID, int]] = field(
        default_factory=lambda: defaultdict(dict), init=False
    )

    """Highest number of simultaneously occupied worker slots seen."""
    max_concurrency: int = field(default=0, init=False)

    _pool: WorkerPool = field(init=False, repr=False)

    """Ready task IDs in the order they became ready."""
    _ready: deque[TaskID] = field(default_factory=deque, init=False, repr=False)

    """Value or error each ready task is resumed with."""
    _inputs: dict[TaskID, tuple[object, BaseException | None]] = field(
        default_factory=dict, init=False, repr=False
    )

    """Counts suspensions per task, so stale wakeups can be told apart."""
    _generations: dict[TaskID, int] = field(
        default_factory=dict, init=False, repr=False
    )

    """Submission order of active tasks, used to break ties."""
    _order: dict[TaskID, int] = field(default_factory=dict, init=False, repr=False)

    _submitted: int = field(default=0, init=False, repr=False)

    _retired: int = field(default=0, init=False, repr=False)

    _sleep_timers: dict[TaskID, TimerHandle] = field(
        default_factory=dict, init=False, repr=False
    )

    _registrations: dict[TaskID, Registration] = field(
        default_factory=dict, init=False, repr=False
    )

    """Steps executing on a lane, in dispatch order."""
    _in_flight: dict[Future[TaskState[Any]], tuple[Task, WorkerSlot]] = field(
        default_factory=dict, init=False, repr=False
    )

    """IDs of the tasks in _in_flight. They are never queued as ready."""
    _executing: set[TaskID] = field(default_factory=set, init=False, repr=False)

    _incoming: deque[Task] = field(default_factory=deque, init=False, repr=False)

    _cancel_queue: deque[TaskID] = field(
        default_factory=deque, init=False, repr=False
    )

    _wake_queue: deque[tuple[TaskID, int]] = field(
        default_factory=deque, init=False, repr=False
    )

    _wakeup: threading.Event = field(
        default_factory=threading.Event, init=False, repr=False
    )

    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False
    )

    """Retired tasks that failed, kept until their failure is observed."""
    _failed: list[Task] = field(default_factory=list, init=False, repr=False)

    _running: bool = field(default=False, init=False, repr=False)

    _closed: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.pool_size is None:
            self.pool_size = default_pool_size()
        self._pool = WorkerPool(size=self.pool_size)

    @classmethod
    def from_config(
        cls, config: SchedulerConfig, *, clock: Clock | None = None
    ) -> Self:
        """Builds a scheduler from config and applies its log level."""
        configure_logging(config.log_level)
        if clock is None:
            return cls(pool_size=config.pool_size)
        return cls(pool_size=config.pool_size, clock=clock)

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.close()

    def submit[T](
        self,
        coro: Coro[T] | Task[T],
        *,
        cancellation: CancellationSource | CancellationToken | None = None,
        name: str | None = None,
    ) -> Task[T]:
        """Enqueues a task and returns its handle without running anything.

        Safe to call from inside a running step.

        Args:
            coro: generator coroutine, or a task that has not been started
            cancellation: source or token the task observes at suspension points
            name: label used in log events
        """
        if isinstance(coro, Task):
            task = coro
            if not task.is_pending:
                msg = f"Task {task.task_id} has already been started"
                raise InvalidStateError(msg)
        else:
            task = Task(gen=coro, name=name)

        if cancellation is not None:
            task.token = _as_token(cancellation)

        with self._lock:
            if self._closed:
                raise RuntimeError("Scheduler is closed")
            self._incoming.append(task)
        self._wakeup.set()

        logger.debug("Task submitted", task_id=task.task_id, name=task.name)
        return task

    def submit_call[T](
        self,
        func: Callable[..., T],
        *args: object,
        cancellation: CancellationSource | CancellationToken | None = None,
        name: str | None = None,
    ) -> Task[T]:
        """Runs a blocking callable as a single step on a worker slot.

        A cancellation requested before the step starts prevents the call.
        """
        return self.submit(
            _call(func, args),
            cancellation=cancellation,
            name=name or getattr(func, "__name__", None),
        )

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Runs `callback` on the scheduling loop once `delay` seconds have passed."""
        if delay < 0:
            msg = f"Delay must be non-negative, got {delay}"
            raise ValueError(msg)

        handle = self.timers.schedule(self.clock.now() + delay, callback)
        self._wakeup.set()
        return handle

    def await_result[T](self, handle: Task[T]) -> Coro[T]:
        """Suspends the calling task until `handle` is terminal and returns its result.

        Raises StepFailure if the task failed, and Cancelled if it was cancelled.
        """
        return handle.wait()

    def when_all(self, *handles: Task) -> Task[tuple]:
        """Combines tasks into one handle. See coop_loop.combinators.when_all."""
        return when_all(*handles, scheduler=self)

    @property
    def unobserved_failures(self) -> list[Task]:
        """Failed tasks nobody has called result() or exception() on."""
        self._failed = [task for task in self._failed if not task.observed]
        return list(self._failed)

    @property
    def closed(self) -> bool:
        """If close() has been called."""
        return self._closed

    def run(self) -> None:
        """Runs the scheduling loop until no active task remains."""
        if self._closed:
            raise RuntimeError("Scheduler is closed")
        if self._running:
            raise RuntimeError("Scheduler is already running")

        self._running = True
        previous, _local.scheduler = _local.scheduler, self
        self._pool.start()
        try:
            while self._has_work():
                self._accept_submissions()
                self._handle_cancellations()
                self._handle_wakeups()
                self.timers.fire_due(self.clock.now())
                self._dispatch_ready_tasks()
                self._collect_finished_steps()
                self._idle()
        finally:
            self._running = False
            _local.scheduler = previous

    def close(self) -> None:
        """Tears the scheduler down.

        Steps already executing are allowed to finish. Every task that is not
        terminal afterwards is cancelled with SchedulerShutdown.
        """
        with self._lock:
            if self._closed:
                return
            self._closed = True

        wait_futures(list(self._in_flight))
        for _, slot in self._in_flight.values():
            self._pool.release(slot)
        self._in_flight.clear()
        self._executing.clear()

        self._accept_submissions()
        aborted = 0
        for task in list(self.tasks.values()):
            if not task.is_done:
                msg = f"Scheduler closed before task {task.task_id} finished"
                task.abort(SchedulerShutdown(msg))
                aborted += 1
            self._retire(task)

        self._ready.clear()
        self._inputs.clear()
        self.timers.clear()
        self._pool.shutdown()
        logger.info(
            "Scheduler closed",
            aborted=aborted,
            unobserved_failures=len(self.unobserved_failures),
        )

    def _has_work(self) -> bool:
        return bool(self.tasks or self._incoming or self._in_flight)

    def _accept_submissions(self) -> None:
        """Moves submitted tasks into the active set and queues them as ready."""
        with self._lock:
            incoming, self._incoming = self._incoming, deque()

        for task in incoming:
            self._submitted += 1
            self.tasks[task.task_id] = task
            self._order[task.task_id] = self._submitted
            if task.token.can_be_cancelled:
                self._registrations[task.task_id] = task.token.register(
                    partial(self._notify_cancel, task.task_id)
                )
            self._make_ready(task)

    def _notify_cancel(self, task_id: TaskID) -> None:
        """Called from any thread when the token of a task is triggered."""
        self._cancel_queue.append(task_id)
        self._wakeup.set()

    def _notify_wake(self, task_id: TaskID, generation: int) -> None:
        """Called from any thread when an external wait condition is satisfied."""
        self._wake_queue.append((task_id, generation))
        self._wakeup.set()

    def _handle_cancellations(self) -> None:
        """Wakes suspended tasks whose cancellation was requested.

        Running tasks notice the request when they next suspend, and pending ones
        when they are first resumed.
        """
        while self._cancel_queue:
            task_id = self._cancel_queue.popleft()
            task = self.tasks.get(task_id)
            if task is None or not task.is_suspended:
                continue
            logger.debug("Waking task for cancellation", task_id=task_id)
            self._make_ready(task)

    def _handle_wakeups(self) -> None:
        while self._wake_queue:
            task_id, generation = self._wake_queue.popleft()
            self._wake(task_id, generation)

    def _wake(self, task_id: TaskID, generation: int) -> None:
        """Makes a suspended task ready, unless the wakeup belongs to an old wait."""
        task = self.tasks.get(task_id)
        if task is None or not task.is_suspended:
            return
        if self._generations.get(task_id) != generation:
            return
        self._make_ready(task)

    def _make_ready(
        self, task: Task, value: object = None, error: BaseException | None = None
    ) -> None:
        task_id = task.task_id
        if task_id in self._inputs or task_id in self._executing:
            return

        self._generations[task_id] = self._generations.get(task_id, 0) + 1
        if (sleep_timer := self._sleep_timers.pop(task_id, None)) is not None:
            sleep_timer.dispose()
        self._inputs[task_id] = (value, error)
        self._ready.append(task_id)

    def _dispatch_ready_tasks(self) -> None:
        """Hands ready tasks to free worker slots, first come first served."""
        while self._ready:
            slot = self._pool.acquire(self._ready[0])
            if slot is None:
                break

            task = self.tasks[self._ready.popleft()]
            value, error = self._inputs.pop(task.task_id)
            future = self._pool.run(slot, partial(self._run_step, task, value, error))
            self._in_flight[future] = (task, slot)
            self._executing.add(task.task_id)
            future.add_done_callback(lambda _: self._wakeup.set())

        self.max_concurrency = max(self.max_concurrency, len(self._in_flight))

    def _run_step(
        self, task: Task, value: object, error: BaseException | None
    ) -> TaskState[Any]:
        """Executes on a worker lane."""
        with self._set_current_task(task):
            return task.resume(value, error=error)

    @contextmanager
    def _set_current_task(self, task: Task) -> Generator[None]:
        """Utility wrapper for setting and removing the task executing on a lane."""
        _local.scheduler = self
        _local.task = task
        try:
            yield
        finally:
            _local.cleanup()

    def _collect_finished_steps(self) -> None:
        """Processes the outcome of finished steps in dispatch order."""
        finished = [future for future in self._in_flight if future.done()]
        for future in finished:
            task, slot = self._in_flight.pop(future)
            self._executing.discard(task.task_id)
            self._pool.release(slot)
            match future.result():
                case Suspended(wait=wait):
                    self._register_wait(task, wait)
                case _:
                    self._retire(task)

    def _register_wait(self, task: Task, wait: WaitDescriptor) -> None:
        """Parks a suspended task until the condition of its wait descriptor holds."""
        task_id = task.task_id
        if task.token.is_requested():
            self._make_ready(task)
            return

        generation = self._generations[task_id]
        match wait:
            case Checkpoint():
                self._make_ready(task)
            case Sleep(delay=delay) if delay <= 0:
                self._make_ready(task)
            case Sleep(delay=delay):
                self._sleep_timers[task_id] = self.timers.schedule(
                    self.clock.now() + delay,
                    partial(self._wake, task_id, generation),
                    order=self._order[task_id],
                )
            case WaitsOn(tasks=deps):
                self._register_dependencies(task, deps, generation)
            case AwaitsFuture(future=future):
                future.add_done_callback(
                    lambda _: self._notify_wake(task_id, generation)
                )
            case _:
                msg = f"Task {task_id} yielded {wait!r}, which is not a wait descriptor"
                self._make_ready(task, error=TypeError(msg))

    def _register_dependencies(
        self, task: Task, deps: tuple[Task, ...], generation: int
    ) -> None:
        # Tasks submitted during the step that just finished are not active yet.
        self._accept_submissions()

        for dep in deps:
            if dep.task_id not in self.tasks and not dep.is_done:
                msg = f"Task {dep.task_id} is not managed by this scheduler"
                self._make_ready(task, error=InvalidStateError(msg))
                return

        if not deps or any(dep.task_id not in self.tasks for dep in deps):
            self._make_ready(task)
            return
        for dep in deps:
            self.task_dependencies[dep.task_id][task.task_id] = generation

    def _retire(self, task: Task) -> None:
        """Removes a terminal task from the active set and wakes its waiters."""
        task_id = task.task_id
        self.tasks.pop(task_id, None)
        self._retired += 1
        task.retirement = self._retired
        self._generations.pop(task_id, None)
        if (registration := self._registrations.pop(task_id, None)) is not None:
            registration.dispose()
        if (sleep_timer := self._sleep_timers.pop(task_id, None)) is not None:
            sleep_timer.dispose()

        logger.debug(
            "Task retired", task_id=task_id, name=task.name, state=task.state
        )
        if task.is_failed:
            # Not raised here: the failure surfaces only to whoever observes it.
            self._failed.append(task)

        waiters = self.task_dependencies.pop(task_id, {})
        for waiter_id, generation in sorted(
            waiters.items(), key=lambda item: self._order.get(item[0], 0)
        ):
            self._wake(waiter_id, generation)
        self._order.pop(task_id, None)

    def _has_immediate_work(self) -> bool:
        if self._ready or self._incoming or self._cancel_queue or self._wake_queue:
            return True
        if any(future.done() for future in self._in_flight):
            return True
        deadline = self.timers.next_deadline()
        return deadline is not None and deadline <= self.clock.now()

    def _idle(self) -> None:
        """Blocks until a lane finishes, a timer is due or another thread wakes us."""
        self._wakeup.clear()
        if not self._has_work() or self._has_immediate_work():
            return

        deadline = self.timers.next_deadline()
        if self._in_flight:
            # Lanes set the wakeup when they finish.
            self.clock.wait(self._wakeup, deadline, may_advance=False)
            return

        if deadline is None and not self._has_external_waits():
            logger.info("Raising Deadlock error", tasks=self.tasks)
            msg = "Deadlock: all tasks waiting on other tasks, no timers pending"
            raise Deadlock(msg)

        self.clock.wait(self._wakeup, deadline)

    def _has_external_waits(self) -> bool:
        return any(
            isinstance(task.state, Suspended)
            and isinstance(task.state.wait, AwaitsFuture)
            for task in self.tasks.values()
        )


def _as_token(
    cancellation: CancellationSource | CancellationToken,
) -> CancellationToken:
    if isinstance(cancellation, CancellationSource):
        return cancellation.token
    return cancellation


def _call[T](func: Callable[..., T], args: tuple[object, ...]) -> Coro[T]:
    return func(*args)
    yield  # pyrefly: ignore


def run[T](
    coro: Coro[T],
    *,
    pool_size: int | None = None,
    clock: Clock | None = None,
    cancellation: CancellationSource | CancellationToken | None = None,
) -> T:
    """Entry point for running a coroutine to completion.

    Creates a Scheduler, submits the coroutine as a task and runs the loop.

    Args:
        coro: the entry coroutine
        pool_size: number of worker slots
        clock: time source, MonotonicClock by default
        cancellation: source or token observed by the entry task

    Returns:
        The result of the entry coroutine. Its failure is raised as StepFailure.
    """
    scheduler = Scheduler(pool_size=pool_size, clock=clock or MonotonicClock())
    with scheduler:
        task = scheduler.submit(coro, cancellation=cancellation)
        scheduler.run()
        return task.result()
