"""Cooperative cancellation, honoured by tasks at their suspension points.

A `CancellationSource` owns the flag. Tasks only ever see its read-only
`CancellationToken`. The flag only moves from False to True, so readers need no
locking; the lock only guards the callback list.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, ClassVar

from coop_loop.exceptions import Cancelled
from coop_loop.log import get_logger
from coop_loop.lowlevel import get_running_scheduler

if TYPE_CHECKING:
    from collections.abc import Callable

    from coop_loop.scheduler import Scheduler
    from coop_loop.timers import TimerHandle

logger = get_logger(__name__)


@dataclass(slots=True, eq=False)
class Registration:
    """Handle for a cancellation callback. Dispose it to unregister."""

    _source: CancellationSource | None = field(repr=False)

    _callback: Callable[[], None] = field(repr=False)

    def dispose(self) -> None:
        """Unregisters the callback. No-op if already disposed or fired."""
        if self._source is not None:
            self._source._unregister(self)  # noqa: SLF001
            self._source = None


@dataclass(slots=True, eq=False)
class CancellationSource:
    """Owner of a cancellation flag, triggered manually or after a timeout."""

    """Whether cancellation has been requested. Never reverts to False."""
    requested: bool = field(default=False, init=False)

    _registrations: list[Registration] = field(default_factory=list, init=False)

    _timeout: TimerHandle | None = field(default=None, init=False, repr=False)

    _lock: threading.Lock = field(default_factory=threading.Lock, init=False)

    def trigger(self) -> None:
        """Requests cancellation. Repeated calls are no-ops."""
        with self._lock:
            if self.requested:
                return
            self.requested = True
            registrations, self._registrations = self._registrations, []

        logger.debug("Cancellation requested", callbacks=len(registrations))
        for registration in registrations:
            registration._source = None  # noqa: SLF001
            registration._callback()  # noqa: SLF001

    def is_requested(self) -> bool:
        """Returns the current flag."""
        return self.requested

    def with_timeout(
        self, duration: float, *, scheduler: Scheduler | None = None
    ) -> TimerHandle:
        """Triggers the source automatically once `duration` seconds have elapsed.

        Args:
            duration: seconds on the scheduler clock until the trigger
            scheduler: timer service to use, defaults to the running scheduler

        Returns:
            Handle to the pending trigger. Disposing it cancels the timeout.
        """
        if duration < 0:
            msg = f"Timeout duration must be non-negative, got {duration}"
            raise ValueError(msg)
        if scheduler is None:
            scheduler = get_running_scheduler()

        self._timeout = scheduler.call_later(duration, self.trigger)
        return self._timeout

    @property
    def deadline(self) -> float | None:
        """Clock time of the pending timeout, if one is scheduled."""
        if self._timeout is None or not self._timeout.pending:
            return None
        return self._timeout.deadline

    @property
    def token(self) -> CancellationToken:
        """Read-only view handed to tasks."""
        return CancellationToken(_source=self)

    def register(self, callback: Callable[[], None]) -> Registration:
        """Calls `callback` once cancellation is requested.

        The callback runs immediately if cancellation was already requested.
        """
        registration = Registration(self, callback)
        with self._lock:
            if not self.requested:
                self._registrations.append(registration)
                return registration

        registration._source = None
        callback()
        return registration

    def _unregister(self, registration: Registration) -> None:
        with self._lock:
            if registration in self._registrations:
                self._registrations.remove(registration)


@dataclass(frozen=True, slots=True)
class CancellationToken:
    """Read-only view of a CancellationSource."""

    _NONE: ClassVar[CancellationToken]

    _source: CancellationSource | None = field(repr=False)

    @classmethod
    def none(cls) -> CancellationToken:
        """A token that can never be cancelled."""
        return cls._NONE

    def is_requested(self) -> bool:
        """Whether the owning source has been triggered."""
        return self._source is not None and self._source.requested

    @property
    def can_be_cancelled(self) -> bool:
        """False for the token returned by `none()`."""
        return self._source is not None

    def raise_if_requested(self) -> None:
        """Raises Cancelled if cancellation was requested.

        Lets a long step check for cancellation between suspension points.
        """
        if self.is_requested():
            raise Cancelled("Cancellation was requested")

    def register(self, callback: Callable[[], None]) -> Registration:
        """Calls `callback` once cancellation is requested."""
        if self._source is None:
            return Registration(None, callback)
        return self._source.register(callback)


CancellationToken._NONE = CancellationToken(_source=None)  # noqa: SLF001
