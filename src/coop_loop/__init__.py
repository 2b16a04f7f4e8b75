"""Cooperative task scheduler with bounded worker lanes and cancellation."""

__version__ = "0.1.0"

from coop_loop.cancellation import CancellationSource, CancellationToken
from coop_loop.clock import MonotonicClock, VirtualClock
from coop_loop.combinators import when_all
from coop_loop.config import SchedulerConfig
from coop_loop.exceptions import (
    Cancelled,
    Deadlock,
    InvalidStateError,
    SchedulerShutdown,
    StepFailure,
)
from coop_loop.lowlevel import checkpoint, get_current_task, wait_future
from coop_loop.scheduler import Scheduler, run
from coop_loop.task import Task, from_step_body
from coop_loop.timers import sleep

__all__ = [
    "CancellationSource",
    "CancellationToken",
    "Cancelled",
    "Deadlock",
    "InvalidStateError",
    "MonotonicClock",
    "Scheduler",
    "SchedulerConfig",
    "SchedulerShutdown",
    "StepFailure",
    "Task",
    "VirtualClock",
    "checkpoint",
    "from_step_body",
    "get_current_task",
    "run",
    "sleep",
    "wait_future",
    "when_all",
]
