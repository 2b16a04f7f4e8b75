from __future__ import annotations

from collections.abc import Generator

from coop_loop.operations import WaitDescriptor

type TaskID = int
type Coro[T] = Generator[WaitDescriptor, object, T]
