"""Processes numbers one per second until a three second timeout cancels the work.

The task checks for cancellation before each number, and the scheduler checks again
at every sleep, so the loop stops around the third number rather than the tenth.
"""

from typing import TYPE_CHECKING

from coop_loop import CancellationSource, Cancelled, get_current_task, run, sleep

if TYPE_CHECKING:
    from coop_loop.typedefs import Coro


def process_numbers(numbers: list[int]) -> Coro[int]:
    """Handles numbers one by one, returning how many were processed."""
    token = get_current_task().token
    processed = 0
    for number in numbers:
        token.raise_if_requested()
        print(f"Processing {number}...")
        yield from sleep(1)
        processed += 1
    return processed


def entry(source: CancellationSource) -> Coro[None]:
    """Entry point for example."""
    source.with_timeout(3)
    try:
        yield from process_numbers(list(range(1, 11)))
    except Cancelled:
        print("Operation cancelled.")


if __name__ == "__main__":
    source = CancellationSource()
    run(entry(source), cancellation=source)
