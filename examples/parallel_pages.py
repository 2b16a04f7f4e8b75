"""Compares fetching two simulated pages one after the other and side by side.

Each fetch is a sleep standing in for network latency. Fetching in parallel with
when_all takes as long as the slowest page instead of the sum of both.
"""

import time
from typing import TYPE_CHECKING

from coop_loop import run, sleep, when_all
from coop_loop.lowlevel import get_running_scheduler

if TYPE_CHECKING:
    from coop_loop.typedefs import Coro

LATENCIES = {
    "https://example.com": 1.0,
    "https://example.com/test": 1.5,
}


def get_page(url: str) -> Coro[str]:
    """Pretends to download a page."""
    yield from sleep(LATENCIES[url])
    return f"<html>{url}</html>"


def get_pages_sequential() -> Coro[str]:
    """Fetches the pages one after the other."""
    home = yield from get_page("https://example.com")
    test = yield from get_page("https://example.com/test")
    return f"{home}\n\n{test}"


def get_pages_parallel() -> Coro[str]:
    """Fetches both pages at the same time."""
    scheduler = get_running_scheduler()
    home_task = scheduler.submit(get_page("https://example.com"))
    test_task = scheduler.submit(get_page("https://example.com/test"))

    home, test = yield from when_all(home_task, test_task).wait()
    return f"{home}\n\n{test}"


if __name__ == "__main__":
    for fetch in (get_pages_sequential, get_pages_parallel):
        start_time = time.monotonic()
        pages = run(fetch())
        print(f"{fetch.__name__}: {time.monotonic() - start_time:.2f}s")
        print(pages)
