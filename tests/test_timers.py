import threading

import pytest

from coop_loop.clock import MonotonicClock, VirtualClock
from coop_loop.timers import TimerQueue, sleep


class TestTimerQueue:
    def test_fires_in_deadline_order(self) -> None:
        timers = TimerQueue()
        fired: list[str] = []
        timers.schedule(2, lambda: fired.append("late"))
        timers.schedule(1, lambda: fired.append("early"))

        assert timers.next_deadline() == 1
        assert timers.fire_due(0.5) == 0
        assert timers.fire_due(2) == 2
        assert fired == ["early", "late"]
        assert len(timers) == 0

    def test_ties_broken_by_order_then_insertion(self) -> None:
        timers = TimerQueue()
        fired: list[str] = []
        timers.schedule(1, lambda: fired.append("b"), order=2)
        timers.schedule(1, lambda: fired.append("a"), order=1)
        timers.schedule(1, lambda: fired.append("c"), order=2)

        timers.fire_due(1)

        assert fired == ["a", "b", "c"]

    def test_disposed_timer_never_fires(self) -> None:
        timers = TimerQueue()
        fired: list[str] = []
        handle = timers.schedule(1, lambda: fired.append("x"))

        handle.dispose()

        assert not handle.pending
        assert timers.next_deadline() is None
        assert timers.fire_due(5) == 0
        assert fired == []

    def test_callback_may_dispose_later_timer(self) -> None:
        timers = TimerQueue()
        fired: list[str] = []
        second = timers.schedule(1, lambda: fired.append("second"), order=2)
        timers.schedule(1, second.dispose, order=1)

        timers.fire_due(1)

        assert fired == []

    def test_clear_disposes_everything(self) -> None:
        timers = TimerQueue()
        handle = timers.schedule(1, lambda: None)

        timers.clear()

        assert handle.disposed
        assert len(timers) == 0


class TestClocks:
    def test_virtual_clock_jumps_to_deadline(self) -> None:
        clock = VirtualClock()
        clock.wait(threading.Event(), 5)
        assert clock.now() == 5

    def test_virtual_clock_stays_put_when_woken(self) -> None:
        clock = VirtualClock()
        wakeup = threading.Event()
        wakeup.set()
        clock.wait(wakeup, 5)
        assert clock.now() == 0

    def test_virtual_clock_holds_still_while_steps_run(self) -> None:
        clock = VirtualClock()
        wakeup = threading.Event()
        timer = threading.Timer(0.05, wakeup.set)
        timer.start()

        clock.wait(wakeup, 5, may_advance=False)

        assert wakeup.is_set()
        assert clock.now() == 0

    def test_virtual_clock_never_goes_backwards(self) -> None:
        clock = VirtualClock()
        clock.advance(3)
        clock.wait(threading.Event(), 1)
        assert clock.now() == 3
        with pytest.raises(ValueError, match="backwards"):
            clock.advance(-1)

    def test_monotonic_clock_waits_until_deadline(self, timing) -> None:
        clock = MonotonicClock()
        timing.start()
        clock.wait(threading.Event(), clock.now() + 0.1)
        timing.assert_elapsed_between(0.05, 0.3, msg="wait should last about 0.1s")


class TestSleep:
    def test_sleep_advances_simulated_time(self, run_coro, virtual_clock) -> None:
        run_coro(sleep(2.5))
        assert virtual_clock.now() == 2.5

    def test_zero_sleep_is_a_checkpoint(self, run_coro, virtual_clock) -> None:
        run_coro(sleep(0))
        assert virtual_clock.now() == 0

    def test_real_sleep(self, timing) -> None:
        from coop_loop.scheduler import run  # noqa: PLC0415

        timing.start()
        run(sleep(0.1), pool_size=1)
        timing.assert_elapsed_between(0.05, 0.3, msg="sleep(0.1) on wall time")
