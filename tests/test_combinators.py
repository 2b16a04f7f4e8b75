import pytest

from coop_loop.cancellation import CancellationSource
from coop_loop.combinators import when_all
from coop_loop.task import Task
from coop_loop.exceptions import Cancelled, InvalidStateError, StepFailure
from coop_loop.timers import sleep
from coop_loop.typedefs import Coro


def value_after(delay: float, value: object) -> Coro[object]:
    yield from sleep(delay)
    return value


def fail_after(delay: float, error: BaseException) -> Coro[None]:
    yield from sleep(delay)
    raise error


class TestWhenAll:
    def test_empty_resolves_immediately(self, scheduler) -> None:
        handle = scheduler.when_all()

        assert handle.is_completed
        assert handle.result() == ()
        assert when_all().result() == ()

    def test_unsubmitted_member_fails_the_group(self, scheduler) -> None:
        orphan = Task(gen=value_after(1, "never"))
        combined = scheduler.when_all(orphan)

        scheduler.run()

        assert combined.is_failed
        assert isinstance(combined.exception(), InvalidStateError)

    def test_results_in_argument_order(self, scheduler, virtual_clock) -> None:
        slow = scheduler.submit(value_after(3, "slow"))
        fast = scheduler.submit(value_after(1, "fast"))
        combined = scheduler.when_all(slow, fast)

        scheduler.run()

        assert combined.result() == ("slow", "fast")
        assert virtual_clock.now() == 3

    def test_fails_as_soon_as_first_member_fails(
        self, scheduler, virtual_clock
    ) -> None:
        resolved_at: list[float] = []
        error = ValueError("Oopsie!")

        failing = scheduler.submit(fail_after(1, error))
        completing = scheduler.submit(value_after(5, "late"))
        combined = scheduler.when_all(failing, completing)

        def watcher() -> Coro[None]:
            try:
                yield from combined.wait()
            except StepFailure:
                resolved_at.append(virtual_clock.now())

        scheduler.submit(watcher())
        scheduler.run()

        assert resolved_at == [1]
        assert combined.is_failed
        assert combined.exception() is error
        # The other member was not cancelled by the combinator.
        assert completing.result() == "late"
        assert virtual_clock.now() == 5

    def test_first_failure_in_time_wins(self, scheduler) -> None:
        late_error = KeyError("late")
        early_error = LookupError("early")
        late = scheduler.submit(fail_after(2, late_error))
        early = scheduler.submit(fail_after(1, early_error))
        combined = scheduler.when_all(late, early)

        scheduler.run()

        with pytest.raises(StepFailure) as exc_info:
            combined.result()
        assert exc_info.value.error is early_error
        assert late in scheduler.unobserved_failures
        assert early not in scheduler.unobserved_failures

    def test_cancelled_member_cancels_combinator(self, scheduler) -> None:
        source = CancellationSource()
        source.with_timeout(1, scheduler=scheduler)
        cancelled = scheduler.submit(value_after(10, "never"), cancellation=source)
        completing = scheduler.submit(value_after(2, "done"))
        combined = scheduler.when_all(cancelled, completing)

        scheduler.run()

        assert combined.is_cancelled
        with pytest.raises(Cancelled):
            combined.result()
        assert completing.result() == "done"

    def test_failure_beats_cancellation(self, scheduler) -> None:
        source = CancellationSource()
        source.trigger()
        cancelled = scheduler.submit(value_after(1, "never"), cancellation=source)
        failing = scheduler.submit(fail_after(2, RuntimeError("broken")))
        combined = scheduler.when_all(cancelled, failing)

        scheduler.run()

        assert combined.is_failed

    def test_resolves_exactly_once(self, scheduler) -> None:
        first = scheduler.submit(fail_after(1, RuntimeError("first")))
        second = scheduler.submit(fail_after(2, RuntimeError("second")))
        combined = scheduler.when_all(first, second)

        scheduler.run()

        assert combined.is_failed
        assert str(combined.exception()) == "first"
        assert combined.steps == 2

    def test_members_already_done(self, scheduler) -> None:
        member = scheduler.submit(value_after(1, 1))
        scheduler.run()

        combined = scheduler.when_all(member)
        scheduler.run()

        assert combined.result() == (1,)

    def test_from_inside_task(self, run_coro) -> None:
        from coop_loop.lowlevel import get_running_scheduler  # noqa: PLC0415

        def entry() -> Coro[tuple]:
            scheduler = get_running_scheduler()
            handles = [scheduler.submit(value_after(n, n)) for n in (2, 1)]
            return (yield from when_all(*handles).wait())

        assert run_coro(entry()) == (2, 1)
