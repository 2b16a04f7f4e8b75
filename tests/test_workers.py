import pytest

from coop_loop.workers import WorkerPool, default_pool_size


class TestWorkerPool:
    def test_slots_are_bounded(self) -> None:
        pool = WorkerPool(size=2)

        first = pool.acquire(1)
        second = pool.acquire(2)

        assert first is not None
        assert second is not None
        assert pool.acquire(3) is None
        assert pool.occupied_slots == 2

        pool.release(first)
        assert pool.free_slots == 1
        assert pool.acquire(3) is first

    def test_runs_on_acquired_slot(self) -> None:
        with WorkerPool(size=1) as pool:
            slot = pool.acquire(1)
            assert slot is not None
            assert pool.run(slot, lambda: "ran").result() == "ran"

    def test_run_requires_acquired_slot(self) -> None:
        with WorkerPool(size=1) as pool:
            with pytest.raises(RuntimeError, match="not acquired"):
                pool.run(pool.slots[0], lambda: None)

    def test_run_requires_started_pool(self) -> None:
        pool = WorkerPool(size=1)
        slot = pool.acquire(1)
        assert slot is not None
        with pytest.raises(RuntimeError, match="not running"):
            pool.run(slot, lambda: None)

    def test_rejects_empty_pool(self) -> None:
        with pytest.raises(ValueError, match="at least 1"):
            WorkerPool(size=0)


def test_default_pool_size(monkeypatch) -> None:
    monkeypatch.setattr("os.cpu_count", lambda: None)
    assert default_pool_size() == 2
