import pytest

from coop_loop.clock import VirtualClock
from coop_loop.config import SchedulerConfig
from coop_loop.log import configure_logging, get_logger
from coop_loop.scheduler import Scheduler


class TestSchedulerConfig:
    def test_reads_environment(self) -> None:
        config = SchedulerConfig.from_env(
            {"COOP_LOOP_POOL_SIZE": "3", "COOP_LOOP_LOG_LEVEL": "debug"}
        )

        assert config.pool_size == 3
        assert config.log_level == "DEBUG"

    def test_defaults_without_environment(self, monkeypatch) -> None:
        monkeypatch.setattr("os.cpu_count", lambda: 2)
        config = SchedulerConfig.from_env({})

        assert config.pool_size == 4
        assert config.log_level == "INFO"

    def test_rejects_non_integer_pool_size(self) -> None:
        with pytest.raises(ValueError, match="COOP_LOOP_POOL_SIZE"):
            SchedulerConfig.from_env({"COOP_LOOP_POOL_SIZE": "many"})

    def test_rejects_empty_pool(self) -> None:
        with pytest.raises(ValueError, match="at least 1"):
            SchedulerConfig(pool_size=0)

    def test_builds_scheduler(self) -> None:
        config = SchedulerConfig(pool_size=3, log_level="WARNING")
        clock = VirtualClock()

        with Scheduler.from_config(config, clock=clock) as scheduler:
            assert scheduler.pool_size == 3
            assert scheduler.clock is clock


class TestLogging:
    def test_rejects_unknown_level(self) -> None:
        with pytest.raises(ValueError, match="Unknown log level"):
            configure_logging("chatty")

    def test_filters_below_level(self, capsys) -> None:
        configure_logging("WARNING")
        logger = get_logger(__name__)

        logger.info("hidden event")
        logger.warning("shown event", key="value")

        out = capsys.readouterr().out
        assert "hidden event" not in out
        assert "shown event" in out
