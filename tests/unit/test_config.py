"""
Tests for run configuration and logging setup.
"""

import logging

import pytest

from fleetwright import config as config_module
from fleetwright.config import RunConfig, configure, get_config, set_config
from fleetwright.log import configure_logging, get_level_from_verbosity


class TestRunConfig:
    """Test RunConfig defaults and validation."""

    def test_defaults(self):
        config = RunConfig()
        assert config.forks == 5
        assert config.check_mode is False
        assert config.batch_size is None
        assert config.transient_retries == 2
        assert config.default_connection == "ssh"
        assert config.tags == []

    @pytest.mark.parametrize("kwargs", [
        {"forks": 0},
        {"batch_size": 0},
        {"transient_retries": -1},
    ])
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            RunConfig(**kwargs)

    def test_copy(self):
        config = RunConfig(forks=3)
        other = config.copy(check_mode=True)
        assert other.forks == 3
        assert other.check_mode
        assert not config.check_mode


class TestFromEnv:
    """Test reading FLEETWRIGHT_* variables."""

    def test_values_coerced(self):
        config = RunConfig.from_env({
            "FLEETWRIGHT_FORKS": "10",
            "FLEETWRIGHT_CHECK_MODE": "yes",
            "FLEETWRIGHT_RETRY_DELAY": "0.5",
            "FLEETWRIGHT_TAGS": "web, db,",
            "FLEETWRIGHT_LIMIT": "web:!web3",
            "UNRELATED": "1",
        })
        assert config.forks == 10
        assert config.check_mode is True
        assert config.retry_delay == 0.5
        assert config.tags == ["web", "db"]
        assert config.limit == "web:!web3"

    def test_empty_values_ignored(self):
        config = RunConfig.from_env({"FLEETWRIGHT_FORKS": "", "FLEETWRIGHT_BATCH_SIZE": ""})
        assert config.forks == 5
        assert config.batch_size is None

    def test_overrides_win(self):
        config = RunConfig.from_env({"FLEETWRIGHT_FORKS": "10"}, forks=2)
        assert config.forks == 2

    def test_bad_number(self):
        with pytest.raises(ValueError):
            RunConfig.from_env({"FLEETWRIGHT_FORKS": "many"})

    def test_reads_os_environ(self, monkeypatch):
        monkeypatch.setenv("FLEETWRIGHT_IGNORE_FAILURES", "true")
        assert RunConfig.from_env().ignore_failures is True


class TestGlobalConfig:
    """Test the module-level config."""

    @pytest.fixture(autouse=True)
    def restore(self):
        saved = config_module._config
        yield
        config_module._config = saved

    def test_set_and_get(self):
        config = RunConfig(forks=7)
        set_config(config)
        assert get_config() is config

    def test_configure(self):
        set_config(RunConfig())
        configure(forks=9, unknown_setting=True)
        assert get_config().forks == 9
        assert not hasattr(get_config(), "unknown_setting")


class TestLogging:
    """Test logging configuration."""

    @pytest.fixture(autouse=True)
    def reset_logger(self):
        yield
        logger = logging.getLogger("fleetwright")
        for handler in logger.handlers[:]:
            if getattr(handler, "_fleetwright_handler", False):
                logger.removeHandler(handler)
        logger.setLevel(logging.NOTSET)

    @pytest.mark.parametrize("verbosity,level", [
        (0, logging.WARNING),
        (1, logging.INFO),
        (2, logging.DEBUG),
        (5, logging.DEBUG),
        (-1, logging.WARNING),
    ])
    def test_levels(self, verbosity, level):
        assert get_level_from_verbosity(verbosity) == level

    def test_configure_replaces_handler(self):
        logger = configure_logging(1)
        first = [h for h in logger.handlers if getattr(h, "_fleetwright_handler", False)]
        logger = configure_logging(2)
        second = [h for h in logger.handlers if getattr(h, "_fleetwright_handler", False)]

        assert len(first) == 1
        assert len(second) == 1
        assert first[0] is not second[0]
        assert logger.level == logging.DEBUG

    def test_engine_logs_reach_handler(self, caplog):
        configure_logging(1)
        with caplog.at_level(logging.INFO, logger="fleetwright"):
            logging.getLogger("fleetwright.engine.coordinator").info("hello")
        assert "hello" in caplog.text
