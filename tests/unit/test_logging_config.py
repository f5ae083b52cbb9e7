"""Unit tests for logging configuration."""

import logging

import pytest

from keygate import logging_config
from keygate.logging_config import NOISY_LOGGERS, configure_logging


@pytest.fixture(autouse=True)
def _restore_root_logger(monkeypatch, test_settings):
    monkeypatch.setattr(logging_config, "get_settings", lambda: test_settings)
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


class TestConfigureLogging:
    def test_application_level(self):
        configure_logging("DEBUG")

        assert logging.getLogger("keygate").level == logging.DEBUG
        assert logging.getLogger("keygate.security").level == logging.DEBUG

    def test_defaults_to_settings_level(self):
        configure_logging()

        (handler,) = logging.getLogger().handlers
        assert handler.level == logging.INFO

    def test_noisy_loggers_clamped(self):
        configure_logging("DEBUG")

        for name in NOISY_LOGGERS:
            assert logging.getLogger(name).level >= logging.WARNING
