"""
Tests for shutdown configuration.
"""

import logging
from unittest.mock import AsyncMock, Mock

import pytest

from shutdown_config import (
    DEFAULT_SIGNALS,
    DEFAULT_TIMEOUT,
    ENV_DEVELOPMENT,
    ENV_SIGNALS,
    ENV_TIMEOUT,
    ErrorPolicy,
    ShutdownOptions,
)


@pytest.fixture
def clean_env(monkeypatch):
    """Make sure no GRACEFUL_SHUTDOWN_* variables leak in or out."""
    for name in (ENV_SIGNALS, ENV_TIMEOUT, ENV_DEVELOPMENT):
        # setenv first so monkeypatch restores the variable's absence afterwards
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)
    return monkeypatch


class TestShutdownOptions:

    def test_defaults(self):
        options = ShutdownOptions()

        assert options.signals == DEFAULT_SIGNALS
        assert options.signal_names == ["SIGINT", "SIGTERM"]
        assert options.timeout == DEFAULT_TIMEOUT
        assert options.forced_timeout_enabled is True
        assert options.development is False
        assert options.on_shutdown is None
        assert options.finally_hook is None
        assert options.error_policy is ErrorPolicy.SILENT

    def test_options_are_immutable(self):
        options = ShutdownOptions()
        with pytest.raises(AttributeError):
            options.timeout = 1.0

    def test_signal_names_drop_empty_entries(self):
        assert ShutdownOptions(signals=" SIGHUP  ").signal_names == ["SIGHUP"]
        assert ShutdownOptions(signals=["SIGINT", ""]).signal_names == ["SIGINT"]

    @pytest.mark.parametrize("timeout", [0, 0.0, None])
    def test_zero_or_absent_timeout_disables_forced_exit(self, timeout):
        assert ShutdownOptions(timeout=timeout).forced_timeout_enabled is False

    def test_negative_timeout_rejected(self):
        with pytest.raises(ValueError, match="must not be negative"):
            ShutdownOptions(timeout=-1)

    def test_non_callable_hooks_rejected(self):
        with pytest.raises(TypeError, match="on_shutdown must be callable"):
            ShutdownOptions(on_shutdown="close the db")
        with pytest.raises(TypeError, match="finally_hook must be callable"):
            ShutdownOptions(finally_hook=42)

    def test_hooks_accepted(self):
        options = ShutdownOptions(on_shutdown=AsyncMock(), finally_hook=Mock())
        assert callable(options.on_shutdown)
        assert callable(options.finally_hook)

    def test_error_policy_from_string(self):
        assert ShutdownOptions(error_policy="log").error_policy is ErrorPolicy.LOG

    def test_with_overrides(self):
        options = ShutdownOptions().with_overrides(timeout=5, development=True)

        assert options.timeout == 5
        assert options.development is True
        assert options.signals == DEFAULT_SIGNALS


class TestFromEnv:

    def test_defaults_without_environment(self, clean_env, tmp_path):
        options = ShutdownOptions.from_env(tmp_path / "missing.env")
        assert options == ShutdownOptions()

    def test_reads_environment(self, clean_env, tmp_path):
        clean_env.setenv(ENV_SIGNALS, "SIGHUP SIGTERM")
        clean_env.setenv(ENV_TIMEOUT, "2.5")
        clean_env.setenv(ENV_DEVELOPMENT, "true")

        options = ShutdownOptions.from_env(tmp_path / "missing.env")

        assert options.signal_names == ["SIGHUP", "SIGTERM"]
        assert options.timeout == 2.5
        assert options.development is True

    def test_reads_dotenv_file(self, clean_env, tmp_path):
        dotenv_file = tmp_path / ".env"
        dotenv_file.write_text(f"{ENV_TIMEOUT}=7\n{ENV_DEVELOPMENT}=no\n")

        options = ShutdownOptions.from_env(dotenv_file)

        assert options.timeout == 7.0
        assert options.development is False

    def test_overrides_win(self, clean_env, tmp_path):
        clean_env.setenv(ENV_TIMEOUT, "2.5")

        options = ShutdownOptions.from_env(tmp_path / "missing.env", timeout=0, signals="SIGUSR1")

        assert options.timeout == 0
        assert options.signal_names == ["SIGUSR1"]

    def test_invalid_timeout(self, clean_env, tmp_path):
        clean_env.setenv(ENV_TIMEOUT, "soon")

        with pytest.raises(ValueError, match="must be a number of seconds"):
            ShutdownOptions.from_env(tmp_path / "missing.env")


class TestErrorPolicy:

    def test_silent_reports_at_debug(self, mock_logger):
        ErrorPolicy.SILENT.report(mock_logger, "cleanup", RuntimeError("boom"))

        mock_logger.debug.assert_called_once_with("Ignored error during cleanup: boom")
        mock_logger.warning.assert_not_called()

    def test_log_reports_at_warning(self, mock_logger):
        ErrorPolicy.LOG.report(mock_logger, "cleanup", RuntimeError("boom"))

        mock_logger.warning.assert_called_once_with("Error during cleanup: boom")

    def test_policies_never_raise(self, test_logger):
        for policy in ErrorPolicy:
            policy.report(test_logger, "cleanup", RuntimeError("boom"))
        assert test_logger.isEnabledFor(logging.DEBUG)
