"""
Configuration for graceful shutdown.

The options are captured once when shutdown handling is installed and never
change afterwards. They can be built directly or read from the environment
(with an optional .env file).
"""

import logging
import os
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, replace
from enum import Enum
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from signal_listener import parse_signal_names

DEFAULT_SIGNALS = "SIGINT SIGTERM"
DEFAULT_TIMEOUT = 30.0

ENV_SIGNALS = "GRACEFUL_SHUTDOWN_SIGNALS"
ENV_TIMEOUT = "GRACEFUL_SHUTDOWN_TIMEOUT"
ENV_DEVELOPMENT = "GRACEFUL_SHUTDOWN_DEVELOPMENT"

_TRUE_VALUES = {"1", "true", "yes", "on"}


class ErrorPolicy(Enum):
    """What to do with errors raised while shutting down.

    Errors are never propagated to a caller; the policy only decides whether
    they show up in the logs.
    """

    SILENT = "silent"
    LOG = "log"

    def report(self, logger: logging.Logger, context: str, error: BaseException) -> None:
        """Report an error raised during shutdown according to this policy"""
        if self is ErrorPolicy.LOG:
            logger.warning(f"Error during {context}: {error}")
        else:
            logger.debug(f"Ignored error during {context}: {error}")


@dataclass(frozen=True)
class ShutdownOptions:
    """Immutable snapshot of the shutdown configuration"""

    signals: str | Sequence[str] = DEFAULT_SIGNALS
    timeout: float | None = DEFAULT_TIMEOUT
    development: bool = False
    on_shutdown: Callable[[], Awaitable[Any]] | None = None
    finally_hook: Callable[[], None] | None = None
    error_policy: ErrorPolicy = ErrorPolicy.SILENT

    def __post_init__(self):
        if self.timeout is not None and self.timeout < 0:
            raise ValueError(f"Shutdown timeout must not be negative, got {self.timeout}")
        if self.on_shutdown is not None and not callable(self.on_shutdown):
            raise TypeError("on_shutdown must be callable")
        if self.finally_hook is not None and not callable(self.finally_hook):
            raise TypeError("finally_hook must be callable")
        if not isinstance(self.error_policy, ErrorPolicy):
            object.__setattr__(self, "error_policy", ErrorPolicy(self.error_policy))

    @property
    def signal_names(self) -> list[str]:
        """Signal names to listen for, with empty entries removed"""
        return parse_signal_names(self.signals)

    @property
    def forced_timeout_enabled(self) -> bool:
        return bool(self.timeout)

    @classmethod
    def from_env(cls, dotenv_path: str | Path | None = None, **overrides: Any) -> "ShutdownOptions":
        """Build options from GRACEFUL_SHUTDOWN_* environment variables.

        A .env file is loaded first when present. Keyword overrides take
        precedence over anything found in the environment.
        """
        if dotenv_path is not None:
            if Path(dotenv_path).exists():
                load_dotenv(dotenv_path)
        elif os.path.exists(".env"):
            load_dotenv()

        values: dict[str, Any] = {}
        if os.getenv(ENV_SIGNALS) is not None:
            values["signals"] = os.getenv(ENV_SIGNALS)
        if os.getenv(ENV_TIMEOUT):
            try:
                values["timeout"] = float(os.environ[ENV_TIMEOUT])
            except ValueError:
                raise ValueError(
                    f"{ENV_TIMEOUT} must be a number of seconds, got {os.environ[ENV_TIMEOUT]!r}"
                ) from None
        if os.getenv(ENV_DEVELOPMENT) is not None:
            values["development"] = os.environ[ENV_DEVELOPMENT].strip().lower() in _TRUE_VALUES

        values.update(overrides)
        return cls(**values)

    def with_overrides(self, **changes: Any) -> "ShutdownOptions":
        """Return a copy with the given fields replaced"""
        return replace(self, **changes)
