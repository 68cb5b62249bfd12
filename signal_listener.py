"""
Signal listener for graceful shutdown.

Subscribes to the configured termination signals and hands each delivery
to the shutdown trigger. Handlers are installed on the running event loop
where possible, falling back to signal.signal otherwise.
"""

import asyncio
import logging
import signal
from collections.abc import Callable, Iterable


def parse_signal_names(signals: str | Iterable[str]) -> list[str]:
    """Split a space separated signal string, ignoring empty and blank entries"""
    candidates = signals.split(" ") if isinstance(signals, str) else signals
    return [name.strip() for name in candidates if name and name.strip()]


def resolve_signal(name: str) -> signal.Signals | None:
    """Map a signal name such as 'SIGTERM' to its number, None if unknown here"""
    try:
        return signal.Signals[name.upper()]
    except KeyError:
        return None


class SignalListener:
    """Routes termination signals to a shutdown trigger"""

    def __init__(self, signals: str | Iterable[str], trigger: Callable[[str], object],
                 logger: logging.Logger | None = None,
                 loop: asyncio.AbstractEventLoop | None = None):
        self.signal_names = parse_signal_names(signals)
        self._trigger = trigger
        self.logger = logger or logging.getLogger("graceful_shutdown")
        self._loop = loop
        self._installed: dict[signal.Signals, str] = {}
        self._previous_handlers: dict[signal.Signals, object] = {}
        self._loop_handlers: set[signal.Signals] = set()

    @property
    def installed_signals(self) -> list[str]:
        return list(self._installed.values())

    def install(self) -> list[str]:
        """Register one handler per configured signal name. Returns the names registered."""
        loop = self._loop
        if loop is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None

        for name in self.signal_names:
            signum = resolve_signal(name)
            if signum is None:
                self.logger.warning(f"Unknown signal {name}, not listening for it")
                continue
            if signum in self._installed:
                continue

            if loop is not None and self._install_on_loop(loop, signum, name):
                self._loop_handlers.add(signum)
            else:
                try:
                    self._previous_handlers[signum] = signal.signal(
                        signum, lambda signo, frame, name=name: self._handle(name)
                    )
                except (OSError, ValueError) as e:
                    self.logger.warning(f"Cannot listen for signal {name} ({e}), skipping it")
                    continue
            self._installed[signum] = name

        self.logger.debug(f"Signal handlers registered for {', '.join(self.installed_signals) or 'no signals'}")
        return self.installed_signals

    def _install_on_loop(self, loop: asyncio.AbstractEventLoop, signum: signal.Signals, name: str) -> bool:
        try:
            loop.add_signal_handler(signum, self._handle, name)
        except (NotImplementedError, RuntimeError) as e:
            self.logger.debug(f"Event loop cannot handle {name} ({e}), using signal.signal")
            return False
        self._loop = loop
        return True

    def _handle(self, name: str) -> None:
        self.logger.info(f"Received signal {name}")
        self._trigger(name)

    def remove(self) -> None:
        """Restore the handlers that were in place before install()"""
        for signum in list(self._installed):
            if signum in self._loop_handlers:
                self._loop.remove_signal_handler(signum)
            else:
                previous = self._previous_handlers.get(signum)
                signal.signal(signum, previous if previous is not None else signal.SIG_DFL)
        self._installed.clear()
        self._loop_handlers.clear()
        self._previous_handlers.clear()
