"""
Graceful Shutdown Orchestrator

Runs the shutdown sequence of a server process once a termination signal
arrives:

1. development mode exits at once with code 0
2. later triggers are ignored once shutdown has started
3. a forced-exit timer is armed (exit code 1 when it fires)
4. idle connections are reaped
5. the on_shutdown hook is awaited
6. the listening socket is closed and the process exits with code 0

The finally hook runs exactly once, whichever exit is taken.
"""

import asyncio
import atexit
import logging
import os
import sys
import threading
from collections.abc import Callable
from enum import Enum
from typing import Any

from connection_registry import ConnectionRegistry
from exit_codes import ShutdownExitCode, get_exit_code_description
from server_handle import ServerHandle
from shutdown_config import ShutdownOptions
from system_utils import log_system_state


class ShutdownState(Enum):
    """Shutdown states. SHUTTING_DOWN is terminal."""
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"


def exit_process(code: int) -> None:
    """Terminate the process with the given exit code.

    A forced exit skips interpreter cleanup so a stuck event loop or
    hook cannot hold it up.
    """
    if code == ShutdownExitCode.FORCED:
        logging.shutdown()
        os._exit(int(code))
    sys.exit(int(code))


class ShutdownOrchestrator:
    """State machine driving one server through shutdown"""

    def __init__(self, server: ServerHandle, registry: ConnectionRegistry,
                 options: ShutdownOptions | None = None,
                 logger: logging.Logger | None = None,
                 exit_func: Callable[[int], None] | None = None):
        self.server = server
        self.registry = registry
        self.options = options or ShutdownOptions()
        self.logger = logger or logging.getLogger("graceful_shutdown")
        self._exit_func = exit_func or exit_process

        self._state = ShutdownState.RUNNING
        self._shutdown_reason: str | None = None
        self._state_lock = threading.Lock()

        self._exit_code: ShutdownExitCode | None = None
        self._exit_lock = threading.Lock()
        self._finally_ran = False
        self._finally_lock = threading.Lock()

        self._force_timer: threading.Timer | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def state(self) -> ShutdownState:
        return self._state

    def is_shutting_down(self) -> bool:
        return self._state is ShutdownState.SHUTTING_DOWN

    def get_shutdown_reason(self) -> str | None:
        return self._shutdown_reason

    @property
    def exit_code(self) -> ShutdownExitCode | None:
        """Exit code of the first exit taken, None while the process is alive"""
        return self._exit_code

    def register_exit_hook(self) -> None:
        """Run the finally hook on interpreter exit paths that bypass the orchestrator"""
        atexit.register(self.run_finally_hook)

    # === TRIGGER ===

    def trigger(self, signal_name: str = "manual") -> asyncio.Task | None:
        """Start the shutdown sequence.

        Returns the task running cleanup and listener close when called
        inside an event loop, None when the call had no further effect.
        """
        self.logger.debug(f"shutdown signal - {signal_name}")

        if self.options.development:
            self.logger.debug("DEV-Mode - immediate forceful shutdown")
            self._exit(ShutdownExitCode.GRACEFUL)
            return None

        with self._state_lock:
            if self._state is ShutdownState.SHUTTING_DOWN:
                self.logger.debug(
                    f"Shutdown already initiated (reason: {self._shutdown_reason}), ignoring {signal_name}"
                )
                return None
            self._state = ShutdownState.SHUTTING_DOWN
            self._shutdown_reason = signal_name
            self.registry.mark_shutting_down()

        self.logger.info(f"Shutting down (reason: {signal_name})")
        log_system_state(self.logger, "SHUTDOWN_STARTING")

        self._start_force_timer()

        destroyed = self.registry.reap_idle()
        self.logger.debug(f"Connections destroyed : {destroyed}")
        self.logger.debug(f"Connection Counter    : {self.registry.connection_counter}")

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(self._finish_shutdown_until_closed())
            return None

        task = loop.create_task(self._finish_shutdown())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # === SEQUENCE ===

    def _start_force_timer(self) -> None:
        if not self.options.forced_timeout_enabled:
            return

        # Daemon thread: never keeps the process alive, fires even if the loop is blocked
        self._force_timer = threading.Timer(self.options.timeout, self._force_exit)
        self._force_timer.daemon = True
        self._force_timer.name = "graceful-shutdown-timeout"
        self._force_timer.start()
        self.logger.debug(f"Forced shutdown timer armed ({self.options.timeout}s)")

    async def _finish_shutdown(self, on_closed: Callable[[BaseException | None], None] | None = None) -> None:
        if self.options.on_shutdown is not None:
            self.logger.debug("Running on_shutdown hook")
            try:
                await self.options.on_shutdown()
            except Exception as e:
                self.options.error_policy.report(self.logger, "on_shutdown hook", e)

        self.server.close(on_closed or self._on_server_closed)

    async def _finish_shutdown_until_closed(self) -> None:
        """Run the sequence in a private loop that stays up until the listener confirms close"""
        loop = asyncio.get_running_loop()
        closed: asyncio.Future = loop.create_future()

        def on_closed(error: BaseException | None = None) -> None:
            loop.call_soon_threadsafe(resolve, error)

        def resolve(error: BaseException | None) -> None:
            if not closed.done():
                closed.set_result(error)

        await self._finish_shutdown(on_closed)
        self._on_server_closed(await closed)

    def _on_server_closed(self, error: BaseException | None = None) -> None:
        if error is not None:
            self.options.error_policy.report(self.logger, "listener close", error)
        self.logger.info("Listener closed")
        self._exit(ShutdownExitCode.GRACEFUL)

    def _force_exit(self) -> None:
        self.logger.warning(
            f"Could not close connections in time ({self.options.timeout}s), forcefully shutting down"
        )
        log_system_state(self.logger, "SHUTDOWN_FORCED")
        self._exit(ShutdownExitCode.FORCED)

    # === EXIT ===

    def _exit(self, code: ShutdownExitCode) -> None:
        with self._exit_lock:
            # A timer that fired before the graceful exit cancelled it still forces the exit
            if self._exit_code is not None and not (
                code is ShutdownExitCode.FORCED and self._exit_code is ShutdownExitCode.GRACEFUL
            ):
                self.logger.debug(f"Exit already in progress ({self._exit_code.name}), ignoring {code.name}")
                return
            self._exit_code = code

        self.logger.info(f"Exiting with code {int(code)}: {get_exit_code_description(code)}")
        if code is ShutdownExitCode.GRACEFUL:
            self._cancel_force_timer()
        self.run_finally_hook()
        self._exit_func(int(code))

    def _cancel_force_timer(self) -> None:
        if self._force_timer is not None:
            self._force_timer.cancel()

    def run_finally_hook(self) -> None:
        """Invoke the finally hook unless it has already run"""
        with self._finally_lock:
            if self._finally_ran:
                return
            self._finally_ran = True

        if self.options.finally_hook is not None:
            try:
                self.options.finally_hook()
            except Exception as e:
                self.options.error_policy.report(self.logger, "finally hook", e)
        self.logger.debug("closed")

    def get_status(self) -> dict[str, Any]:
        """Get shutdown status for reporting"""
        return {
            'state': self._state.value,
            'reason': self._shutdown_reason,
            'exit_code': None if self._exit_code is None else int(self._exit_code),
            'forced_timeout': self.options.timeout if self.options.forced_timeout_enabled else None,
            'connections': self.registry.get_status(),
        }
