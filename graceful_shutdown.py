"""
Graceful shutdown wiring.

    server = StreamServerHandle(handler, port=8080)
    await server.start()
    graceful_shutdown(server, timeout=10.0, on_shutdown=close_database)

Composes the connection registry, the shutdown orchestrator and the signal
listener around one server handle.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from connection_registry import ConnectionRegistry
from server_handle import ServerHandle
from shutdown_config import ShutdownOptions
from shutdown_orchestrator import ShutdownOrchestrator
from signal_listener import SignalListener


@dataclass
class GracefulShutdown:
    """Components installed for one server"""
    server: ServerHandle
    registry: ConnectionRegistry
    orchestrator: ShutdownOrchestrator
    signal_listener: SignalListener

    def shutdown(self, reason: str = "manual") -> asyncio.Task | None:
        """Trigger shutdown without a signal"""
        return self.orchestrator.trigger(reason)

    def get_status(self) -> dict[str, Any]:
        status = self.orchestrator.get_status()
        status['signals'] = self.signal_listener.installed_signals
        return status


def graceful_shutdown(server: ServerHandle, options: ShutdownOptions | None = None,
                      logger: logging.Logger | None = None,
                      exit_func: Callable[[int], None] | None = None,
                      loop: asyncio.AbstractEventLoop | None = None,
                      **overrides: Any) -> GracefulShutdown:
    """Install graceful shutdown handling on server.

    Keyword overrides replace the matching ShutdownOptions fields, so
    graceful_shutdown(server, timeout=5) works without building options first.
    """
    options = options or ShutdownOptions()
    if overrides:
        options = options.with_overrides(**overrides)
    logger = logger or logging.getLogger("graceful_shutdown")

    registry = ConnectionRegistry(server.destroy, logger, options.error_policy)
    server.subscribe(registry)

    orchestrator = ShutdownOrchestrator(server, registry, options, logger, exit_func)
    orchestrator.register_exit_hook()

    listener = SignalListener(options.signal_names, orchestrator.trigger, logger, loop)
    listener.install()

    logger.debug(
        f"Graceful shutdown installed (signals: {options.signal_names}, "
        f"timeout: {options.timeout}, development: {options.development})"
    )
    return GracefulShutdown(server, registry, orchestrator, listener)
