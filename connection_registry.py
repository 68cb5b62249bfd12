"""
Live connection registry for graceful shutdown.

Tracks every open connection and whether a request is currently being
served on it, so that the moment shutdown starts the idle connections can be
reaped and the busy ones reaped as soon as their request finishes.
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from server_handle import ServerEventListener
from shutdown_config import ErrorPolicy


@dataclass
class Connection:
    """One accepted transport connection"""
    conn_id: int
    handle: Any
    idle: bool = True


class ConnectionRegistry(ServerEventListener):
    """Maps connection ids to live connections and their idle state.

    Lifecycle events keep arriving regardless of shutdown state. Reaping
    removes a connection from the registry before its transport is destroyed,
    so the registry never holds an entry for a destroyed connection.
    """

    def __init__(self, destroy: Callable[[Any], None], logger: logging.Logger | None = None,
                 error_policy: ErrorPolicy = ErrorPolicy.SILENT):
        self._destroy = destroy
        self.logger = logger or logging.getLogger("graceful_shutdown")
        self.error_policy = error_policy
        self._connections: dict[int, Connection] = {}
        self._shutting_down = False
        self._lock = threading.Lock()
        self.connection_counter = 0  # Connections opened over the process lifetime

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)

    def __contains__(self, conn_id: int) -> bool:
        with self._lock:
            return conn_id in self._connections

    def get(self, conn_id: int) -> Connection | None:
        with self._lock:
            return self._connections.get(conn_id)

    def is_idle(self, conn_id: int) -> bool | None:
        """Idle flag of a connection, or None if it is not registered"""
        connection = self.get(conn_id)
        return None if connection is None else connection.idle

    def mark_shutting_down(self) -> None:
        """Allow busy connections to be reaped as soon as they become idle"""
        with self._lock:
            self._shutting_down = True

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    # === SERVER EVENTS ===

    def on_connection_open(self, conn_id: int, handle: Any = None) -> None:
        with self._lock:
            if conn_id in self._connections:
                self.logger.warning(f"Connection {conn_id} already registered, ignoring duplicate open")
                return
            self._connections[conn_id] = Connection(conn_id=conn_id, handle=handle)
            self.connection_counter += 1

    def on_connection_close(self, conn_id: int) -> None:
        with self._lock:
            self._connections.pop(conn_id, None)

    def on_request_start(self, conn_id: int) -> None:
        with self._lock:
            connection = self._connections.get(conn_id)
            if connection is not None:
                connection.idle = False

    def on_request_finish(self, conn_id: int) -> None:
        with self._lock:
            connection = self._connections.get(conn_id)
            if connection is None:
                return
            connection.idle = True
        self.reap_one(conn_id)

    # === REAPING ===

    def reap_idle(self) -> int:
        """Destroy and deregister every idle connection. Returns how many were reaped."""
        with self._lock:
            conn_ids = list(self._connections)

        reaped = 0
        for conn_id in conn_ids:
            if self._reap(conn_id):
                reaped += 1
        return reaped

    def reap_one(self, conn_id: int) -> bool:
        """Destroy one connection if it is idle and shutdown is in progress"""
        if not self._shutting_down:
            return False
        return self._reap(conn_id)

    def _reap(self, conn_id: int) -> bool:
        with self._lock:
            connection = self._connections.get(conn_id)
            if connection is None or not connection.idle:
                return False
            del self._connections[conn_id]

        try:
            self._destroy(connection.handle)
        except Exception as e:
            self.error_policy.report(self.logger, f"destroy of connection {conn_id}", e)
        self.logger.debug(f"Reaped idle connection {conn_id}")
        return True

    def get_status(self) -> dict[str, Any]:
        """Snapshot of the registry for status reporting"""
        with self._lock:
            idle = [c.conn_id for c in self._connections.values() if c.idle]
            busy = [c.conn_id for c in self._connections.values() if not c.idle]
        return {
            'total_connections': len(idle) + len(busy),
            'idle': idle,
            'busy': busy,
            'connection_counter': self.connection_counter,
            'shutting_down': self._shutting_down,
        }
