"""
Server collaborator interfaces for graceful shutdown.

The shutdown components never own the transport or the accept loop. They
observe a server through ServerEventListener notifications and drive it
through the three control operations of ServerHandle.

StreamServerHandle is the asyncio implementation used by the CLI and the
integration tests: it wraps asyncio.start_server, assigns connection ids at
accept time and lets the application mark request boundaries.
"""

import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any


CloseCallback = Callable[[BaseException | None], None]


class ServerEventListener(ABC):
    """Observer for connection and request lifecycle events"""

    @abstractmethod
    def on_connection_open(self, conn_id: int, handle: Any) -> None:
        """A transport connection was accepted."""
        pass

    @abstractmethod
    def on_connection_close(self, conn_id: int) -> None:
        """A transport connection was closed, by either side."""
        pass

    @abstractmethod
    def on_request_start(self, conn_id: int) -> None:
        """A request was received on the connection."""
        pass

    @abstractmethod
    def on_request_finish(self, conn_id: int) -> None:
        """The response for the current request was fully written."""
        pass


class ServerHandle(ABC):
    """Abstract interface to the externally owned server"""

    @abstractmethod
    def subscribe(self, listener: ServerEventListener) -> None:
        """Register a listener for lifecycle events."""
        pass

    @abstractmethod
    def close(self, callback: CloseCallback | None = None) -> None:
        """Stop accepting new connections.

        The callback fires once the listening socket is closed and every
        open connection has ended, with the error raised while closing
        (or None).
        """
        pass

    @abstractmethod
    def destroy(self, handle: Any) -> None:
        """Force-terminate one transport connection. Already closed handles are ignored."""
        pass


# Called as handler(server, conn_id, reader, writer) for every accepted connection
RequestHandler = Callable[..., Awaitable[None]]


class StreamServerHandle(ServerHandle):
    """ServerHandle over an asyncio stream server"""

    def __init__(self, handler: RequestHandler, host: str = "127.0.0.1", port: int = 0,
                 logger: logging.Logger | None = None):
        self._handler = handler
        self.host = host
        self.port = port
        self.logger = logger or logging.getLogger("graceful_shutdown.server")
        self._server: asyncio.Server | None = None
        self._listeners: list[ServerEventListener] = []
        self._writers: dict[int, asyncio.StreamWriter] = {}
        self._ids = itertools.count()
        self._closed = asyncio.Event()
        self._drained = asyncio.Event()
        self._drained.set()
        self._pending: set[asyncio.Task] = set()

    async def start(self) -> None:
        """Start listening. Port 0 picks a free port, stored back on self.port."""
        self._server = await asyncio.start_server(self._on_client, self.host, self.port)
        self.port = self._server.sockets[0].getsockname()[1]
        self.logger.info(f"Listening on {self.host}:{self.port}")

    async def serve_until_closed(self) -> None:
        """Wait until close() has finished closing the listening socket and draining connections"""
        await self._closed.wait()

    @property
    def connection_count(self) -> int:
        return len(self._writers)

    def subscribe(self, listener: ServerEventListener) -> None:
        self._listeners.append(listener)

    def _emit(self, event: str, *args: Any) -> None:
        for listener in list(self._listeners):
            getattr(listener, event)(*args)

    async def _on_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        conn_id = next(self._ids)
        self._writers[conn_id] = writer
        self._drained.clear()
        self.logger.debug(f"Connection {conn_id} opened from {writer.get_extra_info('peername')}")
        self._emit("on_connection_open", conn_id, writer)
        try:
            await self._handler(self, conn_id, reader, writer)
        except (ConnectionError, asyncio.IncompleteReadError) as e:
            self.logger.debug(f"Connection {conn_id} dropped: {e}")
        finally:
            self._writers.pop(conn_id, None)
            if not self._writers:
                self._drained.set()
            if not writer.is_closing():
                writer.close()
            self.logger.debug(f"Connection {conn_id} closed")
            self._emit("on_connection_close", conn_id)

    @asynccontextmanager
    async def request(self, conn_id: int):
        """Mark the enclosed block as one request served on conn_id"""
        self._emit("on_request_start", conn_id)
        try:
            yield
        finally:
            writer = self._writers.get(conn_id)
            if writer is not None and not writer.is_closing():
                try:
                    await writer.drain()
                except ConnectionError as e:
                    self.logger.debug(f"Connection {conn_id} lost while flushing response: {e}")
            self._emit("on_request_finish", conn_id)

    def destroy(self, handle: asyncio.StreamWriter) -> None:
        transport = handle.transport
        if transport.is_closing():
            return
        # Unsent bytes are flushed before closing; an empty buffer is dropped at once
        if transport.get_write_buffer_size():
            transport.close()
        else:
            transport.abort()

    def close(self, callback: CloseCallback | None = None) -> None:
        if self._server is None:
            raise RuntimeError("Server was never started")
        self.logger.debug("Closing listening socket")
        self._server.close()
        task = asyncio.get_running_loop().create_task(self._wait_closed(callback))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _wait_closed(self, callback: CloseCallback | None) -> None:
        error = None
        try:
            await self._server.wait_closed()
        except Exception as e:
            error = e
        # wait_closed() does not wait for open connections before Python 3.12.1
        await self._drained.wait()
        self._closed.set()
        if callback is not None:
            callback(error)
