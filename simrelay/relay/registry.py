"""Client registry: connected observers and their delivery pumps.

Each connection owns a bounded outbound queue drained by one pump task,
so fan-out is a non-blocking enqueue and a slow client only ever delays
itself. A client whose send fails or times out, or whose queue fills up,
is dropped.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

from ..errors import ErrorCode, TransportFailure
from ..models.clients import ClientRole, ClientSession, SubscriptionFilter

logger = logging.getLogger(__name__)


class Transport(Protocol):
    """What the registry needs from a connection (FastAPI's WebSocket fits)."""

    async def send_json(self, data: Any) -> None: ...

    async def close(self, code: int = 1000, reason: str | None = None) -> None: ...


class ClientConnection:
    """A registered observer: session value, transport and outbox."""

    def __init__(self, session: ClientSession, transport: Transport, queue_size: int) -> None:
        self.session = session
        self.transport = transport
        self.outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=queue_size)
        self.closed = False
        self.close_reason: str | None = None
        self.sent: int = 0
        self.pump: asyncio.Task[None] | None = None

    @property
    def id(self) -> str:
        return self.session.id

    def enqueue(self, payload: dict[str, Any]) -> bool:
        """Queue a message without blocking. False if the client is gone."""
        if self.closed:
            return False
        try:
            self.outbox.put_nowait(payload)
        except asyncio.QueueFull:
            logger.warning("Outbound queue full for %s; dropping client", self.id)
            self.mark_closed(ErrorCode.QUEUE_FULL.value)
            return False
        return True

    def mark_closed(self, reason: str) -> None:
        if not self.closed:
            self.closed = True
            self.close_reason = reason

    def drain(self) -> int:
        """Discard undelivered messages."""
        dropped = 0
        while True:
            try:
                self.outbox.get_nowait()
            except asyncio.QueueEmpty:
                return dropped
            self.outbox.task_done()
            dropped += 1


class ClientRegistry:
    """Track connected observers.

    ``lock`` guards every mutation and every fan-out pass, so a client
    registered before an event is committed always receives it.

    Usage:
        registry = ClientRegistry(queue_size=1000, send_timeout=5.0)
        conn = await registry.register(websocket)
        await registry.set_role(conn.id, ClientRole.MONITORING)
        await registry.unregister(conn.id)
    """

    def __init__(self, queue_size: int = 1000, send_timeout: float = 5.0) -> None:
        self.queue_size = queue_size
        self.send_timeout = send_timeout
        self.lock = asyncio.Lock()
        self._connections: dict[str, ClientConnection] = {}
        self._closing: set[asyncio.Task[None]] = set()
        self._send_failures: int = 0

    @property
    def count(self) -> int:
        return len(self._connections)

    @property
    def send_failures(self) -> int:
        return self._send_failures

    # --- Mutation ---

    async def register(self, transport: Transport) -> ClientConnection:
        """Add a connection with the default role and filter."""
        async with self.lock:
            return self.register_unlocked(transport)

    def register_unlocked(self, transport: Transport) -> ClientConnection:
        """Register while the caller already holds ``lock``."""
        conn = ClientConnection(ClientSession(), transport, self.queue_size)
        self._connections[conn.id] = conn
        conn.pump = asyncio.create_task(self._pump(conn), name=f"pump-{conn.id}")
        logger.info("Client connected: %s. Total connections: %d", conn.id, self.count)
        return conn

    async def unregister(self, session_id: str) -> ClientConnection | None:
        """Remove a connection. Returns None if it was already gone."""
        async with self.lock:
            conn = self._connections.pop(session_id, None)
        if conn is None:
            return None
        self._retire(conn, conn.close_reason or "disconnected")
        logger.info("Client disconnected: %s. Total connections: %d", session_id, self.count)
        return conn

    async def set_role(
        self,
        session_id: str,
        role: ClientRole,
        subscription: SubscriptionFilter | None = None,
    ) -> ClientSession | None:
        async with self.lock:
            conn = self._connections.get(session_id)
            if conn is None:
                return None
            conn.session = conn.session.with_role(role, subscription)
            return conn.session

    async def set_filter(
        self, session_id: str, subscription: SubscriptionFilter
    ) -> ClientSession | None:
        async with self.lock:
            conn = self._connections.get(session_id)
            if conn is None:
                return None
            conn.session = conn.session.with_subscription(subscription)
            return conn.session

    # --- Reads ---

    def get(self, session_id: str) -> ClientConnection | None:
        return self._connections.get(session_id)

    def sessions(self) -> list[ClientSession]:
        return [c.session for c in self._connections.values()]

    def connections_unlocked(self) -> list[ClientConnection]:
        """Registered connections, closed ones included; caller holds ``lock``."""
        return list(self._connections.values())

    def reap_unlocked(self) -> list[ClientConnection]:
        """Drop connections marked closed; caller holds ``lock``."""
        reaped = [c for c in self._connections.values() if c.closed]
        for conn in reaped:
            del self._connections[conn.id]
            self._retire(conn, conn.close_reason or "closed")
            logger.info("Reaped client %s (%s)", conn.id, conn.close_reason)
        return reaped

    # --- Delivery ---

    async def _pump(self, conn: ClientConnection) -> None:
        """Send queued messages in FIFO order until the client goes away."""
        while True:
            payload = await conn.outbox.get()
            try:
                await asyncio.wait_for(conn.transport.send_json(payload), timeout=self.send_timeout)
            except asyncio.CancelledError:
                conn.outbox.task_done()
                raise
            except Exception as e:
                conn.outbox.task_done()
                self._send_failures += 1
                code = ErrorCode.SEND_FAILED
                failure = TransportFailure(
                    f"Send to {conn.id} failed: {type(e).__name__}: {e}", code
                )
                logger.warning("%s; dropping client", failure.message)
                conn.mark_closed(code.value)
                await self.unregister(conn.id)
                return
            conn.sent += 1
            conn.outbox.task_done()
            if conn.closed:
                conn.drain()
                return

    def _retire(self, conn: ClientConnection, reason: str) -> None:
        """Stop the pump and close the transport in the background."""
        conn.mark_closed(reason)
        conn.drain()
        if conn.pump is not None and conn.pump is not asyncio.current_task():
            conn.pump.cancel()
        if reason in (ErrorCode.SEND_FAILED.value, ErrorCode.QUEUE_FULL.value):
            task = asyncio.create_task(self._close_transport(conn, 1011, reason))
            self._closing.add(task)
            task.add_done_callback(self._closing.discard)

    async def _close_transport(
        self, conn: ClientConnection, code: int = 1000, reason: str | None = None
    ) -> None:
        try:
            await asyncio.wait_for(conn.transport.close(code=code, reason=reason), self.send_timeout)
        except Exception as e:
            logger.debug("Closing transport for %s failed: %s", conn.id, e)

    async def close_all(self, code: int = 1000, reason: str = "Server shutdown") -> None:
        """Flush what is queued, then close every transport."""
        async with self.lock:
            conns = list(self._connections.values())
            self._connections.clear()

        for conn in conns:
            if not conn.closed:
                try:
                    await asyncio.wait_for(conn.outbox.join(), timeout=self.send_timeout)
                except asyncio.TimeoutError:
                    logger.warning("Timed out flushing messages to %s", conn.id)
            self._retire(conn, "shutdown")
            await self._close_transport(conn, code, reason)

        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)
