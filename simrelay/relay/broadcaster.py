"""Broadcaster: decide which observers receive a message and enqueue it."""

from __future__ import annotations

import logging
from typing import Any, Callable

from ..models.clients import ClientRole, ClientSession
from ..models.events import SimEvent
from .registry import ClientConnection, ClientRegistry

logger = logging.getLogger(__name__)

# (session, welcome) -> messages making up the snapshot
SnapshotProvider = Callable[[ClientSession, bool], list[dict[str, Any]]]


def _empty_snapshot(session: ClientSession, welcome: bool) -> list[dict[str, Any]]:
    return []


class Broadcaster:
    """Fan out events and snapshots to registered observers.

    Delivery is a non-blocking enqueue onto each connection's outbox, in
    publish order, so every observer sees messages FIFO. Connections
    already closed are skipped and counted, never retried.

    Usage:
        broadcaster = Broadcaster(registry, snapshot_provider=session.snapshot_messages)
        await broadcaster.publish(event)
        await broadcaster.broadcast(messages.progress(50))
    """

    def __init__(
        self,
        registry: ClientRegistry,
        snapshot_provider: SnapshotProvider | None = None,
    ) -> None:
        self.registry = registry
        self.snapshot_provider = snapshot_provider or _empty_snapshot
        self._delivery_failures: int = 0

    @property
    def delivery_failures(self) -> int:
        return self._delivery_failures

    def _deliver(self, conn: ClientConnection, payload: dict[str, Any]) -> bool:
        if conn.enqueue(payload):
            return True
        self._delivery_failures += 1
        return False

    def _fan_out_unlocked(
        self,
        payload: dict[str, Any],
        accept: Callable[[ClientSession], bool],
    ) -> int:
        delivered = 0
        for conn in self.registry.connections_unlocked():
            if accept(conn.session) and self._deliver(conn, payload):
                delivered += 1
        self.registry.reap_unlocked()
        return delivered

    async def publish(self, event: SimEvent) -> int:
        """Send an event to every observer whose filter accepts its kind.

        Returns:
            Number of observers the event was queued for
        """
        payload = event.to_wire()
        async with self.registry.lock:
            delivered = self._fan_out_unlocked(payload, lambda s: s.accepts(event.kind))
        logger.debug("Published %s #%d to %d clients", event.kind, event.sequence_number, delivered)
        return delivered

    async def publish_to_role(self, role: ClientRole, payload: dict[str, Any]) -> int:
        """Send to observers with the given role only."""
        async with self.registry.lock:
            return self._fan_out_unlocked(payload, lambda s: s.role is role)

    async def broadcast(self, payload: dict[str, Any], exclude: str | None = None) -> int:
        """Send an unfiltered message to every observer (except ``exclude``)."""
        async with self.registry.lock:
            return self._fan_out_unlocked(payload, lambda s: s.id != exclude)

    async def send_to(self, session_id: str, payload: dict[str, Any]) -> bool:
        """Direct reply to one observer."""
        async with self.registry.lock:
            return self.send_to_unlocked(session_id, payload)

    def send_to_unlocked(self, session_id: str, payload: dict[str, Any]) -> bool:
        conn = self.registry.get(session_id)
        if conn is None:
            self._delivery_failures += 1
            return False
        return self._deliver(conn, payload)

    async def snapshot(self, session_id: str, welcome: bool = False) -> bool:
        """Send current stats, node table and event count to one observer."""
        async with self.registry.lock:
            return self.snapshot_unlocked(session_id, welcome)

    def snapshot_unlocked(self, session_id: str, welcome: bool = False) -> bool:
        conn = self.registry.get(session_id)
        if conn is None:
            self._delivery_failures += 1
            return False
        for payload in self.snapshot_provider(conn.session, welcome):
            if not self._deliver(conn, payload):
                return False
        return True
