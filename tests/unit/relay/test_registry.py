"""Tests for the client registry and its per-client delivery pumps."""

from __future__ import annotations

import asyncio

import pytest

from simrelay.models.clients import ClientRole, SubscriptionFilter
from simrelay.relay.registry import ClientRegistry
from tests.testing_utils import FakeTransport, flush, wait_for


class TestRegistration:
    @pytest.mark.asyncio
    async def test_register_assigns_defaults(self) -> None:
        registry = ClientRegistry()
        first = await registry.register(FakeTransport())
        second = await registry.register(FakeTransport())

        assert registry.count == 2
        assert first.id != second.id
        assert first.session.role is ClientRole.OBSERVER
        assert first.session.subscription.accepts_all

        await registry.close_all()

    @pytest.mark.asyncio
    async def test_set_role_and_filter_replace_session(self) -> None:
        registry = ClientRegistry()
        conn = await registry.register(FakeTransport())
        original = conn.session

        await registry.set_role(conn.id, ClientRole.MONITORING)
        await registry.set_filter(conn.id, SubscriptionFilter.from_list(["packet_tx"]))

        assert conn.session is not original
        assert conn.session.role is ClientRole.MONITORING
        assert conn.session.subscription.to_list() == ["packet_tx"]
        assert original.role is ClientRole.OBSERVER

        await registry.close_all()

    @pytest.mark.asyncio
    async def test_updates_for_unknown_client(self) -> None:
        registry = ClientRegistry()

        assert await registry.set_role("client_missing", ClientRole.CONTROL) is None
        assert await registry.set_filter("client_missing", SubscriptionFilter.all()) is None
        assert await registry.unregister("client_missing") is None

    @pytest.mark.asyncio
    async def test_unregister_stops_pump(self) -> None:
        registry = ClientRegistry()
        conn = await registry.register(FakeTransport())

        removed = await registry.unregister(conn.id)
        pump = conn.pump
        assert pump is not None
        await wait_for(pump.done)

        assert removed is conn
        assert registry.count == 0
        assert conn.closed
        assert await registry.unregister(conn.id) is None


class TestDelivery:
    @pytest.mark.asyncio
    async def test_fifo_order(self) -> None:
        registry = ClientRegistry()
        transport = FakeTransport()
        conn = await registry.register(transport)

        for i in range(20):
            assert conn.enqueue({"type": "n", "i": i})
        await flush(registry)

        assert [m["i"] for m in transport.sent] == list(range(20))
        assert conn.sent == 20

        await registry.close_all()

    @pytest.mark.asyncio
    async def test_failing_transport_is_dropped(self) -> None:
        registry = ClientRegistry()
        transport = FakeTransport(fail=True)
        conn = await registry.register(transport)

        conn.enqueue({"type": "ping"})
        await wait_for(lambda: registry.count == 0)
        await wait_for(lambda: transport.closed)

        assert registry.send_failures == 1
        assert conn.close_reason == "send_failed"
        assert transport.close_code == 1011

    @pytest.mark.asyncio
    async def test_slow_transport_times_out(self) -> None:
        registry = ClientRegistry(send_timeout=0.05)
        conn = await registry.register(FakeTransport(delay=1.0))

        conn.enqueue({"type": "ping"})
        await wait_for(lambda: registry.count == 0)

        assert conn.close_reason == "send_failed"

    @pytest.mark.asyncio
    async def test_queue_full_marks_closed(self) -> None:
        registry = ClientRegistry(queue_size=2)
        conn = await registry.register(FakeTransport(delay=0.5))

        results = [conn.enqueue({"i": i}) for i in range(5)]

        assert results[:2] == [True, True]
        assert results[2] is False
        assert conn.closed
        assert conn.close_reason == "queue_full"
        assert conn.enqueue({"i": 99}) is False

        async with registry.lock:
            reaped = registry.reap_unlocked()
        assert reaped == [conn]
        assert registry.count == 0

    @pytest.mark.asyncio
    async def test_slow_client_does_not_block_others(self) -> None:
        registry = ClientRegistry(send_timeout=5.0)
        slow = FakeTransport(delay=0.5)
        fast = FakeTransport()
        slow_conn = await registry.register(slow)
        fast_conn = await registry.register(fast)

        for i in range(3):
            slow_conn.enqueue({"i": i})
            fast_conn.enqueue({"i": i})
        await asyncio.wait_for(fast_conn.outbox.join(), 0.3)

        assert len(fast.sent) == 3
        assert len(slow.sent) < 3

        await registry.unregister(slow_conn.id)
        await registry.close_all()


class TestCloseAll:
    @pytest.mark.asyncio
    async def test_flushes_then_closes(self) -> None:
        registry = ClientRegistry()
        transports = [FakeTransport(), FakeTransport()]
        for transport in transports:
            conn = await registry.register(transport)
            conn.enqueue({"type": "server_shutdown"})

        await registry.close_all(code=1000, reason="Server shutdown")

        assert registry.count == 0
        for transport in transports:
            assert transport.sent == [{"type": "server_shutdown"}]
            assert transport.closed
            assert transport.close_code == 1000
