"""Tests for simulation event models and parse_event."""

from __future__ import annotations

import pytest

from simrelay.models.events import (
    CryptoEvent,
    CryptoFailureEvent,
    DeathEvent,
    EnergyInitEvent,
    EnergyUpdateEvent,
    NetworkCreateEvent,
    PacketRxEvent,
    PacketTxEvent,
    RouteRecoveryEvent,
    StatsEvent,
    UnrecognizedEvent,
    parse_event,
)


class TestParseEvent:
    """Tags map onto the matching variant."""

    def test_network_create(self) -> None:
        event = parse_event({"event": "network_create", "from": 10, "time": 0.0})

        assert isinstance(event, NetworkCreateEvent)
        assert event.count == 10
        assert event.sim_time == 0.0

    def test_packet_events(self) -> None:
        tx = parse_event({"event": "packet_tx", "from": 1, "to": 2, "packetId": 7})
        rx = parse_event({"event": "packet_rx", "from": 1, "to": 2, "packetId": 7})

        assert isinstance(tx, PacketTxEvent)
        assert isinstance(rx, PacketRxEvent)
        assert tx.entity == 1
        assert rx.entity == 2
        assert tx.packet_id == 7

    @pytest.mark.parametrize("kind", ["encrypt", "decrypt"])
    def test_crypto(self, kind: str) -> None:
        assert isinstance(parse_event({"event": kind, "from": 1}), CryptoEvent)

    @pytest.mark.parametrize("kind", ["encryption_failed", "decrypt_failed"])
    def test_crypto_failure(self, kind: str) -> None:
        assert isinstance(parse_event({"event": kind, "from": 1}), CryptoFailureEvent)

    def test_route_recovery_outcome(self) -> None:
        ok = parse_event({"event": "route_recovery", "from": 3, "info": "success"})
        failed = parse_event({"event": "route_recovery", "from": 3, "info": "failure"})

        assert isinstance(ok, RouteRecoveryEvent)
        assert ok.succeeded is True
        assert failed.succeeded is False

    def test_energy_events(self) -> None:
        init = parse_event({"event": "node_energy_initialized", "from": 2, "value": 120.0})
        update = parse_event({"event": "node_energy_update", "from": 2, "value": 99.5})

        assert isinstance(init, EnergyInitEvent)
        assert isinstance(update, EnergyUpdateEvent)
        assert update.value == 99.5

    def test_node_event_status_energy_update(self) -> None:
        """node_event objects are typed by their status field."""
        event = parse_event(
            {"type": "node_event", "nodeId": 3, "status": "energy_update", "energy": 42.0}
        )

        assert isinstance(event, EnergyUpdateEvent)
        assert event.source_entity == 3
        assert event.value == 42.0
        assert event.kind == "node_event"

    def test_node_event_status_dead(self) -> None:
        event = parse_event({"type": "node_event", "nodeId": 4, "status": "dead"})

        assert isinstance(event, DeathEvent)
        assert event.source_entity == 4

    def test_node_death_fields(self) -> None:
        event = parse_event(
            {"type": "node_death", "nodeId": 5, "deathTime": 12.5, "cause": "energy_depleted"}
        )

        assert isinstance(event, DeathEvent)
        assert event.sim_time == 12.5
        assert event.info == "energy_depleted"

    def test_stats_number(self) -> None:
        from_only = parse_event({"event": "stats_alive_nodes", "from": 7, "to": 10})
        valued = parse_event({"event": "stats_pdr", "value": 87.5})

        assert isinstance(from_only, StatsEvent)
        assert from_only.number == 7.0
        assert valued.number == 87.5


class TestUnrecognized:
    """Unknown or ill-formed objects are kept, not dropped."""

    def test_unknown_kind(self) -> None:
        data = {"event": "custom_thing", "from": 1, "extra": [1, 2]}
        event = parse_event(data)

        assert isinstance(event, UnrecognizedEvent)
        assert event.kind == "custom_thing"
        assert event.raw == data

    def test_missing_tag(self) -> None:
        event = parse_event({"value": 3})

        assert isinstance(event, UnrecognizedEvent)
        assert event.kind == "unknown"

    def test_known_kind_missing_required_field(self) -> None:
        event = parse_event({"event": "network_create"})

        assert isinstance(event, UnrecognizedEvent)
        assert event.kind == "network_create"

    def test_wrong_field_type(self) -> None:
        event = parse_event({"event": "packet_tx", "from": "not-a-node"})

        assert isinstance(event, UnrecognizedEvent)
        assert event.raw["from"] == "not-a-node"

    def test_non_finite_value(self) -> None:
        event = parse_event({"event": "stats_alive_nodes", "value": float("nan")})

        assert isinstance(event, UnrecognizedEvent)
        assert event.value is None
        assert event.kind == "stats_alive_nodes"


class TestWireForm:
    """Sequencing and the wire rendering."""

    def test_sequenced_returns_copy(self) -> None:
        event = parse_event({"event": "packet_tx", "from": 1})
        stamped = event.sequenced(5, 1_700_000_000_000)

        assert event.sequence_number == 0
        assert stamped.sequence_number == 5
        assert stamped.received_at == 1_700_000_000_000
        assert isinstance(stamped, PacketTxEvent)

    def test_to_wire_keeps_producer_fields(self) -> None:
        data = {"event": "packet_rx", "from": 1, "to": 2, "custom": "x"}
        wire = parse_event(data).sequenced(3, 100).to_wire()

        assert wire["event"] == "packet_rx"
        assert wire["custom"] == "x"
        assert wire["sequenceNumber"] == 3
        assert wire["receivedAt"] == 100

    def test_involves(self) -> None:
        event = parse_event({"event": "packet_rx", "from": 1, "to": 2})

        assert event.involves(1)
        assert event.involves(2)
        assert not event.involves(3)

    def test_aggregate_events_involve_no_node(self) -> None:
        assert not parse_event({"event": "network_create", "from": 10}).involves(10)
        assert not parse_event({"event": "stats_dead_nodes", "from": 2}).involves(2)
