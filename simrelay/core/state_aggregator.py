"""State aggregator: events → current network state.

Responsible for:
- Maintaining the node table for the current run
- Folding traffic, crypto and recovery events into counters
- Letting authoritative stats_* events overwrite derived values
- Recomputing derived ratios after every event
"""

from __future__ import annotations

import logging
import time
from typing import Any

from ..models.events import (
    CryptoEvent,
    CryptoFailureEvent,
    DeathEvent,
    EnergyInitEvent,
    EnergyUpdateEvent,
    NetworkCreateEvent,
    PacketRxEvent,
    PacketTxEvent,
    RouteRecoveryEvent,
    SimEvent,
    StatsEvent,
)
from ..models.state import DEAD_COLOR, AggregateStats, EntityState

logger = logging.getLogger(__name__)


def _ratio(numerator: float, denominator: float) -> float:
    """numerator / denominator, 0 when the denominator is 0."""
    if not denominator:
        return 0.0
    return numerator / denominator


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class StateAggregator:
    """Build and maintain network state from the event stream.

    Callers must apply each sequenced event exactly once, in order.

    Usage:
        aggregator = StateAggregator(initial_energy=100.0, max_nodes=10000)
        for event in events:
            aggregator.apply(event)
        stats = aggregator.stats
    """

    def __init__(self, initial_energy: float = 100.0, max_nodes: int = 10000) -> None:
        self._initial_energy = initial_energy
        self._max_nodes = max_nodes
        self._entities: dict[int, EntityState] = {}
        self._stats = AggregateStats()
        self._death_history: list[dict[str, Any]] = []
        self._events_applied: int = 0

    @property
    def stats(self) -> AggregateStats:
        return self._stats

    @property
    def entities(self) -> dict[int, EntityState]:
        return self._entities

    @property
    def death_history(self) -> list[dict[str, Any]]:
        return self._death_history

    @property
    def events_applied(self) -> int:
        return self._events_applied

    def reset(self) -> None:
        """Discard the node table and all counters (new run)."""
        self._entities = {}
        self._stats = AggregateStats()
        self._death_history = []
        self._events_applied = 0

    def apply(self, event: SimEvent) -> None:
        """Apply one event and recompute derived values.

        Raises:
            ValueError, OverflowError: A stats value has no integer form.
                Derived values are still recomputed.
        """
        self._events_applied += 1
        counts = self._stats.event_counts
        counts[event.kind] = counts.get(event.kind, 0) + 1
        try:
            self._dispatch(event)
        finally:
            self._recompute()

    def _dispatch(self, event: SimEvent) -> None:
        if isinstance(event, NetworkCreateEvent):
            self._handle_network_create(event)
        elif isinstance(event, EnergyInitEvent):
            self._handle_energy_init(event)
        elif isinstance(event, EnergyUpdateEvent):
            self._handle_energy_update(event)
        elif isinstance(event, DeathEvent):
            self._handle_death(event)
        elif isinstance(event, PacketTxEvent):
            self._handle_packet_tx(event)
        elif isinstance(event, PacketRxEvent):
            self._handle_packet_rx(event)
        elif isinstance(event, CryptoFailureEvent):
            self._stats.packets.dropped += 1
        elif isinstance(event, CryptoEvent):
            self._handle_crypto(event)
        elif isinstance(event, RouteRecoveryEvent):
            self._handle_route_recovery(event)
        elif isinstance(event, StatsEvent):
            self._handle_stats(event)
        # UnrecognizedEvent: counted only

    # --- Topology and lifecycle ---

    def _handle_network_create(self, event: NetworkCreateEvent) -> None:
        count = event.count
        if count > self._max_nodes:
            logger.warning(
                "network_create with %d nodes exceeds max_nodes=%d; node table unchanged",
                count, self._max_nodes,
            )
            return
        self._entities = {
            i: EntityState(
                id=i,
                energy=self._initial_energy,
                initial_energy=self._initial_energy,
            )
            for i in range(count)
        }
        nodes = self._stats.nodes
        nodes.total = count
        nodes.alive = count
        nodes.dead = 0
        logger.info("Initialized %d node states", count)

    def _known(self, entity_id: int | None, kind: str) -> EntityState | None:
        if entity_id is None:
            return None
        entity = self._entities.get(entity_id)
        if entity is None:
            logger.warning("%s refers to unknown node %s", kind, entity_id)
        return entity

    def _handle_energy_init(self, event: EnergyInitEvent) -> None:
        entity = self._known(event.source_entity, event.kind)
        if entity is None:
            return
        energy = max(0.0, event.value)
        entity.initial_energy = energy
        entity.energy = energy

    def _handle_energy_update(self, event: EnergyUpdateEvent) -> None:
        entity = self._known(event.source_entity, event.kind)
        if entity is None:
            return
        # Energy only drains between initializations
        entity.energy = max(0.0, min(entity.energy, event.value))

    def _handle_death(self, event: DeathEvent) -> None:
        entity = self._known(event.source_entity, event.kind)
        if entity is None:
            return
        if not entity.alive:
            logger.warning("Node %d reported dead again; ignoring", entity.id)
            return

        death_time = event.sim_time
        if death_time is None:
            death_time = event.timestamp
        if death_time is None:
            death_time = float(event.received_at or int(time.time() * 1000))

        entity.alive = False
        entity.death_timestamp = death_time
        entity.display_color = DEAD_COLOR

        nodes = self._stats.nodes
        nodes.alive = max(0, nodes.alive - 1)
        nodes.dead = nodes.total - nodes.alive

        self._death_history.append({
            "time": event.sim_time,
            "nodeId": entity.id,
            "event": "death",
            "reason": event.info,
        })
        logger.info("Node %d died (%s)", entity.id, event.info or "unknown cause")

    # --- Traffic ---

    def _handle_packet_tx(self, event: PacketTxEvent) -> None:
        self._stats.packets.tx += 1
        if event.entity is not None:
            entity = self._known(event.entity, event.kind)
            if entity is not None:
                entity.packets_sent += 1

    def _handle_packet_rx(self, event: PacketRxEvent) -> None:
        self._stats.packets.rx += 1
        if event.entity is not None:
            entity = self._known(event.entity, event.kind)
            if entity is not None:
                entity.packets_received += 1

    def _handle_crypto(self, event: CryptoEvent) -> None:
        if event.kind == "decrypt":
            self._stats.packets.decrypted += 1
        else:
            self._stats.packets.encrypted += 1

    def _handle_route_recovery(self, event: RouteRecoveryEvent) -> None:
        resilience = self._stats.resilience
        resilience.route_changes += 1
        if event.succeeded:
            resilience.recoveries += 1

    # --- Authoritative aggregates ---

    def _scaled(self, event: StatsEvent) -> float:
        """``value`` verbatim, else ``from`` reported in thousandths."""
        if event.value is not None:
            return event.value
        return (event.source_entity or 0) / 1000

    def _handle_stats(self, event: StatsEvent) -> None:
        stats = self._stats
        kind = event.kind

        if kind == "stats_packets":
            stats.packets.tx = max(0, event.source_entity or 0)
            stats.packets.rx = max(0, event.target_entity or 0)
        elif kind == "stats_pdr":
            stats.reported_pdr = round(event.number, 2)
        elif kind == "stats_energy":
            stats.energy.total = max(0.0, self._scaled(event))
        elif kind == "stats_throughput":
            stats.throughput = self._scaled(event)
        elif kind == "stats_delay":
            stats.delay = self._scaled(event)
        elif kind == "stats_network_lifetime":
            stats.network_lifetime = event.number
        elif kind == "stats_alive_nodes":
            self._set_alive(int(event.number), event.target_entity)
        elif kind == "stats_dead_nodes":
            self._set_dead(int(event.number))
        elif kind == "network_health":
            self._set_alive(int(event.number))

    def _set_alive(self, alive: int, total: int | None = None) -> None:
        nodes = self._stats.nodes
        if total is not None:
            nodes.total = max(0, total)
        nodes.alive = int(_clamp(alive, 0, nodes.total))
        nodes.dead = nodes.total - nodes.alive

    def _set_dead(self, dead: int) -> None:
        nodes = self._stats.nodes
        nodes.dead = int(_clamp(dead, 0, nodes.total))
        nodes.alive = nodes.total - nodes.dead

    # --- Derived values ---

    def _recompute(self) -> None:
        stats = self._stats
        packets = stats.packets

        if packets.tx > 0:
            stats.pdr = round(_clamp(packets.rx / packets.tx * 100, 0.0, 100.0), 2)
        else:
            stats.pdr = 0.0

        stats.energy.per_node = round(_ratio(stats.energy.total, stats.nodes.total), 2)
        stats.energy.efficiency = round(_ratio(packets.rx, stats.energy.total), 2)
        stats.resilience.success_rate = round(
            _ratio(stats.resilience.recoveries, stats.resilience.route_changes) * 100, 2
        )

    # --- Read helpers ---

    def stats_dict(self) -> dict[str, Any]:
        """AggregateStats in wire form."""
        return self._stats.to_dict()

    def entity_list(self) -> list[dict[str, Any]]:
        """Node table in wire form, ordered by id."""
        return [self._entities[i].to_dict() for i in sorted(self._entities)]

    def history_for(self, entity_id: int) -> list[dict[str, Any]]:
        """Lifecycle records (deaths) for one node."""
        return [r for r in self._death_history if r["nodeId"] == entity_id]
