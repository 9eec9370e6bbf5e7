"""Event type models for the simulation output protocol.

The simulation writes one JSON object per line. Objects carry their tag in
``event`` (packet/crypto/stats events) or ``type`` (node and metric events)
and a loose set of optional fields:

- from / nodeId: source node (or a number, for network_create and stats_*)
- to: target node (or a second number, for stats_packets/stats_alive_nodes)
- packetId, value / energy, info / cause / status, timestamp (ms), time (s)

Every tag maps onto one closed variant with the fields it needs. Objects
with an unknown tag, or a known tag missing required fields, become an
UnrecognizedEvent instead of being dropped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

logger = logging.getLogger(__name__)


class SimEvent(BaseModel):
    """Common envelope for all relayed events."""

    model_config = ConfigDict(frozen=True, extra="ignore", allow_inf_nan=False)

    kind: str
    source_entity: int | None = None
    target_entity: int | None = None
    packet_id: int | None = None
    value: float | None = None
    info: str | None = None
    timestamp: float | None = Field(default=None, description="Producer clock (ms)")
    sim_time: float | None = Field(default=None, description="Simulation clock (s)")
    # Assigned by the relay when the event is committed
    sequence_number: int = 0
    received_at: int = 0
    raw: dict[str, Any] = Field(default_factory=dict)

    def sequenced(self, sequence_number: int, received_at: int) -> SimEvent:
        """Return a copy stamped with relay ordering metadata."""
        return self.model_copy(
            update={"sequence_number": sequence_number, "received_at": received_at}
        )

    def involves(self, entity_id: int) -> bool:
        """Whether this event refers to the given node."""
        return entity_id in (self.source_entity, self.target_entity)

    def to_wire(self) -> dict[str, Any]:
        """The producer's own object, augmented with relay metadata."""
        return {
            **self.raw,
            "sequenceNumber": self.sequence_number,
            "receivedAt": self.received_at,
        }


# Topology and node lifecycle


class NetworkCreateEvent(SimEvent):
    """Network created with ``from`` nodes."""

    source_entity: int = Field(ge=0)

    @property
    def count(self) -> int:
        return self.source_entity

    def involves(self, entity_id: int) -> bool:
        return False


class EnergyInitEvent(SimEvent):
    """Initial energy assigned to a node."""

    source_entity: int
    value: float


class EnergyUpdateEvent(SimEvent):
    """Remaining energy reported for a node."""

    source_entity: int
    value: float


class DeathEvent(SimEvent):
    """A node ran out of energy or failed."""

    source_entity: int


# Traffic


class PacketTxEvent(SimEvent):
    """Packet transmitted by ``from``."""

    @property
    def entity(self) -> int | None:
        return self.source_entity


class PacketRxEvent(SimEvent):
    """Packet received by ``to``."""

    @property
    def entity(self) -> int | None:
        return self.target_entity


class CryptoEvent(SimEvent):
    """Successful encrypt or decrypt."""


class CryptoFailureEvent(SimEvent):
    """Failed encrypt or decrypt; the packet is dropped."""


class RouteRecoveryEvent(SimEvent):
    """Route change after a failure; ``info`` holds the outcome."""

    @property
    def succeeded(self) -> bool:
        return self.info == "success"


# Authoritative aggregates emitted by the simulation


class StatsEvent(SimEvent):
    """Aggregate value that overwrites the derived one."""

    @property
    def number(self) -> float:
        """Primary numeric payload (``value`` if present, else ``from``)."""
        if self.value is not None:
            return self.value
        return float(self.source_entity or 0)

    def involves(self, entity_id: int) -> bool:
        return False


class UnrecognizedEvent(SimEvent):
    """Structured record with no state effect."""


ParsedEvent = Union[
    NetworkCreateEvent,
    EnergyInitEvent,
    EnergyUpdateEvent,
    DeathEvent,
    PacketTxEvent,
    PacketRxEvent,
    CryptoEvent,
    CryptoFailureEvent,
    RouteRecoveryEvent,
    StatsEvent,
    UnrecognizedEvent,
]

STATS_KINDS = frozenset({
    "stats_packets",
    "stats_pdr",
    "stats_energy",
    "stats_throughput",
    "stats_delay",
    "stats_alive_nodes",
    "stats_dead_nodes",
    "stats_network_lifetime",
    "network_health",
})

EVENT_CLASSES: dict[str, type[SimEvent]] = {
    "network_create": NetworkCreateEvent,
    "node_energy_initialized": EnergyInitEvent,
    "node_energy_update": EnergyUpdateEvent,
    "node_died": DeathEvent,
    "node_death": DeathEvent,
    "packet_tx": PacketTxEvent,
    "packet_rx": PacketRxEvent,
    "encrypt": CryptoEvent,
    "decrypt": CryptoEvent,
    "encryption_failed": CryptoFailureEvent,
    "decrypt_failed": CryptoFailureEvent,
    "route_recovery": RouteRecoveryEvent,
    **{kind: StatsEvent for kind in STATS_KINDS},
}

# node_event objects carry their meaning in "status"
NODE_EVENT_STATUS_CLASSES: dict[str, type[SimEvent]] = {
    "energy_update": EnergyUpdateEvent,
    "dead": DeathEvent,
}


def _first_present(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def _normalize(data: dict[str, Any]) -> dict[str, Any]:
    """Map wire keys onto SimEvent field names."""
    kind = _first_present(data, "event", "type")
    info = _first_present(data, "info", "cause", "status")
    return {
        "kind": str(kind) if kind is not None else "unknown",
        "source_entity": _first_present(data, "from", "nodeId"),
        "target_entity": data.get("to"),
        "packet_id": data.get("packetId"),
        "value": _first_present(data, "value", "energy"),
        "info": str(info) if info is not None else None,
        "timestamp": data.get("timestamp"),
        "sim_time": _first_present(data, "time", "deathTime"),
        "raw": data,
    }


def event_class_for(kind: str, data: dict[str, Any]) -> type[SimEvent]:
    """Resolve the variant for a tag."""
    if kind == "node_event":
        return NODE_EVENT_STATUS_CLASSES.get(str(data.get("status")), UnrecognizedEvent)
    return EVENT_CLASSES.get(kind, UnrecognizedEvent)


def parse_event(data: dict[str, Any]) -> SimEvent:
    """Parse a decoded simulation object into its typed variant.

    Never raises: objects that do not fit their variant fall back to
    UnrecognizedEvent so they are still sequenced and relayed.
    """
    fields = _normalize(data)
    event_class = event_class_for(fields["kind"], data)
    try:
        return event_class(**fields)
    except ValidationError as e:
        if event_class is not UnrecognizedEvent:
            logger.warning(
                "Event %r does not fit %s (%d errors); relaying as unrecognized",
                fields["kind"], event_class.__name__, e.error_count(),
            )
    try:
        return UnrecognizedEvent(**fields)
    except ValidationError:
        return UnrecognizedEvent(kind=fields["kind"], raw=data)


# Non-event output lines


@dataclass(frozen=True)
class DiagnosticLine:
    """Human-readable output line worth logging.

    level is one of: parse_failure, error, warning, result, info.
    """

    text: str
    level: str = "info"
    broadcast: bool = False
    stream: str = "stdout"


@dataclass(frozen=True)
class MetricsEvent:
    """Metrics extracted from a console summary line."""

    text: str
    metrics: dict[str, float] = field(default_factory=dict)
    broadcast: bool = False


@dataclass(frozen=True)
class Ignored:
    """Line with nothing of interest."""

    text: str = ""


IGNORED = Ignored()

LineClassification = Union[SimEvent, DiagnosticLine, MetricsEvent, Ignored]
