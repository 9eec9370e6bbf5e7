"""State models for nodes, aggregate statistics and runs.

These models represent the current state built from events,
separate from the raw event models. ``to_dict`` renders the wire form
observers already understand (camelCase keys).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

DEAD_COLOR = "#666666"

NODE_COLORS = (
    "#FF6B6B", "#4ECDC4", "#FFD166", "#06D6A0", "#118AB2",
    "#EF476F", "#FFD166", "#06D6A0", "#073B4C", "#7209B7",
    "#3A86FF", "#FB5607", "#8338EC", "#FF006E", "#FFBE0B",
    "#3A86FF", "#FB5607", "#8338EC", "#FF006E", "#FFBE0B",
    "#FF6B6B", "#4ECDC4", "#FFD166", "#06D6A0", "#118AB2",
)


def node_color(node_id: int) -> str:
    """Palette color for a live node."""
    return NODE_COLORS[node_id % len(NODE_COLORS)]


@dataclass
class EntityState:
    """Current state of one simulated node."""

    id: int
    alive: bool = True
    energy: float = 100.0
    initial_energy: float = 100.0
    packets_sent: int = 0
    packets_received: int = 0
    death_timestamp: float | None = None
    display_color: str = ""

    def __post_init__(self) -> None:
        if not self.display_color:
            self.display_color = DEAD_COLOR if not self.alive else node_color(self.id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "alive": self.alive,
            "energy": self.energy,
            "initialEnergy": self.initial_energy,
            "packetsTx": self.packets_sent,
            "packetsRx": self.packets_received,
            "deathTime": self.death_timestamp,
            "color": self.display_color,
        }


@dataclass
class PacketStats:
    """Run-wide packet counters."""

    tx: int = 0
    rx: int = 0
    encrypted: int = 0
    decrypted: int = 0
    dropped: int = 0


@dataclass
class NodeCounts:
    """Node population; alive + dead == total."""

    total: int = 0
    alive: int = 0
    dead: int = 0


@dataclass
class EnergyStats:
    """Energy totals in joules."""

    total: float = 0.0
    per_node: float = 0.0
    efficiency: float = 0.0


@dataclass
class ResilienceStats:
    """Route recovery counters."""

    route_changes: int = 0
    recoveries: int = 0
    success_rate: float = 0.0


@dataclass
class AggregateStats:
    """Derived statistics for the current run."""

    packets: PacketStats = field(default_factory=PacketStats)
    nodes: NodeCounts = field(default_factory=NodeCounts)
    energy: EnergyStats = field(default_factory=EnergyStats)
    pdr: float = 0.0
    reported_pdr: float | None = None  # Last stats_pdr value, if any
    throughput: float = 0.0
    delay: float = 0.0
    network_lifetime: float = 0.0
    resilience: ResilienceStats = field(default_factory=ResilienceStats)

    # Event counts by kind
    event_counts: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "packets": {
                "tx": self.packets.tx,
                "rx": self.packets.rx,
                "encrypted": self.packets.encrypted,
                "decrypted": self.packets.decrypted,
                "dropped": self.packets.dropped,
            },
            "nodes": {
                "total": self.nodes.total,
                "alive": self.nodes.alive,
                "dead": self.nodes.dead,
            },
            "energy": {
                "total": self.energy.total,
                "perNode": self.energy.per_node,
                "efficiency": self.energy.efficiency,
            },
            "pdr": self.pdr,
            "throughput": self.throughput,
            "delay": self.delay,
            "networkLifetime": self.network_lifetime,
            "resilience": {
                "routeChanges": self.resilience.route_changes,
                "recoveries": self.resilience.recoveries,
                "successRate": self.resilience.success_rate,
            },
            "eventCounts": dict(self.event_counts),
        }
        if self.reported_pdr is not None:
            result["reportedPdr"] = self.reported_pdr
        return result


RunStatus = Literal["running", "completed", "failed", "stopped"]


@dataclass
class RunRecord:
    """One execution of the simulation process.

    Events themselves live in the EventLog; the record carries metadata
    and, once sealed, the final statistics.
    """

    run_id: str
    started_at: int  # ms
    ended_at: int | None = None
    total_events: int = 0
    parse_failures: int = 0
    status: RunStatus = "running"
    exit_code: int | None = None
    signal: str | None = None
    reason: str | None = None
    final_stats: dict[str, Any] | None = None

    @property
    def sealed(self) -> bool:
        return self.ended_at is not None

    @property
    def duration_ms(self) -> int:
        if self.ended_at is None:
            return 0
        return self.ended_at - self.started_at

    def seal(
        self,
        ended_at: int,
        status: RunStatus,
        exit_code: int | None = None,
        signal: str | None = None,
        reason: str | None = None,
    ) -> None:
        """Mark the run finished. Sealing twice keeps the first outcome."""
        if self.sealed:
            return
        self.ended_at = ended_at
        self.status = status
        self.exit_code = exit_code
        self.signal = signal
        self.reason = reason

    def summary(self) -> dict[str, Any]:
        """Metadata without events, used for run history."""
        return {
            "runId": self.run_id,
            "startTime": self.started_at,
            "endTime": self.ended_at,
            "duration": self.duration_ms,
            "totalEvents": self.total_events,
            "parseFailures": self.parse_failures,
            "status": self.status,
            "exitCode": self.exit_code,
            "signal": self.signal,
            "reason": self.reason,
            "stats": self.final_stats,
        }
