"""Metrics engine: final state → performance report.

Responsible for:
- Network availability (alive / total)
- Composite resilience score (availability x PDR / 100)
- Packaging the completion report written to disk and broadcast
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

from ..models.state import AggregateStats

logger = logging.getLogger(__name__)


@dataclass
class PerformanceReport:
    """Summary of one completed run."""

    timestamp: int  # ms
    simulation_duration: int  # ms
    network_availability: float = 0.0  # percent
    packet_delivery_rate: float = 0.0  # percent
    network_lifetime: float = 0.0  # s
    energy_efficiency: float = 0.0  # packets per J
    resilience_score: float = 0.0  # 0..1
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "simulationDuration": self.simulation_duration,
            "summary": {
                "networkAvailability": self.network_availability,
                "packetDeliveryRate": self.packet_delivery_rate,
                "networkLifetime": self.network_lifetime,
                "energyEfficiency": self.energy_efficiency,
                "resilienceScore": self.resilience_score,
            },
            "units": {
                "networkAvailability": "%",
                "packetDeliveryRate": "%",
                "networkLifetime": "s",
                "energyEfficiency": "packets/J",
            },
            "details": self.details,
        }


class MetricsEngine:
    """Compute derived run metrics from aggregate statistics.

    Usage:
        engine = MetricsEngine()
        report = engine.compute_performance_report(aggregator.stats, started, ended)
    """

    def availability(self, stats: AggregateStats) -> float:
        """Alive fraction of the network, in percent (0 with no nodes)."""
        if stats.nodes.total <= 0:
            return 0.0
        return stats.nodes.alive / stats.nodes.total * 100

    def effective_pdr(self, stats: AggregateStats) -> float:
        """Derived PDR, or the simulation's own figure when nothing was counted."""
        if stats.packets.tx > 0 or stats.reported_pdr is None:
            return stats.pdr
        return max(0.0, min(100.0, stats.reported_pdr))

    def resilience_score(self, stats: AggregateStats) -> float:
        """availability x PDR / 100, with availability as a fraction."""
        return (self.availability(stats) / 100) * self.effective_pdr(stats) / 100

    def compute_performance_report(
        self,
        stats: AggregateStats,
        started_at: int,
        ended_at: int | None = None,
    ) -> PerformanceReport:
        """Build the report for a completed run.

        Args:
            stats: Final aggregate statistics
            started_at: Run start (ms)
            ended_at: Run end (ms); now if omitted

        Returns:
            PerformanceReport with values rounded to 2 decimals
        """
        now = int(time.time() * 1000)
        end = ended_at if ended_at is not None else now
        report = PerformanceReport(
            timestamp=now,
            simulation_duration=max(0, end - started_at),
            network_availability=round(self.availability(stats), 2),
            packet_delivery_rate=round(self.effective_pdr(stats), 2),
            network_lifetime=stats.network_lifetime,
            energy_efficiency=stats.energy.efficiency,
            resilience_score=round(self.resilience_score(stats), 2),
            details=stats.to_dict(),
        )
        logger.debug(
            "Performance report: availability=%.2f%% pdr=%.2f%% score=%.2f",
            report.network_availability,
            report.packet_delivery_rate,
            report.resilience_score,
        )
        return report
