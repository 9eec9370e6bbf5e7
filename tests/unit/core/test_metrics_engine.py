"""Tests for the performance report computations."""

from __future__ import annotations

from simrelay.core.metrics_engine import MetricsEngine
from simrelay.core.state_aggregator import StateAggregator
from simrelay.models.events import parse_event
from simrelay.models.state import AggregateStats


def stats_after(*events: dict) -> AggregateStats:
    aggregator = StateAggregator()
    for data in events:
        aggregator.apply(parse_event(data))
    return aggregator.stats


class TestMetricsEngine:
    def test_availability_and_score(self) -> None:
        stats = stats_after(
            {"event": "network_create", "from": 10},
            {"event": "stats_alive_nodes", "from": 8},
            {"event": "stats_packets", "from": 100, "to": 80},
        )
        engine = MetricsEngine()

        assert round(engine.availability(stats), 2) == 80.0
        assert engine.effective_pdr(stats) == 80.0
        assert round(engine.resilience_score(stats), 4) == 0.64

    def test_no_nodes(self) -> None:
        stats = AggregateStats()
        engine = MetricsEngine()

        assert engine.availability(stats) == 0.0
        assert engine.resilience_score(stats) == 0.0

    def test_reported_pdr_used_without_packet_counts(self) -> None:
        stats = stats_after(
            {"event": "network_create", "from": 4},
            {"event": "stats_pdr", "value": 75.0},
        )

        assert MetricsEngine().effective_pdr(stats) == 75.0

    def test_derived_pdr_preferred(self) -> None:
        stats = stats_after(
            {"event": "network_create", "from": 4},
            {"event": "stats_packets", "from": 10, "to": 5},
            {"event": "stats_pdr", "value": 75.0},
        )

        assert MetricsEngine().effective_pdr(stats) == 50.0


class TestPerformanceReport:
    def test_report_shape(self) -> None:
        stats = stats_after(
            {"event": "network_create", "from": 10},
            {"event": "node_died", "from": 1},
            {"event": "stats_packets", "from": 200, "to": 160},
            {"event": "stats_energy", "value": 32.0},
            {"event": "stats_network_lifetime", "value": 120.0},
        )

        report = MetricsEngine().compute_performance_report(stats, started_at=1000, ended_at=6000)
        data = report.to_dict()

        assert data["simulationDuration"] == 5000
        assert data["summary"] == {
            "networkAvailability": 90.0,
            "packetDeliveryRate": 80.0,
            "networkLifetime": 120.0,
            "energyEfficiency": 5.0,
            "resilienceScore": 0.72,
        }
        assert data["units"]["packetDeliveryRate"] == "%"
        assert data["details"]["packets"]["tx"] == 200

    def test_negative_duration_clamped(self) -> None:
        report = MetricsEngine().compute_performance_report(
            AggregateStats(), started_at=5000, ended_at=1000
        )
        assert report.simulation_duration == 0
