"""Relay data models.

Structured into:
- events.py: Simulation event variants (Pydantic) and line classifications
- state.py: Node, aggregate statistics and run state models
- clients.py: Observer role, subscription filter and session value
"""

from .events import (
    SimEvent,
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
    DiagnosticLine,
    MetricsEvent,
    Ignored,
    parse_event,
)
from .state import (
    EntityState,
    AggregateStats,
    RunRecord,
)
from .clients import (
    ClientCommand,
    ClientRole,
    ClientSession,
    SubscriptionFilter,
)

__all__ = [
    # Events
    "SimEvent",
    "NetworkCreateEvent",
    "EnergyInitEvent",
    "EnergyUpdateEvent",
    "DeathEvent",
    "PacketTxEvent",
    "PacketRxEvent",
    "CryptoEvent",
    "CryptoFailureEvent",
    "RouteRecoveryEvent",
    "StatsEvent",
    "UnrecognizedEvent",
    "DiagnosticLine",
    "MetricsEvent",
    "Ignored",
    "parse_event",
    # State
    "EntityState",
    "AggregateStats",
    "RunRecord",
    # Clients
    "ClientCommand",
    "ClientRole",
    "ClientSession",
    "SubscriptionFilter",
]
