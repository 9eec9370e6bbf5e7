"""Relay runtime: process supervision, client registry and fan-out.

Structured into:
- messages.py: Wire message builders
- registry.py: Connected observers and per-client delivery pumps
- broadcaster.py: Filtered and role-based fan-out, snapshots
- ticker.py: Cancellable periodic tasks
- process_manager.py: Simulation subprocess lifecycle
- session.py: Everything wired together for one server instance
"""

from .broadcaster import Broadcaster
from .process_manager import ProcessOutcome, ProcessSupervisor, SupervisorState
from .registry import ClientConnection, ClientRegistry
from .session import Session
from .ticker import PeriodicTask

__all__ = [
    "Broadcaster",
    "ProcessOutcome",
    "ProcessSupervisor",
    "SupervisorState",
    "ClientConnection",
    "ClientRegistry",
    "Session",
    "PeriodicTask",
]
