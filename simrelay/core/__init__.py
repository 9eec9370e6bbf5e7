"""Relay core business logic.

Structured into:
- event_parser.py: Output line → event, metrics or diagnostic
- state_aggregator.py: Events → current network state
- metrics_engine.py: State → performance report
- event_log.py: Event history, journal and checkpoints
"""

from .event_parser import EventParser, classify_line, classify_stderr
from .state_aggregator import StateAggregator
from .metrics_engine import MetricsEngine, PerformanceReport
from .event_log import EventLog

__all__ = [
    "EventParser",
    "classify_line",
    "classify_stderr",
    "StateAggregator",
    "MetricsEngine",
    "PerformanceReport",
    "EventLog",
]
