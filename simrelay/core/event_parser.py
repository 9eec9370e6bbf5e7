"""Event parser: output line → event or diagnostic.

Responsible for:
- Recognizing single-line JSON objects as simulation events
- Extracting labelled metrics from console summary lines
- Reporting malformed candidates without interrupting the run
"""

from __future__ import annotations

import json
import logging
import math
import re

from ..models.events import (
    IGNORED,
    DiagnosticLine,
    LineClassification,
    MetricsEvent,
    SimEvent,
    parse_event,
)

logger = logging.getLogger(__name__)

# Lines containing any of these are worth inspecting
MARKERS = ("SIMULATION", "RESULT", "ERROR", "WARNING", "Node", "Energy")

# Lines containing any of these are relayed to observers verbatim
IMPORTANT = ("SIMULATION COMPLETE", "ENHANCED MEMOSTP", "Node died", "Energy:")

METRIC_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("pdr", re.compile(r"PDR:\s*([\d.]+)%")),
    ("throughput", re.compile(r"Throughput:\s*([\d.]+)\s*Mbps")),
    ("energy", re.compile(r"Energy.*?([\d.]+)\s*J")),
    ("delay", re.compile(r"Delay:\s*([\d.]+)\s*s")),
    ("deadNodes", re.compile(r"Dead Nodes:\s*(\d+)")),
)
ALIVE_PATTERN = re.compile(r"Alive Nodes:\s*(\d+)/(\d+)")


def _reject_constant(name: str) -> float:
    raise ValueError(f"non-finite number: {name}")


def _finite_float(text: str) -> float:
    value = float(text)
    if not math.isfinite(value):
        raise ValueError(f"non-finite number: {text}")
    return value


def extract_metrics(line: str) -> dict[str, float]:
    """Pull labelled numbers out of a console line."""
    metrics: dict[str, float] = {}
    for name, pattern in METRIC_PATTERNS:
        match = pattern.search(line)
        if match is None:
            continue
        try:
            metrics[name] = float(match.group(1))
        except ValueError:
            # "[\d.]+" also matches a lone "."
            continue

    alive = ALIVE_PATTERN.search(line)
    if alive is not None:
        metrics["aliveNodes"] = int(alive.group(1))
        metrics["totalNodes"] = int(alive.group(2))

    return metrics


def _level_for(line: str) -> str:
    if "ERROR" in line:
        return "error"
    if "WARNING" in line:
        return "warning"
    if "RESULT" in line:
        return "result"
    return "info"


def classify_line(line: str) -> LineClassification:
    """Classify one stdout line. Pure: no counters, no logging."""
    line = line.strip()
    if not line:
        return IGNORED

    if line.startswith("{") and line.endswith("}"):
        try:
            data = json.loads(line, parse_constant=_reject_constant, parse_float=_finite_float)
        except ValueError:
            return DiagnosticLine(text=line, level="parse_failure")
        if not isinstance(data, dict):
            return DiagnosticLine(text=line, level="parse_failure")
        return parse_event(data)

    if not any(marker in line for marker in MARKERS):
        return IGNORED

    important = any(marker in line for marker in IMPORTANT)
    metrics = extract_metrics(line)
    if metrics:
        return MetricsEvent(text=line, metrics=metrics, broadcast=important)
    return DiagnosticLine(text=line, level=_level_for(line), broadcast=important)


def classify_stderr(line: str) -> LineClassification:
    """Classify one stderr line. stderr never carries events."""
    line = line.strip()
    if not line or "Waf:" in line:
        return IGNORED
    if "ERROR" in line or "Assert" in line:
        return DiagnosticLine(text=line, level="error", broadcast=True, stream="stderr")
    return DiagnosticLine(text=line, level="info", stream="stderr")


class EventParser:
    """Classify simulation output lines and keep per-run counters.

    Usage:
        parser = EventParser()
        result = parser.parse_line('{"event": "packet_tx", "from": 1}')
        if isinstance(result, SimEvent):
            ...
    """

    def __init__(self) -> None:
        self._events_parsed: int = 0
        self._parse_errors: int = 0
        self._diagnostics: int = 0

    @property
    def events_parsed(self) -> int:
        """Total events successfully parsed."""
        return self._events_parsed

    @property
    def parse_errors(self) -> int:
        """Total malformed event candidates."""
        return self._parse_errors

    @property
    def diagnostics(self) -> int:
        """Total diagnostic lines (stdout and stderr)."""
        return self._diagnostics

    def parse_line(self, line: str) -> LineClassification:
        """Classify a stdout line, counting the outcome."""
        result = classify_line(line)
        self._count(result)
        return result

    def parse_stderr(self, line: str) -> LineClassification:
        """Classify a stderr line, counting the outcome."""
        result = classify_stderr(line)
        self._count(result)
        return result

    def _count(self, result: LineClassification) -> None:
        if isinstance(result, DiagnosticLine):
            if result.level == "parse_failure":
                self._parse_errors += 1
                logger.warning("Malformed event line: %.200s", result.text)
            else:
                self._diagnostics += 1
                logger.debug("Diagnostic (%s): %s", result.level, result.text)
        elif isinstance(result, MetricsEvent):
            self._diagnostics += 1
        elif isinstance(result, SimEvent):
            self._events_parsed += 1

    def reset_stats(self) -> None:
        """Reset parsing statistics."""
        self._events_parsed = 0
        self._parse_errors = 0
        self._diagnostics = 0
