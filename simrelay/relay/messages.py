"""Wire message builders for the observer protocol.

Every server → client message is a JSON object with a ``type`` and a
millisecond ``timestamp``. Lifecycle notices use ``type: "system"`` and an
``event`` sub-tag.
"""

from __future__ import annotations

import time
from typing import Any


def now_ms() -> int:
    return int(time.time() * 1000)


def message(type_: str, **fields: Any) -> dict[str, Any]:
    """Build a message; ``timestamp`` defaults to now."""
    return {"type": type_, **fields, "timestamp": fields.get("timestamp", now_ms())}


def system(event: str, message_text: str | None = None, **fields: Any) -> dict[str, Any]:
    """Lifecycle notice (``type: system``)."""
    payload: dict[str, Any] = {"event": event}
    if message_text is not None:
        payload["message"] = message_text
    return message("system", **payload, **fields)


def pong() -> dict[str, Any]:
    now = now_ms()
    return {"type": "pong", "timestamp": now, "serverTime": now}


def stats(stats_dict: dict[str, Any]) -> dict[str, Any]:
    return message("stats", stats=stats_dict)


def node_states(nodes: list[dict[str, Any]], update: bool = False) -> dict[str, Any]:
    return message("node_states_update" if update else "node_states", nodes=nodes)


def node_history(
    node_id: int, history: list[dict[str, Any]], events: list[dict[str, Any]]
) -> dict[str, Any]:
    return message("node_history", nodeId=node_id, history=history, events=events)


def progress(event_count: int) -> dict[str, Any]:
    return message("progress", eventCount=event_count)


def node_event(original: dict[str, Any]) -> dict[str, Any]:
    """Digest of a node-related event for monitoring clients."""
    return message("node_event", original=original)


def crypto_event(original: dict[str, Any]) -> dict[str, Any]:
    """Digest of an encrypt/decrypt event for monitoring clients."""
    return message("crypto_event", original=original)


def node_update(event: dict[str, Any], nodes: list[dict[str, Any]]) -> dict[str, Any]:
    """Node event plus the full node table for rendering clients."""
    return message("node_update", event=event, nodeStates=nodes)


def performance_metrics(metrics: dict[str, float]) -> dict[str, Any]:
    return message("performance_metrics", metrics=metrics)


def performance_report(report: dict[str, Any]) -> dict[str, Any]:
    return message("performance_report", report=report)


def stats_summary(stats_dict: dict[str, Any], nodes: list[dict[str, Any]]) -> dict[str, Any]:
    return message("stats_summary", stats=stats_dict, nodeStates=nodes)
