"""Testing utilities for the relay.

Provides an in-memory transport, config builders and async assertion
helpers for testing fan-out and process supervision without sockets.

Usage:
    from tests.testing_utils import FakeTransport, flush, make_config, wait_for

    transport = FakeTransport()
    client = await session.connect(transport)
    await session.commit(parse_event({"event": "packet_tx", "from": 1}))
    await flush(session.registry)
    assert transport.of_type("system")[0]["event"] == "client_connected"
"""

from __future__ import annotations

import asyncio
import sys
import textwrap
import time
from pathlib import Path
from typing import Any, Callable

from simrelay.config_schema import AppConfig, validate_config_dict
from simrelay.relay.registry import ClientRegistry


class FakeTransport:
    """Records every message sent; optionally slow or failing."""

    def __init__(self, fail: bool = False, delay: float = 0.0) -> None:
        self.fail = fail
        self.delay = delay
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self.close_code: int | None = None

    async def send_json(self, data: Any, mode: str = "text") -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise ConnectionError("transport closed")
        self.sent.append(data)

    async def close(self, code: int = 1000, reason: str | None = None) -> None:
        self.closed = True
        self.close_code = code

    def of_type(self, type_: str) -> list[dict[str, Any]]:
        return [m for m in self.sent if m.get("type") == type_]

    def system(self, event: str) -> list[dict[str, Any]]:
        return [m for m in self.sent if m.get("type") == "system" and m.get("event") == event]

    def events(self) -> list[dict[str, Any]]:
        """Relayed simulation events (they carry a sequence number)."""
        return [m for m in self.sent if "sequenceNumber" in m]


async def flush(registry: ClientRegistry, timeout: float = 2.0) -> None:
    """Wait until every queued message has been handed to its transport."""
    for session in registry.sessions():
        conn = registry.get(session.id)
        if conn is not None and not conn.closed:
            await asyncio.wait_for(conn.outbox.join(), timeout)


def make_config(tmp_path: Path, **overrides: dict[str, Any]) -> AppConfig:
    """Config writing every file under tmp_path, with section overrides."""
    data: dict[str, Any] = {
        "simulation": {"command": [sys.executable, "-c", "pass"], "timeout_seconds": 10},
        "relay": {"status_interval_seconds": 60},
        "event_log": {
            "checkpoint_file": str(tmp_path / "simulation_data.json"),
            "reports_dir": str(tmp_path / "reports"),
        },
    }
    for section, values in overrides.items():
        data[section] = {**data.get(section, {}), **values}
    return validate_config_dict(data)


def write_script(tmp_path: Path, body: str, name: str = "fake_sim.py") -> list[str]:
    """Write a throwaway simulation script; returns the command to run it."""
    path = tmp_path / name
    path.write_text(textwrap.dedent(body))
    return [sys.executable, "-u", str(path)]


async def wait_for(
    condition: Callable[[], bool],
    timeout: float = 2.0,
    interval: float = 0.01,
    message: str | None = None,
) -> None:
    """Wait until condition is True or timeout.

    Raises:
        TimeoutError: If condition not met within timeout
    """
    start = time.time()
    while not condition():
        if time.time() - start >= timeout:
            raise TimeoutError(message or f"Condition not met within {timeout}s")
        await asyncio.sleep(interval)
