"""Event log: bounded in-memory event history with durable checkpoints.

The newest ``max_in_memory`` events stay in memory. Older ones spill to an
append-only JSONL journal next to the checkpoint file, so the checkpoint
can always be written with the complete event sequence of the run.

Checkpoints and performance reports use atomic writes (temp file +
``os.replace``); an interrupted write leaves the previous file intact.
"""

from __future__ import annotations

import json
import logging
import os
import time
from collections import deque
from pathlib import Path
from typing import IO, Any, Iterator

from ..models.events import SimEvent, parse_event

logger = logging.getLogger(__name__)

# Current checkpoint format version
CHECKPOINT_VERSION = 1


def _atomic_write_json(path: Path, payload: dict[str, Any]) -> None:
    temp_file = path.with_name(path.name + ".tmp")
    with open(temp_file, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)
    os.replace(temp_file, path)


class EventLog:
    """Event history for the active run.

    Usage:
        log = EventLog("simulation_data.json", checkpoint_every=100)
        log.begin_run("run_1")
        log.append(event)
        if log.should_checkpoint(event.sequence_number):
            log.checkpoint(record)
    """

    def __init__(
        self,
        checkpoint_file: str | Path = "simulation_data.json",
        checkpoint_every: int = 100,
        max_in_memory: int = 10000,
        reports_dir: str | Path = ".",
    ) -> None:
        self.checkpoint_path = Path(checkpoint_file)
        self.journal_path = self.checkpoint_path.with_name(
            self.checkpoint_path.name + ".events.jsonl"
        )
        self.reports_dir = Path(reports_dir)
        self.checkpoint_every = checkpoint_every
        self.max_in_memory = max_in_memory

        self._memory: deque[SimEvent] = deque()
        self._journal: IO[str] | None = None
        self._evicted: int = 0
        self._checkpoints_written: int = 0
        self._run_id: str | None = None

    @property
    def run_id(self) -> str | None:
        return self._run_id

    @property
    def total(self) -> int:
        """Events appended this run (memory + journal)."""
        return self._evicted + len(self._memory)

    @property
    def in_memory(self) -> int:
        return len(self._memory)

    @property
    def evicted(self) -> int:
        return self._evicted

    @property
    def checkpoints_written(self) -> int:
        return self._checkpoints_written

    def begin_run(self, run_id: str) -> None:
        """Start a fresh history. The previous run's journal is discarded."""
        self.close()
        self._memory.clear()
        self._evicted = 0
        self._checkpoints_written = 0
        self._run_id = run_id
        self.journal_path.unlink(missing_ok=True)
        logger.debug("Event log started for run %s", run_id)

    def append(self, event: SimEvent) -> None:
        """Record an event, spilling the oldest to the journal past the cap."""
        self._memory.append(event)
        while len(self._memory) > self.max_in_memory:
            # Leaves memory only once the journal has it
            self._spill(self._memory[0])
            self._memory.popleft()

    def _spill(self, event: SimEvent) -> None:
        if self._journal is None:
            self.journal_path.parent.mkdir(parents=True, exist_ok=True)
            self._journal = open(self.journal_path, "a", encoding="utf-8")
        self._journal.write(json.dumps(event.to_wire()) + "\n")
        self._journal.flush()
        self._evicted += 1

    def _journal_entries(self) -> Iterator[dict[str, Any]]:
        if self._evicted == 0 or not self.journal_path.exists():
            return
        with open(self.journal_path, encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if line:
                    yield json.loads(line)

    def all_events(self) -> list[dict[str, Any]]:
        """Full event sequence of the run in wire form, oldest-first."""
        events = list(self._journal_entries())
        events.extend(e.to_wire() for e in self._memory)
        return events

    def recent(self, n: int) -> list[dict[str, Any]]:
        """Last n in-memory events in wire form, oldest-first."""
        if n <= 0:
            return []
        return [e.to_wire() for e in list(self._memory)[-n:]]

    def history_for(self, entity_id: int) -> list[dict[str, Any]]:
        """Events that name the given node, oldest-first."""
        history = [
            entry for entry in self._journal_entries()
            if parse_event(entry).involves(entity_id)
        ]
        history.extend(e.to_wire() for e in self._memory if e.involves(entity_id))
        return history

    def should_checkpoint(self, sequence_number: int) -> bool:
        return sequence_number > 0 and sequence_number % self.checkpoint_every == 0

    def checkpoint(self, record: dict[str, Any]) -> Path:
        """Durably write the run record together with every event.

        Args:
            record: Run metadata, stats, node states and death history

        Returns:
            Path to the checkpoint file
        """
        payload = {
            "version": CHECKPOINT_VERSION,
            **record,
            "events": self.all_events(),
            "savedAt": int(time.time() * 1000),
        }
        self.checkpoint_path.parent.mkdir(parents=True, exist_ok=True)
        _atomic_write_json(self.checkpoint_path, payload)
        self._checkpoints_written += 1
        logger.debug(
            "Checkpoint written to %s (%d events)", self.checkpoint_path, len(payload["events"])
        )
        return self.checkpoint_path

    def write_performance_report(self, report: dict[str, Any]) -> Path:
        """Write a timestamped performance_report_<ms>.json file."""
        self.reports_dir.mkdir(parents=True, exist_ok=True)
        path = self.reports_dir / f"performance_report_{int(time.time() * 1000)}.json"
        _atomic_write_json(path, report)
        logger.info("Performance report saved to: %s", path)
        return path

    def close(self) -> None:
        """Close the journal file handle."""
        if self._journal is not None:
            self._journal.close()
            self._journal = None
