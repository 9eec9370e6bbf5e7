"""Session: the relay's top-level aggregate.

Owns every piece of mutable run state (parser counters, aggregator,
event log, registry, supervisor, ticker, sequence counter, run record)
for one server instance.

One commit lock serializes everything that must observe a consistent
state: committing an event (sequence → aggregate → log → publish),
registering a client together with its welcome snapshot, status ticks,
command replies that read state, and run start/completion broadcasts.
The registry lock is only ever taken inside it, never around it.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
import uuid
from collections import deque
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from ..config import get_validated_config
from ..config_schema import AppConfig
from ..core.event_log import EventLog
from ..core.event_parser import EventParser
from ..core.metrics_engine import MetricsEngine
from ..core.state_aggregator import StateAggregator
from ..errors import ClientProtocolError, ErrorCode, process_error, protocol_error
from ..models.clients import ClientCommand, ClientRole, ClientSession, SubscriptionFilter
from ..models.events import DiagnosticLine, MetricsEvent, SimEvent
from ..models.state import RunRecord
from . import messages
from .broadcaster import Broadcaster
from .process_manager import ProcessOutcome, ProcessSupervisor, StartResult, StopResult
from .registry import ClientRegistry, Transport
from .ticker import PeriodicTask

logger = logging.getLogger(__name__)

CommandHandler = Callable[[str, ClientCommand], Awaitable[None]]

# ProcessOutcome.reason → error code of the simulation_error broadcast
FAILURE_CODES: dict[str, ErrorCode] = {
    ErrorCode.TIMEOUT.value: ErrorCode.TIMEOUT,
    ErrorCode.SPAWN_FAILED.value: ErrorCode.SPAWN_FAILED,
}


class Session:
    """Wire parser, aggregator, log, registry, broadcaster and supervisor.

    Usage:
        session = Session(config)
        client = await session.connect(websocket)
        await session.handle_message(client.id, '{"command": "start_simulation"}')
        ...
        await session.shutdown()
    """

    def __init__(self, config: AppConfig | None = None) -> None:
        self.config = config or get_validated_config()
        relay = self.config.relay
        log_cfg = self.config.event_log

        self.parser = EventParser()
        self.aggregator = StateAggregator(
            initial_energy=self.config.simulation.initial_energy,
            max_nodes=self.config.simulation.max_nodes,
        )
        self.metrics = MetricsEngine()
        self.event_log = EventLog(
            checkpoint_file=log_cfg.checkpoint_file,
            checkpoint_every=log_cfg.checkpoint_every,
            max_in_memory=log_cfg.max_in_memory,
            reports_dir=log_cfg.reports_dir,
        )
        self.registry = ClientRegistry(
            queue_size=relay.client_queue_size,
            send_timeout=relay.send_timeout_seconds,
        )
        self.broadcaster = Broadcaster(self.registry, self.snapshot_messages)
        self.supervisor = ProcessSupervisor(
            self.config.simulation,
            on_start=self._on_run_start,
            on_stdout=self.handle_stdout_line,
            on_stderr=self.handle_stderr_line,
            on_exit=self._on_run_exit,
        )
        self.status_ticker = PeriodicTask(
            relay.status_interval_seconds, self._on_status_tick, name="status-ticker"
        )

        self._commit_lock = asyncio.Lock()
        self._sequence: int = 0
        self._run: RunRecord | None = None
        self._run_history: deque[dict[str, Any]] = deque(maxlen=relay.run_history_limit)
        self._started_monotonic = time.monotonic()
        self._shutting_down = False

        self._handlers: dict[str, CommandHandler] = {
            "start_simulation": self._cmd_start_simulation,
            "stop_simulation": self._cmd_stop_simulation,
            "get_status": self._cmd_get_status,
            "get_stats": self._cmd_get_stats,
            "get_node_states": self._cmd_get_node_states,
            "get_node_history": self._cmd_get_node_history,
            "client_type": self._cmd_client_type,
            "subscribe": self._cmd_subscribe,
            "ping": self._cmd_ping,
        }

    # --- Read accessors ---

    @property
    def event_count(self) -> int:
        """Events committed in the current run."""
        return self._sequence

    @property
    def current_run(self) -> RunRecord | None:
        return self._run

    @property
    def run_history(self) -> list[dict[str, Any]]:
        """Summaries of sealed runs, oldest-first."""
        return list(self._run_history)

    @property
    def uptime(self) -> float:
        return time.monotonic() - self._started_monotonic

    def snapshot_messages(self, session: ClientSession, welcome: bool) -> list[dict[str, Any]]:
        """Messages that bring one observer up to date.

        Called with the commit lock held, so the snapshot reflects exactly
        the events committed so far.
        """
        nodes = self.aggregator.entity_list()
        stats = self.aggregator.stats_dict()
        started_at = self._run.started_at if self._run else None

        if not welcome:
            return [messages.message(
                "status",
                simulationRunning=self.supervisor.is_running,
                simulationStartTime=started_at,
                eventCount=self._sequence,
                connectedClients=self.registry.count,
                stats=stats,
                nodeStates=nodes,
            )]

        result = [messages.system(
            "client_connected",
            "Connected to simulation relay",
            clientId=session.id,
            role=session.role.value,
            serverTime=messages.now_ms(),
            simulationStatus="running" if self.supervisor.is_running else "idle",
            connectedClients=self.registry.count,
            simulationStats=stats,
            nodeStates=nodes,
            simulationData={"startTime": started_at, "eventCount": self._sequence},
        )]
        if nodes:
            result.append(messages.node_states(nodes))
        return result

    def health(self) -> dict[str, Any]:
        running = self.supervisor.is_running
        return {
            "status": "healthy",
            "running": running,
            "simulationRunning": running,
            "state": self.supervisor.state.value,
            "connectedClients": self.registry.count,
            "eventCount": self._sequence,
            "uptime": round(self.uptime, 3),
            "timestamp": messages.now_ms(),
        }

    def data(self) -> dict[str, Any]:
        """Current run record with the most recent events."""
        return {
            "run": self._run.summary() if self._run else None,
            "totalEvents": self._sequence,
            "stats": self.aggregator.stats_dict(),
            "nodeStates": self.aggregator.entity_list(),
            "nodeHistory": list(self.aggregator.death_history),
            "recentEvents": self.event_log.recent(self.config.relay.recent_events),
        }

    def state(self) -> dict[str, Any]:
        return {
            "process": self.supervisor.status(),
            "eventCount": self._sequence,
            "parseFailures": self.parser.parse_errors,
            "connectedClients": self.registry.count,
            "clients": [s.to_dict() for s in self.registry.sessions()],
            "deliveryFailures": self.broadcaster.delivery_failures,
            "stats": self.aggregator.stats_dict(),
        }

    def node_history(self, node_id: int) -> dict[str, Any]:
        return {
            "nodeId": node_id,
            "history": self.aggregator.history_for(node_id),
            "events": self.event_log.history_for(node_id),
        }

    def _record_dict(self) -> dict[str, Any]:
        record = self._run.summary() if self._run else {}
        return {
            **record,
            "stats": self.aggregator.stats_dict(),
            "nodeStates": self.aggregator.entity_list(),
            "nodeHistory": list(self.aggregator.death_history),
        }

    def _checkpoint(self) -> None:
        try:
            self.event_log.checkpoint(self._record_dict())
        except OSError as e:
            logger.error("Checkpoint write failed: %s", e)

    # --- Clients ---

    async def connect(self, transport: Transport) -> ClientSession:
        """Register an observer and queue its welcome snapshot."""
        async with self._commit_lock:
            async with self.registry.lock:
                conn = self.registry.register_unlocked(transport)
                self.broadcaster.snapshot_unlocked(conn.id, welcome=True)
        return conn.session

    async def disconnect(self, session_id: str) -> None:
        conn = await self.registry.unregister(session_id)
        if conn is None or self._shutting_down:
            return
        await self.broadcaster.broadcast(
            messages.system(
                "client_disconnected",
                clientId=session_id,
                connectedClients=self.registry.count,
            ),
            exclude=session_id,
        )

    async def handle_message(self, session_id: str, text: str) -> None:
        """Handle one inbound frame. Bad input is answered, never raised."""
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            logger.warning("Invalid JSON from %s: %.100s", session_id, text)
            await self.broadcaster.send_to(
                session_id, protocol_error("Invalid message format", ErrorCode.INVALID_JSON)
            )
            return

        if not isinstance(data, dict):
            await self.broadcaster.send_to(
                session_id, protocol_error("Message must be a JSON object")
            )
            return

        try:
            command = ClientCommand.model_validate(data)
        except ValidationError as e:
            await self.broadcaster.send_to(session_id, protocol_error(
                "Invalid message format",
                ErrorCode.INVALID_ENVELOPE,
                errors=[".".join(str(p) for p in err["loc"]) or err["msg"] for err in e.errors()],
            ))
            return

        logger.debug("Received from %s: %s", session_id, command.name)
        handler = self._handlers.get(command.name)
        if handler is None:
            logger.warning("Unknown command from %s: %s", session_id, command.name)
            await self.broadcaster.send_to(session_id, protocol_error(
                f"Unknown command: {command.name}", ErrorCode.UNKNOWN_COMMAND
            ))
            return

        try:
            await handler(session_id, command)
        except ClientProtocolError as e:
            logger.warning("Rejected %s from %s: %s", command.name, session_id, e.message)
            await self.broadcaster.send_to(session_id, e.to_message())

    # --- Commands ---

    async def _cmd_start_simulation(self, session_id: str, command: ClientCommand) -> None:
        result = await self.start_simulation(session_id)
        if result.code is ErrorCode.ALREADY_RUNNING:
            await self.broadcaster.send_to(session_id, messages.system(
                "simulation_already_running", "Simulation is already running"
            ))

    async def _cmd_stop_simulation(self, session_id: str, command: ClientCommand) -> None:
        result = await self.stop_simulation(session_id)
        if result.success:
            reply = messages.system("simulation_stopped", "Simulation stopped by user request")
        else:
            reply = messages.system("simulation_not_running", result.message)
        await self.broadcaster.send_to(session_id, reply)

    async def _cmd_get_status(self, session_id: str, command: ClientCommand) -> None:
        async with self._commit_lock:
            await self.broadcaster.snapshot(session_id)

    async def _cmd_get_stats(self, session_id: str, command: ClientCommand) -> None:
        async with self._commit_lock:
            await self.broadcaster.send_to(
                session_id, messages.stats(self.aggregator.stats_dict())
            )

    async def _cmd_get_node_states(self, session_id: str, command: ClientCommand) -> None:
        async with self._commit_lock:
            await self.broadcaster.send_to(
                session_id, messages.node_states(self.aggregator.entity_list())
            )

    async def _cmd_get_node_history(self, session_id: str, command: ClientCommand) -> None:
        if command.node_id is None:
            raise ClientProtocolError(
                "get_node_history requires nodeId", ErrorCode.MISSING_ARGUMENT, required=["nodeId"]
            )
        async with self._commit_lock:
            history = self.node_history(command.node_id)
            await self.broadcaster.send_to(session_id, messages.node_history(
                command.node_id, history["history"], history["events"]
            ))

    async def _cmd_client_type(self, session_id: str, command: ClientCommand) -> None:
        role = ClientRole.parse(command.client_type or command.role)
        subscription = SubscriptionFilter.from_list(command.subscribed_events)
        session = await self.registry.set_role(session_id, role, subscription)
        if session is not None:
            logger.info("Client %s set type to: %s", session_id, role.value)

    async def _cmd_subscribe(self, session_id: str, command: ClientCommand) -> None:
        if command.events is None:
            raise ClientProtocolError(
                "subscribe requires events", ErrorCode.MISSING_ARGUMENT, required=["events"]
            )
        subscription = SubscriptionFilter.from_list(command.events)
        session = await self.registry.set_filter(session_id, subscription)
        if session is not None:
            logger.info("Client %s subscribed to: %s", session_id, ", ".join(subscription.to_list()))

    async def _cmd_ping(self, session_id: str, command: ClientCommand) -> None:
        await self.broadcaster.send_to(session_id, messages.pong())

    # --- Run control ---

    async def start_simulation(self, requested_by: str | None = None) -> StartResult:
        """Start a run; concurrent callers get ALREADY_RUNNING."""
        if self._shutting_down:
            return StartResult(success=False, error="Server is shutting down")
        return await self.supervisor.start(requested_by)

    async def stop_simulation(self, requested_by: str | None = None) -> StopResult:
        result = await self.supervisor.stop()
        if result.success:
            logger.info("Stop requested by %s", requested_by or "server")
        return result

    async def _on_run_start(self, requested_by: str | None) -> None:
        async with self._commit_lock:
            run = RunRecord(run_id=f"run_{uuid.uuid4().hex[:12]}", started_at=messages.now_ms())
            self._run = run
            self._sequence = 0
            self.aggregator.reset()
            self.parser.reset_stats()
            self.event_log.begin_run(run.run_id)
            logger.info("Starting run %s (requested by %s)", run.run_id, requested_by or "server")
            await self.broadcaster.broadcast(messages.system(
                "simulation_starting",
                "Starting simulation...",
                initiator=requested_by,
                runId=run.run_id,
                startTime=run.started_at,
            ))
        self.status_ticker.start()

    async def _on_run_exit(self, outcome: ProcessOutcome) -> None:
        await self.status_ticker.stop()
        async with self._commit_lock:
            run = self._run
            if run is None:
                return
            run.total_events = self._sequence
            run.parse_failures = self.parser.parse_errors
            run.seal(
                ended_at=outcome.ended_at or messages.now_ms(),
                status=outcome.status,
                exit_code=outcome.exit_code,
                signal=outcome.signal,
                reason=outcome.reason,
            )
            stats = self.aggregator.stats_dict()
            run.final_stats = stats
            self._checkpoint()

            await self.broadcaster.broadcast(messages.system(
                "simulation_completed",
                f"Simulation completed. Total events: {run.total_events}",
                runId=run.run_id,
                status=run.status,
                exitCode=run.exit_code,
                signal=run.signal,
                reason=run.reason,
                duration=run.duration_ms,
                totalEvents=run.total_events,
                parseFailures=run.parse_failures,
                stats=stats,
            ))
            if outcome.status == "failed":
                code = FAILURE_CODES.get(outcome.reason or "", ErrorCode.NONZERO_EXIT)
                await self.broadcaster.broadcast({
                    **process_error(
                        f"Simulation error: {run.reason}",
                        code,
                        exitCode=run.exit_code,
                        signal=run.signal,
                    ),
                    "type": "system",
                    "event": "simulation_error",
                })
            await self.broadcaster.broadcast(
                messages.stats_summary(stats, self.aggregator.entity_list())
            )

            report = self.metrics.compute_performance_report(
                self.aggregator.stats, run.started_at, run.ended_at
            ).to_dict()
            try:
                self.event_log.write_performance_report(report)
            except OSError as e:
                logger.error("Performance report write failed: %s", e)
            await self.broadcaster.broadcast(messages.performance_report(report))

            self._run_history.append(run.summary())
            self.event_log.close()

    async def _on_status_tick(self) -> None:
        async with self._commit_lock:
            if not self.supervisor.is_running:
                return
            nodes = self.aggregator.entity_list()
            await self.broadcaster.broadcast(messages.message(
                "status_update",
                simulationRunning=True,
                elapsedTime=int(self.supervisor.status()["elapsedSeconds"] * 1000),
                eventCount=self._sequence,
                connectedClients=self.registry.count,
                stats=self.aggregator.stats_dict(),
                nodeStates=nodes,
            ))
            await self.broadcaster.publish_to_role(
                ClientRole.OBSERVER, messages.node_states(nodes, update=True)
            )

    # --- Simulation output ---

    async def handle_stdout_line(self, line: str) -> None:
        """Classify one stdout line and act on it."""
        result = self.parser.parse_line(line)
        if isinstance(result, SimEvent):
            await self.commit(result)
        elif isinstance(result, MetricsEvent):
            logger.info("%s", result.text)
            async with self._commit_lock:
                if result.broadcast:
                    await self.broadcaster.broadcast(
                        messages.system("simulation_output", result.text)
                    )
                await self.broadcaster.broadcast(messages.performance_metrics(result.metrics))
        elif isinstance(result, DiagnosticLine):
            if result.level == "parse_failure":
                async with self._commit_lock:
                    if self._run is not None:
                        self._run.parse_failures = self.parser.parse_errors
                return
            logger.info("%s", result.text)
            if result.broadcast:
                async with self._commit_lock:
                    await self.broadcaster.broadcast(
                        messages.system("simulation_output", result.text)
                    )

    async def handle_stderr_line(self, line: str) -> None:
        """stderr lines are diagnostics only; errors are relayed."""
        result = self.parser.parse_stderr(line)
        if not isinstance(result, DiagnosticLine):
            return
        if not result.broadcast:
            logger.info("Simulation stderr: %s", result.text)
            return
        logger.error("Simulation stderr: %s", result.text)
        async with self._commit_lock:
            await self.broadcaster.broadcast({
                **process_error(result.text, ErrorCode.SIMULATION_STDERR),
                "event": "simulation_stderr",
            })

    async def commit(self, event: SimEvent) -> SimEvent:
        """Sequence, apply, log and publish one event.

        Once numbered, the event is always logged and published. Failing to
        fold it into state or to journal it is logged, never leaves a gap.

        Returns:
            The event as committed (with sequence number and receive time)
        """
        async with self._commit_lock:
            self._sequence += 1
            event = event.sequenced(self._sequence, messages.now_ms())
            try:
                self.aggregator.apply(event)
            except (ValueError, TypeError, OverflowError) as e:
                logger.warning(
                    "Event %d (%s) not applied to state: %s", self._sequence, event.kind, e
                )
            try:
                self.event_log.append(event)
            except OSError as e:
                logger.error("Event %d not journaled: %s", self._sequence, e)
            if self._run is not None:
                self._run.total_events = self._sequence
            if self.event_log.should_checkpoint(self._sequence):
                self._checkpoint()

            await self.broadcaster.publish(event)
            await self._publish_role_extras(event)

            if self._sequence % self.config.relay.progress_every == 0:
                logger.info("Processed %d events (latest: %s)", self._sequence, event.kind)
                await self.broadcaster.broadcast(messages.progress(self._sequence))
            return event

    async def _publish_role_extras(self, event: SimEvent) -> None:
        kind = event.kind
        if "node" in kind:
            wire = event.to_wire()
            await self.broadcaster.publish_to_role(ClientRole.MONITORING, messages.node_event(wire))
            await self.broadcaster.publish_to_role(
                ClientRole.OBSERVER, messages.node_update(wire, self.aggregator.entity_list())
            )
        if "encrypt" in kind or "decrypt" in kind:
            await self.broadcaster.publish_to_role(
                ClientRole.MONITORING, messages.crypto_event(event.to_wire())
            )

    # --- Shutdown ---

    async def shutdown(self) -> None:
        """Stop the run, cancel the ticker, notify and close every client."""
        if self._shutting_down:
            return
        self._shutting_down = True
        logger.info("Server shutdown requested")

        if self.supervisor.is_running:
            await self.supervisor.stop()
            grace = self.config.simulation.stop_grace_seconds + 2.0
            try:
                await asyncio.wait_for(self.supervisor.wait(), grace)
            except asyncio.TimeoutError:
                logger.warning("Simulation did not finish within %.0fs of shutdown", grace)

        await self.status_ticker.stop()
        await self.broadcaster.broadcast(
            messages.system("server_shutdown", "Server is shutting down")
        )
        await self.registry.close_all(code=1000, reason="Server shutdown")
        self.event_log.close()
        logger.info("Server shutdown complete")
