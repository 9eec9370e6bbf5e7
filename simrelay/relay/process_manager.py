"""Simulation subprocess supervisor.

Owns the lifecycle of the external simulation process:

    idle → starting → running → {completed, failed, stopped} → idle

Output is streamed line by line into async hooks while the process runs.
Whatever ends the run (natural exit, timeout kill, stop request, spawn
failure) the ``on_exit`` hook receives one ProcessOutcome and the
supervisor returns to idle.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Literal

from ..config_schema import SimulationConfig
from ..errors import ErrorCode, ProcessFailure

logger = logging.getLogger(__name__)

LineHook = Callable[[str], Awaitable[None]]
StartHook = Callable[[str | None], Awaitable[None]]
OutcomeStatus = Literal["completed", "failed", "stopped"]


class SupervisorState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"


@dataclass
class StartResult:
    success: bool
    pid: int | None = None
    error: str | None = None
    code: ErrorCode | None = None

    def to_dict(self) -> dict[str, Any]:
        result = asdict(self)
        result["code"] = self.code.value if self.code else None
        return result


@dataclass
class StopResult:
    success: bool
    message: str = ""
    pid: int | None = None
    code: ErrorCode | None = None

    def to_dict(self) -> dict[str, Any]:
        result = asdict(self)
        result["code"] = self.code.value if self.code else None
        return result


@dataclass
class ProcessOutcome:
    """How a run ended."""

    status: OutcomeStatus
    exit_code: int | None = None
    signal: str | None = None
    reason: str | None = None
    pid: int | None = None
    started_at: int = 0  # ms
    ended_at: int = 0  # ms

    @property
    def duration_ms(self) -> int:
        return max(0, self.ended_at - self.started_at)


def _signal_name(returncode: int | None) -> str | None:
    """Name of the signal that killed the process, if any."""
    if returncode is None or returncode >= 0:
        return None
    try:
        return signal.Signals(-returncode).name
    except ValueError:
        return f"SIG{-returncode}"


class ProcessSupervisor:
    """Run one simulation process at a time.

    Usage:
        supervisor = ProcessSupervisor(config.simulation, on_stdout=handle_line)
        result = await supervisor.start()
        if not result.success:
            print(result.error)
        await supervisor.wait()
    """

    def __init__(
        self,
        settings: SimulationConfig,
        on_start: StartHook | None = None,
        on_stdout: LineHook | None = None,
        on_stderr: LineHook | None = None,
        on_exit: Callable[[ProcessOutcome], Awaitable[None]] | None = None,
    ) -> None:
        self.settings = settings
        self.on_start = on_start
        self.on_stdout = on_stdout
        self.on_stderr = on_stderr
        self.on_exit = on_exit

        self._lock = asyncio.Lock()
        self._state = SupervisorState.IDLE
        self._process: asyncio.subprocess.Process | None = None
        self._task: asyncio.Task[None] | None = None
        self._escalation: asyncio.Task[None] | None = None
        self._stop_requested = False
        self._started_at: int = 0
        self._started_monotonic: float | None = None
        self._last_outcome: ProcessOutcome | None = None

    @property
    def state(self) -> SupervisorState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._state in (SupervisorState.STARTING, SupervisorState.RUNNING)

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def last_outcome(self) -> ProcessOutcome | None:
        return self._last_outcome

    # --- Start ---

    async def start(self, requested_by: str | None = None) -> StartResult:
        """Start the simulation unless one is already active.

        Args:
            requested_by: Session id of the requester, passed to ``on_start``

        Returns:
            StartResult; ``code`` is ALREADY_RUNNING or SPAWN_FAILED on refusal
        """
        async with self._lock:
            if self._state is not SupervisorState.IDLE:
                return StartResult(
                    success=False,
                    pid=self.pid,
                    error="Simulation already running",
                    code=ErrorCode.ALREADY_RUNNING,
                )

            self._state = SupervisorState.STARTING
            self._stop_requested = False
            self._started_at = int(time.time() * 1000)
            self._started_monotonic = time.monotonic()

            try:
                if self.on_start is not None:
                    await self.on_start(requested_by)
                process = await self._spawn()
            except Exception as e:
                failure = ProcessFailure(f"Failed to start simulation: {e}", ErrorCode.SPAWN_FAILED)
                logger.error(failure.message)
                await self._finish(ProcessOutcome(
                    status="failed",
                    reason=ErrorCode.SPAWN_FAILED.value,
                    started_at=self._started_at,
                    ended_at=int(time.time() * 1000),
                ))
                return StartResult(success=False, error=failure.message, code=failure.code)

            self._process = process
            self._state = SupervisorState.RUNNING
            self._task = asyncio.create_task(self._supervise(process), name="simulation-supervisor")
            logger.info("Simulation started (pid %d)", process.pid)
            return StartResult(success=True, pid=process.pid)

    async def _spawn(self) -> asyncio.subprocess.Process:
        command = self.settings.command
        env = {**os.environ, **self.settings.env} if self.settings.env else None
        kwargs: dict[str, Any] = {
            "stdin": asyncio.subprocess.DEVNULL,
            "stdout": asyncio.subprocess.PIPE,
            "stderr": asyncio.subprocess.PIPE,
            "cwd": self.settings.cwd,
            "env": env,
            "limit": self.settings.stream_limit_bytes,
            # Own process group so stop/timeout reach shell children too
            "start_new_session": os.name == "posix",
        }
        if isinstance(command, str):
            logger.info("Spawning (shell): %s", command)
            return await asyncio.create_subprocess_shell(command, **kwargs)
        logger.info("Spawning: %s", " ".join(command))
        return await asyncio.create_subprocess_exec(*command, **kwargs)

    # --- Running ---

    async def _pump_lines(
        self, stream: asyncio.StreamReader | None, hook: LineHook | None, name: str
    ) -> None:
        if stream is None:
            return
        while True:
            try:
                raw = await stream.readline()
            except ValueError:
                logger.warning(
                    "Dropped %s line longer than %d bytes", name, self.settings.stream_limit_bytes
                )
                continue
            if not raw:
                return
            if hook is None:
                continue
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            try:
                await hook(line)
            except Exception:
                logger.exception("Error handling %s line: %.200s", name, line)

    async def _consume(self, process: asyncio.subprocess.Process) -> None:
        await asyncio.gather(
            self._pump_lines(process.stdout, self.on_stdout, "stdout"),
            self._pump_lines(process.stderr, self.on_stderr, "stderr"),
        )
        await process.wait()

    async def _supervise(self, process: asyncio.subprocess.Process) -> None:
        timed_out = False
        outcome: ProcessOutcome | None = None
        try:
            consumer = asyncio.create_task(self._consume(process))
            try:
                # Shielded: a timeout kills the process, never a half-handled line
                await asyncio.wait_for(asyncio.shield(consumer), self.settings.timeout_seconds)
            except asyncio.TimeoutError:
                timed_out = True
                logger.error(
                    "Simulation exceeded %.0fs timeout; killing pid %d",
                    self.settings.timeout_seconds, process.pid,
                )
                self._send_signal(process, signal.SIGKILL)
                await consumer
            outcome = self._outcome_for(process, timed_out)
        except Exception as e:
            logger.exception("Supervising simulation failed")
            if process.returncode is None:
                self._send_signal(process, signal.SIGKILL)
            outcome = ProcessOutcome(
                status="failed",
                exit_code=process.returncode,
                reason=f"supervisor error: {e}",
                pid=process.pid,
                started_at=self._started_at,
                ended_at=int(time.time() * 1000),
            )
        finally:
            if outcome is None:
                # Cancelled: still leave the supervisor idle
                outcome = ProcessOutcome(
                    status="stopped",
                    exit_code=process.returncode,
                    reason="cancelled",
                    pid=process.pid,
                    started_at=self._started_at,
                    ended_at=int(time.time() * 1000),
                )
            await self._finish(outcome)

    def _outcome_for(self, process: asyncio.subprocess.Process, timed_out: bool) -> ProcessOutcome:
        code = process.returncode
        sig = _signal_name(code)
        status: OutcomeStatus
        if timed_out:
            status, reason = "failed", ErrorCode.TIMEOUT.value
        elif self._stop_requested:
            status, reason = "stopped", "stopped"
        elif code == 0:
            status, reason = "completed", None
        else:
            status = "failed"
            reason = f"killed by {sig}" if sig else f"exit code {code}"

        return ProcessOutcome(
            status=status,
            exit_code=code,
            signal=sig,
            reason=reason,
            pid=process.pid,
            started_at=self._started_at,
            ended_at=int(time.time() * 1000),
        )

    async def _finish(self, outcome: ProcessOutcome) -> None:
        self._state = SupervisorState(outcome.status)
        self._last_outcome = outcome
        if self._escalation is not None:
            self._escalation.cancel()
            self._escalation = None

        if outcome.status == "failed":
            logger.error("Simulation failed: %s (exit code %s)", outcome.reason, outcome.exit_code)
        else:
            logger.info("Simulation %s (exit code %s)", outcome.status, outcome.exit_code)

        try:
            if self.on_exit is not None:
                await self.on_exit(outcome)
        except Exception:
            logger.exception("Completion handler failed")
        finally:
            self._process = None
            self._started_monotonic = None
            self._state = SupervisorState.IDLE

    # --- Stop ---

    def _send_signal(self, process: asyncio.subprocess.Process, sig: signal.Signals) -> None:
        if process.returncode is not None:
            return
        try:
            if os.name == "posix":
                os.killpg(process.pid, sig)
            else:
                process.send_signal(sig)
        except ProcessLookupError:
            pass

    async def stop(self) -> StopResult:
        """Ask the running simulation to terminate.

        Sends SIGTERM, then SIGKILL if it has not exited within
        ``stop_grace_seconds``. Completion is reported through ``on_exit``.
        """
        process = self._process
        if self._state is not SupervisorState.RUNNING or process is None:
            return StopResult(
                success=False,
                message="No simulation is currently running",
                code=ErrorCode.NOT_RUNNING,
            )

        if not self._stop_requested:
            self._stop_requested = True
            logger.info("Stopping simulation (pid %d)", process.pid)
            self._send_signal(process, signal.SIGTERM)
            self._escalation = asyncio.create_task(self._escalate(process))
        return StopResult(success=True, message="Simulation stop requested", pid=process.pid)

    async def _escalate(self, process: asyncio.subprocess.Process) -> None:
        try:
            await asyncio.wait_for(process.wait(), self.settings.stop_grace_seconds)
        except asyncio.TimeoutError:
            logger.warning("Simulation ignored SIGTERM; sending SIGKILL")
            self._send_signal(process, signal.SIGKILL)

    # --- Status ---

    async def wait(self) -> None:
        """Wait until the current run (if any) has fully completed."""
        task = self._task
        if task is not None and not task.done():
            await asyncio.shield(task)

    def status(self) -> dict[str, Any]:
        """Current state, pid and elapsed time."""
        elapsed = 0.0
        if self._started_monotonic is not None:
            elapsed = time.monotonic() - self._started_monotonic
        return {
            "state": self._state.value,
            "running": self.is_running,
            "pid": self.pid,
            "startedAt": self._started_at or None,
            "elapsedSeconds": round(elapsed, 3),
            "lastOutcome": asdict(self._last_outcome) if self._last_outcome else None,
        }
