"""Pydantic schema for configuration validation.

All config values are validated at startup. Typos and invalid values
fail fast with clear error messages.

Usage:
    from simrelay.config_schema import load_validated_config, AppConfig
    config = load_validated_config("config/config.yaml")
    # config is now a validated AppConfig instance
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


# =============================================================================
# BASE MODEL WITH STRICT VALIDATION
# =============================================================================

class StrictModel(BaseModel):
    """Base model that rejects unknown fields (catches typos)."""

    model_config = ConfigDict(extra="forbid")


# =============================================================================
# SERVER MODEL
# =============================================================================

class ServerConfig(StrictModel):
    """HTTP/WebSocket server configuration."""

    host: str = Field(
        default="0.0.0.0",
        description="Host to bind (0.0.0.0 for all interfaces)"
    )
    port: int = Field(
        default=8080,
        gt=0,
        lt=65536,
        description="Port number"
    )
    websocket_path: str = Field(
        default="/ws",
        description="WebSocket endpoint path"
    )
    cors_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        description="Allowed CORS origins"
    )

    @field_validator("websocket_path")
    @classmethod
    def path_is_absolute(cls, v: str) -> str:
        """WebSocket path must start with a slash."""
        if not v.startswith("/"):
            raise ValueError(f"websocket_path must start with '/': {v!r}")
        return v


# =============================================================================
# SIMULATION PROCESS MODEL
# =============================================================================

class SimulationConfig(StrictModel):
    """External simulation process configuration."""

    command: list[str] | str = Field(
        default="cd .. && ./ns3 run memostp-enhanced-with-node-death 2>&1",
        description="Argument list (exec) or shell string used to start the simulation"
    )
    cwd: str | None = Field(
        default=None,
        description="Working directory for the simulation process"
    )
    env: dict[str, str] = Field(
        default_factory=dict,
        description="Extra environment variables for the simulation process"
    )
    timeout_seconds: float = Field(
        default=300.0,
        gt=0,
        description="Hard wall-clock limit; exceeding it kills the process"
    )
    stop_grace_seconds: float = Field(
        default=10.0,
        ge=0,
        description="Seconds between SIGTERM and SIGKILL on stop"
    )
    stream_limit_bytes: int = Field(
        default=1024 * 1024,
        gt=0,
        description="Longest accepted output line"
    )
    initial_energy: float = Field(
        default=100.0,
        gt=0,
        description="Energy assigned to every node on network creation"
    )
    max_nodes: int = Field(
        default=10000,
        gt=0,
        description="Largest network_create accepted; bigger ones leave the node table as is"
    )

    @field_validator("command")
    @classmethod
    def command_not_empty(cls, v: list[str] | str) -> list[str] | str:
        """Reject empty commands."""
        if not v:
            raise ValueError("simulation.command must not be empty")
        return v


# =============================================================================
# RELAY MODEL
# =============================================================================

class RelayConfig(StrictModel):
    """Fan-out and client handling configuration."""

    status_interval_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Period of status_update broadcasts while a run is active"
    )
    progress_every: int = Field(
        default=50,
        gt=0,
        description="Broadcast a progress message every N events"
    )
    client_queue_size: int = Field(
        default=1000,
        gt=0,
        description="Outbound messages buffered per client before it is dropped"
    )
    send_timeout_seconds: float = Field(
        default=5.0,
        gt=0,
        description="A single send slower than this drops the client"
    )
    run_history_limit: int = Field(
        default=20,
        ge=0,
        description="Sealed run summaries kept for comparison (0 = none)"
    )
    recent_events: int = Field(
        default=50,
        gt=0,
        description="Default number of recent events returned by read endpoints"
    )


# =============================================================================
# EVENT LOG MODEL
# =============================================================================

class EventLogConfig(StrictModel):
    """Event retention and checkpoint configuration."""

    checkpoint_file: str = Field(
        default="simulation_data.json",
        description="Checkpoint file overwritten with the full run record"
    )
    checkpoint_every: int = Field(
        default=100,
        gt=0,
        description="Write a checkpoint every N events"
    )
    max_in_memory: int = Field(
        default=10000,
        gt=0,
        description="Events kept in memory; older ones spill to the journal"
    )
    reports_dir: str = Field(
        default=".",
        description="Directory for performance_report_<ms>.json files"
    )


# =============================================================================
# LOGGING MODEL
# =============================================================================

class LoggingConfig(StrictModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Root log level"
    )
    format: str = Field(
        default="%(asctime)s %(levelname)s %(name)s: %(message)s",
        description="logging.Formatter format string"
    )

    @model_validator(mode="before")
    @classmethod
    def normalize_level(cls, data: Any) -> Any:
        """Accept lowercase level names."""
        if isinstance(data, dict) and isinstance(data.get("level"), str):
            data = {**data, "level": data["level"].upper()}
        return data


# =============================================================================
# ROOT CONFIG MODEL
# =============================================================================

class AppConfig(StrictModel):
    """Root configuration model for the relay.

    All fields have sensible defaults, so an empty config file is valid.
    """

    server: ServerConfig = Field(default_factory=ServerConfig)
    simulation: SimulationConfig = Field(default_factory=SimulationConfig)
    relay: RelayConfig = Field(default_factory=RelayConfig)
    event_log: EventLogConfig = Field(default_factory=EventLogConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


# =============================================================================
# LOADING FUNCTIONS
# =============================================================================

def load_validated_config(config_path: str | Path = "config/config.yaml") -> AppConfig:
    """Load and validate configuration from YAML file.

    Args:
        config_path: Path to config YAML file.

    Returns:
        Validated AppConfig instance.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        pydantic.ValidationError: If config is invalid (with detailed error message).
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw_config = yaml.safe_load(f) or {}

    return AppConfig.model_validate(raw_config)


def validate_config_dict(config_dict: dict[str, Any]) -> AppConfig:
    """Validate a configuration dictionary.

    Raises:
        pydantic.ValidationError: If config is invalid.
    """
    return AppConfig.model_validate(config_dict)


__all__ = [
    "AppConfig",
    "ServerConfig",
    "SimulationConfig",
    "RelayConfig",
    "EventLogConfig",
    "LoggingConfig",
    "load_validated_config",
    "validate_config_dict",
]
