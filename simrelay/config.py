"""Configuration loader for the simulation relay.

All configurable values come from config/config.yaml.
No magic numbers in code - everything is configurable.

Configuration is validated at load time using Pydantic.
Typos and invalid values fail fast with clear error messages.

Usage:
    from simrelay.config import load_config, get_validated_config

    # Load and validate (call once at startup)
    load_config("config/config.yaml")

    # Anywhere else: the typed config object
    config = get_validated_config()
    interval = config.relay.status_interval_seconds
"""

from __future__ import annotations

from pathlib import Path

from .config_schema import AppConfig, load_validated_config

# Global config instance
_validated_config: AppConfig | None = None

# Default config path
DEFAULT_CONFIG_PATH: Path = Path(__file__).parent.parent / "config" / "config.yaml"


def load_config(config_path: str | Path | None = None) -> AppConfig:
    """Load and validate configuration from YAML file.

    An explicit path must exist. Without one, config/config.yaml is used
    when present and the schema defaults otherwise.

    Raises:
        FileNotFoundError: If an explicit config file doesn't exist.
        pydantic.ValidationError: If config is invalid.
    """
    global _validated_config

    if config_path is not None:
        _validated_config = load_validated_config(config_path)
    elif DEFAULT_CONFIG_PATH.exists():
        _validated_config = load_validated_config(DEFAULT_CONFIG_PATH)
    else:
        _validated_config = AppConfig()

    return _validated_config


def get_validated_config() -> AppConfig:
    """Get the validated configuration object.

    Loads default config if not already loaded.
    """
    global _validated_config
    if _validated_config is None:
        load_config()
    if _validated_config is None:
        raise RuntimeError("Validated config failed to load. Call load_config() first.")
    return _validated_config


def reset_config() -> None:
    """Forget the loaded config (next access reloads)."""
    global _validated_config
    _validated_config = None
