"""Pytest fixtures for simrelay tests."""

from __future__ import annotations

from pathlib import Path
from typing import Iterator

import pytest
from dotenv import load_dotenv

from simrelay.config import reset_config
from simrelay.config_schema import AppConfig
from simrelay.core.state_aggregator import StateAggregator
from simrelay.models.events import parse_event
from tests.testing_utils import FakeTransport, make_config

# Load environment variables from .env before any tests run
load_dotenv()


@pytest.fixture(autouse=True)
def _fresh_config() -> Iterator[None]:
    """Each test starts without a cached global config."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    """Config with every durable file under tmp_path."""
    return make_config(tmp_path)


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def aggregator() -> StateAggregator:
    return StateAggregator(initial_energy=100.0)


@pytest.fixture
def network10(aggregator: StateAggregator) -> StateAggregator:
    """Aggregator after network_create with 10 nodes."""
    aggregator.apply(parse_event({"event": "network_create", "from": 10, "time": 0.0}))
    return aggregator
