"""Shared test fixtures for pinboard tests."""

import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Ensure the repository root (pinboard/, pin_server.py, pin_bot.py) is importable
sys.path.insert(0, str(Path(__file__).parent.parent))

from pinboard.clock import ManualClock
from pinboard.config import PinConfig
from pinboard.store import PinStore


@pytest.fixture
def clock():
    return ManualClock(datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def store(clock):
    return PinStore(config=PinConfig(), clock=clock)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "pins.db")
