"""Shared fixtures for delegator tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from delegator.config import DelegatorConfig
from delegator.delegation.engine import DelegationEngine
from delegator.events import NullEventLogger


class RecordingEventLogger:
    """Collects events in memory."""

    def __init__(self) -> None:
        self.events: list[tuple[str, str, str, tuple[str, ...]]] = []

    def log(self, event_kind: str, subject_id: str, message: str, tags) -> None:
        self.events.append((event_kind, subject_id, message, tuple(tags)))


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    return tmp_path / "delegator"


@pytest.fixture
def config(data_dir: Path) -> DelegatorConfig:
    return DelegatorConfig(data_dir=data_dir, busy_timeout=30.0)


@pytest.fixture
def events() -> RecordingEventLogger:
    return RecordingEventLogger()


@pytest.fixture
def engine(config: DelegatorConfig, events: RecordingEventLogger) -> DelegationEngine:
    """Engine with tables created and no agents registered."""
    eng = DelegationEngine.from_config(config, event_logger=events)
    eng.initialize(seed=False)
    return eng


@pytest.fixture
def quiet_engine(config: DelegatorConfig) -> DelegationEngine:
    eng = DelegationEngine.from_config(config, event_logger=NullEventLogger())
    eng.initialize(seed=False)
    return eng
