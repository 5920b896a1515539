"""
Event loggers for delegation side effects.

Logging an event is fire-and-forget: the engine catches and reports any
failure here, and nothing in this module waits on the outside world.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import subprocess
import time
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

from delegator.config import DelegatorConfig

logger = logging.getLogger(__name__)


class EventLogger(Protocol):
    """Anything that can record a delegation event."""

    def log(self, event_kind: str, subject_id: str, message: str, tags: Sequence[str]) -> None: ...


class NullEventLogger:
    """Drops every event."""

    def log(self, event_kind: str, subject_id: str, message: str, tags: Sequence[str]) -> None:
        return None


class JournalEventLogger:
    """Appends events to the ``events`` table of the delegator database."""

    def __init__(self, db_path: Path, timeout: float = 1.0) -> None:
        self.db_path = db_path
        self.timeout = timeout

    def log(self, event_kind: str, subject_id: str, message: str, tags: Sequence[str]) -> None:
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        try:
            conn.execute(
                """INSERT INTO events (event_kind, subject_id, message, tags, logged_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (event_kind, subject_id, message, json.dumps(list(tags)), time.time()),
            )
            conn.commit()
        finally:
            conn.close()


class CommandEventLogger:
    """
    Hands events to an external command without waiting for it.

    Invoked as ``<command> log <kind> <subject> <message> <tags>`` with tags
    joined by commas.
    """

    def __init__(self, command: str) -> None:
        self.command = command

    def log(self, event_kind: str, subject_id: str, message: str, tags: Sequence[str]) -> None:
        if not Path(self.command).exists():
            logger.debug("Event command not found, skipping: %s", self.command)
            return
        subprocess.Popen(
            [self.command, "log", event_kind, subject_id, message, ",".join(tags)],
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=True,
        )


def build_event_logger(config: DelegatorConfig, db_path: Path) -> EventLogger:
    """Create the event logger selected by ``config.event_log``."""
    if config.event_log == "command":
        return CommandEventLogger(config.event_command)
    if config.event_log == "none":
        return NullEventLogger()
    return JournalEventLogger(db_path)
