"""Dashboard queries over the delegator database."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from typing import Any

from delegator.models import AgentStatus, TaskStatus
from delegator.storage.database import Database


@dataclass
class TaskCounts:
    """Task totals by lifecycle bucket."""

    total: int = 0
    pending: int = 0
    in_progress: int = 0  # assigned + in_progress
    completed: int = 0
    failed: int = 0


@dataclass
class DashboardSnapshot:
    tasks: TaskCounts
    active_agents: int
    top_performers: list[dict[str, Any]] = field(default_factory=list)
    recent_events: list[dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class Dashboard:
    """Read-only aggregation for the dashboard view."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def task_counts(self) -> TaskCounts:
        rows = self.db.execute("SELECT status, COUNT(*) AS n FROM tasks GROUP BY status")
        by_status = {row["status"]: row["n"] for row in rows}
        return TaskCounts(
            total=sum(by_status.values()),
            pending=by_status.get(TaskStatus.PENDING.value, 0),
            in_progress=by_status.get(TaskStatus.ASSIGNED.value, 0)
            + by_status.get(TaskStatus.IN_PROGRESS.value, 0),
            completed=by_status.get(TaskStatus.COMPLETED.value, 0),
            failed=by_status.get(TaskStatus.FAILED.value, 0),
        )

    def active_agent_count(self) -> int:
        rows = self.db.execute(
            "SELECT COUNT(*) AS n FROM agents WHERE status = ?", (AgentStatus.ACTIVE.value,)
        )
        return int(rows[0]["n"])

    def top_performers(self, limit: int = 5) -> list[dict[str, Any]]:
        """Active agents ranked by completed tasks, ties in registration order."""
        rows = self.db.execute(
            """
            SELECT agent_id, name, total_completed, success_rate, current_load, capacity
            FROM agents
            WHERE status = ?
            ORDER BY total_completed DESC, id ASC
            LIMIT ?
            """,
            (AgentStatus.ACTIVE.value, limit),
        )
        return [dict(row) for row in rows]

    def recent_events(self, limit: int = 10) -> list[dict[str, Any]]:
        rows = self.db.execute(
            """
            SELECT event_kind, subject_id, message, tags, logged_at
            FROM events ORDER BY id DESC LIMIT ?
            """,
            (limit,),
        )
        events = []
        for row in rows:
            event = dict(row)
            event["tags"] = json.loads(event["tags"]) if event["tags"] else []
            events.append(event)
        return events

    def snapshot(self, top: int = 5, events: int = 10) -> DashboardSnapshot:
        return DashboardSnapshot(
            tasks=self.task_counts(),
            active_agents=self.active_agent_count(),
            top_performers=self.top_performers(top),
            recent_events=self.recent_events(events),
        )
