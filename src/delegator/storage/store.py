"""
Store - typed access to agents, tasks and assignments.

Every method that touches more than one row runs in a single
``Database.transaction()``; callers that need to read and then write
(selection + commit) pass their own connection through ``conn``.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import time
from typing import Any

from delegator.errors import InvalidTransitionError, NotFoundError
from delegator.models import (
    Agent,
    AgentStatus,
    Assignment,
    Task,
    TaskStatus,
    can_transition,
    skills_to_json,
)
from delegator.storage.database import Database

logger = logging.getLogger(__name__)

_OPEN_COUNT_SQL = (
    "SELECT COUNT(*) FROM assignments "
    "WHERE agent_ref = (SELECT id FROM agents WHERE agent_id = ?) AND completed_at IS NULL"
)


class Store:
    """Persistent mapping of agents, tasks and assignments."""

    def __init__(self, db: Database) -> None:
        self.db = db

    # ── Agents ──────────────────────────────────────────────────────────

    def register_agent(self, agent: Agent, replace: bool = False) -> bool:
        """
        Insert an agent unless its agent_id already exists.

        With ``replace=True`` the name, skills, capacity and status of an
        existing agent are overwritten; its counters are kept.

        Returns:
            True if a new row was inserted.
        """
        last_seen = agent.last_seen or time.time()
        with self.db.transaction() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO agents (
                    agent_id, name, skills, capacity, current_load,
                    success_rate, total_completed, status, last_seen
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    agent.agent_id,
                    agent.name,
                    skills_to_json(agent.skills),
                    agent.capacity,
                    0,
                    agent.success_rate,
                    agent.total_completed,
                    agent.status.value,
                    last_seen,
                ),
            )
            inserted = cursor.rowcount == 1
            if not inserted and replace:
                conn.execute(
                    """
                    UPDATE agents
                    SET name = ?, skills = ?, capacity = ?, status = ?, last_seen = ?
                    WHERE agent_id = ?
                    """,
                    (
                        agent.name,
                        skills_to_json(agent.skills),
                        agent.capacity,
                        agent.status.value,
                        last_seen,
                        agent.agent_id,
                    ),
                )
        return inserted

    def set_agent_status(self, agent_id: str, status: AgentStatus | str) -> Agent:
        """Activate, idle or take an agent offline."""
        status = AgentStatus(status)
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE agents SET status = ?, last_seen = ? WHERE agent_id = ?",
                (status.value, time.time(), agent_id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Agent not found: {agent_id}")
            return self._require_agent(conn, agent_id)

    def touch_agent(self, agent_id: str) -> None:
        """Refresh an agent's last_seen marker."""
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "UPDATE agents SET last_seen = ? WHERE agent_id = ?", (time.time(), agent_id)
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Agent not found: {agent_id}")

    def get_agent(self, agent_id: str) -> Agent | None:
        """Get agent by ID."""
        rows = self.db.execute("SELECT * FROM agents WHERE agent_id = ?", (agent_id,))
        if rows:
            return self._row_to_agent(rows[0])
        return None

    def list_agents(self, status: AgentStatus | str | None = None) -> list[Agent]:
        """All agents in registration order, optionally filtered by status."""
        if status is None:
            rows = self.db.execute("SELECT * FROM agents ORDER BY id")
        else:
            rows = self.db.execute(
                "SELECT * FROM agents WHERE status = ? ORDER BY id",
                (AgentStatus(status).value,),
            )
        return [self._row_to_agent(row) for row in rows]

    def active_agents(self, conn: sqlite3.Connection | None = None) -> list[Agent]:
        """Active agents in registration order."""
        sql = "SELECT * FROM agents WHERE status = ? ORDER BY id"
        params = (AgentStatus.ACTIVE.value,)
        if conn is not None:
            rows = conn.execute(sql, params).fetchall()
        else:
            rows = self.db.execute(sql, params)
        return [self._row_to_agent(row) for row in rows]

    def open_assignment_count(self, agent_id: str) -> int:
        rows = self.db.execute(_OPEN_COUNT_SQL, (agent_id,))
        return int(rows[0][0])

    def reconcile_loads(self) -> dict[str, tuple[int, int]]:
        """
        Recompute every agent's current_load from its open assignments.

        Returns:
            Mapping of agent_id -> (stored_load, actual_load) for agents that drifted.
        """
        drifted: dict[str, tuple[int, int]] = {}
        with self.db.transaction() as conn:
            rows = conn.execute(
                """
                SELECT a.agent_id, a.current_load,
                       (SELECT COUNT(*) FROM assignments s
                        WHERE s.agent_ref = a.id AND s.completed_at IS NULL) AS open_count
                FROM agents a
                ORDER BY a.id
                """
            ).fetchall()
            for row in rows:
                if row["current_load"] != row["open_count"]:
                    drifted[row["agent_id"]] = (row["current_load"], row["open_count"])
                    conn.execute(
                        "UPDATE agents SET current_load = ? WHERE agent_id = ?",
                        (row["open_count"], row["agent_id"]),
                    )
        if drifted:
            logger.warning("Reconciled load for %d agent(s): %s", len(drifted), drifted)
        return drifted

    # ── Tasks ───────────────────────────────────────────────────────────

    def insert_task(self, task: Task) -> Task:
        """Persist a new task."""
        with self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO tasks (
                    task_id, title, description, required_skills, priority,
                    complexity, status, created_at, estimated_duration
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    task.task_id,
                    task.title,
                    task.description,
                    skills_to_json(task.required_skills),
                    task.priority.value,
                    task.complexity,
                    task.status.value,
                    task.created_at,
                    task.estimated_duration,
                ),
            )
        return task

    def get_task(self, task_id: str, conn: sqlite3.Connection | None = None) -> Task | None:
        """Get task by ID."""
        sql = "SELECT * FROM tasks WHERE task_id = ?"
        if conn is not None:
            rows = conn.execute(sql, (task_id,)).fetchall()
        else:
            rows = self.db.execute(sql, (task_id,))
        if rows:
            return self._row_to_task(rows[0])
        return None

    def list_tasks(
        self, status: TaskStatus | str | None = None, limit: int = 50
    ) -> list[Task]:
        """Most recent tasks first."""
        if status is None:
            rows = self.db.execute("SELECT * FROM tasks ORDER BY id DESC LIMIT ?", (limit,))
        else:
            rows = self.db.execute(
                "SELECT * FROM tasks WHERE status = ? ORDER BY id DESC LIMIT ?",
                (TaskStatus(status).value, limit),
            )
        return [self._row_to_task(row) for row in rows]

    def set_task_status(self, task_id: str, status: TaskStatus | str) -> Task:
        """
        Apply an external status update that involves no agent bookkeeping.

        Only ``assigned -> in_progress`` qualifies; transitions that change
        load or statistics go through commit_assignment / resolve_assignment.
        """
        target = TaskStatus(status)
        with self.db.transaction() as conn:
            task = self._require_task(conn, task_id)
            if target is not TaskStatus.IN_PROGRESS or not can_transition(task.status, target):
                raise InvalidTransitionError(task_id, task.status.value, target.value)
            conn.execute(
                "UPDATE tasks SET status = ? WHERE task_id = ?", (target.value, task_id)
            )
            task.status = target
        return task

    def assignments_for_task(self, task_id: str) -> list[Assignment]:
        rows = self.db.execute(
            """
            SELECT s.id, t.task_id, a.agent_id, s.score, s.assigned_at,
                   s.completed_at, s.success
            FROM assignments s
            JOIN tasks t ON t.id = s.task_ref
            JOIN agents a ON a.id = s.agent_ref
            WHERE t.task_id = ?
            ORDER BY s.id
            """,
            (task_id,),
        )
        return [self._row_to_assignment(row) for row in rows]

    # ── Compound updates ────────────────────────────────────────────────

    def commit_assignment(
        self,
        conn: sqlite3.Connection,
        task_id: str,
        agent_id: str,
        score: float,
        now: float,
    ) -> Assignment:
        """
        Bind a pending task to an agent inside the caller's transaction.

        Marks the task assigned, appends the assignment record and
        recomputes the agent's load from its open assignments.
        """
        task = self._require_task(conn, task_id)
        if not can_transition(task.status, TaskStatus.ASSIGNED):
            raise InvalidTransitionError(task_id, task.status.value, TaskStatus.ASSIGNED.value)
        agent_row = conn.execute(
            "SELECT id FROM agents WHERE agent_id = ?", (agent_id,)
        ).fetchone()
        if agent_row is None:
            raise NotFoundError(f"Agent not found: {agent_id}")

        conn.execute(
            """
            UPDATE tasks SET status = ?, assigned_to = ?, assigned_at = ?
            WHERE task_id = ?
            """,
            (TaskStatus.ASSIGNED.value, agent_id, now, task_id),
        )
        cursor = conn.execute(
            """
            INSERT INTO assignments (task_ref, agent_ref, score, assigned_at)
            VALUES ((SELECT id FROM tasks WHERE task_id = ?), ?, ?, ?)
            """,
            (task_id, agent_row["id"], score, now),
        )
        self._refresh_load(conn, agent_id, last_seen=now)
        return Assignment(
            id=cursor.lastrowid,
            task_id=task_id,
            agent_id=agent_id,
            score=score,
            assigned_at=now,
        )

    def resolve_assignment(self, task_id: str, success: bool) -> tuple[Task, Agent]:
        """
        Close a task's open assignment and update the agent's statistics.

        The running mean uses the pre-increment total:
        ``rate_n+1 = rate_n + (x - rate_n) / (n + 1)``.

        Returns:
            The updated task and agent.
        """
        target = TaskStatus.COMPLETED if success else TaskStatus.FAILED
        now = time.time()
        with self.db.transaction() as conn:
            task = self._require_task(conn, task_id)
            if task.assigned_to is None:
                raise NotFoundError(f"Task {task_id} has no assigned agent")
            if not can_transition(task.status, target):
                raise InvalidTransitionError(task_id, task.status.value, target.value)
            agent = self._require_agent(conn, task.assigned_to)

            actual_duration = None
            if task.assigned_at is not None:
                actual_duration = max(0, round((now - task.assigned_at) / 60))

            conn.execute(
                """
                UPDATE tasks SET status = ?, completed_at = ?, actual_duration = ?
                WHERE task_id = ?
                """,
                (target.value, now, actual_duration, task_id),
            )
            cursor = conn.execute(
                """
                UPDATE assignments SET completed_at = ?, success = ?
                WHERE task_ref = (SELECT id FROM tasks WHERE task_id = ?)
                AND completed_at IS NULL
                """,
                (now, int(success), task_id),
            )
            if cursor.rowcount != 1:
                logger.warning(
                    "Task %s had %d open assignment(s) on completion",
                    task_id,
                    cursor.rowcount,
                )

            completed_before = agent.total_completed
            outcome = 1.0 if success else 0.0
            new_rate = agent.success_rate + (outcome - agent.success_rate) / (completed_before + 1)
            new_rate = min(1.0, max(0.0, new_rate))
            conn.execute(
                """
                UPDATE agents SET total_completed = ?, success_rate = ?
                WHERE agent_id = ?
                """,
                (completed_before + 1, new_rate, agent.agent_id),
            )
            self._refresh_load(conn, agent.agent_id, last_seen=now)

            return self._require_task(conn, task_id), self._require_agent(conn, agent.agent_id)

    # ── Helpers ─────────────────────────────────────────────────────────

    def _refresh_load(self, conn: sqlite3.Connection, agent_id: str, last_seen: float) -> None:
        conn.execute(
            f"UPDATE agents SET current_load = ({_OPEN_COUNT_SQL}), last_seen = ? "
            "WHERE agent_id = ?",
            (agent_id, last_seen, agent_id),
        )

    def _require_task(self, conn: sqlite3.Connection, task_id: str) -> Task:
        task = self.get_task(task_id, conn=conn)
        if task is None:
            raise NotFoundError(f"Task not found: {task_id}")
        return task

    def _require_agent(self, conn: sqlite3.Connection, agent_id: str) -> Agent:
        row = conn.execute("SELECT * FROM agents WHERE agent_id = ?", (agent_id,)).fetchone()
        if row is None:
            raise NotFoundError(f"Agent not found: {agent_id}")
        return self._row_to_agent(row)

    def _row_to_agent(self, row: Any) -> Agent:
        """Convert database row to Agent."""
        return Agent(
            agent_id=row["agent_id"],
            name=row["name"],
            skills=frozenset(json.loads(row["skills"]) if row["skills"] else []),
            capacity=row["capacity"],
            current_load=row["current_load"],
            success_rate=row["success_rate"],
            total_completed=row["total_completed"],
            status=AgentStatus(row["status"]),
            last_seen=row["last_seen"],
        )

    def _row_to_task(self, row: Any) -> Task:
        """Convert database row to Task."""
        return Task(
            task_id=row["task_id"],
            title=row["title"],
            description=row["description"] or "",
            required_skills=frozenset(json.loads(row["required_skills"])),
            priority=row["priority"],
            complexity=row["complexity"],
            status=row["status"],
            assigned_to=row["assigned_to"],
            created_at=row["created_at"],
            assigned_at=row["assigned_at"],
            completed_at=row["completed_at"],
            estimated_duration=row["estimated_duration"],
            actual_duration=row["actual_duration"],
        )

    def _row_to_assignment(self, row: Any) -> Assignment:
        success = row["success"]
        return Assignment(
            id=row["id"],
            task_id=row["task_id"],
            agent_id=row["agent_id"],
            score=row["score"],
            assigned_at=row["assigned_at"],
            completed_at=row["completed_at"],
            success=None if success is None else bool(success),
        )
