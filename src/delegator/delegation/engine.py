"""
Delegation Engine - submission, agent selection, and outcome accounting.

Workflow:
1. submit_task persists a pending task and delegates it right away
2. delegate scores every active agent and commits the best one
3. start_task records the external "work has begun" signal
4. complete_task closes the assignment and updates the agent's record
"""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable

from delegator.config import DelegatorConfig
from delegator.errors import (
    InvalidTransitionError,
    NoAgentAvailableError,
    NotFoundError,
    ValidationError,
)
from delegator.events import EventLogger, build_event_logger
from delegator.models import (
    DEFAULT_AGENTS,
    Agent,
    AgentStatus,
    DelegationResult,
    Priority,
    Task,
    TaskStatus,
    new_task_id,
    parse_skills,
)
from delegator.storage.database import Database
from delegator.storage.store import Store
from .scorer import rank, select_best

logger = logging.getLogger(__name__)

DELEGATED_EVENT = "task-delegated"
DELEGATED_TAGS = ("delegation", "ai")


class DelegationEngine:
    """Assigns tasks to agents and keeps load and success statistics consistent."""

    def __init__(
        self,
        store: Store,
        config: DelegatorConfig | None = None,
        event_logger: EventLogger | None = None,
    ) -> None:
        self.store = store
        self.config = config or DelegatorConfig(data_dir=store.db.data_dir)
        self.event_logger = event_logger or build_event_logger(self.config, store.db.db_path)

    @classmethod
    def from_config(
        cls, config: DelegatorConfig, event_logger: EventLogger | None = None
    ) -> "DelegationEngine":
        db = Database(config.data_dir, busy_timeout=config.busy_timeout)
        return cls(Store(db), config, event_logger)

    # ── Setup ───────────────────────────────────────────────────────────

    def initialize(self, seed: bool = True) -> int:
        """
        Create tables and register the default agents if absent.

        Returns:
            Number of agents newly registered.
        """
        self.store.db.ensure_tables()
        if not seed:
            return 0
        registered = 0
        for spec in DEFAULT_AGENTS:
            agent = Agent(
                agent_id=spec.agent_id,
                name=spec.name,
                skills=frozenset(spec.skills),
                capacity=spec.capacity,
            )
            if self.store.register_agent(agent):
                registered += 1
        if registered:
            logger.info("Registered %d default agent(s)", registered)
        return registered

    def register_agent(
        self,
        agent_id: str,
        name: str,
        skills: str | Iterable[str],
        capacity: int = 5,
        status: AgentStatus | str = AgentStatus.ACTIVE,
        replace: bool = False,
    ) -> Agent:
        """Register an agent dynamically (insert-if-absent unless ``replace``)."""
        parsed = parse_skills(skills)
        if not parsed:
            raise ValidationError("An agent needs at least one skill")
        try:
            status = AgentStatus(status)
        except ValueError as exc:
            raise ValidationError(f"Unknown agent status: {status}") from exc
        agent = Agent(
            agent_id=agent_id,
            name=name or agent_id,
            skills=parsed,
            capacity=capacity,
            status=status,
        )
        if not self.store.register_agent(agent, replace=replace):
            logger.info("Agent %s already registered", agent_id)
        stored = self.store.get_agent(agent_id)
        assert stored is not None
        return stored

    def set_agent_status(self, agent_id: str, status: AgentStatus | str) -> Agent:
        try:
            status = AgentStatus(status)
        except ValueError as exc:
            raise ValidationError(f"Unknown agent status: {status}") from exc
        agent = self.store.set_agent_status(agent_id, status)
        logger.info("Agent %s is now %s", agent_id, status.value)
        return agent

    # ── Core operations ─────────────────────────────────────────────────

    def submit_task(
        self,
        title: str,
        required_skills: str | Iterable[str],
        priority: Priority | str = Priority.MEDIUM,
        description: str = "",
        complexity: int = 5,
        estimated_duration: int | None = None,
        auto_delegate: bool = True,
    ) -> str:
        """
        Create a pending task and, by default, delegate it immediately.

        Raises:
            ValidationError: title or required skills missing, bad priority/complexity
            NoAgentAvailableError: auto-delegation found no agent; the task stays pending

        Returns:
            The new task id.
        """
        if not title or not title.strip():
            raise ValidationError("Title is required")
        skills = parse_skills(required_skills)
        if not skills:
            raise ValidationError("Required skills are required")
        try:
            priority = Priority(priority)
        except ValueError as exc:
            raise ValidationError(f"Unknown priority: {priority}") from exc
        if estimated_duration is not None and estimated_duration < 0:
            raise ValidationError(f"estimated_duration must be >= 0, got {estimated_duration}")

        task = Task(
            task_id=new_task_id(),
            title=title.strip(),
            required_skills=skills,
            priority=priority,
            description=description or "",
            complexity=complexity,
            estimated_duration=estimated_duration,
        )
        self.store.insert_task(task)
        logger.info("Task created: %s (%s)", task.task_id, task.title)

        if auto_delegate:
            self.delegate(task.task_id)
        return task.task_id

    def delegate(self, task_id: str) -> DelegationResult:
        """
        Select the best active agent for a pending task and commit the assignment.

        Selection and commit share one write transaction, so the loads seen
        while scoring are the loads the assignment is applied to.

        Raises:
            NotFoundError: unknown task
            InvalidTransitionError: task is not pending
            NoAgentAvailableError: no active (or viable) agent
        """
        now = time.time()
        with self.store.db.transaction() as conn:
            task = self.store.get_task(task_id, conn=conn)
            if task is None:
                raise NotFoundError(f"Task not found: {task_id}")
            if task.status is not TaskStatus.PENDING:
                raise InvalidTransitionError(
                    task_id, task.status.value, TaskStatus.ASSIGNED.value
                )

            candidates = self.store.active_agents(conn=conn)
            if not candidates:
                raise NoAgentAvailableError("No active agents", task_id=task_id)
            if self.config.enforce_capacity:
                candidates = [a for a in candidates if a.has_capacity]
                if not candidates:
                    raise NoAgentAvailableError(
                        "All active agents are at capacity", task_id=task_id
                    )

            scored = rank(task, candidates)
            for agent, value in scored:
                logger.debug("Evaluating %s for %s: %.3f", agent.name, task_id, value)

            best = select_best(scored, min_score=self.config.min_score)
            if best is None:
                raise NoAgentAvailableError(
                    f"No agent reached the minimum score {self.config.min_score}",
                    task_id=task_id,
                )
            winner, best_score = best
            self.store.commit_assignment(conn, task_id, winner.agent_id, best_score, now)

        result = DelegationResult(
            task_id=task_id,
            agent_id=winner.agent_id,
            agent_name=winner.name,
            score=best_score,
            assigned_at=now,
            candidates=[(agent.agent_id, value) for agent, value in scored],
        )
        logger.info("Task %s delegated to %s (score: %.2f)", task_id, winner.name, best_score)
        self._emit(
            DELEGATED_EVENT,
            task_id,
            f"Task delegated to {winner.name} (score: {best_score:.2f})",
        )
        return result

    def start_task(self, task_id: str) -> Task:
        """Record that the assigned agent has started work (assigned -> in_progress)."""
        task = self.store.set_task_status(task_id, TaskStatus.IN_PROGRESS)
        logger.info("Task %s in progress", task_id)
        return task

    def set_task_status(self, task_id: str, status: TaskStatus | str) -> Task:
        """
        External status update.

        Terminal states are routed through complete_task so the agent's
        record stays consistent; delegation is the only way to ``assigned``.
        """
        try:
            target = TaskStatus(status)
        except ValueError as exc:
            raise ValidationError(f"Unknown task status: {status}") from exc
        if target is TaskStatus.COMPLETED:
            return self.complete_task(task_id, success=True)
        if target is TaskStatus.FAILED:
            return self.complete_task(task_id, success=False)
        if target is TaskStatus.ASSIGNED:
            self.delegate(task_id)
            task = self.store.get_task(task_id)
            assert task is not None
            return task
        return self.store.set_task_status(task_id, target)

    def complete_task(self, task_id: str, success: bool = True) -> Task:
        """
        Resolve an assigned or in-progress task.

        A successful outcome ends in ``completed``, an unsuccessful one in
        ``failed``. The agent's load drops by one, total_completed rises by
        one and success_rate takes the running mean including this outcome.

        Raises:
            NotFoundError: unknown task, or a task that was never assigned
            InvalidTransitionError: task already completed or failed
        """
        task, agent = self.store.resolve_assignment(task_id, success)
        logger.info(
            "Task %s %s by %s (success rate %.3f over %d)",
            task_id,
            task.status.value,
            agent.name,
            agent.success_rate,
            agent.total_completed,
        )
        return task

    def reconcile_loads(self) -> dict[str, tuple[int, int]]:
        return self.store.reconcile_loads()

    # ── Side effects ────────────────────────────────────────────────────

    def _emit(self, event_kind: str, subject_id: str, message: str) -> None:
        try:
            self.event_logger.log(event_kind, subject_id, message, DELEGATED_TAGS)
        except Exception as exc:  # noqa: BLE001
            # never roll back or fail a committed delegation over logging
            logger.warning("Event logger failed for %s %s: %s", event_kind, subject_id, exc)
