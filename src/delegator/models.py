"""
Delegator Data Models

Agents, tasks and assignments as stored by the delegator, plus the task
state machine and the default agent roster.
"""

from __future__ import annotations

import json
import time
import uuid
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import StrEnum

from delegator.errors import ValidationError


class AgentStatus(StrEnum):
    """Agent availability. Only active agents are eligible for delegation."""

    ACTIVE = "active"
    IDLE = "idle"
    OFFLINE = "offline"


class Priority(StrEnum):
    """Task priority levels."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TaskStatus(StrEnum):
    """Task lifecycle states."""

    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED)

    @property
    def is_open(self) -> bool:
        return self in (TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS)


# pending -> assigned happens once, through delegation only
TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.PENDING: frozenset({TaskStatus.ASSIGNED}),
    TaskStatus.ASSIGNED: frozenset(
        {TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED, TaskStatus.FAILED}
    ),
    TaskStatus.IN_PROGRESS: frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED}),
    TaskStatus.COMPLETED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}


def can_transition(current: TaskStatus | str, target: TaskStatus | str) -> bool:
    """Check whether a task may move from ``current`` to ``target``."""
    return TaskStatus(target) in TRANSITIONS[TaskStatus(current)]


def parse_skills(raw: str | Iterable[str] | None) -> frozenset[str]:
    """
    Normalize a skill list into a set of lowercase tags.

    Accepts a JSON array (``'["debugging","backend"]'``), a JSON string
    (``'"debugging"'``), a comma-separated string, or any iterable of strings.
    """
    if raw is None:
        raise ValidationError("Required skills are required")
    if isinstance(raw, str):
        text = raw.strip()
        if text.startswith(("[", '"')):
            try:
                items = json.loads(text)
            except json.JSONDecodeError as exc:
                raise ValidationError(f"Invalid skills JSON: {raw}") from exc
            if isinstance(items, str):
                items = [items]
            elif not isinstance(items, list):
                raise ValidationError(f"Skills must be a list, got {raw}")
        else:
            items = text.split(",")
    else:
        try:
            items = list(raw)
        except TypeError as exc:
            raise ValidationError(f"Skills must be a list, got {raw!r}") from exc

    skills = set()
    for item in items:
        if not isinstance(item, str):
            raise ValidationError(f"Skill tags must be strings, got {item!r}")
        tag = item.strip().lower()
        if tag:
            skills.add(tag)
    return frozenset(skills)


def skills_to_json(skills: frozenset[str] | set[str]) -> str:
    return json.dumps(sorted(skills))


def new_task_id() -> str:
    """Timestamp plus random suffix, e.g. ``TASK-1767225600-3f9a1c2e``."""
    return f"TASK-{int(time.time())}-{uuid.uuid4().hex[:8]}"


@dataclass
class Agent:
    """A worker that can take tasks while active."""

    agent_id: str
    name: str
    skills: frozenset[str]
    capacity: int = 5
    current_load: int = 0
    success_rate: float = 0.0
    total_completed: int = 0
    status: AgentStatus = AgentStatus.ACTIVE
    last_seen: float | None = None

    def __post_init__(self) -> None:
        if not self.agent_id:
            raise ValidationError("agent_id is required")
        if self.capacity < 1:
            raise ValidationError(f"capacity must be positive, got {self.capacity}")
        if self.current_load < 0:
            raise ValidationError(f"current_load must be >= 0, got {self.current_load}")
        if not 0.0 <= self.success_rate <= 1.0:
            raise ValidationError(
                f"success_rate must be in [0.0, 1.0], got {self.success_rate}"
            )
        self.skills = frozenset(self.skills)
        self.status = AgentStatus(self.status)

    @property
    def has_capacity(self) -> bool:
        return self.current_load < self.capacity


@dataclass
class Task:
    """A unit of work moving from pending to a terminal status."""

    task_id: str
    title: str
    required_skills: frozenset[str]
    priority: Priority = Priority.MEDIUM
    description: str = ""
    complexity: int = 5  # 1-10, advisory only
    status: TaskStatus = TaskStatus.PENDING
    assigned_to: str | None = None
    created_at: float = field(default_factory=time.time)
    assigned_at: float | None = None
    completed_at: float | None = None
    estimated_duration: int | None = None  # minutes
    actual_duration: int | None = None  # minutes

    def __post_init__(self) -> None:
        if not 1 <= self.complexity <= 10:
            raise ValidationError(f"complexity must be in [1, 10], got {self.complexity}")
        self.required_skills = frozenset(self.required_skills)
        self.priority = Priority(self.priority)
        self.status = TaskStatus(self.status)


@dataclass
class Assignment:
    """Audit record binding one task to one agent."""

    task_id: str
    agent_id: str
    score: float
    assigned_at: float
    completed_at: float | None = None
    success: bool | None = None
    id: int | None = None

    @property
    def is_open(self) -> bool:
        return self.completed_at is None


@dataclass
class ScoreBreakdown:
    """Components of a match score."""

    base: float
    skill: float
    capacity: float
    success: float
    priority: float

    @property
    def total(self) -> float:
        return self.base + self.skill + self.capacity + self.success + self.priority


@dataclass
class DelegationResult:
    """Outcome of a successful delegation."""

    task_id: str
    agent_id: str
    agent_name: str
    score: float
    assigned_at: float
    candidates: list[tuple[str, float]] = field(default_factory=list)


@dataclass(frozen=True)
class AgentSpec:
    """Seed definition for a default agent."""

    agent_id: str
    name: str
    skills: tuple[str, ...]
    capacity: int


DEFAULT_AGENTS: tuple[AgentSpec, ...] = (
    AgentSpec("guardian-agent", "Guardian", ("monitoring", "security", "health-checks"), 10),
    AgentSpec("healer-agent", "Healer", ("debugging", "fixing", "recovery"), 5),
    AgentSpec("optimizer-agent", "Optimizer", ("performance", "refactoring", "optimization"), 3),
    AgentSpec("prophet-agent", "Prophet", ("prediction", "analytics", "forecasting"), 5),
    AgentSpec("scout-agent", "Scout", ("discovery", "research", "monitoring"), 8),
)
