"""
Delegation core.

Core Components:
- models (from delegator.models): Agent, Task, Assignment and the task state machine
- scorer: skill/load/track-record/priority match scoring with stable tie-break
- engine: submission, delegation and completion accounting
"""

from delegator.models import (
    DEFAULT_AGENTS,
    Agent,
    AgentStatus,
    Assignment,
    DelegationResult,
    Priority,
    ScoreBreakdown,
    Task,
    TaskStatus,
    can_transition,
    parse_skills,
)
from .engine import DelegationEngine
from .scorer import rank, score, score_breakdown, select_best

__all__ = [
    # Models
    "DEFAULT_AGENTS",
    "Agent",
    "AgentStatus",
    "Assignment",
    "DelegationResult",
    "Priority",
    "ScoreBreakdown",
    "Task",
    "TaskStatus",
    "can_transition",
    "parse_skills",
    # Scorer
    "rank",
    "score",
    "score_breakdown",
    "select_best",
    # Engine
    "DelegationEngine",
]
