"""
Agent Scorer - skill, load, track-record and priority weighted matching.

Scoring formula (unclamped, may exceed 1.0):
    score = 0.5
          + 0.3  if agent skills intersect required skills
          + 0.1  if agent is under capacity
          + 0.1 * success_rate
          + 0.1  if task priority is urgent
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from delegator.models import Agent, Priority, ScoreBreakdown, Task

BASE_SCORE = 0.5
SKILL_MATCH_BONUS = 0.3
CAPACITY_BONUS = 0.1
SUCCESS_WEIGHT = 0.1
URGENT_BONUS = 0.1


def score_breakdown(task: Task, agent: Agent) -> ScoreBreakdown:
    """Score components for a (task, agent) pair."""
    skill_match = bool(task.required_skills & agent.skills)
    return ScoreBreakdown(
        base=BASE_SCORE,
        skill=SKILL_MATCH_BONUS if skill_match else 0.0,
        capacity=CAPACITY_BONUS if agent.has_capacity else 0.0,
        success=agent.success_rate * SUCCESS_WEIGHT,
        priority=URGENT_BONUS if task.priority is Priority.URGENT else 0.0,
    )


def score(task: Task, agent: Agent) -> float:
    """Match score for a (task, agent) pair. Pure and deterministic."""
    return score_breakdown(task, agent).total


def rank(task: Task, agents: Iterable[Agent]) -> list[tuple[Agent, float]]:
    """Score every candidate, keeping the candidates' order."""
    return [(agent, score(task, agent)) for agent in agents]


def select_best(
    scored: Sequence[tuple[Agent, float]],
    min_score: float | None = None,
) -> tuple[Agent, float] | None:
    """
    Pick the winner from scored candidates.

    The first candidate with a strictly greater score than the running best
    wins, so ties go to the earliest candidate. Candidates below
    ``min_score`` are ignored.
    """
    best: tuple[Agent, float] | None = None
    for agent, value in scored:
        if min_score is not None and value < min_score:
            continue
        if best is None or value > best[1]:
            best = (agent, value)
    return best
