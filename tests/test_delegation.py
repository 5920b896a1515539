"""
Tests for the delegation module.

Covers: models, engine (submit, delegate, start, complete), event logging.
"""

from __future__ import annotations

import pytest

from delegator.config import DelegatorConfig
from delegator.delegation import (
    DEFAULT_AGENTS,
    Agent,
    AgentStatus,
    DelegationEngine,
    Priority,
    Task,
    TaskStatus,
    can_transition,
    parse_skills,
)
from delegator.errors import (
    InvalidTransitionError,
    NoAgentAvailableError,
    NotFoundError,
    ValidationError,
)
from delegator.events import JournalEventLogger
from delegator.models import new_task_id
from delegator.reporting import Dashboard


def _add_agent(
    engine: DelegationEngine,
    agent_id: str,
    skills: tuple[str, ...],
    capacity: int = 5,
    success_rate: float = 0.0,
    total_completed: int = 0,
    status: AgentStatus = AgentStatus.ACTIVE,
) -> None:
    engine.store.register_agent(
        Agent(
            agent_id=agent_id,
            name=agent_id.split("-")[0].title(),
            skills=frozenset(skills),
            capacity=capacity,
            success_rate=success_rate,
            total_completed=total_completed,
            status=status,
        )
    )


# ═══════════════════════════════════════════════════════════════════════════
# MODELS
# ═══════════════════════════════════════════════════════════════════════════


class TestParseSkills:
    def test_json_array(self):
        assert parse_skills('["debugging","Backend"]') == {"debugging", "backend"}

    def test_comma_list(self):
        assert parse_skills("debugging, backend,,") == {"debugging", "backend"}

    def test_iterable(self):
        assert parse_skills(["a", "a", " b "]) == {"a", "b"}

    def test_invalid_json(self):
        with pytest.raises(ValidationError):
            parse_skills('["debugging"')

    def test_non_string_items(self):
        with pytest.raises(ValidationError):
            parse_skills("[1, 2]")

    def test_json_string(self):
        assert parse_skills('"Debugging"') == {"debugging"}

    def test_json_scalar_rejected(self):
        with pytest.raises(ValidationError):
            parse_skills('"debugging')

    def test_none_and_non_iterable(self):
        with pytest.raises(ValidationError):
            parse_skills(None)
        with pytest.raises(ValidationError):
            parse_skills(3)

    def test_empty(self):
        assert parse_skills("") == frozenset()
        assert parse_skills("[]") == frozenset()


class TestStateMachine:
    def test_forward_path(self):
        assert can_transition(TaskStatus.PENDING, TaskStatus.ASSIGNED)
        assert can_transition(TaskStatus.ASSIGNED, TaskStatus.IN_PROGRESS)
        assert can_transition(TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED)
        assert can_transition(TaskStatus.ASSIGNED, TaskStatus.FAILED)

    def test_no_redelegation(self):
        assert not can_transition(TaskStatus.ASSIGNED, TaskStatus.ASSIGNED)
        assert not can_transition(TaskStatus.IN_PROGRESS, TaskStatus.ASSIGNED)

    def test_terminal_states(self):
        for terminal in (TaskStatus.COMPLETED, TaskStatus.FAILED):
            assert terminal.is_terminal
            for target in TaskStatus:
                assert not can_transition(terminal, target)

    def test_pending_cannot_complete(self):
        assert not can_transition("pending", "completed")


class TestModels:
    def test_task_complexity_validation(self):
        with pytest.raises(ValidationError, match="complexity"):
            Task(task_id="t", title="x", required_skills=frozenset({"a"}), complexity=11)

    def test_agent_capacity_validation(self):
        with pytest.raises(ValidationError, match="capacity"):
            Agent(agent_id="a", name="A", skills=frozenset({"x"}), capacity=0)

    def test_agent_success_rate_validation(self):
        with pytest.raises(ValidationError, match="success_rate"):
            Agent(agent_id="a", name="A", skills=frozenset({"x"}), success_rate=1.5)

    def test_task_ids_unique(self):
        ids = {new_task_id() for _ in range(500)}
        assert len(ids) == 500
        assert all(i.startswith("TASK-") for i in ids)

    def test_default_agents(self):
        ids = [spec.agent_id for spec in DEFAULT_AGENTS]
        assert ids == [
            "guardian-agent",
            "healer-agent",
            "optimizer-agent",
            "prophet-agent",
            "scout-agent",
        ]
        capacities = {spec.name: spec.capacity for spec in DEFAULT_AGENTS}
        assert capacities == {
            "Guardian": 10,
            "Healer": 5,
            "Optimizer": 3,
            "Prophet": 5,
            "Scout": 8,
        }


# ═══════════════════════════════════════════════════════════════════════════
# ENGINE - SETUP
# ═══════════════════════════════════════════════════════════════════════════


class TestInitialize:
    def test_seeds_default_agents(self, engine):
        assert engine.initialize() == 5
        agents = engine.store.list_agents()
        assert [a.agent_id for a in agents] == [s.agent_id for s in DEFAULT_AGENTS]
        assert all(a.status is AgentStatus.ACTIVE for a in agents)

    def test_seeding_is_idempotent(self, engine):
        engine.initialize()
        engine.store.set_agent_status("scout-agent", AgentStatus.OFFLINE)
        assert engine.initialize() == 0
        assert len(engine.store.list_agents()) == 5
        scout = engine.store.get_agent("scout-agent")
        assert scout is not None
        assert scout.status is AgentStatus.OFFLINE

    def test_register_agent(self, engine):
        agent = engine.register_agent("tester-agent", "Tester", '["testing","qa"]', capacity=2)
        assert agent.skills == {"testing", "qa"}
        assert agent.capacity == 2

    def test_register_agent_requires_skills(self, engine):
        with pytest.raises(ValidationError):
            engine.register_agent("empty-agent", "Empty", "[]")
        with pytest.raises(ValidationError):
            engine.register_agent("empty-agent", "Empty", None)
        with pytest.raises(ValidationError):
            engine.register_agent("empty-agent", "Empty", 42)
        assert engine.store.get_agent("empty-agent") is None

    def test_register_agent_replace(self, engine):
        engine.register_agent("tester-agent", "Tester", "testing", capacity=2)
        kept = engine.register_agent("tester-agent", "Other", "qa", capacity=9)
        assert kept.name == "Tester"
        replaced = engine.register_agent("tester-agent", "Other", "qa", capacity=9, replace=True)
        assert replaced.name == "Other"
        assert replaced.capacity == 9

    def test_set_agent_status_unknown(self, engine):
        with pytest.raises(NotFoundError):
            engine.set_agent_status("ghost-agent", "idle")
        with pytest.raises(ValidationError):
            engine.set_agent_status("ghost-agent", "sleeping")


# ═══════════════════════════════════════════════════════════════════════════
# ENGINE - SUBMIT & DELEGATE
# ═══════════════════════════════════════════════════════════════════════════


class TestSubmit:
    def test_requires_title(self, engine):
        with pytest.raises(ValidationError, match="Title"):
            engine.submit_task("  ", ["debugging"])

    def test_requires_skills(self, engine):
        with pytest.raises(ValidationError, match="skills"):
            engine.submit_task("Fix bug", [])
        with pytest.raises(ValidationError):
            engine.submit_task("Fix bug", "[]")
        with pytest.raises(ValidationError, match="skills"):
            engine.submit_task("Fix bug", None)

    def test_rejects_unknown_priority(self, engine):
        with pytest.raises(ValidationError, match="priority"):
            engine.submit_task("Fix bug", ["debugging"], priority="critical")

    def test_rejects_bad_complexity(self, engine):
        with pytest.raises(ValidationError):
            engine.submit_task("Fix bug", ["debugging"], complexity=0, auto_delegate=False)

    def test_validation_persists_nothing(self, engine):
        with pytest.raises(ValidationError):
            engine.submit_task("", ["debugging"])
        assert engine.store.list_tasks() == []

    def test_auto_delegates(self, engine, events):
        _add_agent(engine, "healer-agent", ("debugging",))
        task_id = engine.submit_task(
            "Fix bug", '["debugging","backend"]', priority="urgent", description="500 on login"
        )

        task = engine.store.get_task(task_id)
        assert task is not None
        assert task.status is TaskStatus.ASSIGNED
        assert task.assigned_to == "healer-agent"
        assert task.description == "500 on login"
        assert len(events.events) == 1
        kind, subject, message, tags = events.events[0]
        assert kind == "task-delegated"
        assert subject == task_id
        assert "Healer" in message
        assert tags == ("delegation", "ai")

    def test_without_auto_delegate(self, engine):
        _add_agent(engine, "healer-agent", ("debugging",))
        task_id = engine.submit_task("Fix bug", ["debugging"], auto_delegate=False)
        task = engine.store.get_task(task_id)
        assert task is not None
        assert task.status is TaskStatus.PENDING
        assert engine.store.assignments_for_task(task_id) == []

    def test_identical_submissions_are_independent(self, engine):
        _add_agent(engine, "healer-agent", ("debugging",), capacity=1)
        _add_agent(engine, "fixer-agent", ("debugging",), capacity=1)

        first = engine.submit_task("Fix bug", ["debugging"])
        second = engine.submit_task("Fix bug", ["debugging"])

        assert first != second
        t1 = engine.store.get_task(first)
        t2 = engine.store.get_task(second)
        assert t1 is not None and t2 is not None
        # healer fills up, so the second goes to the agent still under capacity
        assert t1.assigned_to == "healer-agent"
        assert t2.assigned_to == "fixer-agent"

    def test_no_agents_leaves_task_pending(self, engine):
        with pytest.raises(NoAgentAvailableError) as exc_info:
            engine.submit_task("Fix bug", ["debugging"])
        task_id = exc_info.value.task_id
        assert task_id is not None
        task = engine.store.get_task(task_id)
        assert task is not None
        assert task.status is TaskStatus.PENDING


class TestDelegate:
    def test_unknown_task(self, engine):
        _add_agent(engine, "healer-agent", ("debugging",))
        with pytest.raises(NotFoundError):
            engine.delegate("TASK-0-missing")

    def test_zero_active_agents(self, engine, events):
        _add_agent(engine, "healer-agent", ("debugging",), status=AgentStatus.OFFLINE)
        _add_agent(engine, "guardian-agent", ("monitoring",), status=AgentStatus.IDLE)
        task_id = engine.submit_task("Fix bug", ["debugging"], auto_delegate=False)

        with pytest.raises(NoAgentAvailableError):
            engine.delegate(task_id)

        task = engine.store.get_task(task_id)
        assert task is not None
        assert task.status is TaskStatus.PENDING
        assert task.assigned_to is None
        assert engine.store.assignments_for_task(task_id) == []
        assert events.events == []

    def test_retry_after_failure(self, engine):
        task_id = engine.submit_task("Fix bug", ["debugging"], auto_delegate=False)
        with pytest.raises(NoAgentAvailableError):
            engine.delegate(task_id)

        _add_agent(engine, "healer-agent", ("debugging",))
        result = engine.delegate(task_id)
        assert result.agent_id == "healer-agent"
        assert len(engine.store.assignments_for_task(task_id)) == 1

    def test_commit_effects(self, engine):
        _add_agent(engine, "healer-agent", ("debugging",))
        task_id = engine.submit_task("Fix bug", ["debugging"], auto_delegate=False)

        before = engine.store.get_agent("healer-agent")
        result = engine.delegate(task_id)
        after = engine.store.get_agent("healer-agent")

        assert before is not None and after is not None
        assert after.current_load == before.current_load + 1
        assignments = engine.store.assignments_for_task(task_id)
        assert len(assignments) == 1
        assert assignments[0].agent_id == "healer-agent"
        assert assignments[0].score == pytest.approx(result.score)
        assert assignments[0].is_open
        task = engine.store.get_task(task_id)
        assert task is not None
        assert task.status is TaskStatus.ASSIGNED
        assert task.assigned_at is not None and task.assigned_at >= task.created_at

    def test_end_to_end_healer_over_guardian(self, engine):
        _add_agent(engine, "guardian-agent", ("monitoring",), capacity=10, success_rate=0.5)
        _add_agent(engine, "healer-agent", ("debugging",), capacity=5, success_rate=0.9)

        task_id = engine.submit_task(
            "Fix bug", ["debugging"], priority="urgent", auto_delegate=False
        )
        result = engine.delegate(task_id)

        assert result.agent_id == "healer-agent"
        assert result.score == pytest.approx(1.09)
        scores = dict(result.candidates)
        assert scores["guardian-agent"] == pytest.approx(0.75)

    def test_ties_go_to_first_registered(self, engine):
        _add_agent(engine, "alpha-agent", ("debugging",))
        _add_agent(engine, "beta-agent", ("debugging",))
        task_id = engine.submit_task("Fix bug", ["debugging"])
        task = engine.store.get_task(task_id)
        assert task is not None
        assert task.assigned_to == "alpha-agent"

    def test_rejects_already_assigned(self, engine):
        _add_agent(engine, "healer-agent", ("debugging",))
        task_id = engine.submit_task("Fix bug", ["debugging"])

        with pytest.raises(InvalidTransitionError):
            engine.delegate(task_id)

        agent = engine.store.get_agent("healer-agent")
        assert agent is not None
        assert agent.current_load == 1
        assert len(engine.store.assignments_for_task(task_id)) == 1

    def test_capacity_is_soft_by_default(self, engine):
        """With every agent full, the best agent is still picked."""
        _add_agent(engine, "healer-agent", ("debugging",), capacity=1)
        engine.submit_task("Fix bug", ["debugging"])
        second = engine.submit_task("Fix other bug", ["debugging"])

        task = engine.store.get_task(second)
        agent = engine.store.get_agent("healer-agent")
        assert task is not None and agent is not None
        assert task.assigned_to == "healer-agent"
        assert agent.current_load == 2

    def test_enforce_capacity(self, config, events):
        strict = DelegationEngine.from_config(
            config.model_copy(update={"enforce_capacity": True}), event_logger=events
        )
        strict.initialize(seed=False)
        _add_agent(strict, "healer-agent", ("debugging",), capacity=1)
        strict.submit_task("Fix bug", ["debugging"])

        with pytest.raises(NoAgentAvailableError, match="capacity") as exc_info:
            strict.submit_task("Fix other bug", ["debugging"])
        task = strict.store.get_task(exc_info.value.task_id)
        assert task is not None
        assert task.status is TaskStatus.PENDING

    def test_min_score(self, config, events):
        picky = DelegationEngine.from_config(
            config.model_copy(update={"min_score": 0.8}), event_logger=events
        )
        picky.initialize(seed=False)
        _add_agent(picky, "guardian-agent", ("monitoring",))

        with pytest.raises(NoAgentAvailableError, match="minimum score"):
            picky.submit_task("Fix bug", ["debugging"])

        _add_agent(picky, "healer-agent", ("debugging",))
        task_id = picky.submit_task("Fix bug", ["debugging"])
        task = picky.store.get_task(task_id)
        assert task is not None
        assert task.assigned_to == "healer-agent"

    def test_event_logger_failure_does_not_roll_back(self, config):
        class BrokenLogger:
            def log(self, event_kind, subject_id, message, tags):
                raise OSError("disk full")

        eng = DelegationEngine.from_config(config, event_logger=BrokenLogger())
        eng.initialize(seed=False)
        _add_agent(eng, "healer-agent", ("debugging",))

        task_id = eng.submit_task("Fix bug", ["debugging"])
        task = eng.store.get_task(task_id)
        assert task is not None
        assert task.status is TaskStatus.ASSIGNED

    def test_journal_event_logger(self, config):
        eng = DelegationEngine.from_config(config)
        eng.initialize(seed=False)
        assert isinstance(eng.event_logger, JournalEventLogger)
        _add_agent(eng, "healer-agent", ("debugging",))

        task_id = eng.submit_task("Fix bug", ["debugging"])
        events = Dashboard(eng.store.db).recent_events()
        assert len(events) == 1
        assert events[0]["event_kind"] == "task-delegated"
        assert events[0]["subject_id"] == task_id
        assert events[0]["tags"] == ["delegation", "ai"]


# ═══════════════════════════════════════════════════════════════════════════
# ENGINE - START & COMPLETE
# ═══════════════════════════════════════════════════════════════════════════


class TestComplete:
    def test_success_updates_running_mean(self, engine):
        _add_agent(engine, "healer-agent", ("debugging",), success_rate=0.75, total_completed=4)
        task_id = engine.submit_task("Fix bug", ["debugging"])
        loaded = engine.store.get_agent("healer-agent")
        assert loaded is not None and loaded.current_load == 1

        task = engine.complete_task(task_id, success=True)

        agent = engine.store.get_agent("healer-agent")
        assert agent is not None
        assert agent.success_rate == pytest.approx(0.8)
        assert agent.total_completed == 5
        assert agent.current_load == 0
        assert task.status is TaskStatus.COMPLETED
        assert task.completed_at is not None
        assert task.created_at <= task.assigned_at <= task.completed_at
        assert task.actual_duration == 0

        [assignment] = engine.store.assignments_for_task(task_id)
        assert assignment.success is True
        assert assignment.completed_at == pytest.approx(task.completed_at)

    def test_failure_marks_failed(self, engine):
        _add_agent(engine, "healer-agent", ("debugging",), success_rate=0.75, total_completed=4)
        task_id = engine.submit_task("Fix bug", ["debugging"])

        task = engine.complete_task(task_id, success=False)

        agent = engine.store.get_agent("healer-agent")
        assert agent is not None
        assert task.status is TaskStatus.FAILED
        assert agent.success_rate == pytest.approx(0.6)
        assert agent.total_completed == 5
        assert agent.current_load == 0
        [assignment] = engine.store.assignments_for_task(task_id)
        assert assignment.success is False

    def test_first_completion(self, engine):
        _add_agent(engine, "healer-agent", ("debugging",))
        task_id = engine.submit_task("Fix bug", ["debugging"])
        engine.complete_task(task_id)
        agent = engine.store.get_agent("healer-agent")
        assert agent is not None
        assert agent.success_rate == pytest.approx(1.0)

    def test_double_completion_rejected(self, engine):
        _add_agent(engine, "healer-agent", ("debugging",))
        task_id = engine.submit_task("Fix bug", ["debugging"])
        engine.complete_task(task_id)

        with pytest.raises(InvalidTransitionError):
            engine.complete_task(task_id)

        agent = engine.store.get_agent("healer-agent")
        assert agent is not None
        assert agent.current_load == 0
        assert agent.total_completed == 1

    def test_unassigned_task(self, engine):
        task_id = engine.submit_task("Fix bug", ["debugging"], auto_delegate=False)
        with pytest.raises(NotFoundError):
            engine.complete_task(task_id)

    def test_unknown_task(self, engine):
        with pytest.raises(NotFoundError):
            engine.complete_task("TASK-0-missing")

    def test_completion_with_offline_agent(self, engine):
        _add_agent(engine, "healer-agent", ("debugging",))
        task_id = engine.submit_task("Fix bug", ["debugging"])
        engine.set_agent_status("healer-agent", AgentStatus.OFFLINE)
        task = engine.complete_task(task_id)
        assert task.status is TaskStatus.COMPLETED

    def test_many_outcomes_stay_stable(self, engine):
        _add_agent(engine, "healer-agent", ("debugging",), capacity=100)
        for i in range(40):
            task_id = engine.submit_task(f"Task {i}", ["debugging"])
            engine.complete_task(task_id, success=i % 4 != 0)

        agent = engine.store.get_agent("healer-agent")
        assert agent is not None
        assert agent.total_completed == 40
        assert agent.success_rate == pytest.approx(0.75)
        assert agent.current_load == 0


class TestStart:
    def test_start_then_complete(self, engine):
        _add_agent(engine, "healer-agent", ("debugging",))
        task_id = engine.submit_task("Fix bug", ["debugging"])

        task = engine.start_task(task_id)
        assert task.status is TaskStatus.IN_PROGRESS
        agent = engine.store.get_agent("healer-agent")
        assert agent is not None and agent.current_load == 1

        done = engine.complete_task(task_id)
        assert done.status is TaskStatus.COMPLETED

    def test_start_pending_rejected(self, engine):
        task_id = engine.submit_task("Fix bug", ["debugging"], auto_delegate=False)
        with pytest.raises(InvalidTransitionError):
            engine.start_task(task_id)

    def test_start_unknown(self, engine):
        with pytest.raises(NotFoundError):
            engine.start_task("TASK-0-missing")

    def test_set_task_status_routes_terminal_states(self, engine):
        _add_agent(engine, "healer-agent", ("debugging",))
        task_id = engine.submit_task("Fix bug", ["debugging"])
        task = engine.set_task_status(task_id, "failed")
        assert task.status is TaskStatus.FAILED
        agent = engine.store.get_agent("healer-agent")
        assert agent is not None
        assert agent.total_completed == 1

    def test_set_task_status_assigned_delegates(self, engine):
        _add_agent(engine, "healer-agent", ("debugging",))
        task_id = engine.submit_task("Fix bug", ["debugging"], auto_delegate=False)
        task = engine.set_task_status(task_id, TaskStatus.ASSIGNED)
        assert task.assigned_to == "healer-agent"

    def test_set_task_status_back_to_pending_rejected(self, engine):
        _add_agent(engine, "healer-agent", ("debugging",))
        task_id = engine.submit_task("Fix bug", ["debugging"])
        with pytest.raises(InvalidTransitionError):
            engine.set_task_status(task_id, "pending")
        with pytest.raises(ValidationError):
            engine.set_task_status(task_id, "paused")


class TestLoadBookkeeping:
    def test_load_matches_open_assignments(self, engine):
        _add_agent(engine, "healer-agent", ("debugging",), capacity=10)
        ids = [engine.submit_task(f"Task {i}", ["debugging"]) for i in range(4)]
        engine.complete_task(ids[0])
        engine.complete_task(ids[1], success=False)

        agent = engine.store.get_agent("healer-agent")
        assert agent is not None
        assert agent.current_load == 2
        assert engine.store.open_assignment_count("healer-agent") == 2

    def test_reconcile_repairs_drift(self, engine):
        _add_agent(engine, "healer-agent", ("debugging",))
        _add_agent(engine, "guardian-agent", ("monitoring",))
        engine.submit_task("Fix bug", ["debugging"])
        engine.store.db.execute(
            "UPDATE agents SET current_load = 4 WHERE agent_id = ?", ("healer-agent",)
        )

        drifted = engine.reconcile_loads()

        assert drifted == {"healer-agent": (4, 1)}
        agent = engine.store.get_agent("healer-agent")
        assert agent is not None and agent.current_load == 1
        assert engine.reconcile_loads() == {}
