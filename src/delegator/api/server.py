"""FastAPI server for programmatic delegator access."""

from __future__ import annotations

import time
from functools import lru_cache
from typing import Any

import click
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from delegator import __version__
from delegator.config import DelegatorConfig
from delegator.delegation.engine import DelegationEngine
from delegator.errors import (
    ConfigurationError,
    ConsistencyError,
    DelegatorError,
    InvalidTransitionError,
    NoAgentAvailableError,
    NotFoundError,
    ValidationError,
)
from delegator.models import Agent, Priority, Task
from delegator.reporting import Dashboard

app = FastAPI(
    title="Task Delegator API",
    version=__version__,
    description="Skill-aware task distribution across agents",
)

_start_time = time.monotonic()


@lru_cache(maxsize=1)
def get_engine() -> DelegationEngine:
    engine = DelegationEngine.from_config(DelegatorConfig.load())
    engine.initialize()
    return engine


class TaskRequest(BaseModel):
    title: str
    required_skills: list[str]
    priority: Priority = Priority.MEDIUM
    description: str = ""
    complexity: int = Field(default=5, ge=1, le=10)
    estimated_duration: int | None = Field(default=None, ge=0)
    auto_delegate: bool = True


class CompleteRequest(BaseModel):
    success: bool = True


_STATUS_CODES: list[tuple[type[DelegatorError], int]] = [
    (ConfigurationError, 500),
    (NotFoundError, 404),
    (InvalidTransitionError, 409),
    (ValidationError, 400),
    (NoAgentAvailableError, 503),
    (ConsistencyError, 500),
]


@app.exception_handler(DelegatorError)
async def delegator_error_handler(request: Request, exc: DelegatorError) -> JSONResponse:
    status_code = next((code for cls, code in _STATUS_CODES if isinstance(exc, cls)), 500)
    body: dict[str, Any] = {"error": type(exc).__name__, "detail": str(exc)}
    task_id = getattr(exc, "task_id", None)
    if task_id:
        body["task_id"] = task_id
    return JSONResponse(status_code=status_code, content=body)


def _task_dict(task: Task) -> dict[str, Any]:
    return {
        "task_id": task.task_id,
        "title": task.title,
        "description": task.description,
        "required_skills": sorted(task.required_skills),
        "priority": task.priority.value,
        "complexity": task.complexity,
        "status": task.status.value,
        "assigned_to": task.assigned_to,
        "created_at": task.created_at,
        "assigned_at": task.assigned_at,
        "completed_at": task.completed_at,
        "estimated_duration": task.estimated_duration,
        "actual_duration": task.actual_duration,
    }


def _agent_dict(agent: Agent) -> dict[str, Any]:
    return {
        "agent_id": agent.agent_id,
        "name": agent.name,
        "skills": sorted(agent.skills),
        "capacity": agent.capacity,
        "current_load": agent.current_load,
        "success_rate": agent.success_rate,
        "total_completed": agent.total_completed,
        "status": agent.status.value,
        "last_seen": agent.last_seen,
    }


def _require_task(engine: DelegationEngine, task_id: str) -> Task:
    task = engine.store.get_task(task_id)
    if task is None:
        raise NotFoundError(f"Task not found: {task_id}")
    return task


@app.get("/api/health")
async def health() -> dict[str, Any]:
    """Health check."""
    uptime = time.monotonic() - _start_time
    return {"status": "ok", "version": __version__, "uptime_seconds": round(uptime, 1)}


@app.post("/api/tasks", status_code=201)
def submit_task(
    request: TaskRequest, engine: DelegationEngine = Depends(get_engine)
) -> dict[str, Any]:
    """Submit a task; delegated immediately unless auto_delegate is false."""
    task_id = engine.submit_task(
        request.title,
        request.required_skills,
        priority=request.priority,
        description=request.description,
        complexity=request.complexity,
        estimated_duration=request.estimated_duration,
        auto_delegate=request.auto_delegate,
    )
    return _task_dict(_require_task(engine, task_id))


@app.get("/api/tasks")
def list_tasks(
    status: str | None = None,
    limit: int = 50,
    engine: DelegationEngine = Depends(get_engine),
) -> dict[str, Any]:
    try:
        tasks = engine.store.list_tasks(status, limit=limit)
    except ValueError as exc:
        raise ValidationError(f"Unknown task status: {status}") from exc
    return {"tasks": [_task_dict(t) for t in tasks], "count": len(tasks)}


@app.get("/api/tasks/{task_id}")
def get_task(task_id: str, engine: DelegationEngine = Depends(get_engine)) -> dict[str, Any]:
    task = _require_task(engine, task_id)
    data = _task_dict(task)
    data["assignments"] = [
        {
            "agent_id": a.agent_id,
            "score": a.score,
            "assigned_at": a.assigned_at,
            "completed_at": a.completed_at,
            "success": a.success,
        }
        for a in engine.store.assignments_for_task(task_id)
    ]
    return data


@app.post("/api/tasks/{task_id}/delegate")
def delegate(task_id: str, engine: DelegationEngine = Depends(get_engine)) -> dict[str, Any]:
    result = engine.delegate(task_id)
    return {
        "task_id": result.task_id,
        "agent_id": result.agent_id,
        "agent_name": result.agent_name,
        "score": result.score,
        "candidates": [{"agent_id": a, "score": s} for a, s in result.candidates],
    }


@app.post("/api/tasks/{task_id}/start")
def start(task_id: str, engine: DelegationEngine = Depends(get_engine)) -> dict[str, Any]:
    return _task_dict(engine.start_task(task_id))


@app.post("/api/tasks/{task_id}/complete")
def complete(
    task_id: str,
    request: CompleteRequest | None = None,
    engine: DelegationEngine = Depends(get_engine),
) -> dict[str, Any]:
    success = request.success if request is not None else True
    return _task_dict(engine.complete_task(task_id, success=success))


@app.get("/api/agents")
def list_agents(engine: DelegationEngine = Depends(get_engine)) -> dict[str, Any]:
    agents = engine.store.list_agents()
    return {"agents": [_agent_dict(a) for a in agents], "count": len(agents)}


@app.get("/api/dashboard")
def dashboard(engine: DelegationEngine = Depends(get_engine)) -> dict[str, Any]:
    """Task counts, active agents and top performers."""
    snap = Dashboard(engine.store.db).snapshot(top=engine.config.top_performers)
    return snap.to_dict()


@click.command()
@click.option("--port", default=3849, help="Port to listen on")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
def main(port: int, host: str) -> None:
    """Start the Delegator API server."""
    import uvicorn

    uvicorn.run(app, host=host, port=port)
