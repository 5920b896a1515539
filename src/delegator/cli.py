"""CLI entry point for the Task Delegator."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, NoReturn

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from delegator import __version__
from delegator.errors import DelegatorError, NoAgentAvailableError

if TYPE_CHECKING:
    from delegator.config import DelegatorConfig
    from delegator.delegation.engine import DelegationEngine
    from delegator.models import DelegationResult, Task

console = Console()
err_console = Console(stderr=True)

STATUS_STYLE = {
    "pending": "yellow",
    "assigned": "cyan",
    "in_progress": "cyan",
    "completed": "green",
    "failed": "red",
    "active": "green",
    "idle": "yellow",
    "offline": "dim",
}


@click.group()
@click.version_option(version=__version__, prog_name="delegator")
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Data directory (default: ~/.delegator or $DELEGATOR_DATA_DIR)",
)
@click.option("-v", "--verbose", is_flag=True, help="Show debug logging")
@click.pass_context
def main(ctx: click.Context, data_dir: Path | None, verbose: bool) -> None:
    """Task Delegator: skill-aware task distribution across agents."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False)],
        force=True,
    )
    ctx.obj = data_dir


def _get_config(ctx: click.Context) -> DelegatorConfig:
    from delegator.config import DelegatorConfig

    try:
        return DelegatorConfig.load(ctx.obj)
    except DelegatorError as exc:
        _fail(str(exc))


def _get_engine(ctx: click.Context) -> DelegationEngine:
    from delegator.delegation.engine import DelegationEngine

    engine = DelegationEngine.from_config(_get_config(ctx))
    try:
        engine.store.db.ensure_tables()
    except DelegatorError as exc:
        _fail(str(exc))
    return engine


def _fail(message: str) -> NoReturn:
    err_console.print(f"[red]Error: {escape(message)}[/red]")
    raise click.exceptions.Exit(1)


def _fmt_time(ts: float | None) -> str:
    if ts is None:
        return "-"
    return datetime.fromtimestamp(ts).strftime("%Y-%m-%d %H:%M:%S")


@main.command()
@click.option("--no-seed", is_flag=True, help="Skip registering the default agents")
@click.pass_context
def init(ctx: click.Context, no_seed: bool) -> None:
    """Initialize delegator: create the database and default agents."""
    engine = _get_engine(ctx)
    try:
        registered = engine.initialize(seed=not no_seed)
    except DelegatorError as exc:
        _fail(str(exc))
    db = engine.store.db
    console.print(f"[green]✓[/green] Task Delegator initialized at {db.data_dir}")
    console.print(f"  Database: {db.db_path}")
    console.print(f"  Config:   {db.data_dir / 'config.toml'}")
    console.print(f"[green]✓[/green] Registered {registered} agent(s)")


@main.command()
@click.argument("title")
@click.argument("skills")
@click.argument(
    "priority",
    required=False,
    default="medium",
    type=click.Choice(["low", "medium", "high", "urgent"]),
)
@click.argument("description", required=False, default="")
@click.option("--complexity", default=5, type=click.IntRange(1, 10), help="Complexity 1-10")
@click.option("--estimate", type=click.IntRange(min=0), help="Estimated duration in minutes")
@click.pass_context
def add(
    ctx: click.Context,
    title: str,
    skills: str,
    priority: str,
    description: str,
    complexity: int,
    estimate: int | None,
) -> None:
    """Add a task and delegate it. SKILLS is a JSON array or comma list."""
    engine = _get_engine(ctx)
    try:
        task_id = engine.submit_task(
            title,
            skills,
            priority=priority,
            description=description,
            complexity=complexity,
            estimated_duration=estimate,
            auto_delegate=False,
        )
    except DelegatorError as exc:
        _fail(str(exc))

    task = engine.store.get_task(task_id)
    assert task is not None
    console.print(f"[green]✓[/green] Task created: {task_id}")
    console.print(f"  [cyan]Title:[/cyan] {task.title}")
    console.print(f"  [cyan]Skills:[/cyan] {', '.join(sorted(task.required_skills))}")
    console.print(f"  [cyan]Priority:[/cyan] {task.priority.value}")
    _delegate(engine, task_id)


@main.command()
@click.argument("task_id")
@click.pass_context
def delegate(ctx: click.Context, task_id: str) -> None:
    """Delegate a pending task to the best agent."""
    _delegate(_get_engine(ctx), task_id)


def _delegate(engine: DelegationEngine, task_id: str) -> None:
    console.print("\n[cyan]🤖 Finding best agent...[/cyan]")
    try:
        result = engine.delegate(task_id)
    except NoAgentAvailableError as exc:
        _fail(f"No suitable agent found ({exc}); task {task_id} left pending")
    except DelegatorError as exc:
        _fail(str(exc))
    _print_delegation(engine, result)


@main.command()
@click.argument("task_id")
@click.pass_context
def start(ctx: click.Context, task_id: str) -> None:
    """Mark an assigned task as in progress."""
    engine = _get_engine(ctx)
    try:
        engine.start_task(task_id)
    except DelegatorError as exc:
        _fail(str(exc))
    console.print(f"[green]✓[/green] Task in progress: {task_id}")


@main.command()
@click.argument("task_id")
@click.argument("success", required=False, default=True, type=click.BOOL)
@click.pass_context
def complete(ctx: click.Context, task_id: str, success: bool) -> None:
    """Mark a task complete. SUCCESS is 1/0 (default 1)."""
    engine = _get_engine(ctx)
    try:
        task = engine.complete_task(task_id, success=success)
    except DelegatorError as exc:
        _fail(str(exc))
    if task.status.value == "completed":
        console.print(f"[green]✓[/green] Task completed: {task_id}")
    else:
        console.print(f"[red]✗[/red] Task failed: {task_id}")


@main.command()
@click.pass_context
def dashboard(ctx: click.Context) -> None:
    """Show task statistics and top performers."""
    from delegator.reporting import Dashboard

    engine = _get_engine(ctx)
    snap = Dashboard(engine.store.db).snapshot(top=engine.config.top_performers)

    console.print("[bold magenta]🤖 Task Delegator Dashboard[/bold magenta]\n")
    console.print("[cyan]📊 Task Statistics[/cyan]")
    console.print(f"  [green]Total Tasks:[/green] {snap.tasks.total}")
    console.print(f"  [yellow]Pending:[/yellow] {snap.tasks.pending}")
    console.print(f"  [cyan]In Progress:[/cyan] {snap.tasks.in_progress}")
    console.print(f"  [green]Completed:[/green] {snap.tasks.completed}")
    console.print(f"  [red]Failed:[/red] {snap.tasks.failed}")
    console.print("\n[cyan]🤖 Agent Statistics[/cyan]")
    console.print(f"  [green]Active Agents:[/green] {snap.active_agents}")

    if not snap.top_performers:
        console.print("\n[dim]No active agents. Run 'delegator init' first.[/dim]")
        return

    table = Table(title="🏆 Top Performers")
    table.add_column("Name", style="cyan")
    table.add_column("Completed", justify="right")
    table.add_column("Success Rate", justify="right", style="green")
    table.add_column("Load", justify="right")
    for row in snap.top_performers:
        table.add_row(
            row["name"],
            str(row["total_completed"]),
            f"{row['success_rate'] * 100:.1f}%",
            f"{row['current_load']}/{row['capacity']}",
        )
    console.print(table)


@main.command()
@click.option(
    "--status",
    type=click.Choice(["active", "idle", "offline"]),
    default=None,
    help="Only show agents with this status",
)
@click.pass_context
def agents(ctx: click.Context, status: str | None) -> None:
    """List registered agents."""
    engine = _get_engine(ctx)
    rows = engine.store.list_agents(status)
    if not rows:
        console.print("[dim]No agents registered.[/dim]")
        return

    table = Table(title="Agents")
    table.add_column("Agent ID", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Skills", max_width=40)
    table.add_column("Load", justify="right")
    table.add_column("Success", justify="right")
    table.add_column("Done", justify="right")
    table.add_column("Status")
    for agent in rows:
        style = STATUS_STYLE.get(agent.status.value, "")
        table.add_row(
            agent.agent_id,
            agent.name,
            ", ".join(sorted(agent.skills)),
            f"{agent.current_load}/{agent.capacity}",
            f"{agent.success_rate:.0%}",
            str(agent.total_completed),
            f"[{style}]{agent.status.value}[/{style}]" if style else agent.status.value,
        )
    console.print(table)


@main.command()
@click.argument("agent_id")
@click.argument("name")
@click.argument("skills")
@click.option("--capacity", default=5, type=click.IntRange(min=1), help="Max concurrent tasks")
@click.option("--replace", is_flag=True, help="Overwrite an existing agent's profile")
@click.pass_context
def register(
    ctx: click.Context, agent_id: str, name: str, skills: str, capacity: int, replace: bool
) -> None:
    """Register an agent. SKILLS is a JSON array or comma list."""
    engine = _get_engine(ctx)
    try:
        agent = engine.register_agent(agent_id, name, skills, capacity=capacity, replace=replace)
    except DelegatorError as exc:
        _fail(str(exc))
    console.print(
        f"[green]✓[/green] Agent {agent.agent_id} ({agent.name}): "
        f"{', '.join(sorted(agent.skills))} capacity {agent.capacity}"
    )


@main.command("agent-status")
@click.argument("agent_id")
@click.argument("status", type=click.Choice(["active", "idle", "offline"]))
@click.pass_context
def agent_status(ctx: click.Context, agent_id: str, status: str) -> None:
    """Change an agent's availability."""
    engine = _get_engine(ctx)
    try:
        agent = engine.set_agent_status(agent_id, status)
    except DelegatorError as exc:
        _fail(str(exc))
    console.print(f"[green]✓[/green] {agent.name} is now {agent.status.value}")


@main.command()
@click.option(
    "--status",
    type=click.Choice(["pending", "assigned", "in_progress", "completed", "failed"]),
    default=None,
)
@click.option("--limit", default=20, help="Number of tasks to show")
@click.pass_context
def tasks(ctx: click.Context, status: str | None, limit: int) -> None:
    """List recent tasks."""
    engine = _get_engine(ctx)
    rows = engine.store.list_tasks(status, limit=limit)
    if not rows:
        console.print("[dim]No tasks yet.[/dim]")
        return

    table = Table(title="Tasks")
    table.add_column("Task ID", style="cyan", no_wrap=True)
    table.add_column("Title", max_width=40)
    table.add_column("Priority")
    table.add_column("Status")
    table.add_column("Assigned To")
    table.add_column("Created")
    for task in rows:
        style = STATUS_STYLE.get(task.status.value, "")
        table.add_row(
            task.task_id,
            task.title[:40],
            task.priority.value,
            f"[{style}]{task.status.value}[/{style}]",
            task.assigned_to or "-",
            _fmt_time(task.created_at),
        )
    console.print(table)


@main.command()
@click.argument("task_id")
@click.pass_context
def show(ctx: click.Context, task_id: str) -> None:
    """Show a task and its assignment history."""
    engine = _get_engine(ctx)
    task = engine.store.get_task(task_id)
    if task is None:
        _fail(f"Task not found: {task_id}")
    _print_task(task)

    history = engine.store.assignments_for_task(task_id)
    if history:
        table = Table(title="Assignments")
        table.add_column("Agent", style="cyan")
        table.add_column("Score", justify="right")
        table.add_column("Assigned")
        table.add_column("Completed")
        table.add_column("Success")
        for a in history:
            table.add_row(
                a.agent_id,
                f"{a.score:.2f}",
                _fmt_time(a.assigned_at),
                _fmt_time(a.completed_at),
                "-" if a.success is None else ("yes" if a.success else "no"),
            )
        console.print(table)


@main.command()
@click.pass_context
def reconcile(ctx: click.Context) -> None:
    """Recompute agent loads from open assignments."""
    engine = _get_engine(ctx)
    try:
        drifted = engine.reconcile_loads()
    except DelegatorError as exc:
        _fail(str(exc))
    if not drifted:
        console.print("[green]✓[/green] All agent loads consistent")
        return
    for agent_id, (stored, actual) in drifted.items():
        console.print(f"[yellow]Fixed[/yellow] {agent_id}: {stored} → {actual}")


def _print_task(task: Task) -> None:
    style = STATUS_STYLE.get(task.status.value, "")
    console.print(f"[bold]{task.task_id}[/bold] {task.title}")
    console.print(f"  [cyan]Status:[/cyan] [{style}]{task.status.value}[/{style}]")
    console.print(f"  [cyan]Priority:[/cyan] {task.priority.value}")
    console.print(f"  [cyan]Skills:[/cyan] {', '.join(sorted(task.required_skills))}")
    console.print(f"  [cyan]Complexity:[/cyan] {task.complexity}")
    if task.description:
        console.print(f"  [cyan]Description:[/cyan] {task.description}")
    console.print(f"  [cyan]Assigned to:[/cyan] {task.assigned_to or '-'}")
    console.print(f"  [cyan]Created:[/cyan] {_fmt_time(task.created_at)}")
    console.print(f"  [cyan]Assigned:[/cyan] {_fmt_time(task.assigned_at)}")
    console.print(f"  [cyan]Completed:[/cyan] {_fmt_time(task.completed_at)}")
    if task.actual_duration is not None:
        console.print(f"  [cyan]Duration:[/cyan] {task.actual_duration} min")


def _print_delegation(engine: DelegationEngine, result: DelegationResult) -> None:
    """Print candidate scores and the winner."""
    names = {a.agent_id: a.name for a in engine.store.list_agents()}
    for agent_id, value in result.candidates:
        console.print(f"  [cyan]Evaluating:[/cyan] {names.get(agent_id, agent_id)} (score: {value:.2f})")
    console.print("\n[green]✅ Task delegated![/green]")
    console.print(f"  [magenta]Assigned to:[/magenta] {result.agent_name}")
    console.print(f"  [magenta]Match score:[/magenta] {result.score:.2f}")
