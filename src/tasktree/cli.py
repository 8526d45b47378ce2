"""Typer CLI for tasktree."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Optional, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from tasktree.errors import Result
from tasktree.logging_setup import setup_logging
from tasktree.models import SchedulerConfig, Task, parse_dt
from tasktree.persistence import Store
from tasktree.service import TaskService

T = TypeVar("T")

app = typer.Typer(
    name="tasktree",
    help="Completeness, urgency, critical path and daily planning for task trees.",
    no_args_is_help=True,
)
console = Console()

DT_FORMAT = "%a %b %d, %H:%M"


def _get_store() -> Store:
    return Store()


def _open_service() -> TaskService:
    config, arena = _get_store().open()
    return TaskService(arena, config)


def _complete_task_id(incomplete: str) -> list[str]:
    """Shell completion for task IDs. Matches against both ID and title."""
    try:
        _, tasks = Store().load()
    except Exception:
        return []

    q = incomplete.lower()
    return [
        f"{t.title} ({tid})"
        for tid, t in tasks.items()
        if q in str(tid) or q in t.title.lower()
    ]


def _parse_task_id(task_id_arg: str) -> int:
    """Accepts a bare id or the autocompleted 'Title (ID)' form."""
    raw = task_id_arg.strip()
    if "(" in raw and raw.endswith(")"):
        raw = raw.rsplit("(", 1)[-1].rstrip(")")
    try:
        return int(raw)
    except ValueError:
        console.print(f"[red]Invalid task id '{task_id_arg}'.[/red]")
        raise typer.Exit(1)


def _parse_dt(value: str | None) -> datetime | None:
    if value is None:
        return None
    try:
        return parse_dt(value)
    except ValueError:
        console.print(f"[red]Invalid date '{value}'. Use YYYY-MM-DD or YYYY-MM-DDTHH:MM.[/red]")
        raise typer.Exit(1)


def _unwrap(result: Result[T]) -> T:
    if not result.ok:
        err = result.error
        console.print(f"[red]{err.code}: {err.message}[/red]")
        raise typer.Exit(1)
    return result.value


def _fmt_dt(dt: datetime | None) -> str:
    return dt.strftime(DT_FORMAT) if dt else "-"


def _fmt_result(result: Result, suffix: str = "") -> str:
    if not result.ok:
        return f"[dim]{result.error.code}[/dim]"
    return f"{result.value}{suffix}"


TaskIdArg = Annotated[str, typer.Argument(autocompletion=_complete_task_id)]


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Log debug output to stderr")] = False,
) -> None:
    setup_logging(verbose=verbose)


@app.command()
def init(
    capacity: Annotated[float, typer.Option(help="Hours available per day")] = 8.0,
    time_unit: Annotated[float, typer.Option(help="Smallest schedulable slice, in hours")] = 0.5,
    window: Annotated[int, typer.Option(help="Urgency look-ahead window, in days")] = 30,
    default_duration: Annotated[float, typer.Option(help="Planning fallback for tasks without an estimate")] = 1.0,
) -> None:
    """Initialize (or reinitialize) planning configuration."""
    store = _get_store()
    _, tasks = store.load()
    config = SchedulerConfig(
        capacity_hours=capacity,
        time_unit=time_unit,
        urgency_window_days=window,
        default_duration_hrs=default_duration,
    )
    store.save(config, tasks)
    console.print(f"[green]Initialized {store.db_path} ({capacity:g}h/day, {time_unit:g}h units).[/green]")


@app.command()
def add(
    title: str,
    estimate: Annotated[Optional[float], typer.Option("--estimate", "-e", help="Estimated duration in hours")] = None,
    deadline: Annotated[Optional[str], typer.Option(help="Deadline (YYYY-MM-DD[THH:MM])")] = None,
    start: Annotated[Optional[str], typer.Option(help="Earliest start (YYYY-MM-DD[THH:MM])")] = None,
    priority: Annotated[int, typer.Option("--priority", "-p", min=0, help="Priority (higher is more important)")] = 0,
    parent: Annotated[Optional[str], typer.Option(help="Parent task ID", autocompletion=_complete_task_id)] = None,
    splittable: Annotated[bool, typer.Option("--split/--no-split", help="May be planned in partial slices")] = False,
    description: Annotated[str, typer.Option(help="Free-form description")] = "",
    category: Annotated[Optional[int], typer.Option(help="Category ID")] = None,
    tags: Annotated[Optional[list[int]], typer.Option("--tag", "-t", help="Tag IDs")] = None,
) -> None:
    """Add a new task, optionally under a parent."""
    service = _open_service()
    task = _unwrap(
        service.create_task(
            title,
            parent_id=_parse_task_id(parent) if parent is not None else None,
            description=description,
            deadline=_parse_dt(deadline),
            start_date=_parse_dt(start),
            estimate_duration_hrs=estimate,
            priority=priority,
            is_splittable=splittable,
            category_id=category,
            tag_ids=tags or [],
        )
    )
    console.print(f"[green]Added '{title}' as {task.id}[/green]")


@app.command()
def update(
    task_id: TaskIdArg,
    title: Annotated[Optional[str], typer.Option(help="New title")] = None,
    estimate: Annotated[Optional[float], typer.Option("--estimate", "-e", help="New estimate in hours")] = None,
    deadline: Annotated[Optional[str], typer.Option(help="New deadline")] = None,
    start: Annotated[Optional[str], typer.Option(help="New earliest start")] = None,
    priority: Annotated[Optional[int], typer.Option("--priority", "-p", min=0, help="New priority")] = None,
    splittable: Annotated[Optional[bool], typer.Option("--split/--no-split", help="May be planned in partial slices")] = None,
    description: Annotated[Optional[str], typer.Option(help="New description")] = None,
    clear_deadline: Annotated[bool, typer.Option("--clear-deadline", help="Remove the deadline")] = False,
) -> None:
    """Update fields of an existing task. Use link/unlink to move it."""
    tid = _parse_task_id(task_id)
    service = _open_service()
    t: Task = _unwrap(service.get_task(tid))

    with service.repo.transaction():
        if title is not None:
            t.title = title
        if estimate is not None:
            t.estimate_duration_hrs = estimate
        if deadline is not None:
            t.deadline = _parse_dt(deadline)
        if clear_deadline:
            t.deadline = None
        if start is not None:
            t.start_date = _parse_dt(start)
        if priority is not None:
            t.priority = priority
        if splittable is not None:
            t.is_splittable = splittable
        if description is not None:
            t.description = description
        service.repo.save(t)

    console.print(f"[green]Updated {tid}.[/green]")


@app.command()
def delete(task_id: TaskIdArg) -> None:
    """Delete a task; its children become top-level tasks."""
    tid = _parse_task_id(task_id)
    _unwrap(_open_service().delete_task(tid))
    console.print(f"[green]Deleted {tid}.[/green]")


@app.command()
def link(
    task_id: TaskIdArg,
    parent: Annotated[str, typer.Argument(help="New parent task ID", autocompletion=_complete_task_id)],
) -> None:
    """Move a task under a new parent (refused if it would create a cycle)."""
    tid, pid = _parse_task_id(task_id), _parse_task_id(parent)
    _unwrap(_open_service().attach_parent(tid, pid))
    console.print(f"[green]{tid} is now a subtask of {pid}.[/green]")


@app.command()
def unlink(task_id: TaskIdArg) -> None:
    """Detach a task from its parent, making it a top-level task."""
    tid = _parse_task_id(task_id)
    _unwrap(_open_service().detach_parent(tid))
    console.print(f"[green]{tid} is now a top-level task.[/green]")


@app.command("start")
def start_task(task_id: TaskIdArg) -> None:
    """Mark a task as in progress."""
    tid = _parse_task_id(task_id)
    t = _unwrap(_open_service().start_task(tid))
    console.print(f"[green]Started {tid} at {t.actual_start:%Y-%m-%d %H:%M}[/green]")


@app.command()
def done(
    task_id: TaskIdArg,
    actual: Annotated[Optional[float], typer.Option("--actual", "-a", help="Hours actually spent")] = None,
) -> None:
    """Mark a task as completed."""
    tid = _parse_task_id(task_id)
    t = _unwrap(_open_service().complete_task(tid, actual_duration_hrs=actual))
    console.print(f"[green]Completed {tid} at {t.actual_end:%Y-%m-%d %H:%M}[/green]")

    if t.actual_duration_hrs is not None and t.estimate_duration_hrs:
        diff = t.actual_duration_hrs - t.estimate_duration_hrs
        line = f"  Estimated: {t.estimate_duration_hrs:.1f}h  Actual: {t.actual_duration_hrs:.1f}h  "
        if abs(diff) < 0.1:
            console.print(line + "[green]Right on target[/green]")
        elif diff > 0:
            console.print(line + f"[red]+{diff:.1f}h over[/red]")
        else:
            console.print(line + f"[green]{diff:.1f}h under[/green]")


@app.command()
def reopen(task_id: TaskIdArg) -> None:
    """Reopen a completed task; it goes back to in progress."""
    tid = _parse_task_id(task_id)
    t = _unwrap(_open_service().reopen_task(tid))
    console.print(f"[green]{tid} is {t.state.label.lower()}.[/green]")


@app.command()
def progress(
    task_id: TaskIdArg,
    percent: Annotated[float, typer.Argument(help="Completeness, 0-100")],
) -> None:
    """Record how far along a (leaf) task is."""
    tid = _parse_task_id(task_id)
    t = _unwrap(_open_service().set_completeness(tid, percent))
    if t.children_ids:
        console.print(f"[yellow]{tid} has subtasks; its completeness is derived from them.[/yellow]")
    console.print(f"[green]{tid} set to {t.completeness:g}%.[/green]")


@app.command()
def refresh() -> None:
    """Mark tasks past their deadline as overdue."""
    changed = _unwrap(_open_service().refresh_overdue())
    if changed:
        console.print(f"[yellow]Updated state of: {', '.join(str(c) for c in changed)}[/yellow]")
    else:
        console.print("All task states are current.")


@app.command("list")
def list_tasks(
    state_filter: Annotated[Optional[str], typer.Option("--state", "-s", help="Filter by state")] = None,
    search: Annotated[Optional[str], typer.Option("--search", "-q", help="Filter by title")] = None,
    roots: Annotated[bool, typer.Option("--roots", help="Only top-level tasks")] = False,
) -> None:
    """List tasks with their completeness and urgency."""
    service = _open_service()
    tasks = service.repo.find_all()
    if not tasks:
        console.print("No tasks found.")
        return

    now = datetime.now()
    filtered = tasks
    if state_filter:
        filtered = [t for t in filtered if t.state_at(now).value == state_filter]
    if search:
        q = search.lower()
        filtered = [t for t in filtered if q in t.title.lower()]
    if roots:
        filtered = [t for t in filtered if t.is_root]
    if not filtered:
        console.print("No tasks match the filter.")
        return

    table = Table(title="Tasks")
    for col in ("ID", "Title", "Parent", "State", "Est (h)", "Done %", "Urgency", "Priority", "Deadline"):
        table.add_column(col)

    for t in filtered:
        state = t.state_at(now)
        urgency = service.urgency(t.id, now=now)
        style = "bold red" if urgency.ok and urgency.value >= 100 and not t.completed else None
        table.add_row(
            str(t.id),
            t.title,
            str(t.parent_id) if t.parent_id is not None else "-",
            state.label,
            f"{t.estimate_duration_hrs:.1f}" if t.estimate_duration_hrs is not None else "-",
            _fmt_result(service.completeness(t.id)),
            _fmt_result(urgency),
            str(t.priority),
            _fmt_dt(t.deadline),
            style=style,
        )

    console.print(table)
    if len(filtered) != len(tasks):
        console.print(f"[dim]Showing {len(filtered)} of {len(tasks)} tasks[/dim]")


@app.command()
def show(task_id: TaskIdArg) -> None:
    """Show all details for a single task."""
    tid = _parse_task_id(task_id)
    service = _open_service()
    t: Task = _unwrap(service.get_task(tid))
    now = datetime.now()

    console.print(f"\n[bold]{t.id}[/bold]  {t.title}")
    console.print(f"  State:       {t.state_at(now).label}")
    console.print(f"  Priority:    {t.priority}")
    console.print(f"  Estimate:    {t.estimate_duration_hrs if t.estimate_duration_hrs is not None else '-'}h")
    console.print(f"  Splittable:  {'yes' if t.is_splittable else 'no'}")
    console.print(f"  Parent:      {t.parent_id if t.parent_id is not None else 'none'}")
    console.print(f"  Subtasks:    {', '.join(str(c) for c in t.children_ids) or 'none'}")
    if t.deadline:
        console.print(f"  Deadline:    {_fmt_dt(t.deadline)}")
    if t.start_date:
        console.print(f"  Start date:  {_fmt_dt(t.start_date)}")
    if t.actual_start:
        console.print(f"  Started:     {_fmt_dt(t.actual_start)}")
    if t.actual_end:
        console.print(f"  Finished:    {_fmt_dt(t.actual_end)}")
    if t.description:
        console.print("\n  [dim]── Description ──[/dim]")
        for line in t.description.splitlines():
            console.print(f"  {line}")

    console.print("\n  [dim]── Progress ──[/dim]")
    console.print(f"  Completeness: {_fmt_result(service.completeness(tid), '%')}")
    console.print(f"  Urgency:      {_fmt_result(service.urgency(tid, now=now))}")
    remaining = service.remaining_duration(tid, now=now)
    if remaining.ok:
        console.print(f"  Remaining:    {remaining.value:.1f}h")
    else:
        console.print(f"  Remaining:    [dim]{remaining.error.code}[/dim]")

    delta = service.actual_vs_estimated(tid)
    if delta.ok and delta.value.delta_hrs is not None:
        d = delta.value
        pct = f" ({d.delta_percent:+.0f}%)" if d.delta_percent is not None else ""
        console.print(f"  Actual vs estimate: {d.delta_hrs:+.1f}h{pct}")
    console.print()


@app.command()
def schedule(task_id: TaskIdArg) -> None:
    """Critical-path schedule of the project containing a task."""
    tid = _parse_task_id(task_id)
    service = _open_service()
    result = _unwrap(service.project_schedule(tid))

    table = Table(title="Project Schedule")
    for col in ("ID", "Title", "Earliest Start", "Early Finish", "Latest Finish", "Slack (h)", "Critical"):
        table.add_column(col)

    for s in sorted(result.values(), key=lambda s: (s.earliest_start, s.task_id)):
        t = service.repo.find_by_id(s.task_id)
        table.add_row(
            str(s.task_id),
            t.title,
            _fmt_dt(s.earliest_start),
            _fmt_dt(s.early_finish),
            _fmt_dt(s.latest_finish),
            f"{s.slack_hrs:.1f}",
            "yes" if s.is_critical else "",
            style="bold yellow" if s.is_critical else None,
        )
    console.print(table)


@app.command("critical-path")
def critical_path(task_id: TaskIdArg) -> None:
    """Display only the tasks on the critical path."""
    tid = _parse_task_id(task_id)
    service = _open_service()
    path = _unwrap(service.critical_path(tid))
    if not path:
        console.print("[green]No critical tasks: every task has slack.[/green]")
        return
    chain = " -> ".join(f"{service.repo.find_by_id(p).title} ({p})" for p in path)
    console.print(f"[bold yellow]{chain}[/bold yellow]")


@app.command()
def plan(
    capacity: Annotated[Optional[float], typer.Option("--capacity", "-c", help="Hours available")] = None,
    unit: Annotated[Optional[float], typer.Option("--unit", "-u", help="Time unit in hours")] = None,
    tasks: Annotated[Optional[list[str]], typer.Option("--task", help="Candidate task IDs (default: all open tasks)")] = None,
    by_urgency: Annotated[bool, typer.Option("--urgency", help="Weight value by deadline urgency")] = False,
) -> None:
    """Pick the most valuable work that fits in the available hours."""
    service = _open_service()
    ids = [_parse_task_id(t) for t in tasks] if tasks else None
    items = _unwrap(service.plan(capacity, unit, task_ids=ids, by_urgency=by_urgency))
    if not items:
        console.print("Nothing fits in the available time.")
        return

    table = Table(title="Plan")
    for col in ("ID", "Title", "Hours", "Partial"):
        table.add_column(col)
    for item in items:
        table.add_row(
            str(item.task_id),
            item.title,
            f"{item.scheduled_duration:g}",
            "partial" if item.is_partial else "",
        )
    console.print(table)
    total = sum(i.scheduled_duration for i in items)
    cap = capacity if capacity is not None else service.config.capacity_hours
    console.print(f"[dim]{total:g}h of {cap:g}h planned[/dim]")


@app.command()
def accuracy() -> None:
    """Average gap between actual and estimated durations."""
    avg = _unwrap(_open_service().average_actual_vs_estimated())
    if avg.count == 0:
        console.print("No completed tasks with both an estimate and an actual duration.")
        return
    console.print(
        f"Across {avg.count} task(s): {avg.avg_delta_hrs:+.1f}h "
        f"({avg.avg_delta_percent:+.0f}%) versus estimate on average."
    )
