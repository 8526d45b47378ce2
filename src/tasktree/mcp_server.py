"""MCP server for tasktree: exposes task-tree tools to AI assistants."""

from __future__ import annotations

import json
from datetime import datetime

from mcp.server.fastmcp import FastMCP

from tasktree.errors import Result
from tasktree.logging_setup import setup_logging
from tasktree.models import ScheduleItem, Task, TaskSchedule, parse_dt
from tasktree.persistence import Store
from tasktree.service import TaskService

mcp = FastMCP(
    "tasktree",
    instructions="""\
tasktree keeps tasks in a tree: every task has at most one parent and any \
number of subtasks. A parent must finish before its subtasks can start.

Key concepts:
- **Completeness** (0-100) is rolled up from the leaves, weighted by their \
estimated duration. Set it on leaf tasks with set_completeness.
- **Urgency** (0-100) measures how close a task is to the last moment it can \
start and still meet its deadline. 100 means it should already have started.
- **Critical path**: tasks with no slack in the project schedule. Delaying \
them delays the project past its deadlines.
- **plan_day** picks the most valuable tasks that fit in the given hours. \
Splittable tasks may be planned in part.

Task ids are integers. Dates are ISO 8601 (YYYY-MM-DD or YYYY-MM-DDTHH:MM).

Typical workflow:
1. add_task to create tasks, passing parent_id for subtasks
2. start_task / set_completeness / complete_task to track progress
3. get_progress for a task's completeness, urgency and remaining effort
4. get_project_schedule or get_critical_path for slack analysis
5. plan_day when the user asks what to work on today\
""",
)


def _get_service() -> TaskService:
    config, arena = Store().open()
    return TaskService(arena, config)


def _error(result: Result) -> str:
    return f"Error: {result.error.code}: {result.error.message}"


def _task_to_dict(t: Task, now: datetime) -> dict:
    d = t.to_dict()
    d["id"] = t.id
    d["state"] = t.state_at(now).value
    return d


def _schedule_to_dict(s: TaskSchedule) -> dict:
    return {
        "id": s.task_id,
        "earliest_start": s.earliest_start.isoformat(),
        "early_finish": s.early_finish.isoformat(),
        "latest_finish": s.latest_finish.isoformat(),
        "slack_hours": round(s.slack_hrs, 2),
        "is_critical": s.is_critical,
    }


def _plan_item_to_dict(item: ScheduleItem) -> dict:
    return {
        "id": item.task_id,
        "title": item.title,
        "hours": item.scheduled_duration,
        "is_partial": item.is_partial,
    }


@mcp.tool()
def add_task(
    title: str,
    estimate_hours: float | None = None,
    parent_id: int | None = None,
    deadline: str | None = None,
    start_date: str | None = None,
    priority: int = 0,
    splittable: bool = False,
    description: str = "",
) -> str:
    """Add a task.

    Args:
        title: Short description of the task.
        estimate_hours: Estimated effort in hours.
        parent_id: Parent task id, if this is a subtask.
        deadline: Deadline as an ISO date or datetime.
        start_date: Earliest start as an ISO date or datetime.
        priority: Higher numbers are more important.
        splittable: Whether the task may be planned in partial slices.
        description: Free-form notes.
    """
    try:
        deadline_dt = parse_dt(deadline)
        start_dt = parse_dt(start_date)
    except ValueError as e:
        return f"Error: invalid date ({e})."

    service = _get_service()
    result = service.create_task(
        title,
        parent_id=parent_id,
        description=description,
        deadline=deadline_dt,
        start_date=start_dt,
        estimate_duration_hrs=estimate_hours,
        priority=priority,
        is_splittable=splittable,
    )
    if not result.ok:
        return _error(result)
    return f"Added task {result.value.id}: {title}"


@mcp.tool()
def link_tasks(task_id: int, parent_id: int) -> str:
    """Make parent_id the parent of task_id. Refused if it would create a cycle."""
    result = _get_service().attach_parent(task_id, parent_id)
    if not result.ok:
        return _error(result)
    return f"Task {task_id} is now a subtask of {parent_id}."


@mcp.tool()
def unlink_task(task_id: int) -> str:
    """Detach a task from its parent."""
    result = _get_service().detach_parent(task_id)
    if not result.ok:
        return _error(result)
    return f"Task {task_id} is now a top-level task."


@mcp.tool()
def start_task(task_id: int) -> str:
    """Mark a task as in progress."""
    result = _get_service().start_task(task_id)
    if not result.ok:
        return _error(result)
    return f"Started task {task_id}."


@mcp.tool()
def complete_task(task_id: int, actual_hours: float | None = None) -> str:
    """Mark a task as completed, optionally recording the hours actually spent."""
    result = _get_service().complete_task(task_id, actual_duration_hrs=actual_hours)
    if not result.ok:
        return _error(result)
    t = result.value
    msg = f"Completed task {task_id}."
    if t.actual_duration_hrs is not None and t.estimate_duration_hrs:
        diff = t.actual_duration_hrs - t.estimate_duration_hrs
        msg += f" Actual {t.actual_duration_hrs:.1f}h vs estimate {t.estimate_duration_hrs:.1f}h ({diff:+.1f}h)."
    return msg


@mcp.tool()
def reopen_task(task_id: int) -> str:
    """Reopen a completed task."""
    result = _get_service().reopen_task(task_id)
    if not result.ok:
        return _error(result)
    return f"Reopened task {task_id}."


@mcp.tool()
def set_completeness(task_id: int, percent: float) -> str:
    """Record how far along a leaf task is (0-100)."""
    result = _get_service().set_completeness(task_id, percent)
    if not result.ok:
        return _error(result)
    return f"Task {task_id} set to {result.value.completeness:g}%."


@mcp.tool()
def get_task(task_id: int) -> str:
    """Full details for a single task as JSON."""
    result = _get_service().get_task(task_id)
    if not result.ok:
        return _error(result)
    return json.dumps(_task_to_dict(result.value, datetime.now()), indent=2)


@mcp.tool()
def get_progress(task_id: int) -> str:
    """Completeness, urgency and remaining effort of a task and its subtree, as JSON."""
    service = _get_service()
    now = datetime.now()
    task = service.get_task(task_id)
    if not task.ok:
        return _error(task)

    def _value_or_error(result: Result):
        return result.value if result.ok else {"error": result.error.to_dict()}

    subtree = service.resolver.get_subtree(task_id)
    ids = [t.id for t in subtree]
    span = service.calculator.get_group_timespan(ids)
    progress = {
        "id": task_id,
        "title": task.value.title,
        "state": task.value.state_at(now).value,
        "completeness": _value_or_error(service.completeness(task_id)),
        "urgency": _value_or_error(service.urgency(task_id, now=now)),
        "remaining_hours": _value_or_error(service.remaining_duration(task_id, now=now)),
        "subtree": {
            "task_count": span.task_count,
            "completion_rate": round(service.calculator.get_completion_rate(ids), 3),
            "total_estimate_hours": service.calculator.get_total_estimated_duration(ids),
            "average_priority": round(service.calculator.get_average_priority(ids), 2),
            "earliest_deadline": span.earliest_deadline.isoformat() if span.earliest_deadline else None,
            "latest_start_date": span.latest_start_date.isoformat() if span.latest_start_date else None,
        },
    }
    return json.dumps(progress, indent=2)


@mcp.tool()
def get_project_schedule(task_id: int) -> str:
    """CPM schedule (earliest start, latest finish, slack) of the project containing task_id."""
    result = _get_service().project_schedule(task_id)
    if not result.ok:
        return _error(result)
    rows = sorted(result.value.values(), key=lambda s: (s.earliest_start, s.task_id))
    return json.dumps([_schedule_to_dict(s) for s in rows], indent=2)


@mcp.tool()
def get_critical_path(task_id: int) -> str:
    """Tasks with no slack in the project containing task_id, parents first."""
    service = _get_service()
    result = service.critical_path(task_id)
    if not result.ok:
        return _error(result)
    if not result.value:
        return "No critical tasks: every task has slack."
    return json.dumps(
        [{"id": tid, "title": service.repo.find_by_id(tid).title} for tid in result.value],
        indent=2,
    )


@mcp.tool()
def plan_day(
    capacity_hours: float | None = None,
    task_ids: list[int] | None = None,
    by_urgency: bool = False,
) -> str:
    """Pick the most valuable tasks that fit in the available hours.

    Args:
        capacity_hours: Hours available (defaults to the configured capacity).
        task_ids: Candidate tasks (defaults to every open task).
        by_urgency: Weight value by deadline urgency instead of deadline presence.
    """
    result = _get_service().plan(capacity_hours, task_ids=task_ids, by_urgency=by_urgency)
    if not result.ok:
        return _error(result)
    return json.dumps([_plan_item_to_dict(i) for i in result.value], indent=2)


def main():
    """Entry point for the MCP server."""
    setup_logging()
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
