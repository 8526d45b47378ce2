"""Critical path scheduling over a project's task tree.

Parent tasks precede their children: a child can start once every parent in
the project has finished. Earliest start, latest finish and slack are
computed in one forward and one backward pass over a topological order of
the whole project.
"""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timedelta
from typing import Iterable

import networkx as nx

from tasktree.errors import ErrorKind, TaskError, missing_duration, not_found
from tasktree.models import Task, TaskSchedule, naive_local
from tasktree.repository import TaskLookup

logger = logging.getLogger(__name__)


def build_dag(repo: TaskLookup, task_ids: Iterable[int]) -> nx.DiGraph:
    """Project graph restricted to *task_ids*.

    Raises NOT_FOUND for an unknown id in the set and NOT_A_DAG when a task
    points at a parent or child that does not exist at all. Links to tasks
    that exist but sit outside the set are left out.
    """
    ids = set(task_ids)
    G = nx.DiGraph()
    for tid in sorted(ids):
        task = repo.find_by_id(tid)
        if task is None:
            raise not_found(tid)
        G.add_node(tid, task=task)

    for tid in sorted(ids):
        task: Task = G.nodes[tid]["task"]
        for child_id in task.children_ids:
            if child_id in ids:
                G.add_edge(tid, child_id)
            elif repo.find_by_id(child_id) is None:
                raise TaskError(
                    ErrorKind.NOT_A_DAG,
                    f"Task {tid} lists missing child {child_id}",
                    task_id=tid,
                    missing_id=child_id,
                )
        if task.parent_id is None:
            continue
        if task.parent_id in ids:
            G.add_edge(task.parent_id, tid)
        elif repo.find_by_id(task.parent_id) is None:
            raise TaskError(
                ErrorKind.NOT_A_DAG,
                f"Task {tid} points at missing parent {task.parent_id}",
                task_id=tid,
                missing_id=task.parent_id,
            )
    return G


def topological_order(G: nx.DiGraph) -> list[int]:
    """Kahn's algorithm with a FIFO queue, seeded in ascending id order."""
    in_degree = dict(G.in_degree())
    queue = deque(sorted(n for n, d in in_degree.items() if d == 0))
    order: list[int] = []
    while queue:
        tid = queue.popleft()
        order.append(tid)
        for succ in G.successors(tid):
            in_degree[succ] -= 1
            if in_degree[succ] == 0:
                queue.append(succ)

    if len(order) != G.number_of_nodes():
        stuck = sorted(set(G) - set(order))
        raise TaskError(
            ErrorKind.NOT_A_DAG,
            "Project graph contains a cycle",
            task_ids=stuck,
        )
    return order


def _duration(task: Task) -> timedelta:
    return timedelta(hours=task.estimate_duration_hrs)


def _completed_window(task: Task, now: datetime) -> tuple[datetime, datetime]:
    """Fixed (start, finish) of a completed task; finish prefers the deadline."""
    finish = task.deadline or task.actual_end or task.actual_start or now
    start = task.actual_start or task.start_date or finish
    return min(start, finish), finish


def _validate(tasks: list[Task], now: datetime) -> None:
    for task in tasks:
        if task.completed:
            continue
        if not task.has_positive_estimate():
            raise missing_duration(task.id)
        if task.deadline is not None and task.deadline < now:
            raise TaskError(
                ErrorKind.OVERDUE,
                f"Task {task.id} passed its deadline {task.deadline.isoformat()}",
                task_id=task.id,
            )


def _schedule(G: nx.DiGraph, order: list[int], now: datetime) -> dict[int, TaskSchedule]:
    tasks: dict[int, Task] = {tid: G.nodes[tid]["task"] for tid in order}
    _validate([tasks[tid] for tid in order], now)

    # --- Forward pass (earliest start / early finish) ---
    es: dict[int, datetime] = {}
    ef: dict[int, datetime] = {}

    for tid in order:
        task = tasks[tid]
        preds = list(G.predecessors(tid))

        if task.completed:
            es[tid], ef[tid] = _completed_window(task, now)
            continue

        if not preds:
            calc_start = max(now, task.start_date) if task.start_date else now
        else:
            missing = [p for p in preds if p not in ef]
            if missing:
                raise TaskError(
                    ErrorKind.PARENT_UNRESOLVED,
                    f"Parent {missing[0]} of task {tid} has no finish time yet",
                    task_id=tid,
                    parent_id=missing[0],
                )
            calc_start = max(ef[p] for p in preds)
            if task.start_date:
                calc_start = max(calc_start, task.start_date)

        es[tid] = calc_start
        ef[tid] = calc_start + _duration(task)

    # --- Backward pass (latest finish) ---
    project_end = max(ef.values()) if ef else now
    lf: dict[int, datetime] = {}

    for tid in reversed(order):
        task = tasks[tid]
        succs = list(G.successors(tid))

        if task.completed:
            lf[tid] = ef[tid]
            continue

        if not succs:
            lf[tid] = task.deadline or project_end
            continue

        candidates: list[datetime] = []
        for c in succs:
            if c not in lf:
                raise TaskError(
                    ErrorKind.CHILD_UNRESOLVED,
                    f"Child {c} of task {tid} has no latest finish yet",
                    task_id=tid,
                    child_id=c,
                )
            child = tasks[c]
            candidates.append(lf[c] if child.completed else lf[c] - _duration(child))
        lf[tid] = min(candidates)

    return {
        tid: TaskSchedule(
            task_id=tid,
            earliest_start=es[tid],
            early_finish=ef[tid],
            latest_finish=lf[tid],
            slack=lf[tid] - ef[tid],
        )
        for tid in order
    }


def compute_project_schedule(
    repo: TaskLookup,
    project_task_ids: Iterable[int],
    now: datetime | None = None,
) -> dict[int, TaskSchedule]:
    """Forward + backward pass over the whole project, keyed by task id."""
    now = naive_local(now) or datetime.now()
    G = build_dag(repo, project_task_ids)
    order = topological_order(G)
    schedule = _schedule(G, order, now)
    logger.debug(
        "Scheduled %d tasks, %d critical",
        len(schedule),
        sum(1 for s in schedule.values() if s.is_critical),
    )
    return schedule


def trace_critical_path(G: nx.DiGraph, schedule: dict[int, TaskSchedule]) -> list[int]:
    """Critical tasks reachable from a root through critical children, pre-order."""
    path: list[int] = []
    visited: set[int] = set()
    roots = [tid for tid in sorted(G) if G.in_degree(tid) == 0]
    for root in roots:
        if not schedule[root].is_critical:
            continue
        stack = [root]
        while stack:
            tid = stack.pop()
            if tid in visited:
                continue
            visited.add(tid)
            path.append(tid)
            children = [c for c in G.successors(tid) if schedule[c].is_critical]
            stack.extend(reversed(children))
    return path


def get_critical_path(
    repo: TaskLookup,
    project_task_ids: Iterable[int],
    now: datetime | None = None,
) -> list[int]:
    now = naive_local(now) or datetime.now()
    G = build_dag(repo, project_task_ids)
    schedule = _schedule(G, topological_order(G), now)
    return trace_critical_path(G, schedule)
