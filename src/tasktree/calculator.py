"""Completeness, urgency and effort calculations over a task subtree."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Iterable

from tasktree.errors import ErrorKind, TaskError, missing_duration, not_found
from tasktree.graph import DependencyResolver, build_task_graph
from tasktree.models import (
    AverageDurationDelta,
    DurationDelta,
    GroupTimespan,
    Task,
    TaskState,
    naive_local,
)
from tasktree.repository import TaskLookup

DEFAULT_URGENCY_WINDOW_DAYS = 30

logger = logging.getLogger(__name__)


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def clamp_completeness(value: float | None) -> float:
    if value is None:
        return 0.0
    return min(100.0, max(0.0, float(value)))


class TaskCalculator:
    """Derived metrics for tasks; every call recomputes from the snapshot."""

    def __init__(self, repo: TaskLookup):
        self.repo = repo
        self.resolver = DependencyResolver(repo)

    def _require(self, task_id: int) -> Task:
        task = self.repo.find_by_id(task_id)
        if task is None:
            raise not_found(task_id)
        return task

    def _subtree_with_leaves(self, task_id: int) -> tuple[list[Task], set[int]]:
        subtree = self.resolver.get_subtree(task_id)
        G = build_task_graph(subtree)
        leaves = {tid for tid in G if G.out_degree(tid) == 0}
        return subtree, leaves

    # ------------------------------------------------------------------
    # Completeness
    # ------------------------------------------------------------------

    def get_task_completeness(self, task_id: int) -> int:
        """Duration-weighted share (0-100) of the subtree's work that is done.

        Leaves contribute their canonical duration as effort and
        ``effort * completeness / 100`` as done work (all of it once
        completed). A non-leaf contributes only once it is itself completed.
        """
        subtree, leaves = self._subtree_with_leaves(task_id)

        total = 0.0
        done = 0.0
        for task in subtree:
            if task.id in leaves:
                if not task.completed and not task.has_positive_estimate():
                    raise missing_duration(task.id)
                effort = task.canonical_duration() or 0.0
                if task.completed:
                    done += effort
                else:
                    done += effort * clamp_completeness(task.completeness) / 100
                total += effort
            elif task.completed:
                effort = task.canonical_duration() or 0.0
                total += effort
                done += effort

        if total <= 0:
            return 0
        pct = round_half_up(100 * done / total)
        return min(100, max(0, pct))

    # ------------------------------------------------------------------
    # Urgency
    # ------------------------------------------------------------------

    def get_task_urgency(
        self,
        task_id: int,
        window_days: float = DEFAULT_URGENCY_WINDOW_DAYS,
        now: datetime | None = None,
    ) -> int:
        """0-100 score of how soon the task must start to meet its deadline."""
        task = self._require(task_id)
        if task.completed or task.deadline is None:
            return 0
        if not task.has_positive_estimate():
            raise missing_duration(task.id)

        now = naive_local(now) or datetime.now()
        window = timedelta(days=max(1, window_days))
        start_by = task.deadline - timedelta(hours=task.estimate_duration_hrs)

        if task.deadline <= now or start_by <= now:
            return 100
        time_to_start = start_by - now
        if time_to_start >= window:
            return 0
        urgency = round_half_up(100 * (window - time_to_start) / window)
        return min(100, max(0, urgency))

    # ------------------------------------------------------------------
    # Remaining effort
    # ------------------------------------------------------------------

    def estimated_task_duration(self, task_id: int, now: datetime | None = None) -> float:
        """Hours of work left in the task's subtree."""
        now = naive_local(now) or datetime.now()
        root = self._require(task_id)
        if root.completed:
            return 0.0
        if root.state_at(now) == TaskState.OVERDUE:
            raise TaskError(
                ErrorKind.OVERDUE,
                f"Task {task_id} is overdue; remaining effort is undefined",
                task_id=task_id,
            )

        subtree, leaves = self._subtree_with_leaves(task_id)
        remaining = 0.0
        for task in subtree:
            if task.completed:
                continue
            if task.id in leaves:
                if not task.has_positive_estimate():
                    raise missing_duration(task.id)
                remaining += task.estimate_duration_hrs * (
                    1 - clamp_completeness(task.completeness) / 100
                )
            elif task.state == TaskState.IN_PROGRESS:
                if not task.has_positive_estimate():
                    raise missing_duration(task.id)
                remaining += task.estimate_duration_hrs
        return remaining

    # ------------------------------------------------------------------
    # Estimate accuracy
    # ------------------------------------------------------------------

    def get_actual_vs_estimated(self, task_id: int) -> DurationDelta:
        task = self._require(task_id)
        return _duration_delta(task)

    def get_average_actual_vs_estimated(self) -> AverageDurationDelta:
        deltas = [_duration_delta(t) for t in self.repo.find_all()]
        usable = [d for d in deltas if d.delta_hrs is not None and d.delta_percent is not None]
        if not usable:
            return AverageDurationDelta(avg_delta_hrs=None, avg_delta_percent=None, count=0)
        return AverageDurationDelta(
            avg_delta_hrs=sum(d.delta_hrs for d in usable) / len(usable),
            avg_delta_percent=sum(d.delta_percent for d in usable) / len(usable),
            count=len(usable),
        )

    # ------------------------------------------------------------------
    # Group statistics
    # ------------------------------------------------------------------

    def _existing(self, task_ids: Iterable[int]) -> list[Task]:
        found = [self.repo.find_by_id(tid) for tid in task_ids]
        return [t for t in found if t is not None]

    def get_earliest_deadline(self, task_ids: Iterable[int]) -> datetime | None:
        deadlines = [t.deadline for t in self._existing(task_ids) if t.deadline is not None]
        return min(deadlines, default=None)

    def get_latest_start_date(self, task_ids: Iterable[int]) -> datetime | None:
        starts = [t.start_date for t in self._existing(task_ids) if t.start_date is not None]
        return max(starts, default=None)

    def get_group_timespan(self, task_ids: Iterable[int]) -> GroupTimespan:
        task_ids = list(task_ids)
        return GroupTimespan(
            earliest_deadline=self.get_earliest_deadline(task_ids),
            latest_start_date=self.get_latest_start_date(task_ids),
            task_count=len(task_ids),
        )

    def get_total_estimated_duration(self, task_ids: Iterable[int]) -> float:
        return sum(t.estimate_duration_hrs or 0.0 for t in self._existing(task_ids))

    def get_average_priority(self, task_ids: Iterable[int]) -> float:
        tasks = self._existing(task_ids)
        if not tasks:
            return 0.0
        return sum(t.priority for t in tasks) / len(tasks)

    def get_completion_rate(self, task_ids: Iterable[int]) -> float:
        tasks = self._existing(task_ids)
        if not tasks:
            return 0.0
        return sum(1 for t in tasks if t.completed) / len(tasks)


def _duration_delta(task: Task) -> DurationDelta:
    estimate = task.estimate_duration_hrs
    actual = task.actual_duration_hrs
    if actual is None or estimate is None:
        return DurationDelta(estimate, actual, None, None)
    delta = actual - estimate
    percent = delta / estimate * 100 if estimate else None
    return DurationDelta(estimate, actual, delta, percent)
