"""Application-facing entry points.

``TaskService`` wires the resolver, calculators and schedulers to one
repository. Mutations run inside a repository transaction so the cycle
check and the link write cannot interleave with another writer. Every
public method returns a :class:`~tasktree.errors.Result`.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from tasktree.calculator import TaskCalculator, clamp_completeness
from tasktree.capacity import schedule_capacity, urgency_value
from tasktree.errors import ErrorKind, Result, TaskError, not_found
from tasktree.graph import DependencyResolver
from tasktree.models import (
    AverageDurationDelta,
    DurationDelta,
    ScheduleItem,
    SchedulerConfig,
    Task,
    TaskSchedule,
    TaskState,
    naive_local,
)
from tasktree.repository import TaskArena
from tasktree.scheduler import compute_project_schedule, get_critical_path

logger = logging.getLogger(__name__)


class TaskService:
    def __init__(self, repo: TaskArena, config: SchedulerConfig | None = None):
        self.repo = repo
        self.config = config or SchedulerConfig()
        self.resolver = DependencyResolver(repo)
        self.calculator = TaskCalculator(repo)

    def _require(self, task_id: int) -> Task:
        task = self.repo.find_by_id(task_id)
        if task is None:
            raise not_found(task_id)
        return task

    # ------------------------------------------------------------------
    # Tasks and links
    # ------------------------------------------------------------------

    def get_task(self, task_id: int) -> Result[Task]:
        return Result.capture(self._require, task_id)

    def create_task(self, title: str, parent_id: int | None = None, **fields) -> Result[Task]:
        def _create() -> Task:
            with self.repo.transaction():
                if parent_id is not None:
                    self._require(parent_id)
                task = self.repo.create(title=title, **fields)
                if parent_id is not None:
                    self._link(task.id, parent_id)
                return task

        return Result.capture(_create)

    def _link(self, child_id: int, parent_id: int) -> Task:
        child = self._require(child_id)
        parent = self._require(parent_id)
        if self.resolver.would_create_cycle(child_id, parent_id):
            logger.warning("Rejected link %s -> %s: would create a cycle", parent_id, child_id)
            raise TaskError(
                ErrorKind.CYCLE_DETECTED,
                f"Task {parent_id} cannot become the parent of its own descendant {child_id}",
                task_id=child_id,
                parent_id=parent_id,
            )
        if child.parent_id is not None and child.parent_id != parent_id:
            self._unlink(child)
        child.parent_id = parent_id
        if child_id not in parent.children_ids:
            parent.children_ids.append(child_id)
        self.repo.save(parent)
        self.repo.save(child)
        return child

    def _unlink(self, child: Task) -> None:
        old_parent = self.repo.find_by_id(child.parent_id) if child.parent_id is not None else None
        if old_parent is not None and child.id in old_parent.children_ids:
            old_parent.children_ids.remove(child.id)
            self.repo.save(old_parent)
        child.parent_id = None
        self.repo.save(child)

    def attach_parent(self, child_id: int, parent_id: int) -> Result[Task]:
        def _attach() -> Task:
            with self.repo.transaction():
                return self._link(child_id, parent_id)

        return Result.capture(_attach)

    def detach_parent(self, child_id: int) -> Result[Task]:
        def _detach() -> Task:
            with self.repo.transaction():
                child = self._require(child_id)
                self._unlink(child)
                return child

        return Result.capture(_detach)

    def delete_task(self, task_id: int) -> Result[bool]:
        """Delete a task; its children become roots."""

        def _delete() -> bool:
            with self.repo.transaction():
                task = self._require(task_id)
                if task.parent_id is not None:
                    self._unlink(task)
                for child in self.repo.find_children(task):
                    if child.parent_id == task_id:
                        child.parent_id = None
                        self.repo.save(child)
                return self.repo.delete(task_id)

        return Result.capture(_delete)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start_task(self, task_id: int, now: datetime | None = None) -> Result[Task]:
        def _start() -> Task:
            with self.repo.transaction():
                task = self._require(task_id)
                if task.completed:
                    raise TaskError(
                        ErrorKind.INVALID_TRANSITION,
                        f"Task {task_id} is completed; reopen it instead",
                        task_id=task_id,
                    )
                task.state = TaskState.IN_PROGRESS
                if task.actual_start is None:
                    task.actual_start = naive_local(now) or datetime.now()
                return self.repo.save(task)

        return Result.capture(_start)

    def complete_task(
        self,
        task_id: int,
        actual_duration_hrs: float | None = None,
        now: datetime | None = None,
    ) -> Result[Task]:
        def _complete() -> Task:
            with self.repo.transaction():
                task = self._require(task_id)
                if task.completed:
                    return task
                end = naive_local(now) or datetime.now()
                was_started = task.actual_start is not None
                task.state = TaskState.COMPLETED
                task.actual_end = end
                if not was_started:
                    task.actual_start = end
                if actual_duration_hrs is not None:
                    task.actual_duration_hrs = actual_duration_hrs
                elif was_started:
                    task.actual_duration_hrs = (end - task.actual_start).total_seconds() / 3600
                else:
                    task.actual_duration_hrs = task.estimate_duration_hrs
                return self.repo.save(task)

        return Result.capture(_complete)

    def reopen_task(self, task_id: int) -> Result[Task]:
        def _reopen() -> Task:
            with self.repo.transaction():
                task = self._require(task_id)
                if not task.completed:
                    return task
                task.state = TaskState.IN_PROGRESS
                task.actual_end = None
                task.actual_duration_hrs = None
                return self.repo.save(task)

        return Result.capture(_reopen)

    def set_completeness(self, task_id: int, completeness: float) -> Result[Task]:
        def _set() -> Task:
            with self.repo.transaction():
                task = self._require(task_id)
                task.completeness = clamp_completeness(completeness)
                return self.repo.save(task)

        return Result.capture(_set)

    def refresh_overdue(self, now: datetime | None = None) -> Result[list[int]]:
        """Persist the overdue state for every task past its deadline."""

        def _refresh() -> list[int]:
            now_ = naive_local(now) or datetime.now()
            changed: list[int] = []
            with self.repo.transaction():
                for task in self.repo.find_all():
                    state = task.state_at(now_)
                    if state != task.state:
                        task.state = state
                        self.repo.save(task)
                        changed.append(task.id)
            if changed:
                logger.info("State refreshed for %d task(s)", len(changed))
            return changed

        return Result.capture(_refresh)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def completeness(self, task_id: int) -> Result[int]:
        return Result.capture(self.calculator.get_task_completeness, task_id)

    def urgency(
        self,
        task_id: int,
        window_days: float | None = None,
        now: datetime | None = None,
    ) -> Result[int]:
        window = window_days if window_days is not None else self.config.urgency_window_days
        return Result.capture(self.calculator.get_task_urgency, task_id, window, now=now)

    def remaining_duration(self, task_id: int, now: datetime | None = None) -> Result[float]:
        return Result.capture(self.calculator.estimated_task_duration, task_id, now=now)

    def actual_vs_estimated(self, task_id: int) -> Result[DurationDelta]:
        return Result.capture(self.calculator.get_actual_vs_estimated, task_id)

    def average_actual_vs_estimated(self) -> Result[AverageDurationDelta]:
        return Result.capture(self.calculator.get_average_actual_vs_estimated)

    def project_task_ids(self, task_id: int) -> Result[set[int]]:
        return Result.capture(self.resolver.collect_project_task_ids, task_id)

    def project_schedule(
        self, task_id: int, now: datetime | None = None
    ) -> Result[dict[int, TaskSchedule]]:
        """CPM schedule of the whole project containing *task_id*."""

        def _schedule() -> dict[int, TaskSchedule]:
            ids = self.resolver.collect_project_task_ids(task_id)
            return compute_project_schedule(self.repo, ids, now=now)

        return Result.capture(_schedule)

    def critical_path(self, task_id: int, now: datetime | None = None) -> Result[list[int]]:
        def _path() -> list[int]:
            ids = self.resolver.collect_project_task_ids(task_id)
            return get_critical_path(self.repo, ids, now=now)

        return Result.capture(_path)

    def plan(
        self,
        capacity_hours: float | None = None,
        time_unit: float | None = None,
        task_ids: Iterable[int] | None = None,
        by_urgency: bool = False,
        now: datetime | None = None,
    ) -> Result[list[ScheduleItem]]:
        """Capacity allocation over the given tasks, or every open task."""

        def _plan() -> list[ScheduleItem]:
            if task_ids is None:
                candidates = [t for t in self.repo.find_all() if not t.completed]
            else:
                candidates = []
                for tid in task_ids:
                    task = self.repo.find_by_id(tid)
                    if task is None:
                        logger.warning("Skipping unknown task %s in plan", tid)
                        continue
                    candidates.append(task)
            value_fn = (
                urgency_value(self.calculator, self.config.urgency_window_days, now=now)
                if by_urgency
                else None
            )
            return schedule_capacity(
                candidates,
                capacity_hours if capacity_hours is not None else self.config.capacity_hours,
                time_unit if time_unit is not None else self.config.time_unit,
                value_fn=value_fn,
                default_duration_hrs=self.config.default_duration_hrs,
            )

        return Result.capture(_plan)
