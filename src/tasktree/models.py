"""Task model, lifecycle states and the plain result records."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta


class TaskState(enum.StrEnum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    OVERDUE = "overdue"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").title()


def naive_local(dt: datetime | None) -> datetime | None:
    """Offset-qualified times become naive local time; everything is compared naive."""
    if dt is None or dt.tzinfo is None:
        return dt
    return dt.astimezone().replace(tzinfo=None)


def parse_dt(raw: str | None) -> datetime | None:
    return naive_local(datetime.fromisoformat(raw)) if raw else None


def _format_dt(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt is not None else None


@dataclass
class SchedulerConfig:
    """Planning settings stored alongside tasks."""

    capacity_hours: float = 8.0
    time_unit: float = 0.5
    urgency_window_days: int = 30
    default_duration_hrs: float = 1.0

    def to_dict(self) -> dict:
        return {
            "capacity_hours": self.capacity_hours,
            "time_unit": self.time_unit,
            "urgency_window_days": self.urgency_window_days,
            "default_duration_hrs": self.default_duration_hrs,
        }

    @classmethod
    def from_dict(cls, d: dict) -> SchedulerConfig:
        return cls(
            capacity_hours=d.get("capacity_hours", 8.0),
            time_unit=d.get("time_unit", 0.5),
            urgency_window_days=d.get("urgency_window_days", 30),
            default_duration_hrs=d.get("default_duration_hrs", 1.0),
        )


@dataclass
class Task:
    """A node in the task tree."""

    id: int
    title: str
    description: str = ""
    deadline: datetime | None = None
    start_date: datetime | None = None
    actual_start: datetime | None = None
    actual_end: datetime | None = None
    estimate_duration_hrs: float | None = None
    actual_duration_hrs: float | None = None
    completeness: float = 0.0  # only meaningful on leaves
    priority: int = 0
    is_splittable: bool = False
    state: TaskState = TaskState.SCHEDULED
    parent_id: int | None = None
    children_ids: list[int] = field(default_factory=list)
    category_id: int | None = None
    tag_ids: list[int] = field(default_factory=list)

    def __post_init__(self):
        self.deadline = naive_local(self.deadline)
        self.start_date = naive_local(self.start_date)
        self.actual_start = naive_local(self.actual_start)
        self.actual_end = naive_local(self.actual_end)

    @property
    def completed(self) -> bool:
        return self.state == TaskState.COMPLETED

    @property
    def is_root(self) -> bool:
        return self.parent_id is None

    def state_at(self, now: datetime) -> TaskState:
        """Lifecycle state as of *now*, deriving overdue from the deadline."""
        if self.completed:
            return TaskState.COMPLETED
        if self.deadline is not None and self.deadline < now:
            return TaskState.OVERDUE
        if self.state == TaskState.OVERDUE:
            return TaskState.IN_PROGRESS if self.actual_start else TaskState.SCHEDULED
        return self.state

    def canonical_duration(self) -> float | None:
        """Actual duration once completed, the estimate otherwise."""
        if self.completed and self.actual_duration_hrs is not None:
            return self.actual_duration_hrs
        return self.estimate_duration_hrs

    def has_positive_estimate(self) -> bool:
        return self.estimate_duration_hrs is not None and self.estimate_duration_hrs > 0

    def to_dict(self) -> dict:
        d = {
            "title": self.title,
            "description": self.description,
            "deadline": _format_dt(self.deadline),
            "start_date": _format_dt(self.start_date),
            "actual_start": _format_dt(self.actual_start),
            "actual_end": _format_dt(self.actual_end),
            "estimate_duration_hrs": self.estimate_duration_hrs,
            "actual_duration_hrs": self.actual_duration_hrs,
            "completeness": self.completeness,
            "priority": self.priority,
            "is_splittable": self.is_splittable,
            "state": self.state.value,
            "parent_id": self.parent_id,
            "children_ids": self.children_ids,
            "tag_ids": self.tag_ids,
        }
        if self.category_id is not None:
            d["category_id"] = self.category_id
        return d

    @classmethod
    def from_dict(cls, task_id: int, d: dict) -> Task:
        return cls(
            id=int(task_id),
            title=d["title"],
            description=d.get("description", ""),
            deadline=parse_dt(d.get("deadline")),
            start_date=parse_dt(d.get("start_date")),
            actual_start=parse_dt(d.get("actual_start")),
            actual_end=parse_dt(d.get("actual_end")),
            estimate_duration_hrs=d.get("estimate_duration_hrs"),
            actual_duration_hrs=d.get("actual_duration_hrs"),
            completeness=d.get("completeness", 0.0),
            priority=d.get("priority", 0),
            is_splittable=d.get("is_splittable", False),
            state=TaskState(d.get("state", "scheduled")),
            parent_id=d.get("parent_id"),
            children_ids=list(d.get("children_ids", [])),
            category_id=d.get("category_id"),
            tag_ids=list(d.get("tag_ids", [])),
        )


# ---------------------------------------------------------------------------
# Result records
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TaskSchedule:
    """CPM times for one task of a project."""

    task_id: int
    earliest_start: datetime
    early_finish: datetime
    latest_finish: datetime
    slack: timedelta

    @property
    def is_critical(self) -> bool:
        """Zero slack, or negative slack when a deadline is already too tight."""
        return self.slack <= timedelta(0)

    @property
    def slack_hrs(self) -> float:
        return self.slack.total_seconds() / 3600


@dataclass(frozen=True)
class ScheduleItem:
    """One task's share of a capacity-constrained plan."""

    task_id: int
    title: str
    scheduled_duration: float
    is_partial: bool


@dataclass(frozen=True)
class DurationDelta:
    estimated_duration_hrs: float | None
    actual_duration_hrs: float | None
    delta_hrs: float | None
    delta_percent: float | None


@dataclass(frozen=True)
class AverageDurationDelta:
    avg_delta_hrs: float | None
    avg_delta_percent: float | None
    count: int


@dataclass(frozen=True)
class GroupTimespan:
    earliest_deadline: datetime | None
    latest_start_date: datetime | None
    task_count: int
