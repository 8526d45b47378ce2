"""Daily capacity planning as a 0/1 knapsack.

Durations and the capacity are measured in whole time units. Splittable
tasks are exploded into one-unit fragments so the optimizer may schedule
part of them. This planner is advisory: bad records fall back to defaults
instead of failing the whole plan.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Iterable

from tasktree.errors import TaskError
from tasktree.models import ScheduleItem, Task

if TYPE_CHECKING:
    from tasktree.calculator import TaskCalculator

DEFAULT_TIME_UNIT = 0.5
DEFAULT_DURATION_HRS = 1.0

ValueFn = Callable[[Task], float]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KnapsackItem:
    task: Task
    weight: int  # time units
    value: float
    is_fragment: bool


def default_task_value(task: Task) -> float:
    return task.priority * 100 + (50 if task.deadline else 0)


def urgency_value(
    calculator: TaskCalculator,
    window_days: float = 30,
    now: datetime | None = None,
) -> ValueFn:
    """Value function weighting priority by deadline urgency (0-100)."""

    def _value(task: Task) -> float:
        try:
            urgency = calculator.get_task_urgency(task.id, window_days, now=now)
        except TaskError as e:
            logger.warning("Task %s: urgency unavailable (%s); using default value", task.id, e.code)
            return default_task_value(task)
        return task.priority * 100 + urgency

    return _value


def _unit_ratio(hours: float, time_unit: float) -> float:
    # 0.3 / 0.1 is 2.9999999999999996; snap to the intended multiple first
    return round(hours / time_unit, 9)


def _task_duration(task: Task, default_duration_hrs: float) -> float:
    if task.estimate_duration_hrs is None or task.estimate_duration_hrs <= 0:
        logger.warning(
            "Task %s has no usable estimate; assuming %.1fh", task.id, default_duration_hrs
        )
        return default_duration_hrs
    return task.estimate_duration_hrs


def build_items(
    tasks: Iterable[Task],
    time_unit: float,
    value_fn: ValueFn,
    default_duration_hrs: float = DEFAULT_DURATION_HRS,
) -> list[KnapsackItem]:
    items: list[KnapsackItem] = []
    for task in tasks:
        duration = _task_duration(task, default_duration_hrs)
        units = max(1, math.ceil(_unit_ratio(duration, time_unit)))
        value = max(0.0, float(value_fn(task)))

        if task.is_splittable:
            unit_value = value / units
            items.extend(
                KnapsackItem(task=task, weight=1, value=unit_value, is_fragment=True)
                for _ in range(units)
            )
        else:
            items.append(KnapsackItem(task=task, weight=units, value=value, is_fragment=False))
    return items


def knapsack(items: list[KnapsackItem], capacity: int) -> list[KnapsackItem]:
    """Standard 0/1 knapsack DP; returns the selected items."""
    n = len(items)
    if n == 0 or capacity <= 0:
        return []

    dp = [[0.0] * (capacity + 1) for _ in range(n + 1)]
    for i in range(1, n + 1):
        item = items[i - 1]
        prev = dp[i - 1]
        row = dp[i]
        for w in range(capacity + 1):
            if item.weight <= w:
                row[w] = max(prev[w], prev[w - item.weight] + item.value)
            else:
                row[w] = prev[w]

    selected: list[KnapsackItem] = []
    w = capacity
    for i in range(n, 0, -1):
        if dp[i][w] != dp[i - 1][w]:
            item = items[i - 1]
            selected.append(item)
            w -= item.weight
    selected.reverse()
    return selected


def schedule_capacity(
    tasks: Iterable[Task],
    capacity_hours: float,
    time_unit: float = DEFAULT_TIME_UNIT,
    value_fn: ValueFn | None = None,
    default_duration_hrs: float = DEFAULT_DURATION_HRS,
) -> list[ScheduleItem]:
    """Pick the most valuable set of tasks (or fragments) that fits the budget."""
    tasks = list(tasks)
    if time_unit <= 0:
        logger.warning("Invalid time unit %r; using %.1fh", time_unit, DEFAULT_TIME_UNIT)
        time_unit = DEFAULT_TIME_UNIT
    capacity = max(0, math.floor(_unit_ratio(capacity_hours, time_unit)))

    items = build_items(tasks, time_unit, value_fn or default_task_value, default_duration_hrs)
    selected = knapsack(items, capacity)
    logger.debug(
        "Knapsack over %d items, capacity %d units: %d selected", len(items), capacity, len(selected)
    )

    units_by_task: dict[int, int] = {}
    for item in selected:
        units_by_task[item.task.id] = units_by_task.get(item.task.id, 0) + item.weight

    plan: list[ScheduleItem] = []
    for task in tasks:
        units = units_by_task.pop(task.id, 0)
        if units == 0:
            continue
        scheduled = round(units * time_unit, 9)
        estimate = task.estimate_duration_hrs if task.has_positive_estimate() else default_duration_hrs
        plan.append(
            ScheduleItem(
                task_id=task.id,
                title=task.title,
                scheduled_duration=scheduled,
                is_partial=scheduled < estimate,
            )
        )
    return plan
