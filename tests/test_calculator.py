from datetime import datetime, timedelta

import pytest

from tasktree.calculator import TaskCalculator, round_half_up
from tasktree.errors import ErrorKind, TaskError
from tasktree.models import Task, TaskState


def test_round_half_up():
    assert round_half_up(49.5) == 50
    assert round_half_up(50.5) == 51
    assert round_half_up(49.4) == 49


# ---------------------------------------------------------------------------
# Completeness
# ---------------------------------------------------------------------------


def test_leaf_completeness(make_arena):
    calc = TaskCalculator(make_arena(Task(1, "Leaf", estimate_duration_hrs=2.0, completeness=50)))
    assert calc.get_task_completeness(1) == 50


def test_completeness_weighted_by_duration(make_arena):
    arena = make_arena(
        Task(1, "Root", estimate_duration_hrs=1.0),
        Task(2, "Short", estimate_duration_hrs=1.0, parent_id=1, state=TaskState.COMPLETED),
        Task(3, "Long", estimate_duration_hrs=3.0, parent_id=1),
    )
    assert TaskCalculator(arena).get_task_completeness(1) == 25


def test_completed_parent_counts_its_actual_duration(make_arena):
    arena = make_arena(
        Task(
            1,
            "Parent",
            estimate_duration_hrs=2.0,
            actual_duration_hrs=4.0,
            state=TaskState.COMPLETED,
        ),
        Task(2, "Child", estimate_duration_hrs=6.0, completeness=50, parent_id=1),
    )
    # (4 + 3) / (4 + 6)
    assert TaskCalculator(arena).get_task_completeness(1) == 70


def test_completeness_clamps_leaf_values(make_arena):
    arena = make_arena(
        Task(1, "Root"),
        Task(2, "Over", estimate_duration_hrs=1.0, completeness=150, parent_id=1),
        Task(3, "Under", estimate_duration_hrs=1.0, completeness=-20, parent_id=1),
    )
    assert TaskCalculator(arena).get_task_completeness(1) == 50


def test_completeness_missing_duration(make_arena):
    arena = make_arena(
        Task(1, "Root"),
        Task(2, "No estimate", parent_id=1),
    )
    with pytest.raises(TaskError) as exc:
        TaskCalculator(arena).get_task_completeness(1)
    assert exc.value.kind == ErrorKind.MISSING_DURATION
    assert exc.value.details["task_id"] == 2


def test_completeness_zero_total_is_zero(make_arena):
    arena = make_arena(Task(1, "Done, no numbers", state=TaskState.COMPLETED))
    assert TaskCalculator(arena).get_task_completeness(1) == 0


def test_completeness_unknown_task(make_arena):
    with pytest.raises(TaskError) as exc:
        TaskCalculator(make_arena()).get_task_completeness(9)
    assert exc.value.kind == ErrorKind.NOT_FOUND


# ---------------------------------------------------------------------------
# Urgency
# ---------------------------------------------------------------------------


def test_urgency_without_deadline_or_when_completed(make_arena, now):
    arena = make_arena(
        Task(1, "No deadline", estimate_duration_hrs=1.0),
        Task(2, "Done", deadline=now, estimate_duration_hrs=1.0, state=TaskState.COMPLETED),
    )
    calc = TaskCalculator(arena)
    assert calc.get_task_urgency(1, now=now) == 0
    assert calc.get_task_urgency(2, now=now) == 0


def test_urgency_past_deadline_or_start_by(make_arena, now):
    arena = make_arena(
        Task(1, "Missed", deadline=now - timedelta(hours=1), estimate_duration_hrs=1.0),
        Task(2, "Should have started", deadline=now + timedelta(hours=2), estimate_duration_hrs=3.0),
    )
    calc = TaskCalculator(arena)
    assert calc.get_task_urgency(1, now=now) == 100
    assert calc.get_task_urgency(2, now=now) == 100


def test_urgency_linear_inside_window(make_arena, now):
    arena = make_arena(
        Task(1, "Halfway", deadline=now + timedelta(days=15, hours=2), estimate_duration_hrs=2.0),
        Task(2, "Far", deadline=now + timedelta(days=31), estimate_duration_hrs=24.0),
        Task(3, "Beyond", deadline=now + timedelta(days=90), estimate_duration_hrs=1.0),
    )
    calc = TaskCalculator(arena)
    assert calc.get_task_urgency(1, 30, now=now) == 50
    assert calc.get_task_urgency(2, 30, now=now) == 0
    assert calc.get_task_urgency(3, 30, now=now) == 0


def test_urgency_window_at_least_one_day(make_arena, now):
    arena = make_arena(Task(1, "Tomorrow-ish", deadline=now + timedelta(hours=13), estimate_duration_hrs=1.0))
    assert TaskCalculator(arena).get_task_urgency(1, 0, now=now) == 50


def test_urgency_requires_estimate(make_arena, now):
    arena = make_arena(Task(1, "Deadline only", deadline=now + timedelta(days=1)))
    with pytest.raises(TaskError) as exc:
        TaskCalculator(arena).get_task_urgency(1, now=now)
    assert exc.value.kind == ErrorKind.MISSING_DURATION


# ---------------------------------------------------------------------------
# Remaining effort
# ---------------------------------------------------------------------------


def test_remaining_duration_of_leaf(make_arena, now):
    arena = make_arena(Task(1, "Leaf", estimate_duration_hrs=4.0, completeness=25))
    assert TaskCalculator(arena).estimated_task_duration(1, now=now) == 3.0


def test_remaining_duration_counts_in_progress_parents(make_arena, now):
    arena = make_arena(
        Task(1, "Parent", estimate_duration_hrs=2.0, state=TaskState.IN_PROGRESS),
        Task(2, "Half", estimate_duration_hrs=4.0, completeness=50, parent_id=1),
        Task(3, "Done", estimate_duration_hrs=1.0, parent_id=1, state=TaskState.COMPLETED),
    )
    calc = TaskCalculator(arena)
    assert calc.estimated_task_duration(1, now=now) == 4.0

    arena.find_by_id(1).state = TaskState.SCHEDULED
    assert calc.estimated_task_duration(1, now=now) == 2.0


def test_remaining_duration_of_completed_root(make_arena, now):
    arena = make_arena(Task(1, "Done", state=TaskState.COMPLETED))
    assert TaskCalculator(arena).estimated_task_duration(1, now=now) == 0.0


def test_remaining_duration_overdue_root(make_arena, now):
    arena = make_arena(Task(1, "Late", deadline=now - timedelta(days=1), estimate_duration_hrs=1.0))
    with pytest.raises(TaskError) as exc:
        TaskCalculator(arena).estimated_task_duration(1, now=now)
    assert exc.value.kind == ErrorKind.OVERDUE
    assert exc.value.code == "OVERDUE_TASK"


# ---------------------------------------------------------------------------
# Estimate accuracy and group statistics
# ---------------------------------------------------------------------------


def test_actual_vs_estimated(make_arena):
    arena = make_arena(
        Task(1, "Over", estimate_duration_hrs=4.0, actual_duration_hrs=5.0),
        Task(2, "No actual", estimate_duration_hrs=4.0),
        Task(3, "Zero estimate", estimate_duration_hrs=0.0, actual_duration_hrs=1.0),
    )
    calc = TaskCalculator(arena)

    d = calc.get_actual_vs_estimated(1)
    assert d.delta_hrs == 1.0
    assert d.delta_percent == 25.0

    d = calc.get_actual_vs_estimated(2)
    assert d.delta_hrs is None and d.delta_percent is None

    d = calc.get_actual_vs_estimated(3)
    assert d.delta_hrs == 1.0
    assert d.delta_percent is None


def test_average_actual_vs_estimated(make_arena):
    arena = make_arena(
        Task(1, "Over", estimate_duration_hrs=4.0, actual_duration_hrs=5.0),
        Task(2, "Under", estimate_duration_hrs=2.0, actual_duration_hrs=1.0),
        Task(3, "Open", estimate_duration_hrs=3.0),
    )
    avg = TaskCalculator(arena).get_average_actual_vs_estimated()
    assert avg.count == 2
    assert avg.avg_delta_hrs == 0.0
    assert avg.avg_delta_percent == -12.5


def test_average_actual_vs_estimated_empty(make_arena):
    avg = TaskCalculator(make_arena(Task(1, "Open", estimate_duration_hrs=1.0))).get_average_actual_vs_estimated()
    assert avg.count == 0
    assert avg.avg_delta_hrs is None


def test_group_statistics(make_arena):
    arena = make_arena(
        Task(1, "A", deadline=datetime(2026, 3, 9), start_date=datetime(2026, 3, 2), estimate_duration_hrs=2.0, priority=1),
        Task(2, "B", deadline=datetime(2026, 3, 5), start_date=datetime(2026, 3, 4), estimate_duration_hrs=3.0, priority=3, state=TaskState.COMPLETED),
        Task(3, "C", priority=2),
    )
    calc = TaskCalculator(arena)
    ids = [1, 2, 3, 99]

    assert calc.get_earliest_deadline(ids) == datetime(2026, 3, 5)
    assert calc.get_latest_start_date(ids) == datetime(2026, 3, 4)
    assert calc.get_total_estimated_duration(ids) == 5.0
    assert calc.get_average_priority(ids) == 2.0
    assert calc.get_completion_rate(ids) == pytest.approx(1 / 3)

    span = calc.get_group_timespan([1, 3])
    assert span.earliest_deadline == datetime(2026, 3, 9)
    assert span.task_count == 2

    assert calc.get_earliest_deadline([]) is None
    assert calc.get_completion_rate([]) == 0.0


def test_completing_a_leaf_never_lowers_ancestor_completeness(make_arena):
    arena = make_arena(
        Task(1, "Root", estimate_duration_hrs=1.0),
        Task(2, "A", estimate_duration_hrs=2.0, parent_id=1),
        Task(3, "A1", estimate_duration_hrs=3.0, completeness=80, parent_id=2),
        Task(4, "A2", estimate_duration_hrs=1.0, completeness=10, parent_id=2),
        Task(5, "B", estimate_duration_hrs=5.0, completeness=40, parent_id=1),
    )
    calc = TaskCalculator(arena)

    for leaf_id in (3, 4, 5):
        leaf = arena.find_by_id(leaf_id)
        chain = [leaf_id] + [a.id for a in arena.find_ancestors(leaf)]
        before = {tid: calc.get_task_completeness(tid) for tid in chain}
        leaf.state = TaskState.COMPLETED
        for tid in chain:
            assert calc.get_task_completeness(tid) >= before[tid]
    assert calc.get_task_completeness(1) == 100


def test_urgency_rises_as_start_by_approaches(make_arena, now):
    deadline = now + timedelta(days=20)
    arena = make_arena(Task(1, "Due", deadline=deadline, estimate_duration_hrs=6.0))
    calc = TaskCalculator(arena)

    scores = [calc.get_task_urgency(1, 10, now=now + timedelta(hours=h)) for h in range(0, 24 * 21, 6)]
    assert scores == sorted(scores)
    assert scores[0] == 0
    assert scores[-1] == 100
