from datetime import datetime

import pytest

from tasktree.models import Task
from tasktree.repository import TaskArena

NOW = datetime(2026, 3, 2, 9, 0)


@pytest.fixture
def now():
    return NOW


def link_children(tasks: list[Task]) -> list[Task]:
    """Fill in children_ids from each task's parent_id."""
    by_id = {t.id: t for t in tasks}
    for t in tasks:
        parent = by_id.get(t.parent_id) if t.parent_id is not None else None
        if parent is not None and t.id not in parent.children_ids:
            parent.children_ids.append(t.id)
    return tasks


@pytest.fixture
def make_arena():
    def _make(*tasks: Task) -> TaskArena:
        return TaskArena(link_children(list(tasks)))

    return _make
