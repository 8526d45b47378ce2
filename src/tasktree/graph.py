"""Task-tree traversal: cycle checks, roots, ancestors and project discovery."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Iterable

import networkx as nx

from tasktree.errors import ErrorKind, TaskError, not_found
from tasktree.models import Task

if TYPE_CHECKING:
    from tasktree.repository import TaskLookup

logger = logging.getLogger(__name__)


def build_task_graph(tasks: Iterable[Task]) -> nx.DiGraph:
    """Parent -> child graph over *tasks*.

    Edges come from both ``children_ids`` and ``parent_id``; references to
    ids outside *tasks* are dropped. Successor order follows ``children_ids``.
    """
    tasks = list(tasks)
    G = nx.DiGraph()
    for task in tasks:
        G.add_node(task.id, task=task)
    for task in tasks:
        for child_id in task.children_ids:
            if child_id in G:
                G.add_edge(task.id, child_id)
    for task in tasks:
        if task.parent_id is not None and task.parent_id in G:
            G.add_edge(task.parent_id, task.id)
    return G


class DependencyResolver:
    """Read-only queries over the parent/child structure."""

    def __init__(self, repo: TaskLookup):
        self.repo = repo

    def _require(self, task_id: int) -> Task:
        task = self.repo.find_by_id(task_id)
        if task is None:
            raise not_found(task_id)
        return task

    def would_create_cycle(self, child_id: int, candidate_parent_id: int) -> bool:
        """True if making *candidate_parent_id* the parent of *child_id*
        would make the child its own ancestor."""
        if child_id == candidate_parent_id:
            return True
        visited: set[int] = set()
        current_id: int | None = candidate_parent_id
        while current_id is not None and current_id not in visited:
            if current_id == child_id:
                return True
            visited.add(current_id)
            current = self.repo.find_by_id(current_id)
            if current is None:
                return False
            current_id = current.parent_id
        if current_id is not None:
            logger.warning("Parent chain above task %s already loops at %s", candidate_parent_id, current_id)
        return False

    def get_root_tasks(self) -> list[Task]:
        return [t for t in self.repo.find_all() if t.parent_id is None]

    def get_project_root(self, task_id: int) -> Task:
        task = self._require(task_id)
        visited = {task.id}
        while task.parent_id is not None:
            parent = self.repo.find_by_id(task.parent_id)
            if parent is None:
                # dangling parent reference: the task is the top of what exists
                break
            if parent.id in visited:
                raise TaskError(
                    ErrorKind.NOT_A_DAG,
                    f"Parent chain of task {task_id} loops back to task {parent.id}",
                    task_id=task_id,
                )
            visited.add(parent.id)
            task = parent
        return task

    def get_all_descendants(self, task_id: int) -> list[Task]:
        return self.repo.find_descendants(self._require(task_id))

    def get_all_ancestors(self, task_id: int) -> list[Task]:
        return self.repo.find_ancestors(self._require(task_id))

    def get_subtree(self, task_id: int) -> list[Task]:
        """The task itself followed by its descendants."""
        task = self._require(task_id)
        return [task, *self.repo.find_descendants(task)]

    def collect_project_task_ids(self, any_task_id: int) -> set[int]:
        root = self.get_project_root(any_task_id)
        ids = {root.id}
        ids.update(t.id for t in self.repo.find_descendants(root))
        return ids
