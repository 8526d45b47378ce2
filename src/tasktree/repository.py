"""Storage collaborator interfaces and the in-memory task arena.

The scheduling core only reads through :class:`TaskLookup`; relationship and
lifecycle mutations go through :class:`TaskWriter` inside a transaction.
"""

from __future__ import annotations

import copy
import logging
import threading
from contextlib import contextmanager
from typing import Callable, ContextManager, Iterable, Iterator, Protocol

import networkx as nx

from tasktree.graph import build_task_graph
from tasktree.models import Task

logger = logging.getLogger(__name__)


class TaskLookup(Protocol):
    def find_by_id(self, task_id: int) -> Task | None: ...
    def find_all(self) -> list[Task]: ...
    def find_children(self, task: Task) -> list[Task]: ...
    def find_parent(self, task: Task) -> Task | None: ...
    def find_descendants(self, task: Task) -> list[Task]: ...
    def find_ancestors(self, task: Task) -> list[Task]: ...


class TaskWriter(Protocol):
    def create(self, **fields) -> Task: ...
    def save(self, task: Task) -> Task: ...
    def delete(self, task_id: int) -> bool: ...
    def transaction(self) -> ContextManager[None]: ...


class TaskArena:
    """Tasks indexed by id; relations are plain id fields, never references."""

    def __init__(
        self,
        tasks: Iterable[Task] = (),
        on_commit: Callable[[TaskArena], None] | None = None,
    ):
        self._tasks: dict[int, Task] = {t.id: t for t in tasks}
        self._lock = threading.RLock()
        self._depth = 0
        self.on_commit = on_commit

    def __len__(self) -> int:
        return len(self._tasks)

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._tasks

    # -- lookup -------------------------------------------------------------

    def find_by_id(self, task_id: int) -> Task | None:
        return self._tasks.get(task_id)

    def find_all(self) -> list[Task]:
        return [self._tasks[tid] for tid in sorted(self._tasks)]

    def find_children(self, task: Task) -> list[Task]:
        return [self._tasks[c] for c in task.children_ids if c in self._tasks]

    def find_parent(self, task: Task) -> Task | None:
        if task.parent_id is None:
            return None
        return self._tasks.get(task.parent_id)

    def find_descendants(self, task: Task) -> list[Task]:
        """Subtree below *task* in pre-order, excluding *task* itself."""
        G = build_task_graph(self.find_all())
        if task.id not in G:
            return []
        order = nx.dfs_preorder_nodes(G, source=task.id)
        return [self._tasks[tid] for tid in order if tid != task.id]

    def find_ancestors(self, task: Task) -> list[Task]:
        """Parent chain of *task*, nearest first, stopping on a repeated id."""
        chain: list[Task] = []
        seen = {task.id}
        current = self.find_parent(task)
        while current is not None and current.id not in seen:
            seen.add(current.id)
            chain.append(current)
            current = self.find_parent(current)
        return chain

    # -- writes -------------------------------------------------------------

    def next_id(self) -> int:
        return max(self._tasks, default=0) + 1

    def create(self, **fields) -> Task:
        with self._lock:
            task = Task(id=self.next_id(), **fields)
            self._tasks[task.id] = task
            return task

    def save(self, task: Task) -> Task:
        with self._lock:
            self._tasks[task.id] = task
            return task

    def delete(self, task_id: int) -> bool:
        with self._lock:
            return self._tasks.pop(task_id, None) is not None

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """Serialize a read-check-write unit; roll back on any exception."""
        with self._lock:
            snapshot = copy.deepcopy(self._tasks) if self._depth == 0 else None
            self._depth += 1
            try:
                yield
            except BaseException:
                if snapshot is not None:
                    logger.debug("Rolling back transaction (%d tasks restored)", len(snapshot))
                    self._tasks = snapshot
                raise
            finally:
                self._depth -= 1
            if self._depth == 0 and self.on_commit is not None:
                self.on_commit(self)
