import pytest

from tasktree.errors import ErrorKind, TaskError
from tasktree.graph import DependencyResolver, build_task_graph
from tasktree.models import Task
from tasktree.repository import TaskArena


def _tree(make_arena):
    #      1
    #    /   \
    #   2     3
    #   |
    #   4          5 (separate project)
    return make_arena(
        Task(1, "Root"),
        Task(2, "A", parent_id=1),
        Task(3, "B", parent_id=1),
        Task(4, "A1", parent_id=2),
        Task(5, "Other"),
    )


def test_build_task_graph_merges_both_link_directions():
    tasks = [
        Task(1, "Root", children_ids=[2]),
        Task(2, "Child"),
        Task(3, "Orphan-ish", parent_id=1),
        Task(4, "Dangling", parent_id=99, children_ids=[98]),
    ]
    G = build_task_graph(tasks)
    assert set(G.edges) == {(1, 2), (1, 3)}
    assert 4 in G


def test_would_create_cycle(make_arena):
    resolver = DependencyResolver(_tree(make_arena))
    assert resolver.would_create_cycle(1, 1)
    assert resolver.would_create_cycle(1, 4)
    assert resolver.would_create_cycle(2, 4)
    assert not resolver.would_create_cycle(4, 3)
    assert not resolver.would_create_cycle(5, 4)
    assert not resolver.would_create_cycle(1, 5)


def test_would_create_cycle_tolerates_existing_loop():
    arena = TaskArena([Task(1, "X", parent_id=2), Task(2, "Y", parent_id=1), Task(3, "Z")])
    resolver = DependencyResolver(arena)
    assert not resolver.would_create_cycle(3, 1)


def test_roots(make_arena):
    resolver = DependencyResolver(_tree(make_arena))
    assert [t.id for t in resolver.get_root_tasks()] == [1, 5]


def test_project_root(make_arena):
    resolver = DependencyResolver(_tree(make_arena))
    assert resolver.get_project_root(4).id == 1
    assert resolver.get_project_root(1).id == 1
    assert resolver.get_project_root(5).id == 5


def test_project_root_unknown_task(make_arena):
    resolver = DependencyResolver(_tree(make_arena))
    with pytest.raises(TaskError) as exc:
        resolver.get_project_root(42)
    assert exc.value.kind == ErrorKind.NOT_FOUND


def test_project_root_stops_at_dangling_parent():
    arena = TaskArena([Task(1, "Child", parent_id=99)])
    assert DependencyResolver(arena).get_project_root(1).id == 1


def test_project_root_detects_loop():
    arena = TaskArena([Task(1, "X", parent_id=2), Task(2, "Y", parent_id=1)])
    with pytest.raises(TaskError) as exc:
        DependencyResolver(arena).get_project_root(1)
    assert exc.value.kind == ErrorKind.NOT_A_DAG


def test_descendants_pre_order(make_arena):
    resolver = DependencyResolver(_tree(make_arena))
    assert [t.id for t in resolver.get_all_descendants(1)] == [2, 4, 3]
    assert [t.id for t in resolver.get_subtree(2)] == [2, 4]
    assert resolver.get_all_descendants(4) == []


def test_ancestors_nearest_first(make_arena):
    resolver = DependencyResolver(_tree(make_arena))
    assert [t.id for t in resolver.get_all_ancestors(4)] == [2, 1]
    assert resolver.get_all_ancestors(1) == []


def test_collect_project_task_ids(make_arena):
    resolver = DependencyResolver(_tree(make_arena))
    assert resolver.collect_project_task_ids(3) == {1, 2, 3, 4}
    assert resolver.collect_project_task_ids(5) == {5}
