import unittest

import pytest

from junban.core.errors import ConflictError, NotFoundError, ValidationError
from junban.core.graph import analyze, dependency_closure, insert_dependency, would_create_cycle
from junban.core.models import Task


def _tasks(**deps: list[str]) -> dict[str, Task]:
    return {tid: Task(id=tid, title=tid, dependencies=list(d)) for tid, d in deps.items()}


class TestAnalyze(unittest.TestCase):
    def test_order_puts_dependencies_first(self) -> None:
        """依存先が先に並ぶことを確認"""
        tasks = _tasks(a=[], b=["a"], c=["b"], d=["a"])
        g = analyze(tasks)
        assert g.deadlock == set()
        assert g.order.index("a") < g.order.index("b") < g.order.index("c")
        assert sorted(g.dependents["a"]) == ["b", "d"]

    def test_cycle_is_deadlock(self) -> None:
        """循環とその下流が deadlock になることを確認"""
        tasks = _tasks(x=["z"], y=["x"], z=["y"], free=[], after=["x"])
        g = analyze(tasks)
        # 循環の下流にいるタスクも順序に入れない
        assert g.deadlock == {"x", "y", "z", "after"}
        assert g.order == ["free"]

    def test_acyclic_order_visits_every_node_once(self) -> None:
        """循環が無ければ全タスクが一度ずつ並ぶことを確認"""
        tasks = _tasks(a=[], b=["a"], c=["a", "b"], d=[], e=["d", "c"])
        g = analyze(tasks)
        assert sorted(g.order) == sorted(tasks)
        assert len(g.order) == len(set(g.order))

    def test_missing_dependency_is_ignored(self) -> None:
        """存在しない依存先は無視されることを確認"""
        g = analyze(_tasks(a=["ghost"]))
        assert g.order == ["a"]


class TestCycleDetection(unittest.TestCase):
    """循環を起こす依存追加がちゃんとエラーになることのテスト"""

    def test_would_create_cycle(self) -> None:
        """循環になる依存を検出できることを確認"""
        tasks = _tasks(a=[], b=["a"], c=["b"])
        assert would_create_cycle(tasks, "a", "c")
        assert would_create_cycle(tasks, "a", "a")
        assert not would_create_cycle(tasks, "c", "a")

    def test_insert_rejects_cycle_and_keeps_tasks(self) -> None:
        """循環する依存追加が拒否され元のままであることを確認"""
        tasks = _tasks(a=[], b=["a"])
        with pytest.raises(ConflictError) as ctx:
            insert_dependency(tasks, "a", "b")
        assert ctx.value.details == {"task_id": "a", "dependency_id": "b"}
        assert tasks["a"].dependencies == []

    def test_insert_validation(self) -> None:
        """存在しない ID と自己依存がエラーになることを確認"""
        tasks = _tasks(a=[], b=[])
        with pytest.raises(NotFoundError):
            insert_dependency(tasks, "nope", "a")
        with pytest.raises(ValidationError):
            insert_dependency(tasks, "a", "nope")
        with pytest.raises(ValidationError, match="itself"):
            insert_dependency(tasks, "a", "a")

    def test_insert_is_idempotent(self) -> None:
        """同じ依存を二度追加しても重複しないことを確認"""
        tasks = _tasks(a=[], b=[])
        assert insert_dependency(tasks, "b", "a") is True
        assert insert_dependency(tasks, "b", "a") is False
        assert tasks["b"].dependencies == ["a"]


class TestDependencyClosure(unittest.TestCase):
    def test_transitive(self) -> None:
        """推移的な依存先が全て集まることを確認"""
        tasks = _tasks(a=["b"], b=["c", "ghost"], c=[], other=["c"])
        assert dependency_closure(tasks, "a") == {"a", "b", "c", "ghost"}

    def test_terminates_on_cycle(self) -> None:
        """循環があっても探索が終わることを確認"""
        tasks = _tasks(a=["b"], b=["a"])
        assert dependency_closure(tasks, "a") == {"a", "b"}


if __name__ == "__main__":
    unittest.main()
