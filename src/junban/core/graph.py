from collections import deque
from collections.abc import Mapping
from dataclasses import dataclass, field

from junban.core.errors import ConflictError, NotFoundError, ValidationError
from junban.core.models import Task
from junban.util.logger import setup_logger

logger = setup_logger("junban", is_stream=True, is_file=True)


@dataclass
class DependencyGraph:
    """Kahn 法の結果。

    order: 依存先が先に来る順 (依存の無いタスクから)
    deadlock: order に入らなかった (循環に関わる) タスクID
    dependents: task_id -> そのタスクに依存しているタスクIDのリスト
    """

    order: list[str] = field(default_factory=list)
    deadlock: set[str] = field(default_factory=set)
    dependents: dict[str, list[str]] = field(default_factory=dict)


def analyze(tasks: Mapping[str, Task]) -> DependencyGraph:
    """依存関係グラフ全体のトポロジカル順序と deadlock 集合を求める。

    tasks に含まれないタスクへの依存は無視する (警告のみ)。
    """
    dependents: dict[str, list[str]] = {tid: [] for tid in tasks}
    indeg: dict[str, int] = dict.fromkeys(tasks.keys(), 0)

    for t in tasks.values():
        for dep_id in t.dependencies:
            if dep_id not in tasks:
                logger.warning("Task %s depends on missing task %s", t.id, dep_id)
                continue
            dependents[dep_id].append(t.id)
            indeg[t.id] += 1

    q: deque[str] = deque(tid for tid, d in indeg.items() if d == 0)
    order: list[str] = []
    while q:
        u = q.popleft()
        order.append(u)
        for kid in dependents[u]:
            indeg[kid] -= 1
            if indeg[kid] == 0:
                q.append(kid)

    in_order = set(order)
    deadlock = {tid for tid in tasks if tid not in in_order}
    if deadlock:
        logger.warning("Deadlocked tasks (dependency cycle): %s", sorted(deadlock))
    return DependencyGraph(order=order, deadlock=deadlock, dependents=dependents)


def would_create_cycle(tasks: Mapping[str, Task], task_id: str, dep_id: str) -> bool:
    """task_id -> dep_id の依存を追加すると循環するかを返す。

    dep_id から依存をたどって task_id に到達できれば循環。
    """
    if task_id == dep_id:
        return True
    seen: set[str] = set()
    stack = [dep_id]
    while stack:
        cur = stack.pop()
        if cur == task_id:
            return True
        if cur in seen:
            continue
        seen.add(cur)
        t = tasks.get(cur)
        if t is None:
            continue
        stack.extend(d for d in t.dependencies if d not in seen)
    return False


def insert_dependency(tasks: Mapping[str, Task], task_id: str, dep_id: str) -> bool:
    """検証してから依存を追加する。既に存在する場合は何もせず False。

    Raises:
        NotFoundError: task_id が存在しない
        ValidationError: 自己依存、または dep_id が存在しない
        ConflictError: 追加すると循環する
    """
    task = tasks.get(task_id)
    if task is None:
        _msg = f"Task not found: {task_id}"
        raise NotFoundError(_msg)
    if not dep_id or dep_id not in tasks:
        _msg = f"Dependency task not found: {dep_id}"
        raise ValidationError(_msg)
    if dep_id == task_id:
        _msg = "Task cannot depend on itself"
        raise ValidationError(_msg)
    if would_create_cycle(tasks, task_id, dep_id):
        _msg = f"Adding dependency {task_id} -> {dep_id} would create a cycle"
        raise ConflictError(_msg, details={"task_id": task_id, "dependency_id": dep_id})
    if dep_id in task.dependencies:
        return False
    task.dependencies.append(dep_id)
    return True


def dependency_closure(tasks: Mapping[str, Task], start: str) -> set[str]:
    """Start 自身と、start が (推移的に) 依存している全タスクID。"""
    closure: set[str] = set()
    stack = [start]
    while stack:
        cur = stack.pop()
        if cur in closure:
            continue
        closure.add(cur)
        t = tasks.get(cur)
        if t is None:
            continue
        stack.extend(d for d in t.dependencies if d not in closure)
    return closure
