from collections.abc import Mapping

from junban.core.graph import analyze
from junban.core.models import Task

END_OF_TIME = "9999-12-31T23:59:59"


def task_sort_key(t: Task) -> tuple[int, str, str, str]:
    # priority 降順 → 予定日 (無ければ最後) → created_at → id
    return (-t.priority, t.scheduled_due_at or END_OF_TIME, t.created_at, t.id)


def topo_sort(tasks: Mapping[str, Task]) -> list[Task]:
    """依存先が先に来る順に並べる。循環に含まれるタスクは task_sort_key 順で後ろに足す。"""
    graph = analyze(tasks)
    result = [tasks[tid] for tid in graph.order]
    remains = sorted((tasks[tid] for tid in graph.deadlock), key=task_sort_key)
    return result + remains
