"""Effective workflow state of a task.

The stored ``state`` is what users (and the engine) set explicitly. What the
board shows, and what gates InProgress / Done transitions, is derived here from
the stored fields, the rest of the collection and the current time. Nothing in
this module mutates a task.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta

from junban.core.models import State, Task
from junban.util.time import parse_datetime, to_iso


@dataclass(frozen=True)
class EffectiveState:
    effective_state: State
    ready_at: str | None
    scheduled_due_at: str | None
    overdue: bool


def lead_days(task: Task) -> float:
    r = task.recurrence
    for v in (r.lead_time_days if r else None, task.lead_time_days):
        if v:
            try:
                return float(v)
            except (TypeError, ValueError):
                continue
    return 0.0


def calc_ready_at(task: Task) -> datetime | None:
    due = parse_datetime(task.scheduled_due_at)
    if due is None:
        return None
    return due - timedelta(days=lead_days(task))


def is_overdue(task: Task, now: datetime) -> bool:
    due = parse_datetime(task.scheduled_due_at)
    if due is None:
        return False
    interval = task.recurrence.interval if task.recurrence else 0.0
    if interval > 0:
        return now >= due + timedelta(days=interval / 2)
    return now >= due


def is_past_due(task: Task, now: datetime) -> bool:
    """Strict due check used as the escape hatch for actionability."""
    due = parse_datetime(task.scheduled_due_at)
    return due is not None and now >= due


def any_dependency_unresolved(task: Task, tasks: Mapping[str, Task]) -> bool:
    for dep_id in task.dependencies:
        dep = tasks.get(dep_id)
        if dep is None or dep.state != "Done":
            return True
    return False


def derive_state(task: Task, tasks: Mapping[str, Task], now: datetime) -> EffectiveState:
    due = parse_datetime(task.scheduled_due_at)
    ready = calc_ready_at(task)
    due_iso = to_iso(due) if due else None
    ready_iso = to_iso(ready) if ready else None
    overdue = is_overdue(task, now)

    def _result(state: State, *, late: bool = overdue) -> EffectiveState:
        return EffectiveState(state, ready_iso, due_iso, late)

    # sticky / terminal states short-circuit everything else
    if task.state == "Done":
        return _result("Done", late=False)
    if task.state == "Blocked":
        return _result("Blocked")
    if task.state == "InProgress":
        return _result("InProgress")

    if task.recurrence is not None and task.recurrence.paused:
        return _result("Suspended")

    # not due yet wins over dependency status
    if ready is not None and now < ready:
        return _result("Waiting", late=False)

    if any_dependency_unresolved(task, tasks):
        return _result("Suspended")

    if due is None:
        return _result(task.state or "Ready", late=False)

    if task.state == "Suspended":
        return _result("Suspended")

    return _result("Ready")
