# ruff: noqa: T201

from junban.core.models import Task
from junban.core.state import EffectiveState


def print_task(t: Task, eff: EffectiveState | None = None) -> None:
    print(f"id: {t.id}")
    print(f"title: {t.title}")
    state = t.state if eff is None else f"{t.state} (effective: {eff.effective_state})"
    print(f"state: {state}  priority: {t.priority}  deadlock: {t.deadlock}")
    print(f"urgency: {t.urgency}  importance: {t.importance_percentile}")
    print(f"due: {t.scheduled_due_at}  deadline: {t.deadline}  lead_time_days: {t.lead_time_days}")
    if eff is not None and eff.ready_at:
        print(f"ready_at: {eff.ready_at}  overdue: {eff.overdue}")
    print(f"dependencies: {t.dependencies}")
    print(f"created_at: {t.created_at}  updated_at: {t.updated_at}")
    if t.description:
        print(f"description: {t.description}")
    if t.recurrence:
        print(f"recurrence: {t.recurrence.to_dict()}")
    if t.remedy_for:
        print(f"remedy_for: {t.remedy_for}")
    if t.picker:
        print(f"picker: {t.picker}")
    if t.points_snapshot is not None:
        print(f"points_snapshot: {t.points_snapshot}")
