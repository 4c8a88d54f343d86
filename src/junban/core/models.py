from dataclasses import asdict, dataclass, field, fields
from typing import Any, Literal

from junban.util.time import now_iso

State = Literal["Waiting", "Ready", "InProgress", "Blocked", "Suspended", "Done"]
STATES: tuple[State, ...] = ("Waiting", "Ready", "InProgress", "Blocked", "Suspended", "Done")
RecurrenceType = Literal["rolling", "anchored"]


@dataclass
class Recurrence:
    type: RecurrenceType = "rolling"
    interval_days: float | None = None
    weekdays: list[int] = field(default_factory=list)  # 0=Sunday .. 6=Saturday
    lead_time_days: float | None = None
    paused: bool = False

    @property
    def interval(self) -> float:
        try:
            return float(self.interval_days or 0)
        except (TypeError, ValueError):
            return 0.0

    def weekday_set(self) -> set[int]:
        out: set[int] = set()
        for w in self.weekdays:
            try:
                n = int(w)
            except (TypeError, ValueError):
                continue
            if 0 <= n <= 6:
                out.add(n)
        return out

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "Recurrence | None":
        """不正な type (``none`` を含む) の場合は None を返す。"""
        rtype = d.get("type", "rolling")
        if rtype not in ("rolling", "anchored"):
            return None
        interval = d.get("interval_days", d.get("intervalDays", d.get("interval")))
        lead = d.get("lead_time_days", d.get("leadTimeDays"))
        weekdays = d.get("weekdays") or []
        return Recurrence(
            type=rtype,
            interval_days=_as_number(interval),
            weekdays=[int(n) for n in (_as_number(w) for w in weekdays[:7]) if n is not None],
            lead_time_days=_as_number(lead),
            paused=bool(d.get("paused", False)),
        )


def _as_number(v: Any) -> float | None:
    if v is None or isinstance(v, bool):
        return None
    try:
        n = float(v)
    except (TypeError, ValueError):
        return None
    if n != n or n in (float("inf"), float("-inf")):
        return None
    return int(n) if n.is_integer() else n


@dataclass
class Task:
    id: str
    title: str = "Untitled Task"
    description: str = ""
    state: State = "Ready"
    scheduled_due_at: str | None = None
    lead_time_days: float = 0
    deadline: str | None = None
    dependencies: list[str] = field(default_factory=list)
    recurrence: Recurrence | None = None
    remedy_for: str | None = None
    # picker / points bookkeeping
    picker: str | None = None
    picked_at: str | None = None
    picker_history: list[dict[str, Any]] = field(default_factory=list)
    points_snapshot: int | None = None
    points_snapshot_created_at: str | None = None
    points_snapshot_created_by: str | None = None
    points_snapshot_awarded: bool | None = None
    points_history: list[dict[str, Any]] = field(default_factory=list)
    awarded: dict[str, Any] | None = None
    last_completed_at: str | None = None
    blocked_at: str | None = None
    created_at: str = field(default_factory=now_iso)
    updated_at: str = field(default_factory=now_iso)
    created_by: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)
    # derived (recomputed on every mutation)
    importance_raw: float = 0
    importance_percentile: int = 0
    urgency: int = 0
    priority: int = 1
    deadlock: bool = False

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @staticmethod
    def from_dict(d: dict[str, Any]) -> "Task":
        known = {f.name for f in fields(Task)}
        kwargs = {k: v for k, v in d.items() if k in known}
        if not kwargs.get("id"):
            _msg = f"Task without id: {d!r}"
            raise ValueError(_msg)
        if kwargs.get("state") not in STATES:
            kwargs["state"] = "Ready"
        match kwargs.get("recurrence"):
            case dict() as r:
                kwargs["recurrence"] = Recurrence.from_dict(r)
            case Recurrence():
                pass
            case _:
                kwargs["recurrence"] = None
        kwargs["dependencies"] = [str(x) for x in kwargs.get("dependencies") or []]
        return Task(**kwargs)
