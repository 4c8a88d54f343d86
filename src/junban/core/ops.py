from __future__ import annotations

import copy
from collections.abc import Callable, Iterable, Mapping
from datetime import datetime
from typing import TYPE_CHECKING, Any, TypeVar

from pyresults import Err, Ok

from junban.core.errors import ConflictError, NotFoundError, OpsError, PersistenceError, ValidationError
from junban.core.graph import dependency_closure, insert_dependency, would_create_cycle
from junban.core.models import STATES, Recurrence, State, Task, _as_number
from junban.core.recurrence import advance_recurrence, align_anchored_schedule
from junban.core.scoring import ScoringConfig, compute_priorities, recompute_all
from junban.core.serializer import MutationSerializer
from junban.core.sort import task_sort_key
from junban.core.state import EffectiveState, any_dependency_unresolved, derive_state, is_past_due
from junban.storage import Store, get_store
from junban.storage.wip import WipLimits, WipLimitStore
from junban.util.dirs import load_env
from junban.util.ids import gen_task_id
from junban.util.logger import setup_logger
from junban.util.time import now as wall_clock
from junban.util.time import parse_datetime, to_iso

if TYPE_CHECKING:
    from junban.services.broadcast import Broadcaster
    from junban.services.points import PointsLedger

__all__ = [
    "Board",
    "ConflictError",
    "NotFoundError",
    "OpsError",
    "PersistenceError",
    "ValidationError",
    "snapshot_of",
]

logger = setup_logger("junban", is_stream=True, is_file=True)

T = TypeVar("T")
TITLE_MAX_LENGTH = 200
ACTIVE_STATES: tuple[State, ...] = ("Ready", "InProgress")


# ---- 内部ユーティリティ ----------------------------------------------------


def _clean_title(raw: object, default: str) -> str:
    title = str(raw or "").strip()[:TITLE_MAX_LENGTH]
    return title or default


def _as_timestamp(value: object, field_name: str) -> str | None:
    if value is None or value == "":
        return None
    dt = parse_datetime(value)
    if dt is None:
        _msg = f"Invalid timestamp for {field_name}: {value!r}"
        raise ValidationError(_msg)
    return to_iso(dt)


def _as_recurrence(value: object) -> Recurrence | None:
    match value:
        case None:
            return None
        case Recurrence():
            return value
        case dict():
            return Recurrence.from_dict(value)
        case _:
            _msg = f"Invalid recurrence: {value!r}"
            raise ValidationError(_msg)


def _merge_recurrence(current: Recurrence | None, patch: Mapping[str, Any]) -> Recurrence:
    """既存の recurrence に patch で指定された項目だけ反映する。"""
    r = copy.deepcopy(current) if current is not None else Recurrence()
    lead = patch.get("lead_time_days", patch.get("leadTimeDays"))
    if lead is not None and _as_number(lead) is not None:
        r.lead_time_days = _as_number(lead)
    if "paused" in patch:
        r.paused = bool(patch["paused"])
    if patch.get("type") in ("rolling", "anchored"):
        r.type = patch["type"]
    interval = _as_number(patch.get("interval_days", patch.get("intervalDays")))
    if interval is not None and interval > 0:
        r.interval_days = int(interval)
    if isinstance(patch.get("weekdays"), list):
        merged = Recurrence.from_dict({"type": r.type, "weekdays": patch["weekdays"]})
        r.weekdays = merged.weekdays if merged else []
    return r


def snapshot_of(tasks: Mapping[str, Task], now: datetime) -> list[dict[str, Any]]:
    """保存済みフィールドに effective state を足した表示用の一覧。"""
    out: list[dict[str, Any]] = []
    for t in tasks.values():
        eff = derive_state(t, tasks, now)
        d = t.to_dict()
        d["effective_state"] = eff.effective_state
        d["ready_at"] = eff.ready_at
        d["scheduled_due_at"] = eff.scheduled_due_at or t.scheduled_due_at
        d["overdue"] = eff.overdue
        out.append(d)
    return out


# ---- Board -----------------------------------------------------------------


class Board:
    """タスクボードのユースケース層。

    書き込みは全て MutationSerializer に 1 unit として積まれ、unit の中で
    読み込み → 検証・編集 → スコア再計算 → 原子的保存 → ポイント付与 → broadcast の順に実行される。
    検証で失敗した unit は何も保存しない。読み取りは別の Store インスタンスで
    最後に保存されたファイルを読むため、書き込みを待たない。
    """

    def __init__(
        self,
        store_factory: Callable[[], Store] | None = None,
        *,
        wip_store: WipLimitStore | None = None,
        ledger: PointsLedger | None = None,
        broadcaster: Broadcaster | None = None,
        clock: Callable[[], datetime] = wall_clock,
        id_factory: Callable[[], str] | None = None,
        config: ScoringConfig | None = None,
        serializer: MutationSerializer | None = None,
    ) -> None:
        self._store_factory = store_factory or get_store
        self._store = self._store_factory()
        self.wip_store = wip_store
        self._wip = wip_store.load() if wip_store is not None else WipLimits()
        self.ledger = ledger
        self.broadcaster = broadcaster
        self.clock = clock
        self.id_factory = id_factory or gen_task_id
        self.config = config or ScoringConfig()
        self.serializer = serializer or MutationSerializer()
        # unit 内で確定した付与。保存に成功してから ledger に書く
        self._pending_awards: list[tuple[str, int, str]] = []

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None, **kwargs: Any) -> Board:
        from junban.services.broadcast import SnapshotHub
        from junban.services.points import YamlPointsLedger

        env = env or load_env()
        username = env["USERNAME"]
        kwargs.setdefault("wip_store", WipLimitStore(env["WIP_LIMITS_PATH"]))
        kwargs.setdefault("ledger", YamlPointsLedger(env["USERS_PATH"]))
        kwargs.setdefault("broadcaster", SnapshotHub())
        kwargs.setdefault("id_factory", lambda: gen_task_id(username))
        kwargs.setdefault("config", ScoringConfig.from_env(env))
        return cls(lambda: get_store(env["DATA_PATH"]), **kwargs)

    def close(self) -> None:
        self.serializer.close()

    # ---- unit 実行 ---------------------------------------------------------

    def _mutate(self, label: str, apply: Callable[[dict[str, Task], datetime], T]) -> T:
        def unit() -> T:
            st = self._store
            st.load()
            now = self.clock()
            self._pending_awards = []
            try:
                result = apply(st.tasks, now)
            except OpsError:
                st.rollback()
                self._pending_awards = []
                raise
            recompute_all(st.tasks, now, self.config)
            st.commit()
            st.save()
            awards, self._pending_awards = self._pending_awards, []
            if self.ledger is not None:
                for user_key, points, reason in awards:
                    self.ledger.award(user_key, points, reason)
            logger.debug("%s committed (%d tasks)", label, len(st.tasks))
            if self.broadcaster is not None:
                self.broadcaster.publish(snapshot_of(st.tasks, now))
            return result

        return self.serializer.run(unit, label=label)

    def _require(self, task_id: str) -> Task:
        match self._store.get_task(task_id):
            case Ok(t):
                return t  # type: ignore[no-any-return]
            case Err(e):
                raise NotFoundError(e)
        _msg = "Unexpected error"
        raise OpsError(_msg)

    def _new_id(self, tasks: Mapping[str, Task]) -> str:
        tid = self.id_factory()
        while tid in tasks:
            tid = self.id_factory()
        return tid

    def _check_wip(self, tasks: Mapping[str, Task], state: State, task_id: str) -> None:
        if self._wip.would_exceed(tasks, state, exclude_id=task_id):
            limit = self._wip.limit_for(state)
            _msg = f"WIP limit exceeded for {state}. Limit: {limit}"
            raise ConflictError(_msg, details={"state": state, "limit": limit})

    def _add(self, task: Task) -> None:
        match self._store.add_task(task):
            case Err(e):
                raise ConflictError(e)

    # ---- 読み取り ----------------------------------------------------------

    def _read(self) -> dict[str, Task]:
        st = self._store_factory()
        st.load()
        return st.tasks

    def list_tasks(self) -> list[Task]:
        return list(self._read().values())

    def get_task(self, task_id: str) -> Task:
        t = self._read().get(task_id)
        if t is None:
            _msg = f"Task not found: {task_id}"
            raise NotFoundError(_msg)
        return t

    def effective_state(self, task_id: str) -> EffectiveState:
        tasks = self._read()
        if task_id not in tasks:
            _msg = f"Task not found: {task_id}"
            raise NotFoundError(_msg)
        return derive_state(tasks[task_id], tasks, self.clock())

    def snapshot(self) -> list[dict[str, Any]]:
        return snapshot_of(self._read(), self.clock())

    def active_tasks(self) -> list[Task]:
        """Ready / InProgress のタスクを最新のスコアで並べて返す (保存はしない)。"""
        tasks = self._read()
        for tid, s in compute_priorities(tasks, self.clock(), self.config).items():
            tasks[tid].priority = s.priority
            tasks[tid].urgency = s.urgency
            tasks[tid].importance_percentile = s.importance_percentile
        return sorted((t for t in tasks.values() if t.state in ACTIVE_STATES), key=task_sort_key)

    def wip_limits(self) -> dict[str, int | None]:
        return self._wip.to_dict()

    # ---- 追加 --------------------------------------------------------------

    def create_task(
        self,
        title: str | None = None,
        *,
        description: str = "",
        deadline: object = None,
        scheduled_due_at: object = None,
        lead_time_days: float = 0,
        dependencies: Iterable[str] | None = None,
        recurrence: Recurrence | dict[str, Any] | None = None,
        last_completed_at: object = None,
        created_by: str | None = None,
    ) -> Task:
        """新規タスクを Ready で追加する。存在しない依存先は警告して捨てる。"""
        rec = _as_recurrence(recurrence)
        due = _as_timestamp(scheduled_due_at, "scheduled_due_at")
        hard = _as_timestamp(deadline, "deadline")
        last = _as_timestamp(last_completed_at, "last_completed_at")
        lead = _as_number(lead_time_days) or 0

        def apply(tasks: dict[str, Task], now: datetime) -> Task:
            deps = list(dict.fromkeys(dependencies or []))
            valid = [d for d in deps if d in tasks]
            if len(valid) != len(deps):
                logger.warning("create_task: dropped unknown dependencies %s", sorted(set(deps) - set(valid)))
            stamp = to_iso(now)
            t = Task(
                id=self._new_id(tasks),
                title=_clean_title(title, "Untitled Task"),
                description=(description or "").strip(),
                state="Ready",
                scheduled_due_at=due,
                lead_time_days=lead,
                deadline=hard,
                dependencies=valid,
                recurrence=rec,
                last_completed_at=last,
                created_at=stamp,
                updated_at=stamp,
                created_by=created_by,
            )
            self._add(t)
            return t

        return self._mutate("create_task", apply)

    def create_remedy(
        self,
        task_id: str,
        *,
        title: str | None = None,
        description: str | None = None,
        deadline: object = None,
        created_by: str | None = None,
    ) -> tuple[Task, Task]:
        """詰まっているタスクを解消するための remedy タスクを作り、依存先として繋ぐ。

        戻り値は (元のタスク, remedy タスク)。元のタスクは Suspended になる。
        """
        hard = _as_timestamp(deadline, "deadline")

        def apply(tasks: dict[str, Task], now: datetime) -> tuple[Task, Task]:
            blocked = self._require(task_id)
            stamp = to_iso(now)
            desc = (description or "").strip() or f"Remedy for: {blocked.title}"
            remedy = Task(
                id=self._new_id(tasks),
                title=_clean_title(title, f"Remedy for {blocked.title}"),
                description=desc,
                state="Ready",
                deadline=hard if hard is not None else blocked.deadline,
                remedy_for=blocked.id,
                created_at=stamp,
                updated_at=stamp,
                created_by=created_by,
            )
            self._add(remedy)
            if remedy.id not in blocked.dependencies:
                blocked.dependencies.append(remedy.id)
            blocked.state = "Suspended"
            blocked.updated_at = stamp
            return blocked, remedy

        return self._mutate("create_remedy", apply)

    def import_tasks(self, tasks: Iterable[Task], *, replace: bool = False) -> int:
        """タスクを一括で取り込む。依存の循環チェックは行わない (deadlock フラグで検出される)。"""
        incoming = list(tasks)

        def apply(current: dict[str, Task], now: datetime) -> int:
            if replace:
                self._store.replace_all({})
            for t in incoming:
                if t.id in t.dependencies:
                    logger.warning("import: dropped self dependency of %s", t.id)
                    t.dependencies = [d for d in t.dependencies if d != t.id]
                t.updated_at = to_iso(now)
                self._add(t)
            return len(incoming)

        return self._mutate("import_tasks", apply)

    # ---- 状態変更 ----------------------------------------------------------

    def change_state(
        self,
        task_id: str,
        state: str,
        *,
        picker: str | None = None,
        unclaim: bool = False,
        note: str = "",
        actor: str | None = None,
    ) -> Task:
        """Stored state を変更する。

        InProgress は effective state が Ready (または予定日超過) のときだけ、
        Done は InProgress / Ready (または予定日超過) で、依存先が全て Done のときだけ許可する。
        Done になったタスクはポイントを付与し、recurrence があれば次回分として開き直す。
        """

        def apply(tasks: dict[str, Task], now: datetime) -> Task:
            if state not in STATES:
                _msg = f"Missing or invalid state: {state!r}"
                raise ValidationError(_msg)
            target: State = state  # type: ignore[assignment]
            task = self._require(task_id)
            if picker is not None and not isinstance(picker, str):
                _msg = f"Invalid picker: {picker!r}"
                raise ValidationError(_msg)
            clear_picker = unclaim or (picker is not None and not picker.strip())
            new_picker = (picker or "").strip() or None
            if target == "InProgress" and new_picker is None:
                new_picker = actor

            eff = derive_state(task, tasks, now)
            past_due = is_past_due(task, now)
            when = eff.ready_at or eff.scheduled_due_at or "unknown"
            if target == "InProgress" and eff.effective_state != "Ready" and not past_due:
                _msg = f"Not actionable yet; ready at {when}"
                raise ValidationError(_msg)
            if target == "Done" and task.state != "InProgress" and eff.effective_state != "Ready" and not past_due:
                _msg = f"Cannot complete yet; ready at {when}"
                raise ValidationError(_msg)
            self._check_wip(tasks, target, task.id)

            stamp = to_iso(now)
            match target:
                case "InProgress":
                    self._claim(task, tasks, new_picker, now)
                case "Blocked":
                    task.state = "Blocked"
                    if new_picker:
                        task.picker = new_picker
                        task.picker_history.append({"ts": stamp, "picker": new_picker, "action": "blocked"})
                    task.meta["block_note"] = note
                    task.blocked_at = stamp
                case "Done":
                    self._complete(task, tasks, now)
                case _:
                    task.state = target
                    if clear_picker:
                        task.picker = None
                    elif new_picker:
                        task.picker = new_picker
                        task.picker_history.append({"ts": stamp, "picker": new_picker, "action": "state-change"})
            task.updated_at = stamp
            return task

        return self._mutate("change_state", apply)

    def _claim(self, task: Task, tasks: dict[str, Task], picker: str | None, now: datetime) -> None:
        stamp = to_iso(now)
        task.state = "InProgress"
        if picker:
            task.picker = picker
            task.picker_history.append({"ts": stamp, "picker": picker, "action": "picked"})
        if task.points_snapshot is None:
            # 着手時点の priority をポイントとして固定する
            snap = compute_priorities(tasks, now, self.config)[task.id].priority
            task.points_snapshot = snap
            task.points_snapshot_created_at = stamp
            task.points_snapshot_created_by = task.picker or picker
            task.picked_at = stamp
            task.points_history.append({"ts": stamp, "snapshot": snap, "by": task.points_snapshot_created_by})

    def _complete(self, task: Task, tasks: dict[str, Task], now: datetime) -> None:
        if any_dependency_unresolved(task, tasks):
            _msg = "Cannot complete task: dependencies not done"
            raise ValidationError(_msg)

        stamp = to_iso(now)
        was_blocked = task.state == "Blocked"
        points = max(0, round(task.points_snapshot)) if task.points_snapshot is not None else 0
        picker_key = (task.picker or "").strip()

        task.last_completed_at = stamp
        task.state = "Done"

        # 依存待ちで Suspended にしていたタスクを戻す
        for other in tasks.values():
            if other.state == "Suspended" and task.id in other.dependencies:
                if not any_dependency_unresolved(other, tasks):
                    other.state = "Ready"
                    other.updated_at = stamp

        if not was_blocked and picker_key and points > 0 and self.ledger is not None:
            self._pending_awards.append((picker_key, points, f"Completed task {task.id} ({task.title})"))
            task.awarded = {"to": picker_key, "points": points, "ts": stamp}
            task.points_snapshot_awarded = True
        else:
            task.awarded = {"to": None, "points": 0, "reason": "blocked" if was_blocked else "none", "ts": stamp}
            task.points_snapshot_awarded = False

        if advance_recurrence(task, now):
            logger.info("Recurring task %s reopened, next due %s", task.id, task.scheduled_due_at)

    def block_task(self, task_id: str, note: str = "") -> Task:
        def apply(tasks: dict[str, Task], now: datetime) -> Task:
            task = self._require(task_id)
            self._check_wip(tasks, "Blocked", task.id)
            task.state = "Blocked"
            task.meta["block_note"] = note
            task.blocked_at = task.updated_at = to_iso(now)
            return task

        return self._mutate("block_task", apply)

    def suspend_task(self, task_id: str) -> Task:
        def apply(tasks: dict[str, Task], now: datetime) -> Task:
            task = self._require(task_id)
            self._check_wip(tasks, "Suspended", task.id)
            task.state = "Suspended"
            task.updated_at = to_iso(now)
            return task

        return self._mutate("suspend_task", apply)

    # ---- 依存関係 ----------------------------------------------------------

    def add_dependency(self, task_id: str, dependency_id: str) -> Task:
        """task_id が dependency_id に依存するようにする。循環する場合は ConflictError。"""

        def apply(tasks: dict[str, Task], now: datetime) -> Task:
            task = self._require(task_id)
            if insert_dependency(tasks, task_id, dependency_id):
                if task.state != "Done" and any_dependency_unresolved(task, tasks):
                    task.state = "Suspended"
                task.updated_at = to_iso(now)
            return task

        return self._mutate("add_dependency", apply)

    # ---- 更新 --------------------------------------------------------------

    def update_task(
        self,
        task_id: str,
        *,
        title: str | None = None,
        description: str | None = None,
        scheduled_due_at: object = None,
        clear_scheduled_due_at: bool = False,
        deadline: object = None,
        clear_deadline: bool = False,
        lead_time_days: float | None = None,
        recurrence: Recurrence | dict[str, Any] | None = None,
        dependencies: list[str] | None = None,
    ) -> Task:
        """タスクの基本フィールド・recurrence・依存先を更新する。

        recurrence に ``{"type": "none"}`` を渡すと recurrence を外す。
        dependencies を渡すと依存先を置き換える (自己依存・存在しない ID・循環は拒否)。
        """
        due = _as_timestamp(scheduled_due_at, "scheduled_due_at")
        hard = _as_timestamp(deadline, "deadline")
        lead = None
        if lead_time_days is not None:
            lead = _as_number(lead_time_days)
            if lead is None or lead < 0:
                _msg = f"Invalid lead_time_days: {lead_time_days!r}"
                raise ValidationError(_msg)

        def apply(tasks: dict[str, Task], now: datetime) -> Task:
            task = self._require(task_id)

            # 依存先の検証は編集前に済ませる
            new_deps: list[str] | None = None
            if dependencies is not None:
                new_deps = list(dict.fromkeys(d.strip() for d in dependencies if isinstance(d, str) and d.strip()))
                for dep_id in new_deps:
                    if dep_id == task.id:
                        _msg = "Task cannot depend on itself"
                        raise ValidationError(_msg)
                    if dep_id not in tasks:
                        _msg = f"Dependency task {dep_id} not found"
                        raise ValidationError(_msg)
                    if would_create_cycle(tasks, task.id, dep_id):
                        _msg = f'Adding dependency "{tasks[dep_id].title}" would create a circular dependency'
                        raise ConflictError(_msg, details={"task_id": task.id, "dependency_id": dep_id})

            if title is not None:
                task.title = _clean_title(title, task.title)
            if description is not None:
                task.description = description.strip()
            if clear_scheduled_due_at:
                task.scheduled_due_at = None
            elif due is not None:
                task.scheduled_due_at = due
            if clear_deadline:
                task.deadline = None
            elif hard is not None:
                task.deadline = hard
            if lead is not None:
                task.lead_time_days = lead

            if recurrence is not None:
                match recurrence:
                    case Recurrence():
                        task.recurrence = recurrence
                    case {"type": "none"}:
                        task.recurrence = None
                    case dict():
                        task.recurrence = _merge_recurrence(task.recurrence, recurrence)
                    case _:
                        _msg = f"Invalid recurrence: {recurrence!r}"
                        raise ValidationError(_msg)
                align_anchored_schedule(task, now)

            if new_deps is not None:
                task.dependencies = new_deps
                if task.state != "Done" and any_dependency_unresolved(task, tasks):
                    task.state = "Suspended"

            task.updated_at = to_iso(now)
            return task

        return self._mutate("update_task", apply)

    # ---- 削除 --------------------------------------------------------------

    def delete_task(self, task_id: str, *, confirm: bool = False) -> dict[str, Any]:
        """タスクと、そのタスクだけが依存している依存先 (推移的) を削除する。

        依存閉包の外のタスクが task_id に依存している場合、confirm=False なら
        依存しているタスクの一覧付きで ConflictError。閉包の外から参照されている
        依存先は残す。残ったタスクから削除済み ID への参照は取り除き、
        依存待ちだった Suspended のタスクは依存が無くなった時点で Blocked にする。
        """

        def apply(tasks: dict[str, Task], now: datetime) -> dict[str, Any]:
            self._require(task_id)
            closure = dependency_closure(tasks, task_id)
            outside = [t for t in tasks.values() if t.id not in closure]

            dependents = [{"id": t.id, "title": t.title, "state": t.state} for t in outside if task_id in t.dependencies]
            if dependents and not confirm:
                _msg = (
                    "Other tasks depend on this task. "
                    "Confirm deletion to proceed; this will affect the dependent tasks."
                )
                raise ConflictError(_msg, details={"dependents": dependents})

            referenced_outside = {d for t in outside for d in t.dependencies}
            to_delete = {task_id} | {tid for tid in closure if tid in tasks and tid not in referenced_outside}
            for tid in to_delete:
                self._store.remove_task(tid)

            stamp = to_iso(now)
            adjusted: list[dict[str, Any]] = []
            for t in tasks.values():
                kept = [d for d in t.dependencies if d not in to_delete]
                stripped = len(kept) != len(t.dependencies)
                if stripped:
                    t.dependencies = kept
                if t.remedy_for in to_delete:
                    t.remedy_for = None
                elif not stripped:
                    continue
                if stripped and t.state == "Suspended" and not any_dependency_unresolved(t, tasks):
                    t.state = "Blocked"
                    t.blocked_at = stamp
                    adjusted.append({"id": t.id, "title": t.title, "state": t.state})
                t.updated_at = stamp

            logger.info("Deleted %d task(s) starting from %s", len(to_delete), task_id)
            return {
                "message": "Deleted",
                "deleted": sorted(to_delete),
                "removed_count": len(to_delete),
                "adjusted": adjusted,
            }

        return self._mutate("delete_task", apply)

    # ---- 再計算 / 設定 -----------------------------------------------------

    def recompute(self) -> list[dict[str, Any]]:
        """全タスクのスコアを再計算して保存する。変化したタスクの一覧を返す。"""
        return self._mutate("recompute", lambda tasks, now: recompute_all(tasks, now, self.config))

    def set_wip_limits(self, updates: Mapping[str, object]) -> dict[str, int | None]:
        """WIP 上限を更新する。serializer 経由なので検証中の unit と競合しない。"""

        def unit() -> dict[str, int | None]:
            new = self._wip.with_updates(updates)
            if self.wip_store is not None:
                self.wip_store.save(new)
            self._wip = new
            logger.info("WIP limits updated: %s", new.to_dict())
            return new.to_dict()

        return self.serializer.run(unit, label="set_wip_limits")
