from datetime import datetime, timedelta

from junban.core.models import Task
from junban.util.logger import setup_logger
from junban.util.time import DAY, LOCAL_TZ, js_weekday, parse_datetime, to_iso

logger = setup_logger("junban", is_stream=True, is_file=True)

# 曜日指定の anchored で次回を探す日数の上限
WEEKDAY_SEARCH_DAYS = 14


def reopen(task: Task, next_due: datetime) -> None:
    task.scheduled_due_at = to_iso(next_due)
    task.state = "Ready"
    task.picker = None
    task.picked_at = None
    task.points_snapshot = None
    task.points_snapshot_created_at = None


def next_weekday_at(start: datetime, weekdays: set[int], time_of: datetime) -> datetime | None:
    """Start の翌日から WEEKDAY_SEARCH_DAYS 日以内で weekdays に該当する最初の日時。

    時刻は time_of (ローカル時刻) を引き継ぐ。見つからなければ None。
    """
    local_time = time_of.astimezone(LOCAL_TZ)
    d = start.astimezone(LOCAL_TZ).replace(
        hour=local_time.hour,
        minute=local_time.minute,
        second=local_time.second,
        microsecond=local_time.microsecond,
    )
    for _ in range(WEEKDAY_SEARCH_DAYS):
        d += DAY
        if js_weekday(d) in weekdays:
            return d
    return None


def advance_recurrence(task: Task, completed_at: datetime) -> bool:
    """完了したタスクを次回分として開き直す。開き直した場合 True。

    - rolling: 完了時刻 + interval_days
    - anchored (曜日指定): 完了日の翌日以降で該当曜日、元の時刻を維持。
      14日以内に該当が無ければ Done のまま
    - anchored (interval のみ): 前回の予定日 + interval_days
    """
    r = task.recurrence
    if r is None or r.paused:
        return False

    if r.type == "rolling":
        if r.interval <= 0:
            return False
        reopen(task, completed_at + timedelta(days=r.interval))
        return True

    previous_due = parse_datetime(task.scheduled_due_at) or completed_at
    if r.weekdays:
        nxt = next_weekday_at(completed_at, r.weekday_set(), previous_due)
        if nxt is None:
            logger.warning("No matching weekday within %d days for task %s", WEEKDAY_SEARCH_DAYS, task.id)
            return False
        reopen(task, nxt)
        return True
    if r.interval > 0:
        reopen(task, previous_due + timedelta(days=r.interval))
        return True
    return False


def align_anchored_schedule(task: Task, at: datetime) -> bool:
    """曜日指定 anchored の予定日を at 以降の次の該当曜日に合わせる (編集時用)。"""
    r = task.recurrence
    if r is None or r.type != "anchored":
        return False
    weekdays = r.weekday_set()
    if not weekdays:
        return False
    nxt = next_weekday_at(at, weekdays, parse_datetime(task.scheduled_due_at) or at)
    if nxt is None:
        return False
    task.scheduled_due_at = to_iso(nxt)
    return True
