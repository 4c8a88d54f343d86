import zoneinfo
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from pyresults import Err, Ok, Result

from junban.util.dirs import DEFAULT_TIMEZONE, load_env
from junban.util.logger import setup_logger

if TYPE_CHECKING:
    from junban.core.models import Task

logger = setup_logger("junban", is_stream=True, is_file=True)

UTC = zoneinfo.ZoneInfo("UTC")


def load_timezone(env: dict[str, str] | None = None) -> zoneinfo.ZoneInfo:
    """config.env の TIMEZONE (JB_TIMEZONE が優先) を返す。解決できない名前なら既定値。"""
    name = (env or load_env())["TIMEZONE"]
    try:
        return zoneinfo.ZoneInfo(name)
    except (zoneinfo.ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, falling back to %s", name, DEFAULT_TIMEZONE)
        return zoneinfo.ZoneInfo(DEFAULT_TIMEZONE)


LOCAL_TZ = load_timezone()

DAY = timedelta(days=1)


def now() -> datetime:
    return datetime.now(LOCAL_TZ)


def to_iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=LOCAL_TZ)
    return dt.astimezone(LOCAL_TZ).isoformat(timespec="seconds")


def now_iso() -> str:
    return to_iso(now())


def parse_datetime(value: object) -> datetime | None:
    """ISO 文字列を aware datetime に変換する。解釈できなければ None。

    タイムゾーン無しの文字列は LOCAL_TZ として扱う。
    """
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        try:
            dt = datetime.fromisoformat(value.strip())
        except ValueError:
            return None
    else:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=LOCAL_TZ)
    return dt


def days_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / DAY.total_seconds()


def js_weekday(dt: datetime) -> int:
    # 0=Sunday .. 6=Saturday
    return (dt.weekday() + 1) % 7


def format_due_status(t: "Task", at: datetime | None = None) -> Result[str, str]:
    """期日までの残り時間 (過ぎていれば超過時間) を短い文字列にする。"""
    if not t.scheduled_due_at and not t.deadline:
        return Ok[str, str]("")
    current = at or now()
    parts: list[str] = []
    for label, raw in (("due", t.scheduled_due_at), ("deadline", t.deadline)):
        if not raw:
            continue
        when = parse_datetime(raw)
        if when is None:
            return Err[str, str](f"{label}:???({raw})")
        delta = when - current
        sign = "-" if delta.total_seconds() < 0 else "+"
        delta = abs(delta)
        parts.append(f"{label}:{sign}{delta.days}d{delta.seconds // 3600}h")
    return Ok[str, str](" ".join(parts))
