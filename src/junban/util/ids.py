import uuid
from datetime import datetime

from pyresults import Err, Ok, Result

from junban.util.time import LOCAL_TZ

LENGTH_SHORTEND_ID = 8


def gen_task_id(username: str = "anonymous") -> str:
    ts = datetime.now(LOCAL_TZ).strftime("%Y%m%d%H%M%S")
    return f"{uuid.uuid4()}_{ts}_{username}"


def parse_id(
    s: str,
    *,
    source_ids: list[str],
    shortend_length: int | None = LENGTH_SHORTEND_ID,
) -> Result[str, str]:
    """完全一致、なければ先頭 shortend_length 文字の前方一致で ID を解決する。"""
    s = s.strip()
    if not s:
        return Err[str, str]("Empty ID")
    if s in source_ids:
        return Ok[str, str](s)
    candidates: list[str] = []
    if shortend_length is not None and len(s) >= shortend_length:
        candidates = [tid for tid in source_ids if tid.startswith(s)]
    match candidates:
        case [tid]:
            return Ok[str, str](tid)
        case []:
            return Err[str, str](f"Unknown ID: {s} (please set correct ID.)")
        case _:
            return Err[str, str](f"Ambiguous ID: {s} ({len(candidates)} tasks. Please set full ID.)")


def parse_ids(
    s: str,
    *,
    source_ids: list[str],
    sep: str = ",",
    shortend_length: int | None = LENGTH_SHORTEND_ID,
) -> Result[list[str], str]:
    ids: list[str] = []
    for part in s.split(sep):
        if not part.strip():
            continue
        match parse_id(part, source_ids=source_ids, shortend_length=shortend_length):
            case Ok(tid):
                ids.append(tid)
            case Err(e):
                return Err[list[str], str](e)
    return Ok[list[str], str](ids)
