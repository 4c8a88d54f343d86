import json
from pathlib import Path

from junban.core.models import Task


def export_json(tasks: dict[str, Task], path: str) -> None:
    _path = Path(path)
    if _path.exists():
        _msg = f"File already exists: {_path}"
        raise FileExistsError(_msg)
    data = [t.to_dict() for t in tasks.values()]
    with _path.open("w", encoding="utf-8") as f:
        json.dump(data, f, ensure_ascii=False, indent=2)


def import_json(path: str) -> dict[str, Task]:
    """JSON ファイルからタスクを読む。リスト形式と {id: task} 形式の両方を受け付ける。"""
    _path = Path(path)
    if not _path.exists():
        _msg = f"File not found: {_path}"
        raise FileNotFoundError(_msg)
    with _path.open(encoding="utf-8") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = [dict(td, id=td.get("id", tid)) for tid, td in data.items()]
    if not isinstance(data, list):
        _msg = f"Unexpected document root: {type(data).__name__}"
        raise ValueError(_msg)
    tasks: dict[str, Task] = {}
    for td in data:
        t = Task.from_dict(td)
        if t.id in tasks:
            _msg = f"Duplicate task id: {t.id}"
            raise ValueError(_msg)
        tasks[t.id] = t
    return tasks
