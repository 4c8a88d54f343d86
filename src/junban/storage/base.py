import copy
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from pyresults import Err, Ok, Result

from junban.core.errors import PersistenceError
from junban.core.models import Task
from junban.util.dirs import load_env
from junban.util.logger import setup_logger

logger = setup_logger("junban", is_stream=True, is_file=True)


def atomic_write_text(path: str | Path, text: str) -> None:
    """一時ファイルに書いてから rename する。読み手が書きかけを見ることは無い。"""
    _path = Path(path)
    try:
        _path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=_path.parent, prefix=f".{_path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(text)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, _path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
    except OSError as e:
        _msg = f"Failed to save {_path}: {e}"
        logger.exception(_msg)
        raise PersistenceError(_msg) from e


def read_text(path: str | Path) -> str | None:
    _path = Path(path)
    try:
        with _path.open(encoding="utf-8") as f:
            return f.read()
    except FileNotFoundError:
        return None
    except OSError as e:
        _msg = f"Failed to read {_path}: {e}"
        logger.exception(_msg)
        raise PersistenceError(_msg) from e


class Store(ABC):
    """タスク集合ストレージの抽象基底クラス。

    ファイル全体を読み込み、作業用コピー (tasks) を編集して、
    commit() で確定、rollback() で破棄、save() でファイル全体を原子的に置き換える。

    Public API:
        - load(): ファイルから読み込む (確定状態・作業用コピーの両方を置き換える)
        - save(): 確定状態をファイルに書き出す
        - commit() / rollback(): 作業用コピーの確定 / 破棄
        - get_task(): 取得
        - add_task() / remove_task() / replace_all(): 作業用コピーの編集

    サブクラスは _decode() / _encode() でファイル形式だけを実装する。
    """

    def __init__(self, data_path: str | None = None) -> None:
        self.data_path = data_path or load_env()["DATA_PATH"]
        self._tasks: dict[str, Task] = {}
        self._tmp_tasks: dict[str, Task] = {}

    @abstractmethod
    def _decode(self, text: str) -> Any:
        raise NotImplementedError

    @abstractmethod
    def _encode(self, tasks: dict[str, Task]) -> str:
        raise NotImplementedError

    # ---- 基本IO ----

    def load(self) -> None:
        text = read_text(self.data_path)
        _tasks: dict[str, Task] = {}
        if text is not None and text.strip():
            try:
                raw = self._decode(text)
                _tasks = self._tasks_from_raw(raw)
            except (ValueError, TypeError) as e:
                # 壊れたファイルを空として扱うと次の save で全消去になるため失敗させる
                _msg = f"Failed to load {self.data_path}: {e}"
                logger.exception(_msg)
                raise PersistenceError(_msg) from e
        self._tasks = _tasks
        self._tmp_tasks = copy.deepcopy(_tasks)

    def save(self) -> None:
        atomic_write_text(self.data_path, self._encode(self._tasks))

    @staticmethod
    def _tasks_from_raw(raw: Any) -> dict[str, Task]:
        # {"tasks": {id: {...}}} と [{...}, ...] の両方を受け付ける
        if isinstance(raw, dict):
            raw = raw.get("tasks", {})
        if isinstance(raw, dict):
            items = [dict(td, id=td.get("id", tid)) for tid, td in raw.items()]
        elif isinstance(raw, list):
            items = list(raw)
        else:
            _msg = f"Unexpected document root: {type(raw).__name__}"
            raise TypeError(_msg)
        tasks: dict[str, Task] = {}
        for td in items:
            t = Task.from_dict(td)
            if t.id in tasks:
                _msg = f"Duplicate task id: {t.id}"
                raise ValueError(_msg)
            tasks[t.id] = t
        return tasks

    # ---- 作業用コピー ----

    @property
    def tasks(self) -> dict[str, Task]:
        return self._tmp_tasks

    def commit(self) -> None:
        self._tasks = copy.deepcopy(self._tmp_tasks)

    def rollback(self) -> None:
        self._tmp_tasks = copy.deepcopy(self._tasks)

    # ---- データ取得 ----

    def get_task(self, task_id: str) -> Result[Task, str]:
        t = self.tasks.get(task_id)
        if t is None:
            return Err[Task, str](f"Task not found: {task_id}")
        return Ok[Task, str](t)

    # ---- タスク操作 ----

    def add_task(self, task: Task) -> Result[None, str]:
        if task.id in self.tasks:
            return Err[None, str](f"Task already exists: {task.id}")
        self.tasks[task.id] = task
        return Ok[None, str](None)

    def remove_task(self, task_id: str) -> Result[Task, str]:
        """タスクを削除する。他タスクからの参照の掃除は呼び出し側の責務。"""
        t = self.tasks.pop(task_id, None)
        if t is None:
            return Err[Task, str](f"Task not found: {task_id}")
        return Ok[Task, str](t)

    def replace_all(self, tasks: dict[str, Task]) -> None:
        self._tmp_tasks = tasks
