"""Single-writer FIFO queue for mutations of the task collection.

Units are plain callables. One worker thread runs them in submission order; a
unit that raises only fails its own future and the next unit still runs.
"""

import queue
import threading
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, TypeVar

from junban.core.errors import OpsError
from junban.util.logger import setup_logger

logger = setup_logger("junban", is_stream=True, is_file=True)

T = TypeVar("T")


@dataclass
class _Unit:
    fn: Callable[[], Any]
    label: str
    future: "Future[Any]" = field(default_factory=Future)


class MutationSerializer:
    def __init__(self, *, name: str = "junban-mutations") -> None:
        self.name = name
        self._queue: queue.Queue[_Unit | None] = queue.Queue()
        self._lock = threading.Lock()
        self._worker: threading.Thread | None = None
        self._closed = False

    # ---- 投入 ----

    def submit(self, fn: Callable[[], T], *, label: str = "mutation") -> "Future[T]":
        """Unit を末尾に積み、その結果を表す Future を返す。"""
        unit = _Unit(fn=fn, label=label)
        with self._lock:
            if self._closed:
                _msg = f"{self.name} is closed"
                raise RuntimeError(_msg)
            self._queue.put(unit)
            self._ensure_worker()
        return unit.future

    def run(self, fn: Callable[[], T], *, label: str = "mutation") -> T:
        """Submit して完了まで待つ。unit の例外はそのまま送出される。"""
        if self.in_worker():
            _msg = f"{label}: cannot wait on {self.name} from inside a queued unit"
            raise RuntimeError(_msg)
        return self.submit(fn, label=label).result()

    def in_worker(self) -> bool:
        return self._worker is not None and threading.current_thread() is self._worker

    # ---- worker ----

    def _ensure_worker(self) -> None:
        if self._worker is not None and self._worker.is_alive():
            return
        self._worker = threading.Thread(target=self._drain, name=self.name, daemon=True)
        self._worker.start()

    def _drain(self) -> None:
        while True:
            unit = self._queue.get()
            try:
                if unit is None:
                    return
                self._execute(unit)
            finally:
                self._queue.task_done()

    def _execute(self, unit: _Unit) -> None:
        if not unit.future.set_running_or_notify_cancel():
            logger.debug("Skipped cancelled unit: %s", unit.label)
            return
        try:
            result = unit.fn()
        except OpsError as e:
            logger.warning("Mutation rejected (%s): %s", unit.label, e)
            unit.future.set_exception(e)
        except Exception as e:
            logger.exception("Mutation error (%s)", unit.label)
            unit.future.set_exception(e)
        else:
            unit.future.set_result(result)

    # ---- 終了 ----

    def close(self, *, wait: bool = True) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            worker = self._worker
            if worker is None or not worker.is_alive():
                return
            self._queue.put(None)
        if wait:
            worker.join()
