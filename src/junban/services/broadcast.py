import threading
from collections.abc import Callable
from typing import Any, Protocol

from junban.util.logger import setup_logger

logger = setup_logger("junban", is_stream=True, is_file=True)

Snapshot = list[dict[str, Any]]


class Broadcaster(Protocol):
    def publish(self, snapshot: Snapshot) -> None: ...


class SnapshotHub:
    """保存成功ごとのスナップショットを購読者へ配る。

    転送 (WebSocket 等) は購読者側の責務。購読者の例外はログに残し、他の購読者には配り続ける。
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: list[Callable[[Snapshot], None]] = []
        self.last: Snapshot | None = None

    def subscribe(self, callback: Callable[[Snapshot], None]) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    def publish(self, snapshot: Snapshot) -> None:
        with self._lock:
            self.last = snapshot
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Error broadcasting tasks to %r", callback)
