import threading
from collections.abc import Callable
from typing import Any

from junban.core.errors import OpsError
from junban.util.logger import setup_logger

logger = setup_logger("junban", is_stream=True, is_file=True)


class RecomputeTicker:
    """interval_seconds ごとに recompute を呼ぶバックグラウンドスレッド。

    recompute 自体は Board 経由で serializer に積まれるため、リクエスト由来の更新とは競合しない。
    """

    def __init__(self, recompute: Callable[[], Any], interval_seconds: float = 600.0) -> None:
        self.recompute = recompute
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="junban-recompute", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)

    def tick(self) -> None:
        try:
            changed = self.recompute()
        except OpsError as e:
            logger.error("Periodic recompute failed: %s", e)
        except Exception:
            logger.exception("Periodic recompute failed")
        else:
            logger.info("Periodic recompute done (%d changed)", len(changed or []))

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            self.tick()
