from typing import Any, Protocol

import yaml  # type: ignore[import-untyped]

from junban.core.errors import PersistenceError
from junban.storage.base import atomic_write_text, read_text
from junban.util.dirs import load_env
from junban.util.logger import setup_logger
from junban.util.time import now_iso

logger = setup_logger("junban", is_stream=True, is_file=True)


class PointsLedger(Protocol):
    def award(self, user_key: str, points: int, reason: str = "") -> dict[str, Any] | None: ...


class YamlPointsLedger:
    """ユーザーごとの累計ポイントと履歴を YAML に保存する。"""

    def __init__(self, path: str | None = None) -> None:
        self.path = path or load_env()["USERS_PATH"]

    def load(self) -> dict[str, dict[str, Any]]:
        text = read_text(self.path)
        if text is None or not text.strip():
            return {}
        try:
            raw = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            _msg = f"Failed to load users from {self.path}: {e}"
            logger.exception(_msg)
            raise PersistenceError(_msg) from e
        return raw if isinstance(raw, dict) else {}

    def award(self, user_key: str, points: int, reason: str = "") -> dict[str, Any] | None:
        key = str(user_key or "").strip()
        if not key:
            return None
        users = self.load()
        user = users.setdefault(key, {"id": key, "name": key, "points": 0, "history": []})
        pts = max(0, round(points or 0))
        user["points"] = int(user.get("points") or 0) + pts
        user.setdefault("history", []).append({"ts": now_iso(), "points": pts, "reason": reason})
        atomic_write_text(self.path, yaml.safe_dump(users, allow_unicode=True, sort_keys=True))
        logger.info("Awarded %d point(s) to %s", pts, key)
        return user

    def points_of(self, user_key: str) -> int:
        return int(self.load().get(user_key, {}).get("points") or 0)
