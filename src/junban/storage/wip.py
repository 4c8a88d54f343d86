from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

import yaml  # type: ignore[import-untyped]

from junban.core.errors import PersistenceError, ValidationError
from junban.core.models import STATES, State, Task
from junban.storage.base import atomic_write_text, read_text
from junban.util.dirs import load_env
from junban.util.logger import setup_logger

logger = setup_logger("junban", is_stream=True, is_file=True)

DEFAULT_WIP_LIMITS: dict[str, int | None] = {
    "Ready": None,
    "InProgress": 5,
    "Blocked": 10,
    "Suspended": None,
    "Waiting": None,
    "Done": None,
}


@dataclass(frozen=True)
class WipLimits:
    """state -> 上限 (None は無制限)。変更は with_updates() で新しい値を作る。"""

    limits: dict[str, int | None] = field(default_factory=lambda: dict(DEFAULT_WIP_LIMITS))

    def limit_for(self, state: str) -> int | None:
        return self.limits.get(state)

    def would_exceed(self, tasks: Mapping[str, Task], target: State, exclude_id: str | None = None) -> bool:
        limit = self.limit_for(target)
        if limit is None:
            return False
        count = sum(1 for t in tasks.values() if t.state == target and t.id != exclude_id)
        return count + 1 > limit

    def with_updates(self, updates: Mapping[str, object]) -> "WipLimits":
        merged = dict(self.limits)
        for key, value in updates.items():
            if key not in STATES:
                _msg = f"Unknown state for WIP limit: {key}"
                raise ValidationError(_msg)
            if value is not None and (isinstance(value, bool) or not isinstance(value, int) or value < 0):
                _msg = f"WIP limit for {key} must be a non-negative integer or null: {value!r}"
                raise ValidationError(_msg)
            merged[key] = value
        return WipLimits(merged)

    def to_dict(self) -> dict[str, int | None]:
        return dict(self.limits)


class WipLimitStore:
    def __init__(self, path: str | None = None) -> None:
        self.path = path or load_env()["WIP_LIMITS_PATH"]

    def load(self) -> WipLimits:
        text = read_text(self.path)
        if text is None or not text.strip():
            return WipLimits()
        try:
            raw = yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            _msg = f"Failed to load WIP limits from {self.path}: {e}"
            logger.exception(_msg)
            raise PersistenceError(_msg) from e
        if not isinstance(raw, dict):
            _msg = f"Invalid WIP limits document in {Path(self.path).name}"
            raise PersistenceError(_msg)
        return WipLimits().with_updates({k: v for k, v in raw.items() if k in STATES})

    def save(self, limits: WipLimits) -> None:
        atomic_write_text(self.path, yaml.safe_dump(limits.to_dict(), sort_keys=False))
