from typing import Any

import yaml  # type: ignore[import-untyped]

from junban.core.models import Task
from junban.storage.base import Store


class StoreToYAML(Store):
    """``{"tasks": {id: task}}`` 形式の YAML ファイル。"""

    def _decode(self, text: str) -> Any:
        try:
            return yaml.safe_load(text) or {}
        except yaml.YAMLError as e:
            _msg = f"Invalid YAML: {e}"
            raise ValueError(_msg) from e

    def _encode(self, tasks: dict[str, Task]) -> str:
        raw = {"tasks": {tid: t.to_dict() for tid, t in tasks.items()}}
        return yaml.safe_dump(raw, allow_unicode=True, sort_keys=True)
