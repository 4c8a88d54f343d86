import json
from typing import Any

from junban.core.models import Task
from junban.storage.base import Store


class StoreToJSON(Store):
    """タスクの配列をそのまま書く JSON ファイル。"""

    def _decode(self, text: str) -> Any:
        # json.JSONDecodeError は ValueError のサブクラス
        return json.loads(text)

    def _encode(self, tasks: dict[str, Task]) -> str:
        return json.dumps([t.to_dict() for t in tasks.values()], ensure_ascii=False, indent=2)
