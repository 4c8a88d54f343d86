from junban.storage.base import Store
from junban.storage.json_store import StoreToJSON
from junban.storage.yaml_store import StoreToYAML
from junban.util.dirs import load_env

__all__ = [
    "Store",
    "StoreToJSON",
    "StoreToYAML",
    "get_store",
]


def get_store(data_path: str | None = None) -> Store:
    path = data_path or load_env()["DATA_PATH"]
    if path.endswith((".yaml", ".yml")):
        return StoreToYAML(path)
    if path.endswith(".json"):
        return StoreToJSON(path)
    _msg = f"Invalid data path: {path}"
    raise ValueError(_msg)
