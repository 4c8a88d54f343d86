import os
import re
from pathlib import Path

DEFAULT_HOME = os.environ.get("JB_HOME_DIR", (Path.home() / ".junban").as_posix())
DEFAULT_TASKS_PATH = (Path(DEFAULT_HOME) / "tasks.yaml").as_posix()
DEFAULT_WIP_LIMITS_PATH = (Path(DEFAULT_HOME) / "wip_limits.yaml").as_posix()
DEFAULT_USERS_PATH = (Path(DEFAULT_HOME) / "users.yaml").as_posix()
DEFAULT_ENV_PATH = (Path(DEFAULT_HOME) / "config.env").as_posix()
DEFAULT_TIMEZONE = "Asia/Tokyo"

# (env-file key, default) の組。OS 環境変数 JB_<KEY> が最優先
_DEFAULTS: dict[str, str] = {
    "DATA_PATH": DEFAULT_TASKS_PATH,
    "WIP_LIMITS_PATH": DEFAULT_WIP_LIMITS_PATH,
    "USERS_PATH": DEFAULT_USERS_PATH,
    "TIMEZONE": DEFAULT_TIMEZONE,
    "RECOMPUTE_INTERVAL_SECONDS": "600",
    "HOST": "127.0.0.1",
    "PORT": "8765",
    "SCORE_WINDOW_DAYS": "30",
    "SCORE_DECAY": "0.5",
    "SCORE_W_URGENCY": "0.4",
    "SCORE_W_IMPORTANCE": "0.6",
}


def get_username(env: dict[str, str]) -> str:
    match os.environ.get("JB_USERNAME"):
        case None:
            match env.get("USERNAME"):
                case None | "":
                    return "anonymous"
                case username:
                    return username
        case username:
            return username


def read_env_file(path: str) -> dict[str, str]:
    env: dict[str, str] = {}
    _path = Path(path)
    if not _path.exists():
        return env
    with _path.open(encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            m = re.match(r"([^=]+)=(.*)", line)
            if m:
                env[m.group(1).strip()] = m.group(2).strip()
    return env


def load_env(path: str = DEFAULT_ENV_PATH) -> dict[str, str]:
    """config.env を読み、JB_ 付きの OS 環境変数で上書きした設定を返す。"""
    env = read_env_file(path)
    for key, default in _DEFAULTS.items():
        env[key] = os.environ.get(f"JB_{key}", env.get(key, default))
    env["USERNAME"] = get_username(env)
    return env
