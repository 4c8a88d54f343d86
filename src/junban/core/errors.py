from typing import Any


class OpsError(Exception):
    """ops 層でのユースケース実行失敗を表す例外。"""

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = details or {}


class ValidationError(OpsError):
    """Invalid input (bad state, self dependency, unknown referenced task)."""


class ConflictError(OpsError):
    """The edit contradicts current board state (cycle, WIP limit, dependents)."""


class NotFoundError(OpsError):
    """Unknown task id."""


class PersistenceError(OpsError):
    """Reading or writing the task collection failed."""
