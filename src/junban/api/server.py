import json
import re
from collections.abc import Callable
from dataclasses import asdict, is_dataclass
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, ClassVar
from urllib.parse import parse_qs, urlsplit

from junban.core.errors import ConflictError, NotFoundError, OpsError, PersistenceError, ValidationError
from junban.core.ops import Board
from junban.util.logger import setup_logger

logger = setup_logger("junban", is_stream=True, is_file=True)

_TASK = r"/tasks/(?P<task_id>[^/]+)"

ERROR_STATUS: dict[type[OpsError], HTTPStatus] = {
    ValidationError: HTTPStatus.BAD_REQUEST,
    NotFoundError: HTTPStatus.NOT_FOUND,
    ConflictError: HTTPStatus.CONFLICT,
    PersistenceError: HTTPStatus.INTERNAL_SERVER_ERROR,
}


def _jsonable(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


def _truthy(value: str | None) -> bool:
    return (value or "").lower() in ("1", "true", "yes")


class BadRequest(ValidationError):
    pass


class Handler(BaseHTTPRequestHandler):
    """JSON API。board はサーバー起動時に make_handler() で束縛する。"""

    board: ClassVar[Board]
    server_version = "junban"

    # ---- 応答 ----

    def _send_json(self, status: HTTPStatus, body: Any) -> None:
        data = json.dumps(_jsonable(body), ensure_ascii=False).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def _send_error(self, e: OpsError) -> None:
        status = next(
            (s for cls, s in ERROR_STATUS.items() if isinstance(e, cls)),
            HTTPStatus.INTERNAL_SERVER_ERROR,
        )
        body: dict[str, Any] = {"error": e.message}
        if e.details:
            body.update(e.details)
        self._send_json(status, body)

    def _read_body(self) -> dict[str, Any]:
        length = int(self.headers.get("Content-Length") or 0)
        if length == 0:
            return {}
        try:
            body = json.loads(self.rfile.read(length).decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            _msg = f"Invalid JSON body: {e}"
            raise BadRequest(_msg) from e
        if not isinstance(body, dict):
            _msg = "JSON body must be an object"
            raise BadRequest(_msg)
        return body

    def _actor(self) -> str | None:
        return (self.headers.get("X-User") or "").strip() or None

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        logger.debug("%s - %s", self.address_string(), format % args)

    # ---- ルーティング ----

    def _routes(self) -> list[tuple[str, str, Callable[..., tuple[HTTPStatus, Any]]]]:
        return [
            ("GET", r"/health", self._health),
            ("GET", r"/tasks", self._list),
            ("GET", r"/tasks/active", self._active),
            ("POST", r"/recompute", self._recompute),
            ("POST", r"/tasks", self._create),
            ("GET", _TASK, self._show),
            ("PATCH", _TASK + r"/state", self._state),
            ("POST", _TASK + r"/block", self._block),
            ("POST", _TASK + r"/suspend", self._suspend),
            ("POST", _TASK + r"/dependencies", self._depend),
            ("POST", _TASK + r"/remedy", self._remedy),
            ("PATCH", _TASK, self._update),
            ("DELETE", _TASK, self._delete),
            ("GET", r"/wip-limits", self._get_wip),
            ("PATCH", r"/wip-limits", self._set_wip),
        ]

    def _dispatch(self, method: str) -> None:
        url = urlsplit(self.path)
        query = {k: v[-1] for k, v in parse_qs(url.query).items()}
        for m, pattern, fn in self._routes():
            if m != method:
                continue
            matched = re.fullmatch(pattern, url.path.rstrip("/") or "/")
            if matched is None:
                continue
            try:
                status, body = fn(query=query, **matched.groupdict())
            except OpsError as e:
                self._send_error(e)
            except Exception:
                logger.exception("Unhandled error on %s %s", method, self.path)
                self._send_json(HTTPStatus.INTERNAL_SERVER_ERROR, {"error": "Internal server error"})
            else:
                self._send_json(status, body)
            return
        self._send_json(HTTPStatus.NOT_FOUND, {"error": "not_found"})

    def do_GET(self) -> None:
        self._dispatch("GET")

    def do_POST(self) -> None:
        self._dispatch("POST")

    def do_PATCH(self) -> None:
        self._dispatch("PATCH")

    def do_DELETE(self) -> None:
        self._dispatch("DELETE")

    # ---- ハンドラ ----

    def _health(self, **_: Any) -> tuple[HTTPStatus, Any]:
        return HTTPStatus.OK, {"ok": True}

    def _list(self, **_: Any) -> tuple[HTTPStatus, Any]:
        return HTTPStatus.OK, self.board.snapshot()

    def _active(self, **_: Any) -> tuple[HTTPStatus, Any]:
        return HTTPStatus.OK, self.board.active_tasks()

    def _recompute(self, **_: Any) -> tuple[HTTPStatus, Any]:
        changes = self.board.recompute()
        return HTTPStatus.OK, {"ok": True, "changed": changes}

    def _show(self, task_id: str, **_: Any) -> tuple[HTTPStatus, Any]:
        t = self.board.get_task(task_id)
        return HTTPStatus.OK, {**t.to_dict(), **asdict(self.board.effective_state(task_id))}

    def _create(self, **_: Any) -> tuple[HTTPStatus, Any]:
        b = self._read_body()
        t = self.board.create_task(
            b.get("title"),
            description=b.get("description") or "",
            deadline=b.get("deadline"),
            scheduled_due_at=b.get("scheduled_due_at"),
            lead_time_days=b.get("lead_time_days") or 0,
            dependencies=b.get("dependencies") or [],
            recurrence=b.get("recurrence"),
            last_completed_at=b.get("last_completed_at"),
            created_by=self._actor(),
        )
        return HTTPStatus.CREATED, t

    def _state(self, task_id: str, **_: Any) -> tuple[HTTPStatus, Any]:
        b = self._read_body()
        t = self.board.change_state(
            task_id,
            b.get("state", ""),
            picker=b.get("picker"),
            unclaim=bool(b.get("unclaim")),
            note=b.get("note") or "",
            actor=self._actor(),
        )
        return HTTPStatus.OK, t

    def _block(self, task_id: str, **_: Any) -> tuple[HTTPStatus, Any]:
        b = self._read_body()
        return HTTPStatus.OK, self.board.block_task(task_id, b.get("note") or "")

    def _suspend(self, task_id: str, **_: Any) -> tuple[HTTPStatus, Any]:
        return HTTPStatus.OK, self.board.suspend_task(task_id)

    def _depend(self, task_id: str, **_: Any) -> tuple[HTTPStatus, Any]:
        b = self._read_body()
        dep_id = b.get("dependency_id")
        if not isinstance(dep_id, str) or not dep_id:
            _msg = "dependency_id is required"
            raise BadRequest(_msg)
        return HTTPStatus.OK, self.board.add_dependency(task_id, dep_id)

    def _remedy(self, task_id: str, **_: Any) -> tuple[HTTPStatus, Any]:
        b = self._read_body()
        blocked, remedy = self.board.create_remedy(
            task_id,
            title=b.get("title"),
            description=b.get("description"),
            deadline=b.get("deadline"),
            created_by=self._actor(),
        )
        return HTTPStatus.CREATED, {"blocked": blocked, "remedy": remedy}

    def _update(self, task_id: str, **_: Any) -> tuple[HTTPStatus, Any]:
        b = self._read_body()
        deps = b.get("dependencies")
        if deps is not None and not isinstance(deps, list):
            _msg = "dependencies must be a list"
            raise BadRequest(_msg)
        t = self.board.update_task(
            task_id,
            title=b.get("title"),
            description=b.get("description"),
            scheduled_due_at=b.get("scheduled_due_at"),
            clear_scheduled_due_at="scheduled_due_at" in b and b["scheduled_due_at"] is None,
            deadline=b.get("deadline"),
            clear_deadline="deadline" in b and b["deadline"] is None,
            lead_time_days=b.get("lead_time_days"),
            recurrence=b.get("recurrence"),
            dependencies=deps,
        )
        return HTTPStatus.OK, t

    def _delete(self, task_id: str, query: dict[str, str], **_: Any) -> tuple[HTTPStatus, Any]:
        return HTTPStatus.OK, self.board.delete_task(task_id, confirm=_truthy(query.get("confirm")))

    def _get_wip(self, **_: Any) -> tuple[HTTPStatus, Any]:
        return HTTPStatus.OK, self.board.wip_limits()

    def _set_wip(self, **_: Any) -> tuple[HTTPStatus, Any]:
        return HTTPStatus.OK, self.board.set_wip_limits(self._read_body())


def make_handler(board: Board) -> type[Handler]:
    return type("BoundHandler", (Handler,), {"board": board})


def make_server(board: Board, host: str = "127.0.0.1", port: int = 8765) -> ThreadingHTTPServer:
    return ThreadingHTTPServer((host, port), make_handler(board))


def run(board: Board | None = None, host: str = "127.0.0.1", port: int = 8765) -> None:
    board = board or Board.from_env()
    with make_server(board, host, port) as httpd:
        logger.info("Serving on http://%s:%d", host, port)
        try:
            httpd.serve_forever()
        except KeyboardInterrupt:
            logger.info("Shutting down")
        finally:
            board.close()


if __name__ == "__main__":
    run()
