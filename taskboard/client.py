"""HTTP client for the taskboard API."""

from __future__ import annotations

import logging
from typing import Any, Optional, Sequence

import httpx

from .errors import InternalError, error_for_status

logger = logging.getLogger(__name__)

Item = dict[str, Any]


def reorder_body(items: Sequence[Item]) -> dict[str, list[Item]]:
    return {"items": [{"id": item["id"], "position": item["position"]} for item in items]}


class KanbanClient:
    """Thin wrapper over the ``/v1`` endpoints.

    Accepts any ``httpx.Client`` (a FastAPI ``TestClient`` included) that
    already carries the bearer credential. Responses are unwrapped from the
    ``{data, error, message}`` envelope; non-2xx statuses raise the matching
    :mod:`taskboard.errors` type.
    """

    def __init__(self, http: httpx.Client, prefix: str = "/v1") -> None:
        self.http = http
        self.prefix = prefix

    @classmethod
    def connect(cls, base_url: str, token: str, timeout: float = 10.0) -> KanbanClient:
        http = httpx.Client(
            base_url=base_url,
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
        )
        return cls(http)

    def close(self) -> None:
        self.http.close()

    def __enter__(self) -> KanbanClient:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> Any:
        try:
            response = self.http.request(method, f"{self.prefix}{path}", json=json, params=params)
        except httpx.RequestError as exc:
            logger.error("%s %s failed: %s", method, path, exc)
            raise InternalError(f"Request failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = {}

        if response.status_code >= 400:
            message = body.get("error") if isinstance(body, dict) else None
            logger.debug("%s %s -> %d %s", method, path, response.status_code, message)
            raise error_for_status(response.status_code, message)
        return body.get("data") if isinstance(body, dict) else None

    # === Boards ===
    def list_boards(self) -> list[Item]:
        return self.request("GET", "/boards")

    def get_board(self, board_id: str) -> Item:
        return self.request("GET", f"/boards/{board_id}")

    def create_board(
        self, name: str, is_default: bool = False, columns: Optional[Sequence[Item]] = None
    ) -> Item:
        body: dict[str, Any] = {"name": name, "isDefault": is_default}
        if columns is not None:
            body["columns"] = list(columns)
        return self.request("POST", "/boards", json=body)

    def update_board(self, board_id: str, **fields: Any) -> Item:
        return self.request("PUT", f"/boards/{board_id}", json=fields)

    def delete_board(self, board_id: str) -> None:
        self.request("DELETE", f"/boards/{board_id}")

    def reorder_boards(self, items: Sequence[Item]) -> None:
        self.request("POST", "/boards/reorder", json=reorder_body(items))

    def set_default_board(self, board_id: str) -> None:
        self.request("POST", f"/boards/{board_id}/default")

    # === Columns ===
    def list_columns(self, board_id: str) -> list[Item]:
        return self.request("GET", "/columns", params={"boardId": board_id})

    def create_column(self, board_id: str, name: str, color: Optional[str] = None) -> Item:
        body = {"name": name}
        if color:
            body["color"] = color
        return self.request("POST", "/columns", json=body, params={"boardId": board_id})

    def update_column(self, column_id: str, **fields: Any) -> Item:
        return self.request("PUT", f"/columns/{column_id}", json=fields)

    def delete_column(self, column_id: str) -> None:
        self.request("DELETE", f"/columns/{column_id}")

    def reorder_columns(self, board_id: str, items: Sequence[Item]) -> None:
        self.request("POST", "/columns/reorder", json=reorder_body(items), params={"boardId": board_id})

    # === Tasks ===
    def list_tasks(self, column_id: str) -> list[Item]:
        return self.request("GET", "/tasks", params={"columnId": column_id})

    def get_task(self, task_id: str) -> Item:
        return self.request("GET", f"/tasks/{task_id}")

    def create_task(self, board_id: str, column_id: str, title: str, **fields: Any) -> Item:
        body = {"columnId": column_id, "title": title, **fields}
        return self.request("POST", "/tasks", json=body, params={"boardId": board_id})

    def update_task(self, task_id: str, **fields: Any) -> Item:
        return self.request("PUT", f"/tasks/{task_id}", json=fields)

    def delete_task(self, task_id: str) -> None:
        self.request("DELETE", f"/tasks/{task_id}")

    def move_task(self, task_id: str, column_id: str, position: int) -> Item:
        body = {"columnId": column_id, "position": position}
        return self.request("POST", f"/tasks/{task_id}/move", json=body)

    def reorder_tasks(self, column_id: str, items: Sequence[Item]) -> None:
        self.request("POST", "/tasks/reorder", json=reorder_body(items), params={"columnId": column_id})

    # === Subtasks ===
    def list_subtasks(self, task_id: str) -> list[Item]:
        return self.request("GET", "/subtasks", params={"taskId": task_id})

    def create_subtask(self, task_id: str, title: str, completed: bool = False) -> Item:
        body = {"title": title, "completed": completed}
        return self.request("POST", "/subtasks", json=body, params={"taskId": task_id})

    def update_subtask(self, subtask_id: str, **fields: Any) -> Item:
        return self.request("PUT", f"/subtasks/{subtask_id}", json=fields)

    def delete_subtask(self, subtask_id: str) -> None:
        self.request("DELETE", f"/subtasks/{subtask_id}")

    def reorder_subtasks(self, task_id: str, items: Sequence[Item]) -> None:
        self.request("POST", "/subtasks/reorder", json=reorder_body(items), params={"taskId": task_id})

