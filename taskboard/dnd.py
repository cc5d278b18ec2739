"""Drag-and-drop controller for task cards.

Tracks one drag gesture over a board view (the nested dict returned by
``GET /boards/{id}``) and turns the drop into the request sequence the API
expects. The local board is updated before any request is sent.
"""

from __future__ import annotations

import copy
import enum
import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from .cache import BoardMutations, MutationResult, board_key, find_column, find_task, relocate_task, renumber
from .client import Item

logger = logging.getLogger(__name__)


class DragState(str, enum.Enum):
    IDLE = "idle"
    DRAGGING = "dragging"


@dataclass(frozen=True)
class ReorderIntent:
    """Drop inside the task's own column."""

    column_id: str
    from_index: int
    to_index: int


@dataclass(frozen=True)
class MoveIntent:
    """Drop onto another column; ``to_index`` is 0-based in the destination."""

    source_column_id: str
    column_id: str
    to_index: int


def array_move(items: list[Any], from_index: int, to_index: int) -> list[Any]:
    moved = list(items)
    moved.insert(to_index, moved.pop(from_index))
    return moved


class DragController:
    def __init__(self, board: Item, mutations: BoardMutations) -> None:
        self.board = copy.deepcopy(board)
        self.mutations = mutations
        self.state = DragState.IDLE
        self.active_task_id: Optional[str] = None
        self.over_column_id: Optional[str] = None
        self.last_result: Optional[MutationResult] = None

    @property
    def board_id(self) -> str:
        return self.board["id"]

    def resolve_column(self, over_id: Optional[str]) -> Optional[str]:
        """Map a hovered id to a column id; tasks resolve to their column."""
        if over_id is None:
            return None
        if find_column(self.board, over_id) is not None:
            return over_id
        found = find_task(self.board, over_id)
        return found[0]["id"] if found else None

    def drag_start(self, task_id: str) -> bool:
        found = find_task(self.board, task_id)
        if found is None:
            return False
        self.state = DragState.DRAGGING
        self.active_task_id = task_id
        self.over_column_id = found[0]["id"]
        return True

    def drag_over(self, over_id: Optional[str]) -> None:
        if self.state is DragState.DRAGGING:
            self.over_column_id = self.resolve_column(over_id)

    def cancel(self) -> None:
        self.state = DragState.IDLE
        self.active_task_id = None
        self.over_column_id = None

    def classify(self, over_id: Optional[str]) -> Optional[ReorderIntent | MoveIntent]:
        """Work out what a drop on ``over_id`` means. ``None`` is a no-op."""
        if self.active_task_id is None:
            return None
        destination_id = self.resolve_column(over_id)
        found = find_task(self.board, self.active_task_id)
        if destination_id is None or found is None:
            return None
        source, from_index = found
        destination = find_column(self.board, destination_id)
        over_task = find_task(self.board, over_id) if over_id != destination_id else None

        if destination_id == source["id"]:
            # dropping on the column itself means "to the end"
            to_index = over_task[1] if over_task else len(source["tasks"]) - 1
            if to_index == from_index:
                return None
            return ReorderIntent(source["id"], from_index, to_index)

        to_index = over_task[1] if over_task else len(destination["tasks"])
        return MoveIntent(source["id"], destination_id, to_index)

    def drag_end(self, over_id: Optional[str]) -> Optional[MutationResult]:
        """Finish the gesture and send its requests.

        Returns ``None`` when nothing was sent (cancel or unchanged index).
        """
        task_id = self.active_task_id
        intent = self.classify(over_id)
        self.cancel()
        if task_id is None or intent is None:
            return None

        if isinstance(intent, ReorderIntent):
            predicted, calls = self._plan_reorder(intent)
        else:
            predicted, calls = self._plan_move(task_id, intent)

        self.board = predicted
        result = self.mutations.commit_drop(self.board_id, predicted, calls)
        if not result.ok:
            restored = self.mutations.cache.get(board_key(self.board_id))
            if restored is not None:
                self.board = copy.deepcopy(restored)
            logger.warning("Drop of task %s reverted: %s", task_id, result.error)
        self.last_result = result
        return result

    def _plan_reorder(self, intent: ReorderIntent) -> tuple[Item, list[Callable[[], Any]]]:
        predicted = copy.deepcopy(self.board)
        column = find_column(predicted, intent.column_id)
        column["tasks"] = renumber(array_move(column["tasks"], intent.from_index, intent.to_index))
        items = _position_items(column["tasks"])
        client = self.mutations.client
        return predicted, [lambda: client.reorder_tasks(intent.column_id, items)]

    def _plan_move(self, task_id: str, intent: MoveIntent) -> tuple[Item, list[Callable[[], Any]]]:
        predicted = relocate_task(self.board, task_id, intent.column_id, intent.to_index)
        destination_items = _position_items(find_column(predicted, intent.column_id)["tasks"])
        source_items = _position_items(find_column(predicted, intent.source_column_id)["tasks"])
        client = self.mutations.client
        calls: list[Callable[[], Any]] = [
            lambda: client.move_task(task_id, intent.column_id, intent.to_index + 1),
            lambda: client.reorder_tasks(intent.column_id, destination_items),
            lambda: client.reorder_tasks(intent.source_column_id, source_items),
        ]
        return predicted, calls


def _position_items(tasks: list[Item]) -> list[Item]:
    return [{"id": task["id"], "position": task["position"]} for task in tasks]
