"""Client-side query cache with optimistic mutations.

The cache mirrors server state under tuple keys. A mutation snapshots the
keys it touches, applies the predicted state at once, sends the request and
then either reconciles with the server's answer or restores the snapshot
exactly. Related keys are invalidated so the next read refetches.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Optional, Sequence

from .client import Item, KanbanClient
from .errors import ConflictError, KanbanError

logger = logging.getLogger(__name__)

Key = tuple[str, ...]

BOARDS: Key = ("boards",)


def board_key(board_id: str) -> Key:
    return ("boards", board_id)


def task_key(task_id: str) -> Key:
    return ("tasks", task_id)


def column_tasks_key(column_id: str) -> Key:
    return ("tasks", "column", column_id)


def subtasks_key(task_id: str) -> Key:
    return ("subtasks", "task", task_id)


@dataclass
class CacheEntry:
    data: Any
    stale: bool = False


class QueryCache:
    def __init__(self) -> None:
        self._entries: dict[Key, CacheEntry] = {}

    def __contains__(self, key: Key) -> bool:
        return key in self._entries

    def keys(self) -> list[Key]:
        return list(self._entries)

    def get(self, key: Key) -> Any:
        entry = self._entries.get(key)
        return entry.data if entry else None

    def set(self, key: Key, data: Any) -> None:
        self._entries[key] = CacheEntry(data)

    def update(self, key: Key, fn: Callable[[Any], Any]) -> None:
        """Replace a cached value with ``fn(copy_of_value)``; missing keys are skipped."""
        entry = self._entries.get(key)
        if entry is None:
            return
        entry.data = fn(copy.deepcopy(entry.data))

    def remove(self, key: Key) -> None:
        self._entries.pop(key, None)

    def is_stale(self, key: Key) -> bool:
        entry = self._entries.get(key)
        return entry is None or entry.stale

    def invalidate(self, prefix: Key) -> int:
        """Mark every key starting with ``prefix`` stale. Returns the count."""
        count = 0
        for key, entry in self._entries.items():
            if key[: len(prefix)] == prefix:
                entry.stale = True
                count += 1
        return count

    def fetch(self, key: Key, loader: Callable[[], Any]) -> Any:
        """Return the cached value, loading it first if missing or stale."""
        if self.is_stale(key):
            self.set(key, loader())
        return self.get(key)

    def snapshot(self, keys: Iterable[Key]) -> dict[Key, Optional[CacheEntry]]:
        return {
            key: copy.deepcopy(self._entries[key]) if key in self._entries else None
            for key in keys
        }

    def restore(self, snapshot: dict[Key, Optional[CacheEntry]]) -> None:
        for key, entry in snapshot.items():
            if entry is None:
                self._entries.pop(key, None)
            else:
                self._entries[key] = copy.deepcopy(entry)


@dataclass
class MutationResult:
    ok: bool
    data: Any = None
    error: Optional[KanbanError] = None


class OptimisticMutation:
    """One snapshot / apply / send / confirm-or-rollback cycle."""

    def __init__(
        self,
        cache: QueryCache,
        *,
        keys: Sequence[Key],
        send: Callable[[], Any],
        apply: Optional[Callable[[QueryCache], None]] = None,
        reconcile: Optional[Callable[[QueryCache, Any], None]] = None,
        invalidate: Sequence[Key] = (),
        settle: Sequence[Key] = (),
        label: str = "mutation",
    ) -> None:
        self.cache = cache
        self.keys = list(keys)
        self.send = send
        self.apply = apply
        self.reconcile = reconcile
        self.invalidate = list(invalidate)
        self.settle = list(settle)
        self.label = label

    def run(self) -> MutationResult:
        snapshot = self.cache.snapshot(self.keys)
        try:
            if self.apply is not None:
                self.apply(self.cache)
            data = self.send()
            if self.reconcile is not None:
                self.reconcile(self.cache, data)
        except KanbanError as exc:
            self.cache.restore(snapshot)
            logger.warning("%s failed, rolled back: %s", self.label, exc.message)
            if isinstance(exc, ConflictError):
                # the server moved on; the restored view must be refetched
                self._invalidate(self.keys + self.invalidate)
            result = MutationResult(ok=False, error=exc)
        except Exception:
            self.cache.restore(snapshot)
            logger.exception("%s raised, rolled back", self.label)
            self._invalidate(self.settle)
            raise
        else:
            self._invalidate(self.invalidate)
            result = MutationResult(ok=True, data=data)
        self._invalidate(self.settle)
        return result

    def _invalidate(self, prefixes: Iterable[Key]) -> None:
        for prefix in prefixes:
            self.cache.invalidate(prefix)


# === Board view helpers ===


def renumber(items: Sequence[Item]) -> list[Item]:
    """Copy ``items`` with contiguous 1-based positions."""
    return [{**item, "position": index + 1} for index, item in enumerate(items)]


def find_task(board: Item, task_id: str) -> Optional[tuple[Item, int]]:
    """Locate a task in a board view as ``(column, index)``."""
    for column in board.get("columns", []):
        for index, task in enumerate(column.get("tasks", [])):
            if task["id"] == task_id:
                return column, index
    return None


def find_column(board: Item, column_id: str) -> Optional[Item]:
    for column in board.get("columns", []):
        if column["id"] == column_id:
            return column
    return None


def relocate_task(board: Item, task_id: str, column_id: str, index: int) -> Item:
    """Return a copy of ``board`` with a task moved to ``index`` of ``column_id``.

    Both the source and the destination task lists are renumbered.
    """
    board = copy.deepcopy(board)
    found = find_task(board, task_id)
    target = find_column(board, column_id)
    if found is None or target is None:
        return board
    source, source_index = found
    task = source["tasks"].pop(source_index)
    task["columnId"] = column_id
    index = min(max(index, 0), len(target["tasks"]))
    target["tasks"].insert(index, task)
    source["tasks"] = renumber(source["tasks"])
    if target is not source:
        target["tasks"] = renumber(target["tasks"])
    return board


def _reordered(items: Sequence[Item], ordered_ids: Sequence[str]) -> list[Item]:
    by_id = {item["id"]: item for item in items}
    ordered = [by_id[item_id] for item_id in ordered_ids if item_id in by_id]
    ordered += [item for item in items if item["id"] not in set(ordered_ids)]
    return renumber(ordered)


class BoardMutations:
    """Optimistic mutations issued by the board UI.

    Queries go through the cache; mutations patch the cached view first and
    fan out invalidations to every scope the server may have changed.
    """

    def __init__(self, client: KanbanClient, cache: Optional[QueryCache] = None) -> None:
        self.client = client
        self.cache = cache or QueryCache()

    # === Queries ===
    def boards(self) -> list[Item]:
        return self.cache.fetch(BOARDS, self.client.list_boards)

    def board(self, board_id: str) -> Item:
        return self.cache.fetch(board_key(board_id), lambda: self.client.get_board(board_id))

    def task(self, task_id: str) -> Item:
        return self.cache.fetch(task_key(task_id), lambda: self.client.get_task(task_id))

    def column_tasks(self, column_id: str) -> list[Item]:
        return self.cache.fetch(column_tasks_key(column_id), lambda: self.client.list_tasks(column_id))

    def subtasks(self, task_id: str) -> list[Item]:
        return self.cache.fetch(subtasks_key(task_id), lambda: self.client.list_subtasks(task_id))

    # === Boards ===
    def create_board(self, name: str, is_default: bool = False, columns: Optional[Sequence[Item]] = None) -> MutationResult:
        def reconcile(cache: QueryCache, board: Item) -> None:
            def add(boards: list[Item]) -> list[Item]:
                if board["isDefault"]:
                    boards = [{**b, "isDefault": False} for b in boards]
                return boards + [board]

            cache.update(BOARDS, add)

        return OptimisticMutation(
            self.cache,
            keys=[BOARDS],
            send=lambda: self.client.create_board(name, is_default, columns),
            reconcile=reconcile,
            invalidate=[BOARDS],
            label="create board",
        ).run()

    def update_board(self, board_id: str, **fields: Any) -> MutationResult:
        patch = {k: v for k, v in fields.items() if k in ("name", "isDefault")}

        def apply(cache: QueryCache) -> None:
            cache.update(BOARDS, lambda boards: [{**b, **patch} if b["id"] == board_id else b for b in boards])
            cache.update(board_key(board_id), lambda board: {**board, **patch})

        def reconcile(cache: QueryCache, board: Item) -> None:
            summary = {k: v for k, v in board.items() if k != "columns"}
            cache.update(BOARDS, lambda boards: [summary if b["id"] == board_id else b for b in boards])
            cache.set(board_key(board_id), board)

        return OptimisticMutation(
            self.cache,
            keys=[BOARDS, board_key(board_id)],
            send=lambda: self.client.update_board(board_id, **fields),
            apply=apply,
            reconcile=reconcile,
            invalidate=[board_key(board_id)],
            label="update board",
        ).run()

    def delete_board(self, board_id: str) -> MutationResult:
        def apply(cache: QueryCache) -> None:
            cache.update(BOARDS, lambda boards: [b for b in boards if b["id"] != board_id])
            cache.remove(board_key(board_id))

        return OptimisticMutation(
            self.cache,
            keys=[BOARDS, board_key(board_id)],
            send=lambda: self.client.delete_board(board_id),
            apply=apply,
            settle=[BOARDS],
            label="delete board",
        ).run()

    def reorder_boards(self, ordered_ids: Sequence[str]) -> MutationResult:
        current = self.cache.get(BOARDS) or []
        items = _reordered(current, ordered_ids) if current else [
            {"id": board_id, "position": index + 1} for index, board_id in enumerate(ordered_ids)
        ]

        return OptimisticMutation(
            self.cache,
            keys=[BOARDS],
            send=lambda: self.client.reorder_boards(items),
            apply=lambda cache: cache.update(BOARDS, lambda boards: _reordered(boards, ordered_ids)),
            settle=[BOARDS],
            label="reorder boards",
        ).run()

    def set_default_board(self, board_id: str) -> MutationResult:
        def apply(cache: QueryCache) -> None:
            cache.update(BOARDS, lambda boards: [{**b, "isDefault": b["id"] == board_id} for b in boards])

        return OptimisticMutation(
            self.cache,
            keys=[BOARDS],
            send=lambda: self.client.set_default_board(board_id),
            apply=apply,
            settle=[BOARDS],
            label="set default board",
        ).run()

    # === Columns ===
    def create_column(self, board_id: str, name: str, color: Optional[str] = None) -> MutationResult:
        return OptimisticMutation(
            self.cache,
            keys=[],
            send=lambda: self.client.create_column(board_id, name, color),
            invalidate=[BOARDS, board_key(board_id)],
            label="create column",
        ).run()

    def reorder_columns(self, board_id: str, ordered_ids: Sequence[str]) -> MutationResult:
        items = [{"id": column_id, "position": index + 1} for index, column_id in enumerate(ordered_ids)]

        def apply(cache: QueryCache) -> None:
            cache.update(
                board_key(board_id),
                lambda board: {**board, "columns": _reordered(board["columns"], ordered_ids)},
            )

        return OptimisticMutation(
            self.cache,
            keys=[board_key(board_id)],
            send=lambda: self.client.reorder_columns(board_id, items),
            apply=apply,
            settle=[board_key(board_id)],
            label="reorder columns",
        ).run()

    # === Tasks ===
    def create_task(self, board_id: str, column_id: str, title: str, **fields: Any) -> MutationResult:
        def reconcile(cache: QueryCache, task: Item) -> None:
            cache.update(column_tasks_key(column_id), lambda tasks: tasks + [task])

        return OptimisticMutation(
            self.cache,
            keys=[column_tasks_key(column_id)],
            send=lambda: self.client.create_task(board_id, column_id, title, **fields),
            reconcile=reconcile,
            invalidate=[board_key(board_id)],
            label="create task",
        ).run()

    def update_task(self, board_id: str, task_id: str, **fields: Any) -> MutationResult:
        patch = {k: v for k, v in fields.items() if k in ("title", "description", "status", "priority")}

        def apply(cache: QueryCache) -> None:
            cache.update(task_key(task_id), lambda task: {**task, **patch})

        def reconcile(cache: QueryCache, task: Item) -> None:
            # server fields win over the prediction
            cache.update(task_key(task_id), lambda cached: {**cached, **task})

        return OptimisticMutation(
            self.cache,
            keys=[task_key(task_id)],
            send=lambda: self.client.update_task(task_id, **fields),
            apply=apply,
            reconcile=reconcile,
            invalidate=[board_key(board_id), ("tasks", "column")],
            label="update task",
        ).run()

    def delete_task(self, board_id: str, task_id: str) -> MutationResult:
        def apply(cache: QueryCache) -> None:
            def drop(board: Item) -> Item:
                found = find_task(board, task_id)
                if found is not None:
                    column, index = found
                    del column["tasks"][index]
                    column["tasks"] = renumber(column["tasks"])
                return board

            cache.update(board_key(board_id), drop)
            cache.remove(task_key(task_id))

        return OptimisticMutation(
            self.cache,
            keys=[board_key(board_id), task_key(task_id)],
            send=lambda: self.client.delete_task(task_id),
            apply=apply,
            settle=[board_key(board_id), ("tasks", "column")],
            label="delete task",
        ).run()

    def move_task(self, board_id: str, task_id: str, column_id: str, position: int) -> MutationResult:
        return OptimisticMutation(
            self.cache,
            keys=[board_key(board_id)],
            send=lambda: self.client.move_task(task_id, column_id, position),
            apply=lambda cache: cache.update(
                board_key(board_id), lambda board: relocate_task(board, task_id, column_id, position - 1)
            ),
            settle=[board_key(board_id), ("tasks", "column"), task_key(task_id)],
            label="move task",
        ).run()

    def reorder_tasks(self, board_id: str, column_id: str, ordered_ids: Sequence[str]) -> MutationResult:
        items = [{"id": task_id, "position": index + 1} for index, task_id in enumerate(ordered_ids)]

        def apply(cache: QueryCache) -> None:
            def reorder(board: Item) -> Item:
                column = find_column(board, column_id)
                if column is not None:
                    column["tasks"] = _reordered(column["tasks"], ordered_ids)
                return board

            cache.update(board_key(board_id), reorder)

        return OptimisticMutation(
            self.cache,
            keys=[board_key(board_id)],
            send=lambda: self.client.reorder_tasks(column_id, items),
            apply=apply,
            settle=[board_key(board_id), column_tasks_key(column_id)],
            label="reorder tasks",
        ).run()

    def commit_drop(self, board_id: str, predicted: Item, calls: Sequence[Callable[[], Any]]) -> MutationResult:
        """Show a drag-and-drop result at once and send its requests in order.

        A failure in any call restores the board exactly as it was before
        the drop.
        """

        def send() -> None:
            for call in calls:
                call()

        return OptimisticMutation(
            self.cache,
            keys=[board_key(board_id)],
            send=send,
            apply=lambda cache: cache.set(board_key(board_id), copy.deepcopy(predicted)),
            settle=[board_key(board_id), ("tasks", "column")],
            label="drop task",
        ).run()

    # === Subtasks ===
    def create_subtask(self, board_id: str, task_id: str, title: str) -> MutationResult:
        def reconcile(cache: QueryCache, subtask: Item) -> None:
            cache.update(subtasks_key(task_id), lambda subtasks: subtasks + [subtask])

        return OptimisticMutation(
            self.cache,
            keys=[subtasks_key(task_id)],
            send=lambda: self.client.create_subtask(task_id, title),
            reconcile=reconcile,
            invalidate=[task_key(task_id), board_key(board_id)],
            label="create subtask",
        ).run()

    def update_subtask(self, board_id: str, task_id: str, subtask_id: str, **fields: Any) -> MutationResult:
        patch = {k: v for k, v in fields.items() if k in ("title", "completed")}

        def patch_list(subtasks: list[Item]) -> list[Item]:
            return [{**s, **patch} if s["id"] == subtask_id else s for s in subtasks]

        def apply(cache: QueryCache) -> None:
            cache.update(subtasks_key(task_id), patch_list)
            cache.update(task_key(task_id), lambda task: {**task, "subtasks": patch_list(task.get("subtasks", []))})

        def reconcile(cache: QueryCache, subtask: Item) -> None:
            cache.update(
                subtasks_key(task_id),
                lambda subtasks: [subtask if s["id"] == subtask_id else s for s in subtasks],
            )

        return OptimisticMutation(
            self.cache,
            keys=[subtasks_key(task_id), task_key(task_id)],
            send=lambda: self.client.update_subtask(subtask_id, **fields),
            apply=apply,
            reconcile=reconcile,
            invalidate=[task_key(task_id), board_key(board_id), subtasks_key(task_id)],
            label="update subtask",
        ).run()

    def delete_subtask(self, board_id: str, task_id: str, subtask_id: str) -> MutationResult:
        def drop(subtasks: list[Item]) -> list[Item]:
            return renumber([s for s in subtasks if s["id"] != subtask_id])

        return OptimisticMutation(
            self.cache,
            keys=[subtasks_key(task_id)],
            send=lambda: self.client.delete_subtask(subtask_id),
            apply=lambda cache: cache.update(subtasks_key(task_id), drop),
            settle=[task_key(task_id), board_key(board_id), subtasks_key(task_id)],
            label="delete subtask",
        ).run()

    def reorder_subtasks(self, board_id: str, task_id: str, ordered_ids: Sequence[str]) -> MutationResult:
        items = [{"id": subtask_id, "position": index + 1} for index, subtask_id in enumerate(ordered_ids)]

        return OptimisticMutation(
            self.cache,
            keys=[subtasks_key(task_id)],
            send=lambda: self.client.reorder_subtasks(task_id, items),
            apply=lambda cache: cache.update(subtasks_key(task_id), lambda subtasks: _reordered(subtasks, ordered_ids)),
            settle=[task_key(task_id), board_key(board_id), subtasks_key(task_id)],
            label="reorder subtasks",
        ).run()
