"""Board, column, task and subtask operations.

Each service is bound to one session and one authenticated user. Every
mutating operation runs inside a single transaction and keeps sibling
positions dense; every operation on an existing resource goes through the
ownership guard first.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from . import positions
from .db import Board, ColumnModel, Subtask, Task, transaction
from .errors import NotFoundError, ValidationError
from .models import BoardColumnIn, ReorderItem, SubtaskCreate
from .ownership import OwnershipGuard, ResourceKind
from .storage import Positioned, Storage
from .utils import derive_status

logger = logging.getLogger(__name__)

DEFAULT_COLUMN_COLOR = "#3B82F6"


@dataclass
class BoardTree:
    """A board with its columns, tasks per column and subtasks per task."""

    board: Board
    columns: list[ColumnModel]
    tasks: dict[str, list[Task]] = field(default_factory=dict)
    subtasks: dict[str, list[Subtask]] = field(default_factory=dict)


class _Service:
    def __init__(self, session: Session, user_id: str) -> None:
        self.session = session
        self.user_id = user_id
        self.storage = Storage(session)
        self.guard = OwnershipGuard(session)

    def _require_board(self, board_id: str) -> Board:
        self.guard.require(board_id, self.user_id, ResourceKind.BOARD)
        return self.storage.get_board(board_id)

    def _require_column(self, column_id: str) -> ColumnModel:
        self.guard.require(column_id, self.user_id, ResourceKind.COLUMN)
        return self.storage.get_column(column_id)

    def _require_task(self, task_id: str) -> Task:
        self.guard.require(task_id, self.user_id, ResourceKind.TASK)
        return self.storage.get_task(task_id)

    def _require_subtask(self, subtask_id: str) -> Subtask:
        self.guard.require(subtask_id, self.user_id, ResourceKind.SUBTASK)
        return self.storage.get_subtask(subtask_id)

    def _reorder(self, rows: Sequence[Positioned], items: Sequence[ReorderItem]) -> None:
        """Write caller-supplied positions for siblings of one scope.

        Positions are persisted verbatim; density is the caller's
        responsibility. Ids outside the scope are reported as not found.
        """
        ids = [item.id for item in items]
        if len(set(ids)) != len(ids):
            raise ValidationError("Duplicate ids in reorder items")
        wanted = [item.position for item in items]
        if len(set(wanted)) != len(wanted):
            raise ValidationError("Duplicate positions in reorder items")

        by_id = {row.id: row for row in rows}
        missing = [item_id for item_id in ids if item_id not in by_id]
        if missing:
            raise NotFoundError(f"Item not found: {missing[0]}")

        self.storage.apply_positions(
            [(by_id[item.id], item.position) for item in items],
            siblings=rows,
        )

    def _relocate(self, ordered: Sequence[Positioned], row: Positioned, position: int) -> None:
        self.storage.normalize(positions.move_to_index(ordered, row, position))

    def _restatus(self, column: ColumnModel) -> None:
        """Re-derive the denormalized status of every task in ``column``."""
        status = derive_status(column.name)
        for task in self.storage.tasks_for_column(column.id):
            task.status = status


class BoardService(_Service):
    def list_boards(self) -> list[Board]:
        return self.storage.boards_for_user(self.user_id)

    def get_board(self, board_id: str) -> BoardTree:
        board = self._require_board(board_id)
        columns = self.storage.columns_for_board(board.id)
        tree = BoardTree(board=board, columns=columns)
        tasks = self.storage.tasks_for_board(board.id)
        for task in tasks:
            tree.tasks.setdefault(task.column_id, []).append(task)
        for subtask in self.storage.subtasks_for_tasks([t.id for t in tasks]):
            tree.subtasks.setdefault(subtask.task_id, []).append(subtask)
        return tree

    def create_board(
        self,
        name: str,
        is_default: bool = False,
        columns: Optional[Sequence[BoardColumnIn]] = None,
    ) -> Board:
        with transaction(self.session):
            current_default = self.storage.default_board(self.user_id)
            # a user's first board is always the default
            make_default = is_default or current_default is None
            if make_default and current_default is not None:
                current_default.is_default = False
                self.session.flush()

            board = Board(
                user_id=self.user_id,
                name=name.strip(),
                is_default=make_default,
                position=self.storage.next_board_position(self.user_id),
            )
            self.storage.add(board)

            for spec, position in positions.normalize(_ordered_specs(columns or [])):
                self.storage.add(
                    ColumnModel(
                        board_id=board.id,
                        name=spec.name.strip(),
                        color=spec.color or DEFAULT_COLUMN_COLOR,
                        position=position,
                    )
                )
        logger.info("Board created: %s (default=%s)", board.id, make_default)
        return board

    def update_board(
        self,
        board_id: str,
        name: Optional[str] = None,
        is_default: Optional[bool] = None,
        position: Optional[int] = None,
        columns: Optional[Sequence[BoardColumnIn]] = None,
    ) -> Board:
        with transaction(self.session):
            board = self._require_board(board_id)
            if name is not None:
                board.name = name.strip()
            if position is not None:
                self._relocate(self.storage.boards_for_user(self.user_id), board, position)
            if is_default:
                self._set_default(board)
            elif is_default is False and board.is_default:
                # clearing the only default would leave the user without one
                logger.debug("Ignoring isDefault=false on default board %s", board.id)
            if columns is not None:
                self._update_columns(board, columns)
        logger.info("Board updated: %s", board_id)
        return board

    def delete_board(self, board_id: str) -> None:
        with transaction(self.session):
            board = self._require_board(board_id)
            was_default = board.is_default
            self.storage.delete(board)
            remaining = self.storage.boards_for_user(self.user_id)
            self.storage.compact(remaining)
            if was_default and remaining:
                remaining[0].is_default = True
                self.session.flush()
        logger.info("Board deleted: %s", board_id)

    def reorder_boards(self, items: Sequence[ReorderItem]) -> None:
        with transaction(self.session):
            self._reorder(self.storage.boards_for_user(self.user_id), items)
        logger.info("Boards reordered for user %s (%d items)", self.user_id, len(items))

    def set_default_board(self, board_id: str) -> Board:
        with transaction(self.session):
            board = self._require_board(board_id)
            self._set_default(board)
        logger.info("Default board set: %s", board_id)
        return board

    def _set_default(self, board: Board) -> None:
        # clear first: the store allows a single default per user
        for other in self.storage.boards_for_user(self.user_id):
            other.is_default = False
        self.session.flush()
        board.is_default = True
        self.session.flush()

    def _update_columns(self, board: Board, specs: Sequence[BoardColumnIn]) -> None:
        """Replace a board's column list in one pass.

        Absent columns are deleted with their tasks. Survivors and new
        columns are first written at ``final + offset`` and only then
        dropped onto their final positions, so swapping two columns never
        puts two rows on the same position.
        """
        existing = {column.id: column for column in self.storage.columns_for_board(board.id)}
        ordered = _ordered_specs(specs)

        kept_ids = [spec.id for spec in ordered if spec.id and not spec.isNew]
        if len(set(kept_ids)) != len(kept_ids):
            raise ValidationError("Duplicate column ids")
        unknown = [column_id for column_id in kept_ids if column_id not in existing]
        if unknown:
            raise NotFoundError("Column not found")

        for column_id, column in list(existing.items()):
            if column_id not in kept_ids:
                self.storage.delete(column)
                del existing[column_id]

        finals = positions.normalize(ordered)
        offset = positions.quarantine_offset(
            [column.position for column in existing.values()] + [final for _, final in finals]
        )

        placed: list[tuple[ColumnModel, int]] = []
        for spec, final in finals:
            if spec.id and not spec.isNew:
                column = existing[spec.id]
                renamed = column.name != spec.name.strip()
                column.name = spec.name.strip()
                if spec.color:
                    column.color = spec.color
                column.position = final + offset
                if renamed:
                    self._restatus(column)
                placed.append((column, final))
        self.session.flush()

        for spec, final in finals:
            if not spec.id or spec.isNew:
                column = ColumnModel(
                    board_id=board.id,
                    name=spec.name.strip(),
                    color=spec.color or DEFAULT_COLUMN_COLOR,
                    position=final + offset,
                )
                self.session.add(column)
                placed.append((column, final))
        self.session.flush()

        for column, final in placed:
            column.position = final
        self.session.flush()
        logger.info("Board %s columns replaced (%d columns)", board.id, len(placed))


class ColumnService(_Service):
    def list_columns(self, board_id: str) -> list[ColumnModel]:
        board = self._require_board(board_id)
        return self.storage.columns_for_board(board.id)

    def create_column(self, board_id: str, name: str, color: Optional[str] = None) -> ColumnModel:
        with transaction(self.session):
            board = self._require_board(board_id)
            column = ColumnModel(
                board_id=board.id,
                name=name.strip(),
                color=color or DEFAULT_COLUMN_COLOR,
                position=self.storage.next_column_position(board.id),
            )
            self.storage.add(column)
        logger.info("Column created: %s on board %s", column.id, board_id)
        return column

    def update_column(
        self,
        column_id: str,
        name: Optional[str] = None,
        color: Optional[str] = None,
        position: Optional[int] = None,
    ) -> ColumnModel:
        with transaction(self.session):
            column = self._require_column(column_id)
            if name is not None and name.strip() != column.name:
                column.name = name.strip()
                self._restatus(column)
            if color is not None:
                column.color = color
            if position is not None:
                self._relocate(self.storage.columns_for_board(column.board_id), column, position)
            self.session.flush()
        return column

    def delete_column(self, column_id: str) -> None:
        with transaction(self.session):
            column = self._require_column(column_id)
            board_id = column.board_id
            self.storage.delete(column)
            self.storage.compact(self.storage.columns_for_board(board_id))
        logger.info("Column deleted: %s", column_id)

    def reorder_columns(self, board_id: str, items: Sequence[ReorderItem]) -> None:
        with transaction(self.session):
            board = self._require_board(board_id)
            self._reorder(self.storage.columns_for_board(board.id), items)
        logger.info("Columns reordered on board %s (%d items)", board_id, len(items))


class TaskService(_Service):
    def list_tasks(self, column_id: str) -> list[Task]:
        column = self._require_column(column_id)
        return self.storage.tasks_for_column(column.id)

    def get_task(self, task_id: str) -> tuple[Task, list[Subtask]]:
        task = self._require_task(task_id)
        return task, self.storage.subtasks_for_task(task.id)

    def create_task(
        self,
        board_id: str,
        column_id: str,
        title: str,
        description: Optional[str] = None,
        status: Optional[str] = None,
        priority: int = 0,
        due_date: Optional[datetime] = None,
        subtasks: Optional[Sequence[SubtaskCreate]] = None,
    ) -> tuple[Task, list[Subtask]]:
        with transaction(self.session):
            board = self._require_board(board_id)
            column = self.storage.get_column(column_id)
            if column is None or column.board_id != board.id:
                raise NotFoundError("Column not found")

            task = Task(
                board_id=board.id,
                column_id=column.id,
                title=title.strip(),
                description=description.strip() if description else None,
                status=status or derive_status(column.name),
                priority=priority,
                due_date=due_date,
                position=self.storage.next_task_position(column.id),
            )
            self.storage.add(task)

            created = []
            for spec, position in positions.normalize(list(subtasks or [])):
                created.append(
                    self.storage.add(
                        Subtask(
                            task_id=task.id,
                            title=spec.title.strip(),
                            completed=spec.completed,
                            position=position,
                        )
                    )
                )
        logger.info("Task created: %s in column %s", task.id, column_id)
        return task, created

    def update_task(
        self,
        task_id: str,
        *,
        column_id: Optional[str] = None,
        title: Optional[str] = None,
        description: Optional[str] = None,
        status: Optional[str] = None,
        priority: Optional[int] = None,
        due_date: Optional[datetime] = None,
        position: Optional[int] = None,
    ) -> Task:
        with transaction(self.session):
            task = self._require_task(task_id)
            if title is not None:
                task.title = title.strip()
            if description is not None:
                task.description = description.strip() or None
            if priority is not None:
                task.priority = priority
            if due_date is not None:
                task.due_date = due_date

            if column_id is not None and column_id != task.column_id:
                destination = self._destination_for(task, column_id)
                target = position if position is not None else self.storage.next_task_position(destination.id)
                self._move(task, destination, target)
            elif position is not None:
                self._relocate(self.storage.tasks_for_column(task.column_id), task, position)

            if status is not None:
                task.status = status
            self.session.flush()
        return task

    def delete_task(self, task_id: str) -> None:
        with transaction(self.session):
            task = self._require_task(task_id)
            column_id = task.column_id
            self.storage.delete(task)
            self.storage.compact(self.storage.tasks_for_column(column_id))
        logger.info("Task deleted: %s", task_id)

    def move_task(self, task_id: str, column_id: str, position: int) -> Task:
        """Move a task to ``position`` (1-based) in ``column_id``.

        The destination slot is opened by bumping every task at or after
        it, the task is transferred, and the source column is compacted in
        the same transaction. Follow-up reorders of either column are
        harmless.
        """
        with transaction(self.session):
            task = self._require_task(task_id)
            destination = self._destination_for(task, column_id)
            source_id = task.column_id
            self._move(task, destination, position)
        logger.info("Task moved: %s (%s -> %s @ %d)", task_id, source_id, column_id, task.position)
        return task

    def reorder_tasks(self, column_id: str, items: Sequence[ReorderItem]) -> None:
        with transaction(self.session):
            column = self._require_column(column_id)
            self._reorder(self.storage.tasks_for_column(column.id), items)
        logger.info("Tasks reordered in column %s (%d items)", column_id, len(items))

    def _destination_for(self, task: Task, column_id: str) -> ColumnModel:
        column = self.storage.get_column(column_id)
        # cross-board moves are indistinguishable from a missing column
        if column is None or column.board_id != task.board_id:
            raise NotFoundError("Target column not found")
        return column

    def _move(self, task: Task, destination: ColumnModel, position: int) -> None:
        source_id = task.column_id
        if destination.id == source_id:
            self._relocate(self.storage.tasks_for_column(source_id), task, position)
            return

        source_rows = [row for row in self.storage.tasks_for_column(source_id) if row is not task]
        destination_rows = self.storage.tasks_for_column(destination.id)
        target = positions.clamp(position, len(destination_rows))

        self.storage.shift_from(destination_rows, target)
        task.column = destination
        task.position = target
        task.status = derive_status(destination.name)
        self.session.flush()

        self.storage.compact(source_rows)


class SubtaskService(_Service):
    def list_subtasks(self, task_id: str) -> list[Subtask]:
        task = self._require_task(task_id)
        return self.storage.subtasks_for_task(task.id)

    def create_subtask(self, task_id: str, title: str, completed: bool = False) -> Subtask:
        with transaction(self.session):
            task = self._require_task(task_id)
            subtask = Subtask(
                task_id=task.id,
                title=title.strip(),
                completed=completed,
                position=self.storage.next_subtask_position(task.id),
            )
            self.storage.add(subtask)
        logger.info("Subtask created: %s on task %s", subtask.id, task_id)
        return subtask

    def update_subtask(
        self,
        subtask_id: str,
        title: Optional[str] = None,
        completed: Optional[bool] = None,
        position: Optional[int] = None,
    ) -> Subtask:
        with transaction(self.session):
            subtask = self._require_subtask(subtask_id)
            if title is not None:
                subtask.title = title.strip()
            if completed is not None:
                subtask.completed = completed
            if position is not None:
                self._relocate(self.storage.subtasks_for_task(subtask.task_id), subtask, position)
            self.session.flush()
        return subtask

    def delete_subtask(self, subtask_id: str) -> None:
        with transaction(self.session):
            subtask = self._require_subtask(subtask_id)
            task_id = subtask.task_id
            self.storage.delete(subtask)
            self.storage.compact(self.storage.subtasks_for_task(task_id))
        logger.info("Subtask deleted: %s", subtask_id)

    def reorder_subtasks(self, task_id: str, items: Sequence[ReorderItem]) -> None:
        with transaction(self.session):
            task = self._require_task(task_id)
            self._reorder(self.storage.subtasks_for_task(task.id), items)
        logger.info("Subtasks reordered on task %s (%d items)", task_id, len(items))


def _ordered_specs(specs: Sequence[BoardColumnIn]) -> list[BoardColumnIn]:
    """Sort column specs by requested position, falling back to input order."""
    indexed = list(enumerate(specs))
    indexed.sort(key=lambda pair: (pair[1].position if pair[1].position is not None else pair[0], pair[0]))
    return [spec for _, spec in indexed]
