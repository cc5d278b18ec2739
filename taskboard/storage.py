from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence, Union

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from . import positions
from .db import Board, ColumnModel, Subtask, Task

logger = logging.getLogger(__name__)

Positioned = Union[Board, ColumnModel, Task, Subtask]


class Storage:
    """Row access for boards, columns, tasks and subtasks over one session.

    Reads come back ordered by position. Writers never commit; callers wrap
    them in :func:`taskboard.db.transaction`.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    # === Board rows ===
    def boards_for_user(self, user_id: str) -> list[Board]:
        stmt = select(Board).where(Board.user_id == user_id).order_by(Board.position)
        return list(self.session.scalars(stmt))

    def get_board(self, board_id: str) -> Optional[Board]:
        return self.session.get(Board, board_id)

    def default_board(self, user_id: str) -> Optional[Board]:
        stmt = select(Board).where(Board.user_id == user_id, Board.is_default.is_(True))
        return self.session.scalars(stmt).first()

    # === Column rows ===
    def columns_for_board(self, board_id: str) -> list[ColumnModel]:
        stmt = select(ColumnModel).where(ColumnModel.board_id == board_id).order_by(ColumnModel.position)
        return list(self.session.scalars(stmt))

    def get_column(self, column_id: str) -> Optional[ColumnModel]:
        return self.session.get(ColumnModel, column_id)

    # === Task rows ===
    def tasks_for_column(self, column_id: str) -> list[Task]:
        stmt = select(Task).where(Task.column_id == column_id).order_by(Task.position)
        return list(self.session.scalars(stmt))

    def tasks_for_board(self, board_id: str) -> list[Task]:
        stmt = select(Task).where(Task.board_id == board_id).order_by(Task.position)
        return list(self.session.scalars(stmt))

    def get_task(self, task_id: str) -> Optional[Task]:
        return self.session.get(Task, task_id)

    # === Subtask rows ===
    def subtasks_for_task(self, task_id: str) -> list[Subtask]:
        stmt = select(Subtask).where(Subtask.task_id == task_id).order_by(Subtask.position)
        return list(self.session.scalars(stmt))

    def subtasks_for_tasks(self, task_ids: Sequence[str]) -> list[Subtask]:
        if not task_ids:
            return []
        stmt = select(Subtask).where(Subtask.task_id.in_(task_ids)).order_by(Subtask.position)
        return list(self.session.scalars(stmt))

    def get_subtask(self, subtask_id: str) -> Optional[Subtask]:
        return self.session.get(Subtask, subtask_id)

    # === Position assignment ===
    def next_position(self, model: type[Positioned], scope_column, scope_id: str) -> int:
        """``max(position) + 1`` within one parent scope, or the origin."""
        stmt = select(func.max(model.position)).where(scope_column == scope_id)
        return positions.next_position(self.session.scalar(stmt))

    def next_board_position(self, user_id: str) -> int:
        return self.next_position(Board, Board.user_id, user_id)

    def next_column_position(self, board_id: str) -> int:
        return self.next_position(ColumnModel, ColumnModel.board_id, board_id)

    def next_task_position(self, column_id: str) -> int:
        return self.next_position(Task, Task.column_id, column_id)

    def next_subtask_position(self, task_id: str) -> int:
        return self.next_position(Subtask, Subtask.task_id, task_id)

    # === Writes ===
    def add(self, row: Positioned) -> Positioned:
        self.session.add(row)
        self.session.flush()
        return row

    def delete(self, row: Positioned) -> None:
        self.session.delete(row)
        self.session.flush()

    def apply_positions(
        self,
        assignments: Sequence[tuple[Positioned, int]],
        siblings: Iterable[Positioned] = (),
    ) -> None:
        """Write final positions through a quarantine range.

        Phase one parks every assigned row at ``final + offset``, phase two
        drops it onto ``final``. Each phase is flushed on its own so a
        per-row unique check never sees two siblings sharing a value. The
        offset clears both the assigned rows and any untouched ``siblings``.
        """
        changed = [(row, final) for row, final in assignments if row.position != final]
        if not changed:
            return
        seen = [row.position for row, _ in assignments] + [row.position for row in siblings]
        offset = positions.quarantine_offset(seen + [final for _, final in assignments])
        for row, final in changed:
            row.position = final + offset
        self.session.flush()
        for row, final in changed:
            row.position = final
        self.session.flush()

    def normalize(self, ordered: Sequence[Positioned]) -> None:
        """Renumber an ordered sibling list densely from the origin."""
        self.apply_positions(positions.normalize(ordered))

    def compact(self, remaining: Iterable[Positioned]) -> None:
        """Renumber siblings left behind by a removal."""
        self.apply_positions(positions.renumber_after_removal(remaining))

    def shift_from(self, rows: Sequence[Positioned], start: int) -> None:
        """Open a slot at ``start`` by bumping every row at or after it."""
        bumped = [(row, row.position + 1) for row in rows if row.position >= start]
        self.apply_positions(bumped, siblings=rows)
        logger.debug("Opened slot %d, shifted %d rows", start, len(bumped))
