from __future__ import annotations

import enum
import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from .db import Board, ColumnModel, Subtask, Task
from .errors import NotFoundError

logger = logging.getLogger(__name__)


class ResourceKind(str, enum.Enum):
    BOARD = "board"
    COLUMN = "column"
    TASK = "task"
    SUBTASK = "subtask"


class OwnershipGuard:
    """Checks that a resource hangs off a board owned by the requesting user."""

    def __init__(self, session: Session) -> None:
        self.session = session

    def verify_ownership(self, resource_id: str, user_id: str, kind: ResourceKind) -> bool:
        """Return ``True`` only if the join path reaches the user's board.

        Missing resources and other users' resources both yield ``False``;
        this never raises for either case.
        """
        kind = ResourceKind(kind)
        if kind is ResourceKind.BOARD:
            stmt = select(Board.id).where(Board.id == resource_id, Board.user_id == user_id)
        elif kind is ResourceKind.COLUMN:
            stmt = (
                select(ColumnModel.id)
                .join(Board, ColumnModel.board_id == Board.id)
                .where(ColumnModel.id == resource_id, Board.user_id == user_id)
            )
        elif kind is ResourceKind.TASK:
            stmt = (
                select(Task.id)
                .join(Board, Task.board_id == Board.id)
                .where(Task.id == resource_id, Board.user_id == user_id)
            )
        else:
            stmt = (
                select(Subtask.id)
                .join(Task, Subtask.task_id == Task.id)
                .join(Board, Task.board_id == Board.id)
                .where(Subtask.id == resource_id, Board.user_id == user_id)
            )
        owned = self.session.scalar(stmt) is not None
        if not owned:
            logger.debug("Ownership denied: %s %s for user %s", kind.value, resource_id, user_id)
        return owned

    def require(self, resource_id: str, user_id: str, kind: ResourceKind) -> None:
        """Raise ``NotFoundError`` unless the user owns the resource."""
        if not self.verify_ownership(resource_id, user_id, kind):
            raise NotFoundError(f"{ResourceKind(kind).value.capitalize()} not found")
