from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel


class Envelope(BaseModel):
    data: Optional[Any] = None
    error: Optional[str] = None
    message: Optional[str] = None


class Health(BaseModel):
    status: str = "ok"


class Version(BaseModel):
    version: str


class SubtaskOut(BaseModel):
    id: str
    taskId: str
    title: str
    completed: bool
    position: int
    createdAt: datetime
    updatedAt: datetime


class TaskOut(BaseModel):
    id: str
    boardId: str
    columnId: str
    title: str
    description: Optional[str]
    status: str
    priority: int
    dueDate: Optional[datetime]
    position: int
    createdAt: datetime
    updatedAt: datetime


class TaskWithSubtasks(TaskOut):
    subtasks: list[SubtaskOut]


class ColumnOut(BaseModel):
    id: str
    boardId: str
    name: str
    color: str
    position: int
    createdAt: datetime
    updatedAt: datetime


class ColumnWithTasks(ColumnOut):
    tasks: list[TaskWithSubtasks]


class BoardOut(BaseModel):
    id: str
    userId: str
    name: str
    isDefault: bool
    position: int
    createdAt: datetime
    updatedAt: datetime


class BoardWithColumns(BoardOut):
    columns: list[ColumnWithTasks]
