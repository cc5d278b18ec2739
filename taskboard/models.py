"""Request payloads accepted by the HTTP API."""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

TaskStatus = Literal["todo", "doing", "done"]


# === Ordering ===


class ReorderItem(BaseModel):
    id: str = Field(min_length=1)
    position: int = Field(ge=0)


class ReorderRequest(BaseModel):
    items: list[ReorderItem]


# === Boards ===


class BoardColumnIn(BaseModel):
    """One entry of a board's full column list.

    Existing columns carry ``id``; new ones set ``isNew`` (or omit ``id``).
    ``position`` orders the list; when absent the input order is used.
    """

    id: Optional[str] = None
    name: str = Field(min_length=1, max_length=80)
    color: Optional[str] = Field(default=None, max_length=32)
    position: Optional[int] = Field(default=None, ge=0)
    isNew: bool = False


class BoardCreate(BaseModel):
    name: str = Field(min_length=1, max_length=140)
    isDefault: bool = False
    columns: Optional[list[BoardColumnIn]] = None


class BoardUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=140)
    isDefault: Optional[bool] = None
    position: Optional[int] = Field(default=None, ge=0)
    columns: Optional[list[BoardColumnIn]] = None


# === Columns ===


class ColumnCreate(BaseModel):
    name: str = Field(min_length=1, max_length=80)
    color: Optional[str] = Field(default=None, max_length=32)


class ColumnUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=80)
    color: Optional[str] = Field(default=None, max_length=32)
    position: Optional[int] = Field(default=None, ge=0)


# === Tasks ===


class SubtaskCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    completed: bool = False


class SubtaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    completed: Optional[bool] = None
    position: Optional[int] = Field(default=None, ge=0)


class TaskCreate(BaseModel):
    columnId: str = Field(min_length=1)
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=8000)
    status: Optional[TaskStatus] = None
    priority: int = Field(default=0, ge=0)
    dueDate: Optional[datetime] = None
    subtasks: Optional[list[SubtaskCreate]] = None


class TaskUpdate(BaseModel):
    columnId: Optional[str] = None
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=8000)
    status: Optional[TaskStatus] = None
    priority: Optional[int] = Field(default=None, ge=0)
    dueDate: Optional[datetime] = None
    position: Optional[int] = Field(default=None, ge=0)


class TaskMove(BaseModel):
    columnId: str = Field(min_length=1)
    position: int = Field(ge=1)
