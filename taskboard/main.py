from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from .auth import get_current_user
from .config import VERSION, get_settings
from .db import Board, ColumnModel, Subtask, Task, get_session, init_db
from .errors import KanbanError
from .log import setup_logging
from .models import (
    BoardCreate,
    BoardUpdate,
    ColumnCreate,
    ColumnUpdate,
    ReorderRequest,
    SubtaskCreate,
    SubtaskUpdate,
    TaskCreate,
    TaskMove,
    TaskUpdate,
)
from .schemas import (
    BoardOut,
    BoardWithColumns,
    ColumnOut,
    ColumnWithTasks,
    Envelope,
    Health,
    SubtaskOut,
    TaskOut,
    TaskWithSubtasks,
    Version,
)
from .services import BoardService, BoardTree, ColumnService, SubtaskService, TaskService

logger = logging.getLogger(__name__)

API_PREFIX = "/v1"


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(get_settings().log_level)
    init_db()
    yield


app = FastAPI(title="Taskboard API", version=VERSION, lifespan=lifespan)


# === Helpers ===


def board_out(board: Board) -> BoardOut:
    return BoardOut(
        id=board.id,
        userId=board.user_id,
        name=board.name,
        isDefault=board.is_default,
        position=board.position,
        createdAt=board.created_at,
        updatedAt=board.updated_at,
    )


def column_out(column: ColumnModel) -> ColumnOut:
    return ColumnOut(
        id=column.id,
        boardId=column.board_id,
        name=column.name,
        color=column.color,
        position=column.position,
        createdAt=column.created_at,
        updatedAt=column.updated_at,
    )


def task_out(task: Task) -> TaskOut:
    return TaskOut(
        id=task.id,
        boardId=task.board_id,
        columnId=task.column_id,
        title=task.title,
        description=task.description,
        status=task.status,
        priority=task.priority,
        dueDate=task.due_date,
        position=task.position,
        createdAt=task.created_at,
        updatedAt=task.updated_at,
    )


def subtask_out(subtask: Subtask) -> SubtaskOut:
    return SubtaskOut(
        id=subtask.id,
        taskId=subtask.task_id,
        title=subtask.title,
        completed=subtask.completed,
        position=subtask.position,
        createdAt=subtask.created_at,
        updatedAt=subtask.updated_at,
    )


def task_with_subtasks(task: Task, subtasks: list[Subtask]) -> TaskWithSubtasks:
    return TaskWithSubtasks(
        **task_out(task).model_dump(),
        subtasks=[subtask_out(s) for s in subtasks],
    )


def board_tree_out(tree: BoardTree) -> BoardWithColumns:
    columns = [
        ColumnWithTasks(
            **column_out(column).model_dump(),
            tasks=[
                task_with_subtasks(task, tree.subtasks.get(task.id, []))
                for task in tree.tasks.get(column.id, [])
            ],
        )
        for column in tree.columns
    ]
    return BoardWithColumns(**board_out(tree.board).model_dump(), columns=columns)


def ok(data: Any = None, message: Optional[str] = None) -> dict:
    body = Envelope(data=data, message=message).model_dump(mode="json")
    return {key: value for key, value in body.items() if value is not None}


def board_service(
    session: Session = Depends(get_session), user: str = Depends(get_current_user)
) -> BoardService:
    return BoardService(session, user)


def column_service(
    session: Session = Depends(get_session), user: str = Depends(get_current_user)
) -> ColumnService:
    return ColumnService(session, user)


def task_service(
    session: Session = Depends(get_session), user: str = Depends(get_current_user)
) -> TaskService:
    return TaskService(session, user)


def subtask_service(
    session: Session = Depends(get_session), user: str = Depends(get_current_user)
) -> SubtaskService:
    return SubtaskService(session, user)


# === Error mapping ===


@app.exception_handler(KanbanError)
async def kanban_error_handler(request: Request, exc: KanbanError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={"error": f"{location}: {message}" if location else message},
    )


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# === Health & metadata ===


@app.get(f"{API_PREFIX}/health", response_model=Health)
def health() -> Health:
    return Health()


@app.get(f"{API_PREFIX}/version", response_model=Version)
def version() -> Version:
    return Version(version=VERSION)


# === Board endpoints ===


@app.get(f"{API_PREFIX}/boards")
def list_boards(service: BoardService = Depends(board_service)):
    boards = [board_out(b) for b in service.list_boards()]
    return ok(boards, "Boards retrieved successfully")


@app.post(f"{API_PREFIX}/boards", status_code=201)
def create_board(payload: BoardCreate, service: BoardService = Depends(board_service)):
    board = service.create_board(payload.name, payload.isDefault, payload.columns)
    return ok(board_out(board), "Board created successfully")


@app.post(f"{API_PREFIX}/boards/reorder")
def reorder_boards(payload: ReorderRequest, service: BoardService = Depends(board_service)):
    service.reorder_boards(payload.items)
    return ok(message="Boards reordered successfully")


@app.get(f"{API_PREFIX}/boards/{{board_id}}")
def get_board(board_id: str, service: BoardService = Depends(board_service)):
    return ok(board_tree_out(service.get_board(board_id)), "Board retrieved successfully")


@app.put(f"{API_PREFIX}/boards/{{board_id}}")
def update_board(board_id: str, payload: BoardUpdate, service: BoardService = Depends(board_service)):
    service.update_board(
        board_id,
        name=payload.name,
        is_default=payload.isDefault,
        position=payload.position,
        columns=payload.columns,
    )
    return ok(board_tree_out(service.get_board(board_id)), "Board updated successfully")


@app.delete(f"{API_PREFIX}/boards/{{board_id}}")
def delete_board(board_id: str, service: BoardService = Depends(board_service)):
    service.delete_board(board_id)
    return ok(message="Board deleted successfully")


@app.post(f"{API_PREFIX}/boards/{{board_id}}/default")
def set_default_board(board_id: str, service: BoardService = Depends(board_service)):
    service.set_default_board(board_id)
    return ok(message="Default board set successfully")


# === Column endpoints ===


@app.get(f"{API_PREFIX}/columns")
def list_columns(boardId: str = Query(...), service: ColumnService = Depends(column_service)):
    columns = [column_out(c) for c in service.list_columns(boardId)]
    return ok(columns, "Columns retrieved successfully")


@app.post(f"{API_PREFIX}/columns", status_code=201)
def create_column(
    payload: ColumnCreate,
    boardId: str = Query(...),
    service: ColumnService = Depends(column_service),
):
    column = service.create_column(boardId, payload.name, payload.color)
    return ok(column_out(column), "Column created successfully")


@app.post(f"{API_PREFIX}/columns/reorder")
def reorder_columns(
    payload: ReorderRequest,
    boardId: str = Query(...),
    service: ColumnService = Depends(column_service),
):
    service.reorder_columns(boardId, payload.items)
    return ok(message="Columns reordered successfully")


@app.put(f"{API_PREFIX}/columns/{{column_id}}")
def update_column(column_id: str, payload: ColumnUpdate, service: ColumnService = Depends(column_service)):
    column = service.update_column(column_id, payload.name, payload.color, payload.position)
    return ok(column_out(column), "Column updated successfully")


@app.delete(f"{API_PREFIX}/columns/{{column_id}}")
def delete_column(column_id: str, service: ColumnService = Depends(column_service)):
    service.delete_column(column_id)
    return ok(message="Column deleted successfully")


# === Task endpoints ===


@app.get(f"{API_PREFIX}/tasks")
def list_tasks(columnId: str = Query(...), service: TaskService = Depends(task_service)):
    tasks = [task_out(t) for t in service.list_tasks(columnId)]
    return ok(tasks, "Tasks retrieved successfully")


@app.post(f"{API_PREFIX}/tasks", status_code=201)
def create_task(
    payload: TaskCreate,
    boardId: str = Query(...),
    service: TaskService = Depends(task_service),
):
    task, subtasks = service.create_task(
        boardId,
        payload.columnId,
        payload.title,
        description=payload.description,
        status=payload.status,
        priority=payload.priority,
        due_date=payload.dueDate,
        subtasks=payload.subtasks,
    )
    return ok(task_with_subtasks(task, subtasks), "Task created successfully")


@app.post(f"{API_PREFIX}/tasks/reorder")
def reorder_tasks(
    payload: ReorderRequest,
    columnId: str = Query(...),
    service: TaskService = Depends(task_service),
):
    service.reorder_tasks(columnId, payload.items)
    return ok(message="Tasks reordered successfully")


@app.get(f"{API_PREFIX}/tasks/{{task_id}}")
def get_task(task_id: str, service: TaskService = Depends(task_service)):
    task, subtasks = service.get_task(task_id)
    return ok(task_with_subtasks(task, subtasks), "Task retrieved successfully")


@app.put(f"{API_PREFIX}/tasks/{{task_id}}")
def update_task(task_id: str, payload: TaskUpdate, service: TaskService = Depends(task_service)):
    task = service.update_task(
        task_id,
        column_id=payload.columnId,
        title=payload.title,
        description=payload.description,
        status=payload.status,
        priority=payload.priority,
        due_date=payload.dueDate,
        position=payload.position,
    )
    return ok(task_out(task), "Task updated successfully")


@app.post(f"{API_PREFIX}/tasks/{{task_id}}/move")
def move_task(task_id: str, payload: TaskMove, service: TaskService = Depends(task_service)):
    task = service.move_task(task_id, payload.columnId, payload.position)
    return ok(task_out(task), "Task moved successfully")


@app.delete(f"{API_PREFIX}/tasks/{{task_id}}")
def delete_task(task_id: str, service: TaskService = Depends(task_service)):
    service.delete_task(task_id)
    return ok(message="Task deleted successfully")


# === Subtask endpoints ===


@app.get(f"{API_PREFIX}/subtasks")
def list_subtasks(taskId: str = Query(...), service: SubtaskService = Depends(subtask_service)):
    subtasks = [subtask_out(s) for s in service.list_subtasks(taskId)]
    return ok(subtasks, "Subtasks retrieved successfully")


@app.post(f"{API_PREFIX}/subtasks", status_code=201)
def create_subtask(
    payload: SubtaskCreate,
    taskId: str = Query(...),
    service: SubtaskService = Depends(subtask_service),
):
    subtask = service.create_subtask(taskId, payload.title, payload.completed)
    return ok(subtask_out(subtask), "Subtask created successfully")


@app.post(f"{API_PREFIX}/subtasks/reorder")
def reorder_subtasks(
    payload: ReorderRequest,
    taskId: str = Query(...),
    service: SubtaskService = Depends(subtask_service),
):
    service.reorder_subtasks(taskId, payload.items)
    return ok(message="Subtasks reordered successfully")


@app.put(f"{API_PREFIX}/subtasks/{{subtask_id}}")
def update_subtask(subtask_id: str, payload: SubtaskUpdate, service: SubtaskService = Depends(subtask_service)):
    subtask = service.update_subtask(subtask_id, payload.title, payload.completed, payload.position)
    return ok(subtask_out(subtask), "Subtask updated successfully")


@app.delete(f"{API_PREFIX}/subtasks/{{subtask_id}}")
def delete_subtask(subtask_id: str, service: SubtaskService = Depends(subtask_service)):
    service.delete_subtask(subtask_id)
    return ok(message="Subtask deleted successfully")
