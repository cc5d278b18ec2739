import uuid
from datetime import datetime, timezone


def new_uuid() -> str:
    return str(uuid.uuid4())


def now_utc() -> datetime:
    return datetime.now(tz=timezone.utc)


def derive_status(column_name: str) -> str:
    """Map a column name onto the task status it implies.

    Tasks carry a denormalized copy of their column's meaning so that
    clients can filter without joining on columns.
    """
    name = column_name.strip().lower()
    if "done" in name or "complete" in name:
        return "done"
    if "doing" in name or "progress" in name or "review" in name:
        return "doing"
    return "todo"
