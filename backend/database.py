import logging
import os
import sqlite3
import subprocess
import uuid
from contextlib import contextmanager
from typing import Optional

from config import load_settings
from errors import ErrorCode, create_error
from models import Task, TaskCreate
from time_utils import get_jst_now, to_jst_iso_string

logger = logging.getLogger(__name__)

DATABASE_PATH = load_settings().database_path

TASK_STATUSES = ("inbox", "scheduled", "done", "archived")
DEFAULT_STATUSES = ("inbox", "scheduled")


@contextmanager
def get_db():
    """Context manager for database connections. sqlite3 errors surface as DATABASE_ERROR."""
    conn = sqlite3.connect(DATABASE_PATH)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    except sqlite3.Error as e:
        logger.error("Database error: %s", e)
        raise create_error(ErrorCode.DATABASE_ERROR, str(e)) from e
    finally:
        conn.close()


def init_db():
    """Initialize database by running Alembic migrations."""
    # Run alembic upgrade from the backend directory
    backend_dir = os.path.dirname(os.path.abspath(__file__))
    subprocess.run(
        ["alembic", "-x", f"db_path={os.path.abspath(DATABASE_PATH)}", "upgrade", "head"],
        cwd=backend_dir,
        check=True
    )


def _now() -> str:
    return to_jst_iso_string(get_jst_now())


def _row_to_task(row) -> Task:
    """Convert a database row to a Task model."""
    return Task(
        id=row["id"],
        user_id=row["user_id"],
        title=row["title"],
        category=row["category"],
        deadline=row["deadline"],
        scheduled_at=row["scheduled_at"],
        duration_minutes=row["duration_minutes"],
        status=row["status"],
        raw_input=row["raw_input"],
        completed_at=row["completed_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def create_task_db(user_id: str, data: TaskCreate) -> Task:
    """Insert a task.
    Title is trimmed and required. A task with scheduled_at starts as 'scheduled',
    otherwise it goes to the inbox. raw_input defaults to the title.
    """
    title = (data.title or "").strip()
    if not title:
        raise create_error(ErrorCode.INVALID_INPUT, "Task title is required")

    task_id = str(uuid.uuid4())
    now = _now()
    status = "scheduled" if data.scheduled_at else "inbox"
    raw_input = data.raw_input or title

    with get_db() as conn:
        conn.execute(
            """INSERT INTO tasks
               (id, user_id, title, category, deadline, scheduled_at, duration_minutes, status, raw_input, completed_at, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, NULL, ?, ?)""",
            (task_id, user_id, title, data.category or "other", data.deadline, data.scheduled_at,
             data.duration_minutes, status, raw_input, now, now)
        )
        conn.commit()

    logger.info("Created task %s (%s) for user %s", task_id, status, user_id)
    return Task(
        id=task_id,
        user_id=user_id,
        title=title,
        category=data.category or "other",
        deadline=data.deadline,
        scheduled_at=data.scheduled_at,
        duration_minutes=data.duration_minutes,
        status=status,
        raw_input=raw_input,
        completed_at=None,
        created_at=now,
        updated_at=now,
    )


def get_task_db(task_id: str) -> Optional[Task]:
    with get_db() as conn:
        row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        if row:
            return _row_to_task(row)
    return None


def get_tasks_db(user_id: str, statuses: Optional[list[str]] = None) -> list[Task]:
    """Tasks of one user, inbox and scheduled by default."""
    statuses = list(statuses or DEFAULT_STATUSES)
    placeholders = ", ".join("?" for _ in statuses)
    with get_db() as conn:
        rows = conn.execute(
            f"""
            SELECT * FROM tasks
            WHERE user_id = ? AND status IN ({placeholders})
            ORDER BY
                CASE status
                    WHEN 'inbox' THEN 1
                    WHEN 'scheduled' THEN 2
                    WHEN 'done' THEN 3
                    ELSE 4
                END,
                scheduled_at IS NULL,
                scheduled_at,
                created_at
            """,
            (user_id, *statuses)
        ).fetchall()
        return [_row_to_task(row) for row in rows]


def update_task_status_db(task_id: str, status: str) -> Task:
    """Set the status. completed_at is stamped for 'done' and cleared otherwise."""
    if status not in TASK_STATUSES:
        raise create_error(ErrorCode.INVALID_INPUT, f"Invalid task status: {status}")

    now = _now()
    completed_at = now if status == "done" else None
    with get_db() as conn:
        cursor = conn.execute(
            "UPDATE tasks SET status = ?, completed_at = ?, updated_at = ? WHERE id = ?",
            (status, completed_at, now, task_id)
        )
        conn.commit()
        if cursor.rowcount == 0:
            raise create_error(ErrorCode.TASK_NOT_FOUND, f"Task not found: {task_id}")
        row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return _row_to_task(row)


def schedule_task_db(task_id: str, scheduled_at: str) -> Task:
    """Set scheduled_at and move the task to 'scheduled'."""
    if not scheduled_at:
        raise create_error(ErrorCode.INVALID_INPUT, "scheduled_at is required")

    now = _now()
    with get_db() as conn:
        cursor = conn.execute(
            "UPDATE tasks SET scheduled_at = ?, status = 'scheduled', updated_at = ? WHERE id = ?",
            (scheduled_at, now, task_id)
        )
        conn.commit()
        if cursor.rowcount == 0:
            raise create_error(ErrorCode.TASK_NOT_FOUND, f"Task not found: {task_id}")
        row = conn.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
        return _row_to_task(row)


class SqliteTaskRepository:
    """TaskRepository over the module-level sqlite functions."""

    def create(self, user_id: str, data: TaskCreate) -> Task:
        return create_task_db(user_id, data)

    def get_tasks(self, user_id: str, statuses: Optional[list[str]] = None) -> list[Task]:
        return get_tasks_db(user_id, statuses)

    def update_status(self, task_id: str, status: str) -> Task:
        return update_task_status_db(task_id, status)

    def schedule(self, task_id: str, scheduled_at: str) -> Task:
        return schedule_task_db(task_id, scheduled_at)

    def get_task(self, task_id: str) -> Optional[Task]:
        return get_task_db(task_id)
