"""Initial schema - tasks table

Revision ID: 001
Revises: None
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
from sqlalchemy import text

revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    conn = op.get_bind()

    conn.execute(text("""
        CREATE TABLE IF NOT EXISTS tasks (
            id TEXT PRIMARY KEY,
            user_id TEXT NOT NULL,
            title TEXT NOT NULL,
            category TEXT NOT NULL DEFAULT 'other',
            deadline TEXT,
            scheduled_at TEXT,
            duration_minutes INTEGER,
            status TEXT NOT NULL DEFAULT 'inbox',
            raw_input TEXT,
            completed_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """))

    # Task lists are always read per user and status
    conn.execute(text(
        "CREATE INDEX IF NOT EXISTS idx_tasks_user_status ON tasks (user_id, status)"
    ))


def downgrade() -> None:
    conn = op.get_bind()
    conn.execute(text("DROP INDEX IF EXISTS idx_tasks_user_status"))
    conn.execute(text("DROP TABLE IF EXISTS tasks"))
