"""create_lessons_and_traces

Revision ID: 5f1c2a7d9e01
Revises:
Create Date: 2026-10-17 09:12:41.204113

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5f1c2a7d9e01"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
  """Upgrade schema."""
  op.create_table(
    "lessons",
    sa.Column("id", sa.String(), nullable=False),
    sa.Column("session_id", sa.String(), nullable=False),
    sa.Column("outline", sa.Text(), nullable=False),
    sa.Column("title", sa.Text(), nullable=True),
    sa.Column("description", sa.Text(), nullable=True),
    sa.Column("content_type", sa.String(), nullable=True),
    sa.Column("status", sa.String(), nullable=False),
    sa.Column("generated_source", sa.Text(), nullable=True),
    sa.Column("error_message", sa.Text(), nullable=True),
    sa.Column("timed_out", sa.Boolean(), nullable=False, server_default=sa.false()),
    sa.Column("trace_id", sa.String(), nullable=True),
    sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.PrimaryKeyConstraint("id"),
    sa.UniqueConstraint("trace_id"),
    sa.CheckConstraint("status IN ('queued', 'generating', 'generated', 'error')", name="ck_lessons_status"),
    sa.CheckConstraint("(status = 'generated') = (generated_source IS NOT NULL)", name="ck_lessons_source_iff_generated"),
    sa.CheckConstraint("(status = 'error') = (error_message IS NOT NULL)", name="ck_lessons_error_iff_error"),
    sa.CheckConstraint("timed_out = false OR status = 'error'", name="ck_lessons_timed_out_only_on_error"),
  )
  op.create_index("ix_lessons_session_id", "lessons", ["session_id"])
  op.create_index("ix_lessons_session_created", "lessons", ["session_id", "created_at"])

  op.create_table(
    "traces",
    sa.Column("trace_id", sa.String(), nullable=False),
    sa.Column("lesson_id", sa.String(), nullable=False),
    sa.Column("events", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'[]'::jsonb")),
    sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    sa.ForeignKeyConstraint(["lesson_id"], ["lessons.id"], ondelete="CASCADE"),
    sa.PrimaryKeyConstraint("trace_id"),
  )
  op.create_index("ix_traces_lesson_id", "traces", ["lesson_id"])


def downgrade() -> None:
  """Downgrade schema."""
  op.drop_index("ix_traces_lesson_id", table_name="traces")
  op.drop_table("traces")
  op.drop_index("ix_lessons_session_created", table_name="lessons")
  op.drop_index("ix_lessons_session_id", table_name="lessons")
  op.drop_table("lessons")
