from __future__ import annotations

import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class Lesson(Base):
  __tablename__ = "lessons"

  id: Mapped[str] = mapped_column(String, primary_key=True)
  session_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
  outline: Mapped[str] = mapped_column(Text, nullable=False)
  title: Mapped[str | None] = mapped_column(Text, nullable=True)
  description: Mapped[str | None] = mapped_column(Text, nullable=True)
  content_type: Mapped[str | None] = mapped_column(String, nullable=True)
  status: Mapped[str] = mapped_column(String, nullable=False, default="queued")
  generated_source: Mapped[str | None] = mapped_column(Text, nullable=True)
  error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
  timed_out: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  trace_id: Mapped[str | None] = mapped_column(String, nullable=True, unique=True)
  version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
  created_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
  updated_at: Mapped[datetime.datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

  __table_args__ = (
    Index("ix_lessons_session_created", "session_id", "created_at"),
    CheckConstraint("status IN ('queued', 'generating', 'generated', 'error')", name="ck_lessons_status"),
    # Source exists exactly when generated, an error message exactly when errored.
    CheckConstraint("(status = 'generated') = (generated_source IS NOT NULL)", name="ck_lessons_source_iff_generated"),
    CheckConstraint("(status = 'error') = (error_message IS NOT NULL)", name="ck_lessons_error_iff_error"),
    CheckConstraint("timed_out = false OR status = 'error'", name="ck_lessons_timed_out_only_on_error"),
  )
