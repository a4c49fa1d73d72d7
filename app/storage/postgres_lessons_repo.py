"""Postgres-backed repository for lesson requests using SQLAlchemy."""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.schema.lessons import Lesson
from app.schema.traces import Trace
from app.services.lesson_status import InvalidTransitionError, allowed_sources
from app.storage.lessons_repo import LessonNotFoundError, LessonRecord, LessonsRepository, TraceRecord, transition_values

logger = logging.getLogger(__name__)


class PostgresLessonsRepository(LessonsRepository):
  """Persist lesson requests and traces to Postgres using SQLAlchemy."""

  def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
    self._session_factory = session_factory

  async def create_lesson(self, record: LessonRecord) -> LessonRecord:
    """Insert a lesson row and return it with database timestamps."""
    async with self._session_factory() as session:
      lesson = Lesson(
        id=record.lesson_id,
        session_id=record.session_id,
        outline=record.outline,
        title=record.title,
        description=record.description,
        content_type=record.content_type,
        status=record.status,
        generated_source=record.generated_source,
        error_message=record.error_message,
        timed_out=record.timed_out,
        trace_id=record.trace_id,
        version=record.version,
        created_at=record.created_at,
        updated_at=record.updated_at,
      )
      session.add(lesson)
      await session.commit()
      return self._model_to_record(lesson)

  async def get_lesson(self, lesson_id: str) -> LessonRecord | None:
    """Fetch a lesson row by id."""
    async with self._session_factory() as session:
      lesson = await session.get(Lesson, lesson_id)
      if lesson is None:
        return None
      return self._model_to_record(lesson)

  async def list_lessons(self, session_id: str, *, limit: int = 50) -> list[LessonRecord]:
    """Return a session's lessons, newest first."""
    async with self._session_factory() as session:
      stmt = select(Lesson).where(Lesson.session_id == session_id).order_by(Lesson.created_at.desc()).limit(limit)
      result = await session.execute(stmt)
      return [self._model_to_record(lesson) for lesson in result.scalars().all()]

  async def transition(self, lesson_id: str, status: str, *, generated_source: str | None = None, error_message: str | None = None, timed_out: bool = False) -> LessonRecord:
    """Compare-and-set the status so concurrent writers cannot regress a row."""
    values = transition_values(status, generated_source=generated_source, error_message=error_message, timed_out=timed_out)
    condition = Lesson.status.in_(sorted(allowed_sources(status)))
    if status == "generated":
      # A client-declared timeout may still be overtaken by the server's result.
      condition = or_(condition, and_(Lesson.status == "error", Lesson.timed_out.is_(True)))

    stmt = (
      update(Lesson)
      .where(Lesson.id == lesson_id, condition)
      .values(**values, version=Lesson.version + 1, updated_at=func.now())
      .returning(Lesson)
      .execution_options(synchronize_session=False)
    )
    async with self._session_factory() as session:
      result = await session.execute(stmt)
      lesson = result.scalar_one_or_none()
      if lesson is None:
        await session.rollback()
        current = await session.get(Lesson, lesson_id)
        if current is None:
          raise LessonNotFoundError(lesson_id)
        raise InvalidTransitionError(lesson_id, current.status, status)

      record = self._model_to_record(lesson)
      await session.commit()
      logger.info("Lesson %s moved to %s (version=%s)", lesson_id, status, record.version)
      return record

  async def create_trace(self, record: TraceRecord) -> TraceRecord:
    """Insert a trace row."""
    async with self._session_factory() as session:
      trace = Trace(trace_id=record.trace_id, lesson_id=record.lesson_id, events=list(record.events))
      session.add(trace)
      await session.commit()
      return self._trace_to_record(trace)

  async def append_trace_event(self, trace_id: str, event: dict[str, Any]) -> None:
    """Append an event to the trace's JSON list."""
    async with self._session_factory() as session:
      stmt = select(Trace).where(Trace.trace_id == trace_id).with_for_update()
      trace = (await session.execute(stmt)).scalar_one_or_none()
      if trace is None:
        raise LookupError(f"Trace {trace_id} not found.")
      # Reassign the list so SQLAlchemy flags the JSON column as dirty.
      trace.events = [*trace.events, event]
      await session.commit()

  async def get_trace(self, trace_id: str) -> TraceRecord | None:
    """Fetch a trace row by id."""
    async with self._session_factory() as session:
      trace = await session.get(Trace, trace_id)
      if trace is None:
        return None
      return self._trace_to_record(trace)

  def _model_to_record(self, lesson: Lesson) -> LessonRecord:
    return LessonRecord(
      lesson_id=lesson.id,
      session_id=lesson.session_id,
      outline=lesson.outline,
      status=lesson.status,
      created_at=lesson.created_at,
      updated_at=lesson.updated_at,
      title=lesson.title,
      description=lesson.description,
      content_type=lesson.content_type,
      generated_source=lesson.generated_source,
      error_message=lesson.error_message,
      timed_out=bool(lesson.timed_out),
      trace_id=lesson.trace_id,
      version=int(lesson.version),
    )

  def _trace_to_record(self, trace: Trace) -> TraceRecord:
    return TraceRecord(trace_id=trace.trace_id, lesson_id=trace.lesson_id, events=list(trace.events or []), created_at=trace.created_at, updated_at=trace.updated_at)
