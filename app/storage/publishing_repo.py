"""Repository decorator that publishes every lesson write to the change feed."""

from __future__ import annotations

from typing import Any

from app.services.lesson_events import LessonEventBus
from app.storage.lessons_repo import LessonRecord, LessonsRepository, TraceRecord


class PublishingLessonsRepository(LessonsRepository):
  """Wrap a repository so row mutations reach subscribers as full snapshots."""

  def __init__(self, inner: LessonsRepository, bus: LessonEventBus) -> None:
    self._inner = inner
    self._bus = bus

  @property
  def bus(self) -> LessonEventBus:
    return self._bus

  async def create_lesson(self, record: LessonRecord) -> LessonRecord:
    created = await self._inner.create_lesson(record)
    self._bus.publish(created)
    return created

  async def get_lesson(self, lesson_id: str) -> LessonRecord | None:
    return await self._inner.get_lesson(lesson_id)

  async def list_lessons(self, session_id: str, *, limit: int = 50) -> list[LessonRecord]:
    return await self._inner.list_lessons(session_id, limit=limit)

  async def transition(self, lesson_id: str, status: str, *, generated_source: str | None = None, error_message: str | None = None, timed_out: bool = False) -> LessonRecord:
    updated = await self._inner.transition(lesson_id, status, generated_source=generated_source, error_message=error_message, timed_out=timed_out)
    self._bus.publish(updated)
    return updated

  async def create_trace(self, record: TraceRecord) -> TraceRecord:
    return await self._inner.create_trace(record)

  async def append_trace_event(self, trace_id: str, event: dict[str, Any]) -> None:
    await self._inner.append_trace_event(trace_id, event)

  async def get_trace(self, trace_id: str) -> TraceRecord | None:
    return await self._inner.get_trace(trace_id)
