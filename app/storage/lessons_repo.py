"""Storage interfaces and records for lesson request persistence."""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field, replace
from typing import Any, Protocol

from app.services.lesson_status import InvalidTransitionError, can_transition


class LessonNotFoundError(LookupError):
  """Raised when a lesson id does not resolve to a stored row."""

  def __init__(self, lesson_id: str) -> None:
    super().__init__(f"Lesson {lesson_id} not found.")
    self.lesson_id = lesson_id


@dataclass(frozen=True)
class LessonRecord:
  """Record stored in the lessons table."""

  lesson_id: str
  session_id: str
  outline: str
  status: str
  created_at: datetime.datetime
  updated_at: datetime.datetime
  title: str | None = None
  description: str | None = None
  content_type: str | None = None
  generated_source: str | None = None
  error_message: str | None = None
  timed_out: bool = False
  trace_id: str | None = None
  version: int = 1

  def to_payload(self) -> dict[str, Any]:
    """Serialize the record for API responses and change events."""
    return {
      "id": self.lesson_id,
      "sessionId": self.session_id,
      "outline": self.outline,
      "title": self.title,
      "description": self.description,
      "contentType": self.content_type,
      "status": self.status,
      "generatedSource": self.generated_source,
      "errorMessage": self.error_message,
      "timedOut": self.timed_out,
      "traceId": self.trace_id,
      "version": self.version,
      "createdAt": self.created_at.isoformat(),
      "updatedAt": self.updated_at.isoformat(),
    }


@dataclass(frozen=True)
class TraceRecord:
  """Diagnostic record for one generation run."""

  trace_id: str
  lesson_id: str
  events: list[dict[str, Any]] = field(default_factory=list)
  created_at: datetime.datetime | None = None
  updated_at: datetime.datetime | None = None

  def to_payload(self) -> dict[str, Any]:
    return {
      "traceId": self.trace_id,
      "lessonId": self.lesson_id,
      "events": list(self.events),
      "createdAt": self.created_at.isoformat() if self.created_at else None,
      "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
    }


def utcnow() -> datetime.datetime:
  return datetime.datetime.now(datetime.UTC)


def transition_values(status: str, *, generated_source: str | None = None, error_message: str | None = None, timed_out: bool = False) -> dict[str, Any]:
  """Column values written together with a status so the row invariant always holds."""
  if status == "generated":
    if not generated_source:
      raise ValueError("A generated lesson requires non-empty source.")
    return {"status": status, "generated_source": generated_source, "error_message": None, "timed_out": False}

  if status == "error":
    if not error_message:
      raise ValueError("An errored lesson requires an error message.")
    return {"status": status, "generated_source": None, "error_message": error_message, "timed_out": timed_out}

  return {"status": status, "generated_source": None, "error_message": None, "timed_out": False}


def apply_transition(record: LessonRecord, status: str, *, generated_source: str | None = None, error_message: str | None = None, timed_out: bool = False) -> LessonRecord:
  """Return the record after a validated status write."""
  if not can_transition(record.status, status, timed_out=record.timed_out):
    raise InvalidTransitionError(record.lesson_id, record.status, status)

  values = transition_values(status, generated_source=generated_source, error_message=error_message, timed_out=timed_out)
  return replace(record, **values, version=record.version + 1, updated_at=utcnow())


class LessonsRepository(Protocol):
  """Repository contract for lesson request persistence."""

  async def create_lesson(self, record: LessonRecord) -> LessonRecord:
    """Persist a new lesson request in the queued state."""

  async def get_lesson(self, lesson_id: str) -> LessonRecord | None:
    """Fetch a lesson by identifier."""

  async def list_lessons(self, session_id: str, *, limit: int = 50) -> list[LessonRecord]:
    """Return lessons owned by a session, newest first."""

  async def transition(self, lesson_id: str, status: str, *, generated_source: str | None = None, error_message: str | None = None, timed_out: bool = False) -> LessonRecord:
    """Move a lesson to a new status atomically, raising when the move is not allowed."""

  async def create_trace(self, record: TraceRecord) -> TraceRecord:
    """Persist a new trace row."""

  async def append_trace_event(self, trace_id: str, event: dict[str, Any]) -> None:
    """Append one diagnostic event to a trace."""

  async def get_trace(self, trace_id: str) -> TraceRecord | None:
    """Fetch a trace by identifier."""
