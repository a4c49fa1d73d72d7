"""Lesson request service: submission, ownership-checked reads, client timeouts and rendering."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from app.codegen.pipeline import RenderResult, compile_and_run_async
from app.services.lesson_status import InvalidTransitionError, is_terminal, timeout_message
from app.services.tasks.interface import TaskEnqueuer
from app.storage.lessons_repo import LessonNotFoundError, LessonRecord, LessonsRepository, TraceRecord, utcnow
from app.utils.ids import generate_lesson_id, generate_trace_id

logger = logging.getLogger(__name__)


class LessonAccessError(PermissionError):
  """Raised when a session asks for a lesson it does not own."""

  def __init__(self, lesson_id: str) -> None:
    super().__init__(f"Lesson {lesson_id} belongs to another session.")
    self.lesson_id = lesson_id


class LessonValidationError(ValueError):
  """Raised when a submission is missing required fields."""


class TraceNotFoundError(LookupError):
  def __init__(self, trace_id: str) -> None:
    super().__init__(f"Trace {trace_id} not found.")
    self.trace_id = trace_id


@dataclass(frozen=True)
class LessonSubmission:
  outline: str
  title: str | None = None
  description: str | None = None
  content_type: str | None = None


def _clean(value: str | None) -> str | None:
  if value is None:
    return None
  value = value.strip()
  return value or None


def build_submission(*, outline: str | None = None, title: str | None = None, description: str | None = None, content_type: str | None = None) -> LessonSubmission:
  """Accept either an outline or the title/description/type variant."""
  outline = _clean(outline)
  if outline:
    return LessonSubmission(outline=outline, title=_clean(title), description=_clean(description), content_type=_clean(content_type))

  title, description, content_type = _clean(title), _clean(description), _clean(content_type)
  if title is None and description is None and content_type is None:
    raise LessonValidationError("Missing required field: outline")
  missing = [name for name, value in (("title", title), ("description", description), ("type", content_type)) if value is None]
  if missing:
    raise LessonValidationError(f"Missing required fields: {', '.join(missing)}")

  folded = f"{title}\n\n{description}\n\nLesson type: {content_type}"
  return LessonSubmission(outline=folded, title=title, description=description, content_type=content_type)


class LessonService:
  """Operations behind the lesson HTTP surfaces."""

  def __init__(self, repo: LessonsRepository, enqueuer: TaskEnqueuer, *, render_timeout_seconds: float = 20.0) -> None:
    self._repo = repo
    self._enqueuer = enqueuer
    self._render_timeout_seconds = render_timeout_seconds

  async def submit(self, session_id: str, submission: LessonSubmission) -> LessonRecord:
    """Persist a queued lesson, then hand it to the task enqueuer without waiting for generation."""
    now = utcnow()
    record = LessonRecord(
      lesson_id=generate_lesson_id(),
      session_id=session_id,
      outline=submission.outline,
      status="queued",
      created_at=now,
      updated_at=now,
      title=submission.title,
      description=submission.description,
      content_type=submission.content_type,
      trace_id=generate_trace_id(),
    )
    lesson = await self._repo.create_lesson(record)

    try:
      await self._repo.create_trace(TraceRecord(trace_id=lesson.trace_id, lesson_id=lesson.lesson_id, events=[{"at": now.isoformat(), "stage": "queued", "detail": None}]))
    except Exception:  # noqa: BLE001
      logger.warning("Could not create trace for lesson %s", lesson.lesson_id, exc_info=True)

    try:
      await self._enqueuer.enqueue_generation(lesson.lesson_id, lesson.outline)
    except Exception as exc:  # noqa: BLE001
      logger.error("Failed to enqueue generation for lesson %s", lesson.lesson_id, exc_info=True)
      try:
        return await self._repo.transition(lesson.lesson_id, "error", error_message=f"Failed to start generation: {exc}")
      except Exception:  # noqa: BLE001
        logger.error("Could not record enqueue failure for lesson %s", lesson.lesson_id, exc_info=True)
    logger.info("Lesson %s queued for session %s", lesson.lesson_id, session_id)
    return lesson

  async def list_for_session(self, session_id: str, *, limit: int = 50) -> list[LessonRecord]:
    return await self._repo.list_lessons(session_id, limit=limit)

  async def get_owned(self, lesson_id: str, session_id: str | None) -> LessonRecord:
    lesson = await self._repo.get_lesson(lesson_id)
    if lesson is None:
      raise LessonNotFoundError(lesson_id)
    if lesson.session_id != session_id:
      raise LessonAccessError(lesson_id)
    return lesson

  async def mark_timed_out(self, lesson_id: str, session_id: str | None, *, seconds: float) -> LessonRecord:
    """Client-declared timeout: only a lesson still in flight moves to `error`."""
    lesson = await self.get_owned(lesson_id, session_id)
    if is_terminal(lesson.status):
      return lesson
    try:
      updated = await self._repo.transition(lesson_id, "error", error_message=timeout_message(seconds), timed_out=True)
    except InvalidTransitionError:
      # The server settled the row between the read and the write.
      return await self.get_owned(lesson_id, session_id)
    logger.info("Lesson %s timed out on the client after %ss", lesson_id, seconds)
    return updated

  async def get_trace(self, trace_id: str, session_id: str | None) -> TraceRecord:
    """Fetch a trace; ownership is checked through the lesson it belongs to."""
    trace = await self._repo.get_trace(trace_id)
    if trace is None:
      raise TraceNotFoundError(trace_id)
    lesson = await self._repo.get_lesson(trace.lesson_id)
    if lesson is None or lesson.session_id != session_id:
      raise LessonAccessError(trace.lesson_id)
    return trace

  async def render(self, lesson_id: str, session_id: str | None) -> tuple[LessonRecord, RenderResult | None]:
    """Render the generated source; None when the lesson has no source yet."""
    lesson = await self.get_owned(lesson_id, session_id)
    if lesson.status != "generated" or not lesson.generated_source:
      return lesson, None
    result = await compile_and_run_async(lesson.generated_source, timeout_seconds=self._render_timeout_seconds)
    logger.info("Rendered lesson %s: state=%s attempts=%d", lesson_id, result.state.value, result.attempts)
    return lesson, result
