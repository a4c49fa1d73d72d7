from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import HTMLResponse, JSONResponse, StreamingResponse

from app.api.deps import get_event_bus, get_lesson_service, get_session_id, require_session_id
from app.api.models import CreateLessonRequest, LessonTimeoutRequest
from app.api.sse import SSE_HEADERS, SSE_MEDIA_TYPE, subscribe_and_stream
from app.codegen.html import error_card, pending_view, render_html
from app.config import Settings, get_settings
from app.services.lesson_events import LessonEventBus, LessonSubscription
from app.services.lessons import LessonAccessError, LessonService, LessonValidationError, build_submission
from app.storage.lessons_repo import LessonNotFoundError
from app.utils.ids import generate_session_id

router = APIRouter()
logger = logging.getLogger(__name__)


def _lesson_http_error(exc: Exception) -> HTTPException:
  if isinstance(exc, LessonAccessError):
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
  return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lesson not found")


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_lesson(
  payload: CreateLessonRequest,
  session_id: str | None = Depends(get_session_id),
  service: LessonService = Depends(get_lesson_service),
) -> Any:
  """Queue a lesson and return it immediately; generation continues in the background."""
  session_id = session_id or generate_session_id()
  try:
    submission = build_submission(outline=payload.outline, title=payload.title, description=payload.description, content_type=payload.content_type)
  except LessonValidationError as exc:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

  try:
    lesson = await service.submit(session_id, submission)
  except Exception as exc:  # noqa: BLE001
    logger.error("Failed to persist lesson for session %s", session_id, exc_info=True)
    return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": f"Database error: {exc}"})

  return {**lesson.to_payload(), "sessionId": session_id}


@router.get("")
async def list_lessons(
  limit: int = Query(default=50, ge=1, le=200),
  session_id: str = Depends(require_session_id),
  service: LessonService = Depends(get_lesson_service),
) -> list[dict[str, Any]]:
  lessons = await service.list_for_session(session_id, limit=limit)
  return [lesson.to_payload() for lesson in lessons]


@router.get("/events")
async def stream_session_lessons(
  session_id: str = Depends(require_session_id),
  bus: LessonEventBus = Depends(get_event_bus),
  settings: Settings = Depends(get_settings),
) -> StreamingResponse:
  """Stream snapshots for every lesson the session owns."""

  async def _subscribe() -> LessonSubscription:
    return bus.subscribe(session_id=session_id)

  body = subscribe_and_stream(_subscribe, idle_timeout=settings.events_idle_timeout_seconds, stop_on_final=False)
  return StreamingResponse(body, media_type=SSE_MEDIA_TYPE, headers=SSE_HEADERS)


@router.get("/{lesson_id}")
async def get_lesson(lesson_id: str, session_id: str | None = Depends(get_session_id), service: LessonService = Depends(get_lesson_service)) -> dict[str, Any]:
  try:
    lesson = await service.get_owned(lesson_id, session_id)
  except (LessonNotFoundError, LessonAccessError) as exc:
    raise _lesson_http_error(exc) from exc
  return lesson.to_payload()


@router.get("/{lesson_id}/events")
async def stream_lesson(
  lesson_id: str,
  session_id: str | None = Depends(get_session_id),
  service: LessonService = Depends(get_lesson_service),
  bus: LessonEventBus = Depends(get_event_bus),
  settings: Settings = Depends(get_settings),
) -> StreamingResponse:
  """Stream full snapshots of one lesson until it settles."""
  try:
    await service.get_owned(lesson_id, session_id)
  except (LessonNotFoundError, LessonAccessError) as exc:
    raise _lesson_http_error(exc) from exc

  async def _subscribe() -> LessonSubscription:
    # Subscribe before re-reading so no write between the read and the subscription is lost.
    subscription = bus.subscribe(lesson_id=lesson_id)
    try:
      subscription.prime(await service.get_owned(lesson_id, session_id))
    except BaseException:
      subscription.close()
      raise
    return subscription

  body = subscribe_and_stream(_subscribe, idle_timeout=settings.events_idle_timeout_seconds, stop_on_final=True)
  return StreamingResponse(body, media_type=SSE_MEDIA_TYPE, headers=SSE_HEADERS)


@router.post("/{lesson_id}/timeout")
async def timeout_lesson(
  lesson_id: str,
  payload: LessonTimeoutRequest | None = None,
  session_id: str | None = Depends(get_session_id),
  service: LessonService = Depends(get_lesson_service),
  settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
  """Record a client-side timeout; lessons that already settled are returned unchanged."""
  seconds = payload.seconds if payload and payload.seconds else settings.client_hard_timeout_seconds
  try:
    lesson = await service.mark_timed_out(lesson_id, session_id, seconds=seconds)
  except (LessonNotFoundError, LessonAccessError) as exc:
    raise _lesson_http_error(exc) from exc
  return lesson.to_payload()


@router.get("/{lesson_id}/render", response_class=HTMLResponse)
async def render_lesson(lesson_id: str, session_id: str | None = Depends(get_session_id), service: LessonService = Depends(get_lesson_service)) -> HTMLResponse:
  """Render the lesson server-side: the component, an error card, or the raw source."""
  try:
    lesson, result = await service.render(lesson_id, session_id)
  except (LessonNotFoundError, LessonAccessError) as exc:
    raise _lesson_http_error(exc) from exc

  if result is None:
    if lesson.status == "error":
      return HTMLResponse(error_card(lesson.error_message or "Generation failed", title="Generation Error"))
    return HTMLResponse(pending_view())
  return HTMLResponse(render_html(result, lesson.generated_source), headers={"X-Render-State": result.state.value})

