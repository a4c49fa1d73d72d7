from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status

from app.api.deps import get_lesson_service, get_session_id
from app.services.lessons import LessonAccessError, LessonService, TraceNotFoundError

router = APIRouter()


@router.get("/{trace_id}")
async def get_trace(trace_id: str, session_id: str | None = Depends(get_session_id), service: LessonService = Depends(get_lesson_service)) -> dict[str, Any]:
  """Return a generation trace to the session owning its lesson."""
  try:
    trace = await service.get_trace(trace_id, session_id)
  except TraceNotFoundError as exc:
    raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Trace not found") from exc
  except LessonAccessError as exc:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden") from exc
  return trace.to_payload()
