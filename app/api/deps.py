"""Shared FastAPI dependencies: the viewer session and app-scoped services."""

from __future__ import annotations

import secrets

from fastapi import Header, HTTPException, Request, status

from app.config import get_settings
from app.services.generation import GenerationController
from app.services.lesson_events import LessonEventBus
from app.services.lessons import LessonService

SESSION_HEADER = "X-Session-Id"


def get_session_id(x_session_id: str | None = Header(default=None, alias=SESSION_HEADER)) -> str | None:
  """Return the caller's session id, or None when the header is absent."""
  if x_session_id is None:
    return None
  return x_session_id.strip() or None


def require_session_id(x_session_id: str | None = Header(default=None, alias=SESSION_HEADER)) -> str:
  session_id = get_session_id(x_session_id)
  if session_id is None:
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Missing {SESSION_HEADER} header")
  return session_id


def _state_attr(request: Request, name: str) -> object:
  value = getattr(request.app.state, name, None)
  if value is None:
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service is starting up")
  return value


def get_event_bus(request: Request) -> LessonEventBus:
  return _state_attr(request, "event_bus")  # type: ignore[return-value]


def get_lesson_service(request: Request) -> LessonService:
  return _state_attr(request, "lesson_service")  # type: ignore[return-value]


def get_generation_controller(request: Request) -> GenerationController:
  return _state_attr(request, "generation_controller")  # type: ignore[return-value]


def verify_task_secret(authorization: str | None = Header(default=None)) -> None:
  """Guard internal endpoints with the shared task secret when one is configured."""
  secret = get_settings().task_secret
  if not secret:
    return
  expected = f"Bearer {secret}"
  if authorization is None or not secrets.compare_digest(authorization, expected):
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid task credentials")
