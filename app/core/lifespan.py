import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

from fastapi import FastAPI

from app.core.database import get_database_handle
from app.core.logging import initialize_logging
from app.services.generation import build_generation_controller
from app.services.lesson_events import LessonEventBus
from app.services.lessons import LessonService
from app.services.tasks.factory import get_task_enqueuer
from app.storage.factory import build_lessons_repo


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
  """Build the app-scoped services on startup and release them on shutdown.

  Components already present on `app.state` are kept, so tests can inject doubles.
  """
  from app.config import get_settings

  settings = get_settings()
  logger = logging.getLogger("app.core.lifespan")

  try:
    initialize_logging(settings)
  except Exception:  # noqa: BLE001
    logger.warning("Logging setup failed; continuing with defaults.", exc_info=True)

  database = None
  state = app.state
  if getattr(state, "event_bus", None) is None:
    state.event_bus = LessonEventBus()

  if getattr(state, "lessons_repo", None) is None:
    database = get_database_handle()
    logger.info("Using Postgres at %s", _redact_dsn(settings.pg_dsn))
    state.lessons_repo = build_lessons_repo(settings, database, state.event_bus)
    if settings.auto_create_schema:
      await database.create_schema()
      logger.info("Database schema ensured.")

  if getattr(state, "generation_controller", None) is None:
    state.generation_controller = build_generation_controller(settings, state.lessons_repo)

  if getattr(state, "task_enqueuer", None) is None:
    controller = state.generation_controller
    state.task_enqueuer = get_task_enqueuer(settings, controller.run, on_failure=controller.record_failure)

  if getattr(state, "lesson_service", None) is None:
    state.lesson_service = LessonService(state.lessons_repo, state.task_enqueuer, render_timeout_seconds=settings.render_timeout_seconds)

  logger.info("Startup complete (task provider=%s).", settings.task_service_provider)
  try:
    yield
  finally:
    await state.task_enqueuer.aclose()
    state.event_bus.close_all()
    if database is not None:
      await database.dispose()
    logger.info("Shutdown complete.")


def _redact_dsn(raw: str | None) -> str:
  """Redact credentials from a DSN while keeping host/db visible."""
  if not raw:
    return "<unset>"

  parsed = urlparse(raw)
  if not parsed.scheme:
    return "<invalid>"

  user = parsed.username or ""
  host = parsed.hostname or ""
  port = f":{parsed.port}" if parsed.port else ""
  netloc = f"{user}@{host}{port}" if user else f"{host}{port}"
  database = parsed.path.lstrip("/")
  path = f"/{database}" if database else ""
  return f"{parsed.scheme}://{netloc}{path}"
