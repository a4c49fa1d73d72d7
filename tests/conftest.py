"""Test configuration: environment and an app wired with in-memory doubles."""

from __future__ import annotations

import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

# Ensure required settings are available before importing the app.
os.environ.setdefault("FORGE_ALLOWED_ORIGINS", "http://localhost")
os.environ.setdefault("FORGE_TASK_SERVICE_PROVIDER", "inline")
os.environ.pop("FORGE_TASK_SECRET", None)

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from app.config import get_settings  # noqa: E402
from app.main import create_app  # noqa: E402
from app.services.generation import GenerationController  # noqa: E402
from app.services.lesson_events import LessonEventBus  # noqa: E402
from app.services.lessons import LessonService  # noqa: E402
from app.services.tasks.inline import InlineTaskEnqueuer  # noqa: E402
from app.storage.publishing_repo import PublishingLessonsRepository  # noqa: E402
from tests.fakes import VALID_COMPONENT, FakeModel, InMemoryLessonsRepo  # noqa: E402


@pytest.fixture
def anyio_backend() -> str:
  return "asyncio"


@pytest.fixture
def repo() -> InMemoryLessonsRepo:
  return InMemoryLessonsRepo()


@pytest.fixture
def bus() -> LessonEventBus:
  return LessonEventBus()


@pytest.fixture
def primary() -> FakeModel:
  return FakeModel(VALID_COMPONENT, name="openai/gpt-4.1", provider="github-models")


@pytest.fixture
def fallback() -> FakeModel:
  return FakeModel(VALID_COMPONENT, name="gemini-2.0-flash", provider="gemini")


@pytest.fixture
def wired_app(repo: InMemoryLessonsRepo, bus: LessonEventBus, primary: FakeModel, fallback: FakeModel):
  """App with every app-scoped component replaced by in-memory doubles."""
  get_settings.cache_clear()
  application = create_app()
  publishing = PublishingLessonsRepository(repo, bus)
  controller = GenerationController(publishing, primary=primary, fallback=fallback, format_output=False)
  enqueuer = InlineTaskEnqueuer(controller.run, on_failure=controller.record_failure)
  application.state.event_bus = bus
  application.state.lessons_repo = publishing
  application.state.generation_controller = controller
  application.state.task_enqueuer = enqueuer
  application.state.lesson_service = LessonService(publishing, enqueuer, render_timeout_seconds=30.0)
  return application


@pytest.fixture
async def async_client(wired_app):
  async with AsyncClient(transport=ASGITransport(app=wired_app), base_url="http://test") as client:
    yield client
  await wired_app.state.task_enqueuer.aclose()
