"""Unit tests for the inline and local-http generation enqueuers."""

from __future__ import annotations

import asyncio
import json
from dataclasses import replace
from unittest.mock import AsyncMock

import httpx
import pytest

from app.config import get_settings
from app.services.generation import GenerationError
from app.services.tasks.factory import get_task_enqueuer
from app.services.tasks.inline import InlineTaskEnqueuer
from app.services.tasks.local import LocalHttpEnqueuer


def _settings(**overrides: object):
  get_settings.cache_clear()
  return replace(get_settings(), **overrides)


@pytest.mark.anyio
async def test_inline_enqueuer_runs_generation_off_the_request() -> None:
  runner = AsyncMock()
  enqueuer = InlineTaskEnqueuer(runner)

  await enqueuer.enqueue_generation("lesson-1", "Fractions")
  assert enqueuer.pending == 1
  await enqueuer.wait_idle()

  runner.assert_awaited_once_with("lesson-1", "Fractions")
  assert enqueuer.pending == 0


@pytest.mark.anyio
async def test_inline_enqueuer_contains_generation_failures() -> None:
  runner = AsyncMock(side_effect=GenerationError("empty", lesson_id="lesson-1"))
  enqueuer = InlineTaskEnqueuer(runner)

  await enqueuer.enqueue_generation("lesson-1", "Fractions")
  await enqueuer.wait_idle()

  runner.assert_awaited_once()


@pytest.mark.anyio
async def test_inline_enqueuer_reports_crashes_outside_the_controller() -> None:
  runner = AsyncMock(side_effect=RuntimeError("connection reset"))
  on_failure = AsyncMock()
  enqueuer = InlineTaskEnqueuer(runner, on_failure=on_failure)

  await enqueuer.enqueue_generation("lesson-1", "Fractions")
  await enqueuer.wait_idle()

  on_failure.assert_awaited_once_with("lesson-1", "Generation crashed: connection reset")


@pytest.mark.anyio
async def test_inline_enqueuer_leaves_recorded_generation_failures_alone() -> None:
  on_failure = AsyncMock()
  enqueuer = InlineTaskEnqueuer(AsyncMock(side_effect=GenerationError("empty", lesson_id="lesson-1")), on_failure=on_failure)

  await enqueuer.enqueue_generation("lesson-1", "Fractions")
  await enqueuer.wait_idle()

  on_failure.assert_not_awaited()


@pytest.mark.anyio
async def test_inline_enqueuer_cancels_pending_work_on_close() -> None:
  started = asyncio.Event()

  async def _forever(lesson_id: str, outline: str) -> None:
    started.set()
    await asyncio.sleep(3600)

  enqueuer = InlineTaskEnqueuer(_forever)
  await enqueuer.enqueue_generation("lesson-1", "Fractions")
  await started.wait()
  await enqueuer.aclose()

  assert enqueuer.pending == 0


@pytest.mark.anyio
async def test_local_enqueuer_posts_to_generation_surface(monkeypatch: pytest.MonkeyPatch) -> None:
  """Verify that the local enqueuer posts to the internal endpoint with the task secret."""
  seen: list[httpx.Request] = []

  def _handler(request: httpx.Request) -> httpx.Response:
    seen.append(request)
    return httpx.Response(200, json={"success": True, "lessonId": "lesson-1", "message": "Lesson generated successfully"})

  settings = _settings(base_url="http://forge.test", task_secret="test-task-secret")
  enqueuer = LocalHttpEnqueuer(settings)
  monkeypatch.setattr(enqueuer, "_build_client", lambda base_url: httpx.AsyncClient(transport=httpx.MockTransport(_handler)))

  await enqueuer.enqueue_generation("lesson-1", "Fractions")
  await asyncio.gather(*list(enqueuer._tasks))

  assert len(seen) == 1
  assert str(seen[0].url) == "http://forge.test/internal/generate-lesson"
  assert seen[0].headers["authorization"] == "Bearer test-task-secret"
  assert json.loads(seen[0].content) == {"lessonId": "lesson-1", "outline": "Fractions"}


@pytest.mark.anyio
async def test_local_enqueuer_reports_failed_dispatch(monkeypatch: pytest.MonkeyPatch) -> None:
  on_failure = AsyncMock()
  settings = _settings(base_url="http://forge.test", task_secret=None)
  enqueuer = LocalHttpEnqueuer(settings, on_failure=on_failure)
  monkeypatch.setattr(enqueuer, "_build_client", lambda base_url: httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(500, json={"success": False, "error": "boom"}))))

  await enqueuer.enqueue_generation("lesson-1", "Fractions")
  await asyncio.gather(*list(enqueuer._tasks))

  on_failure.assert_awaited_once_with("lesson-1", "Generation dispatch failed with status 500.")


@pytest.mark.anyio
async def test_local_enqueuer_requires_base_url() -> None:
  enqueuer = LocalHttpEnqueuer(_settings(base_url=None))

  with pytest.raises(RuntimeError, match="FORGE_BASE_URL"):
    await enqueuer.enqueue_generation("lesson-1", "Fractions")


def test_local_enqueuer_routes_loopback_in_process() -> None:
  enqueuer = LocalHttpEnqueuer(_settings(base_url="http://127.0.0.1:8080"))

  assert enqueuer._should_use_asgi_transport("http://127.0.0.1:8080")
  assert not enqueuer._should_use_asgi_transport("https://forge.example.com")


def test_factory_selects_enqueuer_by_provider() -> None:
  runner = AsyncMock()

  assert isinstance(get_task_enqueuer(_settings(task_service_provider="inline"), runner), InlineTaskEnqueuer)
  assert isinstance(get_task_enqueuer(_settings(task_service_provider="local-http", base_url="http://forge.test"), runner), LocalHttpEnqueuer)
