from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from urllib.parse import urlparse

import httpx

from app.config import Settings
from app.services.tasks.interface import TaskEnqueuer

logger = logging.getLogger(__name__)

DispatchFailureHandler = Callable[[str, str], Awaitable[object]]


class LocalHttpEnqueuer(TaskEnqueuer):
  """Dispatches generation to the internal generation surface over HTTP.

  The POST runs in a detached task so the submission request returns as soon as the row is
  queued. When the dispatch itself fails, `on_failure(lesson_id, message)` records it.
  """

  def __init__(self, settings: Settings, *, on_failure: DispatchFailureHandler | None = None) -> None:
    self.settings = settings
    self._on_failure = on_failure
    self._tasks: set[asyncio.Task[None]] = set()

  def _should_use_asgi_transport(self, base_url: str) -> bool:
    """Decide if the request can be routed in-process via ASGITransport."""
    parsed = urlparse(base_url)
    hostname = (parsed.hostname or "").lower()
    return hostname in {"localhost", "127.0.0.1", "::1", "0.0.0.0"}

  def _build_client(self, base_url: str) -> httpx.AsyncClient:
    # Internal dispatch never goes through environment proxies.
    if self._should_use_asgi_transport(base_url):
      from app.main import app

      transport = httpx.ASGITransport(app=app)
      return httpx.AsyncClient(transport=transport, base_url=base_url, trust_env=False)
    return httpx.AsyncClient(trust_env=False)

  def _task_headers(self) -> dict[str, str]:
    if not self.settings.task_secret:
      return {}
    return {"authorization": f"Bearer {self.settings.task_secret}"}

  async def enqueue_generation(self, lesson_id: str, outline: str) -> None:
    if not self.settings.base_url:
      raise RuntimeError("FORGE_BASE_URL is required for the local-http task provider.")

    task = asyncio.create_task(self._dispatch(lesson_id, outline), name=f"dispatch-lesson-{lesson_id}")
    self._tasks.add(task)
    task.add_done_callback(self._tasks.discard)

  async def _dispatch(self, lesson_id: str, outline: str) -> None:
    url = f"{self.settings.base_url.rstrip('/')}/internal/generate-lesson"
    try:
      async with self._build_client(self.settings.base_url) as client:
        logger.info("Dispatching lesson %s to %s", lesson_id, url)
        response = await client.post(url, json={"lessonId": lesson_id, "outline": outline}, headers=self._task_headers(), timeout=300.0)
        response.raise_for_status()

    except httpx.HTTPStatusError as e:
      logger.error("Generation dispatch returned %s for lesson %s: %s", e.response.status_code, lesson_id, e.response.text)
      await self._report_failure(lesson_id, f"Generation dispatch failed with status {e.response.status_code}.")
    except httpx.RequestError as e:
      logger.error("Failed to dispatch generation for lesson %s: %s", lesson_id, e)
      await self._report_failure(lesson_id, f"Generation dispatch failed: {e}")

  async def _report_failure(self, lesson_id: str, message: str) -> None:
    if self._on_failure is None:
      return
    try:
      await self._on_failure(lesson_id, message)
    except Exception:  # noqa: BLE001
      logger.warning("Could not record dispatch failure for lesson %s", lesson_id, exc_info=True)

  async def aclose(self) -> None:
    for task in list(self._tasks):
      task.cancel()
    if self._tasks:
      await asyncio.gather(*list(self._tasks), return_exceptions=True)
