"""Viewer client for the lesson service.

Submits outlines, follows lesson snapshots over Server-Sent Events, applies the client-side
timeout policy and renders generated source locally with the codegen pipeline.

Timeout policy, measured from submission: at the soft threshold the caller is warned once; at the
hard threshold the client writes the timeout to the server and stops waiting; every HTTP call made
while waiting is aborted at the abort threshold.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from typing import Any

import httpx

from app.codegen.pipeline import RenderResult, compile_and_run_async
from app.config import Settings

logger = logging.getLogger(__name__)

SESSION_HEADER = "X-Session-Id"
_FINAL_STATUSES = frozenset({"generated", "error"})
RESUBSCRIBE_DELAY_SECONDS = 0.25


class LessonClientError(RuntimeError):
  """Raised when the lesson service answers with an error status."""

  def __init__(self, message: str, *, status_code: int | None = None) -> None:
    super().__init__(message)
    self.status_code = status_code


@dataclass(frozen=True)
class ClientTimeouts:
  soft_seconds: float = 60.0
  hard_seconds: float = 120.0
  abort_seconds: float = 125.0

  def __post_init__(self) -> None:
    if not 0 < self.soft_seconds < self.hard_seconds <= self.abort_seconds:
      raise ValueError("Client timeouts must satisfy 0 < soft < hard <= abort.")

  @classmethod
  def from_settings(cls, settings: Settings) -> ClientTimeouts:
    return cls(soft_seconds=settings.client_soft_timeout_seconds, hard_seconds=settings.client_hard_timeout_seconds, abort_seconds=settings.client_abort_timeout_seconds)


@dataclass
class WaitOutcome:
  """How waiting for a lesson ended."""

  lesson: dict[str, Any]
  warned: bool = False
  timed_out: bool = False

  @property
  def status(self) -> str:
    return str(self.lesson.get("status"))


def is_final_snapshot(lesson: dict[str, Any]) -> bool:
  """Generated, or errored for a reason other than this client's own timeout."""
  status = lesson.get("status")
  return status in _FINAL_STATUSES and not (status == "error" and lesson.get("timedOut"))


async def iter_sse_events(lines: AsyncIterator[str]) -> AsyncIterator[tuple[str, str]]:
  """Parse an SSE line stream into `(event, data)` pairs."""
  event = "message"
  data: list[str] = []
  async for line in lines:
    if line == "":
      if data:
        yield event, "\n".join(data)
      event, data = "message", []
      continue
    if line.startswith(":"):
      continue
    field, _, value = line.partition(":")
    value = value[1:] if value.startswith(" ") else value
    if field == "event":
      event = value
    elif field == "data":
      data.append(value)
  if data:
    yield event, "\n".join(data)


class LessonsClient:
  """Async HTTP client bound to one viewer session."""

  def __init__(self, base_url: str, *, session_id: str | None = None, timeouts: ClientTimeouts | None = None, render_timeout_seconds: float = 20.0, transport: httpx.AsyncBaseTransport | None = None) -> None:
    self.session_id = session_id
    self.timeouts = timeouts or ClientTimeouts()
    self._render_timeout_seconds = render_timeout_seconds
    self._http = httpx.AsyncClient(base_url=base_url.rstrip("/"), transport=transport, timeout=httpx.Timeout(self.timeouts.abort_seconds), trust_env=False)

  async def __aenter__(self) -> LessonsClient:
    return self

  async def __aexit__(self, *exc_info: object) -> None:
    await self.aclose()

  async def aclose(self) -> None:
    await self._http.aclose()

  def _headers(self) -> dict[str, str]:
    return {SESSION_HEADER: self.session_id} if self.session_id else {}

  async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
    response = await self._http.request(method, path, headers=self._headers(), **kwargs)
    if response.status_code >= 400:
      try:
        detail = response.json().get("detail")
      except (json.JSONDecodeError, AttributeError):
        detail = response.text
      raise LessonClientError(f"{method} {path} failed with {response.status_code}: {detail}", status_code=response.status_code)
    return response.json()

  async def submit(self, outline: str | None = None, *, title: str | None = None, description: str | None = None, content_type: str | None = None) -> dict[str, Any]:
    """Submit an outline (or the title/description/type variant) and adopt the returned session."""
    body: dict[str, Any] = {"outline": outline} if outline else {"title": title, "description": description, "type": content_type}
    lesson = await self._request("POST", "/v1/lessons", json=body)
    self.session_id = lesson.get("sessionId") or self.session_id
    return lesson

  async def list_lessons(self) -> list[dict[str, Any]]:
    return await self._request("GET", "/v1/lessons")

  async def get_lesson(self, lesson_id: str) -> dict[str, Any]:
    return await self._request("GET", f"/v1/lessons/{lesson_id}")

  async def get_trace(self, trace_id: str) -> dict[str, Any]:
    return await self._request("GET", f"/v1/traces/{trace_id}")

  async def mark_timed_out(self, lesson_id: str, seconds: float) -> dict[str, Any]:
    return await self._request("POST", f"/v1/lessons/{lesson_id}/timeout", json={"seconds": seconds})

  async def watch(self, lesson_id: str) -> AsyncIterator[dict[str, Any]]:
    """Yield lesson snapshots as the server publishes them."""
    async with self._http.stream("GET", f"/v1/lessons/{lesson_id}/events", headers=self._headers()) as response:
      if response.status_code >= 400:
        await response.aread()
        raise LessonClientError(f"Lesson stream failed with {response.status_code}", status_code=response.status_code)
      async for event, data in iter_sse_events(response.aiter_lines()):
        if event == "lesson":
          yield json.loads(data)

  async def wait_for_lesson(self, lesson_id: str, *, started_at: float | None = None, on_warning: Callable[[str], object] | None = None) -> WaitOutcome:
    """Follow a lesson until it settles or the hard timeout fires."""
    started_at = time.monotonic() if started_at is None else started_at
    outcome = WaitOutcome(lesson={"id": lesson_id, "status": "queued"})

    def _warn() -> None:
      outcome.warned = True
      logger.warning("Lesson %s is still generating after %.0fs", lesson_id, self.timeouts.soft_seconds)
      if on_warning is not None:
        on_warning(f"Generation is taking longer than {self.timeouts.soft_seconds:g} seconds.")

    loop = asyncio.get_running_loop()
    soft_delay = max(0.0, self.timeouts.soft_seconds - (time.monotonic() - started_at))
    warning_handle = loop.call_later(soft_delay, _warn)

    async def _follow() -> None:
      while True:
        async for snapshot in self.watch(lesson_id):
          outcome.lesson = snapshot
          if is_final_snapshot(snapshot):
            return
        # The stream idled out or closed before the lesson settled; check the row, then resubscribe.
        outcome.lesson = await self.get_lesson(lesson_id)
        if is_final_snapshot(outcome.lesson):
          return
        logger.debug("Lesson %s stream ended while %s; resubscribing", lesson_id, outcome.lesson.get("status"))
        await asyncio.sleep(RESUBSCRIBE_DELAY_SECONDS)

    remaining = max(0.0, self.timeouts.hard_seconds - (time.monotonic() - started_at))
    try:
      await asyncio.wait_for(_follow(), timeout=remaining)
    except TimeoutError:
      outcome.timed_out = True
      logger.warning("Lesson %s hit the %.0fs client timeout", lesson_id, self.timeouts.hard_seconds)
      outcome.lesson = await self.mark_timed_out(lesson_id, self.timeouts.hard_seconds)
    finally:
      warning_handle.cancel()
    return outcome

  async def generate(self, outline: str, *, on_warning: Callable[[str], object] | None = None) -> WaitOutcome:
    """Submit an outline and wait for the lesson under the client timeout policy."""
    started_at = time.monotonic()
    lesson = await self.submit(outline)
    return await self.wait_for_lesson(lesson["id"], started_at=started_at, on_warning=on_warning)

  async def render(self, lesson: dict[str, Any]) -> RenderResult | None:
    """Render generated source locally; None while the lesson has no source."""
    source = lesson.get("generatedSource")
    if lesson.get("status") != "generated" or not source:
      return None
    return await compile_and_run_async(source, timeout_seconds=self._render_timeout_seconds)
