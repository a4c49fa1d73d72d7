"""Unit tests for the in-process lesson change feed and SSE framing."""

from __future__ import annotations

import datetime
import json
from dataclasses import replace

import pytest

from app.api.routes.lessons import stream_session_lessons
from app.api.sse import format_event, is_final, stream_snapshots, subscribe_and_stream
from app.config import get_settings
from app.services.lesson_events import LessonEventBus
from app.storage.lessons_repo import LessonRecord
from app.storage.publishing_repo import PublishingLessonsRepository
from tests.fakes import InMemoryLessonsRepo


def _record(lesson_id: str = "lesson-1", *, session_id: str = "session-1", status: str = "queued", version: int = 1, **overrides: object) -> LessonRecord:
  now = datetime.datetime(2026, 1, 1, tzinfo=datetime.UTC)
  return LessonRecord(lesson_id=lesson_id, session_id=session_id, outline="Fractions", status=status, created_at=now, updated_at=now, version=version, **overrides)  # type: ignore[arg-type]


@pytest.mark.anyio
async def test_subscription_filters_by_lesson_and_session() -> None:
  bus = LessonEventBus()
  by_lesson = bus.subscribe(lesson_id="lesson-1")
  by_session = bus.subscribe(session_id="session-2")

  bus.publish(_record("lesson-1"))
  bus.publish(_record("lesson-2", session_id="session-2"))

  assert (await by_lesson.next(timeout=0.1)).lesson_id == "lesson-1"
  assert await by_lesson.next(timeout=0.01) is None
  assert (await by_session.next(timeout=0.1)).lesson_id == "lesson-2"


def test_subscription_requires_a_filter() -> None:
  with pytest.raises(ValueError):
    LessonEventBus().subscribe()


@pytest.mark.anyio
async def test_subscription_never_yields_an_older_version() -> None:
  bus = LessonEventBus()
  subscription = bus.subscribe(lesson_id="lesson-1")

  bus.publish(_record(status="generating", version=2))
  # A stale snapshot published late must not look like a regression.
  assert bus.publish(_record(status="queued", version=1)) == 0
  bus.publish(_record(status="generated", version=3, generated_source="src"))

  versions = [(await subscription.next(timeout=0.1)).version for _ in range(2)]
  assert versions == [2, 3]


@pytest.mark.anyio
async def test_slow_subscriber_keeps_newest_snapshots() -> None:
  bus = LessonEventBus(max_pending=2)
  subscription = bus.subscribe(lesson_id="lesson-1")
  for version in (1, 2, 3):
    bus.publish(_record(version=version))

  assert (await subscription.next(timeout=0.1)).version == 2
  assert (await subscription.next(timeout=0.1)).version == 3


@pytest.mark.anyio
async def test_close_deregisters_and_wakes_reader() -> None:
  bus = LessonEventBus()
  async with bus.subscribe(lesson_id="lesson-1") as subscription:
    assert bus.subscriber_count == 1
  assert subscription.closed
  assert bus.subscriber_count == 0
  assert await subscription.next(timeout=0.1) is None


@pytest.mark.anyio
async def test_publishing_repo_publishes_every_write() -> None:
  bus = LessonEventBus()
  repo = PublishingLessonsRepository(InMemoryLessonsRepo(), bus)
  subscription = bus.subscribe(lesson_id="lesson-1")

  await repo.create_lesson(_record())
  await repo.transition("lesson-1", "generating")
  await repo.transition("lesson-1", "generated", generated_source="function LessonComponent() {}")

  statuses = [(await subscription.next(timeout=0.1)).status for _ in range(3)]
  assert statuses == ["queued", "generating", "generated"]


def test_format_event_frames_full_snapshot() -> None:
  frame = format_event(_record(status="generating", version=2))
  lines = frame.split("\n")
  assert lines[0] == "id: lesson-1:2"
  assert lines[1] == "event: lesson"
  payload = json.loads(lines[2].removeprefix("data: "))
  assert payload["status"] == "generating"
  assert payload["version"] == 2
  assert frame.endswith("\n\n")


def test_is_final_ignores_client_timeouts() -> None:
  assert is_final(_record(status="generated", generated_source="src"))
  assert is_final(_record(status="error", error_message="boom"))
  assert not is_final(_record(status="error", error_message="timed out", timed_out=True))
  assert not is_final(_record(status="generating"))


@pytest.mark.anyio
async def test_stream_snapshots_stops_on_final_snapshot() -> None:
  bus = LessonEventBus()
  subscription = bus.subscribe(lesson_id="lesson-1")
  queued = _record()
  subscription.prime(queued)
  bus.publish(replace(queued, status="generating", version=2))
  bus.publish(replace(queued, status="generated", version=3, generated_source="src"))

  frames = [frame async for frame in stream_snapshots(subscription, idle_timeout=1.0, stop_on_final=True)]

  assert len(frames) == 3
  assert '"status": "generated"' in frames[-1]
  assert bus.subscriber_count == 0


@pytest.mark.anyio
async def test_stream_snapshots_reports_idle_timeout() -> None:
  bus = LessonEventBus()
  subscription = bus.subscribe(lesson_id="lesson-1")

  frames = [frame async for frame in stream_snapshots(subscription, idle_timeout=0.05, stop_on_final=True)]

  assert frames == ["event: idle\ndata: {}\n\n"]


@pytest.mark.anyio
async def test_subscribe_and_stream_registers_nothing_until_iterated() -> None:
  bus = LessonEventBus()

  async def _subscribe():
    return bus.subscribe(lesson_id="lesson-1")

  body = subscribe_and_stream(_subscribe, idle_timeout=1.0, stop_on_final=True)
  assert bus.subscriber_count == 0
  await body.aclose()
  assert bus.subscriber_count == 0


@pytest.mark.anyio
async def test_subscribe_and_stream_closes_when_abandoned_mid_stream() -> None:
  bus = LessonEventBus()

  async def _subscribe():
    subscription = bus.subscribe(lesson_id="lesson-1")
    subscription.prime(_record())
    return subscription

  body = subscribe_and_stream(_subscribe, idle_timeout=5.0, stop_on_final=True)
  first = await body.__anext__()
  assert '"status": "queued"' in first
  assert bus.subscriber_count == 1

  await body.aclose()
  assert bus.subscriber_count == 0


@pytest.mark.anyio
async def test_unsent_session_stream_leaves_no_subscription() -> None:
  bus = LessonEventBus()
  get_settings.cache_clear()

  response = await stream_session_lessons(session_id="session-1", bus=bus, settings=get_settings())

  assert response.media_type == "text/event-stream"
  assert bus.subscriber_count == 0
  await response.body_iterator.aclose()
  assert bus.subscriber_count == 0
