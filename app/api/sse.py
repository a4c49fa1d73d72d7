"""Server-Sent Events framing for lesson snapshots."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable

from app.services.lesson_events import LessonSubscription
from app.services.lesson_status import is_terminal
from app.storage.lessons_repo import LessonRecord

logger = logging.getLogger(__name__)

SSE_MEDIA_TYPE = "text/event-stream"
SSE_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}

SubscriptionFactory = Callable[[], Awaitable[LessonSubscription]]


def format_event(record: LessonRecord) -> str:
  payload = json.dumps(record.to_payload(), ensure_ascii=False)
  return f"id: {record.lesson_id}:{record.version}\nevent: lesson\ndata: {payload}\n\n"


def is_final(record: LessonRecord) -> bool:
  """A client-timed-out error may still be promoted, so it does not end a lesson stream."""
  return is_terminal(record.status) and not (record.status == "error" and record.timed_out)


async def stream_snapshots(subscription: LessonSubscription, *, idle_timeout: float, stop_on_final: bool) -> AsyncIterator[str]:
  """Yield framed snapshots until the row is final, the stream idles out, or the bus closes."""
  async with subscription:
    while True:
      record = await subscription.next(timeout=idle_timeout)
      if record is None:
        if not subscription.closed:
          logger.debug("Lesson stream idle for %.0fs; closing", idle_timeout)
          yield "event: idle\ndata: {}\n\n"
        return
      yield format_event(record)
      if stop_on_final and is_final(record):
        return


async def subscribe_and_stream(subscribe: SubscriptionFactory, *, idle_timeout: float, stop_on_final: bool) -> AsyncIterator[str]:
  """Like `stream_snapshots`, but the subscription only opens when the body is first iterated.

  A response that is never sent leaves nothing registered on the bus.
  """
  subscription = await subscribe()
  frames = stream_snapshots(subscription, idle_timeout=idle_timeout, stop_on_final=stop_on_final)
  try:
    async for frame in frames:
      yield frame
  finally:
    await frames.aclose()
    subscription.close()
