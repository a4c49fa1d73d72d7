"""In-process change feed for lesson rows.

Every successful lesson write is published as a full-row snapshot. Subscribers filter by lesson id
or by owning session and consume snapshots as an async iterator. A subscription only ever yields
increasing versions per lesson, so a late publish of an older snapshot never looks like a status
regression to the viewer.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Final

from app.storage.lessons_repo import LessonRecord

logger = logging.getLogger(__name__)

_CLOSED: Final = object()


class LessonSubscription:
  """One registered listener; use as an async context manager so deregistration always happens."""

  def __init__(self, bus: LessonEventBus, *, lesson_id: str | None, session_id: str | None, max_pending: int) -> None:
    if lesson_id is None and session_id is None:
      raise ValueError("A subscription needs a lesson_id or a session_id filter.")
    self._bus = bus
    self.lesson_id = lesson_id
    self.session_id = session_id
    self._queue: asyncio.Queue[object] = asyncio.Queue(maxsize=max_pending)
    self._last_versions: dict[str, int] = {}
    self._closed = False

  @property
  def closed(self) -> bool:
    return self._closed

  def matches(self, record: LessonRecord) -> bool:
    if self.lesson_id is not None and record.lesson_id != self.lesson_id:
      return False
    return self.session_id is None or record.session_id == self.session_id

  def offer(self, record: LessonRecord) -> bool:
    """Queue a snapshot if it matches and is newer than what this subscriber already has."""
    if self._closed or not self.matches(record):
      return False
    if record.version <= self._last_versions.get(record.lesson_id, 0):
      return False

    self._last_versions[record.lesson_id] = record.version
    if self._queue.full():
      # Slow consumers lose the oldest snapshot; the newest row state is what matters.
      self._queue.get_nowait()
      logger.warning("Dropped a pending lesson snapshot for a slow subscriber (lesson=%s session=%s)", self.lesson_id, self.session_id)
    self._queue.put_nowait(record)
    return True

  def prime(self, record: LessonRecord) -> None:
    """Seed the subscription with the row as fetched at subscribe time."""
    self.offer(record)

  async def next(self, timeout: float | None = None) -> LessonRecord | None:
    """Wait for the next snapshot; None when the subscription closed or the wait timed out."""
    if self._closed and self._queue.empty():
      return None
    try:
      item = await asyncio.wait_for(self._queue.get(), timeout=timeout)
    except TimeoutError:
      return None
    if item is _CLOSED:
      return None
    return item  # type: ignore[return-value]

  def close(self) -> None:
    """Deregister from the bus and wake any pending reader."""
    if self._closed:
      return
    self._closed = True
    self._bus._discard(self)
    if self._queue.full():
      self._queue.get_nowait()
    self._queue.put_nowait(_CLOSED)

  def __aiter__(self) -> AsyncIterator[LessonRecord]:
    return self._iterate()

  async def _iterate(self) -> AsyncIterator[LessonRecord]:
    while True:
      record = await self.next()
      if record is None:
        return
      yield record

  async def __aenter__(self) -> LessonSubscription:
    return self

  async def __aexit__(self, *exc_info: object) -> None:
    self.close()


class LessonEventBus:
  """Fan-out of lesson snapshots to subscriptions living in this process."""

  def __init__(self, *, max_pending: int = 100) -> None:
    self._subscriptions: set[LessonSubscription] = set()
    self._max_pending = max_pending

  @property
  def subscriber_count(self) -> int:
    return len(self._subscriptions)

  def subscribe(self, *, lesson_id: str | None = None, session_id: str | None = None) -> LessonSubscription:
    subscription = LessonSubscription(self, lesson_id=lesson_id, session_id=session_id, max_pending=self._max_pending)
    self._subscriptions.add(subscription)
    logger.debug("Lesson subscription opened lesson=%s session=%s", lesson_id, session_id)
    return subscription

  def publish(self, record: LessonRecord) -> int:
    """Deliver a snapshot to every matching subscription and return how many accepted it."""
    delivered = 0
    for subscription in list(self._subscriptions):
      if subscription.offer(record):
        delivered += 1
    return delivered

  def close_all(self) -> None:
    for subscription in list(self._subscriptions):
      subscription.close()

  def _discard(self, subscription: LessonSubscription) -> None:
    self._subscriptions.discard(subscription)
    logger.debug("Lesson subscription closed lesson=%s session=%s", subscription.lesson_id, subscription.session_id)
