from __future__ import annotations

from typing import Protocol


class TaskEnqueuer(Protocol):
  """Interface for dispatching lesson generation off the request path."""

  async def enqueue_generation(self, lesson_id: str, outline: str) -> None:
    """Schedule generation for a queued lesson and return without waiting for it."""
    ...

  async def aclose(self) -> None:
    """Release pending work and resources at shutdown."""
    ...
