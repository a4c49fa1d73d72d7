from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from app.services.generation import GenerationError
from app.services.tasks.interface import TaskEnqueuer
from app.services.tasks.local import DispatchFailureHandler

logger = logging.getLogger(__name__)

GenerationRunner = Callable[[str, str], Awaitable[object]]


class InlineTaskEnqueuer(TaskEnqueuer):
  """Runs generation as a detached asyncio task in this process."""

  def __init__(self, runner: GenerationRunner, *, on_failure: DispatchFailureHandler | None = None) -> None:
    self._runner = runner
    self._on_failure = on_failure
    # The loop keeps only weak references to tasks; hold them until they finish.
    self._tasks: set[asyncio.Task[None]] = set()

  @property
  def pending(self) -> int:
    return len(self._tasks)

  async def enqueue_generation(self, lesson_id: str, outline: str) -> None:
    task = asyncio.create_task(self._run(lesson_id, outline), name=f"generate-lesson-{lesson_id}")
    self._tasks.add(task)
    task.add_done_callback(self._tasks.discard)
    logger.info("Scheduled inline generation for lesson %s", lesson_id)

  async def _run(self, lesson_id: str, outline: str) -> None:
    try:
      await self._runner(lesson_id, outline)
    except GenerationError as exc:
      logger.warning("Generation for lesson %s failed: %s", lesson_id, exc)
    except asyncio.CancelledError:
      logger.warning("Inline generation for lesson %s was cancelled", lesson_id)
      raise
    except Exception as exc:  # noqa: BLE001
      # The controller records its own failures; anything else still has to settle the row.
      logger.error("Inline generation for lesson %s crashed", lesson_id, exc_info=True)
      if self._on_failure is not None:
        await self._on_failure(lesson_id, f"Generation crashed: {exc}")

  async def wait_idle(self) -> None:
    """Wait for every scheduled generation to finish."""
    while self._tasks:
      await asyncio.gather(*list(self._tasks), return_exceptions=True)

  async def aclose(self) -> None:
    for task in list(self._tasks):
      task.cancel()
    if self._tasks:
      await asyncio.gather(*list(self._tasks), return_exceptions=True)
