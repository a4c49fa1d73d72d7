from __future__ import annotations

from app.config import Settings
from app.services.tasks.inline import GenerationRunner, InlineTaskEnqueuer
from app.services.tasks.interface import TaskEnqueuer
from app.services.tasks.local import DispatchFailureHandler, LocalHttpEnqueuer


def get_task_enqueuer(settings: Settings, runner: GenerationRunner, *, on_failure: DispatchFailureHandler | None = None) -> TaskEnqueuer:
  """Factory to get the configured task enqueuer."""
  if settings.task_service_provider == "local-http":
    return LocalHttpEnqueuer(settings, on_failure=on_failure)
  return InlineTaskEnqueuer(runner, on_failure=on_failure)
