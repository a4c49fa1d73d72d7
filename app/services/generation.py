"""Generation lifecycle: call the model backends and persist the lesson source with status transitions."""

from __future__ import annotations

import logging
from typing import Any

from app.ai.prompts import SYSTEM_PROMPT, build_user_prompt
from app.ai.providers.base import AIModel
from app.ai.providers.gemini import GeminiModel
from app.ai.providers.github_models import GitHubModelsModel
from app.codegen.exports import normalize_exports
from app.codegen.fences import extract_fenced_block, strip_module_syntax
from app.codegen.formatter import format_source
from app.config import Settings
from app.services.lesson_status import InvalidTransitionError
from app.storage.lessons_repo import LessonNotFoundError, LessonRecord, LessonsRepository, utcnow

logger = logging.getLogger(__name__)


class GenerationError(RuntimeError):
  """Raised when a lesson could not be generated; the lesson row already carries the message."""

  def __init__(self, message: str, *, lesson_id: str | None = None) -> None:
    super().__init__(message)
    self.lesson_id = lesson_id


class EmptyGenerationError(GenerationError):
  """Raised when both backends produced no usable content."""


def prepare_source(content: str, *, format_output: bool = True) -> str:
  """Turn raw model output into a bare component declaration."""
  code = extract_fenced_block(content)
  # Exports are normalized before stripping so default-export forms are still recognizable.
  code = strip_module_syntax(normalize_exports(code))
  if format_output:
    code = format_source(code)
  return code


class GenerationController:
  """Drive one lesson from `queued` to a terminal status."""

  def __init__(self, repo: LessonsRepository, *, primary: AIModel | None, fallback: AIModel | None, format_output: bool = True, max_source_chars: int = 60000) -> None:
    self._repo = repo
    self._primary = primary
    self._fallback = fallback
    self._format_output = format_output
    self._max_source_chars = max_source_chars

  async def run(self, lesson_id: str, outline: str) -> LessonRecord:
    """Generate and persist the lesson; raises GenerationError after recording a failure."""
    lesson = await self._repo.get_lesson(lesson_id)
    if lesson is None:
      raise LessonNotFoundError(lesson_id)
    trace_id = lesson.trace_id

    lesson, proceed = await self._start(lesson)
    if not proceed:
      return lesson

    try:
      content = await self.generate_content(outline or lesson.outline, trace_id=trace_id)
      source = prepare_source(content, format_output=self._format_output)
      if not source:
        raise EmptyGenerationError("Generated content was empty after removing fences and module syntax.", lesson_id=lesson_id)
      if len(source) > self._max_source_chars:
        raise GenerationError(f"Generated source exceeds {self._max_source_chars} characters.", lesson_id=lesson_id)
    except GenerationError as exc:
      await self._trace(trace_id, "failed", str(exc))
      await self.record_failure(lesson_id, str(exc))
      exc.lesson_id = lesson_id
      raise

    await self._trace(trace_id, "prepared", {"characters": len(source), "formatted": self._format_output})
    try:
      updated = await self._repo.transition(lesson_id, "generated", generated_source=source)
    except InvalidTransitionError as exc:
      # Another writer settled the row first; terminal rows are never overwritten.
      logger.warning("Discarding generated source for lesson %s: %s", lesson_id, exc)
      await self._trace(trace_id, "discarded", str(exc))
      current = await self._repo.get_lesson(lesson_id)
      return current or lesson
    except Exception as exc:  # noqa: BLE001
      message = f"Database error: {exc}"
      logger.error("Failed to persist generated source for lesson %s", lesson_id, exc_info=True)
      await self._trace(trace_id, "failed", message)
      await self.record_failure(lesson_id, message)
      raise GenerationError(message, lesson_id=lesson_id) from exc

    await self._trace(trace_id, "generated", None)
    logger.info("Lesson %s generated (%d characters)", lesson_id, len(source))
    return updated

  async def _start(self, lesson: LessonRecord) -> tuple[LessonRecord, bool]:
    """Write `generating` and report whether this run owns the lesson.

    A row already timed out by the client is generated without the write, so the result can
    still replace the timeout.
    """
    if lesson.status == "error" and lesson.timed_out:
      logger.info("Lesson %s was timed out by the client; generating anyway", lesson.lesson_id)
      await self._trace(lesson.trace_id, "generating", "after client timeout")
      return lesson, True
    try:
      started = await self._repo.transition(lesson.lesson_id, "generating")
    except InvalidTransitionError as exc:
      logger.warning("Skipping generation for lesson %s: %s", lesson.lesson_id, exc)
      return await self._repo.get_lesson(lesson.lesson_id) or lesson, False
    except Exception as exc:  # noqa: BLE001
      message = f"Database error: {exc}"
      logger.error("Failed to mark lesson %s as generating", lesson.lesson_id, exc_info=True)
      await self._trace(lesson.trace_id, "failed", message)
      await self.record_failure(lesson.lesson_id, message)
      raise GenerationError(message, lesson_id=lesson.lesson_id) from exc
    await self._trace(lesson.trace_id, "generating", None)
    return started, True

  async def generate_content(self, outline: str, *, trace_id: str | None = None) -> str:
    """Call the primary backend and, when it yields nothing usable, the fallback exactly once."""
    prompt = build_user_prompt(outline)
    primary_failure: str | None = None

    if self._primary is None:
      primary_failure = "primary backend not configured"
    else:
      try:
        response = await self._primary.generate(prompt, system=SYSTEM_PROMPT)
        content = (response.content or "").strip()
        if content:
          await self._trace(trace_id, "backend", {"backend": self._primary.provider, "model": self._primary.name, "usage": response.usage})
          return content
        primary_failure = "primary backend returned empty content"
      except Exception as exc:  # noqa: BLE001
        logger.warning("Primary backend failed: %s", exc, exc_info=True)
        primary_failure = f"primary backend failed: {exc}"

    logger.warning("Falling back to secondary backend (%s)", primary_failure)
    await self._trace(trace_id, "fallback", primary_failure)
    if self._fallback is None:
      raise EmptyGenerationError(f"No usable content: {primary_failure}; fallback backend not configured.")

    try:
      response = await self._fallback.generate(prompt, system=SYSTEM_PROMPT)
    except Exception as exc:  # noqa: BLE001
      logger.warning("Fallback backend failed: %s", exc, exc_info=True)
      raise GenerationError(f"Generation failed: {primary_failure}; fallback backend failed: {exc}") from exc

    content = (response.content or "").strip()
    if not content:
      raise EmptyGenerationError(f"Generation failed: {primary_failure}; fallback backend returned empty content.")
    await self._trace(trace_id, "backend", {"backend": self._fallback.provider, "model": self._fallback.name, "usage": response.usage})
    return content

  async def record_failure(self, lesson_id: str, message: str) -> LessonRecord | None:
    """Best-effort `error` write; never raises."""
    try:
      return await self._repo.transition(lesson_id, "error", error_message=message)
    except InvalidTransitionError as exc:
      logger.info("Lesson %s already settled; failure not recorded: %s", lesson_id, exc)
    except Exception:  # noqa: BLE001
      logger.error("Could not record failure for lesson %s", lesson_id, exc_info=True)
    return None

  async def _trace(self, trace_id: str | None, stage: str, detail: Any) -> None:
    if not trace_id:
      return
    try:
      await self._repo.append_trace_event(trace_id, {"at": utcnow().isoformat(), "stage": stage, "detail": detail})
    except Exception:  # noqa: BLE001
      logger.warning("Could not append trace event %s to %s", stage, trace_id, exc_info=True)


def build_backends(settings: Settings) -> tuple[AIModel | None, AIModel | None]:
  """Construct the configured backends; a backend missing its credentials is left out."""
  primary: AIModel | None = None
  fallback: AIModel | None = None
  try:
    primary = GitHubModelsModel(settings.primary_model, api_key=settings.primary_api_key, base_url=settings.primary_base_url, temperature=settings.primary_temperature)
  except ValueError as exc:
    logger.warning("Primary backend disabled: %s", exc)
  try:
    fallback = GeminiModel(settings.fallback_model, api_key=settings.gemini_api_key, max_output_tokens=settings.fallback_max_output_tokens, temperature=settings.fallback_temperature)
  except ValueError as exc:
    logger.warning("Fallback backend disabled: %s", exc)
  return primary, fallback


def build_generation_controller(settings: Settings, repo: LessonsRepository) -> GenerationController:
  primary, fallback = build_backends(settings)
  return GenerationController(repo, primary=primary, fallback=fallback, format_output=settings.format_generated_source, max_source_chars=settings.max_source_chars)
