"""Unit tests for the generation lifecycle against an in-memory repository."""

from __future__ import annotations

import datetime

import pytest

from app.config import get_settings
from app.services.generation import EmptyGenerationError, GenerationController, GenerationError, build_backends
from app.services.lesson_status import is_consistent, timeout_message
from app.storage.lessons_repo import LessonNotFoundError, LessonRecord, TraceRecord
from tests.fakes import VALID_COMPONENT, FakeModel, InMemoryLessonsRepo


async def _queued(repo: InMemoryLessonsRepo, lesson_id: str = "lesson-1") -> LessonRecord:
  now = datetime.datetime.now(datetime.UTC)
  record = LessonRecord(lesson_id=lesson_id, session_id="session-1", outline="A 3-question quiz on fractions", status="queued", created_at=now, updated_at=now, trace_id=f"trace-{lesson_id}")
  await repo.create_trace(TraceRecord(trace_id=f"trace-{lesson_id}", lesson_id=lesson_id))
  return await repo.create_lesson(record)


def _stages(repo: InMemoryLessonsRepo, lesson_id: str = "lesson-1") -> list[str]:
  return [event["stage"] for event in repo.traces[f"trace-{lesson_id}"].events]


@pytest.mark.anyio
async def test_primary_success_generates_lesson(repo: InMemoryLessonsRepo) -> None:
  await _queued(repo)
  primary = FakeModel(VALID_COMPONENT)
  fallback = FakeModel(VALID_COMPONENT)
  controller = GenerationController(repo, primary=primary, fallback=fallback, format_output=False)

  lesson = await controller.run("lesson-1", "A 3-question quiz on fractions")

  assert lesson.status == "generated"
  assert lesson.generated_source.startswith("function LessonComponent() {")
  assert "import" not in lesson.generated_source
  assert repo.statuses("lesson-1") == ["queued", "generating", "generated"]
  assert primary.calls == 1
  assert fallback.calls == 0
  assert "A 3-question quiz on fractions" in primary.prompts[0]
  assert _stages(repo) == ["generating", "backend", "prepared", "generated"]


@pytest.mark.anyio
async def test_empty_primary_falls_back_exactly_once(repo: InMemoryLessonsRepo) -> None:
  await _queued(repo)
  primary = FakeModel("   ")
  fallback = FakeModel(VALID_COMPONENT)
  controller = GenerationController(repo, primary=primary, fallback=fallback, format_output=False)

  lesson = await controller.run("lesson-1", "A 3-question quiz on fractions")

  assert lesson.status == "generated"
  assert primary.calls == 1
  assert fallback.calls == 1
  assert "fallback" in _stages(repo)


@pytest.mark.anyio
async def test_primary_exception_falls_back(repo: InMemoryLessonsRepo) -> None:
  await _queued(repo)
  controller = GenerationController(repo, primary=FakeModel(RuntimeError("rate limited")), fallback=FakeModel(VALID_COMPONENT), format_output=False)

  lesson = await controller.run("lesson-1", "outline")

  assert lesson.status == "generated"


@pytest.mark.anyio
async def test_both_backends_empty_records_error(repo: InMemoryLessonsRepo) -> None:
  await _queued(repo)
  primary = FakeModel("")
  fallback = FakeModel("")
  controller = GenerationController(repo, primary=primary, fallback=fallback, format_output=False)

  with pytest.raises(EmptyGenerationError) as exc_info:
    await controller.run("lesson-1", "outline")

  assert exc_info.value.lesson_id == "lesson-1"
  lesson = repo.lessons["lesson-1"]
  assert lesson.status == "error"
  assert lesson.generated_source is None
  assert "fallback backend returned empty content" in lesson.error_message
  assert repo.statuses("lesson-1") == ["queued", "generating", "error"]
  assert fallback.calls == 1


@pytest.mark.anyio
async def test_fence_only_output_is_an_empty_generation(repo: InMemoryLessonsRepo) -> None:
  await _queued(repo)
  controller = GenerationController(repo, primary=FakeModel("```tsx\n```"), fallback=FakeModel(""), format_output=False)

  with pytest.raises(EmptyGenerationError):
    await controller.run("lesson-1", "outline")

  assert repo.lessons["lesson-1"].status == "error"


@pytest.mark.anyio
async def test_missing_backends_fail_without_calls(repo: InMemoryLessonsRepo) -> None:
  await _queued(repo)
  controller = GenerationController(repo, primary=None, fallback=None, format_output=False)

  with pytest.raises(GenerationError):
    await controller.run("lesson-1", "outline")

  assert "not configured" in repo.lessons["lesson-1"].error_message


@pytest.mark.anyio
async def test_oversized_source_is_rejected(repo: InMemoryLessonsRepo) -> None:
  await _queued(repo)
  controller = GenerationController(repo, primary=FakeModel(VALID_COMPONENT), fallback=None, format_output=False, max_source_chars=20)

  with pytest.raises(GenerationError, match="exceeds 20 characters"):
    await controller.run("lesson-1", "outline")


@pytest.mark.anyio
async def test_generated_write_failure_records_database_error(repo: InMemoryLessonsRepo) -> None:
  await _queued(repo)
  repo.fail_on.add("generated")
  controller = GenerationController(repo, primary=FakeModel(VALID_COMPONENT), fallback=None, format_output=False)

  with pytest.raises(GenerationError, match="Database error"):
    await controller.run("lesson-1", "outline")

  lesson = repo.lessons["lesson-1"]
  assert lesson.status == "error"
  assert lesson.error_message.startswith("Database error:")
  assert is_consistent(lesson)


@pytest.mark.anyio
async def test_generating_write_failure_settles_the_lesson(repo: InMemoryLessonsRepo) -> None:
  await _queued(repo)
  repo.fail_on.add("generating")
  primary = FakeModel(VALID_COMPONENT)
  controller = GenerationController(repo, primary=primary, fallback=None, format_output=False)

  with pytest.raises(GenerationError, match="Database error"):
    await controller.run("lesson-1", "outline")

  lesson = repo.lessons["lesson-1"]
  assert lesson.status == "error"
  assert lesson.error_message == "Database error: write to generating failed"
  assert primary.calls == 0
  assert _stages(repo) == ["failed"]


@pytest.mark.anyio
async def test_server_result_replaces_client_timeout(repo: InMemoryLessonsRepo) -> None:
  await _queued(repo)
  await repo.transition("lesson-1", "generating")
  await repo.transition("lesson-1", "error", error_message=timeout_message(120), timed_out=True)
  controller = GenerationController(repo, primary=FakeModel(VALID_COMPONENT), fallback=None, format_output=False)

  lesson = await controller.run("lesson-1", "outline")

  assert lesson.status == "generated"
  assert lesson.error_message is None
  assert lesson.timed_out is False
  assert is_consistent(lesson)


@pytest.mark.anyio
async def test_timeout_before_pickup_is_still_generated(repo: InMemoryLessonsRepo) -> None:
  await _queued(repo)
  await repo.transition("lesson-1", "error", error_message=timeout_message(120), timed_out=True)
  controller = GenerationController(repo, primary=FakeModel(VALID_COMPONENT), fallback=None, format_output=False)

  lesson = await controller.run("lesson-1", "outline")

  assert lesson.status == "generated"
  assert repo.statuses("lesson-1") == ["queued", "error", "generated"]


@pytest.mark.anyio
async def test_settled_lesson_is_not_generated_again(repo: InMemoryLessonsRepo) -> None:
  await _queued(repo)
  await repo.transition("lesson-1", "generating")
  await repo.transition("lesson-1", "generated", generated_source="function LessonComponent() {}")
  primary = FakeModel(VALID_COMPONENT)
  controller = GenerationController(repo, primary=primary, fallback=None, format_output=False)

  lesson = await controller.run("lesson-1", "outline")

  assert lesson.generated_source == "function LessonComponent() {}"
  assert primary.calls == 0


@pytest.mark.anyio
async def test_real_error_is_never_overwritten(repo: InMemoryLessonsRepo) -> None:
  await _queued(repo)

  class _FailsMidway(FakeModel):
    async def generate(self, prompt: str, *, system: str | None = None):
      await repo.transition("lesson-1", "error", error_message="cancelled by operator")
      return await super().generate(prompt, system=system)

  controller = GenerationController(repo, primary=_FailsMidway(VALID_COMPONENT), fallback=None, format_output=False)

  lesson = await controller.run("lesson-1", "outline")

  assert lesson.status == "error"
  assert lesson.error_message == "cancelled by operator"
  assert "discarded" in _stages(repo)


@pytest.mark.anyio
async def test_unknown_lesson_raises(repo: InMemoryLessonsRepo) -> None:
  controller = GenerationController(repo, primary=FakeModel(VALID_COMPONENT), fallback=None)

  with pytest.raises(LessonNotFoundError):
    await controller.run("missing", "outline")


@pytest.mark.anyio
async def test_record_failure_never_raises(repo: InMemoryLessonsRepo) -> None:
  await _queued(repo)
  repo.fail_on.add("error")
  controller = GenerationController(repo, primary=None, fallback=None)

  assert await controller.record_failure("lesson-1", "boom") is None


@pytest.mark.anyio
async def test_formatting_runs_when_enabled(repo: InMemoryLessonsRepo) -> None:
  await _queued(repo)
  raw = "```tsx\nexport default function Quiz(){return <p>hi</p>}\n```"
  controller = GenerationController(repo, primary=FakeModel(raw), fallback=None, format_output=True)

  lesson = await controller.run("lesson-1", "outline")

  assert lesson.generated_source.startswith("function LessonComponent() {")


def test_build_backends_skips_backends_without_credentials(monkeypatch: pytest.MonkeyPatch) -> None:
  for name in ("FORGE_PRIMARY_API_KEY", "GITHUB_TOKEN", "FORGE_GEMINI_API_KEY", "GEMINI_API_KEY"):
    monkeypatch.delenv(name, raising=False)
  get_settings.cache_clear()
  try:
    primary, fallback = build_backends(get_settings())
  finally:
    get_settings.cache_clear()

  assert primary is None
  assert fallback is None
