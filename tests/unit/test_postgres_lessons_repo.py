"""Unit tests for the Postgres lessons repository with a mocked async session."""

from __future__ import annotations

import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.dialects import postgresql

from app.schema.lessons import Lesson
from app.services.lesson_status import InvalidTransitionError
from app.storage.lessons_repo import LessonNotFoundError, LessonRecord
from app.storage.postgres_lessons_repo import PostgresLessonsRepository

NOW = datetime.datetime(2026, 1, 1, tzinfo=datetime.UTC)


@pytest.fixture
def session():
  session = AsyncMock()
  session.add = MagicMock()
  result = MagicMock()
  result.scalar_one_or_none.return_value = None
  session.execute.return_value = result
  session.get.return_value = None
  return session


@pytest.fixture
def session_factory(session):
  factory = MagicMock()
  factory.return_value.__aenter__.return_value = session
  factory.return_value.__aexit__.return_value = False
  return factory


def _lesson_row(status: str = "generated", **overrides: object) -> Lesson:
  values: dict[str, object] = {
    "id": "lesson-1",
    "session_id": "session-1",
    "outline": "Fractions",
    "status": status,
    "generated_source": "function LessonComponent() {}" if status == "generated" else None,
    "error_message": None,
    "timed_out": False,
    "trace_id": "trace-1",
    "version": 3,
    "created_at": NOW,
    "updated_at": NOW,
  }
  values.update(overrides)
  return Lesson(**values)


def _sql(statement: object) -> str:
  return str(statement.compile(dialect=postgresql.dialect()))  # type: ignore[attr-defined]


@pytest.mark.anyio
async def test_create_lesson_adds_and_commits(session, session_factory) -> None:
  repo = PostgresLessonsRepository(session_factory)
  record = LessonRecord(lesson_id="lesson-1", session_id="session-1", outline="Fractions", status="queued", created_at=NOW, updated_at=NOW, trace_id="trace-1")

  created = await repo.create_lesson(record)

  added = session.add.call_args.args[0]
  assert isinstance(added, Lesson)
  assert added.id == "lesson-1"
  assert added.status == "queued"
  session.commit.assert_awaited_once()
  assert created == record


@pytest.mark.anyio
async def test_transition_is_a_conditional_update(session, session_factory) -> None:
  session.execute.return_value.scalar_one_or_none.return_value = _lesson_row()
  repo = PostgresLessonsRepository(session_factory)

  updated = await repo.transition("lesson-1", "generated", generated_source="function LessonComponent() {}")

  assert updated.status == "generated"
  assert updated.version == 3
  sql = _sql(session.execute.call_args.args[0])
  assert sql.startswith("UPDATE lessons SET")
  assert "lessons.status IN" in sql
  # Only a client-timed-out error may be promoted to generated.
  assert "lessons.timed_out IS true" in sql
  assert "RETURNING" in sql
  session.commit.assert_awaited_once()


@pytest.mark.anyio
async def test_error_transition_does_not_accept_terminal_rows(session, session_factory) -> None:
  session.execute.return_value.scalar_one_or_none.return_value = _lesson_row("error", error_message="boom")
  repo = PostgresLessonsRepository(session_factory)

  await repo.transition("lesson-1", "error", error_message="boom")

  assert "timed_out IS true" not in _sql(session.execute.call_args.args[0])


@pytest.mark.anyio
async def test_rejected_transition_reports_current_status(session, session_factory) -> None:
  session.get.return_value = _lesson_row("generated")
  repo = PostgresLessonsRepository(session_factory)

  with pytest.raises(InvalidTransitionError) as exc_info:
    await repo.transition("lesson-1", "error", error_message="late failure")

  assert exc_info.value.current == "generated"
  session.rollback.assert_awaited_once()
  session.commit.assert_not_awaited()


@pytest.mark.anyio
async def test_transition_of_unknown_lesson(session, session_factory) -> None:
  repo = PostgresLessonsRepository(session_factory)

  with pytest.raises(LessonNotFoundError):
    await repo.transition("missing", "generating")


@pytest.mark.anyio
async def test_invalid_payload_never_reaches_the_database(session_factory) -> None:
  repo = PostgresLessonsRepository(session_factory)

  with pytest.raises(ValueError):
    await repo.transition("lesson-1", "generated")

  session_factory.assert_not_called()


@pytest.mark.anyio
async def test_get_lesson_maps_row(session, session_factory) -> None:
  session.get.return_value = _lesson_row("error", error_message="timed out", timed_out=True)
  repo = PostgresLessonsRepository(session_factory)

  lesson = await repo.get_lesson("lesson-1")

  assert lesson is not None
  assert lesson.status == "error"
  assert lesson.timed_out is True
  assert lesson.to_payload()["timedOut"] is True


def test_lessons_table_only_allows_timeouts_on_errors() -> None:
  constraints = {constraint.name: str(constraint.sqltext) for constraint in Lesson.__table__.constraints if constraint.name and constraint.name.startswith("ck_")}

  assert constraints["ck_lessons_timed_out_only_on_error"] == "timed_out = false OR status = 'error'"
  assert set(constraints) == {"ck_lessons_status", "ck_lessons_source_iff_generated", "ck_lessons_error_iff_error", "ck_lessons_timed_out_only_on_error"}
