from app.config import Settings
from app.core.database import DatabaseHandle
from app.services.lesson_events import LessonEventBus
from app.storage.lessons_repo import LessonsRepository
from app.storage.postgres_lessons_repo import PostgresLessonsRepository
from app.storage.publishing_repo import PublishingLessonsRepository


def build_lessons_repo(settings: Settings, database: DatabaseHandle, bus: LessonEventBus) -> LessonsRepository:
  """Return the active lessons repository, publishing writes to the change feed."""

  # Enforce Postgres-backed storage for lessons.
  if not settings.pg_dsn:
    raise ValueError("FORGE_PG_DSN must be set to enable Postgres persistence.")

  return PublishingLessonsRepository(PostgresLessonsRepository(database.session_factory()), bus)
