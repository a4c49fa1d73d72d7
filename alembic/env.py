import asyncio
import logging
import sys
from logging.config import fileConfig
from pathlib import Path
from time import perf_counter

from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from alembic import context

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

config = context.config
if config.config_file_name is not None:
  fileConfig(config.config_file_name)

# Importing the models attaches the lessons and traces tables to Base.metadata.
import app.schema.lessons  # noqa: E402, F401
import app.schema.traces  # noqa: E402, F401
from app.config import get_database_settings  # noqa: E402
from app.core.database import Base, database_url  # noqa: E402

target_metadata = Base.metadata
logger = logging.getLogger("alembic.runtime.migration")


def _lessons_database_url() -> str:
  url = database_url(get_database_settings())
  if not url:
    raise RuntimeError("FORGE_PG_DSN must be set to run migrations.")
  return url


class _StepTimer:
  """Log every applied revision with the time it took."""

  def __init__(self) -> None:
    self._started = perf_counter()

  def __call__(self, *, ctx: object, step: object, heads: set[str], run_args: dict[str, object]) -> None:
    revision = getattr(step, "up_revision_id", None) or "unknown"
    logger.info("Applied lessons schema revision %s in %.3fs", revision, perf_counter() - self._started)
    self._started = perf_counter()


def run_migrations_offline() -> None:
  """Emit the lessons schema as SQL without connecting."""
  context.configure(url=_lessons_database_url(), target_metadata=target_metadata, literal_binds=True, dialect_opts={"paramstyle": "named"})
  with context.begin_transaction():
    context.run_migrations()


def _migrate(connection: Connection) -> None:
  context.configure(connection=connection, target_metadata=target_metadata, compare_type=True, on_version_apply=_StepTimer())
  current = context.get_context().get_current_revision() or "base"
  logger.info("Migrating lessons schema from %s", current)
  with context.begin_transaction():
    context.run_migrations()


async def _run_online() -> None:
  """Migrate through asyncpg, the driver the service itself uses."""
  section = config.get_section(config.config_ini_section) or {}
  section["sqlalchemy.url"] = _lessons_database_url()
  engine = async_engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)
  try:
    async with engine.connect() as connection:
      await connection.run_sync(_migrate)
  finally:
    await engine.dispose()


if context.is_offline_mode():
  run_migrations_offline()
else:
  asyncio.run(_run_online())
