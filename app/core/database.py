from __future__ import annotations

import logging
import threading

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from app.config import DatabaseSettings, get_database_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
  pass


def database_url(settings: DatabaseSettings) -> str | None:
  """Build the SQLAlchemy URL, switching plain postgres DSNs to the asyncpg driver."""
  url = settings.pg_dsn
  if not url:
    return None
  for prefix in ("postgresql://", "postgres://"):
    if url.startswith(prefix):
      return "postgresql+asyncpg://" + url[len(prefix) :]
  return url


class DatabaseHandle:
  """Owns the async engine and session factory for one process.

  The engine is built lazily on first use. Initialization is guarded by a lock so concurrent
  first callers share one engine instead of racing to create several.
  """

  def __init__(self, settings: DatabaseSettings) -> None:
    self._settings = settings
    self._lock = threading.Lock()
    self._engine: AsyncEngine | None = None
    self._session_factory: async_sessionmaker[AsyncSession] | None = None

  @property
  def url(self) -> str | None:
    return database_url(self._settings)

  @property
  def is_configured(self) -> bool:
    return self.url is not None

  def engine(self) -> AsyncEngine:
    """Return the engine, creating it on first call."""
    if self._engine is not None:
      return self._engine

    with self._lock:
      if self._engine is None:
        url = self.url
        if url is None:
          raise RuntimeError("Database connection is not configured (FORGE_PG_DSN is missing).")
        connect_args = {"timeout": self._settings.pg_connect_timeout} if url.startswith("postgresql+asyncpg") else {}
        self._engine = create_async_engine(url, echo=self._settings.debug, pool_pre_ping=True, connect_args=connect_args)
        self._session_factory = async_sessionmaker(bind=self._engine, expire_on_commit=False, class_=AsyncSession)
        logger.info("Database engine created for dialect=%s", self._engine.dialect.name)
    return self._engine

  def session_factory(self) -> async_sessionmaker[AsyncSession]:
    """Return the session factory bound to the shared engine."""
    self.engine()
    if self._session_factory is None:
      raise RuntimeError("Database session factory failed to initialize.")
    return self._session_factory

  async def create_schema(self) -> None:
    """Create missing tables from the ORM metadata (local development only)."""
    import app.schema.lessons  # noqa: F401
    import app.schema.traces  # noqa: F401

    async with self.engine().begin() as connection:
      await connection.run_sync(Base.metadata.create_all)

  async def dispose(self) -> None:
    """Close pooled connections; the handle can be reused afterwards."""
    with self._lock:
      engine = self._engine
      self._engine = None
      self._session_factory = None
    if engine is not None:
      await engine.dispose()


_handle_lock = threading.Lock()
_handle: DatabaseHandle | None = None


def get_database_handle() -> DatabaseHandle:
  """Return the process-wide database handle."""
  global _handle
  if _handle is None:
    with _handle_lock:
      if _handle is None:
        _handle = DatabaseHandle(get_database_settings())
  return _handle

