"""Application configuration loaded from environment variables."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache

from app.utils.env import default_env_path, load_env_file

load_env_file(default_env_path(), override=False)

_GITHUB_MODELS_BASE_URL = "https://models.github.ai/inference"


@dataclass(frozen=True)
class Settings:
  """Typed settings for the Lesson Forge service."""

  environment: str
  allowed_origins: tuple[str, ...]
  debug: bool
  log_max_bytes: int
  log_backup_count: int
  log_http_4xx: bool
  pg_dsn: str | None
  pg_connect_timeout: int
  auto_create_schema: bool
  task_service_provider: str
  base_url: str | None
  task_secret: str | None
  primary_api_key: str | None
  primary_base_url: str
  primary_model: str
  primary_temperature: float
  gemini_api_key: str | None
  fallback_model: str
  fallback_max_output_tokens: int
  fallback_temperature: float
  format_generated_source: bool
  max_source_chars: int
  render_timeout_seconds: float
  events_idle_timeout_seconds: float
  client_soft_timeout_seconds: float
  client_hard_timeout_seconds: float
  client_abort_timeout_seconds: float


@dataclass(frozen=True)
class DatabaseSettings:
  """Typed settings for database connectivity."""

  debug: bool
  pg_dsn: str | None
  pg_connect_timeout: int


def _parse_origins(raw: str | None) -> tuple[str, ...]:
  if not raw:
    raise ValueError("FORGE_ALLOWED_ORIGINS must be set to one or more origins.")

  origins = [origin.strip() for origin in raw.split(",") if origin.strip()]

  if not origins:
    raise ValueError("FORGE_ALLOWED_ORIGINS must include at least one origin.")

  if "*" in origins:
    raise ValueError("FORGE_ALLOWED_ORIGINS must not include wildcard origins.")

  return tuple(origins)


def _parse_bool(raw: str | None, *, default: bool = False) -> bool:
  """Parse a boolean-ish string from environment variables."""

  if raw is None or raw.strip() == "":
    return default

  normalized = raw.strip().lower()
  return normalized in {"1", "true", "yes", "on"}


def _positive_int(name: str, default: str) -> int:
  value = int(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive integer.")
  return value


def _positive_float(name: str, default: str) -> float:
  value = float(os.getenv(name, default))
  if value <= 0:
    raise ValueError(f"{name} must be a positive number.")
  return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
  """Load settings once per process."""

  environment = os.getenv("FORGE_ENV", "development").lower()

  # Toggle verbose error output and diagnostics in non-production environments.
  debug = _parse_bool(os.getenv("FORGE_DEBUG"))

  log_max_bytes = _positive_int("FORGE_LOG_MAX_BYTES", "5242880")  # 5MB default
  log_backup_count = int(os.getenv("FORGE_LOG_BACKUP_COUNT", "10"))
  if log_backup_count < 0:
    raise ValueError("FORGE_LOG_BACKUP_COUNT must be zero or a positive integer.")

  # Allow opt-in logging of 4xx HTTPExceptions for diagnostics.
  log_http_4xx = _parse_bool(os.getenv("FORGE_LOG_HTTP_4XX"))

  task_service_provider = os.getenv("FORGE_TASK_SERVICE_PROVIDER", "inline").strip().lower()
  if task_service_provider not in {"inline", "local-http"}:
    raise ValueError("FORGE_TASK_SERVICE_PROVIDER must be 'inline' or 'local-http'.")

  primary_temperature = float(os.getenv("FORGE_PRIMARY_TEMPERATURE", "0.9"))
  fallback_temperature = float(os.getenv("FORGE_FALLBACK_TEMPERATURE", "0.7"))

  # The client-side thresholds must be ordered: warn, then fail, then abort the request.
  client_soft_timeout = _positive_float("FORGE_CLIENT_SOFT_TIMEOUT_SECONDS", "60")
  client_hard_timeout = _positive_float("FORGE_CLIENT_HARD_TIMEOUT_SECONDS", "120")
  client_abort_timeout = _positive_float("FORGE_CLIENT_ABORT_TIMEOUT_SECONDS", "125")
  if not client_soft_timeout < client_hard_timeout <= client_abort_timeout:
    raise ValueError("Client timeouts must satisfy soft < hard <= abort.")

  return Settings(
    environment=environment,
    allowed_origins=_parse_origins(os.getenv("FORGE_ALLOWED_ORIGINS")),
    debug=debug,
    log_max_bytes=log_max_bytes,
    log_backup_count=log_backup_count,
    log_http_4xx=log_http_4xx,
    pg_dsn=os.getenv("FORGE_PG_DSN") or os.getenv("DATABASE_URL"),
    pg_connect_timeout=_positive_int("FORGE_PG_CONNECT_TIMEOUT", "5"),
    auto_create_schema=_parse_bool(os.getenv("FORGE_AUTO_CREATE_SCHEMA")),
    task_service_provider=task_service_provider,
    base_url=_optional_str(os.getenv("FORGE_BASE_URL")),
    task_secret=_optional_str(os.getenv("FORGE_TASK_SECRET")),
    primary_api_key=_optional_str(os.getenv("FORGE_PRIMARY_API_KEY") or os.getenv("GITHUB_TOKEN")),
    primary_base_url=(os.getenv("FORGE_PRIMARY_BASE_URL") or _GITHUB_MODELS_BASE_URL).strip(),
    primary_model=(os.getenv("FORGE_PRIMARY_MODEL") or "openai/gpt-4.1").strip(),
    primary_temperature=primary_temperature,
    gemini_api_key=_optional_str(os.getenv("FORGE_GEMINI_API_KEY") or os.getenv("GEMINI_API_KEY")),
    fallback_model=(os.getenv("FORGE_FALLBACK_MODEL") or "gemini-2.0-flash").strip(),
    fallback_max_output_tokens=_positive_int("FORGE_FALLBACK_MAX_OUTPUT_TOKENS", "4096"),
    fallback_temperature=fallback_temperature,
    format_generated_source=_parse_bool(os.getenv("FORGE_FORMAT_GENERATED_SOURCE"), default=True),
    max_source_chars=_positive_int("FORGE_MAX_SOURCE_CHARS", "60000"),
    render_timeout_seconds=_positive_float("FORGE_RENDER_TIMEOUT_SECONDS", "20"),
    events_idle_timeout_seconds=_positive_float("FORGE_EVENTS_IDLE_TIMEOUT_SECONDS", "300"),
    client_soft_timeout_seconds=client_soft_timeout,
    client_hard_timeout_seconds=client_hard_timeout,
    client_abort_timeout_seconds=client_abort_timeout,
  )


@lru_cache(maxsize=1)
def get_database_settings() -> DatabaseSettings:
  """Load database settings without requiring web-runtime configuration like CORS."""
  # Keep database configuration isolated so migrations and offline scripts don't require unrelated env vars.
  debug = _parse_bool(os.getenv("FORGE_DEBUG"))
  pg_connect_timeout = _positive_int("FORGE_PG_CONNECT_TIMEOUT", "5")
  pg_dsn = os.getenv("FORGE_PG_DSN") or os.getenv("DATABASE_URL")

  return DatabaseSettings(debug=debug, pg_dsn=pg_dsn, pg_connect_timeout=pg_connect_timeout)


def _optional_str(raw: str | None) -> str | None:
  if raw is None:
    return None
  value = raw.strip()
  if value == "":
    return None
  return value
