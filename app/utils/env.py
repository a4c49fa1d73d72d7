"""Minimal .env support so local runs pick up FORGE_* settings."""

from __future__ import annotations

import os
from pathlib import Path


def default_env_path() -> Path:
  """Return the .env path next to the project root."""
  return Path(__file__).resolve().parents[2] / ".env"


def _parse_line(raw_line: str) -> tuple[str, str] | None:
  """Split one .env line into a key/value pair, ignoring comments and blanks."""
  line = raw_line.strip()
  if not line or line.startswith("#"):
    return None
  line = line.removeprefix("export ").lstrip()
  key, sep, value = line.partition("=")
  key = key.strip()
  if not sep or not key:
    return None

  value = value.strip()
  # Quoted values keep everything verbatim; bare values drop trailing " # comments".
  if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
    return key, value[1:-1]
  comment_at = value.find(" #")
  if comment_at >= 0:
    value = value[:comment_at].rstrip()
  return key, value


def load_env_file(path: Path, *, override: bool = False) -> list[str]:
  """Load key=value pairs into the process environment and return the keys applied."""
  if not path.is_file():
    return []

  applied: list[str] = []
  for raw_line in path.read_text(encoding="utf-8").splitlines():
    parsed = _parse_line(raw_line)
    if parsed is None:
      continue
    key, value = parsed
    if not override and key in os.environ:
      continue
    os.environ[key] = value
    applied.append(key)
  return applied
