"""Identifier utilities."""

from __future__ import annotations

import uuid


def generate_lesson_id() -> str:
  """Return a new lesson identifier."""
  return str(uuid.uuid4())


def generate_trace_id() -> str:
  """Return a new generation trace identifier."""
  return str(uuid.uuid4())


def generate_session_id() -> str:
  """Return a session identifier for viewers that did not send one."""
  return str(uuid.uuid4())
