"""Bind the lesson component to the name the sandbox looks up."""

from __future__ import annotations

import re
from typing import Final

CANONICAL_COMPONENT_NAME: Final[str] = "LessonComponent"

_DEFAULT_FUNCTION: Final[re.Pattern[str]] = re.compile(r"export\s+default\s+function\s+(\w+)")
_DEFAULT_IDENTIFIER: Final[re.Pattern[str]] = re.compile(r"export\s+default\s+(\w+)")
_FUNCTION_DECLARATION: Final[re.Pattern[str]] = re.compile(r"function\s+(\w+)\s*\(")


def normalize_exports(code: str) -> str:
  """Make the component reachable as `LessonComponent`.

  Pattern based: a default-exported named function is renamed, a default-exported identifier is
  aliased, otherwise the first function declaration is renamed when the canonical name is absent.
  Shapes none of these cover leave the name missing, which the sandbox reports as a placeholder.
  """
  if _DEFAULT_FUNCTION.search(code):
    return _DEFAULT_FUNCTION.sub(f"function {CANONICAL_COMPONENT_NAME}", code, count=1)

  match = _DEFAULT_IDENTIFIER.search(code)
  if match is not None:
    # `export default function() {}` / `export default class` alias the anonymous expression.
    return _DEFAULT_IDENTIFIER.sub(f"const {CANONICAL_COMPONENT_NAME} = \\1", code, count=1)

  if CANONICAL_COMPONENT_NAME in code:
    return code

  return _FUNCTION_DECLARATION.sub(f"function {CANONICAL_COMPONENT_NAME}(", code, count=1)


def has_canonical_component(code: str) -> bool:
  return CANONICAL_COMPONENT_NAME in code
