"""Extract component source from model output that may be wrapped in Markdown fences."""

from __future__ import annotations

import re
from typing import Final

_FENCED_BLOCK: Final[re.Pattern[str]] = re.compile(r"`{2,3}[^\n]*\n([\s\S]*?)\n?`{2,3}")
_LEADING_FENCE: Final[re.Pattern[str]] = re.compile(r"\A\s*`{2,3}[^\n]*(?:\r?\n|\Z)")
_TRAILING_FENCE: Final[re.Pattern[str]] = re.compile(r"(?:\r?\n)?`{2,3}\s*\Z")
_IMPORT_LINE: Final[re.Pattern[str]] = re.compile(r"^import .*$", re.MULTILINE)
_EXPORT_DEFAULT_PREFIX: Final[re.Pattern[str]] = re.compile(r"^export default ", re.MULTILINE)
_EXPORT_PREFIX: Final[re.Pattern[str]] = re.compile(r"^export ", re.MULTILINE)


def extract_fenced_block(raw: str) -> str:
  """Return the interior of the first fenced block.

  Without a well-formed block, a fence-looking first line and a fence-looking last line are
  removed; text with neither comes back unchanged.
  """
  text = raw or ""
  match = _FENCED_BLOCK.search(text)
  if match is not None:
    return match.group(1)

  text = _LEADING_FENCE.sub("", text, count=1)
  return _TRAILING_FENCE.sub("", text, count=1)


def strip_module_syntax(code: str) -> str:
  """Remove import lines and export prefixes; the sandbox has no module system."""
  code = _IMPORT_LINE.sub("", code)
  code = _EXPORT_DEFAULT_PREFIX.sub("", code)
  code = _EXPORT_PREFIX.sub("", code)
  return code.strip()


def extract_code(raw: str) -> str:
  return strip_module_syntax(extract_fenced_block(raw))
