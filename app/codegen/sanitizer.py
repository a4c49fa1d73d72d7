"""Heuristic repairs for generated TSX lesson components.

Generated components arrive with a handful of recurring defects: half-written event handlers,
attribute templates that never close, unit suffixes glued onto template ends, layout styles we do
not support and typographic characters the TypeScript tokenizer rejects. Every rule here is a pure
string transform; `sanitize` applies them in order and never raises. Running the sequence on its
own output changes nothing.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from typing import Final

logger = logging.getLogger(__name__)

_HANDLER_OPEN: Final[re.Pattern[str]] = re.compile(r"\s+on[A-Z]\w*\s*=\s*\{")
_UNIT_SUFFIX: Final[re.Pattern[str]] = re.compile(r"`\}\s*(?:rem|px|vh|ms|em|%)`")
_TEMPLATE_ATTR_OPEN: Final[re.Pattern[str]] = re.compile(r"[A-Za-z_][\w-]*=\{`")
_STYLE_BRACE_OPEN: Final[re.Pattern[str]] = re.compile(r"\s+style\s*=\s*\{")
_STYLE_QUOTED: Final[re.Pattern[str]] = re.compile(r"\s+style\s*=\s*(?:\"[^\"]*\"|'[^']*')")
_ABSOLUTE_POSITION: Final[re.Pattern[str]] = re.compile(r"position:\s*absolute;?\s?")
_PIXEL_OFFSET: Final[re.Pattern[str]] = re.compile(r"\b(?:top|left):\s*\d+px;?\s?")
_DOUBLED_BACKTICK_CLOSE: Final[re.Pattern[str]] = re.compile(r"([^\s{])``\}")
_DANGLING_INTERPOLATION: Final[re.Pattern[str]] = re.compile(r"\$\{[^}]*\Z")
_TAG_END_AHEAD: Final[re.Pattern[str]] = re.compile(r"\s*(?:[{<]|$)", re.MULTILINE)

_CHARACTER_MAP: Final[dict[str, str]] = {
  "²": "^2",
  "³": "^3",
  "−": "-",
  "×": "*",
  "÷": "/",
  "“": '"',
  "”": '"',
  "‘": "'",
}


def _matching_brace(code: str, start: int) -> int | None:
  """Index of the brace closing the one opened just before `start`, or None when it never closes."""
  depth = 1
  for index in range(start, len(code)):
    char = code[index]
    if char == "{":
      depth += 1
    elif char == "}":
      depth -= 1
      if depth == 0:
        return index
  return None


def _opening_tag_end(code: str, start: int) -> int:
  """Index of the first `>` after `start` that is not an arrow, or the end of the input."""
  for index in range(start, len(code)):
    if code[index] == ">" and (index == 0 or code[index - 1] != "="):
      return index
  return len(code)


def _attribute_end(code: str, start: int) -> int:
  """Where an attribute expression opened just before `start` ends.

  A brace that never closes, or one that only closes after a closing tag, means the expression
  was left open; it then ends at the tag boundary, keeping a self-closing slash.
  """
  closing = _matching_brace(code, start)
  if closing is not None and "</" not in code[start:closing]:
    return closing + 1
  tag_end = _opening_tag_end(code, start)
  if tag_end < len(code) and code[tag_end - 1] == "/":
    return tag_end - 1
  return tag_end


def strip_event_handlers(code: str) -> str:
  """Remove every `on<Event>={...}` binding, including ones whose brace never closes."""
  result: list[str] = []
  position = 0
  while True:
    match = _HANDLER_OPEN.search(code, position)
    if match is None:
      result.append(code[position:])
      return "".join(result)

    result.append(code[position : match.start()])
    # An unterminated handler swallows everything up to the end of its tag, the tag itself survives.
    position = _attribute_end(code, match.end())


def strip_unit_suffixes(code: str) -> str:
  return _UNIT_SUFFIX.sub("`}", code)


def _scan_template(code: str, start: int) -> tuple[int, str | None]:
  """Walk an attribute template body from `start`.

  Returns `(index, action)` where action is None when the template closes normally (or runs to
  the end of input), "close" when a tag boundary shows up in template text, and "backtick" when
  the attribute brace closes before the template does.
  """
  index = start
  length = len(code)
  while index < length:
    char = code[index]
    if char == "`":
      return index, None
    if char == "$" and code.startswith("${", index):
      closing = _skip_interpolation(code, index + 2)
      if closing is None:
        return length, None
      index = closing + 1
      continue
    if char == "}":
      return index, "backtick"
    if char == ">" and _TAG_END_AHEAD.match(code, index + 1):
      return index, "close"
    index += 1
  return length, None


def _skip_interpolation(code: str, start: int) -> int | None:
  """Index of the brace closing a `${` opened before `start`, skipping nested template literals."""
  depth = 1
  index = start
  length = len(code)
  while index < length:
    char = code[index]
    if char == "`":
      nested_end = code.find("`", index + 1)
      if nested_end == -1:
        return None
      index = nested_end + 1
      continue
    if char == "{":
      depth += 1
    elif char == "}":
      depth -= 1
      if depth == 0:
        return index
    index += 1
  return None


def close_attribute_templates(code: str) -> str:
  """Terminate attribute templates (`` attr={`...``) that lost their closing backtick.

  A tag boundary (`>` followed by `{`, `<` or a line end) inside template text gets `` `} ``
  inserted before it; a closing brace reached in template text gets the missing backtick.
  """
  position = 0
  while True:
    match = _TEMPLATE_ATTR_OPEN.search(code, position)
    if match is None:
      return code

    index, action = _scan_template(code, match.end())
    if action == "close":
      code = f"{code[:index]}`}}{code[index:]}"
      position = index + 2
    elif action == "backtick":
      code = f"{code[:index]}`{code[index:]}"
      position = index + 2
    else:
      position = index + 1


def strip_layout_styles(code: str) -> str:
  """Drop inline style attributes and absolute positioning, generated layouts must flow."""
  result: list[str] = []
  position = 0
  while True:
    match = _STYLE_BRACE_OPEN.search(code, position)
    if match is None:
      result.append(code[position:])
      break
    result.append(code[position : match.start()])
    position = _attribute_end(code, match.end())

  code = _STYLE_QUOTED.sub("", "".join(result))
  code = _ABSOLUTE_POSITION.sub("", code)
  return _PIXEL_OFFSET.sub("", code)


def _quoted_end(code: str, start: int) -> int:
  """End of the quoted string opened at `start`; an unterminated one stops at the line end."""
  quote = code[start]
  index = start + 1
  length = len(code)
  while index < length:
    char = code[index]
    if char == "\\":
      index += 2
      continue
    if char == quote:
      return index + 1
    if char == "\n":
      return index
    index += 1
  return length


def _opens_string(code: str, index: int) -> bool:
  # An apostrophe inside a word is JSX text, not a string delimiter.
  if code[index] == "'":
    return index == 0 or not code[index - 1].isalnum()
  return code[index] == '"'


def collapse_surplus_closers(code: str) -> str:
  """Drop a `}` that follows another `}` when nothing is left open for it to close.

  Braces inside strings, comments and template text do not count; an interpolation inside a
  template counts like any other block.
  """
  result: list[str] = []
  depth = 0
  # Depths at which an open `${` returns to template text when its brace closes.
  interpolations: list[int] = []
  in_template = False
  # Last character of code seen outside comments.
  last_code: str | None = None
  index = 0
  length = len(code)
  while index < length:
    char = code[index]
    if in_template:
      if char == "\\":
        result.append(code[index : index + 2])
        index += 2
        continue
      if char == "`":
        in_template = False
      elif code.startswith("${", index):
        interpolations.append(depth)
        depth += 1
        in_template = False
        result.append("${")
        index += 2
        continue
      result.append(char)
      last_code = char
      index += 1
      continue

    end = index + 1
    comment = False
    if _opens_string(code, index):
      end = _quoted_end(code, index)
    elif code.startswith("//", index):
      newline = code.find("\n", index)
      end = length if newline == -1 else newline
      comment = True
    elif code.startswith("/*", index):
      closing = code.find("*/", index + 2)
      end = length if closing == -1 else closing + 2
      comment = True
    elif char == "`":
      in_template = True
    elif char == "{":
      depth += 1
    elif char == "}":
      if interpolations and interpolations[-1] == depth - 1:
        interpolations.pop()
        in_template = True
        depth -= 1
      elif depth == 0:
        if last_code == "}":
          index += 1
          continue
      else:
        depth -= 1
    token = code[index:end]
    result.append(token)
    if not comment and token.strip():
      last_code = token.rstrip()[-1]
    index = end

  return _DOUBLED_BACKTICK_CLOSE.sub(r"\1`}", "".join(result))


def normalize_characters(code: str) -> str:
  """Replace typographic quotes and math symbols with ASCII, keeping in-word apostrophes."""
  chars = list(code)
  for index, char in enumerate(chars):
    if char == "’":
      in_word = 0 < index < len(chars) - 1 and chars[index - 1].isalnum() and chars[index + 1].isalnum()
      if not in_word:
        chars[index] = "'"
    elif char in _CHARACTER_MAP:
      chars[index] = _CHARACTER_MAP[char]
  return "".join(chars)


def drop_dangling_interpolation(code: str) -> str:
  return _DANGLING_INTERPOLATION.sub("", code).strip()


SANITIZER_RULES: Final[tuple[Callable[[str], str], ...]] = (
  strip_event_handlers,
  strip_unit_suffixes,
  close_attribute_templates,
  strip_layout_styles,
  collapse_surplus_closers,
  normalize_characters,
  drop_dangling_interpolation,
)


def sanitize(raw: str) -> str:
  """Apply every repair rule in order. Total: any rule failure leaves its input untouched."""
  code = raw or ""
  for rule in SANITIZER_RULES:
    try:
      code = rule(code)
    except Exception:  # noqa: BLE001
      logger.warning("Sanitizer rule %s failed; keeping its input.", rule.__name__, exc_info=True)
  return code


def reclose_attribute_templates(code: str) -> str:
  """Second-chance repair: close every attribute template that does not terminate on its own line.

  The closing `` `} `` goes before the first tag end on the rest of the line, or at the line end.
  """
  lines = code.split("\n")
  for number, line in enumerate(lines):
    match = _TEMPLATE_ATTR_OPEN.search(line)
    if match is None:
      continue
    rest = line[match.end() :]
    if "`" in rest:
      continue
    tag_end = _opening_tag_end(rest, 0)
    insert_at = match.end() + tag_end
    lines[number] = f"{line[:insert_at]}`}}{line[insert_at:]}"
  return "\n".join(lines)
