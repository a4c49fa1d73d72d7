"""Best-effort formatting of generated component source."""

from __future__ import annotations

import logging

import jsbeautifier

logger = logging.getLogger(__name__)


def _options() -> jsbeautifier.BeautifierOptions:
  options = jsbeautifier.default_options()
  options.indent_size = 2
  # Keep JSX markup intact instead of treating `<` as an operator.
  options.e4x = True
  options.preserve_newlines = True
  options.max_preserve_newlines = 2
  return options


def format_source(code: str) -> str:
  """Pretty-print `code`; on any formatter failure the input is returned untouched."""
  if not code.strip():
    return code
  try:
    formatted = jsbeautifier.beautify(code, _options())
  except Exception:  # noqa: BLE001
    logger.warning("Source formatting failed; keeping unformatted source.", exc_info=True)
    return code
  return formatted.strip() or code
