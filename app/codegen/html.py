"""HTML views for render outcomes: the component tree, an error card, or the raw source."""

from __future__ import annotations

import html
import re
from typing import Any, Final

from app.codegen.pipeline import RenderResult, RenderState

_VOID_ELEMENTS: Final[frozenset[str]] = frozenset({"area", "br", "col", "embed", "hr", "img", "input", "link", "meta", "source", "track", "wbr"})
_SAFE_TAG: Final[re.Pattern[str]] = re.compile(r"^[a-zA-Z][a-zA-Z0-9-]*$")
_SAFE_ATTRIBUTE: Final[re.Pattern[str]] = re.compile(r"^[a-zA-Z_:][a-zA-Z0-9_.:-]*$")
_BLOCKED_TAGS: Final[frozenset[str]] = frozenset({"script", "style", "iframe", "frame", "frameset", "object", "embed", "applet", "link", "meta", "base"})
_ATTRIBUTE_ALIASES: Final[dict[str, str]] = {"className": "class", "htmlFor": "for", "xlinkHref": "xlink:href"}
_URL_ATTRIBUTES: Final[frozenset[str]] = frozenset({"href", "src", "action", "formaction", "xlink:href", "poster", "cite", "background", "data", "ping", "codebase", "longdesc", "manifest"})
_SAFE_URL_SCHEMES: Final[frozenset[str]] = frozenset({"http", "https", "mailto", "tel"})
# Browsers ignore whitespace and control characters anywhere in a scheme.
_URL_NOISE: Final[re.Pattern[str]] = re.compile(r"[\x00-\x20\x7f]+")
_URL_SCHEME: Final[re.Pattern[str]] = re.compile(r"^([a-zA-Z][a-zA-Z0-9+.-]*):")


def is_safe_url(value: str) -> bool:
  """Relative URLs and http, https, mailto or tel URLs are safe; any other scheme is not."""
  compact = _URL_NOISE.sub("", html.unescape(value))
  match = _URL_SCHEME.match(compact)
  return match is None or match.group(1).lower() in _SAFE_URL_SCHEMES


def _attribute_text(props: dict[str, Any]) -> str:
  parts: list[str] = []
  for name, value in props.items():
    name = _ATTRIBUTE_ALIASES.get(name, name)
    lowered = name.lower()
    # Inline handlers and styles never reach the page.
    if not _SAFE_ATTRIBUTE.match(name) or lowered.startswith("on") or lowered in {"style", "srcdoc", "dangerouslysetinnerhtml"}:
      continue
    if value is None or value is False:
      continue
    if value is True:
      parts.append(f" {name}")
      continue
    if isinstance(value, (dict, list)):
      continue
    text = str(value)
    if lowered in _URL_ATTRIBUTES and not is_safe_url(text):
      continue
    parts.append(f' {name}="{html.escape(text, quote=True)}"')
  return "".join(parts)


def render_node(node: Any) -> str:
  """Serialize one element-tree node to HTML."""
  if node is None:
    return ""
  if isinstance(node, str):
    return html.escape(node, quote=False)
  if not isinstance(node, dict):
    return html.escape(str(node), quote=False)

  children = "".join(render_node(child) for child in node.get("children") or [])
  tag = str(node.get("type") or "")
  if tag == "#fragment":
    return children
  if not _SAFE_TAG.match(tag) or tag.lower() in _BLOCKED_TAGS:
    return children

  attributes = _attribute_text(node.get("props") or {})
  if tag.lower() in _VOID_ELEMENTS:
    return f"<{tag}{attributes} />"
  return f"<{tag}{attributes}>{children}</{tag}>"


def error_card(message: str, *, title: str = "Rendering Error") -> str:
  return (
    '<div class="lesson-error" role="alert">'
    f"<h3>{html.escape(title)}</h3>"
    f'<p class="lesson-error-message">{html.escape(message)}</p>'
    "</div>"
  )


def source_fallback(source: str) -> str:
  return f'<div class="lesson-source"><h3>Lesson Source</h3><pre>{html.escape(source)}</pre></div>'


def pending_view() -> str:
  return '<div class="lesson-pending"><p>Preparing lesson...</p></div>'


def render_html(result: RenderResult, source: str | None = None) -> str:
  """Pick the view for a render outcome; every path produces visible content."""
  if result.tree is not None and result.state in {RenderState.RENDERED, RenderState.EXECUTION_FAILED}:
    body = f'<div class="lesson-component">{render_node(result.tree)}</div>'
    if result.state == RenderState.EXECUTION_FAILED and result.error:
      body += error_card(result.error, title="Component execution failed")
    return body

  if result.state == RenderState.FAILED:
    card = error_card(result.error or "Failed to render component")
    return card + source_fallback(source) if source else card

  if source:
    return source_fallback(source)
  return pending_view()
