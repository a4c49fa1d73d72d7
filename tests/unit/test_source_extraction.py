"""Unit tests for turning model output into a bare component declaration."""

from __future__ import annotations

import pytest

from app.codegen.exports import CANONICAL_COMPONENT_NAME, has_canonical_component, normalize_exports
from app.codegen.fences import extract_code, extract_fenced_block, strip_module_syntax
from app.codegen.formatter import format_source
from app.services.generation import prepare_source
from tests.fakes import VALID_COMPONENT


def test_extract_fenced_block_returns_first_block_interior() -> None:
  raw = "Here you go:\n```tsx\nfunction A() {}\n```\nand another\n```js\nfunction B() {}\n```"
  assert extract_fenced_block(raw) == "function A() {}"


def test_extract_fenced_block_without_fences_is_identity() -> None:
  assert extract_fenced_block("function A() {}") == "function A() {}"


def test_extract_fenced_block_strips_unterminated_leading_fence() -> None:
  assert extract_fenced_block("```tsx\nfunction A() {}") == "function A() {}"


def test_extract_fenced_block_strips_trailing_fence_only() -> None:
  assert extract_fenced_block("function A() {}\n```") == "function A() {}"


def test_strip_module_syntax_removes_imports_and_export_prefixes() -> None:
  code = "import React from 'react';\nimport { useState } from 'react';\nexport const size = 1;\nexport default App;"
  assert strip_module_syntax(code) == "const size = 1;\nApp;"


def test_extract_code_combines_both_steps() -> None:
  raw = "```tsx\nimport React from 'react';\nexport function Quiz() { return null; }\n```"
  assert extract_code(raw) == "function Quiz() { return null; }"


def test_normalize_exports_renames_default_exported_function() -> None:
  assert normalize_exports("export default function Quiz() {}") == f"function {CANONICAL_COMPONENT_NAME}() {{}}"


def test_normalize_exports_aliases_default_exported_identifier() -> None:
  code = "function Quiz() { return null; }\nexport default Quiz;"
  assert normalize_exports(code) == "function Quiz() { return null; }\nconst LessonComponent = Quiz;"


def test_normalize_exports_aliases_anonymous_default_function() -> None:
  assert normalize_exports("export default function () { return null; }") == "const LessonComponent = function () { return null; }"


def test_normalize_exports_keeps_existing_canonical_name() -> None:
  code = "function Helper() {}\nfunction LessonComponent() {}"
  assert normalize_exports(code) == code


def test_normalize_exports_renames_first_function_declaration() -> None:
  code = "function Helper() {}\nfunction Quiz() {}"
  assert normalize_exports(code) == "function LessonComponent() {}\nfunction Quiz() {}"


def test_normalize_exports_leaves_arrow_components_unbound() -> None:
  code = "const Quiz = () => null;"
  assert normalize_exports(code) == code
  assert not has_canonical_component(code)


def test_format_source_indents_with_two_spaces() -> None:
  formatted = format_source("function LessonComponent(){return 1}")
  assert formatted.startswith("function LessonComponent() {")
  assert "\n  return 1" in formatted


def test_format_source_returns_input_when_formatter_fails(monkeypatch: pytest.MonkeyPatch) -> None:
  def _explode(code: str, options: object) -> str:
    raise ValueError("bad input")

  monkeypatch.setattr("app.codegen.formatter.jsbeautifier.beautify", _explode)
  assert format_source("function A(){}") == "function A(){}"


def test_prepare_source_binds_component_and_drops_module_syntax() -> None:
  source = prepare_source(VALID_COMPONENT, format_output=False)
  assert source.startswith("function LessonComponent() {")
  assert "import" not in source
  assert "export" not in source


def test_prepare_source_of_fence_only_output_is_empty() -> None:
  assert prepare_source("```tsx\n```", format_output=False) == ""
