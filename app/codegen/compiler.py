"""Transpile TSX lesson components to ES5 with the TypeScript compiler bundled in dukpy."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Final

import dukpy
from dukpy.tsc import TS_COMPILER

logger = logging.getLogger(__name__)

SOURCE_NAME: Final[str] = "lesson.tsx"

# Syntactic diagnostics are turned into a thrown SyntaxError so they surface as one error type.
_TRANSPILE_SCRIPT: Final[str] = """
(function (source, fileName) {
  var diagnostics = [];
  var options = {
    target: ts.ScriptTarget.ES5,
    module: ts.ModuleKind.CommonJS,
    jsx: ts.JsxEmit.React,
    noResolve: true
  };
  var output = ts.transpile(source, options, fileName, diagnostics);
  if (diagnostics.length) {
    var first = diagnostics[0];
    var where = fileName;
    if (first.file && typeof first.start === 'number') {
      var position = first.file.getLineAndCharacterOfPosition(first.start);
      where = fileName + '(' + (position.line + 1) + ',' + (position.character + 1) + ')';
    }
    throw new SyntaxError(where + ': ' + ts.flattenDiagnosticMessageText(first.messageText, '\\n'));
  }
  return output;
})(dukpy.source, dukpy.fileName)
"""


class CompileError(Exception):
  """Raised when component source cannot be transpiled."""

  def __init__(self, message: str, *, syntax: bool) -> None:
    super().__init__(message)
    self.syntax = syntax


@dataclass(frozen=True)
class CompiledUnit:
  """Executable ES5 produced from one lesson source; never persisted."""

  body: str
  source_name: str = SOURCE_NAME


class _TypeScriptRuntime:
  """Lazily loaded interpreter holding the TypeScript services; loading it is the expensive part."""

  def __init__(self) -> None:
    self._lock = threading.Lock()
    self._interpreter: dukpy.JSInterpreter | None = None

  def transpile(self, source: str, file_name: str) -> str:
    # Duktape contexts are not thread-safe; transpiles are serialized.
    with self._lock:
      if self._interpreter is None:
        logger.info("Loading TypeScript services from %s", TS_COMPILER)
        interpreter = dukpy.JSInterpreter()
        interpreter.evaljs(Path(TS_COMPILER).read_text(encoding="utf-8"))
        self._interpreter = interpreter
      return self._interpreter.evaljs(_TRANSPILE_SCRIPT, source=source, fileName=file_name)


_runtime = _TypeScriptRuntime()


def _is_syntax_error(message: str) -> bool:
  return "SyntaxError" in message


def transpile(code: str, *, source_name: str = SOURCE_NAME) -> CompiledUnit:
  """Transpile TSX to ES5 with JSX lowered to `React.createElement` calls."""
  try:
    body = _runtime.transpile(code, source_name)
  except dukpy.JSRuntimeError as exc:
    message = str(exc)
    raise CompileError(message, syntax=_is_syntax_error(message)) from exc

  if not isinstance(body, str) or not body.strip():
    raise CompileError(f"{source_name}: compiler produced no output.", syntax=False)
  return CompiledUnit(body=body, source_name=source_name)
