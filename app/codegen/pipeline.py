"""Render pipeline: sanitize, bind the canonical name, transpile, execute.

`compile_and_run` never raises. A syntax-class compile failure on source that contains an
attribute template gets exactly one second attempt after `reclose_attribute_templates`; every
other failure is final for the render and reported through `RenderResult`.

duktape cannot be interrupted and holds the GIL while it runs, so bounded renders happen in a
child process that is terminated once the wall-clock limit passes.
"""

from __future__ import annotations

import enum
import logging
import multiprocessing
from dataclasses import dataclass, field
from multiprocessing.connection import Connection
from typing import Any, Final

from starlette.concurrency import run_in_threadpool

from app.codegen.compiler import CompileError, transpile
from app.codegen.exports import normalize_exports
from app.codegen.sandbox import EXECUTION_FAILED_MESSAGE, ExecutionError, execute, fallback_tree
from app.codegen.sanitizer import reclose_attribute_templates, sanitize

logger = logging.getLogger(__name__)

ATTRIBUTE_TEMPLATE_MARKER: Final[str] = "={`"


class RenderState(str, enum.Enum):
  PENDING = "pending"
  COMPILING = "compiling"
  COMPILED = "compiled"
  COMPILE_FAILED = "compile_failed"
  EXECUTING = "executing"
  RENDERED = "rendered"
  EXECUTION_FAILED = "execution_failed"
  FAILED = "failed"


@dataclass
class RenderResult:
  """Outcome of one render of a lesson source."""

  state: RenderState = RenderState.PENDING
  tree: dict[str, Any] | None = None
  error: str | None = None
  attempts: int = 0
  missing_component: bool = False
  history: list[RenderState] = field(default_factory=list)

  @property
  def ok(self) -> bool:
    return self.state == RenderState.RENDERED

  def advance(self, state: RenderState) -> None:
    self.state = state
    self.history.append(state)


def should_retry(error: CompileError, original_code: str) -> bool:
  """One retry, only for syntax errors on source with an attribute template."""
  return error.syntax and ATTRIBUTE_TEMPLATE_MARKER in original_code


def _attempt(code: str, result: RenderResult) -> CompileError | None:
  """Run one attempt, updating `result`; returns the compile error when compilation failed."""
  result.attempts += 1
  result.advance(RenderState.COMPILING)
  try:
    unit = transpile(normalize_exports(sanitize(code)))
  except CompileError as exc:
    result.error = str(exc)
    result.advance(RenderState.COMPILE_FAILED)
    return exc

  result.advance(RenderState.COMPILED)
  result.advance(RenderState.EXECUTING)
  try:
    outcome = execute(unit)
  except ExecutionError as exc:
    logger.warning("Lesson component failed during %s: %s", exc.stage, exc)
    result.error = str(exc)
    result.tree = fallback_tree(EXECUTION_FAILED_MESSAGE)
    result.advance(RenderState.EXECUTION_FAILED)
    return None

  result.tree = outcome.tree
  result.missing_component = outcome.placeholder
  result.error = None
  result.advance(RenderState.RENDERED)
  return None


def compile_and_run(code: str) -> RenderResult:
  """Render lesson source into an element tree, or a typed failure."""
  result = RenderResult()
  result.history.append(RenderState.PENDING)
  try:
    compile_error = _attempt(code, result)
    if compile_error is None:
      return result

    if should_retry(compile_error, code):
      logger.info("Retrying lesson compile after re-closing attribute templates: %s", compile_error)
      compile_error = _attempt(reclose_attribute_templates(code), result)
      if compile_error is None:
        return result

    logger.warning("Lesson compile failed after %d attempt(s): %s", result.attempts, compile_error)
    result.advance(RenderState.FAILED)
    return result
  except Exception as exc:  # noqa: BLE001
    # Host-side faults (interpreter load, resource exhaustion) still end as a failed render.
    logger.error("Render pipeline fault", exc_info=True)
    result.error = f"{type(exc).__name__}: {exc}"
    result.advance(RenderState.FAILED)
    return result


def _timed_out(timeout_seconds: float) -> RenderResult:
  result = RenderResult(error=f"Rendering timed out after {timeout_seconds:g} seconds.")
  result.advance(RenderState.FAILED)
  return result


def _render_worker(code: str, connection: Connection) -> None:
  try:
    connection.send(compile_and_run(code))
  finally:
    connection.close()


def compile_and_run_isolated(code: str, *, timeout_seconds: float) -> RenderResult:
  """Render in a child process, killing it when it runs past `timeout_seconds`."""
  context = multiprocessing.get_context("spawn")
  receiver, sender = context.Pipe(duplex=False)
  worker = context.Process(target=_render_worker, args=(code, sender), daemon=True)
  worker.start()
  sender.close()
  try:
    if not receiver.poll(timeout_seconds):
      logger.warning("Render exceeded %.1fs; terminating worker pid=%s.", timeout_seconds, worker.pid)
      return _timed_out(timeout_seconds)
    try:
      return receiver.recv()
    except EOFError:
      logger.error("Render worker pid=%s exited with code %s before replying.", worker.pid, worker.exitcode)
      result = RenderResult(error="Render worker exited unexpectedly.")
      result.advance(RenderState.FAILED)
      return result
  finally:
    receiver.close()
    if worker.is_alive():
      worker.terminate()
    worker.join(1.0)
    if worker.is_alive():
      worker.kill()
      worker.join()


async def compile_and_run_async(code: str, *, timeout_seconds: float) -> RenderResult:
  """Run the isolated pipeline off the event loop with a wall-clock bound."""
  return await run_in_threadpool(compile_and_run_isolated, code, timeout_seconds=timeout_seconds)
