"""Status state machine for lesson generation requests."""

from __future__ import annotations

from typing import TYPE_CHECKING, Final, Literal, get_args

if TYPE_CHECKING:
  from app.storage.lessons_repo import LessonRecord

LessonStatus = Literal["queued", "generating", "generated", "error"]

LESSON_STATUSES: Final[tuple[str, ...]] = get_args(LessonStatus)
TERMINAL_STATUSES: Final[frozenset[str]] = frozenset({"generated", "error"})

# queued -> generating -> {generated | error}; queued may also fail straight to error
# (enqueue failure, client timeout before the worker picked the row up).
_TRANSITIONS: Final[dict[str, frozenset[str]]] = {
  "queued": frozenset({"generating", "error"}),
  "generating": frozenset({"generated", "error"}),
  "generated": frozenset(),
  "error": frozenset(),
}

TIMEOUT_MESSAGE: Final[str] = "Generation timed out after {seconds:g} seconds."


class InvalidTransitionError(RuntimeError):
  """Raised when a status write would regress or leave a terminal state."""

  def __init__(self, lesson_id: str, current: str, target: str) -> None:
    super().__init__(f"Lesson {lesson_id} cannot move from '{current}' to '{target}'.")
    self.lesson_id = lesson_id
    self.current = current
    self.target = target


def is_terminal(status: str) -> bool:
  return status in TERMINAL_STATUSES


def can_transition(current: str, target: str, *, timed_out: bool = False) -> bool:
  """Return whether a row in `current` may be moved to `target`.

  Terminal states are sinks with one exception: an `error` written by the client-side timeout
  may still be promoted to `generated` when the server finishes afterwards.
  """
  if target in _TRANSITIONS.get(current, frozenset()):
    return True
  return current == "error" and timed_out and target == "generated"


def allowed_sources(target: str) -> frozenset[str]:
  """Statuses from which `target` is reachable through a regular transition."""
  return frozenset(status for status, targets in _TRANSITIONS.items() if target in targets)


def timeout_message(seconds: float) -> str:
  return TIMEOUT_MESSAGE.format(seconds=seconds)


def is_consistent(record: LessonRecord) -> bool:
  """Check the row invariant: source iff generated, error message iff error, timeouts only on errors."""
  if record.status not in LESSON_STATUSES:
    return False
  if record.timed_out and record.status != "error":
    return False
  if (record.generated_source is not None) != (record.status == "generated"):
    return False
  return (record.error_message is not None) == (record.status == "error")
