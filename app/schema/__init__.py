"""ORM models for lessons and generation traces."""

from .lessons import Lesson
from .traces import Trace

__all__ = ["Lesson", "Trace"]
