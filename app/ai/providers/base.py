"""Base interfaces for text-generation backends."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Protocol


class ModelResponse(Protocol):
  """Response contract for model outputs."""

  content: str
  usage: dict[str, int] | None


@dataclass
class SimpleModelResponse:
  """Minimal model response structure."""

  content: str
  usage: dict[str, int] | None = None


class AIModel(ABC):
  """Abstract base class for generation backends."""

  name: str
  provider: str

  @abstractmethod
  async def generate(self, prompt: str, *, system: str | None = None) -> ModelResponse:
    """Generate a text response for the given prompt."""
