"""Primary backend: OpenAI-compatible chat completions (GitHub Models by default)."""

from __future__ import annotations

import logging
from typing import Any

from openai import AsyncOpenAI

from app.ai.providers.base import AIModel, ModelResponse, SimpleModelResponse

logger = logging.getLogger(__name__)


def _message_text(response: Any) -> str:
  """Pull text out of a chat completion, tolerating the shapes different models return."""
  choices = getattr(response, "choices", None) or []
  if not choices:
    return ""
  message = choices[0].message
  if message is None:
    return ""
  if message.content:
    return message.content

  # Some models answer through a function call instead of plain content.
  function_call = getattr(message, "function_call", None)
  if function_call is not None:
    return function_call.arguments or function_call.name or ""
  return ""


class GitHubModelsModel(AIModel):
  """Chat-completions client for an OpenAI-compatible endpoint."""

  def __init__(self, name: str, *, api_key: str | None, base_url: str, temperature: float) -> None:
    if not api_key:
      raise ValueError("FORGE_PRIMARY_API_KEY (or GITHUB_TOKEN) is required for the primary backend.")
    self.name = name
    self.provider = "github-models"
    self._temperature = temperature
    self._client = AsyncOpenAI(api_key=api_key, base_url=base_url)

  async def generate(self, prompt: str, *, system: str | None = None) -> ModelResponse:
    """Generate a chat completion and return its text."""
    messages: list[dict[str, str]] = []
    if system:
      messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})

    response = await self._client.chat.completions.create(model=self.name, messages=messages, temperature=self._temperature)
    content = _message_text(response)
    logger.info("Primary backend %s returned %d characters", self.name, len(content))

    usage = None
    if response.usage:
      usage = {"prompt_tokens": response.usage.prompt_tokens, "completion_tokens": response.usage.completion_tokens, "total_tokens": response.usage.total_tokens}
    return SimpleModelResponse(content=content, usage=usage)
