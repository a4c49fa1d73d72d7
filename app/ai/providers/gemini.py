"""Fallback backend: Gemini through the google-genai SDK with a bounded output size."""

from __future__ import annotations

import logging

from google import genai
from google.genai import types

from app.ai.providers.base import AIModel, ModelResponse, SimpleModelResponse

logger = logging.getLogger(__name__)


class GeminiModel(AIModel):
  """Gemini model client used when the primary backend yields nothing usable."""

  def __init__(self, name: str, *, api_key: str | None, max_output_tokens: int, temperature: float) -> None:
    if not api_key:
      raise ValueError("FORGE_GEMINI_API_KEY (or GEMINI_API_KEY) is required for the fallback backend.")
    self.name = name
    self.provider = "gemini"
    self._max_output_tokens = max_output_tokens
    self._temperature = temperature
    self._client = genai.Client(api_key=api_key)

  async def generate(self, prompt: str, *, system: str | None = None) -> ModelResponse:
    """Generate text with the async client so the event loop is never blocked."""
    # Gemini takes the system prompt and user prompt as a single text turn, like the fallback always has.
    contents = f"{system}\n\nUser Request:\n{prompt}" if system else prompt
    config = types.GenerateContentConfig(max_output_tokens=self._max_output_tokens, temperature=self._temperature)
    response = await self._client.aio.models.generate_content(model=self.name, contents=contents, config=config)

    content = (response.text or "").strip()
    logger.info("Fallback backend %s returned %d characters", self.name, len(content))

    usage = None
    if response.usage_metadata:
      usage = {"prompt_tokens": response.usage_metadata.prompt_token_count, "completion_tokens": response.usage_metadata.candidates_token_count, "total_tokens": response.usage_metadata.total_token_count}
    return SimpleModelResponse(content=content, usage=usage)
