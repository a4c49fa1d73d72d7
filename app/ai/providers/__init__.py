"""Provider implementations."""

from app.ai.providers.base import AIModel, ModelResponse, SimpleModelResponse
from app.ai.providers.gemini import GeminiModel
from app.ai.providers.github_models import GitHubModelsModel

__all__ = ["AIModel", "ModelResponse", "SimpleModelResponse", "GeminiModel", "GitHubModelsModel"]
