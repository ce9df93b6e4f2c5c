"""Collaborator interfaces and their default clients."""

import logging
from typing import Protocol

logger = logging.getLogger(__name__)


class CompletionService(Protocol):
    def complete(
        self,
        prompt: str,
        *,
        system: str | None = None,
        max_tokens: int = 1000,
        temperature: float = 0.3,
    ) -> str: ...


class EmbeddingService(Protocol):
    def embed(self, text: str) -> list[float]: ...


class AnthropicCompletion:
    """Text completion backed by the Claude API."""

    def __init__(self, api_key: str, model: str = "claude-sonnet-4-20250514"):
        if not api_key:
            raise ValueError("Claude API key required. Set ANTHROPIC_API_KEY or claude_api_key in config.")

        import anthropic
        self.client = anthropic.Anthropic(api_key=api_key)
        self.model = model

    def complete(
        self,
        prompt: str,
        *,
        system: str | None = None,
        max_tokens: int = 1000,
        temperature: float = 0.3,
    ) -> str:
        kwargs = {}
        if system:
            kwargs["system"] = system
        response = self.client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[{"role": "user", "content": prompt}],
            **kwargs,
        )
        return "".join(block.text for block in response.content if getattr(block, "type", "") == "text")


class SentenceTransformerEmbedding:
    """Local embedding model via sentence-transformers."""

    def __init__(self, model_name: str = "sentence-transformers/all-MiniLM-L6-v2"):
        self.model_name = model_name
        self._model = None

    @property
    def model(self):
        """Lazy-load the embedding model."""
        if self._model is None:
            from sentence_transformers import SentenceTransformer
            logger.info("Loading embedding model %s", self.model_name)
            self._model = SentenceTransformer(self.model_name)
        return self._model

    def embed(self, text: str) -> list[float]:
        return self.model.encode(text).tolist()


def completion_from_config(config: dict) -> AnthropicCompletion | None:
    """Build the default completion client, or None when no key is configured."""
    api_key = config.get("claude_api_key")
    if not api_key:
        return None
    return AnthropicCompletion(api_key, model=config.get("claude_model", "claude-sonnet-4-20250514"))
