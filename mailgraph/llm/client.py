"""Language-model client contract and provider factory."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from mailgraph.core.config import Settings

logger = logging.getLogger(__name__)


class LLMError(Exception):
    """Raised when a completion or embedding call fails.

    Covers transport errors, non-2xx responses and malformed payloads.
    """


@runtime_checkable
class LanguageModelClient(Protocol):
    """Completion and embedding calls used by the extraction pipeline."""

    async def complete(self, prompt: str) -> str:
        """Return the model's completion for ``prompt``.

        Raises:
            LLMError: If the call fails.
        """
        ...

    async def embed(self, text: str) -> list[float]:
        """Return an embedding vector for ``text``.

        Raises:
            LLMError: If the call fails.
        """
        ...

    async def aclose(self) -> None:
        """Release the underlying HTTP connection pool."""
        ...


def create_llm_client(settings: Settings) -> LanguageModelClient:
    """Build the client selected by ``settings.llm_provider``.

    Args:
        settings: Application settings.

    Returns:
        An Ollama or LiteLLM client.
    """
    if settings.llm_provider == "litellm":
        from mailgraph.llm.litellm import LiteLLMClient

        logger.info("Using LiteLLM at %s (model=%s)", settings.litellm_url, settings.completion_model)
        return LiteLLMClient(
            base_url=settings.litellm_url,
            completion_model=settings.completion_model,
            embedding_model=settings.embedding_model,
            api_key=settings.litellm_api_key.get_secret_value(),
            timeout=settings.llm_timeout_seconds,
            max_retries=settings.llm_max_retries,
        )

    from mailgraph.llm.ollama import OllamaClient

    logger.info("Using Ollama at %s (model=%s)", settings.ollama_url, settings.completion_model)
    return OllamaClient(
        base_url=settings.ollama_url,
        completion_model=settings.completion_model,
        embedding_model=settings.embedding_model,
        timeout=settings.llm_timeout_seconds,
        max_retries=settings.llm_max_retries,
    )
