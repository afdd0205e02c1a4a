"""LiteLLM proxy client (OpenAI-compatible chat and embedding endpoints)."""

from __future__ import annotations

from typing import Any

import httpx

from mailgraph.llm.client import LLMError
from mailgraph.llm.http import DEFAULT_RETRY_DELAYS, HTTPModelClient


class LiteLLMClient(HTTPModelClient):
    """Completion and embedding calls through a LiteLLM proxy."""

    temperature = 0.7
    top_p = 0.9

    def __init__(
        self,
        base_url: str,
        completion_model: str,
        embedding_model: str,
        *,
        api_key: str = "",
        timeout: float = 120.0,
        max_retries: int = 2,
        retry_delays: tuple[float, ...] = DEFAULT_RETRY_DELAYS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else None
        super().__init__(
            base_url,
            completion_model,
            embedding_model,
            timeout=timeout,
            max_retries=max_retries,
            retry_delays=retry_delays,
            headers=headers,
            transport=transport,
        )

    async def complete(self, prompt: str) -> str:
        payload: dict[str, Any] = {
            "model": self.completion_model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.temperature,
            "top_p": self.top_p,
            "stream": False,
        }
        data = await self._post("/v1/chat/completions", payload)
        choices = data.get("choices") or []
        if not choices:
            raise LLMError("no choices in LiteLLM response")
        content = (choices[0].get("message") or {}).get("content")
        if not isinstance(content, str):
            raise LLMError("LiteLLM choice has no message content")
        return content

    async def embed(self, text: str) -> list[float]:
        vectors = await self.embed_many([text])
        return vectors[0]

    async def embed_many(self, texts: list[str]) -> list[list[float]]:
        """Embed several texts in one request, preserving input order."""
        if not texts:
            return []
        data = await self._post("/v1/embeddings", {"model": self.embedding_model, "input": texts})
        items = data.get("data") or []
        if len(items) != len(texts):
            raise LLMError(f"expected {len(texts)} embeddings, got {len(items)}")

        ordered = sorted(items, key=lambda item: item.get("index", 0))
        vectors: list[list[float]] = []
        for item in ordered:
            embedding = item.get("embedding")
            if not embedding:
                raise LLMError("empty embedding returned by LiteLLM")
            vectors.append([float(v) for v in embedding])
        return vectors
