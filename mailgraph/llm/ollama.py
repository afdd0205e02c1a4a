"""Ollama client (``/api/generate`` and ``/api/embeddings``)."""

from __future__ import annotations

from mailgraph.llm.client import LLMError
from mailgraph.llm.http import HTTPModelClient


class OllamaClient(HTTPModelClient):
    """Completion and embedding calls against a local Ollama server."""

    temperature = 0.7
    top_p = 0.9

    async def complete(self, prompt: str) -> str:
        data = await self._post(
            "/api/generate",
            {
                "model": self.completion_model,
                "prompt": prompt,
                "stream": False,
                "options": {"temperature": self.temperature, "top_p": self.top_p},
            },
        )
        if not data.get("done", False):
            raise LLMError("incomplete response from Ollama")
        response = data.get("response")
        if not isinstance(response, str):
            raise LLMError("Ollama response is missing the 'response' field")
        return response

    async def embed(self, text: str) -> list[float]:
        data = await self._post("/api/embeddings", {"model": self.embedding_model, "prompt": text})
        embedding = data.get("embedding")
        if not embedding:
            raise LLMError("empty embedding returned by Ollama")
        return [float(v) for v in embedding]
