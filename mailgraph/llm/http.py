"""Shared httpx plumbing for the HTTP language-model clients.

Provides JSON POST with exponential backoff retry on transport errors and
on throttling / server-error status codes.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from mailgraph.llm.client import LLMError

logger = logging.getLogger(__name__)

DEFAULT_RETRY_DELAYS = (1.0, 2.0, 4.0)
RETRY_ON_STATUS = (429, 500, 502, 503, 504)


class HTTPModelClient:
    """Base class holding one ``httpx.AsyncClient`` per model server.

    Subclasses implement ``complete`` and ``embed`` on top of ``_post``.
    """

    def __init__(
        self,
        base_url: str,
        completion_model: str,
        embedding_model: str,
        *,
        timeout: float = 120.0,
        max_retries: int = 2,
        retry_delays: tuple[float, ...] = DEFAULT_RETRY_DELAYS,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.completion_model = completion_model
        self.embedding_model = embedding_model
        self._max_retries = max_retries
        self._retry_delays = retry_delays or (0.0,)
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            headers={"Content-Type": "application/json", **(headers or {})},
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> HTTPModelClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def _delay(self, attempt: int) -> float:
        return self._retry_delays[min(attempt, len(self._retry_delays) - 1)]

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        """POST ``payload`` as JSON and return the decoded JSON object.

        Args:
            path: Path relative to the client's base URL.
            payload: Request body.

        Returns:
            The decoded response object.

        Raises:
            LLMError: If the request fails after all retries, returns a
                non-2xx status, or the body is not a JSON object.
        """
        last_error: Exception | None = None

        for attempt in range(self._max_retries + 1):
            try:
                response = await self._client.post(path, json=payload)
            except httpx.RequestError as exc:
                last_error = exc
                if attempt < self._max_retries:
                    delay = self._delay(attempt)
                    logger.warning(
                        "Request to %s failed: %s, retrying in %.1fs (attempt %d/%d)",
                        path, exc, delay, attempt + 1, self._max_retries,
                    )
                    await asyncio.sleep(delay)
                    continue
                raise LLMError(f"request to {path} failed: {exc}") from exc

            if response.status_code in RETRY_ON_STATUS and attempt < self._max_retries:
                delay = self._delay(attempt)
                logger.warning(
                    "Request to %s returned %d, retrying in %.1fs (attempt %d/%d)",
                    path, response.status_code, delay, attempt + 1, self._max_retries,
                )
                await asyncio.sleep(delay)
                continue

            try:
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                raise LLMError(f"{path} returned HTTP {response.status_code}: {response.text[:200]}") from exc

            try:
                data = response.json()
            except ValueError as exc:
                raise LLMError(f"{path} returned a non-JSON body") from exc
            if not isinstance(data, dict):
                raise LLMError(f"{path} returned {type(data).__name__}, expected an object")
            return data

        raise LLMError(f"request to {path} failed after {self._max_retries} retries: {last_error}")
