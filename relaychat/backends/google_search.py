"""
Google Custom Search backend.

Not a language model: it takes the last user message as a query and
answers with formatted search results. The configured `model` holds the
programmable search engine id (cx).
"""

from __future__ import annotations

import logging
import time
from typing import AsyncIterator

from relaychat.backends.base import BackendResponse, map_transport_error
from relaychat.backends.openai_compat import OpenAICompatibleBackend
from relaychat.errors import BackendError, ErrorKind, error_from_status

logger = logging.getLogger(__name__)

MAX_RESULTS = 5


def format_search_results(items: list[dict]) -> str:
    """Render search hits as markdown for a human or an LLM to read."""
    if not items:
        return "No search results found."

    lines = ["### Google Search Results:\n"]
    for index, item in enumerate(items[:MAX_RESULTS], start=1):
        lines.append(f"**{index}. [{item.get('title', '')}]({item.get('link', '')})**")
        lines.append(f"{item.get('snippet', '')}\n")
    lines.append(
        "\n---\n\nThese search results are from Google Search API. "
        "Let me help you understand this information better."
    )
    return "\n".join(lines)


class GoogleSearchBackend(OpenAICompatibleBackend):
    """Google Custom Search JSON API, exposed through the backend contract."""

    @staticmethod
    def _query(messages: list[dict]) -> str:
        for msg in reversed(messages):
            if msg.get("role") == "user" and msg.get("content"):
                return msg["content"]
        raise BackendError(ErrorKind.INVALID_RESPONSE, "no user query in request")

    async def search(self, query: str) -> str:
        """Run one search and return formatted results. Raises BackendError."""
        try:
            async with self._client() as client:
                resp = await client.get(
                    self.url,
                    params={
                        "key": self.api_key,
                        "cx": self.model,
                        "q": query,
                        "num": MAX_RESULTS,
                    },
                )
                if resp.status_code >= 400:
                    raise error_from_status(resp.status_code, resp.text)
                data = resp.json()
                items = data.get("items") or []
                logger.debug("Search for '%s' returned %d results", query, len(items))
                return format_search_results(items)
        except BackendError:
            raise
        except Exception as e:
            raise map_transport_error(e, self.name) from e

    async def send(self, messages: list[dict], temperature: float) -> BackendResponse:
        t0 = time.monotonic()
        try:
            content = await self.search(self._query(messages))
        except BackendError as e:
            logger.error("Search backend '%s' failed: %s", self.name, e)
            return BackendResponse.failure(
                e, backend_name=self.name, latency_ms=(time.monotonic() - t0) * 1000
            )
        return BackendResponse(
            ok=True,
            content=content,
            backend_name=self.name,
            latency_ms=(time.monotonic() - t0) * 1000,
        )

    async def send_stream(self, messages: list[dict], temperature: float) -> AsyncIterator[str]:
        """Search results arrive all at once, as a single chunk."""
        yield await self.search(self._query(messages))

    async def list_models(self) -> list[str]:
        # No models to list; the search engine id stands in for one
        return [self.model]
