"""
Retry wrapper for backends with exponential backoff.

Wraps any backend to add retry logic for transient errors:
- rate_limited (429)
- server_error (5xx)

Non-retried errors (permanent):
- unauthorized, decode/invalid response, network failures, unknown

Streams are only retried while nothing has been yielded yet; once a chunk
reached the caller a failure is re-raised as-is so output is never duplicated.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

from relaychat.backends.base import BackendResponse, BaseBackend
from relaychat.errors import BackendError

logger = logging.getLogger(__name__)


class RetryableBackendWrapper:
    """
    Wraps any backend with exponential backoff retry logic.

    Transparently adds retry handling for transient errors.
    Maintains full compatibility with the backend interface.
    """

    def __init__(
        self,
        backend: BaseBackend,
        max_retries: int = 2,
        backoff_base: float = 1.5,
        backoff_max: float = 10.0,
    ):
        self.backend = backend
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max

        # Expose backend properties
        self.name = backend.name
        self.url = backend.url
        self.model = backend.model
        self.timeout = backend.timeout

    def _backoff_seconds(self, attempt: int) -> float:
        """Calculate backoff time for attempt N (exponential)."""
        delay = self.backoff_base ** attempt
        return min(delay, self.backoff_max)

    async def send(self, messages: list[dict], temperature: float) -> BackendResponse:
        """Send with retry on transient errors."""
        response = BackendResponse(ok=False)
        for attempt in range(self.max_retries + 1):
            response = await self.backend.send(messages, temperature)

            if response.ok:
                return response

            if response.error is None or not response.error.retryable:
                logger.debug(
                    "Backend '%s' returned non-retryable error: %s",
                    self.name, response.error,
                )
                return response

            if attempt < self.max_retries:
                backoff = self._backoff_seconds(attempt + 1)
                logger.warning(
                    "Backend '%s' transient error (%s), retry in %.1fs (%d/%d)",
                    self.name, response.error.kind.value, backoff, attempt + 1, self.max_retries,
                )
                await asyncio.sleep(backoff)
                continue

            logger.error(
                "Backend '%s' exhausted retries (last: %s)", self.name, response.error
            )
        return response

    async def send_stream(self, messages: list[dict], temperature: float) -> AsyncIterator[str]:
        """Stream with retry on failures before the first chunk."""
        for attempt in range(self.max_retries + 1):
            yielded = False
            try:
                async for chunk in self.backend.send_stream(messages, temperature):
                    yielded = True
                    yield chunk
                return
            except BackendError as e:
                if yielded or not e.retryable or attempt >= self.max_retries:
                    raise
                backoff = self._backoff_seconds(attempt + 1)
                logger.warning(
                    "Backend '%s' stream error (%s), retry in %.1fs (%d/%d)",
                    self.name, e.kind.value, backoff, attempt + 1, self.max_retries,
                )
                await asyncio.sleep(backoff)

    async def list_models(self) -> list[str]:
        """Delegate to wrapped backend."""
        return await self.backend.list_models()

    def __repr__(self) -> str:
        return f"<RetryableBackendWrapper {self.backend!r} retries={self.max_retries}>"
