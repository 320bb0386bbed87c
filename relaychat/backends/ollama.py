"""
Ollama backend: local LLM inference via Ollama's native /api/chat.
Streaming responses are newline-delimited JSON, one object per chunk.
"""

from __future__ import annotations

import json
import logging
import time
from typing import AsyncIterator

from relaychat.backends.base import BackendResponse, map_transport_error
from relaychat.backends.openai_compat import OpenAICompatibleBackend
from relaychat.errors import BackendError, ErrorKind, error_from_status

logger = logging.getLogger(__name__)


class OllamaBackend(OpenAICompatibleBackend):
    """Backend for local Ollama instances."""

    def _base_url(self) -> str:
        if self.url.endswith("/api/chat"):
            return self.url[: -len("/api/chat")]
        return self.url

    def _body(self, messages: list[dict], temperature: float, stream: bool) -> dict:
        options: dict = {"temperature": temperature}
        if self.max_tokens:
            options["num_predict"] = self.max_tokens
        return {
            "model": self.model,
            "messages": messages,
            "stream": stream,
            "options": options,
        }

    async def send(self, messages: list[dict], temperature: float) -> BackendResponse:
        """Send a non-streaming request to Ollama."""
        t0 = time.monotonic()
        try:
            async with self._client() as client:
                resp = await client.post(
                    f"{self._base_url()}/api/chat",
                    json=self._body(messages, temperature, stream=False),
                )
                latency = (time.monotonic() - t0) * 1000
                if resp.status_code >= 400:
                    return BackendResponse.failure(
                        error_from_status(resp.status_code, resp.text),
                        backend_name=self.name,
                        status_code=resp.status_code,
                        latency_ms=latency,
                    )
                data = resp.json()
                return BackendResponse(
                    ok=True,
                    content=data["message"]["content"],
                    status_code=resp.status_code,
                    backend_name=self.name,
                    latency_ms=latency,
                    data=data,
                )
        except Exception as e:
            latency = (time.monotonic() - t0) * 1000
            return BackendResponse.failure(
                map_transport_error(e, self.name),
                backend_name=self.name,
                latency_ms=latency,
            )

    async def send_stream(self, messages: list[dict], temperature: float) -> AsyncIterator[str]:
        """Stream from Ollama, yielding message content per NDJSON line."""
        try:
            async with self._client() as client:
                async with client.stream(
                    "POST",
                    f"{self._base_url()}/api/chat",
                    json=self._body(messages, temperature, stream=True),
                ) as resp:
                    if resp.status_code >= 400:
                        await resp.aread()
                        raise error_from_status(resp.status_code, resp.text)
                    async for line in resp.aiter_lines():
                        if not line.strip():
                            continue
                        try:
                            chunk = json.loads(line)
                        except json.JSONDecodeError as e:
                            raise BackendError(ErrorKind.DECODE_FAILURE, str(e)) from e
                        if chunk.get("error"):
                            raise BackendError(ErrorKind.SERVER_ERROR, str(chunk["error"]))
                        content = (chunk.get("message") or {}).get("content", "")
                        if content:
                            yield content
                        if chunk.get("done"):
                            return
        except BackendError:
            raise
        except Exception as e:
            raise map_transport_error(e, self.name) from e

    async def list_models(self) -> list[str]:
        """Fetch locally pulled models from Ollama."""
        try:
            async with self._client(timeout=10) as client:
                resp = await client.get(f"{self._base_url()}/api/tags")
                if resp.status_code >= 400:
                    raise error_from_status(resp.status_code, resp.text)
                data = resp.json()
                models = [m.get("name", "") for m in data.get("models", [])]
                return sorted(m for m in models if m)
        except BackendError:
            raise
        except Exception as e:
            raise map_transport_error(e, self.name) from e
