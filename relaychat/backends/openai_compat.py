"""
Generic OpenAI-compatible backend.

Supports any endpoint that speaks the OpenAI chat completions format:
- OpenAI (chatgpt)
- xAI, DeepSeek, Perplexity, OpenRouter
- Google Gemini's OpenAI-compatible endpoint
- llama.cpp server, vLLM, LocalAI

The configured url is the full chat completions endpoint, e.g.
https://api.openai.com/v1/chat/completions
"""

from __future__ import annotations

import json
import logging
import time
from typing import AsyncIterator

import httpx

from relaychat.backends.base import BackendResponse, BaseBackend, map_transport_error
from relaychat.errors import BackendError, ErrorKind, error_from_status

logger = logging.getLogger(__name__)

_DONE = object()


def parse_sse_line(line: str):
    """
    Extract the content delta from one SSE line.
    Returns the text (possibly ""), or _DONE at the end-of-stream marker.
    """
    if not line.startswith("data:"):
        return ""
    data_str = line[5:].strip()
    if data_str == "[DONE]":
        return _DONE
    try:
        chunk = json.loads(data_str)
    except json.JSONDecodeError as e:
        raise BackendError(ErrorKind.DECODE_FAILURE, str(e)) from e
    choices = chunk.get("choices") or [{}]
    return (choices[0].get("delta") or {}).get("content") or ""


class OpenAICompatibleBackend(BaseBackend):
    """
    Backend for OpenAI-compatible endpoints.

    Works with any service that implements chat/completions and models.
    """

    def __init__(self, *args, transport: httpx.AsyncBaseTransport | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._transport = transport

    def _client(self, timeout: float | None = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout or self.timeout, transport=self._transport)

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def _body(self, messages: list[dict], temperature: float, stream: bool) -> dict:
        body = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "stream": stream,
        }
        if self.max_tokens:
            body["max_tokens"] = self.max_tokens
        return body

    def _models_url(self) -> str:
        if self.url.endswith("/chat/completions"):
            return self.url[: -len("/chat/completions")] + "/models"
        return f"{self.url}/models"

    async def send(self, messages: list[dict], temperature: float) -> BackendResponse:
        """Send a non-streaming request."""
        t0 = time.monotonic()
        try:
            async with self._client() as client:
                resp = await client.post(
                    self.url,
                    json=self._body(messages, temperature, stream=False),
                    headers=self._headers(),
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
                content = data["choices"][0]["message"]["content"]
                if content is None:
                    raise KeyError("content")
                return BackendResponse(
                    ok=True,
                    content=content,
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
        """Send a streaming request, yielding content deltas."""
        try:
            async with self._client() as client:
                async with client.stream(
                    "POST",
                    self.url,
                    json=self._body(messages, temperature, stream=True),
                    headers=self._headers(),
                ) as resp:
                    if resp.status_code >= 400:
                        await resp.aread()
                        raise error_from_status(resp.status_code, resp.text)
                    async for line in resp.aiter_lines():
                        if not line:
                            continue
                        delta = parse_sse_line(line)
                        if delta is _DONE:
                            return
                        if delta:
                            yield delta
        except BackendError:
            raise
        except Exception as e:
            raise map_transport_error(e, self.name) from e

    async def list_models(self) -> list[str]:
        """Fetch available models from the endpoint."""
        try:
            async with self._client(timeout=10) as client:
                resp = await client.get(self._models_url(), headers=self._headers())
                if resp.status_code >= 400:
                    raise error_from_status(resp.status_code, resp.text)
                data = resp.json()
                models = [m.get("id", m.get("name", "")) for m in data.get("data", [])]
                return sorted(m for m in models if m)
        except BackendError:
            raise
        except Exception as e:
            raise map_transport_error(e, self.name) from e
