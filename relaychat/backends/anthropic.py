"""
Anthropic backend: Claude via the Messages API.

The Messages API takes the system prompt as a top-level field rather than
a message, and streams typed SSE events; only text deltas are surfaced.
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

ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MAX_TOKENS = 4096


class AnthropicBackend(OpenAICompatibleBackend):
    """Backend for api.anthropic.com/v1/messages."""

    def _headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
        }

    def _body(self, messages: list[dict], temperature: float, stream: bool) -> dict:
        system = "\n\n".join(m["content"] for m in messages if m["role"] == "system")
        body = {
            "model": self.model,
            "max_tokens": self.max_tokens or DEFAULT_MAX_TOKENS,
            "messages": [m for m in messages if m["role"] != "system"],
            "temperature": temperature,
            "stream": stream,
        }
        if system:
            body["system"] = system
        return body

    def _models_url(self) -> str:
        if self.url.endswith("/messages"):
            return self.url[: -len("/messages")] + "/models"
        return f"{self.url}/models"

    async def send(self, messages: list[dict], temperature: float) -> BackendResponse:
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
                blocks = data["content"]
                content = "".join(b.get("text", "") for b in blocks if b.get("type") == "text")
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
                        if not line.startswith("data:"):
                            continue
                        try:
                            event = json.loads(line[5:].strip())
                        except json.JSONDecodeError as e:
                            raise BackendError(ErrorKind.DECODE_FAILURE, str(e)) from e

                        kind = event.get("type")
                        if kind == "content_block_delta":
                            text = (event.get("delta") or {}).get("text", "")
                            if text:
                                yield text
                        elif kind == "message_stop":
                            return
                        elif kind == "error":
                            err = event.get("error") or {}
                            if err.get("type") == "overloaded_error":
                                raise BackendError(ErrorKind.SERVER_ERROR, err.get("message", ""))
                            raise BackendError(ErrorKind.UNKNOWN, err.get("message", str(err)))
        except BackendError:
            raise
        except Exception as e:
            raise map_transport_error(e, self.name) from e
