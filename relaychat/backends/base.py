"""
Base backend abstraction.
All backends implement this interface so the orchestrator can treat them uniformly.
"""

from __future__ import annotations

import abc
import json
import logging
from dataclasses import dataclass, field
from typing import AsyncIterator

import httpx

from relaychat.errors import BackendError, ErrorKind

logger = logging.getLogger(__name__)


@dataclass
class BackendConfig:
    """Which adapter, endpoint, credentials and model to use. Read-only to the core."""
    id: str
    type: str
    url: str
    model: str = ""
    secret_ref: str = ""
    max_tokens: int | None = None
    timeout: float = 180
    name: str = ""

    def __post_init__(self):
        if not self.secret_ref:
            self.secret_ref = self.id
        if not self.name:
            self.name = self.id

    @classmethod
    def from_dict(cls, cfg: dict) -> "BackendConfig":
        return cls(
            id=cfg.get("id") or cfg.get("name") or cfg.get("type", ""),
            type=cfg.get("type", "chatgpt"),
            url=cfg.get("url", ""),
            model=cfg.get("model", ""),
            secret_ref=cfg.get("secret_ref", ""),
            max_tokens=cfg.get("max_tokens"),
            timeout=cfg.get("timeout", 180),
            name=cfg.get("name", ""),
        )


@dataclass
class BackendResponse:
    """Standardized single-shot response from any backend."""
    ok: bool
    content: str = ""
    status_code: int = 200
    backend_name: str = ""
    latency_ms: float = 0.0
    error: BackendError | None = None
    data: dict = field(default_factory=dict)

    @classmethod
    def failure(cls, error: BackendError, backend_name: str = "", **kwargs) -> "BackendResponse":
        return cls(ok=False, error=error, backend_name=backend_name, **kwargs)


class BaseBackend(abc.ABC):
    """
    Abstract base for chat backends.
    Each backend knows how to send a conversation, stream one, and list models.
    """

    def __init__(
        self,
        name: str,
        url: str,
        model: str = "",
        api_key: str = "",
        timeout: float = 180,
        max_tokens: int | None = None,
    ):
        self.name = name
        self.url = url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.timeout = timeout
        self.max_tokens = max_tokens

    @abc.abstractmethod
    async def send(self, messages: list[dict], temperature: float) -> BackendResponse:
        """
        Single-shot request.
        Returns BackendResponse with the full content or a typed error.
        """
        ...

    @abc.abstractmethod
    def send_stream(self, messages: list[dict], temperature: float) -> AsyncIterator[str]:
        """
        Streaming request. Yields text chunks in generation order.
        Raises BackendError on failure.
        """
        ...

    @abc.abstractmethod
    async def list_models(self) -> list[str]:
        """Return model ids served by this backend. Raises BackendError."""
        ...

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r} url={self.url!r} model={self.model!r}>"


def map_transport_error(e: Exception, backend_name: str) -> BackendError:
    """Map an httpx/json exception onto the error taxonomy."""
    if isinstance(e, BackendError):
        return e
    if isinstance(e, httpx.TimeoutException):
        logger.warning("Backend '%s' timed out: %s", backend_name, e)
        return BackendError(ErrorKind.NETWORK_FAILURE, f"Timeout: {e}")
    if isinstance(e, httpx.HTTPError):
        logger.warning("Backend '%s' request failed: %s", backend_name, e)
        return BackendError(ErrorKind.NETWORK_FAILURE, str(e))
    if isinstance(e, json.JSONDecodeError):
        logger.warning("Backend '%s' returned undecodable JSON: %s", backend_name, e)
        return BackendError(ErrorKind.DECODE_FAILURE, str(e))
    if isinstance(e, (KeyError, IndexError, TypeError)):
        logger.warning("Backend '%s' returned an unexpected payload: %s", backend_name, e)
        return BackendError(ErrorKind.INVALID_RESPONSE, str(e))
    logger.warning("Backend '%s' failed: %s", backend_name, e)
    return BackendError(ErrorKind.UNKNOWN, str(e))
