"""
Error taxonomy shared by backends, persistence and the orchestrator.

Backends never leak transport exceptions: everything is mapped onto an
ErrorKind so callers can react without knowing which provider failed.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    UNAUTHORIZED = "unauthorized"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    DECODE_FAILURE = "decode_failure"
    NETWORK_FAILURE = "network_failure"
    UNSUPPORTED = "unsupported"
    INVALID_RESPONSE = "invalid_response"
    NO_BACKEND_CONFIGURED = "no_backend_configured"
    UNKNOWN = "unknown"


# Transient kinds, worth another attempt after a backoff
RETRYABLE_KINDS = frozenset({ErrorKind.RATE_LIMITED, ErrorKind.SERVER_ERROR})


class RelayChatError(Exception):
    """Base class for every error raised by relaychat."""


class BackendError(RelayChatError):
    """A provider-agnostic backend failure."""

    def __init__(self, kind: ErrorKind, detail: str = ""):
        self.kind = kind
        self.detail = detail
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


class PersistenceError(RelayChatError):
    """Conversation state could not be committed after all attempts."""


class GenerationInProgress(RelayChatError):
    """A second generation was started while one is still in flight."""


def error_from_status(status_code: int, text: str = "") -> BackendError:
    """Map an HTTP status code onto the error taxonomy."""
    snippet = text[:200]
    if status_code in (401, 403):
        return BackendError(ErrorKind.UNAUTHORIZED, snippet)
    if status_code == 429:
        return BackendError(ErrorKind.RATE_LIMITED, snippet)
    if 500 <= status_code <= 599:
        return BackendError(
            ErrorKind.SERVER_ERROR,
            f"Server error with status code {status_code}",
        )
    return BackendError(ErrorKind.UNKNOWN, f"Unexpected status code: {status_code}")
