"""
Secret store: API keys keyed by backend id.

The core only ever calls get(); a missing key is passed to the backend as
an empty string so the provider answers with `unauthorized`.
"""

from __future__ import annotations

import logging
import os
import re
from typing import Mapping, Protocol

from relaychat.config import backend_entries

logger = logging.getLogger(__name__)


class SecretStore(Protocol):
    def get(self, backend_id: str) -> str | None:
        ...


def env_var_name(backend_id: str) -> str:
    """RELAYCHAT_<ID>_API_KEY, with the id upper-cased and non-alphanumerics as '_'."""
    return f"RELAYCHAT_{re.sub(r'[^A-Za-z0-9]', '_', backend_id).upper()}_API_KEY"


class EnvSecretStore:
    """
    Reads keys from explicit entries first (config `api_key` values, already
    ${ENV}-resolved by the config loader), then from the environment.
    """

    def __init__(self, explicit: Mapping[str, str] | None = None):
        self._explicit = {k: v for k, v in (explicit or {}).items() if v}

    @classmethod
    def from_config(cls, cfg: dict) -> "EnvSecretStore":
        """Collect `api_key` entries from the backends list, keyed by secret ref."""
        explicit = {}
        for b in backend_entries(cfg):
            key = b.get("secret_ref") or b.get("id") or b.get("name") or b.get("type", "")
            if b.get("api_key"):
                explicit[key] = b["api_key"]
        return cls(explicit)

    def get(self, backend_id: str) -> str | None:
        if backend_id in self._explicit:
            return self._explicit[backend_id]
        value = os.environ.get(env_var_name(backend_id))
        if value is None:
            logger.debug("No secret configured for backend '%s'", backend_id)
        return value


class DictSecretStore:
    """In-memory store, handy for tests and scripting."""

    def __init__(self, secrets: Mapping[str, str] | None = None):
        self._secrets = dict(secrets or {})

    def get(self, backend_id: str) -> str | None:
        return self._secrets.get(backend_id)

    def set(self, backend_id: str, secret: str) -> None:
        self._secrets[backend_id] = secret
