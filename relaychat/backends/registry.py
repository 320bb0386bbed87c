"""
Backend registry: maps backend type tags to adapters.

Holds the configured BackendConfigs (in config order) and hands out
retry-wrapped adapters. The orchestrator only ever sees the adapter
interface; which concrete class serves a tag is decided here.
"""

from __future__ import annotations

import logging

from relaychat.backends.anthropic import AnthropicBackend
from relaychat.backends.base import BackendConfig, BaseBackend
from relaychat.backends.google_search import GoogleSearchBackend
from relaychat.backends.ollama import OllamaBackend
from relaychat.backends.openai_compat import OpenAICompatibleBackend
from relaychat.backends.retry_wrapper import RetryableBackendWrapper
from relaychat.config import backend_entries, retry_block
from relaychat.errors import BackendError, ErrorKind
from relaychat.secrets import SecretStore

logger = logging.getLogger(__name__)

# Backend type tag → backend class
PROVIDERS: dict[str, type[BaseBackend]] = {
    "chatgpt": OpenAICompatibleBackend,
    "xai": OpenAICompatibleBackend,
    "gemini": OpenAICompatibleBackend,
    "perplexity": OpenAICompatibleBackend,
    "deepseek": OpenAICompatibleBackend,
    "openrouter": OpenAICompatibleBackend,
    "openai_compat": OpenAICompatibleBackend,
    "ollama": OllamaBackend,
    "claude": AnthropicBackend,
    "googlesearch": GoogleSearchBackend,
}

SEARCH_TYPES = frozenset({"googlesearch"})

# Types eligible to turn search results into an answer
SEARCH_PROCESSOR_TYPES = ("chatgpt", "claude", "gemini", "perplexity")


class BackendRegistry:
    """Configured backends plus the policy for picking one."""

    def __init__(
        self,
        configs: list[BackendConfig],
        secrets: SecretStore,
        max_retries: int = 2,
        backoff_base: float = 1.5,
        backoff_max: float = 10.0,
    ):
        self.secrets = secrets
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self.configs: list[BackendConfig] = []
        for cfg in configs:
            if cfg.type not in PROVIDERS:
                logger.warning("Unknown backend type '%s' for '%s', skipping", cfg.type, cfg.id)
                continue
            if not cfg.url:
                logger.warning("Backend '%s' has no url, skipping", cfg.id)
                continue
            self.configs.append(cfg)

        names = [f"{c.id}({c.type})" for c in self.configs]
        logger.info("Backend registry initialized: %s", ", ".join(names) or "empty")

    @classmethod
    def from_config(cls, cfg: dict, secrets: SecretStore) -> "BackendRegistry":
        retry = retry_block(cfg)
        return cls(
            [BackendConfig.from_dict(b) for b in backend_entries(cfg)],
            secrets,
            max_retries=retry.get("max_retries", 2),
            backoff_base=retry.get("backoff_base", 1.5),
            backoff_max=retry.get("backoff_max", 10.0),
        )

    def get_config(self, backend_id: str) -> BackendConfig | None:
        for cfg in self.configs:
            if cfg.id == backend_id:
                return cfg
        return None

    @staticmethod
    def is_llm(cfg: BackendConfig) -> bool:
        return cfg.type not in SEARCH_TYPES

    def create(self, cfg: BackendConfig, model: str = ""):
        """Instantiate a retry-wrapped adapter for `cfg`, optionally overriding its model."""
        cls = PROVIDERS[cfg.type]
        backend = cls(
            name=cfg.name,
            url=cfg.url,
            model=model or cfg.model,
            api_key=self.secrets.get(cfg.secret_ref) or "",
            timeout=cfg.timeout,
            max_tokens=cfg.max_tokens,
        )
        return RetryableBackendWrapper(
            backend,
            max_retries=self.max_retries,
            backoff_base=self.backoff_base,
            backoff_max=self.backoff_max,
        )

    def get(self, backend_id: str, model: str = ""):
        """Adapter for a configured backend id. Raises BackendError if unknown."""
        cfg = self.get_config(backend_id)
        if cfg is None:
            raise BackendError(
                ErrorKind.NO_BACKEND_CONFIGURED, f"Backend '{backend_id}' not configured"
            )
        return self.create(cfg, model)

    def search_config(self) -> BackendConfig | None:
        """First configured search-capable backend."""
        for cfg in self.configs:
            if cfg.type in SEARCH_TYPES:
                return cfg
        return None

    def default_llm_config(self) -> BackendConfig | None:
        """
        First configured backend able to process search results.
        First match in config order, deterministic within one process.
        """
        for cfg in self.configs:
            if cfg.type in SEARCH_PROCESSOR_TYPES:
                return cfg
        return None

    async def list_models(self, backend_id: str) -> list[str]:
        return await self.get(backend_id).list_models()
