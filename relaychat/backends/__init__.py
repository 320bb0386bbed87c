"""
Backend adapters for relaychat.
OpenAI-compatible, Ollama, Anthropic and Google Custom Search, behind one interface.
"""
from relaychat.backends.base import BackendConfig, BackendResponse, BaseBackend
from relaychat.backends.anthropic import AnthropicBackend
from relaychat.backends.google_search import GoogleSearchBackend
from relaychat.backends.ollama import OllamaBackend
from relaychat.backends.openai_compat import OpenAICompatibleBackend
from relaychat.backends.registry import BackendRegistry, PROVIDERS
from relaychat.backends.retry_wrapper import RetryableBackendWrapper

__all__ = [
    "BackendConfig",
    "BackendResponse",
    "BaseBackend",
    "AnthropicBackend",
    "GoogleSearchBackend",
    "OllamaBackend",
    "OpenAICompatibleBackend",
    "BackendRegistry",
    "PROVIDERS",
    "RetryableBackendWrapper",
]
