"""
Search augmentation: run a web search ahead of the LLM when the user asks for one.

Detection is a plain case-insensitive substring match against a fixed,
multilingual list of trigger phrases; a phrase anywhere in the message counts:

    "please google the weather"       → search
    "search for best pizza in town"   → search, query "best pizza in town"
    "hello there"                     → no search

Query extraction looks for the same phrases followed by a space and keeps
what comes after the first occurrence. If none matches, the whole message
is the query.
"""

from __future__ import annotations

import logging
import re
from typing import Sequence

from relaychat.backends.base import BackendConfig
from relaychat.backends.registry import BackendRegistry
from relaychat.errors import BackendError, ErrorKind
from relaychat.storage.models import Conversation

logger = logging.getLogger(__name__)

SEARCH_TRIGGERS = (
    "погугли",
    "погуглить",
    "поищи",
    "найди в гугл",
    "найди информацию",
    "найди в интернете",
    "google",
    "search for",
    "look up",
    "find information about",
    "search the web for",
    "search online for",
)

QUERY_PREFIXES = (
    "погугли ",
    "погуглить ",
    "поищи ",
    "найди в гугл ",
    "найди информацию о ",
    "найди в интернете ",
    "google ",
    "search for ",
    "look up ",
    "find information about ",
    "search the web for ",
    "search online for ",
)

SEARCHING_PLACEHOLDER = "🔍 Searching the web for information..."
PROCESSING_PLACEHOLDER = "🔍 Found search results. Processing with AI..."
SEARCH_FAILED_PLACEHOLDER = "❌ Search failed: {detail}. Trying to answer without search results..."

SEARCH_PROCESSOR_INSTRUCTION = """You are an AI assistant that analyzes search results from the web.
Your task is to:
1. Extract relevant information from the search results
2. Synthesize a comprehensive and accurate answer
3. Cite sources when providing factual information
4. Be objective and present multiple perspectives when relevant
5. Indicate clearly if information is missing or uncertain"""


def should_search(message: str, triggers: Sequence[str] = SEARCH_TRIGGERS) -> bool:
    """True if any trigger phrase occurs anywhere in the message."""
    lowered = message.lower()
    return any(term.lower() in lowered for term in triggers)


def extract_search_query(message: str, prefixes: Sequence[str] = QUERY_PREFIXES) -> str:
    """Text after the first matching trigger phrase, or the whole message."""
    for prefix in prefixes:
        match = re.search(re.escape(prefix), message, re.IGNORECASE)
        if match:
            return message[match.end():].strip()
    return message.strip()


def build_search_prompt(message: str, results: str) -> str:
    """Synthetic prompt asking an LLM to answer from search results."""
    return (
        f'I searched the web for: "{message}"\n'
        f"\n"
        f"Here are the search results:\n"
        f"{results}\n"
        f"\n"
        f"Based on these search results, please answer my original question "
        f"in a comprehensive and helpful way. Cite sources when appropriate."
    )


class SearchAugmenter:
    """Stage one of the pipeline: find the search backend and run the query."""

    def __init__(self, registry: BackendRegistry, triggers: Sequence[str] | None = None):
        self.registry = registry
        self.triggers = tuple(triggers) if triggers else SEARCH_TRIGGERS
        self.prefixes = tuple(f"{t} " for t in triggers) if triggers else QUERY_PREFIXES

    def applies(self, message: str) -> bool:
        return should_search(message, self.triggers)

    def extract_query(self, message: str) -> str:
        return extract_search_query(message, self.prefixes)

    async def search(self, query: str, temperature: float = 0.7) -> str:
        """
        Run the query on the configured search backend.
        Raises BackendError (kind no_backend_configured when none is set up).
        """
        cfg = self.registry.search_config()
        if cfg is None:
            raise BackendError(ErrorKind.NO_BACKEND_CONFIGURED, "Google Search not configured")

        backend = self.registry.create(cfg)
        logger.debug("Searching '%s' via backend '%s'", query, cfg.id)
        response = await backend.send([{"role": "user", "content": query}], temperature)
        if not response.ok:
            raise response.error or BackendError(ErrorKind.UNKNOWN, "search failed")
        return response.content

    def processor_config(self, conversation: Conversation) -> BackendConfig | None:
        """
        The LLM that turns search results into an answer: the conversation's
        own backend when it is a language model, else the default LLM.
        """
        own = self.registry.get_config(conversation.backend_id)
        if own is not None and self.registry.is_llm(own):
            return own
        return self.registry.default_llm_config()

    @staticmethod
    def processing_conversation(cfg: BackendConfig, conversation: Conversation) -> Conversation:
        """Ephemeral, never-persisted context used for the search-processing request."""
        model = cfg.model
        if cfg.id == conversation.backend_id and conversation.model:
            model = conversation.model
        return Conversation(
            id=f"{conversation.id}:search",
            system_message=SEARCH_PROCESSOR_INSTRUCTION,
            model=model,
            backend_id=cfg.id,
            temperature=conversation.temperature,
        )
