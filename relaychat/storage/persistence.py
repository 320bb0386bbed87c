"""
Persistence contract consumed by the orchestrator, plus bounded retry.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from relaychat.errors import PersistenceError
from relaychat.storage.models import Conversation

logger = logging.getLogger(__name__)


class ConversationStore(Protocol):
    """Anything that can durably commit a conversation graph."""

    def save_conversation(self, conversation: Conversation) -> None:
        ...


async def save_with_retry(
    store: ConversationStore,
    conversation: Conversation,
    attempts: int = 1,
    backoff: float = 0.1,
) -> None:
    """
    Commit the conversation, retrying up to `attempts` times in total.
    Raises PersistenceError once every attempt has failed.
    """
    attempts = max(1, attempts)
    last_error: Exception | None = None

    for attempt in range(1, attempts + 1):
        try:
            store.save_conversation(conversation)
            return
        except Exception as e:
            last_error = e
            if attempt < attempts:
                logger.warning(
                    "Saving conversation %s failed, retry in %.2fs (%d/%d): %s",
                    conversation.id, backoff, attempt, attempts, e,
                )
                await asyncio.sleep(backoff)

    logger.error(
        "Saving conversation %s failed after %d attempt(s): %s",
        conversation.id, attempts, last_error,
    )
    raise PersistenceError(
        f"Could not save conversation {conversation.id}: {last_error}"
    ) from last_error
