"""
Conversation state and its persistence.
"""
from relaychat.storage.models import Conversation, Message
from relaychat.storage.persistence import ConversationStore, save_with_retry
from relaychat.storage.sqlite_store import SQLiteStore

__all__ = [
    "Conversation",
    "Message",
    "ConversationStore",
    "save_with_retry",
    "SQLiteStore",
]
