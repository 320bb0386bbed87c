"""
Conversation data model.

A Conversation owns its Messages. The orchestrator mutates both in place
while a response streams in, and calls notify_changed() after every
mutation so a rendering layer can redraw.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable
from uuid import uuid4

logger = logging.getLogger(__name__)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class Message:
    """One turn in a conversation."""
    id: int
    body: str
    own: bool
    timestamp: str = field(default_factory=_now)
    waiting_for_response: bool = False
    token_count: int = 0
    cost_usd: float | None = None  # Only populated for backend-authored messages


@dataclass
class Conversation:
    """A chat thread and the state the orchestrator needs to continue it."""
    id: str = field(default_factory=lambda: uuid4().hex)
    system_message: str = ""
    model: str = ""
    backend_id: str = ""
    temperature: float = 0.7
    name: str = ""
    messages: list[Message] = field(default_factory=list)
    request_messages: list[dict] = field(default_factory=list)
    waiting_for_response: bool = False
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)
    _observers: list[Callable[["Conversation"], None]] = field(
        default_factory=list, repr=False, compare=False
    )

    # -- observers -----------------------------------------------------------

    def subscribe(self, callback: Callable[["Conversation"], None]) -> None:
        """Register a callback fired after every mutation."""
        self._observers.append(callback)

    def unsubscribe(self, callback: Callable[["Conversation"], None]) -> None:
        if callback in self._observers:
            self._observers.remove(callback)

    def notify_changed(self) -> None:
        """Fire-and-forget change signal. Observer errors never propagate."""
        for callback in list(self._observers):
            try:
                callback(self)
            except Exception as e:
                logger.warning("Observer %r failed for conversation %s: %s", callback, self.id, e)

    # -- messages ------------------------------------------------------------

    @property
    def last_message(self) -> Message | None:
        return self.messages[-1] if self.messages else None

    def next_message_id(self) -> int:
        return max((m.id for m in self.messages), default=0) + 1

    def add_message(self, body: str, own: bool) -> Message:
        """Append a message and signal the change."""
        message = Message(id=self.next_message_id(), body=body, own=own)
        self.messages.append(message)
        self.updated_at = _now()
        self.notify_changed()
        return message

    def remove_message(self, message: Message) -> bool:
        if message not in self.messages:
            return False
        self.messages.remove(message)
        self.updated_at = _now()
        self.notify_changed()
        return True

    def add_user_message(self, body: str) -> Message:
        """Record a user-authored turn. Called by the front end, not the orchestrator."""
        return self.add_message(body, own=True)

    def touch(self) -> None:
        self.updated_at = _now()
