"""
Context window builder.

Turns a conversation into the ordered role/content list sent to a backend:
one instruction entry, the last N history turns, and optionally the new
user message. Pure: same inputs give the same output.
"""

from __future__ import annotations

from typing import Collection

from relaychat.storage.models import Conversation

SYSTEM_AS_USER_PREFIX = "Take this message as the system message: "


def build_request_messages(
    conversation: Conversation,
    user_message: str | None,
    context_size: int,
    no_system_role_models: Collection[str] = (),
) -> list[dict]:
    """
    Build the request payload for one generation.

    Models in `no_system_role_models` reject the system role, so the
    instruction goes out as a user turn with an explanatory prefix.
    A new user message equal to the last history entry is not appended
    again (the caller has usually recorded it already).
    """
    if context_size < 1:
        raise ValueError(f"context_size must be >= 1, got {context_size}")

    messages: list[dict] = []

    if conversation.model in no_system_role_models:
        messages.append({
            "role": "user",
            "content": f"{SYSTEM_AS_USER_PREFIX}{conversation.system_message}",
        })
    else:
        messages.append({"role": "system", "content": conversation.system_message})

    # sorted() is stable, so equal timestamps keep insertion order
    history = sorted(conversation.messages, key=lambda m: m.timestamp)[-context_size:]
    for message in history:
        messages.append({
            "role": "user" if message.own else "assistant",
            "content": message.body,
        })

    if user_message is not None:
        if not history or history[-1].body != user_message:
            messages.append({"role": "user", "content": user_message})

    return messages
