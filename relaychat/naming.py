"""
Chat-name extraction.

Models asked for a chat title often think out loud first, so the answer
is cleaned up: a **bold** span wins, otherwise the last non-blank line.
"""

import re

_BOLD = re.compile(r"\*\*(.+?)\*\*")


def sanitize_chat_name(raw: str) -> str:
    """
    >>> sanitize_chat_name("Some reasoning...\\n**🚀 Project Kickoff**")
    '🚀 Project Kickoff'
    """
    match = _BOLD.search(raw)
    if match:
        return match.group(1).strip("*").strip()

    lines = [line.strip() for line in raw.splitlines() if line.strip()]
    if lines:
        return lines[-1]

    return raw.strip()
