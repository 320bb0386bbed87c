"""
SQLite storage for conversations.
One row per conversation, one row per message. The cached request context
is stored as JSON next to the conversation so a reopened chat continues
with exactly what was already sent.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path

from relaychat.storage.models import Conversation, Message

logger = logging.getLogger(__name__)

CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    name TEXT DEFAULT '',
    system_message TEXT DEFAULT '',
    model TEXT DEFAULT '',
    backend_id TEXT DEFAULT '',
    temperature REAL DEFAULT 0.7,
    request_messages TEXT DEFAULT '[]',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    conversation_id TEXT NOT NULL,
    seq INTEGER NOT NULL,
    body TEXT NOT NULL,
    own BOOLEAN NOT NULL,
    timestamp TEXT NOT NULL,
    token_count INTEGER DEFAULT 0,
    cost_usd REAL DEFAULT NULL,
    PRIMARY KEY (conversation_id, seq),
    FOREIGN KEY (conversation_id) REFERENCES conversations(id)
);

CREATE INDEX IF NOT EXISTS idx_messages_conversation
    ON messages(conversation_id);
CREATE INDEX IF NOT EXISTS idx_conversations_updated
    ON conversations(updated_at);
"""


class SQLiteStore:
    """SQLite conversation store. A fresh connection per operation."""

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self):
        with self._connect() as conn:
            conn.executescript(CREATE_TABLES)
        logger.info("SQLite store initialized at %s", self.db_path)

    @contextmanager
    def _connect(self):
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def save_conversation(self, conversation: Conversation) -> None:
        """Commit the conversation and all of its messages in one transaction."""
        messages = list(conversation.messages)
        with self._connect() as conn:
            conn.execute(
                """INSERT OR REPLACE INTO conversations
                   (id, name, system_message, model, backend_id, temperature,
                    request_messages, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    conversation.id,
                    conversation.name,
                    conversation.system_message,
                    conversation.model,
                    conversation.backend_id,
                    conversation.temperature,
                    json.dumps(conversation.request_messages, ensure_ascii=False),
                    conversation.created_at,
                    conversation.updated_at,
                ),
            )
            conn.execute("DELETE FROM messages WHERE conversation_id = ?", (conversation.id,))
            conn.executemany(
                """INSERT OR REPLACE INTO messages
                   (conversation_id, seq, body, own, timestamp, token_count, cost_usd)
                   VALUES (?, ?, ?, ?, ?, ?, ?)""",
                [
                    (conversation.id, m.id, m.body, m.own, m.timestamp, m.token_count, m.cost_usd)
                    for m in messages
                ],
            )
        logger.debug(
            "Saved conversation %s (%d messages)", conversation.id, len(messages)
        )

    def load_conversation(self, conversation_id: str) -> Conversation | None:
        """Rebuild a conversation from disk, or None if it was never saved."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
            ).fetchone()
            if row is None:
                return None
            msg_rows = conn.execute(
                "SELECT * FROM messages WHERE conversation_id = ? ORDER BY seq",
                (conversation_id,),
            ).fetchall()

        return Conversation(
            id=row["id"],
            name=row["name"] or "",
            system_message=row["system_message"] or "",
            model=row["model"] or "",
            backend_id=row["backend_id"] or "",
            temperature=row["temperature"],
            request_messages=json.loads(row["request_messages"] or "[]"),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            messages=[
                Message(
                    id=r["seq"],
                    body=r["body"],
                    own=bool(r["own"]),
                    timestamp=r["timestamp"],
                    token_count=r["token_count"] or 0,
                    cost_usd=r["cost_usd"],
                )
                for r in msg_rows
            ],
        )

    def list_conversations(self, limit: int = 20) -> list[dict]:
        """Most recently updated conversations with their last message."""
        with self._connect() as conn:
            rows = conn.execute(
                """SELECT c.id, c.name, c.model, c.updated_at,
                          (SELECT body FROM messages m
                           WHERE m.conversation_id = c.id
                           ORDER BY m.seq DESC LIMIT 1) as last_message,
                          (SELECT COUNT(*) FROM messages m
                           WHERE m.conversation_id = c.id) as message_count
                   FROM conversations c
                   ORDER BY c.updated_at DESC
                   LIMIT ?""",
                (limit,),
            ).fetchall()
        return [dict(r) for r in rows]

    def get_stats(self) -> dict:
        """Return counts, token usage and estimated spend."""
        with self._connect() as conn:
            conv_count = conn.execute("SELECT COUNT(*) FROM conversations").fetchone()[0]
            msg_count = conn.execute("SELECT COUNT(*) FROM messages").fetchone()[0]
            user_count = conn.execute("SELECT COUNT(*) FROM messages WHERE own = 1").fetchone()[0]
            total_tokens = conn.execute(
                "SELECT COALESCE(SUM(token_count), 0) FROM messages"
            ).fetchone()[0]
            total_cost = conn.execute(
                "SELECT COALESCE(SUM(cost_usd), 0) FROM messages"
            ).fetchone()[0]

        return {
            "conversations": conv_count,
            "messages": msg_count,
            "user_messages": user_count,
            "assistant_messages": msg_count - user_count,
            "tokens": total_tokens,
            "cost_usd": round(total_cost, 6),
        }
