"""
Conversation persistence for Advisor_bot.

Conversations and their messages live in SQLite. Messages are immutable and
ordered by insertion; appending one touches the conversation's updated_at.
"""

import json
import sqlite3
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from .errors import NotFoundError, ValidationError

ROLES = ("user", "assistant", "system")
DEFAULT_TITLE = "New Conversation"


@dataclass
class Conversation:
    id: int
    user_id: int
    title: str
    archived: bool
    created_at: datetime
    updated_at: datetime


@dataclass
class Message:
    id: int
    conversation_id: int
    role: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to the {role, content} shape used in LLM requests."""
        return {"role": self.role, "content": self.content}


class ChatStore:
    """SQLite store for conversations and messages."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_sqlite()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _init_sqlite(self):
        """Create the conversations and messages tables if missing."""
        conn = self._connect()
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS conversations (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id INTEGER NOT NULL,
                title TEXT NOT NULL,
                archived INTEGER NOT NULL DEFAULT 0,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_conversations_user
            ON conversations(user_id, archived)
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                conversation_id INTEGER NOT NULL
                    REFERENCES conversations(id) ON DELETE CASCADE,
                role TEXT NOT NULL,
                content TEXT NOT NULL,
                metadata TEXT,
                created_at TEXT NOT NULL
            )
        """)
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_messages_conversation
            ON messages(conversation_id)
        """)

        conn.commit()
        conn.close()

    @staticmethod
    def _row_to_conversation(row: sqlite3.Row) -> Conversation:
        return Conversation(
            id=row["id"],
            user_id=row["user_id"],
            title=row["title"],
            archived=bool(row["archived"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    @staticmethod
    def _row_to_message(row: sqlite3.Row) -> Message:
        return Message(
            id=row["id"],
            conversation_id=row["conversation_id"],
            role=row["role"],
            content=row["content"],
            metadata=json.loads(row["metadata"]) if row["metadata"] else {},
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    # ========================================================================
    # Conversations
    # ========================================================================

    def create_conversation(self, user_id: int, title: str = DEFAULT_TITLE) -> Conversation:
        now = datetime.now().isoformat()
        conn = self._connect()
        cursor = conn.execute(
            """
            INSERT INTO conversations (user_id, title, archived, created_at, updated_at)
            VALUES (?, ?, 0, ?, ?)
            """,
            (user_id, title or DEFAULT_TITLE, now, now),
        )
        conversation_id = cursor.lastrowid
        conn.commit()
        conn.close()
        return self.get_conversation(conversation_id)

    def get_conversation(self, conversation_id: int) -> Conversation:
        """Fetch a conversation.

        Raises:
            NotFoundError: If no conversation has this id.
        """
        conn = self._connect()
        row = conn.execute(
            "SELECT * FROM conversations WHERE id = ?", (conversation_id,)
        ).fetchone()
        conn.close()
        if row is None:
            raise NotFoundError("Conversation", conversation_id)
        return self._row_to_conversation(row)

    def list_conversations(self, user_id: int, include_archived: bool = False) -> list[Conversation]:
        """A user's conversations, most recently updated first."""
        sql = "SELECT * FROM conversations WHERE user_id = ?"
        if not include_archived:
            sql += " AND archived = 0"
        sql += " ORDER BY updated_at DESC, id DESC"

        conn = self._connect()
        rows = conn.execute(sql, (user_id,)).fetchall()
        conn.close()
        return [self._row_to_conversation(row) for row in rows]

    def update_title(self, conversation_id: int, title: str) -> Conversation:
        self._update_conversation(conversation_id, "title", title)
        return self.get_conversation(conversation_id)

    def archive_conversation(self, conversation_id: int) -> Conversation:
        self._update_conversation(conversation_id, "archived", 1)
        return self.get_conversation(conversation_id)

    def _update_conversation(self, conversation_id: int, column: str, value: Any) -> None:
        conn = self._connect()
        cursor = conn.execute(
            f"UPDATE conversations SET {column} = ?, updated_at = ? WHERE id = ?",
            (value, datetime.now().isoformat(), conversation_id),
        )
        conn.commit()
        conn.close()
        if cursor.rowcount == 0:
            raise NotFoundError("Conversation", conversation_id)

    def delete_conversation(self, conversation_id: int) -> None:
        conn = self._connect()
        cursor = conn.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
        conn.commit()
        conn.close()
        if cursor.rowcount == 0:
            raise NotFoundError("Conversation", conversation_id)

    def delete_user_conversations(self, user_id: int) -> int:
        conn = self._connect()
        cursor = conn.execute("DELETE FROM conversations WHERE user_id = ?", (user_id,))
        conn.commit()
        conn.close()
        return cursor.rowcount

    # ========================================================================
    # Messages
    # ========================================================================

    def append_message(
        self,
        conversation_id: int,
        role: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> Message:
        """Append a message and touch the conversation's updated_at.

        Raises:
            ValidationError: If the role is not user, assistant or system.
            NotFoundError: If the conversation does not exist.
        """
        if role not in ROLES:
            raise ValidationError(f"Invalid message role: {role}")

        now = datetime.now().isoformat()
        conn = self._connect()
        try:
            touched = conn.execute(
                "UPDATE conversations SET updated_at = ? WHERE id = ?",
                (now, conversation_id),
            )
            if touched.rowcount == 0:
                raise NotFoundError("Conversation", conversation_id)

            cursor = conn.execute(
                """
                INSERT INTO messages (conversation_id, role, content, metadata, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (conversation_id, role, content or "", json.dumps(metadata) if metadata else None, now),
            )
            message_id = cursor.lastrowid
            conn.commit()
        finally:
            conn.close()

        return Message(
            id=message_id,
            conversation_id=conversation_id,
            role=role,
            content=content or "",
            metadata=metadata or {},
            created_at=datetime.fromisoformat(now),
        )

    def list_messages(self, conversation_id: int) -> list[Message]:
        """All messages of a conversation in insertion order."""
        conn = self._connect()
        rows = conn.execute(
            "SELECT * FROM messages WHERE conversation_id = ? ORDER BY id ASC",
            (conversation_id,),
        ).fetchall()
        conn.close()
        return [self._row_to_message(row) for row in rows]
