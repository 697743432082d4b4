"""
Conversation store using SQLite.

Holds the four record collections of the vault:
- conversations (one row per captured chat session)
- messages (turns, replaced in full on every save)
- tags (per-conversation labels)
- nuggets (derived Q&A pairs, replaced in full per conversation)

All operations are coroutines over a single aiosqlite connection.
The connection is opened lazily, probed before reuse, and reopened
transparently if the host tore it down.
"""

import asyncio
import logging
import sqlite3
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

import aiosqlite

from .types import (
    DEFAULT_TITLE,
    Conversation,
    Message,
    Nugget,
    StoreStats,
    new_id,
    normalize_tag,
    utc_now,
    validate_id,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

# Databases for which durable (WAL) journaling was already requested
# in this process.
_durability_requested: set[str] = set()

_SCHEMA = """
CREATE TABLE IF NOT EXISTS conversations (
    id TEXT PRIMARY KEY,
    platform TEXT NOT NULL DEFAULT '',
    title TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    is_auto_saved INTEGER NOT NULL DEFAULT 1,
    url TEXT NOT NULL DEFAULT ''
);
CREATE INDEX IF NOT EXISTS idx_conversations_platform ON conversations(platform);
CREATE INDEX IF NOT EXISTS idx_conversations_created ON conversations(created_at);
CREATE INDEX IF NOT EXISTS idx_conversations_updated ON conversations(updated_at);

CREATE TABLE IF NOT EXISTS messages (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    position INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_messages_conversation ON messages(conversation_id);
CREATE INDEX IF NOT EXISTS idx_messages_role ON messages(role);

CREATE TABLE IF NOT EXISTS tags (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL,
    tag TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_tags_conversation ON tags(conversation_id);
CREATE INDEX IF NOT EXISTS idx_tags_tag ON tags(tag);
CREATE UNIQUE INDEX IF NOT EXISTS idx_tags_unique ON tags(conversation_id, tag);

CREATE TABLE IF NOT EXISTS nuggets (
    id TEXT PRIMARY KEY,
    conversation_id TEXT NOT NULL,
    question TEXT NOT NULL,
    answer TEXT NOT NULL,
    platform TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_nuggets_conversation ON nuggets(conversation_id);
CREATE INDEX IF NOT EXISTS idx_nuggets_created ON nuggets(created_at);
"""

_MESSAGE_COLUMNS = "id, conversation_id, role, content, timestamp, position"
_NUGGET_COLUMNS = "id, conversation_id, question, answer, platform, created_at"
_CONVERSATION_COLUMNS = "id, platform, title, created_at, updated_at, is_auto_saved, url"


class StoreError(Exception):
    """A storage operation failed (open, query or commit)."""


def _row_to_conversation(row) -> Conversation:
    return Conversation(
        id=row["id"],
        platform=row["platform"],
        title=row["title"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        is_auto_saved=bool(row["is_auto_saved"]),
        url=row["url"],
    )


def _row_to_message(row) -> Message:
    return Message(
        id=row["id"],
        conversation_id=row["conversation_id"],
        role=row["role"],
        content=row["content"],
        timestamp=row["timestamp"],
        position=row["position"],
    )


def _row_to_nugget(row) -> Nugget:
    return Nugget(
        id=row["id"],
        conversation_id=row["conversation_id"],
        question=row["question"],
        answer=row["answer"],
        platform=row["platform"],
        created_at=row["created_at"],
    )


class ConversationStore:
    """
    SQLite-backed store for conversations and everything derived from them.

    The store exclusively owns its tables; messages, tags and nuggets share
    the deletion lifecycle of their conversation.

    Operations are serialized by an asyncio lock, so no coroutine can observe
    the middle of a delete-then-reinsert.
    """

    def __init__(self, db_path: Path):
        """
        Args:
            db_path: Path to SQLite database file
        """
        self._db_path = Path(db_path)
        self._conn: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._db_path

    # -------------------------------------------------------------------------
    # Connection Management
    # -------------------------------------------------------------------------

    async def _is_alive(self, conn: aiosqlite.Connection) -> bool:
        """Probe a cached connection. Never raises."""
        try:
            cursor = await conn.execute("SELECT 1")
            await cursor.close()
            return True
        except (sqlite3.Error, ValueError) as e:
            logger.debug("Stale connection to %s: %s", self._db_path, e)
            return False

    async def _connection(self) -> aiosqlite.Connection:
        """Return a live connection, reopening it if the cached one went stale."""
        if self._conn is not None:
            if await self._is_alive(self._conn):
                return self._conn
            await self._discard()

        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            # isolation_level=None: transactions are begun explicitly
            conn = await aiosqlite.connect(str(self._db_path), isolation_level=None)
            try:
                conn.row_factory = aiosqlite.Row
                await conn.executescript(_SCHEMA)
                await conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
            except BaseException:
                # Stop the worker thread of a half-opened connection
                await conn.close()
                raise
        except sqlite3.Error as e:
            raise StoreError(f"Cannot open {self._db_path}: {e}") from e

        self._conn = conn
        await self._request_durability(conn)
        logger.debug("Opened conversation store %s", self._db_path)
        return conn

    async def _request_durability(self, conn: aiosqlite.Connection) -> None:
        """Ask SQLite for write-ahead logging, once per database per process.

        Not critical: without it the store still works, just with weaker
        crash behaviour.
        """
        key = str(self._db_path.resolve())
        if key in _durability_requested:
            return
        _durability_requested.add(key)
        try:
            cursor = await conn.execute("PRAGMA journal_mode=WAL")
            row = await cursor.fetchone()
            await cursor.close()
            mode = row[0] if row else "unknown"
            logger.debug("Durable storage: journal_mode=%s", mode)
        except sqlite3.Error as e:
            logger.debug("Durable storage request failed: %s", e)

    async def _discard(self) -> None:
        """Drop the cached connection, closing it if still possible."""
        conn, self._conn = self._conn, None
        if conn is None:
            return
        try:
            await conn.close()
        except (sqlite3.Error, ValueError):
            pass  # already torn down

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run a block as one write transaction; roll back on any failure."""
        async with self._lock:
            conn = await self._connection()
            try:
                await conn.execute("BEGIN IMMEDIATE")
                try:
                    yield conn
                except BaseException:
                    await conn.rollback()
                    raise
                await conn.commit()
            except sqlite3.Error as e:
                await self._discard()
                raise StoreError(f"Transaction failed: {e}") from e

    @asynccontextmanager
    async def _reading(self) -> AsyncIterator[aiosqlite.Connection]:
        """Run a block of reads against a live connection."""
        async with self._lock:
            conn = await self._connection()
            try:
                yield conn
            except sqlite3.Error as e:
                await self._discard()
                raise StoreError(f"Query failed: {e}") from e

    async def open(self) -> "ConversationStore":
        """Open (or revalidate) the connection and ensure the schema exists."""
        async with self._lock:
            await self._connection()
        return self

    async def close(self) -> None:
        """Close the database connection."""
        async with self._lock:
            await self._discard()

    async def __aenter__(self) -> "ConversationStore":
        return await self.open()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
        return False

    # -------------------------------------------------------------------------
    # Conversations
    # -------------------------------------------------------------------------

    async def save_conversation(self, conversation: Conversation) -> Conversation:
        """
        Insert or replace a conversation together with its messages.

        Keeps the supplied created_at, else the stored one, else now.
        Always refreshes updated_at. Existing messages for the id are
        deleted and the supplied ones inserted, all in one transaction.

        Args:
            conversation: The conversation to store, with its messages

        Returns:
            The normalized Conversation as stored, with messages
        """
        validate_id(conversation.id)
        now = utc_now()

        async with self._transaction() as conn:
            created_at = conversation.created_at
            if not created_at:
                cursor = await conn.execute(
                    "SELECT created_at FROM conversations WHERE id = ?",
                    (conversation.id,),
                )
                row = await cursor.fetchone()
                await cursor.close()
                created_at = row["created_at"] if row else now

            record = Conversation(
                id=conversation.id,
                platform=conversation.platform or "",
                title=conversation.title or DEFAULT_TITLE,
                created_at=created_at,
                updated_at=now,
                is_auto_saved=conversation.is_auto_saved,
                url=conversation.url or "",
            )
            await conn.execute(f"""
                INSERT OR REPLACE INTO conversations ({_CONVERSATION_COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?)
            """, (
                record.id, record.platform, record.title, record.created_at,
                record.updated_at, int(record.is_auto_saved), record.url,
            ))

            await conn.execute(
                "DELETE FROM messages WHERE conversation_id = ?", (record.id,)
            )

            for position, msg in enumerate(conversation.messages):
                stored = Message(
                    id=msg.id or new_id(),
                    conversation_id=record.id,
                    role=msg.role,
                    content=msg.content or "",
                    timestamp=msg.timestamp or now,
                    position=position,
                )
                await conn.execute(f"""
                    INSERT OR REPLACE INTO messages ({_MESSAGE_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?)
                """, (
                    stored.id, stored.conversation_id, stored.role,
                    stored.content, stored.timestamp, stored.position,
                ))
                record.messages.append(stored)

        logger.info("Saved conversation %s (%d messages)", record.id, len(record.messages))
        return record

    async def get_conversation(self, id: str) -> Optional[Conversation]:
        """
        Get a conversation with its messages in chronological order.

        Returns:
            Conversation if found, None otherwise
        """
        async with self._reading() as conn:
            cursor = await conn.execute(
                f"SELECT {_CONVERSATION_COLUMNS} FROM conversations WHERE id = ?",
                (id,),
            )
            row = await cursor.fetchone()
            await cursor.close()
            if row is None:
                return None

            conversation = _row_to_conversation(row)
            conversation.messages = await self._fetch_messages(conn, id)
            return conversation

    async def get_all_conversations(self) -> list[Conversation]:
        """All conversations, most recently updated first (messages not attached)."""
        async with self._reading() as conn:
            cursor = await conn.execute(f"""
                SELECT {_CONVERSATION_COLUMNS} FROM conversations
                ORDER BY updated_at DESC, rowid DESC
            """)
            rows = await cursor.fetchall()
            await cursor.close()
        return [_row_to_conversation(row) for row in rows]

    async def delete_conversation(self, id: str) -> bool:
        """
        Delete a conversation and all its messages, tags and nuggets.

        Deleting an absent id is a no-op.

        Returns:
            True if the conversation existed
        """
        async with self._transaction() as conn:
            cursor = await conn.execute("DELETE FROM conversations WHERE id = ?", (id,))
            existed = cursor.rowcount > 0
            await cursor.close()
            for table in ("messages", "tags", "nuggets"):
                await conn.execute(f"DELETE FROM {table} WHERE conversation_id = ?", (id,))

        if existed:
            logger.info("Deleted conversation %s", id)
        return existed

    async def delete_all(self) -> int:
        """
        Delete every record in the vault.

        Returns:
            Number of conversations deleted
        """
        async with self._transaction() as conn:
            cursor = await conn.execute("DELETE FROM conversations")
            count = cursor.rowcount
            await cursor.close()
            for table in ("messages", "tags", "nuggets"):
                await conn.execute(f"DELETE FROM {table}")

        logger.info("Cleared vault (%d conversations)", count)
        return count

    # -------------------------------------------------------------------------
    # Messages
    # -------------------------------------------------------------------------

    async def _fetch_messages(self, conn: aiosqlite.Connection, conversation_id: str) -> list[Message]:
        cursor = await conn.execute(f"""
            SELECT {_MESSAGE_COLUMNS} FROM messages
            WHERE conversation_id = ?
            ORDER BY timestamp ASC, position ASC
        """, (conversation_id,))
        rows = await cursor.fetchall()
        await cursor.close()
        return [_row_to_message(row) for row in rows]

    async def get_messages_for_conversation(self, conversation_id: str) -> list[Message]:
        """Messages of a conversation in chronological order."""
        async with self._reading() as conn:
            return await self._fetch_messages(conn, conversation_id)

    async def get_all_messages(self) -> list[Message]:
        """Every stored message, grouped by conversation, each group chronological."""
        async with self._reading() as conn:
            cursor = await conn.execute(f"""
                SELECT {_MESSAGE_COLUMNS} FROM messages
                ORDER BY conversation_id, timestamp ASC, position ASC
            """)
            rows = await cursor.fetchall()
            await cursor.close()
        return [_row_to_message(row) for row in rows]

    # -------------------------------------------------------------------------
    # Tags
    # -------------------------------------------------------------------------

    async def add_tag(self, conversation_id: str, tag: str) -> bool:
        """
        Attach a tag to a conversation.

        The tag is trimmed and lower-cased. Each tag appears at most once
        per conversation.

        Returns:
            True if the tag was added, False if it was already present
            or the conversation does not exist
        """
        tag = normalize_tag(tag)
        async with self._transaction() as conn:
            cursor = await conn.execute(
                "SELECT 1 FROM conversations WHERE id = ?", (conversation_id,)
            )
            exists = await cursor.fetchone() is not None
            await cursor.close()
            if not exists:
                return False

            cursor = await conn.execute("""
                INSERT OR IGNORE INTO tags (id, conversation_id, tag)
                VALUES (?, ?, ?)
            """, (new_id(), conversation_id, tag))
            added = cursor.rowcount > 0
            await cursor.close()
        return added

    async def remove_tag(self, conversation_id: str, tag: str) -> bool:
        """
        Remove a tag from a conversation (matched after normalization).

        Returns:
            True if a tag was removed
        """
        tag = normalize_tag(tag)
        async with self._transaction() as conn:
            cursor = await conn.execute(
                "DELETE FROM tags WHERE conversation_id = ? AND tag = ?",
                (conversation_id, tag),
            )
            removed = cursor.rowcount > 0
            await cursor.close()
        return removed

    async def get_tags_for_conversation(self, conversation_id: str) -> list[str]:
        """Tags of a conversation, in the order they were added."""
        async with self._reading() as conn:
            cursor = await conn.execute(
                "SELECT tag FROM tags WHERE conversation_id = ? ORDER BY rowid",
                (conversation_id,),
            )
            rows = await cursor.fetchall()
            await cursor.close()
        return [row["tag"] for row in rows]

    # -------------------------------------------------------------------------
    # Nuggets
    # -------------------------------------------------------------------------

    async def save_nuggets(self, conversation_id: str, nuggets: list[Nugget]) -> list[Nugget]:
        """
        Replace the full nugget set of a conversation.

        Returns:
            The stored nuggets, with ids and timestamps filled in
        """
        now = utc_now()
        stored = []
        async with self._transaction() as conn:
            await conn.execute(
                "DELETE FROM nuggets WHERE conversation_id = ?", (conversation_id,)
            )
            for nugget in nuggets:
                record = Nugget(
                    id=nugget.id or new_id(),
                    conversation_id=conversation_id,
                    question=nugget.question,
                    answer=nugget.answer,
                    platform=nugget.platform or "",
                    created_at=nugget.created_at or now,
                )
                await conn.execute(f"""
                    INSERT OR REPLACE INTO nuggets ({_NUGGET_COLUMNS})
                    VALUES (?, ?, ?, ?, ?, ?)
                """, (
                    record.id, record.conversation_id, record.question,
                    record.answer, record.platform, record.created_at,
                ))
                stored.append(record)

        logger.debug("Saved %d nuggets for %s", len(stored), conversation_id)
        return stored

    async def delete_nuggets_for_conversation(self, conversation_id: str) -> int:
        """Delete all nuggets of a conversation. Returns the number deleted."""
        async with self._transaction() as conn:
            cursor = await conn.execute(
                "DELETE FROM nuggets WHERE conversation_id = ?", (conversation_id,)
            )
            count = cursor.rowcount
            await cursor.close()
        return count

    async def get_all_nuggets(self) -> list[Nugget]:
        """All nuggets, newest first."""
        async with self._reading() as conn:
            cursor = await conn.execute(f"""
                SELECT {_NUGGET_COLUMNS} FROM nuggets
                ORDER BY created_at DESC, rowid DESC
            """)
            rows = await cursor.fetchall()
            await cursor.close()
        return [_row_to_nugget(row) for row in rows]

    async def search_nuggets(self, query: str) -> list[Nugget]:
        """Nuggets whose question or answer contains the query (case-insensitive)."""
        if not query or not query.strip():
            return []
        needle = query.lower()
        return [
            n for n in await self.get_all_nuggets()
            if needle in n.question.lower() or needle in n.answer.lower()
        ]

    # -------------------------------------------------------------------------
    # Stats
    # -------------------------------------------------------------------------

    async def get_stats(self) -> StoreStats:
        """Count conversations, messages and nuggets."""
        counts = {}
        async with self._reading() as conn:
            for table in ("conversations", "messages", "nuggets"):
                cursor = await conn.execute(f"SELECT COUNT(*) FROM {table}")
                row = await cursor.fetchone()
                await cursor.close()
                counts[table] = row[0]
        return StoreStats(**counts)
