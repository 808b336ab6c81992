"""SQLite storage for conversations with FTS5 full-text search."""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from pathlib import Path

import pydantic

from .exceptions import PersistenceError
from .history import MessageStore
from .models import Conversation, Role, utcnow
from .prompting import strip_instruction
from .titles import apply_title, needs_title, provisional_title

logger = logging.getLogger(__name__)

_UPSERT = """
    INSERT INTO conversations (id, title, created, last_updated, favorite,
        pinned, needs_title_generation, message_count, full_text, record)
    VALUES (:id, :title, :created, :last_updated, :favorite,
        :pinned, :needs_title_generation, :message_count, :full_text, :record)
    ON CONFLICT(id) DO UPDATE SET
        title = excluded.title,
        last_updated = excluded.last_updated,
        favorite = excluded.favorite,
        pinned = excluded.pinned,
        needs_title_generation = excluded.needs_title_generation,
        message_count = excluded.message_count,
        full_text = excluded.full_text,
        record = excluded.record
"""


class ConversationStore:
    """SQLite-backed storage for conversations.

    Each conversation is one row holding its full record as JSON, keyed by id.
    A mirror of the last known contents is kept in memory: reads fall back to
    it when the database fails, and in ``in_memory_only`` mode it is the only
    copy that is written. A database that cannot be opened starts the store
    in ``in_memory_only`` mode.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self.conn: sqlite3.Connection | None = None
        self.in_memory_only = False
        self._mirror: dict[str, Conversation] = {}
        try:
            db_path.parent.mkdir(parents=True, exist_ok=True)
            self.conn = sqlite3.connect(str(db_path))
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA journal_mode=WAL")
            self.initialize()
        except (OSError, sqlite3.Error, PersistenceError) as exc:
            logger.warning("Cannot open %s, keeping conversations in memory only: %s", db_path, exc)
            self.close()
            self.in_memory_only = True
        self.get_all()

    def initialize(self):
        """Create the schema if it does not exist yet. Safe to call repeatedly."""
        if self.conn is None:
            raise PersistenceError(f"{self.db_path} is not open")
        try:
            self.conn.executescript("""
                CREATE TABLE IF NOT EXISTS conversations (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    created TEXT NOT NULL,
                    last_updated TEXT NOT NULL,
                    favorite INTEGER NOT NULL DEFAULT 0,
                    pinned INTEGER NOT NULL DEFAULT 0,
                    needs_title_generation INTEGER NOT NULL DEFAULT 1,
                    message_count INTEGER NOT NULL,
                    full_text TEXT NOT NULL,
                    record TEXT NOT NULL
                );

                CREATE VIRTUAL TABLE IF NOT EXISTS conversations_fts USING fts5(
                    title,
                    full_text,
                    content='conversations',
                    content_rowid='rowid',
                    tokenize='porter unicode61'
                );

                CREATE TRIGGER IF NOT EXISTS conversations_ai
                    AFTER INSERT ON conversations BEGIN
                        INSERT INTO conversations_fts(rowid, title, full_text)
                        VALUES (new.rowid, new.title, new.full_text);
                    END;

                CREATE TRIGGER IF NOT EXISTS conversations_ad
                    AFTER DELETE ON conversations BEGIN
                        INSERT INTO conversations_fts(conversations_fts, rowid, title, full_text)
                        VALUES ('delete', old.rowid, old.title, old.full_text);
                    END;

                CREATE TRIGGER IF NOT EXISTS conversations_au
                    AFTER UPDATE ON conversations BEGIN
                        INSERT INTO conversations_fts(conversations_fts, rowid, title, full_text)
                        VALUES ('delete', old.rowid, old.title, old.full_text);
                        INSERT INTO conversations_fts(rowid, title, full_text)
                        VALUES (new.rowid, new.title, new.full_text);
                    END;
            """)
            self.conn.commit()
        except sqlite3.Error as exc:
            raise PersistenceError(f"Failed to initialize {self.db_path}: {exc}") from exc

    # --------- reads ----------
    def get_all(self) -> list[Conversation]:
        """All stored conversations, in no particular order."""
        if self.in_memory_only:
            return self._from_mirror()
        try:
            rows = self.conn.execute("SELECT id, record FROM conversations").fetchall()
        except sqlite3.Error:
            logger.warning("Failed to read conversations, using last known listing", exc_info=True)
            return self._from_mirror()

        conversations = [c for c in map(self._parse, rows) if c is not None]
        self._mirror = {c.id: c.model_copy(deep=True) for c in conversations}
        return conversations

    def get(self, conversation_id: str) -> Conversation | None:
        if self.in_memory_only:
            return self._mirror_copy(conversation_id)
        try:
            row = self.conn.execute(
                "SELECT id, record FROM conversations WHERE id = ?", (conversation_id,)
            ).fetchone()
        except sqlite3.Error:
            logger.warning("Failed to read conversation %s, using last known copy",
                           conversation_id, exc_info=True)
            return self._mirror_copy(conversation_id)

        if not row:
            return None
        conv = self._parse(row)
        if conv is not None:
            self._mirror[conv.id] = conv.model_copy(deep=True)
        return conv

    def search(self, query: str, limit: int = 50) -> list[str]:
        """Ids of conversations matching ``query``, best match first."""
        match = _fts_query(query)
        if not match:
            return []
        if self.in_memory_only:
            return self._search_mirror(query, limit)
        try:
            rows = self.conn.execute(
                """SELECT c.id
                   FROM conversations_fts fts
                   JOIN conversations c ON c.rowid = fts.rowid
                   WHERE conversations_fts MATCH ?
                   ORDER BY rank
                   LIMIT ?""",
                (match, limit),
            ).fetchall()
        except sqlite3.Error:
            logger.warning("Full-text search failed for %r, scanning in memory", query, exc_info=True)
            return self._search_mirror(query, limit)
        return [r["id"] for r in rows]

    def get_stats(self) -> dict:
        """Get overall database statistics."""
        conversations = self.get_all()
        created = [c.created for c in conversations]
        total_messages = sum(len(c.messages) for c in conversations)
        conv_count = len(conversations)

        return {
            "total_conversations": conv_count,
            "total_messages": total_messages,
            "favorites": sum(1 for c in conversations if c.favorite),
            "pinned": sum(1 for c in conversations if c.pinned),
            "date_range_start": _format_ts(min(created)) if created else None,
            "date_range_end": _format_ts(max(created)) if created else None,
            "avg_messages_per_conversation": round(total_messages / conv_count, 1) if conv_count else 0,
        }

    # --------- writes ----------
    def upsert(self, conv: Conversation):
        """Insert or fully replace a conversation in a single transaction."""
        conv = conv.model_copy(deep=True)
        if not self.in_memory_only:
            try:
                with self.conn:
                    self.conn.execute(_UPSERT, _row(conv))
            except sqlite3.Error as exc:
                raise PersistenceError(f"Failed to save conversation {conv.id}: {exc}") from exc
        self._mirror[conv.id] = conv

    def delete(self, conversation_id: str):
        if not self.in_memory_only:
            try:
                with self.conn:
                    self.conn.execute("DELETE FROM conversations WHERE id = ?", (conversation_id,))
            except sqlite3.Error as exc:
                raise PersistenceError(
                    f"Failed to delete conversation {conversation_id}: {exc}"
                ) from exc
        self._mirror.pop(conversation_id, None)

    def clear(self):
        if not self.in_memory_only:
            try:
                with self.conn:
                    self.conn.execute("DELETE FROM conversations")
            except sqlite3.Error as exc:
                raise PersistenceError(f"Failed to clear conversations: {exc}") from exc
        self._mirror.clear()

    def save_current_conversation(
        self,
        history: MessageStore,
        current_id: str | None,
        force: bool = False,
    ) -> str | None:
        """Persist the working copy and return the resulting current id.

        An empty history deletes the current conversation and returns None.
        An unchanged history is not rewritten unless ``force`` is set.
        """
        if not history:
            if current_id is not None:
                self.delete(current_id)
                logger.info("Deleted emptied conversation %s", current_id)
            history.mark_clean()
            return None

        now = utcnow()
        existing = self.get(current_id) if current_id is not None else None

        if existing is not None:
            if not (force or history.dirty):
                logger.debug("Conversation %s unchanged, skipping save", current_id)
                return current_id
            existing.messages = history.snapshot()
            existing.last_updated = now
            if needs_title(existing):
                apply_title(existing)
            self.upsert(existing)
            history.mark_clean()
            logger.debug("Updated conversation %s (%d messages)", existing.id, len(history))
            return existing.id

        conv = Conversation(
            title=provisional_title(history),
            messages=history.snapshot(),
            created=now,
            last_updated=now,
        )
        self.upsert(conv)
        history.mark_clean()
        logger.info("Created conversation %s: %r", conv.id, conv.title)
        return conv.id

    def close(self):
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    # --------- internals ----------
    def _parse(self, row: sqlite3.Row) -> Conversation | None:
        """Decode a stored record; an unreadable one falls back to its last known copy."""
        try:
            return Conversation.model_validate_json(row["record"])
        except pydantic.ValidationError:
            logger.warning("Unreadable record for conversation %s, using last known copy",
                           row["id"], exc_info=True)
            return self._mirror_copy(row["id"])

    def _from_mirror(self) -> list[Conversation]:
        return [c.model_copy(deep=True) for c in self._mirror.values()]

    def _mirror_copy(self, conversation_id: str) -> Conversation | None:
        conv = self._mirror.get(conversation_id)
        return conv.model_copy(deep=True) if conv else None

    def _search_mirror(self, query: str, limit: int) -> list[str]:
        words = query.lower().split()
        hits = []
        for conv in self._mirror.values():
            haystack = f"{conv.title}\n{_full_text(conv)}".lower()
            if all(w in haystack for w in words):
                hits.append(conv.id)
        return hits[:limit]


def _full_text(conv: Conversation) -> str:
    """Searchable text: what the user sees, without guidance preambles."""
    lines = []
    for msg in conv.messages:
        for part in msg.parts:
            if not part.text:
                continue
            text = strip_instruction(part.text) if msg.role == Role.USER else part.text
            lines.append(f"{msg.role.value}: {text.strip()}")
    return "\n\n".join(lines)


def _row(conv: Conversation) -> dict:
    return {
        "id": conv.id,
        "title": conv.title,
        "created": conv.created.isoformat(),
        "last_updated": conv.last_updated.isoformat(),
        "favorite": int(conv.favorite),
        "pinned": int(conv.pinned),
        "needs_title_generation": int(conv.needs_title_generation),
        "message_count": len(conv.messages),
        "full_text": _full_text(conv),
        "record": conv.to_json(),
    }


def _fts_query(query: str) -> str:
    """Quote each word so user input is never parsed as FTS5 syntax."""
    return " ".join('"' + w.replace('"', '""') + '"' for w in query.split())


def _format_ts(ts: datetime | None) -> str | None:
    if ts is None:
        return None
    return ts.strftime("%Y-%m-%d")
