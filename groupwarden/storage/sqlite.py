from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

import aiosqlite
import structlog

from ..models import (
    Actor,
    AuditEntry,
    DetectionRecord,
    HistoryMessage,
    IncomingMessage,
    ManagedChat,
    TrainingLabel,
    UserIdentity,
)
from .base import StorageGateway

logger = structlog.get_logger(__name__)


SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS messages (
        chat_id INTEGER NOT NULL,
        message_id INTEGER NOT NULL,
        user_id INTEGER NOT NULL,
        user_name TEXT,
        text TEXT NOT NULL,
        photo_path TEXT,
        sent_at TEXT NOT NULL,
        deleted_at TEXT,
        deletion_reason TEXT,
        PRIMARY KEY (chat_id, message_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS detection_results (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        chat_id INTEGER NOT NULL,
        message_id INTEGER NOT NULL,
        user_id INTEGER NOT NULL,
        is_spam INTEGER NOT NULL,
        confidence INTEGER NOT NULL,
        reason TEXT NOT NULL,
        detection_source TEXT NOT NULL,
        detected_by TEXT NOT NULL,
        detected_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS training_labels (
        chat_id INTEGER NOT NULL,
        message_id INTEGER NOT NULL,
        label TEXT NOT NULL,
        labeled_by TEXT NOT NULL,
        text TEXT NOT NULL,
        reason TEXT,
        PRIMARY KEY (chat_id, message_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS image_training_samples (
        message_id INTEGER PRIMARY KEY,
        photo_path TEXT NOT NULL,
        is_spam INTEGER NOT NULL,
        marked_by TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS audit_log (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        action_type TEXT NOT NULL,
        user_id INTEGER NOT NULL,
        actor TEXT NOT NULL,
        reason TEXT NOT NULL,
        chat_id INTEGER,
        message_id INTEGER,
        created_at TEXT NOT NULL,
        details_json TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS users (
        user_id INTEGER PRIMARY KEY,
        display_name TEXT,
        is_banned INTEGER NOT NULL DEFAULT 0,
        ban_expires_at TEXT,
        is_trusted INTEGER NOT NULL DEFAULT 0,
        updated_by TEXT,
        updated_reason TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS warnings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id INTEGER NOT NULL,
        actor TEXT NOT NULL,
        reason TEXT NOT NULL,
        chat_id INTEGER,
        message_id INTEGER,
        created_at TEXT NOT NULL,
        expires_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS managed_chats (
        chat_id INTEGER PRIMARY KEY,
        title TEXT,
        is_active INTEGER NOT NULL DEFAULT 1,
        is_healthy INTEGER NOT NULL DEFAULT 1
    )
    """,
)


def encode_actor(actor: Actor) -> str:
    return f"{actor.kind.value}:{actor.id}" if actor.id is not None else actor.kind.value


def _iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


class SQLiteStorage(StorageGateway):
    def __init__(self, path: str | Path, *, clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)) -> None:
        self._path = Path(path)
        self._conn: Optional[aiosqlite.Connection] = None
        self._clock = clock

    @property
    def conn(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("SQLiteStorage is not connected")
        return self._conn

    async def connect(self) -> None:
        self._conn = await aiosqlite.connect(self._path)
        self._conn.row_factory = aiosqlite.Row
        await self._conn.execute("PRAGMA journal_mode=WAL")
        for statement in SCHEMA:
            await self._conn.execute(statement)
        await self._conn.commit()
        logger.info("sqlite_connected", path=str(self._path))

    async def disconnect(self) -> None:
        if self._conn:
            await self._conn.close()
            self._conn = None

    # message history

    async def record_message(self, message: IncomingMessage) -> None:
        await self.conn.execute(
            """
            INSERT INTO messages (chat_id, message_id, user_id, user_name, text, photo_path, sent_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(chat_id, message_id) DO UPDATE SET
                text=excluded.text,
                photo_path=excluded.photo_path
            """,
            (
                message.chat.id,
                message.message_id,
                message.user.id,
                message.user.display_name,
                message.content_text(),
                message.photo_path,
                _iso(message.timestamp),
            ),
        )
        await self.conn.commit()

    async def get_message(self, chat_id: int, message_id: int) -> Optional[HistoryMessage]:
        cursor = await self.conn.execute(
            "SELECT * FROM messages WHERE chat_id = ? AND message_id = ?",
            (chat_id, message_id),
        )
        row = await cursor.fetchone()
        await cursor.close()
        return self._history_row(row) if row else None

    async def get_recent_messages(self, chat_id: int, limit: int) -> list[HistoryMessage]:
        cursor = await self.conn.execute(
            """
            SELECT m.*, EXISTS (
                SELECT 1 FROM training_labels t
                WHERE t.chat_id = m.chat_id AND t.message_id = m.message_id AND t.label = 'spam'
            ) AS was_spam
            FROM messages m
            WHERE m.chat_id = ? AND m.deleted_at IS NULL
            ORDER BY m.sent_at DESC
            LIMIT ?
            """,
            (chat_id, limit),
        )
        rows = await cursor.fetchall()
        await cursor.close()
        return [self._history_row(row) for row in rows]

    async def get_user_messages(self, user_id: int, *, include_deleted: bool = False) -> list[HistoryMessage]:
        query = "SELECT * FROM messages WHERE user_id = ?"
        if not include_deleted:
            query += " AND deleted_at IS NULL"
        cursor = await self.conn.execute(f"{query} ORDER BY sent_at DESC", (user_id,))
        rows = await cursor.fetchall()
        await cursor.close()
        return [self._history_row(row) for row in rows]

    async def mark_deleted(self, chat_id: int, message_id: int, *, reason: str) -> None:
        await self.conn.execute(
            "UPDATE messages SET deleted_at = ?, deletion_reason = ? WHERE chat_id = ? AND message_id = ?",
            (_iso(self._clock()), reason, chat_id, message_id),
        )
        await self.conn.commit()

    @staticmethod
    def _history_row(row: aiosqlite.Row) -> HistoryMessage:
        keys = row.keys()
        return HistoryMessage(
            message_id=row["message_id"],
            chat_id=row["chat_id"],
            user_id=row["user_id"],
            user_name=row["user_name"],
            text=row["text"],
            timestamp=datetime.fromisoformat(row["sent_at"]),
            was_spam=bool(row["was_spam"]) if "was_spam" in keys else False,
            photo_path=row["photo_path"],
            deleted=row["deleted_at"] is not None,
        )

    # detection results and training data

    async def record_detection(self, record: DetectionRecord) -> None:
        await self.conn.execute(
            """
            INSERT INTO detection_results (
                chat_id, message_id, user_id, is_spam, confidence, reason,
                detection_source, detected_by, detected_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.chat_id,
                record.message_id,
                record.user_id,
                int(record.is_spam),
                record.confidence,
                record.reason,
                record.detection_source,
                encode_actor(record.detected_by),
                _iso(record.detected_at),
            ),
        )
        await self.conn.commit()
        logger.info("sqlite_record_detection", message_id=record.message_id, is_spam=record.is_spam)

    async def upsert_label(self, label: TrainingLabel) -> None:
        await self.conn.execute(
            """
            INSERT INTO training_labels (chat_id, message_id, label, labeled_by, text, reason)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(chat_id, message_id) DO UPDATE SET
                label=excluded.label,
                labeled_by=excluded.labeled_by,
                text=excluded.text,
                reason=excluded.reason
            """,
            (
                label.chat_id,
                label.message_id,
                label.label.value,
                encode_actor(label.labeled_by),
                label.text,
                label.reason,
            ),
        )
        await self.conn.commit()

    async def save_sample(self, message_id: int, photo_path: str, *, is_spam: bool, actor: Actor) -> bool:
        cursor = await self.conn.execute(
            """
            INSERT INTO image_training_samples (message_id, photo_path, is_spam, marked_by)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(message_id) DO NOTHING
            """,
            (message_id, photo_path, int(is_spam), encode_actor(actor)),
        )
        created = cursor.rowcount > 0
        await cursor.close()
        await self.conn.commit()
        return created

    # audit

    async def log_action(self, entry: AuditEntry) -> None:
        await self.conn.execute(
            """
            INSERT INTO audit_log (
                action_type, user_id, actor, reason, chat_id, message_id, created_at, details_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry.action_type,
                entry.user_id,
                encode_actor(entry.actor),
                entry.reason,
                entry.chat_id,
                entry.message_id,
                _iso(entry.created_at),
                json.dumps(entry.details),
            ),
        )
        await self.conn.commit()

    # users

    async def ensure_exists(self, user: UserIdentity) -> None:
        await self.conn.execute(
            """
            INSERT INTO users (user_id, display_name) VALUES (?, ?)
            ON CONFLICT(user_id) DO UPDATE SET display_name=COALESCE(excluded.display_name, users.display_name)
            """,
            (user.id, user.display_name),
        )
        await self.conn.commit()

    async def set_banned(
        self,
        user_id: int,
        banned: bool,
        *,
        actor: Actor,
        reason: str,
        expires_at: Optional[datetime] = None,
    ) -> None:
        await self.conn.execute(
            """
            INSERT INTO users (user_id, is_banned, ban_expires_at, updated_by, updated_reason)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                is_banned=excluded.is_banned,
                ban_expires_at=excluded.ban_expires_at,
                updated_by=excluded.updated_by,
                updated_reason=excluded.updated_reason
            """,
            (user_id, int(banned), _iso(expires_at) if expires_at else None, encode_actor(actor), reason),
        )
        await self.conn.commit()
        logger.info("sqlite_set_banned", user_id=user_id, banned=banned)

    async def is_banned(self, user_id: int) -> bool:
        cursor = await self.conn.execute("SELECT is_banned FROM users WHERE user_id = ?", (user_id,))
        row = await cursor.fetchone()
        await cursor.close()
        return bool(row and row["is_banned"])

    async def get_ban_expiry(self, user_id: int) -> Optional[datetime]:
        cursor = await self.conn.execute(
            "SELECT is_banned, ban_expires_at FROM users WHERE user_id = ?", (user_id,)
        )
        row = await cursor.fetchone()
        await cursor.close()
        if not row or not row["is_banned"] or row["ban_expires_at"] is None:
            return None
        return datetime.fromisoformat(row["ban_expires_at"])

    async def set_trusted(self, user_id: int, trusted: bool, *, actor: Actor, reason: str) -> None:
        await self.conn.execute(
            """
            INSERT INTO users (user_id, is_trusted, updated_by, updated_reason) VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                is_trusted=excluded.is_trusted,
                updated_by=excluded.updated_by,
                updated_reason=excluded.updated_reason
            """,
            (user_id, int(trusted), encode_actor(actor), reason),
        )
        await self.conn.commit()
        logger.info("sqlite_set_trusted", user_id=user_id, trusted=trusted)

    async def is_trusted(self, user_id: int) -> bool:
        cursor = await self.conn.execute("SELECT is_trusted FROM users WHERE user_id = ?", (user_id,))
        row = await cursor.fetchone()
        await cursor.close()
        return bool(row and row["is_trusted"])

    async def add_warning(
        self,
        user_id: int,
        *,
        actor: Actor,
        reason: str,
        expires_at: datetime,
        chat_id: Optional[int] = None,
        message_id: Optional[int] = None,
    ) -> int:
        await self.conn.execute(
            """
            INSERT INTO warnings (user_id, actor, reason, chat_id, message_id, created_at, expires_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (user_id, encode_actor(actor), reason, chat_id, message_id, _iso(self._clock()), _iso(expires_at)),
        )
        await self.conn.commit()
        return await self.active_warning_count(user_id)

    async def active_warning_count(self, user_id: int) -> int:
        cursor = await self.conn.execute(
            "SELECT COUNT(*) AS total FROM warnings WHERE user_id = ? AND expires_at > ?",
            (user_id, _iso(self._clock())),
        )
        row = await cursor.fetchone()
        await cursor.close()
        return int(row["total"]) if row else 0

    # managed chats

    async def list_active_chats(self) -> list[ManagedChat]:
        cursor = await self.conn.execute("SELECT * FROM managed_chats WHERE is_active = 1")
        rows = await cursor.fetchall()
        await cursor.close()
        return [
            ManagedChat(
                chat_id=row["chat_id"],
                title=row["title"],
                active=bool(row["is_active"]),
                healthy=bool(row["is_healthy"]),
            )
            for row in rows
        ]

    async def upsert_chat(self, chat: ManagedChat) -> None:
        await self.conn.execute(
            """
            INSERT INTO managed_chats (chat_id, title, is_active, is_healthy) VALUES (?, ?, ?, ?)
            ON CONFLICT(chat_id) DO UPDATE SET
                title=COALESCE(excluded.title, managed_chats.title),
                is_active=excluded.is_active,
                is_healthy=excluded.is_healthy
            """,
            (chat.chat_id, chat.title, int(chat.active), int(chat.healthy)),
        )
        await self.conn.commit()
