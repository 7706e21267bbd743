"""Key-value persistence and the per-conversation message log."""

from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .config import CONVERSATION_KEY_PREFIX, INDEX_KEY
from .errors import StorageReadError
from .models import Message

logger = logging.getLogger(__name__)


class KeyValueStore:
    """String-to-string persistence. Each `set` is atomic per key."""

    def get(self, key: str) -> str | None:
        raise NotImplementedError

    def set(self, key: str, value: str) -> None:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def keys(self, prefix: str = "") -> list[str]:
        raise NotImplementedError

    def close(self) -> None:
        pass


class MemoryKeyValueStore(KeyValueStore):
    """In-process store for ephemeral sessions."""

    def __init__(self, initial: dict[str, str] | None = None):
        self.data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self.data if k.startswith(prefix))


class SQLiteKeyValueStore(KeyValueStore):
    """SQLite-backed key-value table."""

    def __init__(self, db_path: Path):
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(db_path))
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._migrate()
        logger.debug("Opened key-value store at %s", db_path)

    def _migrate(self):
        self.conn.executescript("""
            CREATE TABLE IF NOT EXISTS kv (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );
        """)
        self.conn.commit()

    def get(self, key: str) -> str | None:
        row = self.conn.execute("SELECT value FROM kv WHERE key = ?", (key,)).fetchone()
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        self.conn.execute(
            "INSERT INTO kv (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, value),
        )
        self.conn.commit()

    def delete(self, key: str) -> None:
        self.conn.execute("DELETE FROM kv WHERE key = ?", (key,))
        self.conn.commit()

    def keys(self, prefix: str = "") -> list[str]:
        rows = self.conn.execute(
            "SELECT key FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key",
            (len(prefix), prefix),
        ).fetchall()
        return [r[0] for r in rows]

    def close(self):
        self.conn.close()


def conversation_key(conversation_id: str) -> str:
    return CONVERSATION_KEY_PREFIX + conversation_id


class MessageStore:
    """Ordered message log of each conversation, stored as one JSON array per key.

    Every mutation rewrites the whole array (last writer wins). A single logical
    writer per conversation is assumed; nothing here guards concurrent callers.
    """

    def __init__(self, kv: KeyValueStore):
        self.kv = kv

    def load(self, conversation_id: str) -> list[Message]:
        """Return the stored messages, oldest first.

        Raises StorageReadError when the stored value is not a valid message array.
        """
        key = conversation_key(conversation_id)
        raw = self.kv.get(key)
        if raw is None:
            return []

        try:
            data: Any = json.loads(raw)
        except json.JSONDecodeError as e:
            raise StorageReadError(key, f"invalid JSON ({e.msg})") from e

        if not isinstance(data, list):
            raise StorageReadError(key, "expected a JSON array")

        try:
            return [Message.model_validate(item) for item in data]
        except ValidationError as e:
            raise StorageReadError(key, f"{e.error_count()} invalid message field(s)") from e

    def save(self, conversation_id: str, messages: list[Message]) -> None:
        payload = [m.model_dump(by_alias=True) for m in messages]
        self.kv.set(conversation_key(conversation_id), json.dumps(payload, ensure_ascii=False))

    def append(self, conversation_id: str, message: Message) -> list[Message]:
        messages = self.load(conversation_id)
        messages.append(message)
        self.save(conversation_id, messages)
        return messages

    def update(self, conversation_id: str, message_id: str, **changes: Any) -> Message | None:
        """Replace one message with a changed copy. Returns None if the message is gone."""
        messages = self.load(conversation_id)
        for i, msg in enumerate(messages):
            if msg.id == message_id:
                messages[i] = msg.model_copy(update=changes)
                self.save(conversation_id, messages)
                return messages[i]
        return None

    def delete(self, conversation_id: str) -> None:
        self.kv.delete(conversation_key(conversation_id))

    def conversation_ids(self) -> list[str]:
        prefix = CONVERSATION_KEY_PREFIX
        return [k[len(prefix):] for k in self.kv.keys(prefix) if k != INDEX_KEY]
