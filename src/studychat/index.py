"""Conversation list: id, title and creation date of every conversation."""

from __future__ import annotations

import json
import logging

from pydantic import ValidationError

from .config import INDEX_KEY
from .models import ConversationSummary
from .storage import KeyValueStore

logger = logging.getLogger(__name__)


class ConversationIndex:
    """Summaries of all conversations, most recently created first.

    Stored under a single key, separately from the message logs. The two are
    not written transactionally; see `missing_from` for the repair path.
    """

    def __init__(self, kv: KeyValueStore, key: str = INDEX_KEY):
        self.kv = kv
        self.key = key

    def _read(self) -> list[ConversationSummary]:
        raw = self.kv.get(self.key)
        if raw is None:
            return []
        try:
            data = json.loads(raw)
            if not isinstance(data, list):
                raise ValueError("expected a JSON array")
            return [ConversationSummary.model_validate(item) for item in data]
        except (ValueError, ValidationError):
            logger.warning("Conversation index at '%s' is unreadable, treating as empty", self.key, exc_info=True)
            return []

    def _write(self, summaries: list[ConversationSummary]) -> None:
        payload = [s.model_dump() for s in summaries]
        self.kv.set(self.key, json.dumps(payload, ensure_ascii=False))

    def list(self) -> list[ConversationSummary]:
        """Return summaries, newest first, keeping only the first entry per id."""
        seen: set[str] = set()
        unique: list[ConversationSummary] = []
        for s in self._read():
            if s.id not in seen:
                seen.add(s.id)
                unique.append(s)
        return unique

    def get(self, conversation_id: str) -> ConversationSummary | None:
        for s in self.list():
            if s.id == conversation_id:
                return s
        return None

    def prepend(self, summary: ConversationSummary) -> None:
        summaries = [s for s in self._read() if s.id != summary.id]
        summaries.insert(0, summary)
        self._write(summaries)

    def upsert_title(self, conversation_id: str, title: str) -> bool:
        """Set the title of an existing entry. Returns False (and writes nothing) if absent."""
        summaries = self._read()
        found = False
        for i, s in enumerate(summaries):
            if s.id == conversation_id:
                summaries[i] = s.model_copy(update={"title": title})
                found = True
        if found:
            self._write(summaries)
        return found

    def rename(self, conversation_id: str, title: str) -> bool:
        title = title.strip()
        if not title:
            raise ValueError("Title must not be blank")
        return self.upsert_title(conversation_id, title)

    def remove(self, conversation_id: str) -> bool:
        summaries = self._read()
        kept = [s for s in summaries if s.id != conversation_id]
        if len(kept) == len(summaries):
            return False
        self._write(kept)
        return True

    def search(self, query: str | None = None) -> list[ConversationSummary]:
        """Case-insensitive title filter. A blank query returns everything."""
        q = (query or "").strip().lower()
        summaries = self.list()
        if not q:
            return summaries
        return [s for s in summaries if q in (s.title or "").lower()]

    def missing_from(self, conversation_ids: list[str]) -> list[str]:
        """Ids that have a message log but no index entry (e.g. after a crash mid-send)."""
        indexed = {s.id for s in self._read()}
        return [cid for cid in conversation_ids if cid not in indexed]
