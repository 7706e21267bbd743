"""Conversation engine: send, edit, regenerate and stop over the message store.

Flow of one exchange:

    user text -> message log (user message + empty assistant placeholder)
              -> completion gateway (full history)
              -> reveal scheduler types the reply into the placeholder
              -> conversation index gets a generated title on the first exchange

Every path ends with the placeholder delivered: the revealed reply, a partial
reply when stopped, or ERROR_REPLY when the completion fails.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable

from .config import ERROR_REPLY, UNTITLED
from .errors import (
    CompletionError,
    ConversationBusyError,
    NotFoundError,
    StorageReadError,
    TitleGenerationError,
)
from .feedback import COPIED, DISLIKED, LIKED, FeedbackTimers
from .gateway import CompletionGateway, to_history
from .index import ConversationIndex
from .models import ChatTurn, ConversationSummary, Message, display_date, make_message_id
from .reveal import RevealHandle, RevealScheduler
from .scanner import ImageScanner
from .storage import KeyValueStore, MessageStore

logger = logging.getLogger(__name__)

UpdateListener = Callable[[str, Message], None]
ScrollListener = Callable[[str], None]


@dataclass
class Turn:
    """Outcome of a send, edit or regenerate."""

    conversation_id: str
    user_message_id: str | None
    assistant_message_id: str
    reveal: RevealHandle | None = None

    async def wait(self) -> None:
        """Wait until the reply is fully revealed or stopped."""
        if self.reveal is not None:
            await self.reveal.wait()


def _created_date(conversation_id: str) -> str:
    """Display date from a millisecond-timestamp id, today for anything else."""
    try:
        return display_date(datetime.fromtimestamp(int(conversation_id) / 1000))
    except (ValueError, OverflowError, OSError):
        return display_date()


class ConversationEngine:
    def __init__(
        self,
        messages: MessageStore,
        index: ConversationIndex,
        gateway: CompletionGateway,
        scheduler: RevealScheduler | None = None,
        scanner: ImageScanner | None = None,
        feedback: FeedbackTimers | None = None,
    ):
        self.store = messages
        self.index = index
        self.gateway = gateway
        self.scheduler = scheduler or RevealScheduler(messages)
        self.scanner = scanner
        self.feedback = feedback or FeedbackTimers()

        # conversation id -> placeholder id whose completion is still awaited
        self._pending: dict[str, str] = {}
        self._pinned: dict[str, bool] = {}
        self._update_listeners: list[UpdateListener] = []
        self._scroll_listeners: list[ScrollListener] = []
        self._last_id = 0

        self.scheduler.add_listener(self._on_reveal_tick)

    @classmethod
    def from_store(cls, kv: KeyValueStore, gateway: CompletionGateway | None = None, **kwargs) -> ConversationEngine:
        store = MessageStore(kv)
        return cls(store, ConversationIndex(kv), gateway or CompletionGateway(), **kwargs)

    # ------------------------------------------------------------------
    # State exposed to the UI
    # ------------------------------------------------------------------

    def messages(self, conversation_id: str) -> list[Message]:
        try:
            return self.store.load(conversation_id)
        except StorageReadError:
            logger.warning("Falling back to an empty conversation for %s", conversation_id, exc_info=True)
            return []

    def is_generating(self, conversation_id: str) -> bool:
        return conversation_id in self._pending or self.scheduler.is_revealing(conversation_id)

    def is_pinned(self, conversation_id: str) -> bool:
        return self._pinned.get(conversation_id, True)

    def set_pinned(self, conversation_id: str, pinned: bool) -> None:
        """Record whether the viewport currently shows the latest message."""
        self._pinned[conversation_id] = pinned

    def add_update_listener(self, listener: UpdateListener) -> None:
        self._update_listeners.append(listener)

    def add_scroll_listener(self, listener: ScrollListener) -> None:
        self._scroll_listeners.append(listener)

    def open(self, conversation_id: str) -> list[Message]:
        """Load a conversation for display, delivering replies left undelivered by an interrupted session."""
        if not self.is_generating(conversation_id):
            self._deliver_stragglers(conversation_id)
        return self.messages(conversation_id)

    def new_conversation_id(self) -> str:
        # Millisecond clock, bumped so ids stay unique within this process.
        now = int(time.time() * 1000)
        self._last_id = max(now, self._last_id + 1)
        return str(self._last_id)

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    async def send(self, text: str, conversation_id: str | None = None) -> Turn:
        """Append a user message and produce the assistant reply.

        Starts a new conversation when `conversation_id` is None.
        """
        text = text.strip()
        if not text:
            raise ValueError("Message text must not be blank")

        if conversation_id is None:
            conversation_id = self.new_conversation_id()
            history: list[Message] = []
        else:
            self._ensure_idle(conversation_id)
            history = self.messages(conversation_id)

        first_exchange = not history
        user = Message.user(text)
        placeholder = Message.placeholder(user.id)
        history.append(user)

        self.store.save(conversation_id, [*history, placeholder])
        if first_exchange and self.index.get(conversation_id) is None:
            self.index.prepend(ConversationSummary(id=conversation_id, date=display_date()))
        self._scroll(conversation_id)

        reveal = await self._respond(conversation_id, to_history(history), placeholder.id, retitle=first_exchange)
        return Turn(conversation_id, user.id, placeholder.id, reveal)

    async def edit_and_resend(self, conversation_id: str, target_id: str, new_text: str) -> Turn | None:
        """Replace a user message and everything after it with a fresh exchange.

        Returns None when `target_id` is not a user message of the conversation.
        """
        new_text = new_text.strip()
        if not new_text:
            raise ValueError("Message text must not be blank")
        if conversation_id in self._pending:
            raise ConversationBusyError(f"A reply is still pending in {conversation_id}")

        try:
            self._locate_user_message(self.messages(conversation_id), target_id)
        except NotFoundError as e:
            logger.info("Ignoring edit: %s", e)
            return None

        self.scheduler.cancel(conversation_id)
        messages = self.messages(conversation_id)
        position = self._locate_user_message(messages, target_id)

        edited = messages[position].model_copy(update={"text": new_text})
        history = [*messages[:position], edited]
        placeholder = Message.placeholder(edited.id)

        self.store.save(conversation_id, [*history, placeholder])
        self._scroll(conversation_id)

        reveal = await self._respond(conversation_id, to_history(history), placeholder.id, retitle=position == 0)
        return Turn(conversation_id, edited.id, placeholder.id, reveal)

    async def regenerate(self, conversation_id: str, message_id: str) -> Turn | None:
        """Produce a new reply to the user message `message_id`, or to the prompt behind reply `message_id`."""
        prompt = self._resolve_prompt(self.messages(conversation_id), message_id)
        if prompt is None:
            logger.info("Ignoring regenerate: no prompt found for %s in %s", message_id, conversation_id)
            return None
        return await self.edit_and_resend(conversation_id, prompt.id, prompt.text)

    def stop_generating(self, conversation_id: str) -> bool:
        """Stop the reply in progress, keeping whatever has been revealed so far.

        A completion still awaited from the server is not aborted; its reply is
        discarded when it arrives and the placeholder is delivered empty now.
        """
        stopped = self.scheduler.cancel(conversation_id)
        placeholder_id = self._pending.pop(conversation_id, None)
        if placeholder_id is not None:
            logger.info("Stopped %s while waiting for the completion", conversation_id)
            self._finalize(conversation_id, placeholder_id)
            stopped = True
        if stopped:
            self._deliver_stragglers(conversation_id)
        return stopped

    async def start_from_scan(self, image_path: str | Path) -> Turn:
        """Open a conversation whose first message is the scanned solution of an image."""
        if self.scanner is None:
            raise RuntimeError("No image scanner configured")

        try:
            reply = await self.scanner.scan(image_path)
        except CompletionError:
            logger.warning("Image scan failed for %s", image_path, exc_info=True)
            reply = None

        cached = self.scanner.cache_image(image_path)
        conversation_id = self.new_conversation_id()
        message = Message(
            id=make_message_id("assistant"),
            role="assistant",
            text=reply or ERROR_REPLY,
            is_delivered=True,
            image_uri=str(cached),
        )
        self.store.save(conversation_id, [message])
        self.index.prepend(ConversationSummary(id=conversation_id, date=display_date()))

        if reply is None:
            self.index.upsert_title(conversation_id, UNTITLED)
        else:
            await self._generate_title(conversation_id, [], reply)
        return Turn(conversation_id, None, message.id)

    async def _respond(
        self,
        conversation_id: str,
        history: list[ChatTurn],
        placeholder_id: str,
        retitle: bool,
    ) -> RevealHandle | None:
        self._pending[conversation_id] = placeholder_id
        reply: str | None = None
        try:
            reply = await self.gateway.complete(history)
        except CompletionError:
            logger.warning("Completion failed for %s", conversation_id, exc_info=True)
        finally:
            owned = self._pending.get(conversation_id) == placeholder_id
            if owned:
                del self._pending[conversation_id]
                if reply is None:
                    self._finalize(conversation_id, placeholder_id, ERROR_REPLY)

        if not owned:
            logger.info("Discarding late reply for %s (stopped or superseded)", conversation_id)
            return None
        if reply is None:
            return None

        handle = self.scheduler.start(conversation_id, placeholder_id, reply)
        if retitle:
            await self._generate_title(conversation_id, history, reply)
        return handle

    async def _generate_title(self, conversation_id: str, history: list[ChatTurn], reply: str) -> None:
        try:
            title = await self.gateway.summarize_title(history, reply)
        except TitleGenerationError:
            logger.warning("Title generation failed for %s", conversation_id, exc_info=True)
            title = ""

        title = title or UNTITLED
        if self.index.upsert_title(conversation_id, title):
            return
        # Entry missing: rebuild it only while the message log still exists.
        if conversation_id in self.store.conversation_ids():
            self.index.prepend(
                ConversationSummary(id=conversation_id, title=title, date=_created_date(conversation_id))
            )

    # ------------------------------------------------------------------
    # Feedback and sharing
    # ------------------------------------------------------------------

    def rate(self, conversation_id: str, message_id: str, liked: bool | None) -> Message:
        message = self.store.update(conversation_id, message_id, liked=liked)
        if message is None:
            raise NotFoundError(f"Message {message_id} not found in {conversation_id}")
        if liked is True:
            self.feedback.show(LIKED, message_id)
        elif liked is False:
            self.feedback.show(DISLIKED, message_id)
        return message

    def like(self, conversation_id: str, message_id: str) -> Message:
        return self.rate(conversation_id, message_id, True)

    def dislike(self, conversation_id: str, message_id: str) -> Message:
        return self.rate(conversation_id, message_id, False)

    def clear_feedback(self, conversation_id: str, message_id: str) -> Message:
        return self.rate(conversation_id, message_id, None)

    def copy(self, conversation_id: str, message_id: str) -> str:
        text = self._text_of(conversation_id, message_id)
        self.feedback.show(COPIED, message_id)
        return text

    def share(self, conversation_id: str, message_id: str) -> str:
        return self._text_of(conversation_id, message_id)

    # ------------------------------------------------------------------
    # Conversation list
    # ------------------------------------------------------------------

    def conversations(self, query: str | None = None) -> list[ConversationSummary]:
        return self.index.search(query)

    def rename(self, conversation_id: str, title: str) -> bool:
        return self.index.rename(conversation_id, title)

    def delete(self, conversation_id: str) -> bool:
        self.scheduler.cancel(conversation_id)
        self._pending.pop(conversation_id, None)
        removed = self.index.remove(conversation_id)
        self.store.delete(conversation_id)
        return removed

    def repair_index(self) -> list[str]:
        """Add index entries for message logs written without one. Returns the repaired ids."""
        missing = self.index.missing_from(self.store.conversation_ids())
        for conversation_id in missing:
            logger.info("Restoring index entry for %s", conversation_id)
            self.index.prepend(
                ConversationSummary(id=conversation_id, title=UNTITLED, date=_created_date(conversation_id))
            )
        return missing

    def close(self) -> None:
        self.scheduler.cancel_all()
        self.scheduler.remove_listener(self._on_reveal_tick)
        self.feedback.clear()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _ensure_idle(self, conversation_id: str) -> None:
        if conversation_id in self._pending:
            raise ConversationBusyError(f"A reply is still pending in {conversation_id}")
        self.scheduler.cancel(conversation_id)

    def _finalize(self, conversation_id: str, message_id: str, text: str | None = None) -> None:
        changes: dict = {"is_delivered": True}
        if text is not None:
            changes["text"] = text
        try:
            self.store.update(conversation_id, message_id, **changes)
        except StorageReadError:
            logger.warning("Could not finalize %s in %s", message_id, conversation_id, exc_info=True)

    def _deliver_stragglers(self, conversation_id: str) -> None:
        messages = self.messages(conversation_id)
        if not any(not m.is_user and not m.is_delivered for m in messages):
            return
        self.store.save(
            conversation_id,
            [
                m if m.is_user or m.is_delivered else m.model_copy(update={"is_delivered": True})
                for m in messages
            ],
        )

    @staticmethod
    def _locate_user_message(messages: list[Message], message_id: str) -> int:
        for i, m in enumerate(messages):
            if m.id == message_id:
                if not m.is_user:
                    raise NotFoundError(f"{message_id} is not a user message")
                return i
        raise NotFoundError(f"Message {message_id} not found")

    @staticmethod
    def _resolve_prompt(messages: list[Message], message_id: str) -> Message | None:
        by_id = {m.id: i for i, m in enumerate(messages)}
        position = by_id.get(message_id)
        if position is None:
            return None

        message = messages[position]
        if message.is_user:
            return message
        linked = message.original_user_message_id
        if linked in by_id:
            return messages[by_id[linked]]
        for earlier in reversed(messages[:position]):
            if earlier.is_user:
                return earlier
        return None

    def _text_of(self, conversation_id: str, message_id: str) -> str:
        for m in self.messages(conversation_id):
            if m.id == message_id:
                return m.text
        raise NotFoundError(f"Message {message_id} not found in {conversation_id}")

    def _scroll(self, conversation_id: str) -> None:
        if not self.is_pinned(conversation_id):
            return
        for listener in list(self._scroll_listeners):
            listener(conversation_id)

    def _on_reveal_tick(self, conversation_id: str, message: Message, handle: RevealHandle) -> None:
        for listener in list(self._update_listeners):
            listener(conversation_id, message)
        self._scroll(conversation_id)
