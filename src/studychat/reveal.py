"""Typewriter-style reveal of an already complete reply into the message store.

A reveal appends `chunk_size` characters to the target assistant message every
`interval` seconds on the running event loop. Each reveal is an asyncio task
owned by a `RevealHandle`; ticks are checked against the handle's generation,
so a cancelled or superseded reveal never writes again.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from enum import Enum
from typing import Awaitable, Callable

from .config import REVEAL_CHUNK_SIZE, REVEAL_INTERVAL_SECONDS
from .errors import StorageReadError
from .models import Message
from .storage import MessageStore

logger = logging.getLogger(__name__)

TickListener = Callable[[str, Message, "RevealHandle"], None]


class RevealState(str, Enum):
    IDLE = "idle"
    REVEALING = "revealing"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class RevealHandle:
    """One reveal of one reply. Returned by `RevealScheduler.start`."""

    def __init__(
        self,
        scheduler: RevealScheduler,
        conversation_id: str,
        message_id: str,
        text: str,
        generation: int,
    ):
        self._scheduler = scheduler
        self.conversation_id = conversation_id
        self.message_id = message_id
        self.text = text
        self.generation = generation
        self.state = RevealState.IDLE
        self.ticks = 0
        self.cursor = 0
        self._task: asyncio.Task | None = None
        self._done = asyncio.Event()

    @property
    def revealed(self) -> str:
        return self.text[: self.cursor]

    @property
    def active(self) -> bool:
        return self.state is RevealState.REVEALING

    def cancel(self) -> bool:
        """Stop revealing and deliver the partial text. Returns False if already finished."""
        return self._scheduler._cancel(self)

    async def wait(self) -> RevealState:
        await self._done.wait()
        return self.state

    def __repr__(self) -> str:
        return (
            f"RevealHandle(conversation={self.conversation_id!r}, message={self.message_id!r}, "
            f"generation={self.generation}, state={self.state.value}, ticks={self.ticks})"
        )


class RevealScheduler:
    """Drives at most one reveal per conversation."""

    def __init__(
        self,
        store: MessageStore,
        interval: float = REVEAL_INTERVAL_SECONDS,
        chunk_size: int = REVEAL_CHUNK_SIZE,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ):
        if chunk_size < 1:
            raise ValueError("chunk_size must be at least 1")
        self.store = store
        self.interval = interval
        self.chunk_size = chunk_size
        self._sleep = sleep
        self._active: dict[str, RevealHandle] = {}
        self._generations = itertools.count(1)
        self._listeners: list[TickListener] = []

    def add_listener(self, listener: TickListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: TickListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def active(self, conversation_id: str) -> RevealHandle | None:
        return self._active.get(conversation_id)

    def is_revealing(self, conversation_id: str) -> bool:
        return conversation_id in self._active

    def start(self, conversation_id: str, message_id: str, text: str) -> RevealHandle:
        """Begin revealing `text` into `message_id`, cancelling any reveal already running there.

        Must be called from a running event loop.
        """
        self.cancel(conversation_id)

        handle = RevealHandle(self, conversation_id, message_id, text, next(self._generations))
        handle.state = RevealState.REVEALING

        if not text:
            message = self._write(handle, delivered=True)
            self._settle(handle, RevealState.DELIVERED if message else RevealState.CANCELLED)
            return handle

        self._active[conversation_id] = handle
        handle._task = asyncio.get_running_loop().create_task(
            self._run(handle), name=f"reveal-{conversation_id}-{handle.generation}"
        )
        logger.debug("Started %r (%d chars)", handle, len(text))
        return handle

    def cancel(self, conversation_id: str) -> bool:
        handle = self._active.get(conversation_id)
        if handle is None:
            return False
        return self._cancel(handle)

    def cancel_all(self) -> None:
        for handle in list(self._active.values()):
            self._cancel(handle)

    def _is_current(self, handle: RevealHandle) -> bool:
        return handle.active and self._active.get(handle.conversation_id) is handle

    async def _run(self, handle: RevealHandle) -> None:
        total = len(handle.text)
        try:
            while handle.cursor < total:
                await self._sleep(self.interval)
                if not self._is_current(handle):
                    return

                handle.cursor = min(handle.cursor + self.chunk_size, total)
                handle.ticks += 1
                finished = handle.cursor >= total

                message = self._write(handle, delivered=finished)
                if message is None:
                    self._settle(handle, RevealState.CANCELLED)
                    return
                if finished:
                    self._settle(handle, RevealState.DELIVERED)
                self._notify(handle, message)
        except Exception:
            logger.warning("Reveal %r failed after %d chars", handle, handle.cursor, exc_info=True)
        finally:
            # Waiters are always released, even when a write blew up mid-tick.
            if handle.active:
                self._settle(handle, RevealState.CANCELLED)

    def _cancel(self, handle: RevealHandle) -> bool:
        if not handle.active:
            return False
        if handle._task is not None:
            handle._task.cancel()
        self._write(handle, delivered=True)
        self._settle(handle, RevealState.CANCELLED)
        logger.debug("Cancelled %r after %d of %d chars", handle, handle.cursor, len(handle.text))
        return True

    def _write(self, handle: RevealHandle, delivered: bool) -> Message | None:
        try:
            message = self.store.update(
                handle.conversation_id,
                handle.message_id,
                text=handle.revealed,
                is_delivered=delivered,
            )
        except StorageReadError:
            logger.warning("Reveal target %s is unreadable, stopping", handle.conversation_id, exc_info=True)
            return None
        if message is None:
            logger.info("Reveal target %s disappeared from %s", handle.message_id, handle.conversation_id)
        return message

    def _settle(self, handle: RevealHandle, state: RevealState) -> None:
        handle.state = state
        if self._active.get(handle.conversation_id) is handle:
            del self._active[handle.conversation_id]
        handle._done.set()

    def _notify(self, handle: RevealHandle, message: Message) -> None:
        for listener in list(self._listeners):
            try:
                listener(handle.conversation_id, message, handle)
            except Exception:
                logger.warning("Reveal listener %r failed", listener, exc_info=True)
