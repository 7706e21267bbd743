"""Short-lived confirmation badges (liked, disliked, copied) that dismiss themselves."""

from __future__ import annotations

import asyncio

from .config import FEEDBACK_DISMISS_SECONDS

LIKED = "liked"
DISLIKED = "disliked"
COPIED = "copied"


class FeedbackTimers:
    """One visible message id per action, each cleared after `duration` seconds."""

    def __init__(self, duration: float = FEEDBACK_DISMISS_SECONDS):
        self.duration = duration
        self._visible: dict[str, str] = {}
        self._timers: dict[str, asyncio.TimerHandle] = {}

    def show(self, action: str, message_id: str) -> None:
        self._visible[action] = message_id

        previous = self._timers.pop(action, None)
        if previous is not None:
            previous.cancel()

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop: the badge stays until the next show/dismiss.
            return
        self._timers[action] = loop.call_later(self.duration, self.dismiss, action)

    def dismiss(self, action: str) -> None:
        self._visible.pop(action, None)
        timer = self._timers.pop(action, None)
        if timer is not None:
            timer.cancel()

    def visible(self, action: str) -> str | None:
        return self._visible.get(action)

    def clear(self) -> None:
        for action in list(self._visible):
            self.dismiss(action)
