"""Exception types raised by the conversation engine and its collaborators."""

from __future__ import annotations


class StudychatError(Exception):
    """Base class for all studychat errors."""


class StorageReadError(StudychatError):
    """A persisted conversation could not be decoded."""

    def __init__(self, key: str, reason: str):
        super().__init__(f"Unreadable value at '{key}': {reason}")
        self.key = key
        self.reason = reason


class CompletionError(StudychatError):
    """The remote completion call failed."""

    def __init__(self, message: str, cause: BaseException | None = None):
        super().__init__(message)
        self.cause = cause


class TitleGenerationError(CompletionError):
    """Title summarization failed."""


class NotFoundError(StudychatError):
    """A message or conversation referenced by id does not exist."""


class ConversationBusyError(StudychatError):
    """A completion is already pending for this conversation."""
