"""Data models for conversations and messages."""

from __future__ import annotations

import secrets
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["user", "assistant"]


def make_message_id(role: Role) -> str:
    """Short client-side id, prefixed by the author role."""
    prefix = "user" if role == "user" else "ai"
    return f"{prefix}-{secrets.token_hex(4)}"


def display_date(when: datetime | None = None) -> str:
    """Format a creation date the way the conversation list shows it ("Oct 19")."""
    when = when or datetime.now()
    return f"{when:%b} {when.day}"


class Message(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    role: Role
    text: str = ""
    liked: bool | None = None
    original_user_message_id: str | None = Field(default=None, alias="originalUserMessageId")
    is_delivered: bool = Field(default=True, alias="isDelivered")
    image_uri: str | None = Field(default=None, alias="imageUri")

    @classmethod
    def user(cls, text: str) -> Message:
        return cls(id=make_message_id("user"), role="user", text=text)

    @classmethod
    def placeholder(cls, user_message_id: str) -> Message:
        """Empty assistant reply awaiting its completion."""
        return cls(
            id=make_message_id("assistant"),
            role="assistant",
            original_user_message_id=user_message_id,
            is_delivered=False,
        )

    @property
    def is_user(self) -> bool:
        return self.role == "user"


class ConversationSummary(BaseModel):
    id: str
    title: str | None = None
    date: str


class ChatTurn(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class TextAnalysis(BaseModel):
    """AI-likeness metrics, each 0-100 where higher reads as more machine-like."""

    perplexity: int
    burstiness: int
    repetition: int
    bigram_repetition: int
    regularity: int
    overall: int

    def metrics(self) -> list[int]:
        return [
            self.perplexity,
            self.burstiness,
            self.repetition,
            self.bigram_repetition,
            self.regularity,
        ]
