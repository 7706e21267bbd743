"""OpenAI chat-completion gateway: replies and conversation titles."""

from __future__ import annotations

import logging

from openai import AsyncOpenAI, OpenAIError

from .config import CHAT_MODEL, NO_RESPONSE, OPENAI_API_KEY, TITLE_INSTRUCTION
from .errors import CompletionError, TitleGenerationError
from .models import ChatTurn, Message

logger = logging.getLogger(__name__)


def to_history(messages: list[Message]) -> list[ChatTurn]:
    """Map stored messages onto completion roles, oldest first."""
    return [
        ChatTurn(role="user" if m.is_user else "assistant", content=m.text)
        for m in messages
    ]


class CompletionGateway:
    """Submits a conversation history to the completion endpoint and returns the top choice."""

    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        model: str = CHAT_MODEL,
        system_prompt: str | None = None,
    ):
        self._client = client
        self.model = model
        self.system_prompt = system_prompt

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = AsyncOpenAI(api_key=OPENAI_API_KEY)
        return self._client

    async def _create(self, turns: list[ChatTurn]) -> str:
        try:
            resp = await self.client.chat.completions.create(
                model=self.model,
                messages=[t.model_dump() for t in turns],
            )
        except OpenAIError as e:
            raise CompletionError(f"Completion request failed: {e}", cause=e) from e

        if not resp.choices:
            raise CompletionError("Completion returned no choices")

        return resp.choices[0].message.content or ""

    async def complete(self, history: list[ChatTurn]) -> str:
        """Return the assistant reply for `history`.

        Raises CompletionError on transport failure, a non-2xx status, or an empty choice list.
        """
        turns = list(history)
        if self.system_prompt:
            turns.insert(0, ChatTurn(role="system", content=self.system_prompt))

        logger.debug("Requesting completion for %d turns with %s", len(turns), self.model)
        return await self._create(turns) or NO_RESPONSE

    async def summarize_title(self, history: list[ChatTurn], reply: str) -> str:
        """Ask for a short title describing `history` followed by `reply`."""
        turns = [
            ChatTurn(role="system", content=TITLE_INSTRUCTION),
            *history,
            ChatTurn(role="assistant", content=reply),
        ]
        try:
            title = await self._create(turns)
        except CompletionError as e:
            raise TitleGenerationError(f"Title generation failed: {e}", cause=e.cause) from e
        return title.strip()
