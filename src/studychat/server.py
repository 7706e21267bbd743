"""FastMCP server exposing the study assistant's conversations as tools."""

from __future__ import annotations

import logging
import sys

from mcp.server.fastmcp import FastMCP

from .analysis import analyze_text as score_text
from .config import KV_PATH
from .engine import ConversationEngine, Turn
from .errors import ConversationBusyError, NotFoundError
from .models import Message
from .reveal import RevealScheduler
from .scanner import ImageScanner
from .storage import MessageStore, SQLiteKeyValueStore

# Logging to stderr only; stdout is the MCP JSON-RPC transport
logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stderr,
)

mcp = FastMCP(
    "studychat",
    instructions=(
        "Chat with the user's study assistant and manage its conversations. "
        "Use send_message to ask a question (omit conversation_id to start a new conversation). "
        "Use edit_message or regenerate_reply to rework an earlier exchange. "
        "Use list_conversations and get_conversation to browse history. "
        "Use analyze_text to score how machine-written a passage reads."
    ),
)

# Singleton engine, reused across tool calls
_engine: ConversationEngine | None = None


def _get_engine() -> ConversationEngine:
    global _engine
    if _engine is None:
        kv = SQLiteKeyValueStore(KV_PATH)
        # Tool calls return whole replies, so reveal without delay.
        scheduler = RevealScheduler(MessageStore(kv), interval=0)
        _engine = ConversationEngine.from_store(kv, scheduler=scheduler, scanner=ImageScanner())
    return _engine


def _format_message(position: int, msg: Message) -> str:
    role = "**User**" if msg.is_user else "**Assistant**"
    marks = []
    if msg.liked is True:
        marks.append("liked")
    elif msg.liked is False:
        marks.append("disliked")
    if msg.image_uri:
        marks.append(f"image: {msg.image_uri}")
    suffix = f" ({', '.join(marks)})" if marks else ""
    return f"{position}. {role} `{msg.id}`{suffix}:\n{msg.text}\n"


async def _reply_text(turn: Turn) -> str:
    await turn.wait()
    engine = _get_engine()
    for msg in engine.messages(turn.conversation_id):
        if msg.id == turn.assistant_message_id:
            return (
                f"{msg.text}\n\n"
                f"(conversation `{turn.conversation_id}`, reply `{msg.id}`)"
            )
    return f"Reply missing from conversation {turn.conversation_id}."


@mcp.tool()
async def send_message(text: str, conversation_id: str | None = None) -> str:
    """Send a message to the study assistant and return its reply.

    Args:
        text: The question or message
        conversation_id: Existing conversation to continue (omit to start a new one)
    """
    try:
        turn = await _get_engine().send(text, conversation_id)
    except (ValueError, ConversationBusyError) as e:
        return str(e)
    return await _reply_text(turn)


@mcp.tool()
async def edit_message(conversation_id: str, message_id: str, text: str) -> str:
    """Replace an earlier user message and regenerate everything after it.

    Args:
        conversation_id: The conversation holding the message
        message_id: The user message to replace (from get_conversation)
        text: The new message text
    """
    try:
        turn = await _get_engine().edit_and_resend(conversation_id, message_id, text)
    except (ValueError, ConversationBusyError) as e:
        return str(e)
    if turn is None:
        return f"User message not found: {message_id}"
    return await _reply_text(turn)


@mcp.tool()
async def regenerate_reply(conversation_id: str, message_id: str) -> str:
    """Generate a fresh reply for a user message or replace an assistant reply.

    Args:
        conversation_id: The conversation holding the message
        message_id: A user message or assistant reply id
    """
    try:
        turn = await _get_engine().regenerate(conversation_id, message_id)
    except ConversationBusyError as e:
        return str(e)
    if turn is None:
        return f"Message not found: {message_id}"
    return await _reply_text(turn)


@mcp.tool()
async def scan_image(image_path: str) -> str:
    """Solve the question shown in an image and start a conversation about it.

    Args:
        image_path: Path to a local image file
    """
    try:
        turn = await _get_engine().start_from_scan(image_path)
    except FileNotFoundError as e:
        return str(e)
    return await _reply_text(turn)


@mcp.tool()
def rate_message(conversation_id: str, message_id: str, liked: bool | None = None) -> str:
    """Record feedback on a message.

    Args:
        conversation_id: The conversation holding the message
        message_id: The message to rate
        liked: true for like, false for dislike, omit to clear
    """
    try:
        _get_engine().rate(conversation_id, message_id, liked)
    except NotFoundError as e:
        return str(e)
    state = {True: "liked", False: "disliked", None: "cleared"}[liked]
    return f"Feedback {state} for {message_id}."


@mcp.tool()
def list_conversations(keyword: str | None = None) -> str:
    """List conversations, newest first.

    Args:
        keyword: Optional case-insensitive filter on titles
    """
    conversations = _get_engine().conversations(keyword)
    if not conversations:
        if keyword:
            return f"No conversations found matching '{keyword}'."
        return "No conversations found."

    lines = []
    if keyword:
        lines.append(f"Conversations matching '{keyword}':\n")
    for i, c in enumerate(conversations, 1):
        lines.append(f"{i}. **{c.title or 'Untitled'}** ({c.date})")
        lines.append(f"   ID: `{c.id}`")
    return "\n".join(lines)


@mcp.tool()
def get_conversation(conversation_id: str) -> str:
    """Retrieve the full transcript of a conversation.

    Args:
        conversation_id: The conversation id (from list_conversations)
    """
    engine = _get_engine()
    messages = engine.open(conversation_id)
    if not messages:
        return f"Conversation not found: {conversation_id}"

    summary = engine.index.get(conversation_id)
    title = summary.title if summary and summary.title else "Untitled"
    lines = [f"# {title}", ""]
    lines.extend(_format_message(i, m) for i, m in enumerate(messages, 1))
    return "\n".join(lines)


@mcp.tool()
def rename_conversation(conversation_id: str, title: str) -> str:
    """Give a conversation a new title.

    Args:
        conversation_id: The conversation to rename
        title: The new title
    """
    try:
        renamed = _get_engine().rename(conversation_id, title)
    except ValueError as e:
        return str(e)
    if not renamed:
        return f"Conversation not found: {conversation_id}"
    return f"Renamed {conversation_id} to '{title.strip()}'."


@mcp.tool()
def delete_conversation(conversation_id: str) -> str:
    """Delete a conversation and its messages.

    Args:
        conversation_id: The conversation to delete
    """
    if not _get_engine().delete(conversation_id):
        return f"Conversation not found: {conversation_id}"
    return f"Deleted conversation {conversation_id}."


@mcp.tool()
def analyze_text(text: str) -> str:
    """Score how machine-written a passage reads (0-100 per metric, higher = more AI-like).

    Args:
        text: The passage to analyze
    """
    result = score_text(text)
    return "\n".join(
        [
            "# AI-likeness analysis",
            "",
            f"- **Overall**: {result.overall}",
            f"- **Perplexity**: {result.perplexity}",
            f"- **Burstiness**: {result.burstiness}",
            f"- **Repetition**: {result.repetition}",
            f"- **Bigram repetition**: {result.bigram_repetition}",
            f"- **Regularity**: {result.regularity}",
        ]
    )
