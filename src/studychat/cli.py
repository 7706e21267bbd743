"""CLI interface for studychat."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import shutil
import signal
import sys

import click

from . import __version__
from .analysis import analyze_text
from .config import DATA_DIR, KV_PATH
from .engine import ConversationEngine, Turn
from .errors import ConversationBusyError, NotFoundError
from .models import Message
from .reveal import RevealState
from .scanner import ImageScanner
from .storage import SQLiteKeyValueStore

CHAT_HELP = """Commands
/help              Show this help
/show              Print the conversation so far
/edit N TEXT       Replace user message N and ask again
/regen [N]         New reply for message N (default: the last reply)
/like N            Like message N
/dislike N         Dislike message N
/copy N            Print message N verbatim
/quit              Leave the chat
Ctrl-C while a reply is being typed stops it."""


def _open_engine() -> ConversationEngine:
    kv = SQLiteKeyValueStore(KV_PATH)
    return ConversationEngine.from_store(kv, scanner=ImageScanner())


def _echo_message(position: int, msg: Message) -> None:
    who = click.style("You", fg="cyan", bold=True) if msg.is_user else click.style("Assistant", fg="green", bold=True)
    marks = {True: " 👍", False: " 👎"}.get(msg.liked, "")
    click.echo(f"[{position}] {who}{marks}")
    if msg.image_uri:
        click.echo(click.style(f"    (image: {msg.image_uri})", dim=True))
    click.echo(msg.text)
    click.echo()


@click.group()
@click.version_option(version=__version__, prog_name="studychat")
@click.option("-v", "--verbose", is_flag=True, help="Log engine activity to stderr")
def cli(verbose: bool):
    """studychat: an AI study assistant in your terminal.

    Chat with the assistant, scan a photographed question, and manage
    your saved conversations.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )


class _ChatSession:
    """Terminal front end for one conversation."""

    def __init__(self, engine: ConversationEngine, conversation_id: str | None):
        self.engine = engine
        self.conversation_id = conversation_id
        self._printed_id: str | None = None
        self._printed_len = 0
        engine.add_update_listener(self._on_update)

    def _on_update(self, conversation_id: str, message: Message) -> None:
        if message.id != self._printed_id:
            self._printed_id = message.id
            self._printed_len = 0
        click.echo(message.text[self._printed_len:], nl=False)
        self._printed_len = len(message.text)

    def messages(self) -> list[Message]:
        if self.conversation_id is None:
            return []
        return self.engine.messages(self.conversation_id)

    def message_at(self, position: int) -> Message:
        messages = self.messages()
        if not 1 <= position <= len(messages):
            raise click.ClickException(f"No message {position} (conversation has {len(messages)})")
        return messages[position - 1]

    def stop(self) -> None:
        if self.conversation_id is not None:
            self.engine.stop_generating(self.conversation_id)

    async def submit(self, text: str) -> None:
        if self.conversation_id is None:
            # Known up front so Ctrl-C during the first request has a target.
            self.conversation_id = self.engine.new_conversation_id()
        await self.run_turn(self.engine.send(text, self.conversation_id))

    async def run_turn(self, pending) -> None:
        """Await a send/edit/regenerate and stream its reply; Ctrl-C stops it."""
        loop = asyncio.get_running_loop()
        click.echo(click.style("Assistant", fg="green", bold=True))

        handled = False
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(signal.SIGINT, self.stop)
            handled = True
        try:
            turn: Turn | None = await pending
            if turn is not None:
                await turn.wait()
        finally:
            if handled:
                loop.remove_signal_handler(signal.SIGINT)

        if turn is None:
            click.echo("Nothing to regenerate there.")
            return
        if turn.reveal is None:
            for msg in self.messages():
                if msg.id == turn.assistant_message_id:
                    click.echo(msg.text, nl=False)
        elif turn.reveal.state is RevealState.CANCELLED:
            click.echo(click.style(" [stopped]", dim=True), nl=False)
        click.echo("\n")

    async def handle_command(self, line: str) -> bool:
        """Run a slash command. Returns False when the session should end."""
        name, _, rest = line[1:].partition(" ")
        rest = rest.strip()

        if name in ("quit", "exit"):
            return False
        if name == "help":
            click.echo(CHAT_HELP)
        elif name == "show":
            for i, msg in enumerate(self.messages(), 1):
                _echo_message(i, msg)
        elif name == "edit":
            number, _, text = rest.partition(" ")
            if not number.isdigit() or not text.strip():
                raise click.ClickException("Usage: /edit N TEXT")
            target = self.message_at(int(number))
            if not target.is_user:
                raise click.ClickException(f"Message {number} is not one of yours")
            await self.run_turn(self.engine.edit_and_resend(self.conversation_id, target.id, text))
        elif name == "regen":
            messages = self.messages()
            if rest:
                if not rest.isdigit():
                    raise click.ClickException("Usage: /regen [N]")
                target = self.message_at(int(rest))
            else:
                replies = [m for m in messages if not m.is_user]
                if not replies:
                    raise click.ClickException("No reply to regenerate yet")
                target = replies[-1]
            await self.run_turn(self.engine.regenerate(self.conversation_id, target.id))
        elif name in ("like", "dislike", "copy"):
            if not rest.isdigit():
                raise click.ClickException(f"Usage: /{name} N")
            target = self.message_at(int(rest))
            if name == "copy":
                click.echo(self.engine.copy(self.conversation_id, target.id))
            else:
                self.engine.rate(self.conversation_id, target.id, name == "like")
                click.echo(f"Marked message {rest} as {name}d.")
        else:
            raise click.ClickException(f"Unknown command /{name} (try /help)")
        return True

    async def loop(self) -> None:
        if self.conversation_id is not None:
            for i, msg in enumerate(self.engine.open(self.conversation_id), 1):
                _echo_message(i, msg)

        while True:
            try:
                line = click.prompt(click.style("You", fg="cyan", bold=True), prompt_suffix="> ").strip()
            except click.Abort:
                click.echo()
                return
            if not line:
                continue
            try:
                if line.startswith("/"):
                    if not await self.handle_command(line):
                        return
                else:
                    await self.submit(line)
            except (click.ClickException, ConversationBusyError, NotFoundError) as e:
                click.echo(click.style(f"Error: {e}", fg="red"), err=True)


@cli.command()
@click.option("--conversation", "conversation_id", help="Continue an existing conversation")
def chat(conversation_id: str | None):
    """Chat with the study assistant.

    Replies are typed out as they arrive; press Ctrl-C to stop one early.
    Type /help inside the chat for editing and feedback commands.
    """
    engine = _open_engine()
    if conversation_id is not None and engine.index.get(conversation_id) is None:
        raise click.ClickException(f"Conversation not found: {conversation_id}")

    session = _ChatSession(engine, conversation_id)
    try:
        asyncio.run(session.loop())
    finally:
        engine.close()


@cli.command("list")
@click.option("--keyword", help="Only show conversations whose title contains this")
def list_cmd(keyword: str | None):
    """List saved conversations, newest first."""
    engine = _open_engine()
    repaired = engine.repair_index()
    if repaired:
        click.echo(f"Restored {len(repaired)} conversation(s) missing from the list.", err=True)

    conversations = engine.conversations(keyword)
    if not conversations:
        click.echo("No conversations found.")
        return

    for c in conversations:
        title = c.title or click.style("(untitled)", dim=True)
        click.echo(f"{c.id}  {c.date:>6}  {title}")


@cli.command()
@click.argument("conversation_id")
def show(conversation_id: str):
    """Print a conversation transcript."""
    engine = _open_engine()
    messages = engine.open(conversation_id)
    if not messages:
        raise click.ClickException(f"Conversation not found: {conversation_id}")

    summary = engine.index.get(conversation_id)
    click.echo(click.style(summary.title if summary and summary.title else "Untitled", bold=True))
    click.echo()
    for i, msg in enumerate(messages, 1):
        _echo_message(i, msg)


@cli.command()
@click.argument("conversation_id")
@click.argument("title")
def rename(conversation_id: str, title: str):
    """Rename a conversation."""
    try:
        renamed = _open_engine().rename(conversation_id, title)
    except ValueError as e:
        raise click.ClickException(str(e))
    if not renamed:
        raise click.ClickException(f"Conversation not found: {conversation_id}")
    click.echo(f"Renamed to '{title.strip()}'.")


@cli.command()
@click.argument("conversation_id")
@click.confirmation_option(prompt="Delete this conversation and all its messages?")
def delete(conversation_id: str):
    """Delete a conversation."""
    if not _open_engine().delete(conversation_id):
        raise click.ClickException(f"Conversation not found: {conversation_id}")
    click.echo(f"Deleted {conversation_id}.")


@cli.command()
@click.argument("image_path", type=click.Path(exists=True, dir_okay=False))
def scan(image_path: str):
    """Solve the question in a photo and save it as a new conversation."""
    engine = _open_engine()
    click.echo("Scanning image...")
    turn = asyncio.run(engine.start_from_scan(image_path))

    summary = engine.index.get(turn.conversation_id)
    if summary and summary.title:
        click.echo(click.style(summary.title, bold=True))
    for msg in engine.messages(turn.conversation_id):
        click.echo(msg.text)
    click.echo()
    click.echo(f"Continue with: studychat chat --conversation {turn.conversation_id}")


@cli.command()
@click.argument("source", type=click.File("r"), default="-")
def analyze(source):
    """Score how machine-written a text reads (reads stdin by default)."""
    result = analyze_text(source.read())

    click.echo()
    click.echo(click.style(f"AI-likeness: {result.overall}/100", bold=True))
    click.echo(f"  Perplexity:        {result.perplexity}")
    click.echo(f"  Burstiness:        {result.burstiness}")
    click.echo(f"  Repetition:        {result.repetition}")
    click.echo(f"  Bigram repetition: {result.bigram_repetition}")
    click.echo(f"  Regularity:        {result.regularity}")
    click.echo()


@cli.command()
def serve():
    """Start the MCP server (stdio transport)."""
    from .server import mcp

    mcp.run(transport="stdio")


@cli.command()
def config():
    """Print the configuration snippet for MCP clients."""
    studychat_path = shutil.which("studychat")

    if studychat_path:
        server = {"command": studychat_path, "args": ["serve"]}
    else:
        server = {"command": "uvx", "args": ["studychat", "serve"]}

    click.echo()
    click.echo(click.style("MCP client configuration", bold=True))
    click.echo(json.dumps({"mcpServers": {"studychat": server}}, indent=2))
    click.echo()
    click.echo(f"Data directory: {DATA_DIR}")
    click.echo()


@cli.command()
@click.confirmation_option(prompt="This will delete all conversations. Are you sure?")
def reset():
    """Delete all saved conversations and cached images."""
    if DATA_DIR.exists():
        shutil.rmtree(DATA_DIR)
        click.echo(f"Deleted {DATA_DIR}")
    else:
        click.echo("No data to delete.")
