import asyncio

import pytest
from click.testing import CliRunner

from studychat import cli as cli_module
from studychat.cli import _ChatSession, cli
from studychat.models import ConversationSummary, Message

from .conftest import drain, make_completion


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def use_engine(monkeypatch, make_engine):
    """Point the CLI at an in-memory engine answering with `responses`."""

    def _use(*responses):
        engine, client = make_engine(*responses)
        monkeypatch.setattr(cli_module, "_open_engine", lambda: engine)
        return engine, client

    return _use


@pytest.fixture
def seeded(use_engine, store):
    engine, client = use_engine()
    user = Message.user("What is osmosis?")
    store.save("c1", [user, Message(id="ai-1", role="assistant", text="Water moving across a membrane.")])
    engine.index.prepend(ConversationSummary(id="c1", title="Osmosis Basics", date="Oct 19"))
    return engine


class TestListAndShow:
    def test_list(self, runner, seeded):
        result = runner.invoke(cli, ["list"])
        assert result.exit_code == 0
        assert "c1" in result.output
        assert "Osmosis Basics" in result.output

    def test_list_filters_by_keyword(self, runner, seeded):
        result = runner.invoke(cli, ["list", "--keyword", "algebra"])
        assert result.exit_code == 0
        assert "No conversations found." in result.output

    def test_list_restores_orphaned_conversation(self, runner, seeded, store):
        store.save("1760000000000", [Message.user("lost")])
        result = runner.invoke(cli, ["list"])
        assert "1760000000000" in result.output
        assert seeded.index.get("1760000000000") is not None

    def test_show(self, runner, seeded):
        result = runner.invoke(cli, ["show", "c1"])
        assert result.exit_code == 0
        assert "Osmosis Basics" in result.output
        assert "Water moving across a membrane." in result.output

    def test_show_unknown(self, runner, seeded):
        result = runner.invoke(cli, ["show", "nope"])
        assert result.exit_code != 0
        assert "Conversation not found" in result.output


class TestManage:
    def test_rename(self, runner, seeded):
        result = runner.invoke(cli, ["rename", "c1", "  Membranes  "])
        assert result.exit_code == 0
        assert seeded.index.get("c1").title == "Membranes"

    def test_rename_blank(self, runner, seeded):
        result = runner.invoke(cli, ["rename", "c1", "  "])
        assert result.exit_code != 0

    def test_delete(self, runner, seeded):
        result = runner.invoke(cli, ["delete", "c1", "--yes"])
        assert result.exit_code == 0
        assert seeded.conversations() == []

    def test_delete_unknown(self, runner, seeded):
        result = runner.invoke(cli, ["delete", "nope", "--yes"])
        assert result.exit_code != 0


class TestChat:
    def test_new_conversation(self, runner, use_engine):
        engine, _ = use_engine("Hi there!", "Greeting")

        result = runner.invoke(cli, ["chat"], input="Hello\n/quit\n")

        assert result.exit_code == 0, result.output
        assert "Hi there!" in result.output
        [summary] = engine.conversations()
        assert summary.title == "Greeting"
        assert [m.text for m in engine.messages(summary.id)] == ["Hello", "Hi there!"]

    def test_continue_and_like(self, runner, seeded):
        result = runner.invoke(cli, ["chat", "--conversation", "c1"], input="/like 2\n/quit\n")

        assert result.exit_code == 0, result.output
        assert "Water moving across a membrane." in result.output
        assert seeded.messages("c1")[1].liked is True

    def test_edit_command(self, runner, use_engine, store):
        engine, _ = use_engine("Pressure over area.", "Pressure")
        store.save("c1", [Message.user("What is force?"), Message(id="ai-1", role="assistant", text="Mass times acceleration.")])
        engine.index.prepend(ConversationSummary(id="c1", title="Force", date="Oct 19"))

        result = runner.invoke(cli, ["chat", "--conversation", "c1"], input="/edit 1 What is pressure?\n/quit\n")

        assert result.exit_code == 0, result.output
        assert [m.text for m in engine.messages("c1")] == ["What is pressure?", "Pressure over area."]
        assert engine.index.get("c1").title == "Pressure"

    def test_bad_command_keeps_session_open(self, runner, seeded):
        result = runner.invoke(cli, ["chat", "--conversation", "c1"], input="/edit 2 nope\n/bogus\n/quit\n")

        assert result.exit_code == 0
        assert "is not one of yours" in result.output
        assert "Unknown command /bogus" in result.output

    def test_unknown_conversation(self, runner, seeded):
        result = runner.invoke(cli, ["chat", "--conversation", "nope"])
        assert result.exit_code != 0


def test_analyze_reads_stdin(runner):
    result = runner.invoke(cli, ["analyze"], input="the the the.")
    assert result.exit_code == 0
    assert "AI-likeness: 63/100" in result.output


def test_version(runner):
    result = runner.invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert "studychat" in result.output


class TestChatSession:
    async def test_stop_while_waiting_for_first_reply(self, make_engine):
        engine, client = make_engine()
        release = asyncio.Event()

        async def slow_create(**kwargs):
            await release.wait()
            return make_completion("Too late")

        client.chat.completions.create.side_effect = slow_create
        session = _ChatSession(engine, None)

        task = asyncio.create_task(session.submit("Hello"))
        await drain()
        assert session.conversation_id is not None

        session.stop()
        release.set()
        await task

        user, reply = engine.messages(session.conversation_id)
        assert user.text == "Hello"
        assert (reply.text, reply.is_delivered) == ("", True)
        assert not engine.is_generating(session.conversation_id)

    async def test_submit_keeps_conversation(self, make_engine):
        engine, _ = make_engine("One", "Title", "Two")
        session = _ChatSession(engine, None)

        await session.submit("first")
        cid = session.conversation_id
        await session.submit("second")

        assert session.conversation_id == cid
        assert [m.text for m in engine.messages(cid)] == ["first", "One", "second", "Two"]
