import pytest

from studychat import server
from studychat.models import ConversationSummary, Message


@pytest.fixture
def engine(monkeypatch, make_engine):
    def _use(*responses):
        engine, client = make_engine(*responses)
        monkeypatch.setattr(server, "_engine", engine)
        return engine

    return _use


async def test_send_message_returns_full_reply(engine):
    eng = engine("Cells divide by mitosis.", "Cell Division")

    text = await server.send_message("How do cells divide?")

    assert text.startswith("Cells divide by mitosis.")
    [summary] = eng.conversations()
    assert f"conversation `{summary.id}`" in text


async def test_send_blank_message(engine):
    engine()
    assert await server.send_message("  ") == "Message text must not be blank"


async def test_edit_unknown_message(engine):
    engine()
    assert await server.edit_message("c1", "user-x", "hi") == "User message not found: user-x"


async def test_regenerate_reply(engine, store):
    eng = engine("Better answer", "Title")
    user = Message.user("Explain gravity")
    store.save("c1", [user, Message(id="ai-1", role="assistant", text="Old", original_user_message_id=user.id)])

    text = await server.regenerate_reply("c1", "ai-1")

    assert text.startswith("Better answer")
    assert [m.text for m in eng.messages("c1")] == ["Explain gravity", "Better answer"]


def test_conversation_tools(engine, store):
    eng = engine()
    store.save("c1", [Message.user("Q"), Message(id="ai-1", role="assistant", text="A")])
    eng.index.prepend(ConversationSummary(id="c1", title="Quiz", date="Oct 19"))

    assert "**Quiz** (Oct 19)" in server.list_conversations()
    assert server.list_conversations("zzz") == "No conversations found matching 'zzz'."

    assert server.rate_message("c1", "ai-1", True) == "Feedback liked for ai-1."
    transcript = server.get_conversation("c1")
    assert transcript.startswith("# Quiz")
    assert "`ai-1` (liked)" in transcript

    assert server.rename_conversation("c1", "Pop quiz") == "Renamed c1 to 'Pop quiz'."
    assert server.delete_conversation("c1") == "Deleted conversation c1."
    assert server.get_conversation("c1") == "Conversation not found: c1"


def test_analyze_text_tool():
    report = server.analyze_text("the the the.")
    assert "- **Overall**: 63" in report
