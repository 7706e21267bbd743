import json

import pytest

from studychat.errors import StorageReadError
from studychat.models import Message
from studychat.storage import MemoryKeyValueStore, MessageStore, SQLiteKeyValueStore


class TestMessageStore:
    def test_load_missing_conversation_is_empty(self, store):
        assert store.load("nope") == []

    def test_save_then_load_preserves_order_and_fields(self, store):
        user = Message.user("What is 2+2?")
        reply = Message.placeholder(user.id)
        store.save("c1", [user, reply])

        loaded = store.load("c1")
        assert [m.id for m in loaded] == [user.id, reply.id]
        assert loaded[1].original_user_message_id == user.id
        assert loaded[1].is_delivered is False

    def test_persisted_json_uses_camel_case_keys(self, kv, store):
        user = Message.user("hi")
        store.save("c1", [Message.placeholder(user.id)])

        raw = json.loads(kv.get("conv_c1"))
        assert set(raw[0]) >= {"originalUserMessageId", "isDelivered", "imageUri"}

    def test_save_overwrites_previous_value(self, store):
        store.save("c1", [Message.user("one"), Message.user("two")])
        store.save("c1", [Message.user("three")])
        assert [m.text for m in store.load("c1")] == ["three"]

    def test_append(self, store):
        store.append("c1", Message.user("one"))
        store.append("c1", Message.user("two"))
        assert [m.text for m in store.load("c1")] == ["one", "two"]

    def test_update_replaces_single_message(self, store):
        a, b = Message.user("a"), Message.user("b")
        store.save("c1", [a, b])

        updated = store.update("c1", b.id, text="b2", liked=True)

        assert updated.text == "b2"
        assert [(m.text, m.liked) for m in store.load("c1")] == [("a", None), ("b2", True)]

    def test_update_missing_message_returns_none(self, store):
        store.save("c1", [Message.user("a")])
        assert store.update("c1", "ghost", text="x") is None

    @pytest.mark.parametrize("raw", ["{not json", '{"id": "x"}', '[{"role": "robot"}]'])
    def test_malformed_value_raises_storage_read_error(self, kv, store, raw):
        kv.set("conv_bad", raw)
        with pytest.raises(StorageReadError) as exc:
            store.load("bad")
        assert exc.value.key == "conv_bad"

    def test_accepts_values_written_with_field_names(self, kv, store):
        kv.set("conv_c1", json.dumps([{"id": "ai-1", "role": "assistant", "text": "x", "is_delivered": False}]))
        assert store.load("c1")[0].is_delivered is False

    def test_conversation_ids_excludes_index_key(self, kv, store):
        store.save("1", [Message.user("a")])
        store.save("2", [Message.user("b")])
        kv.set("conv_list", "[]")
        assert store.conversation_ids() == ["1", "2"]

    def test_delete(self, store):
        store.save("c1", [Message.user("a")])
        store.delete("c1")
        assert store.load("c1") == []


class TestSQLiteKeyValueStore:
    def test_roundtrip_and_overwrite(self, tmp_path):
        kv = SQLiteKeyValueStore(tmp_path / "nested" / "kv.db")
        kv.set("a", "1")
        kv.set("a", "2")
        assert kv.get("a") == "2"
        assert kv.get("missing") is None
        kv.close()

    def test_persists_across_connections(self, tmp_path):
        path = tmp_path / "kv.db"
        kv = SQLiteKeyValueStore(path)
        MessageStore(kv).save("c1", [Message.user("kept")])
        kv.close()

        reopened = SQLiteKeyValueStore(path)
        assert [m.text for m in MessageStore(reopened).load("c1")] == ["kept"]
        reopened.close()

    def test_keys_by_prefix_and_delete(self, tmp_path):
        kv = SQLiteKeyValueStore(tmp_path / "kv.db")
        for key in ("conv_1", "conv_2", "other"):
            kv.set(key, "x")
        kv.delete("conv_2")
        assert kv.keys("conv_") == ["conv_1"]
        kv.close()


def test_memory_store_keys_are_sorted():
    kv = MemoryKeyValueStore({"conv_b": "1", "conv_a": "2", "x": "3"})
    assert kv.keys("conv_") == ["conv_a", "conv_b"]
