"""Tests for ConversationStore."""

import sqlite3
from pathlib import Path

import pytest

from neuro.errors import StorageError
from neuro.memory import Citation, ConversationStore, MemoryKind, Message, Role, SummaryRecord


class TestConversationStoreInit:
    """Tests for ConversationStore initialization."""

    def test_creates_db_directory(self, tmp_path: Path):
        """Store creates parent directories if they don't exist."""
        nested_path = tmp_path / "nested" / "dir" / "neuro.db"
        store = ConversationStore(nested_path)
        store.init_db()
        assert nested_path.exists()
        store.close()

    @pytest.mark.parametrize(
        "table",
        ["chat_history", "user_settings", "long_term_memory", "chat_summaries", "last_sources"],
    )
    def test_creates_tables(self, store: ConversationStore, table: str):
        """init_db creates every table."""
        conn = store._get_connection()
        cursor = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
        )
        assert cursor.fetchone() is not None

    def test_init_db_idempotent(self, store: ConversationStore):
        """init_db can be called multiple times."""
        store.init_db()
        store.init_db()  # Should not raise


class TestMessages:
    """Tests for the message log."""

    def test_append_returns_with_id(self, store: ConversationStore):
        saved = store.append_message("1", Message(Role.USER, "Привет", 100))
        assert saved.id is not None
        assert saved.content == "Привет"
        assert saved.role is Role.USER

    def test_list_ascending_by_timestamp(self, store: ConversationStore):
        store.append_message("1", Message(Role.MODEL, "second", 200))
        store.append_message("1", Message(Role.USER, "first", 100))

        messages = store.list_messages("1")
        assert [m.content for m in messages] == ["first", "second"]

    def test_equal_timestamps_keep_insertion_order(self, store: ConversationStore):
        store.append_message("1", Message(Role.USER, "a", 100))
        store.append_message("1", Message(Role.MODEL, "b", 100))

        assert [m.content for m in store.list_messages("1")] == ["a", "b"]

    def test_list_is_isolated_per_subject(self, store: ConversationStore):
        store.append_message("1", Message(Role.USER, "mine", 100))
        store.append_message("2", Message(Role.USER, "theirs", 100))

        assert [m.content for m in store.list_messages("1")] == ["mine"]

    def test_integer_and_string_subjects_match(self, store: ConversationStore):
        store.append_message(42, Message(Role.USER, "hi", 100))
        assert len(store.list_messages("42")) == 1

    def test_cap_drops_oldest(self, tmp_path: Path, seed):
        """Messages beyond the cap are silently left out, oldest first."""
        store = ConversationStore(tmp_path / "capped.db", max_history_messages=3)
        store.init_db()
        seed(store, "1", ["m0", "m1", "m2", "m3", "m4"])

        messages = store.list_messages("1")
        assert [m.content for m in messages] == ["m2", "m3", "m4"]
        assert store.count_messages("1") == 5
        store.close()

    def test_explicit_limit(self, store: ConversationStore, seed):
        seed(store, "1", ["a", "b", "c"])
        assert [m.content for m in store.list_messages("1", limit=2)] == ["b", "c"]
        assert store.list_messages("1", limit=0) == []

    def test_delete_before_cutoff(self, store: ConversationStore, seed):
        seed(store, "1", ["a", "b", "c"], start=100)

        deleted = store.delete_messages_before("1", 102)

        assert deleted == 2
        assert [m.content for m in store.list_messages("1")] == ["c"]

    def test_delete_through_keeps_later_message_with_same_timestamp(
        self, store: ConversationStore
    ):
        first = store.append_message("1", Message(Role.USER, "a", 100))
        store.append_message("1", Message(Role.MODEL, "b", 100))

        deleted = store.delete_messages_through("1", first)

        assert deleted == 1
        assert [m.content for m in store.list_messages("1")] == ["b"]

    def test_delete_through_is_repeatable(self, store: ConversationStore, seed):
        saved = seed(store, "1", ["a", "b", "c"])

        store.delete_messages_through("1", saved[1])
        assert store.delete_messages_through("1", saved[1]) == 0
        assert [m.content for m in store.list_messages("1")] == ["c"]

    def test_delete_through_requires_id(self, store: ConversationStore):
        with pytest.raises(ValueError):
            store.delete_messages_through("1", Message(Role.USER, "x", 100))

    def test_clear_messages(self, store: ConversationStore, seed):
        seed(store, "1", ["a", "b"])
        seed(store, "2", ["c"])

        assert store.clear_messages("1") == 2
        assert store.list_messages("1") == []
        assert store.count_messages("2") == 1


class TestSettings:
    """Tests for free-text insights."""

    def test_missing_settings_empty(self, store: ConversationStore):
        assert store.get_settings("1") == ""

    def test_upsert_replaces(self, store: ConversationStore):
        store.upsert_settings("1", "Я программист")
        store.upsert_settings("1", "Я дизайнер")
        assert store.get_settings("1") == "Я дизайнер"


class TestMemoryItems:
    """Tests for long-term memory."""

    def test_add_and_group(self, store: ConversationStore):
        store.add_memory_item("1", MemoryKind.FACT, "Живёт в Москве")
        store.add_memory_item("1", MemoryKind.PREFERENCE, "Короткие ответы")
        store.add_memory_item("1", MemoryKind.GOAL, "Выучить испанский")
        store.add_memory_item("1", MemoryKind.FACT, "Работает врачом")

        memory = store.list_memory_items("1")
        assert memory.facts == ["Живёт в Москве", "Работает врачом"]
        assert memory.preferences == ["Короткие ответы"]
        assert memory.goals == ["Выучить испанский"]
        assert len(memory) == 4

    def test_duplicate_not_inserted(self, store: ConversationStore):
        assert store.add_memory_item("1", MemoryKind.FACT, "Живёт в Москве") is True
        assert store.add_memory_item("1", MemoryKind.FACT, "Живёт в Москве") is False
        assert store.list_memory_items("1").facts == ["Живёт в Москве"]

    def test_same_text_different_kind_allowed(self, store: ConversationStore):
        store.add_memory_item("1", MemoryKind.FACT, "Испанский")
        assert store.add_memory_item("1", MemoryKind.GOAL, "Испанский") is True

    def test_clear_memory_items(self, store: ConversationStore):
        store.add_memory_item("1", MemoryKind.FACT, "Живёт в Москве")
        store.clear_memory_items("1")
        assert store.list_memory_items("1").is_empty()


class TestSummaries:
    """Tests for the summary log."""

    def test_append_and_list(self, store: ConversationStore):
        store.append_summary_record(SummaryRecord("1", "первое", 14))
        store.append_summary_record(SummaryRecord("1", "второе", 7))

        summaries = store.list_summaries("1")
        assert [s.summary for s in summaries] == ["первое", "второе"]
        assert summaries[0].messages_compressed == 14
        assert summaries[0].created_at is not None

    def test_clear_summaries(self, store: ConversationStore):
        store.append_summary_record(SummaryRecord("1", "s", 1))
        assert store.clear_summaries("1") == 1
        assert store.list_summaries("1") == []


class TestLastSources:
    """Tests for citations of the latest reply."""

    def test_missing_sources_empty(self, store: ConversationStore):
        assert store.get_last_sources("1") == []

    def test_save_replaces(self, store: ConversationStore):
        store.save_last_sources("1", [Citation("A", "https://a.example")])
        store.save_last_sources("1", [Citation("B", "https://b.example")])
        assert store.get_last_sources("1") == [Citation("B", "https://b.example")]


class TestStorageErrors:
    """Database failures surface as StorageError."""

    def test_missing_tables_raise_storage_error(self, tmp_path: Path):
        store = ConversationStore(tmp_path / "empty.db")  # no init_db

        with pytest.raises(StorageError) as exc_info:
            store.list_messages("1")

        assert exc_info.value.operation == "list_messages"
        assert isinstance(exc_info.value.__cause__, sqlite3.Error)
        store.close()
