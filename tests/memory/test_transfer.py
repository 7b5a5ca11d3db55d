"""Tests for memory export and import."""

import json

from neuro.memory import ConversationStore, MemoryKind, export_memory, import_memory


def fill(store: ConversationStore, seed) -> None:
    seed(store, "1", ["Привет", "Здравствуй", "Как дела?"])
    store.upsert_settings("1", "Я врач из Казани")
    store.add_memory_item("1", MemoryKind.FACT, "Живёт в Казани")
    store.add_memory_item("1", MemoryKind.GOAL, "Марафон")


class TestExport:
    def test_shape(self, store: ConversationStore, seed):
        fill(store, seed)

        data = export_memory(store, "1")

        assert [m["content"] for m in data["history"]] == ["Привет", "Здравствуй", "Как дела?"]
        assert data["history"][0]["role"] == "user"
        assert data["insights"] == "Я врач из Казани"
        assert data["memory"] == {
            "facts": ["Живёт в Казани"],
            "preferences": [],
            "goals": ["Марафон"],
        }

    def test_json_serializable(self, store: ConversationStore, seed):
        fill(store, seed)
        json.dumps(export_memory(store, "1"), ensure_ascii=False)

    def test_empty_subject(self, store: ConversationStore):
        data = export_memory(store, "nobody")
        assert data["history"] == []
        assert data["insights"] == ""


class TestImport:
    def test_restores_into_other_subject(self, store: ConversationStore, seed):
        fill(store, seed)
        data = export_memory(store, "1")

        counts = import_memory(store, "2", data)

        assert counts["messages"] == 3
        assert counts["items"] == 2
        assert export_memory(store, "2") == data

    def test_replaces_existing_sections(self, store: ConversationStore, seed):
        fill(store, seed)

        import_memory(store, "1", {"history": [], "memory": {"facts": ["Новый факт"]}})

        assert store.count_messages("1") == 0
        assert store.list_memory_items("1").facts == ["Новый факт"]
        assert store.list_memory_items("1").goals == []
        assert store.get_settings("1") == "Я врач из Казани"

    def test_skips_malformed_entries(self, store: ConversationStore):
        data = {
            "history": [
                {"role": "user", "content": "ok", "timestamp": 1},
                {"role": "robot", "content": "bad role", "timestamp": 2},
                {"content": "no role"},
                {"role": "model", "content": "ok too", "timestamp": "3"},
            ],
            "memory": {"facts": ["", "  ", 42, "Врач"]},
        }

        counts = import_memory(store, "1", data)

        assert counts["messages"] == 2
        assert counts["items"] == 1

    def test_history_capped(self, store: ConversationStore):
        history = [{"role": "user", "content": str(i), "timestamp": i} for i in range(10)]

        import_memory(store, "1", {"history": history}, max_history=4)

        assert [m.content for m in store.list_messages("1")] == ["6", "7", "8", "9"]
