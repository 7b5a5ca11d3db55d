"""Tests for structured memory decoding."""

from neuro.memory import MemoryKind, parse_memory_lines, parse_summary_response, split_reply_memory
from neuro.memory.extractor import MEMORY_HEADER, SUMMARY_HEADER, parse_memory_line
from neuro.memory.models import MemoryItem


class TestParseMemoryLine:
    """Tests for single-line decoding."""

    def test_fact(self):
        item = parse_memory_line("FACT: Живёт в Москве")
        assert item == MemoryItem(MemoryKind.FACT, "Живёт в Москве")

    def test_pref_and_goal(self):
        assert parse_memory_line("PREF: Короткие ответы").kind is MemoryKind.PREFERENCE
        assert parse_memory_line("GOAL: Марафон").kind is MemoryKind.GOAL

    def test_tag_case_insensitive(self):
        assert parse_memory_line("fact: Врач").kind is MemoryKind.FACT

    def test_whitespace_around_colon(self):
        item = parse_memory_line("  GOAL :   Выучить испанский  ")
        assert item.text == "Выучить испанский"

    def test_unknown_tag_dropped(self):
        assert parse_memory_line("NOTE: something") is None

    def test_missing_colon_dropped(self):
        assert parse_memory_line("FACT Живёт в Москве") is None

    def test_prefix_must_start_line(self):
        assert parse_memory_line("- FACT: Живёт в Москве") is None

    def test_min_length(self):
        assert parse_memory_line("FACT: abc", min_length=4) is None
        assert parse_memory_line("FACT: abcd", min_length=4) is not None

    def test_empty_content_dropped(self):
        assert parse_memory_line("FACT:") is None


class TestParseMemoryLines:
    def test_keeps_order_and_skips_noise(self):
        block = "FACT: Врач\nкакой-то текст\nPREF: Чай\n\nGOAL: Отпуск"
        items = parse_memory_lines(block)
        assert [i.kind for i in items] == [MemoryKind.FACT, MemoryKind.PREFERENCE, MemoryKind.GOAL]


class TestParseSummaryResponse:
    """Tests for splitting summarizer output."""

    def test_both_sections(self):
        text = (
            f"{SUMMARY_HEADER}\nОбсуждали переезд.\n\n"
            f"{MEMORY_HEADER}\nFACT: Живёт в Москве\nPREF: Любит чай\nGOAL: Переехать в Берлин"
        )
        parsed = parse_summary_response(text)

        assert parsed.summary == "Обсуждали переезд."
        assert len(parsed.items) == 3
        assert parsed.items[2] == MemoryItem(MemoryKind.GOAL, "Переехать в Берлин")

    def test_short_items_dropped(self):
        text = f"{SUMMARY_HEADER}\nx\n{MEMORY_HEADER}\nFACT: abc\nFACT: Врач по профессии"
        parsed = parse_summary_response(text)
        assert [i.text for i in parsed.items] == ["Врач по профессии"]

    def test_missing_summary_section(self):
        parsed = parse_summary_response(f"{MEMORY_HEADER}\nFACT: Живёт в Москве")
        assert parsed.summary == ""
        assert len(parsed.items) == 1

    def test_missing_memory_section(self):
        parsed = parse_summary_response(f"{SUMMARY_HEADER}\nТолько резюме")
        assert parsed.summary == "Только резюме"
        assert parsed.items == []

    def test_unstructured_text(self):
        parsed = parse_summary_response("Модель ответила как попало")
        assert parsed.summary == ""
        assert parsed.items == []


class TestSplitReplyMemory:
    """Tests for memory blocks embedded in replies."""

    def test_no_block(self):
        assert split_reply_memory("Просто ответ") == ("Просто ответ", [])

    def test_block_removed_and_decoded(self):
        reply = "Отличная идея!\n\n<memory>\nFACT: Бегает по утрам\nGOAL: Марафон\n</memory>"
        clean, items = split_reply_memory(reply)

        assert clean == "Отличная идея!"
        assert [i.text for i in items] == ["Бегает по утрам", "Марафон"]

    def test_block_tag_case_insensitive(self):
        clean, items = split_reply_memory("Ок <MEMORY>PREF: Кофе</MEMORY>")
        assert clean == "Ок"
        assert items[0].kind is MemoryKind.PREFERENCE
