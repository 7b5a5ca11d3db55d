"""Decoding of structured memory out of free-form model output.

The model reports durable information as tagged lines::

    FACT: Живёт в Москве
    PREF: Любит короткие ответы
    GOAL: Выучить испанский

Decoding is best-effort: lines that do not match the ``TAG: content``
grammar, or carry an unknown tag, are dropped rather than reported.
"""

import re
from dataclasses import dataclass, field

from .models import MemoryItem, MemoryKind

SUMMARY_HEADER = "=== РЕЗЮМЕ ==="
MEMORY_HEADER = "=== ДОЛГОСРОЧНАЯ ПАМЯТЬ ==="

_LINE_RE = re.compile(r"^(FACT|PREF|GOAL)\s*:\s*(.*)$", re.IGNORECASE)
_REPLY_BLOCK_RE = re.compile(r"<memory>(.*?)</memory>", re.IGNORECASE | re.DOTALL)


@dataclass
class SummaryResponse:
    """A parsed summarization response."""

    summary: str = ""
    items: list[MemoryItem] = field(default_factory=list)


def parse_memory_line(line: str, min_length: int = 1) -> MemoryItem | None:
    """Decode a single ``TAG: content`` line.

    Args:
        line: Raw line, surrounding whitespace allowed.
        min_length: Minimum content length; shorter items are dropped.

    Returns:
        The decoded item, or None if the line does not match.
    """
    match = _LINE_RE.match(line.strip())
    if not match:
        return None

    kind = MemoryKind.from_tag(match.group(1))
    text = match.group(2).strip()
    if kind is None or len(text) < min_length:
        return None
    return MemoryItem(kind=kind, text=text)


def parse_memory_lines(block: str, min_length: int = 1) -> list[MemoryItem]:
    """Decode every tagged line of a block, in order."""
    items = []
    for line in block.splitlines():
        item = parse_memory_line(line, min_length=min_length)
        if item is not None:
            items.append(item)
    return items


def parse_summary_response(text: str, min_length: int = 4) -> SummaryResponse:
    """Split a summarization response into its summary and memory sections.

    A missing summary section yields an empty summary and a missing memory
    section yields no items; neither is an error.
    """
    summary = ""
    summary_start = text.find(SUMMARY_HEADER)
    memory_start = text.find(MEMORY_HEADER)

    if summary_start != -1:
        body_start = summary_start + len(SUMMARY_HEADER)
        if memory_start > summary_start:
            summary = text[body_start:memory_start]
        else:
            summary = text[body_start:]
        summary = summary.strip()

    items: list[MemoryItem] = []
    if memory_start != -1:
        items = parse_memory_lines(
            text[memory_start + len(MEMORY_HEADER):], min_length=min_length
        )

    return SummaryResponse(summary=summary, items=items)


def split_reply_memory(text: str) -> tuple[str, list[MemoryItem]]:
    """Remove ``<memory>`` blocks from a reply and decode their contents.

    Returns:
        Tuple of (reply without memory blocks, decoded items).
    """
    blocks = _REPLY_BLOCK_RE.findall(text)
    if not blocks:
        return text, []

    items: list[MemoryItem] = []
    for block in blocks:
        items.extend(parse_memory_lines(block))

    clean = _REPLY_BLOCK_RE.sub("", text).strip()
    return clean, items
