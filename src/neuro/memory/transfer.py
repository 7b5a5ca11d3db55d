"""Export and import of a subject's memory."""

from typing import Any

from .models import MemoryKind, Message, Role
from .store import ConversationStore

_MEMORY_KEYS = {
    "facts": MemoryKind.FACT,
    "preferences": MemoryKind.PREFERENCE,
    "goals": MemoryKind.GOAL,
}


def export_memory(store: ConversationStore, subject: str) -> dict[str, Any]:
    """Collect a subject's history, insights and memory items.

    Returns:
        JSON-serializable dict with ``history``, ``insights`` and
        ``memory`` (``facts``, ``preferences``, ``goals``).
    """
    memory = store.list_memory_items(subject)
    return {
        "history": [
            {"role": m.role.value, "content": m.content, "timestamp": m.timestamp}
            for m in store.list_messages(subject)
        ],
        "insights": store.get_settings(subject),
        "memory": {
            "facts": list(memory.facts),
            "preferences": list(memory.preferences),
            "goals": list(memory.goals),
        },
    }


def import_memory(
    store: ConversationStore,
    subject: str,
    data: dict[str, Any],
    max_history: int = 10_000,
) -> dict[str, int]:
    """Restore an export produced by :func:`export_memory`.

    Each section present in ``data`` replaces what is stored; missing
    sections are left untouched. Malformed history entries are skipped.

    Returns:
        Counts of imported ``messages``, ``insights`` characters and
        memory ``items``.
    """
    counts = {"messages": 0, "insights": 0, "items": 0}

    history = data.get("history")
    if isinstance(history, list):
        store.clear_messages(subject)
        for entry in history[-max_history:]:
            try:
                message = Message(
                    role=Role(entry["role"]),
                    content=str(entry["content"]),
                    timestamp=int(entry["timestamp"]),
                )
            except (KeyError, TypeError, ValueError):
                continue
            store.append_message(subject, message)
            counts["messages"] += 1

    insights = data.get("insights")
    if isinstance(insights, str) and insights:
        store.upsert_settings(subject, insights)
        counts["insights"] = len(insights)

    memory = data.get("memory")
    if isinstance(memory, dict):
        store.clear_memory_items(subject)
        for key, kind in _MEMORY_KEYS.items():
            for text in memory.get(key) or []:
                if isinstance(text, str) and text.strip():
                    if store.add_memory_item(subject, kind, text.strip()):
                        counts["items"] += 1

    return counts
