"""Conversation history, long-term memory and context compression."""

from .compression import CompressionEngine, CompressionResult, CompressionState, compress_count
from .extractor import parse_memory_lines, parse_summary_response, split_reply_memory
from .models import Citation, GroupedMemory, MemoryItem, MemoryKind, Message, Role, SummaryRecord
from .prompt import build_system_prompt
from .store import ConversationStore
from .tokens import estimate_history_tokens, estimate_tokens
from .transfer import export_memory, import_memory

__all__ = [
    "Citation",
    "CompressionEngine",
    "CompressionResult",
    "CompressionState",
    "ConversationStore",
    "GroupedMemory",
    "MemoryItem",
    "MemoryKind",
    "Message",
    "Role",
    "SummaryRecord",
    "build_system_prompt",
    "compress_count",
    "estimate_history_tokens",
    "estimate_tokens",
    "export_memory",
    "import_memory",
    "parse_memory_lines",
    "parse_summary_response",
    "split_reply_memory",
]
