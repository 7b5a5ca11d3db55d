"""Threshold-triggered compression of old conversation history.

When a subject's log grows past the token threshold, the oldest 70% of
its messages are summarized by the model, durable facts are pulled out of
that summary into long-term memory, and the summarized range is replaced
by a single synthetic message at the head of the log.

Commit order matters. The summary record and the memory items are written
before any message is deleted, so a crash part-way leaves duplicates
(which the stores tolerate) instead of losing history.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Protocol

from ..logging import JSONLLogger, get_logger
from .extractor import MEMORY_HEADER, SUMMARY_HEADER, SummaryResponse, parse_summary_response
from .models import Message, Role, SummaryRecord
from .tokens import estimate_history_tokens

if TYPE_CHECKING:
    from ..llm.client import GenerationOptions, GenerationResult
    from .store import ConversationStore

logger = logging.getLogger(__name__)

FALLBACK_MESSAGES = 5
FALLBACK_SNIPPET_CHARS = 200

SUMMARY_MARKER = "[📚 Сжатый контекст предыдущих {count} сообщений]"

SUMMARY_PROMPT = f"""Ты — система анализа и сжатия контекста. Твоя задача:
1. Создать краткое резюме разговора
2. Извлечь ключевую информацию о пользователе для долгосрочной памяти

=== РАЗГОВОР ДЛЯ АНАЛИЗА ===
{{conversation}}
=== КОНЕЦ РАЗГОВОРА ===

Ответь СТРОГО в следующем формате:

{SUMMARY_HEADER}
[Краткое резюме разговора: ключевые темы, решения, договорённости. Максимум 1500 слов]

{MEMORY_HEADER}
[Извлеки ТОЛЬКО новую важную информацию о пользователе. Каждый пункт с новой строки]
FACT: [биографический факт: имя, возраст, город, работа, семья, образование]
PREF: [предпочтение: как любит общаться, интересы, что нравится/не нравится]
GOAL: [цель: над чем работает, к чему стремится, планы]

Правила:
- Добавляй только конкретные, проверяемые факты
- Не добавляй очевидные или временные вещи
- Если нет фактов какого-то типа — не добавляй пустые строки
- Пиши кратко: "Живёт в Москве", а не "Пользователь упомянул, что он живёт в Москве\""""


class TextGenerator(Protocol):
    """Anything that can turn a conversation into model output."""

    async def generate(
        self,
        messages: list[Message],
        system_prompt: str | None = None,
        options: GenerationOptions | None = None,
    ) -> GenerationResult:
        ...


class CompressionState(Enum):
    """Where a subject is in the compression cycle."""

    IDLE = "idle"
    CHECKING = "checking"
    COMPRESSING = "compressing"
    COMMITTING = "committing"


@dataclass
class CompressionResult:
    """Outcome of one compression check."""

    compressed: bool
    tokens_before: int = 0
    tokens_after: int = 0
    messages_compressed: int = 0
    facts_extracted: int = 0
    fallback: bool = False

    @property
    def tokens_freed(self) -> int:
        """Estimated tokens removed from the active context."""
        return max(0, self.tokens_before - self.tokens_after) if self.compressed else 0


def compress_count(message_count: int) -> int:
    """Number of oldest messages to compress: floor(0.7 * count)."""
    return message_count * 7 // 10


def render_transcript(messages: list[Message]) -> str:
    """Render messages as a readable transcript for the summarizer."""
    lines = []
    for msg in messages:
        speaker = "Пользователь" if msg.role is Role.USER else "Нейро"
        lines.append(f"{speaker}: {msg.content}")
    return "\n\n".join(lines)


def fallback_summary(messages: list[Message]) -> str:
    """Mechanical summary used when the summarizer is unavailable."""
    snippets = []
    for msg in messages[:FALLBACK_MESSAGES]:
        prefix = "U" if msg.role is Role.USER else "N"
        snippets.append(f"{prefix}: {msg.content[:FALLBACK_SNIPPET_CHARS]}")
    header = f"[Сжатый контекст - {len(messages)} сообщений]"
    return header + "\n" + "\n".join(snippets)


class CompressionEngine:
    """Keeps each subject's history under the token threshold."""

    def __init__(
        self,
        store: ConversationStore,
        generator: TextGenerator,
        compress_threshold: int = 800_000,
        event_log: JSONLLogger | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            store: Conversation storage for the subject's log and memory.
            generator: Model used to summarize old messages.
            compress_threshold: Estimated history tokens that trigger
                compression.
            event_log: Structured event log.
        """
        self.store = store
        self.generator = generator
        self.compress_threshold = compress_threshold
        self._events = event_log or get_logger()
        self._states: dict[str, CompressionState] = {}

    def state_of(self, subject: str) -> CompressionState:
        """Current compression state of a subject."""
        return self._states.get(str(subject), CompressionState.IDLE)

    async def maybe_compress(self, subject: str) -> CompressionResult:
        """Compress the subject's history if it exceeds the threshold.

        Never fails because of the summarizer: when it is unavailable, a
        mechanical summary is used instead. Storage errors propagate.
        """
        key = str(subject)
        try:
            self._states[key] = CompressionState.CHECKING
            history = self.store.list_messages(subject)
            tokens_before = estimate_history_tokens(m.content for m in history)

            if tokens_before < self.compress_threshold:
                return CompressionResult(compressed=False, tokens_before=tokens_before)

            count = compress_count(len(history))
            if count == 0:
                # A handful of very long messages: nothing to fold away.
                logger.info(
                    f"Subject {key} over threshold with {len(history)} message(s); "
                    "nothing to compress"
                )
                return CompressionResult(compressed=False, tokens_before=tokens_before)

            logger.info(f"Compressing context for subject {key}: {tokens_before} tokens")
            to_compress, retained = history[:count], history[count:]

            self._states[key] = CompressionState.COMPRESSING
            parsed, used_fallback = await self.summarize(to_compress)

            self._states[key] = CompressionState.COMMITTING
            synthetic = self._commit(subject, to_compress, retained, parsed)

            tokens_after = estimate_history_tokens(
                [synthetic.content] + [m.content for m in retained]
            )
            result = CompressionResult(
                compressed=True,
                tokens_before=tokens_before,
                tokens_after=tokens_after,
                messages_compressed=count,
                facts_extracted=len(parsed.items),
                fallback=used_fallback,
            )
            self._events.log_compression(
                key,
                messages_compressed=count,
                tokens_before=tokens_before,
                tokens_after=tokens_after,
                items_extracted=result.facts_extracted,
                fallback=used_fallback,
            )
            logger.info(
                f"Compression done: freed {result.tokens_freed} tokens, "
                f"extracted {result.facts_extracted} memory items"
            )
            return result
        finally:
            self._states.pop(key, None)

    async def summarize(self, messages: list[Message]) -> tuple[SummaryResponse, bool]:
        """Summarize messages and extract memory items.

        Returns:
            Tuple of (parsed response, whether the fallback was used).
        """
        from ..llm.client import GenerationOptions

        prompt = SUMMARY_PROMPT.format(conversation=render_transcript(messages))
        request = [Message(role=Role.USER, content=prompt, timestamp=0)]
        options = GenerationOptions(temperature=0.3, max_output_tokens=8192)

        try:
            response = await self.generator.generate(request, None, options)
        except Exception as e:
            logger.warning(f"Summarization failed, using fallback summary: {e}")
            return SummaryResponse(summary=fallback_summary(messages)), True

        return parse_summary_response(response.text), False

    def _commit(
        self,
        subject: str,
        to_compress: list[Message],
        retained: list[Message],
        parsed: SummaryResponse,
    ) -> Message:
        """Persist the summary and replace the compressed range.

        Returns:
            The synthetic summary message now heading the log.
        """
        count = len(to_compress)
        self.store.append_summary_record(
            SummaryRecord(subject=str(subject), summary=parsed.summary, messages_compressed=count)
        )
        for item in parsed.items:
            self.store.add_memory_item(subject, item.kind, item.text)

        self.store.delete_messages_through(subject, to_compress[-1])

        marker = SUMMARY_MARKER.format(count=count)
        content = f"{marker}\n\n{parsed.summary}" if parsed.summary else marker
        return self.store.append_message(
            subject,
            Message(role=Role.MODEL, content=content, timestamp=retained[0].timestamp - 1),
        )
