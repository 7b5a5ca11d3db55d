"""Conversational turn flow on top of the context engine."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from .accounts import AccountPool, StateStore
from .clock import now_ms
from .config import Config
from .llm import GeminiClient, GenerationOptions, RotatingGenerator
from .logging import JSONLLogger, get_logger
from .memory import (
    Citation,
    CompressionEngine,
    CompressionResult,
    ConversationStore,
    MemoryKind,
    Message,
    Role,
    build_system_prompt,
    estimate_history_tokens,
    estimate_tokens,
    split_reply_memory,
)
from .memory.compression import TextGenerator

logger = logging.getLogger(__name__)

NO_ANSWER = "Нет ответа"


@dataclass
class TurnResult:
    """Result of one conversational turn."""

    reply: str
    citations: list[Citation] = field(default_factory=list)
    memory_items: int = 0
    compression: CompressionResult = field(
        default_factory=lambda: CompressionResult(compressed=False)
    )


@dataclass
class ContextStats:
    """How much of the context window a subject currently uses."""

    tokens: int
    percent: int
    history_tokens: int
    insights_tokens: int
    system_tokens: int
    message_count: int


class Assistant:
    """Runs turns: log, prompt, generate, remember, compress."""

    def __init__(
        self,
        store: ConversationStore,
        generator: TextGenerator,
        engine: CompressionEngine | None = None,
        config: Config | None = None,
        clock: Callable[[], int] = now_ms,
        event_log: JSONLLogger | None = None,
    ) -> None:
        self.store = store
        self.generator = generator
        self.config = config or Config()
        self.engine = engine or CompressionEngine(
            store,
            generator,
            compress_threshold=self.config.compress_threshold,
            event_log=event_log,
        )
        self.clock = clock
        self._events = event_log or get_logger()

    @classmethod
    def from_config(cls, config: Config, event_log: JSONLLogger | None = None) -> Assistant:
        """Wire the store, account pool and model client from configuration."""
        assert config.db_path is not None and config.state_path is not None

        store = ConversationStore(config.db_path, config.max_history_messages)
        store.init_db()

        state = StateStore(config.state_path)
        state.init_db()
        pool = AccountPool(state)

        client = GeminiClient(
            client_id=config.client_id,
            client_secret=config.client_secret,
            model=config.model,
            endpoint=config.endpoint,
            token_endpoint=config.token_endpoint,
            timeout=config.request_timeout,
            event_log=event_log,
        )
        generator = RotatingGenerator(
            pool,
            client,
            rate_limit_cooldown_ms=config.rate_limit_cooldown_ms,
            event_log=event_log,
        )
        return cls(store, generator, config=config, event_log=event_log)

    def build_prompt(self, subject: str) -> str:
        """Assemble the system prompt from the subject's durable context."""
        return build_system_prompt(
            self.store.get_settings(subject),
            self.store.list_memory_items(subject),
        )

    async def handle_turn(
        self,
        subject: str,
        text: str,
        force_lookup: bool = False,
    ) -> TurnResult:
        """Answer one user message.

        The message is logged, the model answers with the full history and
        durable context, memory the model flagged in its reply is stored,
        and finally the history is compressed if it grew past the
        threshold.

        Raises:
            StorageError, CredentialError, UpstreamError: Propagated for
                the caller to report.
        """
        start = time.time()
        user_message = self.store.append_message(
            subject, Message(role=Role.USER, content=text, timestamp=self.clock())
        )

        history = self.store.list_messages(subject)
        options = GenerationOptions(
            force_external_lookup=force_lookup,
            temperature=self.config.temperature,
            max_output_tokens=self.config.max_output_tokens,
        )
        result = await self.generator.generate(history, self.build_prompt(subject), options)

        reply, items = split_reply_memory(result.text)
        for item in items:
            self.store.add_memory_item(subject, item.kind, item.text)

        if result.citations:
            self.store.save_last_sources(subject, result.citations)

        reply = reply or NO_ANSWER
        self.store.append_message(
            subject,
            Message(
                role=Role.MODEL,
                content=reply,
                timestamp=max(self.clock(), user_message.timestamp),
            ),
        )

        compression = await self.engine.maybe_compress(subject)

        self._events.log(
            "turn",
            subject=str(subject),
            duration_ms=(time.time() - start) * 1000,
            memory_items=len(items),
            citations=len(result.citations),
            compressed=compression.compressed,
        )
        return TurnResult(
            reply=reply,
            citations=result.citations,
            memory_items=len(items),
            compression=compression,
        )

    def context_stats(self, subject: str) -> ContextStats:
        """Estimate the subject's current context usage."""
        history = self.store.list_messages(subject)
        history_tokens = estimate_history_tokens(m.content for m in history)
        insights_tokens = estimate_tokens(self.store.get_settings(subject))
        system_tokens = estimate_tokens(self.build_prompt(subject))

        total = history_tokens + system_tokens
        percent = min(100, round(total / self.config.max_context_tokens * 100))
        return ContextStats(
            tokens=total,
            percent=percent,
            history_tokens=history_tokens,
            insights_tokens=insights_tokens,
            system_tokens=system_tokens,
            message_count=len(history),
        )

    def remember(self, subject: str, kind: MemoryKind, text: str) -> bool:
        """Store a memory item the user asked for explicitly."""
        return self.store.add_memory_item(subject, kind, text.strip())

    def clear_history(self, subject: str) -> int:
        """Delete the subject's messages and compression summaries.

        Returns:
            Number of messages deleted.
        """
        deleted = self.store.clear_messages(subject)
        self.store.clear_summaries(subject)
        return deleted
