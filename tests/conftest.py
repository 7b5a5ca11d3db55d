"""Shared fixtures."""

from pathlib import Path

import pytest

from neuro.llm import GenerationResult
from neuro.logging import JSONLLogger, configure_logger
from neuro.memory import ConversationStore, Message, Role


@pytest.fixture(autouse=True)
def event_log(tmp_path: Path) -> JSONLLogger:
    """Keep structured event logs inside the test's temp directory."""
    return configure_logger(tmp_path / "logs")


@pytest.fixture
def store(tmp_path: Path) -> ConversationStore:
    """Create a ConversationStore with a temporary database."""
    store = ConversationStore(tmp_path / "neuro.db")
    store.init_db()
    yield store
    store.close()


class FakeGenerator:
    """Stands in for the model; records requests and replays canned output."""

    def __init__(self, text: str = "", error: Exception | None = None, citations=None):
        self.text = text
        self.error = error
        self.citations = citations or []
        self.calls: list[tuple[list[Message], str | None, object]] = []

    async def generate(self, messages, system_prompt=None, options=None) -> GenerationResult:
        self.calls.append((list(messages), system_prompt, options))
        if self.error is not None:
            raise self.error
        return GenerationResult(text=self.text, citations=list(self.citations))


def add_messages(
    store: ConversationStore,
    subject: str,
    contents: list[str],
    start: int = 1000,
) -> list[Message]:
    """Append alternating user/model messages with increasing timestamps."""
    saved = []
    for i, content in enumerate(contents):
        role = Role.USER if i % 2 == 0 else Role.MODEL
        saved.append(
            store.append_message(subject, Message(role=role, content=content, timestamp=start + i))
        )
    return saved


@pytest.fixture
def make_generator():
    """Factory for FakeGenerator instances."""
    return FakeGenerator


@pytest.fixture
def seed():
    """Helper appending alternating messages to a store."""
    return add_messages
