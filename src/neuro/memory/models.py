"""Data models for conversation history and long-term memory."""

from dataclasses import dataclass, field
from enum import Enum


class Role(Enum):
    """Author of a message in the conversation log."""

    USER = "user"
    MODEL = "model"


class MemoryKind(Enum):
    """Category of a long-term memory item."""

    FACT = "fact"
    PREFERENCE = "preference"
    GOAL = "goal"

    @property
    def tag(self) -> str:
        """Line prefix used in the structured memory block."""
        tags = {
            MemoryKind.FACT: "FACT",
            MemoryKind.PREFERENCE: "PREF",
            MemoryKind.GOAL: "GOAL",
        }
        return tags[self]

    @classmethod
    def from_tag(cls, tag: str) -> "MemoryKind | None":
        """Resolve a line prefix such as ``PREF`` to its kind."""
        for kind in cls:
            if kind.tag == tag.upper():
                return kind
        return None


@dataclass(frozen=True)
class Message:
    """A single entry in a subject's conversation log.

    Attributes:
        role: Who wrote the message.
        content: Message text.
        timestamp: Milliseconds since the epoch; defines log order.
        id: Database ID, None for messages not yet stored.
    """

    role: Role
    content: str
    timestamp: int
    id: int | None = None


@dataclass(frozen=True)
class MemoryItem:
    """A durable fact, preference or goal about the subject."""

    kind: MemoryKind
    text: str


@dataclass(frozen=True)
class SummaryRecord:
    """Audit record of one compression event."""

    subject: str
    summary: str
    messages_compressed: int
    created_at: str | None = None


@dataclass(frozen=True)
class Citation:
    """A source the model consulted while answering."""

    title: str
    url: str


@dataclass
class GroupedMemory:
    """Memory items of one subject grouped by kind, in insertion order."""

    facts: list[str] = field(default_factory=list)
    preferences: list[str] = field(default_factory=list)
    goals: list[str] = field(default_factory=list)

    def add(self, kind: MemoryKind, text: str) -> None:
        """Append an item to the list for its kind."""
        self.for_kind(kind).append(text)

    def for_kind(self, kind: MemoryKind) -> list[str]:
        """Return the list holding items of ``kind``."""
        if kind is MemoryKind.FACT:
            return self.facts
        if kind is MemoryKind.PREFERENCE:
            return self.preferences
        return self.goals

    def is_empty(self) -> bool:
        """True if no items of any kind are stored."""
        return not (self.facts or self.preferences or self.goals)

    def __len__(self) -> int:
        return len(self.facts) + len(self.preferences) + len(self.goals)
