"""Cheap, deterministic token estimation."""

import math
from collections.abc import Iterable

# Calibrated for mostly-Cyrillic text, which tokenizes denser than English.
CHARS_PER_TOKEN = 3.5


def estimate_tokens(text: str) -> int:
    """Approximate the token count of ``text`` from its length."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def estimate_history_tokens(contents: Iterable[str]) -> int:
    """Approximate the token count of a sequence of message contents."""
    return estimate_tokens(" ".join(contents))
