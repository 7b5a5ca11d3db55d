"""Upstream model access."""

from .client import GeminiClient, GenerationOptions, GenerationResult, parse_generation
from .rotation import RotatingGenerator

__all__ = [
    "GeminiClient",
    "GenerationOptions",
    "GenerationResult",
    "RotatingGenerator",
    "parse_generation",
]
