"""Neuro: a personal assistant with a bounded, self-compressing context."""

__version__ = "0.1.0"
