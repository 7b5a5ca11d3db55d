"""Telegram integration for Neuro."""

from .bot import TelegramBot

__all__ = ["TelegramBot"]
