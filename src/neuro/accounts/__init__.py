"""Upstream account pool and its shared state."""

from .pool import Account, AccountPool
from .state import StateStore

__all__ = ["Account", "AccountPool", "StateStore"]
