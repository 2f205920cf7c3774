"""Utility modules."""

from gamewallet.utils.display import display_address
from gamewallet.utils.locks import KeyedLock, clear_locks, get_lock, keyed_lock

__all__ = ["KeyedLock", "clear_locks", "display_address", "get_lock", "keyed_lock"]
