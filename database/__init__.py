"""
Database layer — conversation state and bot token storage.

Backends:
  - In-memory (dict-based, for development/testing)
  - File (JSON file on disk, for small deployments)

Quick start:
  from database import create_storage
  storage = create_storage({"backend": "memory"})
  record = await storage.get_or_create_and_lock("sender-1", {}, timeout_ms=300)
"""
from database.store_base import BaseStateStorage, StateLockedError
from database.store_memory import InMemoryStateStorage
from database.store_file import FileStateStorage
from database.store_factory import create_storage, get_storage, reset_storage
from database.token_memory import BotToken, InMemoryTokenStorage

__all__ = [
    # Storage interface
    "BaseStateStorage", "StateLockedError",
    # Storage backends
    "InMemoryStateStorage", "FileStateStorage",
    # Factory
    "create_storage", "get_storage", "reset_storage",
    # Tokens
    "BotToken", "InMemoryTokenStorage",
]
