"""
Abstract State Storage — Interface for all conversation-state backends.

Implementations:
  - InMemoryStateStorage (dict-based, single-process, no persistence)
  - FileStateStorage     (JSON file on disk, single-process, durable)

Every backend honours the same lock contract: `get_or_create_and_lock`
never blocks. When another turn holds a fresh lock on the sender's record
it raises StateLockedError and the caller decides whether to retry.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

from models.schemas import StateRecord


class StateLockedError(Exception):
    """The record is locked by a concurrent turn."""

    def __init__(self, sender_id: str, lock: int = 0):
        self.sender_id = sender_id
        self.lock = lock
        super().__init__(f"State of {sender_id} is locked")


class BaseStateStorage(ABC):
    """Interface that all state storage backends must implement."""

    @abstractmethod
    async def get_or_create_and_lock(
        self, sender_id: str, default_state: dict[str, Any] = None, timeout_ms: int = 300,
    ) -> StateRecord:
        """
        Load the record (creating it with `default_state` when missing) and
        stamp a lock on it. A lock younger than `timeout_ms` held by someone
        else raises StateLockedError; an older one is considered abandoned.
        """

    @abstractmethod
    async def save_state(self, record: StateRecord) -> StateRecord:
        ...

    @abstractmethod
    async def get_state(self, sender_id: str) -> Optional[StateRecord]:
        ...

    async def on_after_state_load(self, req: Any, record: StateRecord) -> StateRecord:
        """Post-load hook, called once per turn after the lock is taken."""
        return record
