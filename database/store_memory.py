"""
InMemoryStateStorage — Dict-backed state storage for development and testing.

Features:
  - Zero dependencies (no database, no Redis)
  - Same lock contract as every other backend
  - Safe within one asyncio event loop (no awaits inside the critical section)
  - All data lost on process restart

Best for: local development, unit tests, the conversation Tester.
"""
from __future__ import annotations

import time
from typing import Any, Optional

import structlog

from database.store_base import BaseStateStorage, StateLockedError
from models.schemas import StateRecord

logger = structlog.get_logger()


def _now_ms() -> int:
    return int(time.time() * 1000)


class InMemoryStateStorage(BaseStateStorage):
    """
    Keeps one StateRecord per sender. Records are copied on the way in and
    out so a caller mutating its copy never touches the stored one.
    """

    def __init__(self):
        self._records: dict[str, StateRecord] = {}
        logger.debug("inmemory_state_storage_initialized")

    async def get_or_create_and_lock(
        self, sender_id: str, default_state: dict[str, Any] = None, timeout_ms: int = 300,
    ) -> StateRecord:
        now = _now_ms()
        record = self._records.get(sender_id)

        if record is None:
            record = StateRecord(sender_id=sender_id, state=dict(default_state or {}))
        elif record.lock and record.lock > now - timeout_ms:
            raise StateLockedError(sender_id, record.lock)

        record.lock = now
        self._store(record)
        return record.model_copy(deep=True)

    async def save_state(self, record: StateRecord) -> StateRecord:
        self._store(record)
        return record

    async def get_state(self, sender_id: str) -> Optional[StateRecord]:
        record = self._records.get(sender_id)
        return record.model_copy(deep=True) if record else None

    def _store(self, record: StateRecord) -> None:
        self._records[record.sender_id] = record.model_copy(deep=True)

    # ── Utility ───────────────────────────────────────────

    def clear(self) -> None:
        """Wipe all records (for testing)."""
        self._records.clear()

    def stats(self) -> dict[str, int]:
        return {
            "records": len(self._records),
            "locked": sum(1 for r in self._records.values() if r.lock),
        }
