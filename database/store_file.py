"""
FileStateStorage — JSON file-backed state storage that survives restarts.

Data layout:
  {data_dir}/
    states.json        {sender_id: StateRecord}

Features:
  - Same lock contract as InMemoryStateStorage (locks are persisted too)
  - Writes go through a temp file and an atomic rename
  - Optional batched writes (flush_interval_s > 0)
  - Single-process only (no concurrent write safety)

Best for: small deployments, demos, local bots.
"""
from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Optional

import structlog
from pydantic import ValidationError

from database.store_memory import InMemoryStateStorage
from models.schemas import StateRecord

logger = structlog.get_logger()

_FILE_NAME = "states.json"


class FileStateStorage(InMemoryStateStorage):
    """
    Extends InMemoryStateStorage with JSON file persistence.

    On init: loads every record from disk into memory.
    On every lock or save: flushes the records to disk.
    """

    def __init__(self, data_dir: str = "./data", flush_interval_s: float = 0):
        super().__init__()
        self._data_dir = Path(data_dir)
        self._data_dir.mkdir(parents=True, exist_ok=True)
        self._flush_interval = flush_interval_s
        self._dirty = False
        self._flush_task: Optional[asyncio.Task] = None
        self._load()
        logger.info("file_state_storage_initialized", data_dir=str(self._data_dir),
                    records=len(self._records))

    @property
    def path(self) -> Path:
        return self._data_dir / _FILE_NAME

    # ── Load / Save ───────────────────────────────────────

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            with open(self.path, "r") as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("file_state_storage_load_error", path=str(self.path), error=str(e))
            return

        for sender_id, data in (raw or {}).items():
            try:
                self._records[sender_id] = StateRecord.model_validate(data)
            except ValidationError as e:
                logger.warning("file_state_storage_bad_record", sender_id=sender_id, error=str(e))

    def _write(self) -> None:
        data = {sid: r.model_dump(mode="json") for sid, r in self._records.items()}
        tmp_path = self.path.with_suffix(".tmp")
        with open(tmp_path, "w") as f:
            json.dump(data, f, indent=2, default=str)
        tmp_path.replace(self.path)

    def _mark_dirty(self) -> None:
        if self._flush_interval <= 0:
            self._write()
            return
        self._dirty = True
        if self._flush_task is None or self._flush_task.done():
            self._flush_task = asyncio.get_running_loop().create_task(self._deferred_flush())

    async def _deferred_flush(self) -> None:
        await asyncio.sleep(self._flush_interval)
        if self._dirty:
            self._dirty = False
            self._write()

    def flush_all(self) -> None:
        """Force the records to disk."""
        self._dirty = False
        self._write()
        logger.info("file_state_storage_flushed", records=len(self._records))

    # ── Override writes to trigger persistence ────────────

    async def get_or_create_and_lock(
        self, sender_id: str, default_state: dict[str, Any] = None, timeout_ms: int = 300,
    ) -> StateRecord:
        record = await super().get_or_create_and_lock(sender_id, default_state, timeout_ms)
        self._mark_dirty()
        return record

    async def save_state(self, record: StateRecord) -> StateRecord:
        result = await super().save_state(record)
        self._mark_dirty()
        return result

    def clear(self) -> None:
        super().clear()
        self._mark_dirty()
