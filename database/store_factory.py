"""
Storage Factory — Create the right state storage backend from configuration.

Configuration in settings.yaml:
    storage:
      # State storage backend — where conversation state lives
      #   "memory"   — In-memory dicts (development, testing)
      #   "file"     — JSON file on disk (small deployments, demos)
      backend: "memory"

      # For file backend: directory path
      file_dir: "./data"

Usage:
    from database.store_factory import create_storage, get_storage
    storage = create_storage(settings.storage)   # StorageConfig or dict
    storage = get_storage()                      # singleton instance
"""
from __future__ import annotations

from typing import Any, Optional

import structlog

from database.store_base import BaseStateStorage

logger = structlog.get_logger()

_instance: Optional[BaseStateStorage] = None


def create_storage(config: Any = None) -> BaseStateStorage:
    """
    Factory: create the configured state storage backend.

    Args:
        config: StorageConfig or dict with keys:
            backend: "memory" | "file"  (default: "memory")
            file_dir: str (for file backend, default: "./data")
    """
    global _instance
    if _instance is not None:
        return _instance

    if config is None:
        config = {}
    if not isinstance(config, dict):
        config = {"backend": config.backend, "file_dir": config.file_dir}

    backend = config.get("backend", "memory")

    if backend == "file":
        from database.store_file import FileStateStorage
        data_dir = config.get("file_dir", "./data")
        _instance = FileStateStorage(data_dir=data_dir)
        logger.info("storage_created", backend="file", data_dir=data_dir)

    elif backend == "memory":
        from database.store_memory import InMemoryStateStorage
        _instance = InMemoryStateStorage()
        logger.info("storage_created", backend="memory")

    else:
        raise ValueError(f"Unknown storage backend: {backend!r}")

    return _instance


def get_storage() -> BaseStateStorage:
    """Return the singleton storage, creating a memory one if none exists."""
    global _instance
    if _instance is None:
        _instance = create_storage()
    return _instance


def reset_storage() -> None:
    """Reset the singleton (for testing)."""
    global _instance
    _instance = None
