"""Build the configured key-value backend."""

from __future__ import annotations

from ae_chat.config import StorageConfig
from ae_chat.storage.base import KeyValueStore, MemoryKeyValueStore
from ae_chat.storage.database import SqliteKeyValueStore
from ae_chat.storage.file_store import FileKeyValueStore


def create_store(config: StorageConfig) -> KeyValueStore:
    if config.backend == "sqlite":
        return SqliteKeyValueStore(config.db_path)
    if config.backend == "file":
        return FileKeyValueStore(config.file_dir)
    if config.backend == "memory":
        return MemoryKeyValueStore()
    raise ValueError(f"Unknown storage backend: {config.backend}")
