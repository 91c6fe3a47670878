"""Directory-of-JSON-files key-value store with atomic writes."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from urllib.parse import quote, unquote

from ae_chat.log import get_logger
from ae_chat.storage.base import KeyValueStore

logger = get_logger(__name__)

_SUFFIX = ".json"


class FileKeyValueStore(KeyValueStore):
    """Stores each key as ``<dir>/<quoted key>.json``.

    Writes go to a temp file first and are renamed into place, so an
    interrupted write never leaves a truncated value behind.
    """

    def __init__(self, directory: str | Path):
        self._dir = Path(directory)

    @property
    def backend_name(self) -> str:
        return "file"

    async def initialize(self) -> None:
        await asyncio.to_thread(self._dir.mkdir, parents=True, exist_ok=True)
        logger.info("file_store_initialized", path=str(self._dir))

    def _path(self, key: str) -> Path:
        return self._dir / (quote(key, safe="") + _SUFFIX)

    async def get(self, key: str) -> str | None:
        path = self._path(key)

        def _read() -> str | None:
            if not path.exists():
                return None
            return path.read_text(encoding="utf-8")

        return await asyncio.to_thread(_read)

    async def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise TypeError(f"value for {key!r} must be str, got {type(value).__name__}")
        await asyncio.to_thread(self._atomic_write, self._path(key), value)

    @staticmethod
    def _atomic_write(path: Path, value: str) -> None:
        tmp = path.with_name(path.name + ".tmp")
        try:
            tmp.write_text(value, encoding="utf-8")
            os.replace(tmp, path)
        except OSError:
            tmp.unlink(missing_ok=True)
            raise

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._path(key).unlink, missing_ok=True)

    async def keys(self, prefix: str = "") -> list[str]:
        def _list() -> list[str]:
            if not self._dir.exists():
                return []
            names = [
                unquote(p.name[: -len(_SUFFIX)])
                for p in self._dir.iterdir()
                if p.is_file() and p.name.endswith(_SUFFIX)
            ]
            return sorted(n for n in names if n.startswith(prefix))

        return await asyncio.to_thread(_list)
