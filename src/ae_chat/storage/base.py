"""Abstract key-value string store and the in-memory implementation."""

from __future__ import annotations

from abc import ABC, abstractmethod


class KeyValueStore(ABC):
    """String-to-string persistence, the role localStorage plays in the browser panel.

    To add a new backend, subclass this and implement all abstract methods.
    """

    async def initialize(self) -> None:
        """Open any underlying resources."""

    async def close(self) -> None:
        """Release any underlying resources."""

    @abstractmethod
    async def get(self, key: str) -> str | None:
        ...

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    async def delete(self, key: str) -> None:
        ...

    @abstractmethod
    async def keys(self, prefix: str = "") -> list[str]:
        """Return stored keys starting with *prefix*, sorted."""
        ...

    @property
    @abstractmethod
    def backend_name(self) -> str:
        ...


class MemoryKeyValueStore(KeyValueStore):
    """Dict-backed store for tests and throwaway sessions."""

    def __init__(self, initial: dict[str, str] | None = None):
        self._data: dict[str, str] = dict(initial or {})

    @property
    def backend_name(self) -> str:
        return "memory"

    async def get(self, key: str) -> str | None:
        return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise TypeError(f"value for {key!r} must be str, got {type(value).__name__}")
        self._data[key] = value

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._data if k.startswith(prefix))
