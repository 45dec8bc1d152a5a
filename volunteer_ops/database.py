from collections.abc import MutableMapping
from typing import Generic, TypeVar

K = TypeVar("K")
V = TypeVar("V")


class InMemoryKeyValueDatabase(Generic[K, V]):
    """
    Simple in-memory key/value database. Keys keep insertion order, so
    ``all()`` returns rows in the order they were first written.
    """

    def __init__(self) -> None:
        self._store: MutableMapping[K, V] = {}

    def put(self, key: K, value: V) -> None:
        self._store[key] = value

    def get(self, key: K) -> V | None:
        return self._store.get(key)

    def all(self) -> list[V]:
        return list(self._store.values())

    def mark_arrived(self, key: K) -> tuple[bool, bool]:
        """
        Set ``arrived`` on the row stored under ``key``.
        Returns ``(found, transitioned)``; re-applying is a no-op.
        """
        row = self._store.get(key)
        if row is None or not hasattr(row, "arrived"):
            return False, False
        if row.arrived:
            return True, False
        row.arrived = True
        return True, True
