"""
Fixed-capacity append-only list used wherever memory must stay capped.
"""

from __future__ import annotations

from typing import Generic, Iterable, Iterator, TypeVar, overload

T = TypeVar("T")


class BoundedList(Generic[T]):
    """
    Append-only sequence that never holds more than `capacity` items.

    Every mutation is followed by `trim()`, which drops the oldest entries from
    the head. Survivors keep their relative order.
    """

    __slots__ = ("_capacity", "_items")

    def __init__(self, capacity: int, items: Iterable[T] | None = None) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._capacity = capacity
        self._items: list[T] = list(items or [])
        self.trim()

    @property
    def capacity(self) -> int:
        return self._capacity

    def append(self, item: T) -> None:
        self._items.append(item)
        self.trim()

    def extend(self, items: Iterable[T]) -> None:
        self._items.extend(items)
        self.trim()

    def trim(self) -> None:
        overflow = len(self._items) - self._capacity
        if overflow > 0:
            del self._items[:overflow]

    def clear(self) -> None:
        self._items.clear()

    def replace(self, items: Iterable[T]) -> None:
        """Swap the full contents, keeping only the newest `capacity` items."""
        self._items = list(items)
        self.trim()

    def snapshot(self) -> list[T]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(list(self._items))

    def __reversed__(self) -> Iterator[T]:
        return reversed(list(self._items))

    @overload
    def __getitem__(self, index: int) -> T: ...

    @overload
    def __getitem__(self, index: slice) -> list[T]: ...

    def __getitem__(self, index: int | slice) -> T | list[T]:
        return self._items[index]

    def __bool__(self) -> bool:
        return bool(self._items)

    def __repr__(self) -> str:
        return f"BoundedList(capacity={self._capacity}, size={len(self._items)})"
