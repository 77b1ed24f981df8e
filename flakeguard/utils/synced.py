"""Lock-guarded shared values.

Every piece of state that feature hooks mutate (retry budgets, new-test
counters, the faulty-session flag, the session test index) lives in a
Synced wrapper. Reads take a snapshot; writes go through ``update`` so
that read-modify-write sequences are atomic.
"""

from __future__ import annotations

import threading
from typing import Callable, Generic, TypeVar

T = TypeVar("T")
R = TypeVar("R")


class Synced(Generic[T]):
    """A value guarded by a lock.

    There is intentionally no setter: mutation happens inside ``update``.
    """

    def __init__(self, value: T) -> None:
        self._value = value
        self._lock = threading.Lock()

    @property
    def value(self) -> T:
        """Return a snapshot of the current value."""
        with self._lock:
            return self._value

    def update(self, fn: Callable[[T], tuple[T, R]]) -> R:
        """Run ``fn`` inside the critical section.

        Args:
            fn: Receives the current value and returns ``(new_value, result)``.

        Returns:
            The ``result`` part of what ``fn`` returned.
        """
        with self._lock:
            self._value, result = fn(self._value)
            return result

    def __repr__(self) -> str:
        return f"Synced({self.value!r})"


def checked_add(counter: Synced[int], amount: int, maximum: int) -> bool:
    """Add ``amount`` to ``counter`` unless that would exceed ``maximum``.

    Returns:
        True if the counter was incremented.
    """

    def add(value: int) -> tuple[int, bool]:
        if value + amount > maximum:
            return value, False
        return value + amount, True

    return counter.update(add)


def increment(counter: Synced[int], amount: int = 1) -> int:
    """Add ``amount`` to ``counter`` and return the new value."""
    return counter.update(lambda value: (value + amount, value + amount))
