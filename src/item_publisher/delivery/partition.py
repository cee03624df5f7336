from __future__ import annotations

from typing import Sequence, TypeVar

from ..config import MAX_GROUP_SIZE

T = TypeVar("T")


def partition(items: Sequence[T], size: int = MAX_GROUP_SIZE) -> list[list[T]]:
    """Split into consecutive groups of at most `size`, preserving order.

    The last group may be short; empty input yields no groups.
    """
    if size <= 0:
        raise ValueError("size must be > 0")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]
