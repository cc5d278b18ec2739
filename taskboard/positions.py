"""Integer position assignment for ordered siblings.

Every ordered scope (a user's boards, a board's columns, a column's tasks,
a task's subtasks) keeps its positions dense and ascending from ``ORIGIN``.
The helpers here are pure: they decide numbers, the store writes them.
"""

from __future__ import annotations

from typing import Iterable, Optional, Sequence, TypeVar

T = TypeVar("T")

ORIGIN = 1
QUARANTINE_OFFSET = 1000


def next_position(highest: Optional[int]) -> int:
    """Return the position for a new last sibling.

    ``highest`` is the current maximum position in scope, or ``None`` when
    the scope is empty.
    """
    if highest is None:
        return ORIGIN
    return highest + 1


def normalize(ordered: Sequence[T]) -> list[tuple[T, int]]:
    """Pair each item with ``ORIGIN + index``."""
    return [(item, ORIGIN + index) for index, item in enumerate(ordered)]


def renumber_after_removal(remaining: Iterable[T], key=lambda item: item.position) -> list[tuple[T, int]]:
    """Close the gaps left by deleted siblings, keeping relative order."""
    return normalize(sorted(remaining, key=key))


def move_to_index(ordered: Sequence[T], item: T, position: int) -> list[T]:
    """Return ``ordered`` with ``item`` relocated to ``position``.

    The target is clamped into ``ORIGIN .. ORIGIN + len(others)``, so an
    out-of-range request lands at the nearest end instead of opening a gap.
    """
    others = [other for other in ordered if other is not item]
    index = min(max(position - ORIGIN, 0), len(others))
    others.insert(index, item)
    return others


def clamp(position: int, count: int) -> int:
    """Clamp an insertion position into a scope currently holding ``count`` items."""
    return min(max(position, ORIGIN), ORIGIN + count)


def quarantine_offset(positions: Iterable[int]) -> int:
    """Offset that lifts any final position clear of every value in scope.

    ``final + offset`` is larger than every current or final position, so
    parking rows there can never collide with a sibling mid-sequence.
    """
    highest = max(positions, default=0)
    return max(QUARANTINE_OFFSET, highest + 1)


def is_dense(positions: Iterable[int]) -> bool:
    values = sorted(positions)
    return values == list(range(ORIGIN, ORIGIN + len(values)))
