"""Ordered, duplicate-free list operations.

Value-name registries and shared-column lists are plain Python lists that keep
first-seen order and never hold duplicates. ``set_intersect`` treats ``None`` as
"unconstrained" rather than empty, so it can seed a fold over datasets that
have not all arrived yet.
"""

from __future__ import annotations

from typing import Hashable, Iterable, Optional, Sequence, TypeVar

T = TypeVar("T", bound=Hashable)


def set_has(items: Sequence[T], item: T) -> bool:
    """Return True if item is in the ordered set."""
    return item in items


def set_add(items: list[T], item: Optional[T]) -> list[T]:
    """Append item if it is truthy and not already present; returns items.

    Falsy items (None, "") are ignored so empty name cells never become columns.
    """
    if item and item not in items:
        items.append(item)
    return items


def ordered_unique(values: Iterable[T]) -> list[T]:
    """Distinct truthy values in first-seen order."""
    out: list[T] = []
    seen: set[T] = set()
    for v in values:
        if v and v not in seen:
            seen.add(v)
            out.append(v)
    return out


def set_intersect(a: Optional[Sequence[T]], b: Optional[Sequence[T]]) -> Optional[list[T]]:
    """Intersect two ordered sets where None means "no constraint yet".

    ``set_intersect(None, b) == b`` and ``set_intersect(a, None) == a``. For two
    lists, a's matches come first in a's order, then any of b's matches not
    already added, in b's order.

    Args:
        a: Accumulated ordered set, or None if unconstrained.
        b: Ordered set to intersect with, or None if unconstrained.

    Returns:
        A new list, or None when both inputs are None.
    """
    if a is None:
        return None if b is None else list(b)
    if b is None:
        return list(a)

    b_members = set(b)
    a_members = set(a)
    res: list[T] = []
    for x in a:
        if x in b_members:
            set_add(res, x)
    for x in b:
        if x in a_members:
            set_add(res, x)
    return res
