"""Rule highlight partitioning.

Splits a dataset's points into the ones produced by the selected rewrite rule
(drawn emphasized) and the rest (drawn dimmed). Only presentation depends on
this split; scales and decimation always see the full point set.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, Optional, Protocol, Sequence, TypeVar


class _Ruled(Protocol):
    rule: Optional[str]


D = TypeVar("D", bound=_Ruled)


@dataclass(frozen=True)
class HighlightPartition(Generic[D]):
    highlighted: list[D] = field(default_factory=list)
    dimmed: list[D] = field(default_factory=list)


def partition(points: Sequence[D], selected_rule: Optional[str]) -> HighlightPartition[D]:
    """Partition points by rule; with no selection everything is highlighted."""
    if selected_rule is None:
        return HighlightPartition(highlighted=list(points), dimmed=[])
    highlighted: list[D] = []
    dimmed: list[D] = []
    for p in points:
        (highlighted if p.rule == selected_rule else dimmed).append(p)
    return HighlightPartition(highlighted=highlighted, dimmed=dimmed)
