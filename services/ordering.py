"""
Display-order maintenance for testimonials and showcase samples.

Collections are ordered by a ``display_order`` integer. Gaps are allowed
(deleting an item never renumbers the survivors); a drag-and-drop move
collapses the whole collection back to ``0..n-1`` and only the items whose
order actually changed are written.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Callable, List, Sequence, Tuple

from .errors import StorageError, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderWrite:
    id: str
    display_order: int


@dataclass(frozen=True)
class ReorderPlan:
    items: Tuple
    writes: Tuple[OrderWrite, ...] = ()

    @property
    def is_noop(self) -> bool:
        return not self.writes


@dataclass
class ReorderOutcome:
    succeeded: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


def next_display_order(items: Sequence) -> int:
    return 1 + max((item.display_order for item in items), default=-1)


def move_item(items: Sequence, source_index: int, destination_index: int) -> ReorderPlan:
    """
    Move one item and renumber the collection positionally.

    ``items`` must already be sorted the way they are displayed. Returns new
    item objects; the ones passed in are left untouched.
    """
    count = len(items)
    for index in (source_index, destination_index):
        if not 0 <= index < count:
            raise ValidationError(f'Position {index} is out of range for {count} items.')

    if source_index == destination_index:
        return ReorderPlan(items=tuple(items))

    moved = list(items)
    moved.insert(destination_index, moved.pop(source_index))
    return _renumber(moved)


def _renumber(sequence: Sequence) -> ReorderPlan:
    reordered = []
    writes = []
    for position, item in enumerate(sequence):
        if item.display_order != position:
            writes.append(OrderWrite(id=item.id, display_order=position))
            item = replace(item, display_order=position)
        reordered.append(item)
    return ReorderPlan(items=tuple(reordered), writes=tuple(writes))


def persist_order(writes: Sequence[OrderWrite], write_one: Callable[[str, int], object]) -> ReorderOutcome:
    """
    Apply the writes one by one.

    Not transactional: a failed write is recorded and the loop carries on,
    so the caller can retry the failed ids or reload the collection.
    """
    outcome = ReorderOutcome()
    for write in writes:
        try:
            write_one(write.id, write.display_order)
        except StorageError as exc:
            logger.warning('Order write failed for %s: %s', write.id, exc.message)
            outcome.failed.append(write.id)
        else:
            outcome.succeeded.append(write.id)
    return outcome


def resequence(items: Sequence) -> ReorderPlan:
    """Compact an ordered collection to ``0..n-1`` keeping relative order."""
    return _renumber(sorted(items, key=lambda item: item.display_order))
