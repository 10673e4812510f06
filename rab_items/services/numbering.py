from __future__ import annotations

import logging
import math
from typing import Dict, List, Sequence

from rab_items.models import LineItem
from rab_items.services.hierarchy import HierarchyIndex

logger = logging.getLogger(__name__)

ORPHAN_NUMBER = "?.?"

_ROMAN_TABLE = (
    (1000, "M"),
    (900, "CM"),
    (500, "D"),
    (400, "CD"),
    (100, "C"),
    (90, "XC"),
    (50, "L"),
    (40, "XL"),
    (10, "X"),
    (9, "IX"),
    (5, "V"),
    (4, "IV"),
    (1, "I"),
)


def romanize(value) -> str:
    """Upper-case Roman numeral for 1..3999, empty string otherwise."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return ""
    if not math.isfinite(number) or number <= 0 or number != int(number):
        return ""
    remaining = int(number)
    if remaining > 3999:
        return ""

    parts: List[str] = []
    for arabic, numeral in _ROMAN_TABLE:
        count, remaining = divmod(remaining, arabic)
        parts.append(numeral * count)
    return "".join(parts)


class _Counter:
    __slots__ = ("categories", "items")

    def __init__(self) -> None:
        self.categories = 0
        self.items = 0

    def next(self, item: LineItem) -> int:
        if item.is_category:
            self.categories += 1
            return self.categories
        self.items += 1
        return self.items


def number_items(items: Sequence[LineItem]) -> Dict[str, str]:
    """Map every item id to its display number.

    Top-level categories get Roman numerals, top-level work items a flat
    Arabic counter, and nested nodes ``<parent number>.<n>`` where categories
    and work items are counted separately under each parent. A nested node
    whose parent cannot be located gets ``ORPHAN_NUMBER``.
    """
    index = HierarchyIndex.build(items)
    numbers: Dict[str, str] = {}
    per_parent: Dict[str, _Counter] = {}
    top_level_categories = 0
    top_level_items = 0
    orphans: List[str] = []

    for pos, item in enumerate(items):
        if index.indents[pos] == 0:
            if item.is_category:
                top_level_categories += 1
                numbers[item.id] = romanize(top_level_categories)
            else:
                top_level_items += 1
                numbers[item.id] = str(top_level_items)
            continue

        parent_pos = index.parent_of(pos)
        if parent_pos is None:
            numbers[item.id] = ORPHAN_NUMBER
            orphans.append(item.id)
            continue

        parent = items[parent_pos]
        counter = per_parent.setdefault(parent.id, _Counter())
        numbers[item.id] = f"{numbers[parent.id]}.{counter.next(item)}"

    if orphans:
        logger.warning("Malformed hierarchy: %d item(s) without a locatable parent: %s", len(orphans), orphans)
    return numbers


def find_orphans(items: Sequence[LineItem]) -> List[str]:
    index = HierarchyIndex.build(items)
    return [items[pos].id for pos in range(len(items)) if index.is_orphan(pos)]
