from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import AbstractSet, Dict, List, Protocol, Sequence

from rab_items.models import LineItem

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class RoundingStrategy(Protocol):
    """Define rounding behaviour for an aggregated amount."""

    def round(self, value: Decimal) -> Decimal:
        """Apply rounding rules to ``value`` and return the adjusted Decimal."""


class NoRounding:
    def round(self, value: Decimal) -> Decimal:
        return value


class HalfUpRoundingStrategy:
    """Quantize amounts using Decimal's ROUND_HALF_UP semantics."""

    def __init__(self, precision: Decimal) -> None:
        self._precision = precision

    def round(self, value: Decimal) -> Decimal:
        return value.quantize(self._precision, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class SubtotalAggregator:
    """Category subtotals and the grand total over a flat item sequence.

    A category's subtotal covers every work item after it up to, but not
    including, the next category whose indent is less than or equal to its
    own. Excluded (soft-deleted) rows contribute nothing and never act as a
    boundary, which makes the result identical to aggregating the sequence
    with those rows removed.
    """

    rounding: RoundingStrategy = field(default_factory=NoRounding)

    def line_amount(self, item: LineItem) -> Decimal:
        return item.amount

    def category_subtotals(
        self,
        items: Sequence[LineItem],
        excluded: AbstractSet[str] = frozenset(),
    ) -> Dict[str, Decimal]:
        size = len(items)
        prefix: List[Decimal] = [ZERO] * (size + 1)
        for pos, item in enumerate(items):
            contribution = ZERO
            if item.is_work_item and item.id not in excluded:
                contribution = self.line_amount(item)
            prefix[pos + 1] = prefix[pos] + contribution

        boundaries: Dict[int, int] = {}
        open_categories: List[int] = []
        for pos, item in enumerate(items):
            if not item.is_category or item.id in excluded:
                continue
            while open_categories and items[open_categories[-1]].indent >= item.indent:
                boundaries[open_categories.pop()] = pos
            open_categories.append(pos)

        subtotals: Dict[str, Decimal] = {}
        for pos, item in enumerate(items):
            if not item.is_category:
                continue
            end = boundaries.get(pos, size)
            if item.id in excluded:
                end = self._boundary_for_excluded(items, pos, excluded)
            subtotals[item.id] = self.rounding.round(prefix[end] - prefix[pos + 1])

        logger.debug("Computed %d category subtotals over %d rows", len(subtotals), size)
        return subtotals

    def grand_total(self, items: Sequence[LineItem], excluded: AbstractSet[str] = frozenset()) -> Decimal:
        total = sum(
            (self.line_amount(item) for item in items if item.is_work_item and item.id not in excluded),
            ZERO,
        )
        return self.rounding.round(total)

    @staticmethod
    def _boundary_for_excluded(items: Sequence[LineItem], pos: int, excluded: AbstractSet[str]) -> int:
        # Deleted categories are still shown when "show deleted" is on; give
        # them the subtotal they would have if restored.
        indent = items[pos].indent
        for later in range(pos + 1, len(items)):
            candidate = items[later]
            if candidate.is_category and candidate.id not in excluded and candidate.indent <= indent:
                return later
        return len(items)


_DEFAULT_AGGREGATOR = SubtotalAggregator()


def category_subtotals(items: Sequence[LineItem], excluded: AbstractSet[str] = frozenset()) -> Dict[str, Decimal]:
    return _DEFAULT_AGGREGATOR.category_subtotals(items, excluded)


def grand_total(items: Sequence[LineItem], excluded: AbstractSet[str] = frozenset()) -> Decimal:
    return _DEFAULT_AGGREGATOR.grand_total(items, excluded)
