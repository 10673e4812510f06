from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Protocol

from rab_items.models import Component, Surcharges
from rab_items.services.subtotals import NoRounding, RoundingStrategy

ZERO = Decimal("0")
HUNDRED = Decimal("100")


class BaseCostAggregator(Protocol):
    """Aggregate AHS components into a base price before surcharges."""

    def aggregate(self, components: Iterable[Component]) -> Decimal:
        """Return the raw base price."""


class ComponentSumAggregator:
    """Default aggregator: sum of quantity times unit price."""

    def aggregate(self, components: Iterable[Component]) -> Decimal:
        return sum((c.quantity * c.unit_price for c in components), ZERO)


@dataclass(frozen=True)
class AhsCalculator:
    """Unit price of a work item derived from its AHS breakdown.

    ``total = base * (1 + (pph + overhead + margin) / 100)``; the three
    percentages are added together, never compounded.
    """

    aggregator: BaseCostAggregator = field(default_factory=ComponentSumAggregator)
    rounding: RoundingStrategy = field(default_factory=NoRounding)

    def base_price(self, components: Iterable[Component]) -> Decimal:
        return self.aggregator.aggregate(components)

    def surcharge_amount(self, components: Iterable[Component], surcharges: Surcharges) -> Decimal:
        base = self.base_price(components)
        return base * surcharges.total_percentage / HUNDRED

    def total(self, components: Iterable[Component], surcharges: Surcharges) -> Decimal:
        base = self.base_price(components)
        return self.rounding.round(base * (1 + surcharges.total_percentage / HUNDRED))

    @classmethod
    def calculate(cls, components: Iterable[Component], surcharges: Surcharges) -> Decimal:
        return cls().total(components, surcharges)
