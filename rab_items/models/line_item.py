from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from rab_items.utils.decimal_adapter import DecimalAdapter

ZERO = Decimal("0")

COMPONENT_CATEGORIES = ("Material", "Jasa Pekerja", "Alat Bantu")
DEFAULT_COMPONENT_CATEGORY = COMPONENT_CATEGORIES[0]


class ItemType(str, Enum):
    CATEGORY = "category"
    WORK_ITEM = "work_item"


class PriceSource(str, Enum):
    """Where a work item's unit price came from."""

    MANUAL = "manual"
    DATABASE = "database"
    AHS = "ahs"
    COMBINED = "combined"


class ComponentSource(str, Enum):
    DATABASE = "database"
    AI = "ai"
    MANUAL = "manual"


@dataclass(frozen=True)
class Component:
    """One AHS line: a material, labour or equipment requirement per unit of work."""

    id: str
    name: str
    category: str = DEFAULT_COMPONENT_CATEGORY
    quantity: Decimal = ZERO
    unit: str = ""
    unit_price: Decimal = ZERO
    source: ComponentSource = ComponentSource.MANUAL

    @property
    def amount(self) -> Decimal:
        return self.quantity * self.unit_price

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "quantity": DecimalAdapter.to_string(self.quantity),
            "unit": self.unit,
            "unit_price": DecimalAdapter.to_string(self.unit_price),
            "source": self.source.value,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Component":
        return cls(
            id=str(data.get("id") or ""),
            name=str(data.get("name") or ""),
            category=str(data.get("category") or DEFAULT_COMPONENT_CATEGORY),
            quantity=DecimalAdapter.to_decimal(data.get("quantity")) or ZERO,
            unit=str(data.get("unit") or ""),
            unit_price=DecimalAdapter.to_decimal(data.get("unit_price")) or ZERO,
            source=ComponentSource(data.get("source") or ComponentSource.MANUAL.value),
        )


@dataclass(frozen=True)
class Surcharges:
    """Percentages stacked on top of an AHS base price.

    ``pph`` is the labour overhead, ``overhead`` the administrative overhead
    and ``margin`` the contractor margin. They are summed, not compounded.
    """

    pph: Decimal = ZERO
    overhead: Decimal = ZERO
    margin: Decimal = ZERO

    @property
    def total_percentage(self) -> Decimal:
        return self.pph + self.overhead + self.margin

    def to_dict(self) -> dict:
        return {
            "pph": DecimalAdapter.to_string(self.pph),
            "overhead": DecimalAdapter.to_string(self.overhead),
            "margin": DecimalAdapter.to_string(self.margin),
        }

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "Surcharges":
        data = data or {}
        return cls(
            pph=DecimalAdapter.to_decimal(data.get("pph")) or ZERO,
            overhead=DecimalAdapter.to_decimal(data.get("overhead")) or ZERO,
            margin=DecimalAdapter.to_decimal(data.get("margin")) or ZERO,
        )


@dataclass(frozen=True)
class LineItem:
    """A row of a RAB/BQ document.

    Hierarchy is implied by sequence order and ``indent``; the record never
    points at its parent. Only persisted fields live here, the edit-session
    flags (editing, new, deleted, pricing) are tracked by ``EditSession``.
    """

    id: str
    type: ItemType
    indent: int = 0
    description: str = ""
    unit: str = ""
    quantity: Optional[Decimal] = None
    unit_price: Decimal = ZERO
    note: str = ""
    price_source: Optional[PriceSource] = None
    price_breakdown: Tuple[Component, ...] = ()
    surcharges: Surcharges = field(default_factory=Surcharges)

    @property
    def is_category(self) -> bool:
        return self.type is ItemType.CATEGORY

    @property
    def is_work_item(self) -> bool:
        return self.type is ItemType.WORK_ITEM

    @property
    def has_breakdown(self) -> bool:
        return bool(self.price_breakdown)

    @property
    def amount(self) -> Decimal:
        if not self.is_work_item:
            return ZERO
        return (self.quantity or ZERO) * self.unit_price

    def with_changes(self, **changes: Any) -> "LineItem":
        return replace(self, **changes)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "indent": self.indent,
            "description": self.description,
            "unit": self.unit,
            "quantity": DecimalAdapter.to_string(self.quantity),
            "unit_price": DecimalAdapter.to_string(self.unit_price),
            "note": self.note,
            "price_source": self.price_source.value if self.price_source else None,
            "price_breakdown": [c.to_dict() for c in self.price_breakdown],
            "surcharges": self.surcharges.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LineItem":
        item_type = ItemType(data.get("type") or ItemType.WORK_ITEM.value)
        raw_source = data.get("price_source")
        return cls(
            id=str(data["id"]),
            type=item_type,
            indent=max(int(data.get("indent") or 0), 0),
            description=str(data.get("description") or ""),
            unit=str(data.get("unit") or ""),
            quantity=DecimalAdapter.to_decimal(data.get("quantity")),
            unit_price=DecimalAdapter.to_decimal(data.get("unit_price")) or ZERO,
            note=str(data.get("note") or ""),
            price_source=PriceSource(raw_source) if raw_source else None,
            price_breakdown=tuple(Component.from_dict(c) for c in data.get("price_breakdown") or ()),
            surcharges=Surcharges.from_dict(data.get("surcharges")),
        )


def items_to_dicts(items: Iterable[LineItem]) -> list:
    return [item.to_dict() for item in items]


def items_from_dicts(rows: Optional[Iterable[Mapping[str, Any]]]) -> Tuple[LineItem, ...]:
    return tuple(LineItem.from_dict(row) for row in rows or ())


def item_lookup(items: Iterable[LineItem]) -> Dict[str, LineItem]:
    return {item.id: item for item in items}
