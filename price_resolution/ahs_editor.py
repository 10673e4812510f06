"""Operations behind the AHS editor: reviewing, pricing and saving a breakdown."""
from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from decimal import Decimal
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Union

from django.core.exceptions import ValidationError

from price_resolution.ahs import AhsCalculator
from price_resolution.catalogs import (
    WORK_SOURCE_AHS,
    PriceCatalog,
    PriceCatalogEntry,
    WorkCatalog,
    WorkCatalogEntry,
)
from price_resolution.generator import BreakdownGenerator, GenerationFailed
from rab_items.models import (
    COMPONENT_CATEGORIES,
    Component,
    ComponentSource,
    DEFAULT_COMPONENT_CATEGORY,
    LineItem,
    PriceSource,
    Surcharges,
)
from rab_items.services.item_store import LineItemStore
from rab_items.services.validation import ErrorCollector, NumericParser

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
MANUAL_EDIT_FIELDS = frozenset({"name", "quantity", "unit", "unit_price"})

ComponentLike = Union[Component, Mapping[str, Any]]


def new_component() -> Component:
    return Component(
        id=f"ahs-new-{uuid.uuid4().hex[:12]}",
        name="",
        category=DEFAULT_COMPONENT_CATEGORY,
        quantity=Decimal("1"),
        unit="",
        unit_price=ZERO,
        source=ComponentSource.MANUAL,
    )


def coerce_components(rows: Iterable[ComponentLike]) -> List[Component]:
    errors = ErrorCollector()
    components: List[Component] = []
    for position, row in enumerate(rows or ()):
        if isinstance(row, Component):
            components.append(row)
            continue
        if not isinstance(row, Mapping):
            errors.add("components", f"Komponen ke-{position + 1} tidak valid.")
            continue
        quantity = NumericParser(errors, "components").parse(row.get("quantity"))
        price = NumericParser(errors, "components").parse(row.get("unit_price"))
        if quantity is not None and quantity < 0:
            errors.add("components", f"Koefisien komponen ke-{position + 1} tidak boleh negatif.")
        if price is not None and price < 0:
            errors.add("components", f"Harga komponen ke-{position + 1} tidak boleh negatif.")
        try:
            source = ComponentSource(row.get("source") or ComponentSource.MANUAL.value)
        except ValueError:
            errors.add("components", f"Sumber komponen ke-{position + 1} tidak dikenal.")
            source = ComponentSource.MANUAL
        components.append(
            Component(
                id=str(row.get("id") or f"ahs-new-{uuid.uuid4().hex[:12]}"),
                name=str(row.get("name") or "").strip(),
                category=str(row.get("category") or DEFAULT_COMPONENT_CATEGORY),
                quantity=quantity or ZERO,
                unit=str(row.get("unit") or "").strip(),
                unit_price=price or ZERO,
                source=source,
            )
        )
    errors.raise_if_any()
    return components


def coerce_surcharges(data: Optional[Union[Surcharges, Mapping[str, Any]]]) -> Surcharges:
    if isinstance(data, Surcharges):
        return data
    data = data or {}
    errors = ErrorCollector()
    values = {name: NumericParser(errors, name).parse(data.get(name)) or ZERO for name in ("pph", "overhead", "margin")}
    for name, value in values.items():
        if value < 0:
            errors.add(name, "Persentase tidak boleh negatif.")
    errors.raise_if_any()
    return Surcharges(**values)


def edit_component(component: Component, **changes: Any) -> Component:
    """Apply a user edit; touching name/quantity/unit/price marks the row manual."""
    unknown = set(changes) - MANUAL_EDIT_FIELDS - {"category"}
    if unknown:
        raise ValidationError({"components": [f"Field komponen tidak dikenal: {', '.join(sorted(unknown))}."]})
    if "category" in changes and changes["category"] not in COMPONENT_CATEGORIES:
        logger.debug("Non-standard component category %r", changes["category"])
    updated = replace(component, **changes)
    if MANUAL_EDIT_FIELDS & set(changes):
        updated = replace(updated, source=ComponentSource.MANUAL)
    return updated


class AhsEditor:
    """Breakdown review for one document: price lookups, save and catalog promotion."""

    def __init__(
        self,
        store: LineItemStore,
        price_catalog: PriceCatalog,
        work_catalog: WorkCatalog,
        generator: Optional[BreakdownGenerator] = None,
        *,
        calculator: Optional[AhsCalculator] = None,
        default_work_category: str = "Sipil",
    ) -> None:
        self.store = store
        self.price_catalog = price_catalog
        self.work_catalog = work_catalog
        self.generator = generator
        self.calculator = calculator or AhsCalculator()
        self.default_work_category = default_work_category

    def suggestions(self, fragment: str, limit: int = 10) -> List[PriceCatalogEntry]:
        return self.price_catalog.search_substring(fragment, limit)

    def lookup_component(self, component: Component) -> Component:
        """Fill unit, price and category from an exact price catalog match."""
        entry = self.price_catalog.find(component.name)
        if entry is None:
            return component
        logger.debug("Price catalog hit for component %r", component.name)
        return replace(
            component,
            name=entry.name,
            unit=entry.unit,
            unit_price=entry.unit_price,
            category=entry.category,
            source=ComponentSource.DATABASE,
        )

    async def lookup_component_with_ai(self, component: Component) -> Component:
        """Ask the AI for a price; the component is only changed when the price is positive."""
        if self.generator is None or not component.name.strip():
            return component
        try:
            estimate = await self.generator.generate_single_price(component.name)
        except GenerationFailed:
            logger.warning("AI price lookup failed for %r", component.name)
            return component
        if estimate.unit_price <= 0:
            return component
        return replace(
            component,
            unit=estimate.unit,
            unit_price=estimate.unit_price,
            category=estimate.category,
            source=ComponentSource.AI,
        )

    def apply_breakdown(
        self,
        item_id: str,
        components: Sequence[ComponentLike],
        surcharges: Optional[Union[Surcharges, Mapping[str, Any]]] = None,
    ) -> LineItem:
        """Store a reviewed breakdown on the item and price it from that breakdown."""
        self.store.ensure_mutable("apply_breakdown")
        item = self.store.require(item_id)
        if not item.is_work_item:
            raise ValidationError({"id": ["AHS hanya dapat diterapkan pada item pekerjaan."]})

        breakdown = tuple(coerce_components(components))
        charges = coerce_surcharges(surcharges)
        total = self.calculator.total(breakdown, charges)
        if total < 0:
            raise ValidationError({"unit_price": ["Harga satuan hasil AHS tidak boleh negatif."]})
        updated = item.with_changes(
            price_breakdown=breakdown,
            surcharges=charges,
            unit_price=total,
            price_source=PriceSource.AHS,
        )
        self.store.write_items([updated])
        logger.info("AHS saved for %r: %d component(s)", item.description, len(breakdown))
        return updated

    def save_components_to_price_catalog(self, components: Iterable[Component]) -> List[PriceCatalogEntry]:
        """Add named, priced components that the price catalog does not know yet."""
        added: List[PriceCatalogEntry] = []
        for component in components:
            if not component.name.strip() or not component.unit.strip() or component.unit_price <= 0:
                continue
            if self.price_catalog.find(component.name) is not None:
                continue
            added.append(
                self.price_catalog.add(
                    {
                        "name": component.name,
                        "category": component.category,
                        "unit": component.unit,
                        "unit_price": component.unit_price,
                        "source_note": f"AHS ({component.source.value})",
                    }
                )
            )
        if added:
            logger.info("%d new component(s) saved to the price catalog", len(added))
        return added

    def promote_to_work_catalog(self, item_id: str) -> Optional[WorkCatalogEntry]:
        """Store the item's breakdown as a reusable work catalog entry.

        Returns ``None`` when an entry with the same name already exists.
        """
        item = self.store.require(item_id)
        if not item.is_work_item or not item.has_breakdown:
            raise ValidationError({"id": ["Item belum memiliki AHS untuk disimpan ke database pekerjaan."]})
        if self.work_catalog.find(item.description) is not None:
            return None
        entry = self.work_catalog.add(
            {
                "name": item.description,
                "category": self.default_work_category,
                "unit": item.unit,
                "default_price": self.calculator.total(item.price_breakdown, item.surcharges),
                "default_breakdown": item.price_breakdown,
                "source": WORK_SOURCE_AHS,
            }
        )
        logger.info("Work item %r promoted to the work catalog", entry.name)
        return entry
