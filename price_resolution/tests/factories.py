from decimal import Decimal

from price_resolution.catalogs import PriceCatalogEntry, WorkCatalogEntry
from rab_items.models import Component, ComponentSource


def component(name, quantity, price, unit="unit", category="Material", source=ComponentSource.MANUAL):
    return Component(
        id=f"c-{name}",
        name=name,
        category=category,
        quantity=Decimal(str(quantity)),
        unit=unit,
        unit_price=Decimal(str(price)),
        source=source,
    )


def work_entry(name, price, breakdown=()):
    return WorkCatalogEntry(
        id=f"w-{name}",
        name=name,
        category="Sipil",
        unit="m2",
        default_price=Decimal(str(price)),
        default_breakdown=tuple(breakdown),
    )


def price_entry(name, price, unit="sak", category="Material"):
    return PriceCatalogEntry(
        id=f"p-{name}",
        name=name,
        category=category,
        unit=unit,
        unit_price=Decimal(str(price)),
    )
