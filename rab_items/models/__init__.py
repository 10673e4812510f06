from .line_item import (
    COMPONENT_CATEGORIES,
    DEFAULT_COMPONENT_CATEGORY,
    Component,
    ComponentSource,
    ItemType,
    LineItem,
    PriceSource,
    Surcharges,
    item_lookup,
    items_from_dicts,
    items_to_dicts,
)

__all__ = [
    "COMPONENT_CATEGORIES",
    "DEFAULT_COMPONENT_CATEGORY",
    "Component",
    "ComponentSource",
    "ItemType",
    "LineItem",
    "PriceSource",
    "Surcharges",
    "item_lookup",
    "items_from_dicts",
    "items_to_dicts",
]
