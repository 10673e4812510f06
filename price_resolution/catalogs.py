from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple

from django.utils import timezone

from price_resolution.validators import validate_price_entry, validate_work_entry
from rab_items.models import Component
from rab_items.utils.decimal_adapter import DecimalAdapter

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
WORK_SOURCE_AHS = "AHS"


def catalog_key(name: str) -> str:
    """Catalog names match exactly, ignoring case only."""
    return (name or "").lower()


@dataclass(frozen=True)
class PriceCatalogEntry:
    id: str
    name: str
    category: str
    unit: str
    unit_price: Decimal
    source_note: str = ""
    last_updated: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "unit": self.unit,
            "unit_price": DecimalAdapter.to_string(self.unit_price),
            "source_note": self.source_note,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }


@dataclass(frozen=True)
class WorkCatalogEntry:
    id: str
    name: str
    category: str
    unit: str
    default_price: Decimal
    default_breakdown: Tuple[Component, ...] = ()
    source: str = ""
    last_updated: Optional[datetime] = None

    @property
    def has_breakdown(self) -> bool:
        return bool(self.default_breakdown)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "unit": self.unit,
            "default_price": DecimalAdapter.to_string(self.default_price),
            "default_breakdown": [c.to_dict() for c in self.default_breakdown],
            "source": self.source,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }


class PriceCatalog(Protocol):
    def find(self, name: str) -> Optional[PriceCatalogEntry]:
        ...

    def search_substring(self, fragment: str, limit: Optional[int] = None) -> List[PriceCatalogEntry]:
        ...

    def add(self, payload: Mapping[str, Any]) -> PriceCatalogEntry:
        ...

    def all(self) -> List[PriceCatalogEntry]:
        ...


class WorkCatalog(Protocol):
    def find(self, name: str) -> Optional[WorkCatalogEntry]:
        ...

    def add(self, payload: Mapping[str, Any]) -> WorkCatalogEntry:
        ...

    def all(self) -> List[WorkCatalogEntry]:
        ...


class InMemoryPriceCatalog:
    """Dictionary-backed price catalog for tests and offline use."""

    def __init__(self, entries: Tuple[PriceCatalogEntry, ...] = ()) -> None:
        self._entries: Dict[str, PriceCatalogEntry] = {}
        for entry in entries:
            self._entries[catalog_key(entry.name)] = entry

    def find(self, name: str) -> Optional[PriceCatalogEntry]:
        return self._entries.get(catalog_key(name))

    def search_substring(self, fragment: str, limit: Optional[int] = None) -> List[PriceCatalogEntry]:
        needle = catalog_key((fragment or "").strip())
        if not needle:
            return []
        matches = [e for e in self._entries.values() if needle in catalog_key(e.name)]
        return matches[:limit] if limit else matches

    def add(self, payload: Mapping[str, Any]) -> PriceCatalogEntry:
        cleaned = validate_price_entry(payload, exists=lambda name: self.find(name) is not None)
        entry = PriceCatalogEntry(id=f"price-{uuid.uuid4().hex[:12]}", last_updated=timezone.now(), **cleaned)
        self._entries[catalog_key(entry.name)] = entry
        return entry

    def all(self) -> List[PriceCatalogEntry]:
        return list(self._entries.values())


class InMemoryWorkCatalog:
    def __init__(self, entries: Tuple[WorkCatalogEntry, ...] = (), *, default_category: str = "Sipil") -> None:
        self._entries: Dict[str, WorkCatalogEntry] = {}
        self._default_category = default_category
        for entry in entries:
            self._entries[catalog_key(entry.name)] = entry

    def find(self, name: str) -> Optional[WorkCatalogEntry]:
        return self._entries.get(catalog_key(name))

    def add(self, payload: Mapping[str, Any]) -> WorkCatalogEntry:
        cleaned = validate_work_entry(
            payload,
            exists=lambda name: self.find(name) is not None,
            default_category=self._default_category,
        )
        entry = WorkCatalogEntry(id=f"work-{uuid.uuid4().hex[:12]}", last_updated=timezone.now(), **cleaned)
        self._entries[catalog_key(entry.name)] = entry
        return entry

    def all(self) -> List[WorkCatalogEntry]:
        return list(self._entries.values())


def _price_entry_from_model(row) -> PriceCatalogEntry:
    return PriceCatalogEntry(
        id=str(row.pk),
        name=row.name,
        category=row.category,
        unit=row.unit,
        unit_price=row.unit_price if row.unit_price is not None else ZERO,
        source_note=row.source_note,
        last_updated=row.last_updated,
    )


def _work_entry_from_model(row) -> WorkCatalogEntry:
    return WorkCatalogEntry(
        id=str(row.pk),
        name=row.name,
        category=row.category,
        unit=row.unit,
        default_price=row.default_price if row.default_price is not None else ZERO,
        default_breakdown=tuple(Component.from_dict(c) for c in row.default_breakdown or ()),
        source=row.source,
        last_updated=row.last_updated,
    )


class DjangoPriceCatalog:
    """Price catalog backed by the ``PriceCatalogItem`` table."""

    def __init__(self) -> None:
        from price_resolution.models import PriceCatalogItem

        self.Model = PriceCatalogItem

    def find(self, name: str) -> Optional[PriceCatalogEntry]:
        if not (name or "").strip():
            return None
        row = self.Model.objects.filter(name__iexact=name).order_by("pk").first()
        return _price_entry_from_model(row) if row else None

    def search_substring(self, fragment: str, limit: Optional[int] = None) -> List[PriceCatalogEntry]:
        needle = (fragment or "").strip()
        if not needle:
            return []
        qs = self.Model.objects.filter(name__icontains=needle).order_by("name")
        if limit:
            qs = qs[:limit]
        return [_price_entry_from_model(row) for row in qs]

    def add(self, payload: Mapping[str, Any]) -> PriceCatalogEntry:
        cleaned = validate_price_entry(payload, exists=lambda name: self.find(name) is not None)
        row = self.Model.objects.create(**cleaned)
        logger.info("Price catalog entry created: %s", row.name)
        return _price_entry_from_model(row)

    def all(self) -> List[PriceCatalogEntry]:
        return [_price_entry_from_model(row) for row in self.Model.objects.all()]


class DjangoWorkCatalog:
    """Work catalog backed by the ``WorkCatalogItem`` table."""

    def __init__(self, *, default_category: str = "Sipil") -> None:
        from price_resolution.models import WorkCatalogItem

        self.Model = WorkCatalogItem
        self._default_category = default_category

    def find(self, name: str) -> Optional[WorkCatalogEntry]:
        if not (name or "").strip():
            return None
        row = self.Model.objects.filter(name__iexact=name).order_by("pk").first()
        return _work_entry_from_model(row) if row else None

    def add(self, payload: Mapping[str, Any]) -> WorkCatalogEntry:
        cleaned = validate_work_entry(
            payload,
            exists=lambda name: self.find(name) is not None,
            default_category=self._default_category,
        )
        cleaned["default_breakdown"] = [c.to_dict() for c in cleaned["default_breakdown"]]
        row = self.Model.objects.create(**cleaned)
        logger.info("Work catalog entry created: %s", row.name)
        return _work_entry_from_model(row)

    def all(self) -> List[WorkCatalogEntry]:
        return [_work_entry_from_model(row) for row in self.Model.objects.all()]


def default_price_catalog() -> DjangoPriceCatalog:
    return DjangoPriceCatalog()


def default_work_catalog() -> DjangoWorkCatalog:
    from django.conf import settings

    return DjangoWorkCatalog(default_category=settings.RAB_EDITOR["DEFAULT_WORK_CATALOG_CATEGORY"])
