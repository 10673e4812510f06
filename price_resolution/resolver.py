from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import sentry_sdk
from asgiref.sync import sync_to_async
from django.core.exceptions import ValidationError

from price_resolution.ahs import AhsCalculator
from price_resolution.catalogs import WorkCatalog, WorkCatalogEntry
from price_resolution.generator import (
    BreakdownGenerator,
    GenerationFailed,
    generate_breakdown_with_timeout,
)
from price_resolution.monitoring import (
    breadcrumb_prices_applied,
    record_generation_failures,
    record_unresolved,
)
from rab_items.models import Component, LineItem, PriceSource
from rab_items.services.item_store import LineItemStore

logger = logging.getLogger(__name__)


class ResolutionStrategy(str, Enum):
    DATABASE = "database"
    AHS = "ahs"
    COMBINED = "combined"

    @classmethod
    def parse(cls, value) -> "ResolutionStrategy":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValidationError(
                {"strategy": [f"Sumber harga '{value}' tidak dapat diterapkan otomatis; gunakan database, ahs atau combined."]}
            ) from None


@dataclass(frozen=True)
class UnresolvedItem:
    id: str
    description: str

    def to_dict(self) -> dict:
        return {"id": self.id, "description": self.description}


@dataclass
class ResolutionResult:
    """Outcome of a resolution run. Missing data is reported here, never raised."""

    strategy: ResolutionStrategy
    applied: List[str] = field(default_factory=list)
    unresolved: List[UnresolvedItem] = field(default_factory=list)
    generation_failures: List[str] = field(default_factory=list)
    generated_breakdown: Tuple[Component, ...] = ()

    @property
    def is_complete(self) -> bool:
        return not self.unresolved

    @property
    def needs_review(self) -> bool:
        return bool(self.generated_breakdown)

    @property
    def status(self) -> str:
        if self.needs_review:
            return "review"
        return "resolved" if self.is_complete else "unresolved"

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "strategy": self.strategy.value,
            "applied": list(self.applied),
            "unresolved": [u.to_dict() for u in self.unresolved],
            "generation_failures": list(self.generation_failures),
            "generated_breakdown": [c.to_dict() for c in self.generated_breakdown],
        }


class PriceResolver:
    """Resolve work item unit prices from the work catalog or AHS breakdowns.

    Catalog reads are pushed through ``sync_to_async`` so ORM-backed catalogs
    can be used from the async entry points.
    """

    def __init__(
        self,
        store: LineItemStore,
        work_catalog: WorkCatalog,
        generator: Optional[BreakdownGenerator] = None,
        *,
        timeout: Optional[float] = None,
        calculator: Optional[AhsCalculator] = None,
    ) -> None:
        self.store = store
        self.work_catalog = work_catalog
        self.generator = generator
        self.timeout = timeout
        self.calculator = calculator or AhsCalculator()

    # ------------------------------------------------------------ public API

    async def resolve_prices(
        self,
        strategy,
        item_ids: Optional[Iterable[str]] = None,
    ) -> ResolutionResult:
        strategy = ResolutionStrategy.parse(strategy)
        self.store.ensure_mutable("resolve_prices")
        scope_ids = list(item_ids) if item_ids is not None else None
        targets = self._targets(scope_ids)
        result = ResolutionResult(strategy=strategy)
        if not targets:
            return result

        with sentry_sdk.start_span(op="price_resolution", name=f"resolve_{strategy.value}"):
            entries = await self._match_catalog(targets)
            if strategy is ResolutionStrategy.AHS and scope_ids is None:
                await self._resolve_ahs_bulk(targets, entries, result)
            else:
                self._resolve_batch(strategy, targets, entries, result)

        self._report(result)
        return result

    async def apply_local_price_source(self, item_id: str, strategy) -> ResolutionResult:
        """Single-row resolution from the price-source dropdown.

        For ``ahs`` on an item with no breakdown anywhere, a breakdown is
        generated and returned for review instead of being applied.
        """
        strategy = ResolutionStrategy.parse(strategy)
        self.store.ensure_mutable("apply_local_price_source")
        if strategy is not ResolutionStrategy.AHS:
            return await self.resolve_prices(strategy, [item_id])

        item = self.store.get(item_id)
        if item is None or not item.is_work_item:
            return ResolutionResult(strategy=strategy)
        entries = await self._match_catalog([item])
        if self._breakdown_for(item, entries.get(item.id)):
            return await self.resolve_prices(strategy, [item_id])

        result = ResolutionResult(strategy=strategy)
        self.store.set_pricing_loading([item_id], True)
        try:
            components = await self._generate_one(item)
        finally:
            self.store.set_pricing_loading([item_id], False)

        if components:
            result.generated_breakdown = components
        else:
            result.unresolved.append(UnresolvedItem(item.id, item.description))
            result.generation_failures.append(item.description)
        self._report(result)
        return result

    # --------------------------------------------------------------- phases

    def _targets(self, item_ids: Optional[Sequence[str]]) -> List[LineItem]:
        work_items = self.store.active_work_items()
        if item_ids is None:
            return list(work_items)
        wanted = set(item_ids)
        return [item for item in work_items if item.id in wanted]

    async def _match_catalog(self, items: Sequence[LineItem]) -> Dict[str, Optional[WorkCatalogEntry]]:
        def lookup() -> Dict[str, Optional[WorkCatalogEntry]]:
            return {item.id: self.work_catalog.find(item.description) for item in items}

        return await sync_to_async(lookup)()

    def _resolve_batch(
        self,
        strategy: ResolutionStrategy,
        targets: List[LineItem],
        entries: Dict[str, Optional[WorkCatalogEntry]],
        result: ResolutionResult,
    ) -> None:
        ids = [item.id for item in targets]
        self.store.set_pricing_loading(ids, True)
        try:
            missing = [item for item in targets if not self._resolvable(strategy, item, entries.get(item.id))]
            if missing:
                result.unresolved.extend(UnresolvedItem(item.id, item.description) for item in missing)
                return

            updates = [self._priced(strategy, item, entries.get(item.id)) for item in targets]
            self.store.write_items(updates)
            result.applied.extend(ids)
        finally:
            self.store.set_pricing_loading(ids, False)

    async def _resolve_ahs_bulk(
        self,
        targets: List[LineItem],
        entries: Dict[str, Optional[WorkCatalogEntry]],
        result: ResolutionResult,
    ) -> None:
        needing = [
            item
            for item in targets
            if not self._breakdown_for(item, entries.get(item.id)) and item.description.strip()
        ]
        if needing:
            generated = await self._generate_all(needing)
            updates = []
            for item in needing:
                components = generated.get(item.id) or ()
                if components:
                    updates.append(self.store.require(item.id).with_changes(price_breakdown=components))
                else:
                    result.generation_failures.append(item.description)
            if updates:
                self.store.write_items(updates)

        priced = []
        for target in targets:
            item = self.store.require(target.id)
            breakdown = self._breakdown_for(item, entries.get(item.id))
            if not breakdown:
                result.unresolved.append(UnresolvedItem(item.id, item.description))
                continue
            priced.append(self._apply_breakdown_price(item, breakdown))
        if priced:
            self.store.write_items(priced)
            result.applied.extend(item.id for item in priced)

    async def _generate_all(self, items: List[LineItem]) -> Dict[str, Tuple[Component, ...]]:
        ids = [item.id for item in items]
        self.store.set_pricing_loading(ids, True)
        try:
            outcomes = await asyncio.gather(*(self._generate_one(item) for item in items))
        finally:
            self.store.set_pricing_loading(ids, False)
        return dict(zip(ids, outcomes))

    async def _generate_one(self, item: LineItem) -> Tuple[Component, ...]:
        if self.generator is None:
            logger.warning("No breakdown generator configured, cannot generate AHS for %r", item.description)
            return ()
        with sentry_sdk.start_span(op="ahs_generation", name=item.description[:60]):
            try:
                return await generate_breakdown_with_timeout(self.generator, item.description, self.timeout)
            except GenerationFailed:
                logger.warning("AHS generation failed for %r", item.description)
                return ()
            except Exception:
                logger.exception("Breakdown generator raised for %r", item.description)
                return ()

    # -------------------------------------------------------------- pricing

    @staticmethod
    def _breakdown_for(item: LineItem, entry: Optional[WorkCatalogEntry]) -> Tuple[Component, ...]:
        if entry is not None and entry.has_breakdown:
            return entry.default_breakdown
        return item.price_breakdown

    def _resolvable(self, strategy: ResolutionStrategy, item: LineItem, entry: Optional[WorkCatalogEntry]) -> bool:
        if strategy is ResolutionStrategy.DATABASE:
            return entry is not None
        if strategy is ResolutionStrategy.COMBINED:
            return entry is not None or item.has_breakdown
        return bool(self._breakdown_for(item, entry))

    def _priced(self, strategy: ResolutionStrategy, item: LineItem, entry: Optional[WorkCatalogEntry]) -> LineItem:
        if strategy is ResolutionStrategy.DATABASE:
            return self._apply_catalog_price(item, entry)
        if strategy is ResolutionStrategy.COMBINED:
            if entry is not None:
                return self._apply_catalog_price(item, entry)
            return self._apply_breakdown_price(item, item.price_breakdown)
        return self._apply_breakdown_price(item, self._breakdown_for(item, entry))

    @staticmethod
    def _apply_catalog_price(item: LineItem, entry: WorkCatalogEntry) -> LineItem:
        return item.with_changes(unit_price=entry.default_price, price_source=PriceSource.DATABASE)

    def _apply_breakdown_price(self, item: LineItem, breakdown: Sequence[Component]) -> LineItem:
        total = self.calculator.total(breakdown, item.surcharges)
        return item.with_changes(unit_price=total, price_source=PriceSource.AHS)

    def _report(self, result: ResolutionResult) -> None:
        strategy = result.strategy.value
        if result.generation_failures:
            logger.warning("AHS generation failed for: %s", ", ".join(result.generation_failures))
            record_generation_failures(result.generation_failures)
        if result.unresolved:
            logger.warning(
                "%d item(s) unresolved with %s: %s",
                len(result.unresolved),
                strategy,
                ", ".join(u.description or u.id for u in result.unresolved),
            )
            record_unresolved(strategy, result.unresolved)
        if result.applied:
            logger.info("Applied %s prices to %d item(s)", strategy, len(result.applied))
            breadcrumb_prices_applied(strategy, len(result.applied))
