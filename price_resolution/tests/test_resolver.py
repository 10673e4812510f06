import asyncio
from decimal import Decimal
from unittest import IsolatedAsyncioTestCase
from unittest.mock import AsyncMock

from django.core.exceptions import ValidationError

from price_resolution.catalogs import InMemoryWorkCatalog
from price_resolution.generator import GenerationFailed
from price_resolution.resolver import PriceResolver, ResolutionStrategy
from price_resolution.tests.factories import component, work_entry
from rab_items.models import PriceSource, Surcharges
from rab_items.services.item_store import LineItemStore, MutationBlocked
from rab_items.tests.factories import category, work

SURCHARGES = Surcharges(pph=Decimal("5"), overhead=Decimal("3"), margin=Decimal("2"))
BREAKDOWN = (component("Semen", 2, 50000), component("Tukang", 3, 20000))


class PriceResolverTestBase(IsolatedAsyncioTestCase):
    def setUp(self):
        self.catalog = InMemoryWorkCatalog((
            work_entry("Pasang Bata", 150000),
            work_entry("Plester", 40000, breakdown=(component("Semen", 1, 10000),)),
        ))
        self.store = LineItemStore([
            category("a"),
            work("bata", "10", "0", indent=1, description="pasang bata"),
            work("cor", "2", "0", indent=1, description="Cor Beton", price_breakdown=BREAKDOWN, surcharges=SURCHARGES),
            work("plester", "1", "0", indent=1, description="Plester"),
            work("kosong", "1", "0", indent=1, description="Pekerjaan Lain"),
        ])
        self.generator = AsyncMock()
        self.resolver = PriceResolver(self.store, self.catalog, self.generator, timeout=1)


class DatabaseStrategyTests(PriceResolverTestBase):
    async def test_single_match_applies_catalog_price(self):
        result = await self.resolver.resolve_prices("database", ["bata"])
        self.assertTrue(result.is_complete)
        self.assertEqual(result.applied, ["bata"])
        item = self.store.get("bata")
        self.assertEqual(item.unit_price, Decimal("150000"))
        self.assertEqual(item.price_source, PriceSource.DATABASE)

    async def test_any_miss_halts_whole_batch(self):
        before = self.store.items
        result = await self.resolver.resolve_prices(ResolutionStrategy.DATABASE)
        self.assertEqual([u.id for u in result.unresolved], ["cor", "kosong"])
        self.assertEqual(result.applied, [])
        self.assertEqual(result.status, "unresolved")
        self.assertEqual(self.store.items, before)
        self.assertEqual(self.store.session.pricing_loading, set())

    async def test_deleted_items_are_not_targets(self):
        self.store.toggle_delete("cor")
        self.store.toggle_delete("kosong")
        result = await self.resolver.resolve_prices("database")
        self.assertTrue(result.is_complete)
        self.assertEqual(sorted(result.applied), ["bata", "plester"])


class CombinedStrategyTests(PriceResolverTestBase):
    async def test_catalog_wins_over_own_breakdown(self):
        self.catalog.add({"name": "Cor Beton", "default_price": "999"})
        result = await self.resolver.resolve_prices("combined", ["cor"])
        self.assertTrue(result.is_complete)
        item = self.store.get("cor")
        self.assertEqual(item.unit_price, Decimal("999"))
        self.assertEqual(item.price_source, PriceSource.DATABASE)

    async def test_falls_back_to_own_breakdown(self):
        result = await self.resolver.resolve_prices("combined", ["bata", "cor"])
        self.assertTrue(result.is_complete)
        self.assertEqual(self.store.get("cor").unit_price, Decimal("176000"))
        self.assertEqual(self.store.get("cor").price_source, PriceSource.AHS)
        self.assertEqual(self.store.get("bata").price_source, PriceSource.DATABASE)

    async def test_neither_catalog_nor_breakdown_is_unresolved(self):
        result = await self.resolver.resolve_prices("combined")
        self.assertEqual([u.description for u in result.unresolved], ["Pekerjaan Lain"])


class AhsStrategyTests(PriceResolverTestBase):
    async def test_catalog_breakdown_preferred_over_item_breakdown(self):
        result = await self.resolver.resolve_prices("ahs", ["plester", "cor"])
        self.assertTrue(result.is_complete)
        self.assertEqual(self.store.get("plester").unit_price, Decimal("10000"))
        self.assertEqual(self.store.get("cor").unit_price, Decimal("176000"))

    async def test_explicit_ids_do_not_generate(self):
        result = await self.resolver.resolve_prices("ahs", ["kosong"])
        self.assertEqual([u.id for u in result.unresolved], ["kosong"])
        self.generator.generate_breakdown.assert_not_awaited()

    async def test_bulk_generates_missing_breakdowns(self):
        async def generate(description):
            if description == "pasang bata":
                return [component("Bata", 70, 1000)]
            raise GenerationFailed("boom")

        self.generator.generate_breakdown.side_effect = generate
        result = await self.resolver.resolve_prices("ahs")

        bata = self.store.get("bata")
        self.assertEqual(bata.unit_price, Decimal("70000"))
        self.assertEqual(bata.price_source, PriceSource.AHS)
        self.assertEqual(len(bata.price_breakdown), 1)
        self.assertEqual(result.generation_failures, ["Pekerjaan Lain"])
        self.assertEqual([u.id for u in result.unresolved], ["kosong"])
        self.assertEqual(sorted(result.applied), ["bata", "cor", "plester"])
        self.assertEqual(self.store.get("kosong").unit_price, Decimal("0"))
        self.assertEqual(self.store.session.pricing_loading, set())

    async def test_generator_errors_and_empty_results_do_not_abort(self):
        async def generate(description):
            if description == "pasang bata":
                raise RuntimeError("network down")
            return []

        self.generator.generate_breakdown.side_effect = generate
        result = await self.resolver.resolve_prices("ahs")
        self.assertEqual(sorted(result.generation_failures), ["Pekerjaan Lain", "pasang bata"])
        self.assertEqual(sorted(result.applied), ["cor", "plester"])

    async def test_negative_generated_components_are_not_priced(self):
        async def generate(description):
            if description == "pasang bata":
                return [component("Bata", 1, -5000)]
            return [component("Semen", 2, 1000), component("Diskon", -1, 500)]

        self.generator.generate_breakdown.side_effect = generate
        result = await self.resolver.resolve_prices("ahs")

        self.assertIn("pasang bata", result.generation_failures)
        self.assertIn("bata", [u.id for u in result.unresolved])
        self.assertNotIn("bata", result.applied)
        self.assertEqual(self.store.get("bata").unit_price, Decimal("0"))
        self.assertEqual(self.store.get("bata").price_source, PriceSource.MANUAL)

        kosong = self.store.get("kosong")
        self.assertEqual([c.name for c in kosong.price_breakdown], ["Semen"])
        self.assertEqual(kosong.unit_price, Decimal("2000"))
        for item_id in result.applied:
            self.assertGreaterEqual(self.store.get(item_id).unit_price, 0)

    async def test_generation_timeout_counts_as_failure(self):
        async def slow(description):
            await asyncio.sleep(5)
            return [component("Bata", 1, 1)]

        self.generator.generate_breakdown.side_effect = slow
        self.resolver.timeout = 0.01
        result = await self.resolver.resolve_prices("ahs")
        self.assertIn("pasang bata", result.generation_failures)
        self.assertEqual(self.store.session.pricing_loading, set())

    async def test_blank_descriptions_are_not_sent_to_generator(self):
        self.store.update_field("kosong", "description", "   ")
        self.generator.generate_breakdown.return_value = []
        await self.resolver.resolve_prices("ahs")
        awaited = [call.args[0] for call in self.generator.generate_breakdown.await_args_list]
        self.assertEqual(awaited, ["pasang bata"])


class LocalPriceSourceTests(PriceResolverTestBase):
    async def test_generated_breakdown_is_returned_for_review(self):
        self.generator.generate_breakdown.return_value = [component("Bata", 70, 1000)]
        before = self.store.get("kosong")
        result = await self.resolver.apply_local_price_source("kosong", "ahs")
        self.assertEqual(result.status, "review")
        self.assertEqual(result.generated_breakdown[0].name, "Bata")
        self.assertEqual(self.store.get("kosong"), before)
        self.assertFalse(self.store.session.is_pricing_loading("kosong"))

    async def test_existing_breakdown_is_applied(self):
        result = await self.resolver.apply_local_price_source("cor", "ahs")
        self.assertEqual(result.applied, ["cor"])
        self.generator.generate_breakdown.assert_not_awaited()

    async def test_failed_generation_is_reported(self):
        self.generator.generate_breakdown.return_value = []
        result = await self.resolver.apply_local_price_source("kosong", "ahs")
        self.assertEqual(result.status, "unresolved")
        self.assertEqual(result.generation_failures, ["Pekerjaan Lain"])

    async def test_database_delegates_to_batch(self):
        result = await self.resolver.apply_local_price_source("bata", "database")
        self.assertEqual(self.store.get("bata").unit_price, Decimal("150000"))
        self.assertEqual(result.applied, ["bata"])


class GuardAndValidationTests(PriceResolverTestBase):
    async def test_manual_strategy_rejected(self):
        with self.assertRaises(ValidationError):
            await self.resolver.resolve_prices("manual")

    async def test_locked_store_blocks_resolution(self):
        self.store.set_guard(lambda: "Dokumen terkunci.")
        before = self.store.items
        with self.assertRaises(MutationBlocked):
            await self.resolver.resolve_prices("database", ["bata"])
        self.assertEqual(self.store.items, before)
