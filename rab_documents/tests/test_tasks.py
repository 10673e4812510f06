from decimal import Decimal
from unittest.mock import AsyncMock, patch

from django.test import SimpleTestCase

from price_resolution.catalogs import InMemoryWorkCatalog
from price_resolution.tests.factories import component, work_entry
from rab_documents.repository import DocumentChanged, InMemoryDocumentRepository
from rab_documents.services.document import STATUS_FINAL
from rab_documents.services.lifecycle import DocumentEditor
from rab_documents.services.pricing import resolve_document
from rab_documents.tasks import resolve_document_prices
from rab_documents.tests.factories import sample_items
from rab_items.models import PriceSource


class PricingTestBase(SimpleTestCase):
    def setUp(self):
        self.repository = InMemoryDocumentRepository()
        document = self.repository.create({"kind": "RAB", "project_name": "Gedung Kantor"})
        document.items = sample_items()
        self.repository.save(document)
        self.doc_id = document.id
        self.works = InMemoryWorkCatalog((
            work_entry("Pekerjaan w1", 150),
            work_entry("Pekerjaan w2", 200),
            work_entry("Pekerjaan w3", 300),
        ))
        self.generator = AsyncMock()


class ResolveDocumentTests(PricingTestBase):
    def test_database_resolution_is_persisted_as_unsaved_work(self):
        result = resolve_document(self.repository, self.doc_id, "database", work_catalog=self.works, generator=self.generator)
        self.assertEqual(result.status, "resolved")

        stored = self.repository.get(self.doc_id)
        self.assertEqual(stored.items[1].unit_price, Decimal("100"))
        self.assertTrue(stored.working_state["dirty"])
        prices = [row["unit_price"] for row in stored.working_state["items"] if row["type"] != "category"]
        self.assertEqual(prices, ["150", "200", "300"])

    def test_unresolved_batch_changes_nothing(self):
        works = InMemoryWorkCatalog((work_entry("Pekerjaan w1", 150),))
        result = resolve_document(self.repository, self.doc_id, "database", work_catalog=works, generator=self.generator)
        self.assertEqual(result.status, "unresolved")
        self.assertIsNone(self.repository.get(self.doc_id).working_state)


    def test_lock_during_generation_is_not_overwritten(self):
        async def generate(description):
            stored = self.repository.get(self.doc_id)
            if not stored.is_locked:
                DocumentEditor(stored).lock()
                self.repository.save(stored)
            return [component("Semen", 1, 100)]

        self.generator.generate_breakdown.side_effect = generate
        with self.assertRaises(DocumentChanged):
            resolve_document(self.repository, self.doc_id, "ahs", work_catalog=InMemoryWorkCatalog(), generator=self.generator)

        stored = self.repository.get(self.doc_id)
        self.assertTrue(stored.is_locked)
        self.assertEqual(stored.status, STATUS_FINAL)
        self.assertIsNone(stored.working_state)
        self.assertEqual(stored.items[1].unit_price, Decimal("100"))

    def test_save_in_between_is_not_overwritten(self):
        async def generate(description):
            stored = self.repository.get(self.doc_id)
            if stored.pic != "Sari":
                stored.pic = "Sari"
                self.repository.save(stored)
            return [component("Semen", 1, 100)]

        self.generator.generate_breakdown.side_effect = generate
        with self.assertRaises(DocumentChanged):
            resolve_document(self.repository, self.doc_id, "ahs", work_catalog=InMemoryWorkCatalog(), generator=self.generator)
        self.assertEqual(self.repository.get(self.doc_id).pic, "Sari")
        self.assertIsNone(self.repository.get(self.doc_id).working_state)


class ResolveDocumentPricesTaskTests(PricingTestBase):
    def setUp(self):
        super().setUp()
        for target, value in (
            ("rab_documents.tasks.default_repository", self.repository),
            ("rab_documents.services.pricing.default_work_catalog", self.works),
            ("rab_documents.services.pricing.default_generator", self.generator),
        ):
            patcher = patch(target, return_value=value)
            patcher.start()
            self.addCleanup(patcher.stop)

    def test_task_returns_result_with_document_id(self):
        outcome = resolve_document_prices.apply(args=[self.doc_id, "combined", ["w1"]]).get()
        self.assertEqual(outcome["document_id"], self.doc_id)
        self.assertEqual(outcome["status"], "resolved")
        self.assertEqual(outcome["applied"], ["w1"])

        row = self.repository.get(self.doc_id).working_state["items"][1]
        self.assertEqual(row["unit_price"], "150")
        self.assertEqual(row["price_source"], PriceSource.DATABASE.value)
