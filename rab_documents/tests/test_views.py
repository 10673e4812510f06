from decimal import Decimal
from io import BytesIO
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import SimpleTestCase
from openpyxl import Workbook
from rest_framework.test import APIRequestFactory

from price_resolution.catalogs import InMemoryPriceCatalog, InMemoryWorkCatalog
from price_resolution.tests.factories import component, price_entry, work_entry
from rab_documents import views
from rab_documents.repository import InMemoryDocumentRepository
from rab_documents.services.lifecycle import DocumentEditor
from rab_documents.tests.factories import sample_items

BASE = "/api/documents/"


class DocumentViewTestBase(SimpleTestCase):
    def setUp(self):
        self.factory = APIRequestFactory()
        self.repository = InMemoryDocumentRepository()
        self.prices = InMemoryPriceCatalog((price_entry("Semen Portland", 65000),))
        self.works = InMemoryWorkCatalog((work_entry("Pekerjaan w1", 150),))
        self.generator = AsyncMock()
        for name, value in (
            ("default_repository", self.repository),
            ("default_price_catalog", self.prices),
            ("default_work_catalog", self.works),
            ("default_generator", self.generator),
        ):
            patcher = patch.object(views, name, return_value=value)
            patcher.start()
            self.addCleanup(patcher.stop)

        self.document = self.repository.create({"kind": "RAB", "project_name": "Gedung Kantor", "empr": "EMPR-001"})
        self.document.items = sample_items()
        self.repository.save(self.document)
        self.doc_id = self.document.id

    def stored(self):
        return self.repository.get(self.doc_id)

    def post(self, view, suffix, data=None, **kwargs):
        request = self.factory.post(f"{BASE}{self.doc_id}/{suffix}", data or {}, format="json")
        return view(request, document_id=self.doc_id, **kwargs)


class DocumentCrudViewTests(DocumentViewTestBase):
    def test_create_document(self):
        request = self.factory.post(BASE, {"kind": "BQ", "project_name": "Gudang"}, format="json")
        response = views.document_list_view(request)
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["kind"], "BQ")
        self.assertEqual(response.data["view"]["rows"], [])

    def test_create_requires_project_name(self):
        response = views.document_list_view(self.factory.post(BASE, {"kind": "RAB"}, format="json"))
        self.assertEqual(response.status_code, 400)
        self.assertIn("project_name", response.data)

    def test_list_documents(self):
        response = views.document_list_view(self.factory.get(BASE))
        self.assertEqual([row["id"] for row in response.data["items"]], [self.doc_id])
        self.assertNotIn("items", response.data["items"][0])

    def test_detail(self):
        response = views.document_detail_view(self.factory.get(f"{BASE}{self.doc_id}/"), document_id=self.doc_id)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["view"]["grand_total"], "1550")
        self.assertEqual(response.data["view"]["rows"][1]["number"], "I.1")

    def test_unknown_document(self):
        response = views.document_detail_view(self.factory.get(f"{BASE}doc-x/"), document_id="doc-x")
        self.assertEqual(response.status_code, 404)

    def test_patch_header(self):
        request = self.factory.patch(f"{BASE}{self.doc_id}/", {"pic": "Sari"}, format="json")
        response = views.document_detail_view(request, document_id=self.doc_id)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.stored().pic, "Sari")

    def test_template_download(self):
        response = views.template_view(self.factory.get(f"{BASE}template/bq/"), kind="bq")
        self.assertEqual(response.status_code, 200)
        self.assertIn('filename="Template_BQ.xlsx"', response["Content-Disposition"])

    def test_template_unknown_kind(self):
        response = views.template_view(self.factory.get(f"{BASE}template/spk/"), kind="spk")
        self.assertEqual(response.status_code, 400)


class RowEditingViewTests(DocumentViewTestBase):
    def test_insert_item_keeps_unsaved_state(self):
        response = self.post(views.insert_item_view, "items/", {"type": "category"})
        self.assertEqual(response.status_code, 201)
        self.assertTrue(response.data["document"]["dirty"])
        stored = self.stored()
        self.assertEqual(len(stored.items), 5)
        self.assertEqual(len(stored.working_state["items"]), 6)

    def test_insert_unknown_type(self):
        response = self.post(views.insert_item_view, "items/", {"type": "header"})
        self.assertEqual(response.status_code, 400)

    def test_cell_input_with_formula(self):
        response = self.post(views.cell_input_view, "items/w1/cell/", {"field": "quantity", "raw": "=2*3"}, item_id="w1")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["item"]["quantity"], "6")

    def test_invalid_cell_input_changes_nothing(self):
        response = self.post(views.cell_input_view, "items/w1/cell/", {"field": "quantity", "raw": "abc"}, item_id="w1")
        self.assertEqual(response.status_code, 400)
        self.assertIsNone(self.stored().working_state)

    def test_move_block(self):
        response = self.post(views.move_item_view, "items/move/", {"index": 3, "direction": "up", "with_children": True})
        self.assertTrue(response.data["moved"])
        ids = [row["id"] for row in response.data["document"]["view"]["rows"]]
        self.assertEqual(ids, ["b", "w3", "a", "w1", "w2"])

    def test_save_commits_deletions(self):
        self.post(views.toggle_delete_view, "items/w2/toggle-delete/", item_id="w2")
        response = self.post(views.save_view, "save/")
        self.assertEqual(response.status_code, 200)
        stored = self.stored()
        self.assertEqual([item.id for item in stored.items], ["a", "w1", "b", "w3"])
        self.assertIsNone(stored.working_state)


class LifecycleViewTests(DocumentViewTestBase):
    def test_lock_and_blocked_edit(self):
        self.assertEqual(self.post(views.lock_view, "lock/").status_code, 200)
        response = self.post(views.insert_item_view, "items/", {"type": "item"})
        self.assertEqual(response.status_code, 409)
        stored = self.stored()
        self.assertTrue(stored.is_locked)
        self.assertIsNone(stored.working_state)

    def test_lock_with_unsaved_changes(self):
        self.post(views.insert_item_view, "items/", {"type": "item"})
        response = self.post(views.lock_view, "lock/")
        self.assertEqual(response.status_code, 409)
        self.assertFalse(self.stored().is_locked)

    def test_start_revision(self):
        self.post(views.lock_view, "lock/")
        response = self.post(views.start_revision_view, "revisions/")
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.data["revision_label"], "Revisi 1")
        self.assertEqual(len(response.data["revisions"]), 1)

        request = self.factory.get(f"{BASE}{self.doc_id}/", {"revision": "0"})
        detail = views.document_detail_view(request, document_id=self.doc_id)
        self.assertTrue(detail.data["view"]["read_only"])
        self.assertEqual(detail.data["view"]["revision"], 0)

    def test_request_approval(self):
        response = self.post(views.request_approval_view, "approval/", {"sent_to": "pm@example.com"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.stored().status, "Menunggu Approval")


class PricingViewTests(DocumentViewTestBase):
    def test_resolve_database_prices_unresolved(self):
        response = self.post(views.resolve_prices_view, "resolve/", {"strategy": "database"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["status"], "unresolved")
        self.assertEqual(self.stored().items[1].unit_price, Decimal("100"))

    def test_resolve_selected_item(self):
        response = self.post(views.resolve_prices_view, "resolve/", {"strategy": "database", "item_ids": ["w1"]})
        self.assertEqual(response.data["applied"], ["w1"])
        state = self.stored().working_state
        self.assertEqual(state["items"][1]["unit_price"], "150")

    def test_resolve_rejects_item_ids_that_are_not_a_list(self):
        for item_ids in ("w1", ["w1", 2], {"id": "w1"}):
            with self.subTest(item_ids=item_ids):
                response = self.post(views.resolve_prices_view, "resolve/", {"strategy": "database", "item_ids": item_ids})
                self.assertEqual(response.status_code, 400)
                self.assertIn("item_ids", response.data)
        self.assertIsNone(self.stored().working_state)

    def test_lock_during_generation_returns_conflict(self):
        repository = self.repository

        async def generate(description):
            stored = repository.get(self.doc_id)
            if not stored.is_locked:
                DocumentEditor(stored).lock()
                repository.save(stored)
            return [component("Semen", 1, 100)]

        self.generator.generate_breakdown.side_effect = generate
        response = self.post(views.resolve_prices_view, "resolve/", {"strategy": "ahs"})
        self.assertEqual(response.status_code, 409)
        stored = self.stored()
        self.assertTrue(stored.is_locked)
        self.assertIsNone(stored.working_state)

    def test_resolve_unknown_strategy(self):
        response = self.post(views.resolve_prices_view, "resolve/", {"strategy": "tebak"})
        self.assertEqual(response.status_code, 400)

    def test_background_resolution_is_queued(self):
        with patch.object(views, "resolve_document_prices") as task:
            task.delay.return_value = SimpleNamespace(id="task-1")
            response = self.post(views.resolve_prices_background_view, "resolve/background/", {"strategy": "ahs"})
        self.assertEqual(response.status_code, 202)
        self.assertEqual(response.data, {"task_id": "task-1", "status": "queued"})
        task.delay.assert_called_once_with(self.doc_id, "ahs", None)

    def test_background_resolution_rejects_string_item_ids(self):
        with patch.object(views, "resolve_document_prices") as task:
            response = self.post(views.resolve_prices_background_view, "resolve/background/", {"strategy": "ahs", "item_ids": "w1"})
        self.assertEqual(response.status_code, 400)
        task.delay.assert_not_called()

    def test_background_resolution_on_locked_document(self):
        self.post(views.lock_view, "lock/")
        with patch.object(views, "resolve_document_prices") as task:
            response = self.post(views.resolve_prices_background_view, "resolve/background/", {"strategy": "ahs"})
        self.assertEqual(response.status_code, 409)
        task.delay.assert_not_called()

    def test_component_lookup(self):
        response = self.post(views.component_lookup_view, "ahs/lookup/", {"name": "semen portland"})
        self.assertTrue(response.data["found"])
        self.assertEqual(response.data["component"]["unit_price"], "65000")


class ImportExportViewTests(DocumentViewTestBase):
    def _upload(self):
        wb = Workbook()
        ws = wb.active
        ws.append(["Uraian Pekerjaan", "Satuan", "Volume", "Harga Satuan (Rp)", "Keterangan"])
        ws.append(["PEKERJAAN TANAH", None, None, None, None])
        ws.append(["Galian Tanah", "m3", 12, 85000, None])
        bio = BytesIO()
        wb.save(bio)
        return SimpleUploadedFile(
            "rab.xlsx", bio.getvalue(), content_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
        )

    def test_import(self):
        request = self.factory.post(f"{BASE}{self.doc_id}/import/", {"file": self._upload()}, format="multipart")
        response = views.import_view(request, document_id=self.doc_id)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.data["import"]["work_items"], 1)
        self.assertEqual(len(self.stored().working_state["items"]), 2)

    def test_import_without_file(self):
        request = self.factory.post(f"{BASE}{self.doc_id}/import/", {}, format="multipart")
        response = views.import_view(request, document_id=self.doc_id)
        self.assertEqual(response.status_code, 400)

    def test_export_pdf(self):
        request = self.factory.get(f"{BASE}{self.doc_id}/export/pdf/")
        response = views.export_view(request, document_id=self.doc_id, fmt="pdf")
        self.assertEqual(response["Content-Type"], "application/pdf")
        self.assertTrue(response.content.startswith(b"%PDF"))
        self.assertIn("RAB-EMPR-001-Gedung_Kantor.pdf", response["Content-Disposition"])

    def test_export_xlsx(self):
        request = self.factory.get(f"{BASE}{self.doc_id}/export/xlsx/", {"show_deleted": "1"})
        response = views.export_view(request, document_id=self.doc_id, fmt="xlsx")
        self.assertEqual(response.status_code, 200)

    def test_export_unknown_format(self):
        request = self.factory.get(f"{BASE}{self.doc_id}/export/csv/")
        response = views.export_view(request, document_id=self.doc_id, fmt="csv")
        self.assertEqual(response.status_code, 404)
