from decimal import Decimal
from io import BytesIO
from unittest.mock import patch

from django.core.files.uploadedfile import SimpleUploadedFile
from django.test import SimpleTestCase
from openpyxl import Workbook

from rab_documents.services.kinds import DocumentKind
from rab_documents.services.spreadsheet_import import (
    ImportRejected,
    SpreadsheetImporter,
    UnsupportedFileError,
    find_header_row,
    import_spreadsheet,
)
from rab_documents.services.template import build_template
from rab_items.models import ItemType, PriceSource
from rab_items.services.item_store import LineItemStore, MutationBlocked
from rab_items.tests.factories import work

RAB_HEADER = ["Uraian Pekerjaan", "Satuan", "Volume", "Harga Satuan (Rp)", "Keterangan"]
XLSX = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def make_xlsx(rows, name="rab.xlsx"):
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(list(row))
    bio = BytesIO()
    wb.save(bio)
    return SimpleUploadedFile(name, bio.getvalue(), content_type=XLSX)


class HeaderDetectionTests(SimpleTestCase):
    def test_header_found_below_preamble(self):
        rows = [["Judul"], [], RAB_HEADER, ["PEKERJAAN TANAH"]]
        self.assertEqual(find_header_row(rows, RAB_HEADER), 2)

    def test_partial_header_is_not_accepted(self):
        rows = [["Uraian Pekerjaan", "Satuan", "Volume"]]
        self.assertIsNone(find_header_row(rows, RAB_HEADER))


class SpreadsheetImporterTests(SimpleTestCase):
    def test_rab_template_round_trip(self):
        upload = SimpleUploadedFile("Template_RAB.xlsx", build_template(DocumentKind.RAB), content_type=XLSX)
        summary = SpreadsheetImporter(DocumentKind.RAB).read(upload)

        self.assertEqual(summary.categories, 2)
        self.assertEqual(summary.work_items, 3)
        types = [item.type for item in summary.items]
        self.assertEqual(
            types,
            [ItemType.CATEGORY, ItemType.WORK_ITEM, ItemType.CATEGORY, ItemType.WORK_ITEM, ItemType.WORK_ITEM],
        )
        beton = summary.items[4]
        self.assertEqual(beton.description, "Pekerjaan Struktur Beton Bertulang")
        self.assertEqual(beton.unit, "m3")
        self.assertEqual(beton.quantity, Decimal("150.5"))
        self.assertEqual(beton.unit_price, Decimal("4500000"))
        self.assertEqual(beton.price_source, PriceSource.MANUAL)
        self.assertEqual(summary.items[0].note, "Ini adalah contoh KATEGORI")

    def test_bq_template_round_trip(self):
        upload = SimpleUploadedFile("Template_BQ.xlsx", build_template(DocumentKind.BQ), content_type=XLSX)
        summary = SpreadsheetImporter(DocumentKind.BQ).read(upload)
        self.assertEqual((summary.categories, summary.work_items), (2, 3))
        self.assertEqual(summary.items[1].unit_price, Decimal("0"))
        self.assertEqual(summary.items[3].quantity, Decimal("100"))

    def test_blank_descriptions_are_dropped(self):
        upload = make_xlsx([
            RAB_HEADER,
            ["PEKERJAAN TANAH", None, None, None, None],
            [None, "m3", 5, 1000, "tanpa uraian"],
            ["Galian Tanah", "m3", 12, "1.285.000", None],
        ])
        summary = SpreadsheetImporter(DocumentKind.RAB).read(upload)
        self.assertEqual([item.description for item in summary.items], ["PEKERJAAN TANAH", "Galian Tanah"])
        self.assertEqual(summary.items[1].unit_price, Decimal("1285000"))
        self.assertEqual(summary.header_row, 1)

    def test_upper_case_row_with_amount_is_work_item(self):
        upload = make_xlsx([RAB_HEADER, ["MOBILISASI", "ls", 1, 2000000, None]])
        summary = SpreadsheetImporter(DocumentKind.RAB).read(upload)
        self.assertTrue(summary.items[0].is_work_item)

    def test_missing_header_is_rejected(self):
        upload = make_xlsx([["Uraian", "Satuan"], ["Galian", "m3"]])
        with patch("rab_documents.services.spreadsheet_import.record_import_rejected") as recorded:
            with self.assertRaises(ImportRejected) as ctx:
                SpreadsheetImporter(DocumentKind.RAB).read(upload)
        self.assertIn("file", ctx.exception.message_dict)
        recorded.assert_called_once()

    def test_rab_header_does_not_match_bq_kind(self):
        upload = make_xlsx([RAB_HEADER, ["Galian", "m3", 1, 100, None]])
        with self.assertRaises(ImportRejected):
            SpreadsheetImporter(DocumentKind.BQ).read(upload)

    def test_invalid_number_rejects_whole_file(self):
        upload = make_xlsx([
            RAB_HEADER,
            ["Galian", "m3", "sepuluh", 100, None],
            ["Urugan", "m3", 2, 100, None],
        ])
        with self.assertRaises(ImportRejected) as ctx:
            SpreadsheetImporter(DocumentKind.RAB).read(upload)
        self.assertEqual(ctx.exception.message_dict["rows"], ["Baris 2: kolom Volume harus berupa angka."])

    def test_unsupported_extension(self):
        upload = SimpleUploadedFile("rab.csv", b"a,b,c", content_type="text/csv")
        with self.assertRaises(UnsupportedFileError):
            SpreadsheetImporter(DocumentKind.RAB).read(upload)

    def test_corrupt_workbook(self):
        upload = SimpleUploadedFile("rab.xlsx", b"not a workbook", content_type=XLSX)
        with self.assertRaises(ImportRejected) as ctx:
            SpreadsheetImporter(DocumentKind.RAB).read(upload)
        self.assertIn("file", ctx.exception.message_dict)

    def test_xls_reader(self):
        try:
            import xlwt
        except ImportError:
            self.skipTest("xlwt not installed")
        wb = xlwt.Workbook()
        ws = wb.add_sheet("RAB")
        rows = [RAB_HEADER, ["PEKERJAAN TANAH"], ["Galian Tanah", "m3", 12.0, 85000.0, ""]]
        for r, row in enumerate(rows):
            for c, value in enumerate(row):
                ws.write(r, c, value)
        bio = BytesIO()
        wb.save(bio)
        upload = SimpleUploadedFile("rab.xls", bio.getvalue(), content_type="application/vnd.ms-excel")
        summary = SpreadsheetImporter(DocumentKind.RAB).read(upload)
        self.assertEqual((summary.categories, summary.work_items), (1, 1))


class ImportIntoStoreTests(SimpleTestCase):
    def test_import_replaces_items_and_clears_session(self):
        store = LineItemStore([work("old", "1", "10")])
        store.toggle_delete("old")
        upload = make_xlsx([RAB_HEADER, ["Galian Tanah", "m3", 12, 85000, None]])

        import_spreadsheet(store, upload, DocumentKind.RAB)
        self.assertEqual([item.description for item in store.items], ["Galian Tanah"])
        self.assertEqual(store.session.deleted, set())
        self.assertTrue(store.dirty)

    def test_rejected_import_leaves_store_untouched(self):
        store = LineItemStore([work("old", "1", "10")])
        upload = make_xlsx([["tanpa header"]])
        with self.assertRaises(ImportRejected):
            import_spreadsheet(store, upload, DocumentKind.RAB)
        self.assertEqual([item.id for item in store.items], ["old"])
        self.assertFalse(store.dirty)

    def test_import_blocked_when_read_only(self):
        store = LineItemStore([work("old")], guard=lambda: "Dokumen terkunci.")
        upload = make_xlsx([RAB_HEADER])
        with self.assertRaises(MutationBlocked):
            import_spreadsheet(store, upload, DocumentKind.RAB)
