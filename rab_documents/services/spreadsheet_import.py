from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Tuple

import sentry_sdk
from django.core.exceptions import ValidationError

from price_resolution.monitoring import record_import_rejected
from rab_documents.services.kinds import (
    DESCRIPTION_HEADER,
    NOTE_HEADER,
    QUANTITY_HEADER,
    UNIT_HEADER,
    UNIT_PRICE_HEADER,
    DocumentKind,
)
from rab_items.models import ItemType, LineItem, PriceSource
from rab_items.services.cell_input import parse_quantity, parse_unit_price
from rab_items.services.item_store import LineItemStore, new_item_id
from rab_items.services.validation import ErrorCollector

logger = logging.getLogger(__name__)


class ImportRejected(ValidationError):
    """The spreadsheet cannot be imported; the document is left untouched."""


class UnsupportedFileError(ImportRejected):
    pass


class _BaseReader:
    def iter_rows(self, file) -> Iterable[List]:
        raise NotImplementedError


class _XLSXReader(_BaseReader):
    def iter_rows(self, file) -> Iterable[List]:
        from openpyxl import load_workbook

        pos = file.tell()
        file.seek(0)
        wb = load_workbook(filename=file, data_only=True, read_only=True)
        try:
            ws = wb.worksheets[0]
            for row in ws.iter_rows(values_only=True):
                yield list(row)
        finally:
            wb.close()
            file.seek(pos)


class _XLSReader(_BaseReader):
    def iter_rows(self, file) -> Iterable[List]:
        import xlrd

        pos = file.tell()
        file.seek(0)
        data = file.read()
        wb = xlrd.open_workbook(file_contents=data)
        sh = wb.sheet_by_index(0)
        for r in range(sh.nrows):
            yield [sh.cell_value(r, c) for c in range(sh.ncols)]
        file.seek(pos)


def _ext_of(file) -> str:
    name = (getattr(file, "name", "") or "").lower()
    if name.endswith(".xlsx"):
        return "xlsx"
    if name.endswith(".xls"):
        return "xls"
    return ""


def make_reader(file) -> _BaseReader:
    ext = _ext_of(file)
    if ext == "xlsx":
        return _XLSXReader()
    if ext == "xls":
        return _XLSReader()
    raise UnsupportedFileError({"file": ["Hanya file .xls dan .xlsx yang didukung."]})


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value).strip()


def find_header_row(rows: Sequence[Sequence[Any]], headers: Sequence[str]) -> Optional[int]:
    """Index of the first row whose leading cells are exactly ``headers``."""
    width = len(headers)
    for index, row in enumerate(rows):
        cells = [_text(cell) for cell in list(row)[:width]]
        if cells == list(headers):
            return index
    return None


@dataclass(frozen=True)
class ImportSummary:
    filename: str
    header_row: int
    items: Tuple[LineItem, ...]

    @property
    def categories(self) -> int:
        return sum(1 for item in self.items if item.is_category)

    @property
    def work_items(self) -> int:
        return sum(1 for item in self.items if item.is_work_item)

    def to_dict(self) -> dict:
        return {
            "filename": self.filename,
            "header_row": self.header_row,
            "categories": self.categories,
            "work_items": self.work_items,
        }


class SpreadsheetImporter:
    """Turns a RAB/BQ template sheet into line items.

    The exact header row of the document kind may sit anywhere in the first
    sheet; every row below it with a non-blank description becomes an item.
    """

    def __init__(self, kind: DocumentKind) -> None:
        self.kind = kind
        self.headers = kind.import_headers

    def read(self, file) -> ImportSummary:
        filename = getattr(file, "name", "") or ""
        logger.info("Starting import: file=%s kind=%s", filename, self.kind.value)
        try:
            with sentry_sdk.start_span(op="spreadsheet_import", name=filename):
                summary = self._read(file, filename)
        except ImportRejected as exc:
            logger.warning("Import rejected: file=%s errors=%s", filename, exc.message_dict)
            record_import_rejected(filename, exc.message_dict)
            raise
        logger.info(
            "Import parsed: file=%s categories=%d work_items=%d",
            filename,
            summary.categories,
            summary.work_items,
        )
        return summary

    def _read(self, file, filename: str) -> ImportSummary:
        reader = make_reader(file)
        try:
            rows = list(reader.iter_rows(file))
        except ImportRejected:
            raise
        except Exception as exc:
            logger.exception("Unreadable spreadsheet: file=%s", filename)
            raise ImportRejected({"file": ["File Excel kosong atau tidak valid."]}) from exc

        if not rows:
            raise ImportRejected({"file": ["File Excel kosong atau tidak valid."]})

        header_index = find_header_row(rows, self.headers)
        if header_index is None:
            raise ImportRejected(
                {"file": [f"Format template tidak sesuai. Header tidak ditemukan: {' | '.join(self.headers)}."]}
            )

        errors = ErrorCollector()
        items: List[LineItem] = []
        for offset, row in enumerate(rows[header_index + 1:], start=header_index + 2):
            item = self._row_to_item(list(row), offset, errors)
            if item is not None:
                items.append(item)
        if errors.data():
            raise ImportRejected(errors.data())
        return ImportSummary(filename=filename, header_row=header_index + 1, items=tuple(items))

    def _cell(self, row: List, header: str) -> Any:
        column = self.kind.column_of(header)
        if column is None or column >= len(row):
            return None
        return row[column]

    def _row_to_item(self, row: List, row_number: int, errors: ErrorCollector) -> Optional[LineItem]:
        description = _text(self._cell(row, DESCRIPTION_HEADER))
        if not description:
            return None

        try:
            quantity = parse_quantity(self._cell(row, QUANTITY_HEADER))
        except ValidationError:
            errors.add("rows", f"Baris {row_number}: kolom {QUANTITY_HEADER} harus berupa angka.")
            return None
        unit_price = None
        if self.kind.has_unit_price:
            try:
                unit_price = parse_unit_price(self._cell(row, UNIT_PRICE_HEADER))
            except ValidationError:
                errors.add("rows", f"Baris {row_number}: kolom {UNIT_PRICE_HEADER} harus berupa angka positif.")
                return None

        note = _text(self._cell(row, NOTE_HEADER))
        if self.kind.is_category_row(description, quantity, unit_price):
            return LineItem(id=new_item_id(ItemType.CATEGORY), type=ItemType.CATEGORY, description=description, note=note)

        item = LineItem(
            id=new_item_id(ItemType.WORK_ITEM),
            type=ItemType.WORK_ITEM,
            description=description,
            unit=_text(self._cell(row, UNIT_HEADER)),
            quantity=quantity,
            note=note,
            price_source=PriceSource.MANUAL,
        )
        if unit_price is not None:
            item = item.with_changes(unit_price=unit_price)
        return item


def import_spreadsheet(store: LineItemStore, file, kind: DocumentKind) -> ImportSummary:
    """Replace the store's sequence with the rows of ``file``; nothing changes on rejection."""
    store.ensure_mutable("import_spreadsheet")
    summary = SpreadsheetImporter(kind).read(file)
    store.replace_all(summary.items)
    logger.info("Import applied: file=%s items=%d", summary.filename, len(summary.items))
    return summary
