from __future__ import annotations

from enum import Enum
from typing import Optional, Tuple

from django.core.exceptions import ValidationError

DESCRIPTION_HEADER = "Uraian Pekerjaan"
UNIT_HEADER = "Satuan"
QUANTITY_HEADER = "Volume"
UNIT_PRICE_HEADER = "Harga Satuan (Rp)"
NOTE_HEADER = "Keterangan"


class DocumentKind(str, Enum):
    """RAB documents carry unit prices; BQ documents only quantities."""

    RAB = "RAB"
    BQ = "BQ"

    @classmethod
    def parse(cls, value) -> "DocumentKind":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value or "").strip().upper())
        except ValueError:
            raise ValidationError({"kind": [f"Jenis dokumen '{value}' tidak dikenal, gunakan RAB atau BQ."]}) from None

    @property
    def has_unit_price(self) -> bool:
        return self is DocumentKind.RAB

    @property
    def title(self) -> str:
        return "RENCANA ANGGARAN BIAYA" if self is DocumentKind.RAB else "BILL OF QUANTITY (BQ)"

    @property
    def import_headers(self) -> Tuple[str, ...]:
        if self.has_unit_price:
            return (DESCRIPTION_HEADER, UNIT_HEADER, QUANTITY_HEADER, UNIT_PRICE_HEADER, NOTE_HEADER)
        return (DESCRIPTION_HEADER, UNIT_HEADER, QUANTITY_HEADER, NOTE_HEADER)

    @property
    def export_headers(self) -> Tuple[str, ...]:
        if self.has_unit_price:
            return ("NO", "URAIAN PEKERJAAN", "SAT", "VOL", "HARGA SATUAN (Rp)", "JUMLAH (Rp)", "KETERANGAN")
        return ("NO", "URAIAN PEKERJAAN", "SAT", "VOL", "KETERANGAN")

    def is_category_row(self, description: str, quantity, unit_price=None) -> bool:
        """An imported row is a category when it has no amounts and an upper-case description."""
        text = (description or "").strip()
        if not text or text != text.upper():
            return False
        if quantity:
            return False
        if self.has_unit_price and unit_price:
            return False
        return True

    def column_of(self, header: str) -> Optional[int]:
        try:
            return self.import_headers.index(header)
        except ValueError:
            return None
