from __future__ import annotations

from io import BytesIO
from typing import List, Tuple

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

from rab_documents.services.kinds import DocumentKind

_COLUMN_WIDTHS = {
    "Uraian Pekerjaan": 60,
    "Satuan": 10,
    "Volume": 15,
    "Harga Satuan (Rp)": 20,
    "Keterangan": 40,
}


def _instructions(kind: DocumentKind) -> List[str]:
    if kind.has_unit_price:
        lines = [
            "PETUNJUK PENGISIAN TEMPLATE RAB",
            '1. KATEGORI: Tulis dengan HURUF BESAR pada kolom "Uraian Pekerjaan". '
            'Biarkan kolom "Volume" dan "Harga Satuan" kosong.',
            "2. ITEM PEKERJAAN: Tulis dengan format normal di bawah kategori yang sesuai.",
            '3. ANGKA: Pastikan kolom "Volume" dan "Harga Satuan" hanya berisi angka '
            "(gunakan titik . untuk desimal jika perlu).",
        ]
    else:
        lines = [
            "PETUNJUK PENGISIAN TEMPLATE BQ",
            '1. KATEGORI: Tulis dengan HURUF BESAR pada kolom "Uraian Pekerjaan".',
            "2. ITEM PEKERJAAN: Tulis dengan format normal di bawah kategori yang sesuai.",
        ]
    header_row = len(lines) + 3
    lines.append(f"{len(lines)}. Jangan mengubah atau menghapus baris header di bawah ini (baris {header_row}).")
    return lines


def _examples(kind: DocumentKind) -> List[Tuple]:
    if kind.has_unit_price:
        return [
            ("PEKERJAAN PERSIAPAN", None, None, None, "Ini adalah contoh KATEGORI"),
            ("Pembersihan Lokasi dan Pematokan", "Ls", 1, 5000000, "Contoh item pekerjaan"),
            ("PEKERJAAN STRUKTUR", None, None, None, "Contoh KATEGORI lainnya"),
            ("Pekerjaan Pondasi Tiang Pancang", "m3", 100, 1200000, "Beton K-225"),
            ("Pekerjaan Struktur Beton Bertulang", "m3", 150.5, 4500000, "Beton K-300"),
        ]
    return [
        ("PEKERJAAN PERSIAPAN", None, None, "Ini adalah contoh KATEGORI"),
        ("Pembersihan Lokasi dan Pematokan", "Ls", 1, "Contoh item pekerjaan"),
        ("PEKERJAAN STRUKTUR", None, None, "Contoh KATEGORI lainnya"),
        ("Pekerjaan Pondasi Tiang Pancang", "m3", 100, "Beton K-225"),
        ("Pekerjaan Struktur Beton Bertulang", "m3", 150.5, "Beton K-300"),
    ]


def template_filename(kind: DocumentKind) -> str:
    return f"Template_{kind.value}.xlsx"


def build_template(kind: DocumentKind) -> bytes:
    """Import template: instructions, one blank row, the exact header row, then examples."""
    headers = kind.import_headers
    wb = Workbook()
    ws = wb.active
    ws.title = f"Template {kind.value}"

    instructions = _instructions(kind)
    for line in instructions:
        ws.append([line])
    ws.append([])
    ws.append(list(headers))
    for example in _examples(kind):
        ws.append(list(example))

    ws.merge_cells(start_row=1, start_column=1, end_row=1, end_column=len(headers))
    ws["A1"].font = Font(bold=True)
    for cell in ws[len(instructions) + 2]:
        cell.font = Font(bold=True)
    for position, name in enumerate(headers, start=1):
        ws.column_dimensions[get_column_letter(position)].width = _COLUMN_WIDTHS.get(name, 15)

    bio = BytesIO()
    wb.save(bio)
    return bio.getvalue()
