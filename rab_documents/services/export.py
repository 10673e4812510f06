"""Spreadsheet and PDF rendering of the active document view.

Rows come from ``DocumentEditor.view`` so an export always matches what the
editor shows: the live items or a historical revision, with or without the
soft-deleted rows.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from io import BytesIO
from typing import List, Optional, Tuple
from xml.sax.saxutils import escape

from django.conf import settings

from rab_documents.services.formatting import format_money, format_volume
from rab_documents.services.kinds import DocumentKind
from rab_documents.services.lifecycle import DocumentEditor

logger = logging.getLogger(__name__)

NEW_PREFIX = "(BARU) "
DELETED_PREFIX = "(DIHAPUS) "

XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
PDF_CONTENT_TYPE = "application/pdf"


@dataclass(frozen=True)
class ExportRow:
    number: str
    description: str
    unit: str
    quantity: Optional[Decimal]
    unit_price: Optional[Decimal]
    amount: Optional[Decimal]
    note: str
    indent: int = 0
    is_category: bool = False
    is_new: bool = False
    is_deleted: bool = False

    def formatted(self, kind: DocumentKind) -> List[str]:
        if self.is_category:
            cells = [self.number, self.description, "", ""]
            priced = ["", format_money(self.amount)]
        else:
            cells = [self.number, self.description, self.unit, format_volume(self.quantity)]
            priced = [format_money(self.unit_price), format_money(self.amount)]
        if kind.has_unit_price:
            cells.extend(priced)
        cells.append(self.note)
        return cells

    def values(self, kind: DocumentKind) -> list:
        """Raw cell values for a spreadsheet; numbers stay numeric."""
        if self.is_category:
            cells = [self.number, self.description, None, None]
            priced = [None, self.amount]
        else:
            cells = [self.number, self.description, self.unit, self.quantity]
            priced = [self.unit_price, self.amount]
        if kind.has_unit_price:
            cells.extend(priced)
        cells.append(self.note)
        return cells


@dataclass(frozen=True)
class ExportDocument:
    kind: DocumentKind
    title: str
    project_name: str
    info_line: str
    rows: Tuple[ExportRow, ...]
    grand_total: Decimal
    footer_lines: Tuple[str, ...]
    filename_stem: str

    def filename(self, extension: str) -> str:
        return f"{self.filename_stem}.{extension}"


def _labelled(description: str, is_new: bool, is_deleted: bool) -> str:
    if is_deleted:
        return f"{DELETED_PREFIX}{description}"
    if is_new:
        return f"{NEW_PREFIX}{description}"
    return description


def build_export_rows(editor: DocumentEditor, show_deleted: bool = False) -> Tuple[ExportRow, ...]:
    rows = []
    for row in editor.view(show_deleted).rows:
        item = row.item
        is_new = row.flags.get("is_new", False)
        is_deleted = row.flags.get("is_deleted", False)
        rows.append(
            ExportRow(
                number=row.number,
                description=_labelled(item.description, is_new, is_deleted),
                unit="" if item.is_category else item.unit,
                quantity=None if item.is_category else item.quantity,
                unit_price=None if item.is_category else item.unit_price,
                amount=row.subtotal if item.is_category else item.amount,
                note=item.note,
                indent=item.indent,
                is_category=item.is_category,
                is_new=is_new,
                is_deleted=is_deleted,
            )
        )
    return tuple(rows)


def _footer_lines(editor: DocumentEditor) -> Tuple[str, ...]:
    document = editor.document
    kind = document.kind.value
    issuer = settings.RAB_EDITOR.get("DOCUMENT_ISSUER", "")
    lines = [
        f"{kind} ini dibuat oleh {document.creator_name} dan disetujui secara elektronik oleh {document.approver_name}.",
        f"Dokumen {kind} ini diterbitkan oleh sistem dan tidak membutuhkan tanda tangan dari Pejabat {issuer}.",
        "",
        f"Lama Pekerjaan: {document.work_duration_days or '-'} hari kalender.",
    ]
    if document.kind.has_unit_price:
        lines.append(
            "RAB tidak memperhitungkan kondisi khusus seperti: stock barang kontraktor, lokasi pekerjaan yang sama, "
            "vendor penuh, volume kecil, atau durasi tidak normal."
        )
    return tuple(lines)


def build_export(editor: DocumentEditor, show_deleted: bool = False) -> ExportDocument:
    document = editor.document
    project_slug = "_".join(document.project_name.split())
    return ExportDocument(
        kind=document.kind,
        title=document.kind.title,
        project_name=document.project_name,
        info_line=f"eMPR: {document.empr}  |  Revisi: {document.revision_label}",
        rows=build_export_rows(editor, show_deleted),
        grand_total=editor.grand_total(),
        footer_lines=_footer_lines(editor),
        filename_stem=f"{document.kind.value}-{document.empr}-{project_slug}",
    )


# --------------------------------------------------------------------- xlsx


def render_xlsx(export: ExportDocument) -> bytes:
    from openpyxl import Workbook
    from openpyxl.styles import Alignment, Font, PatternFill
    from openpyxl.utils import get_column_letter

    headers = export.kind.export_headers
    wb = Workbook()
    ws = wb.active
    ws.title = export.kind.value

    ws.append([export.title])
    ws.append([export.project_name])
    ws.append([export.info_line])
    ws.append([])
    ws.append(list(headers))
    last_column = get_column_letter(len(headers))
    for row_idx in (1, 2, 3):
        ws.merge_cells(f"A{row_idx}:{last_column}{row_idx}")
        ws.cell(row=row_idx, column=1).alignment = Alignment(horizontal="center")
    ws["A1"].font = Font(bold=True, size=14)

    header_fill = PatternFill("solid", fgColor="F3F4F6")
    for cell in ws[5]:
        cell.font = Font(bold=True)
        cell.fill = header_fill
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)

    category_fill = PatternFill("solid", fgColor="E5E7EB")
    new_fill = PatternFill("solid", fgColor="DCFCE7")
    deleted_font = Font(color="DC2626", strike=True)
    quantity_col = headers.index("VOL") + 1
    money_cols = {i + 1 for i, name in enumerate(headers) if "(Rp)" in name}

    for row in export.rows:
        ws.append(row.values(export.kind))
        current = ws.max_row
        ws.cell(row=current, column=2).alignment = Alignment(indent=row.indent, wrap_text=True)
        ws.cell(row=current, column=quantity_col).number_format = "#,##0.00"
        for col in money_cols:
            ws.cell(row=current, column=col).number_format = "#,##0"
        for cell in ws[current]:
            if row.is_category:
                cell.font = Font(bold=True)
                cell.fill = category_fill
            if row.is_new and not row.is_deleted:
                cell.fill = new_fill
            if row.is_deleted:
                cell.font = deleted_font

    if export.kind.has_unit_price:
        ws.append([])
        total_row = ["" for _ in headers]
        total_row[-3] = "TOTAL"
        total_row[-2] = export.grand_total
        ws.append(total_row)
        ws.cell(row=ws.max_row, column=len(headers) - 2).font = Font(bold=True)
        total_cell = ws.cell(row=ws.max_row, column=len(headers) - 1)
        total_cell.font = Font(bold=True, color="E4002B")
        total_cell.number_format = "#,##0"

    ws.append([])
    for line in export.footer_lines:
        ws.append([line])

    widths = {"NO": 10, "URAIAN PEKERJAAN": 60, "SAT": 10, "VOL": 15, "KETERANGAN": 40}
    for position, name in enumerate(headers, start=1):
        ws.column_dimensions[get_column_letter(position)].width = widths.get(name, 20)

    bio = BytesIO()
    wb.save(bio)
    logger.info("Exported %s rows to xlsx: %s", len(export.rows), export.filename("xlsx"))
    return bio.getvalue()


# ---------------------------------------------------------------------- pdf


def render_pdf(export: ExportDocument) -> bytes:
    from reportlab.lib import colors
    from reportlab.lib.enums import TA_CENTER
    from reportlab.lib.pagesizes import A4
    from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
    from reportlab.lib.units import mm
    from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

    bio = BytesIO()
    margin = 14 * mm
    doc = SimpleDocTemplate(
        bio,
        pagesize=A4,
        rightMargin=margin,
        leftMargin=margin,
        topMargin=15 * mm,
        bottomMargin=15 * mm,
        title=export.title,
    )
    styles = getSampleStyleSheet()
    title_style = ParagraphStyle("RabTitle", parent=styles["Heading1"], fontSize=16, alignment=TA_CENTER, spaceAfter=4)
    project_style = ParagraphStyle("RabProject", parent=styles["Normal"], fontSize=11, alignment=TA_CENTER, spaceAfter=2)
    info_style = ParagraphStyle("RabInfo", parent=styles["Normal"], fontSize=8, alignment=TA_CENTER, spaceAfter=8)
    cell_style = ParagraphStyle("RabCell", parent=styles["Normal"], fontSize=7.5, leading=9)
    footer_style = ParagraphStyle("RabFooter", parent=styles["Normal"], fontSize=7.5, leading=10)
    total_style = ParagraphStyle("RabTotal", parent=styles["Normal"], fontSize=9, alignment=2, fontName="Helvetica-Bold")

    header_bg = colors.Color(243 / 255, 244 / 255, 246 / 255)
    category_bg = colors.Color(229 / 255, 231 / 255, 235 / 255)
    new_bg = colors.Color(220 / 255, 252 / 255, 231 / 255)
    deleted_fg = colors.Color(220 / 255, 38 / 255, 38 / 255)
    border = colors.Color(203 / 255, 213 / 255, 225 / 255)

    story = [
        Paragraph(escape(export.title), title_style),
        Paragraph(escape(export.project_name), project_style),
        Paragraph(escape(export.info_line), info_style),
    ]

    description_col = 1
    data = [list(export.kind.export_headers)]
    table_style = [
        ("BACKGROUND", (0, 0), (-1, 0), header_bg),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 7.5),
        ("ALIGN", (0, 0), (-1, 0), "CENTER"),
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("GRID", (0, 0), (-1, -1), 0.25, border),
        ("ALIGN", (0, 1), (0, -1), "CENTER"),
        ("ALIGN", (2, 1), (2, -1), "CENTER"),
        ("ALIGN", (3, 1), (-2, -1), "RIGHT"),
    ]
    for position, row in enumerate(export.rows, start=1):
        cells = row.formatted(export.kind)
        text = escape(cells[description_col])
        if row.is_category:
            text = f"<b>{text}</b>"
        if row.is_deleted:
            text = f"<strike>{text}</strike>"
        indented = ParagraphStyle(
            f"RabCellIndent{row.indent}",
            parent=cell_style,
            leftIndent=row.indent * 4 * mm,
            textColor=deleted_fg if row.is_deleted else colors.black,
        )
        cells[description_col] = Paragraph(text, indented)
        cells[-1] = Paragraph(escape(cells[-1]), cell_style)
        data.append(cells)

        if row.is_category:
            table_style.append(("BACKGROUND", (0, position), (-1, position), category_bg))
            table_style.append(("FONTNAME", (0, position), (-1, position), "Helvetica-Bold"))
        if row.is_new and not row.is_deleted:
            table_style.append(("BACKGROUND", (0, position), (-1, position), new_bg))
        if row.is_deleted:
            table_style.append(("TEXTCOLOR", (0, position), (-1, position), deleted_fg))

    if export.kind.has_unit_price:
        widths = [15 * mm, 58 * mm, 12 * mm, 15 * mm, 25 * mm, 25 * mm, 32 * mm]
    else:
        widths = [15 * mm, 90 * mm, 15 * mm, 20 * mm, 42 * mm]
    table = Table(data, colWidths=widths, repeatRows=1)
    table.setStyle(TableStyle(table_style))
    story.append(table)

    if export.kind.has_unit_price:
        story.append(Spacer(1, 6 * mm))
        story.append(
            Paragraph(
                f'TOTAL&nbsp;&nbsp;&nbsp;&nbsp;<font color="#E4002B">Rp {format_money(export.grand_total)}</font>',
                total_style,
            )
        )

    story.append(Spacer(1, 8 * mm))
    for line in export.footer_lines:
        story.append(Paragraph(escape(line) or "&nbsp;", footer_style))

    def _page_number(canvas, pdf):
        canvas.saveState()
        canvas.setFont("Helvetica", 8)
        canvas.setFillColor(colors.grey)
        canvas.drawRightString(A4[0] - margin, 10 * mm, f"Halaman {pdf.page}")
        canvas.restoreState()

    doc.build(story, onFirstPage=_page_number, onLaterPages=_page_number)
    logger.info("Exported %s rows to pdf: %s", len(export.rows), export.filename("pdf"))
    return bio.getvalue()
