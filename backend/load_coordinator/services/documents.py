"""Shipping document rendering: loading docs PDF, bill of lading PDF, confirmed CSV."""
from __future__ import annotations

import csv
from datetime import date
from pathlib import Path
from typing import List
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_LEFT
from reportlab.lib.pagesizes import landscape, letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from load_coordinator.core.logging import logger
from load_coordinator.models.documents import BillOfLadingDocument, LoadingDocument
from load_coordinator.models.loads import DocumentReceipt, LoadDetailRecord


CONFIRMED_CSV_HEADER = [
    "Load ID",
    "Line",
    "Item Description",
    "Qty Ordered",
    "Qty Shipped",
    "Status",
    "Markoff Reason",
    "Heat Number",
]

HEADER_BACKGROUND = colors.HexColor("#1e3a5f")
GRID_COLOR = colors.HexColor("#e2e8f0")


def _fmt_number(value: float | None) -> str:
    if value is None:
        return ""
    return f"{value:g}"


def _safe_filename_part(value: str) -> str:
    return "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in value) or "load"


class DocumentService:
    """Renders documents into a directory and returns a receipt per file."""

    def __init__(self, output_dir: str | Path) -> None:
        self._output_dir = Path(output_dir)
        self._output_dir.mkdir(parents=True, exist_ok=True)
        self.styles = getSampleStyleSheet()
        self.title_style = ParagraphStyle(
            "DocTitle",
            parent=self.styles["Heading1"],
            fontSize=16,
            textColor=HEADER_BACKGROUND,
            spaceAfter=12,
            alignment=TA_LEFT,
            fontName="Helvetica-Bold",
        )
        self.meta_style = ParagraphStyle(
            "DocMeta",
            parent=self.styles["Normal"],
            fontSize=11,
            leading=15,
        )

    @property
    def output_dir(self) -> Path:
        return self._output_dir

    def _table_style(self) -> TableStyle:
        return TableStyle([
            ("BACKGROUND", (0, 0), (-1, 0), HEADER_BACKGROUND),
            ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
            ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
            ("FONTSIZE", (0, 0), (-1, -1), 9),
            ("TOPPADDING", (0, 0), (-1, -1), 4),
            ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
            ("GRID", (0, 0), (-1, -1), 0.5, GRID_COLOR),
        ])

    def render_loading_docs(self, document: LoadingDocument) -> DocumentReceipt:
        filename = f"Loading_Docs_{_safe_filename_part(document.load_id)}.pdf"
        path = self._output_dir / filename
        doc = SimpleDocTemplate(
            str(path),
            pagesize=letter,
            rightMargin=40,
            leftMargin=40,
            topMargin=40,
            bottomMargin=40,
        )

        story = [
            Paragraph("LOADING DOCUMENTS", self.title_style),
            Paragraph(f"Load ID: {escape(document.load_id)}", self.meta_style),
            Paragraph(f"Trailer: {escape(document.trailer_no or 'TBD')}", self.meta_style),
            Paragraph(f"Date: {date.today().isoformat()}", self.meta_style),
            Spacer(1, 14),
        ]

        rows: List[List[str]] = [["Line", "Description", "Heat #", "Qty Ordered", "Status"]]
        for line in document.lines:
            rows.append([
                str(line.line),
                line.item_desc[:30],
                line.heat_number,
                _fmt_number(line.qty_ordered),
                line.status_code.replace("_", " "),
            ])
            if line.markoff_reason:
                rows.append(["", f"Reason: {line.markoff_reason}", "", "", ""])
        # repeatRows re-draws the header on every page.
        story.append(Table(rows, colWidths=[40, 220, 90, 80, 80], repeatRows=1, style=self._table_style()))

        doc.build(story)
        logger.info("Loading documents rendered", load_id=document.load_id, path=str(path), lines=len(document.lines))
        return DocumentReceipt(
            load_id=document.load_id,
            document_type="loading_docs",
            filename=filename,
            path=str(path),
            media_type="application/pdf",
        )

    def render_bill_of_lading(self, document: BillOfLadingDocument) -> DocumentReceipt:
        filename = f"BOL_{_safe_filename_part(document.load_id)}.pdf"
        path = self._output_dir / filename
        doc = SimpleDocTemplate(
            str(path),
            pagesize=landscape(letter),
            rightMargin=40,
            leftMargin=40,
            topMargin=40,
            bottomMargin=40,
        )

        story = [
            Paragraph("BILL OF LADING", self.title_style),
            Table(
                [[
                    f"Load ID: {document.load_id}",
                    f"Driver: {document.driver_name or 'TBD'}",
                    f"Trailer: {document.trailer_no}",
                ]],
                colWidths=[220, 220, 220],
                style=TableStyle([("FONTSIZE", (0, 0), (-1, -1), 11)]),
            ),
            Paragraph(f"Date: {date.today().isoformat()}", self.meta_style),
            Spacer(1, 14),
        ]

        rows: List[List[str]] = [["Stop", "Customer", "Address", "Miles", "Weight"]]
        for stop in document.stops:
            rows.append([
                str(stop.seq_no),
                stop.customer_name[:25],
                stop.address[:35],
                _fmt_number(stop.miles),
                _fmt_number(stop.weight),
            ])
        story.append(Table(rows, colWidths=[50, 200, 260, 80, 80], repeatRows=1, style=self._table_style()))
        story.append(Spacer(1, 14))
        story.append(
            Paragraph(
                f"Total Miles: {document.total_miles:.1f} &nbsp;&nbsp; Total Weight: {document.total_weight:.0f} lbs",
                self.meta_style,
            )
        )

        doc.build(story)
        logger.info("Bill of lading rendered", load_id=document.load_id, path=str(path), stops=len(document.stops))
        return DocumentReceipt(
            load_id=document.load_id,
            document_type="bill_of_lading",
            filename=filename,
            path=str(path),
            media_type="application/pdf",
        )

    def export_confirmed_csv(self, load_id: str, line_items: List[LoadDetailRecord]) -> DocumentReceipt:
        filename = f"confirmed_{_safe_filename_part(load_id)}.csv"
        path = self._output_dir / filename
        with path.open("w", encoding="utf-8", newline="") as handle:
            writer = csv.writer(handle)
            writer.writerow(CONFIRMED_CSV_HEADER)
            for item in line_items:
                shipped = item.qty_shipped if item.qty_shipped is not None else item.qty_ordered
                writer.writerow([
                    item.load_id,
                    item.line,
                    item.item_desc or "",
                    _fmt_number(item.qty_ordered),
                    _fmt_number(shipped),
                    item.status_code.value,
                    item.markoff_reason or "",
                    item.heat_number or "",
                ])
        logger.info("Confirmed CSV exported", load_id=load_id, path=str(path), lines=len(line_items))
        return DocumentReceipt(
            load_id=load_id,
            document_type="confirmed_csv",
            filename=filename,
            path=str(path),
            media_type="text/csv",
        )
