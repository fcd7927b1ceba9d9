"""Tests for the shipping document renderer."""
from __future__ import annotations

import csv
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from load_coordinator.models.documents import (  # noqa: E402
    BillOfLadingDocument,
    BillOfLadingStop,
    LoadingDocument,
    LoadingLine,
)
from load_coordinator.models.loads import LoadDetailRecord  # noqa: E402
from load_coordinator.services.documents import CONFIRMED_CSV_HEADER, DocumentService  # noqa: E402


def test_loading_docs_pdf_is_written(tmp_path):
    service = DocumentService(tmp_path)
    document = LoadingDocument(
        load_id="L-7",
        trailer_no="5531",
        lines=[
            LoadingLine(line=1, item_desc="Hot rolled coil <A36>", heat_number="H1", qty_ordered=4, status_code="Loaded"),
            LoadingLine(line=2, item_desc="Plate", qty_ordered=2, status_code="Marked_Off", markoff_reason="Damaged"),
        ],
    )

    receipt = service.render_loading_docs(document)

    assert receipt.filename == "Loading_Docs_L-7.pdf"
    assert receipt.media_type == "application/pdf"
    assert Path(receipt.path).read_bytes().startswith(b"%PDF")


def test_bill_of_lading_totals_and_pdf(tmp_path):
    document = BillOfLadingDocument(
        load_id="L-7",
        driver_name="Pat Lee",
        trailer_no="5531",
        stops=[
            BillOfLadingStop(seq_no=1, customer_name="Acme", address="1 Main St", miles=10.5, weight=1200),
            BillOfLadingStop(seq_no=2, customer_name="Beta", address="2 Side St", miles=None, weight=300),
        ],
    )
    assert document.total_miles == 10.5
    assert document.total_weight == 1500

    receipt = DocumentService(tmp_path).render_bill_of_lading(document)
    assert Path(receipt.path).read_bytes().startswith(b"%PDF")


def test_confirmed_csv_falls_back_to_ordered_quantity(tmp_path):
    receipt = DocumentService(tmp_path).export_confirmed_csv(
        "L-7",
        [
            LoadDetailRecord(load_id="L-7", line=1, item_desc="Coil", qty_ordered=4, qty_shipped=3, status_code="Loaded"),
            LoadDetailRecord(load_id="L-7", line=2, item_desc="Plate", qty_ordered=2, status_code="Marked_Off",
                             markoff_reason="Damaged", heat_number="H2"),
        ],
    )

    with open(receipt.path, newline="", encoding="utf-8") as handle:
        rows = list(csv.reader(handle))

    assert receipt.filename == "confirmed_L-7.csv"
    assert rows[0] == CONFIRMED_CSV_HEADER
    assert rows[1] == ["L-7", "1", "Coil", "4", "3", "Loaded", "", ""]
    assert rows[2] == ["L-7", "2", "Plate", "2", "2", "Marked_Off", "Damaged", "H2"]
