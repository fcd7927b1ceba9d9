"""Tests for spreadsheet imports and the ERP status sync."""
from __future__ import annotations

import io
import sys
from pathlib import Path

import pytest
from openpyxl import Workbook

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from load_coordinator.core.errors import LoadValidationError  # noqa: E402
from load_coordinator.models.uploads import UploadKind  # noqa: E402
from load_coordinator.services.audit import AuditRecorder  # noqa: E402
from load_coordinator.services.coordinator import LoadCoordinator  # noqa: E402
from load_coordinator.services.documents import DocumentService  # noqa: E402
from load_coordinator.services.importer import LoadImporter, read_table, validate_upload  # noqa: E402
from load_coordinator.services.load_store import LoadStore  # noqa: E402


LOADS_CSV = (
    b"LOAD_ID,SHIP_FROM_LOC,STATUS,CARRIER_CODE,DRIVER_NAME,SHIP_REQ_DATE\n"
    b"L-1,WSI,Open,Jordan,,2024-06-01\n"
    b"L-2,ATL,Bogus,,,\n"
    b",WSI,Open,,,\n"
)


def _importer(tmp_path) -> LoadImporter:
    store = LoadStore(tmp_path / "import.db")
    coordinator = LoadCoordinator(store, AuditRecorder(store), DocumentService(tmp_path / "docs"))
    return LoadImporter(coordinator)


def test_read_table_parses_csv_as_trimmed_strings():
    rows = read_table("loads.csv", LOADS_CSV)
    assert len(rows) == 3
    assert rows[0]["LOAD_ID"] == "L-1"
    assert rows[0]["DRIVER_NAME"] == ""


def test_read_table_parses_excel_sheets():
    workbook = Workbook()
    sheet = workbook.active
    sheet.append(["LOAD_ID", "SeqNo", "Cust Name", "Address", "Miles"])
    sheet.append(["L-1", 1, "Acme Steel", "1 Mill Rd", 42.5])
    buffer = io.BytesIO()
    workbook.save(buffer)

    rows = read_table("stops.xlsx", buffer.getvalue())

    assert rows == [{"LOAD_ID": "L-1", "SeqNo": "1", "Cust Name": "Acme Steel", "Address": "1 Mill Rd", "Miles": "42.5"}]


def test_read_table_rejects_unknown_extensions():
    with pytest.raises(LoadValidationError):
        read_table("loads.pdf", b"%PDF-1.4")


def test_validate_upload_reports_row_warnings():
    result = validate_upload(read_table("loads.csv", LOADS_CSV), UploadKind.LOADS)
    assert result.is_valid is True
    assert result.row_count == 3
    assert result.valid_rows == 2
    assert result.warnings == ['Row 2: Invalid status "Bogus"', "Row 3: Missing LOAD_ID"]


def test_validate_upload_errors():
    assert validate_upload([], UploadKind.LOADS).errors == ["CSV file is empty"]

    missing = validate_upload([{"LOAD_ID": "L-1"}], UploadKind.STOPS)
    assert missing.is_valid is False
    assert missing.errors == ["Missing required columns: SeqNo, Cust Name, Address"]

    no_valid = validate_upload(
        [{"LOAD_ID": "L-1", "Line": "1", "ItemDesc": "Coil", "QtyOrdered": "ten"}],
        UploadKind.DETAILS,
    )
    assert no_valid.is_valid is False
    assert no_valid.warnings == ["Row 1: QtyOrdered must be a number"]
    assert no_valid.errors == ["No valid rows found in CSV"]


def test_apply_loads_upserts_and_audits_new_loads(tmp_path):
    importer = _importer(tmp_path)
    store = importer._store

    result = importer.apply_upload(UploadKind.LOADS, "loads.csv", read_table("loads.csv", LOADS_CSV), actor="admin@x")

    assert result.records_written == 2
    assert result.load_ids == ["L-1", "L-2"]
    assert store.get("loads", "L-1")["ship_req_date"] == "2024-06-01T00:00:00+00:00"
    assert store.get("loads", "L-2")["status"] == "Open"
    created = store.list_audit("L-1")
    assert [(row["action"], row["field_name"]) for row in created] == [("CREATE", "record_created")]

    importer.apply_upload(UploadKind.LOADS, "loads.csv", read_table("loads.csv", LOADS_CSV))
    assert len(store.list_audit("L-1")) == 1


def test_apply_details_replaces_existing_lines(tmp_path):
    importer = _importer(tmp_path)
    store = importer._store
    store.upsert("load_details", [{"load_id": "L-1", "line": 9, "status_code": "Open"}])

    rows = [
        {"LOAD_ID": "L-1", "Line": "1", "ItemDesc": "Coil", "QtyOrdered": "5", "StatusCode": "Loaded"},
        {"LOAD_ID": "L-1", "Line": "2", "ItemDesc": "Plate", "QtyOrdered": "3", "StatusCode": "Weird"},
    ]
    result = importer.apply_upload(UploadKind.DETAILS, "details.csv", rows)

    assert result.records_written == 2
    lines = store.query_filtered("load_details")
    assert sorted((row["line"], row["status_code"]) for row in lines) == [(1, "Loaded"), (2, "Open")]


def test_apply_rejects_invalid_upload(tmp_path):
    importer = _importer(tmp_path)
    with pytest.raises(LoadValidationError):
        importer.apply_upload(UploadKind.STOPS, "stops.csv", [])


def test_erp_sync_creates_updates_and_skips(tmp_path):
    importer = _importer(tmp_path)
    store = importer._store
    store.upsert(
        "loads",
        [
            {"load_id": "READY-1", "ship_from_loc": "WSI", "status": "Ready", "created_at": "2024-01-01T00:00:00+00:00"},
            {"load_id": "OPEN-1", "ship_from_loc": "WSI", "status": "Open", "created_at": "2024-01-01T00:00:00+00:00"},
            {"load_id": "SHIP-1", "ship_from_loc": "WSI", "status": "Shipped", "created_at": "2024-01-01T00:00:00+00:00"},
        ],
    )

    result = importer.sync_erp(
        [
            {"LOAD_ID": "READY-1", "STATUS": "Open"},
            {"LOAD_ID": "OPEN-1", "STATUS": "Shipped", "CARRIER_CODE": "Jordan"},
            {"LOAD_ID": "SHIP-1", "STATUS": "Ready"},
            {"LOAD_ID": "NEW-1", "STATUS": "", "SHIP_FROM_LOC": "ATL"},
            {"LOAD_ID": "", "STATUS": "Open"},
        ],
        actor="erp@willbanks.example",
    )

    assert result.new_loads == 1
    assert result.updated_loads == 1
    assert result.skipped_loads == 2
    assert result.errors == ["Missing LOAD_ID in row"]

    assert store.get("loads", "READY-1")["status"] == "Ready"
    assert store.get("loads", "OPEN-1")["status"] == "Shipped"
    assert store.get("loads", "OPEN-1")["carrier_code"] == "Jordan"
    assert store.get("loads", "SHIP-1")["status"] == "Shipped"

    created = store.get("loads", "NEW-1")
    assert created["status"] == "Open"
    assert created["ship_req_date"]
    assert store.list_audit("NEW-1")[0]["action"] == "CREATE"
    assert store.list_status_history("OPEN-1")[0]["new_status"] == "Shipped"
