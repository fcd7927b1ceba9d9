"""CSV/Excel imports for loads, line items and stops, plus the ERP status sync."""
from __future__ import annotations

import io
import os
from typing import Any, Dict, List, Optional

import pandas as pd

from load_coordinator.core.errors import CoordinatorError, LoadValidationError
from load_coordinator.core.logging import logger
from load_coordinator.models.loads import LineStatus, LoadRecord, LoadStatus, normalize_timestamp, utc_now_iso
from load_coordinator.models.uploads import ErpSyncResult, UploadKind, UploadResult, UploadValidation
from load_coordinator.services.coordinator import LoadCoordinator


REQUIRED_COLUMNS: Dict[UploadKind, List[str]] = {
    UploadKind.LOADS: ["LOAD_ID", "SHIP_FROM_LOC", "STATUS"],
    UploadKind.DETAILS: ["LOAD_ID", "Line", "ItemDesc", "QtyOrdered"],
    UploadKind.STOPS: ["LOAD_ID", "SeqNo", "Cust Name", "Address"],
}

STATUS_VALUES = {status.value for status in LoadStatus}
LINE_STATUS_VALUES = {status.value for status in LineStatus}
ERP_PROTECTED_STATUSES = {
    LoadStatus.READY.value,
    LoadStatus.ASSIGNED.value,
    LoadStatus.SHIPPED.value,
}
ERP_FIELD_MAP = {
    "STATUS": "status",
    "CARRIER_CODE": "carrier_code",
    "SHIP_FROM_LOC": "ship_from_loc",
    "DRIVER_NAME": "driver_name",
    "TRAILER_NO": "trailer_no",
    "SHIP_REQ_DATE": "ship_req_date",
    "ETA": "eta",
}

Row = Dict[str, str]


def read_table(filename: str, content: bytes) -> List[Row]:
    """Parse an uploaded CSV or Excel sheet into rows of trimmed strings."""
    if not content:
        return []
    suffix = os.path.splitext(filename or "")[1].lower()
    if suffix in {".xlsx", ".xlsm", ".xls"}:
        df = pd.read_excel(io.BytesIO(content), dtype=str, keep_default_na=False)
    elif suffix == ".csv" or not suffix:
        df = pd.read_csv(io.BytesIO(content), dtype=str, keep_default_na=False, skip_blank_lines=True)
    else:
        raise LoadValidationError("Unsupported file type. Upload .csv or .xlsx.", details=[filename])
    df.columns = [str(column).strip() for column in df.columns]
    rows = []
    for record in df.to_dict(orient="records"):
        row = {column: str(value).strip() for column, value in record.items()}
        if any(row.values()):
            rows.append(row)
    return rows


def _cell(row: Row, column: str) -> str:
    return str(row.get(column) or "").strip()


def _as_float(value: str) -> Optional[float]:
    text = (value or "").strip()
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return None


def _as_int(value: str) -> Optional[int]:
    number = _as_float(value)
    return int(number) if number is not None else None


def _line_status(value: str) -> str:
    return value if value in LINE_STATUS_VALUES else LineStatus.OPEN.value


def _as_timestamp(value: str) -> Optional[str]:
    try:
        return normalize_timestamp(value)
    except ValueError:
        return None


def _row_errors(row: Row, kind: UploadKind, index: int) -> tuple[List[str], bool]:
    warnings: List[str] = []
    valid = True
    for column in REQUIRED_COLUMNS[kind]:
        if not _cell(row, column):
            warnings.append(f"Row {index}: Missing {column}")
            valid = False
    if kind == UploadKind.LOADS:
        status = _cell(row, "STATUS")
        if status and status not in STATUS_VALUES:
            warnings.append(f'Row {index}: Invalid status "{status}"')
    if kind == UploadKind.DETAILS:
        qty = _cell(row, "QtyOrdered")
        if qty and _as_float(qty) is None:
            warnings.append(f"Row {index}: QtyOrdered must be a number")
            valid = False
    return warnings, valid


def validate_upload(rows: List[Row], kind: UploadKind) -> UploadValidation:
    """Column and per-row checks; hard errors block the import, warnings do not."""
    result = UploadValidation(row_count=len(rows))
    if not rows:
        result.is_valid = False
        result.errors.append("CSV file is empty")
        return result

    columns = set()
    for row in rows:
        columns.update(row.keys())
    missing = [column for column in REQUIRED_COLUMNS[kind] if column not in columns]
    if missing:
        result.is_valid = False
        result.errors.append(f"Missing required columns: {', '.join(missing)}")
        return result

    for index, row in enumerate(rows, start=1):
        warnings, valid = _row_errors(row, kind, index)
        result.warnings.extend(warnings)
        if valid:
            result.valid_rows += 1

    if result.valid_rows == 0:
        result.is_valid = False
        result.errors.append("No valid rows found in CSV")
    return result


class LoadImporter:
    """Applies validated uploads through the store and coordinator."""

    def __init__(self, coordinator: LoadCoordinator) -> None:
        self._coordinator = coordinator
        self._store = coordinator.store

    def _valid_rows(self, rows: List[Row], kind: UploadKind) -> List[Row]:
        return [row for index, row in enumerate(rows, start=1) if _row_errors(row, kind, index)[1]]

    def apply_upload(
        self,
        kind: UploadKind,
        filename: str,
        rows: List[Row],
        actor: Optional[str] = None,
    ) -> UploadResult:
        validation = validate_upload(rows, kind)
        if not validation.is_valid:
            raise LoadValidationError("Upload rejected", details=validation.errors)

        valid_rows = self._valid_rows(rows, kind)
        if kind == UploadKind.LOADS:
            written, load_ids = self._apply_loads(valid_rows, actor)
        elif kind == UploadKind.DETAILS:
            written, load_ids = self._replace_children("load_details", [self._detail_record(row) for row in valid_rows])
        else:
            written, load_ids = self._replace_children("stop_details", [self._stop_record(row) for row in valid_rows])

        logger.info("Upload applied", kind=kind.value, filename=filename, rows=len(rows), written=written)
        return UploadResult(
            kind=kind,
            filename=filename,
            validation=validation,
            records_written=written,
            load_ids=load_ids,
        )

    def _apply_loads(self, rows: List[Row], actor: Optional[str]) -> tuple[int, List[str]]:
        now = utc_now_iso()
        records = []
        created = []
        for row in rows:
            load_id = _cell(row, "LOAD_ID")
            status = _cell(row, "STATUS")
            existing = self._store.get("loads", load_id)
            record = {
                "load_id": load_id,
                "ship_from_loc": _cell(row, "SHIP_FROM_LOC"),
                "carrier_code": _cell(row, "CARRIER_CODE") or None,
                "status": status if status in STATUS_VALUES else LoadStatus.OPEN.value,
                "trailer_no": _cell(row, "TRAILER_NO") or None,
                "driver_name": _cell(row, "DRIVER_NAME") or None,
                "eta": _as_timestamp(_cell(row, "ETA")),
                "ship_req_date": _as_timestamp(_cell(row, "SHIP_REQ_DATE")),
                "created_at": (existing or {}).get("created_at") or now,
                "updated_at": now,
            }
            records.append(record)
            if existing is None and load_id not in created:
                created.append(load_id)
        self._store.upsert("loads", records, conflict_key=["load_id"])
        for load_id in created:
            try:
                self._coordinator.recorder.record_created(load_id, actor)
            except CoordinatorError as exc:
                logger.warning("Audit write failed for imported load", load_id=load_id, error=exc.message)
        return len(records), sorted({record["load_id"] for record in records})

    @staticmethod
    def _detail_record(row: Row) -> Dict[str, Any]:
        return {
            "load_id": _cell(row, "LOAD_ID"),
            "line": _as_int(_cell(row, "Line")),
            "item_desc": _cell(row, "ItemDesc") or None,
            "qty_ordered": _as_float(_cell(row, "QtyOrdered")),
            "qty_shipped": _as_float(_cell(row, "QtyShipped")),
            "status_code": _line_status(_cell(row, "StatusCode")),
            "markoff_reason": _cell(row, "MarkoffReason") or None,
            "heat_number": _cell(row, "HeatNumber") or None,
            "created_at": utc_now_iso(),
        }

    @staticmethod
    def _stop_record(row: Row) -> Dict[str, Any]:
        return {
            "load_id": _cell(row, "LOAD_ID"),
            "seq_no": _as_int(_cell(row, "SeqNo")),
            "customer_name": _cell(row, "Cust Name") or None,
            "address": _cell(row, "Address") or None,
            "miles": _as_float(_cell(row, "Miles")),
            "weight": _as_float(_cell(row, "Weight")),
            "created_at": utc_now_iso(),
        }

    def _replace_children(self, table: str, records: List[Dict[str, Any]]) -> tuple[int, List[str]]:
        records = [record for record in records if record.get("line", record.get("seq_no")) is not None]
        load_ids = sorted({record["load_id"] for record in records})
        self._store.delete_for_loads(table, load_ids)
        self._store.upsert(table, records)
        return len(records), load_ids

    def sync_erp(self, rows: List[Row], actor: Optional[str] = None) -> ErpSyncResult:
        """Reconcile ERP statuses without regressing loads the floor already advanced."""
        result = ErpSyncResult()
        for row in rows:
            load_id = _cell(row, "LOAD_ID")
            erp_status = _cell(row, "STATUS")
            if not load_id:
                result.errors.append("Missing LOAD_ID in row")
                continue
            try:
                existing = self._store.get("loads", load_id)
                if existing is None:
                    self._create_from_erp(row, actor)
                    result.new_loads += 1
                    continue

                app_status = existing.get("status")
                if erp_status == LoadStatus.OPEN.value and app_status in ERP_PROTECTED_STATUSES:
                    logger.info("ERP row skipped", load_id=load_id, erp_status=erp_status, app_status=app_status)
                    result.skipped_loads += 1
                    continue

                if LoadStatus.rank(erp_status) > LoadStatus.rank(app_status):
                    patch = {
                        field: _cell(row, column)
                        for column, field in ERP_FIELD_MAP.items()
                        if _cell(row, column)
                    }
                    outcome = self._coordinator.update_load(load_id, patch, actor)
                    if not outcome.ok:
                        result.errors.append(f"Error processing load {load_id}: {outcome.error.message}")
                        continue
                    result.updated_loads += 1
                else:
                    result.skipped_loads += 1
            except CoordinatorError as exc:
                logger.warning("ERP row failed", load_id=load_id, error=exc.message)
                result.errors.append(f"Error processing load {load_id}: {exc.message}")

        logger.info(
            "ERP sync complete",
            new_loads=result.new_loads,
            updated_loads=result.updated_loads,
            skipped_loads=result.skipped_loads,
            errors=len(result.errors),
        )
        return result

    def _create_from_erp(self, row: Row, actor: Optional[str]) -> LoadRecord:
        status = _cell(row, "STATUS")
        if status and status not in STATUS_VALUES:
            raise LoadValidationError(f'Invalid status "{status}"')
        record = LoadRecord(
            load_id=_cell(row, "LOAD_ID"),
            ship_from_loc=_cell(row, "SHIP_FROM_LOC"),
            carrier_code=_cell(row, "CARRIER_CODE") or None,
            status=status or LoadStatus.OPEN.value,
            driver_name=_cell(row, "DRIVER_NAME") or None,
            trailer_no=_cell(row, "TRAILER_NO") or None,
            ship_req_date=_as_timestamp(_cell(row, "SHIP_REQ_DATE")) or utc_now_iso(),
            eta=_as_timestamp(_cell(row, "ETA")),
        )
        return self._coordinator.create_load(record, actor)
