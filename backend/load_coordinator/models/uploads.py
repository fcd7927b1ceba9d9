"""Models for CSV/Excel imports and ERP sync."""
from __future__ import annotations

from enum import Enum
from typing import List

from pydantic import BaseModel, Field

from load_coordinator.models.loads import utc_now_iso


class UploadKind(str, Enum):
    LOADS = "loads"
    DETAILS = "details"
    STOPS = "stops"


class UploadValidation(BaseModel):
    """Column and row checks for one uploaded table."""

    is_valid: bool = True
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)
    row_count: int = 0
    valid_rows: int = 0


class UploadResult(BaseModel):
    kind: UploadKind
    filename: str
    validation: UploadValidation
    records_written: int = 0
    load_ids: List[str] = Field(default_factory=list)


class ErpSyncResult(BaseModel):
    """Counts from one ERP spreadsheet sync pass."""

    new_loads: int = 0
    updated_loads: int = 0
    skipped_loads: int = 0
    errors: List[str] = Field(default_factory=list)
    last_sync_time: str = Field(default_factory=utc_now_iso)
