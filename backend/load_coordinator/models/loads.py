"""Domain models for loads, line items, stops, audit trails and user profiles."""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from load_coordinator.core.errors import ErrorKind


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def normalize_timestamp(value: Any) -> Optional[str]:
    """Parse an ISO-8601 (or ``Z`` suffixed) value into a UTC ISO string."""
    if value is None:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = f"{text[:-1]}+00:00"
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


class LoadStatus(str, Enum):
    """Load lifecycle, declared in hierarchy order."""

    OPEN = "Open"
    READY = "Ready"
    ASSIGNED = "Assigned"
    SHIPPED = "Shipped"
    CLOSED = "Closed"
    CANCELLED = "Cancelled"

    @classmethod
    def rank(cls, value: Any) -> int:
        """Position in the lifecycle hierarchy, -1 when unknown."""
        members = [member.value for member in cls]
        text = value.value if isinstance(value, LoadStatus) else str(value or "").strip()
        return members.index(text) if text in members else -1


class LineStatus(str, Enum):
    """Disposition of a single line item."""

    OPEN = "Open"
    LOADED = "Loaded"
    MARKED_OFF = "Marked_Off"


class Organization(str, Enum):
    WILLBANKS = "Willbanks"
    WSI = "WSI"
    JORDAN = "Jordan"


class Role(str, Enum):
    ADMIN = "ADMIN"
    OPERATOR = "OPERATOR"


class AuditAction(str, Enum):
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class LoadRecord(BaseModel):
    """Persisted load record."""

    load_id: str
    ship_from_loc: str = ""
    carrier_code: Optional[str] = None
    status: LoadStatus = LoadStatus.OPEN
    trailer_no: Optional[str] = None
    driver_name: Optional[str] = None
    ship_req_date: Optional[str] = None
    eta: Optional[str] = None
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)


class LoadDetailRecord(BaseModel):
    """One ordered product row attached to a load."""

    load_id: str
    line: int
    item_desc: Optional[str] = None
    qty_ordered: Optional[float] = None
    qty_shipped: Optional[float] = None
    status_code: LineStatus = LineStatus.OPEN
    markoff_reason: Optional[str] = None
    heat_number: Optional[str] = None
    created_at: str = Field(default_factory=utc_now_iso)


class StopDetailRecord(BaseModel):
    """Routing/billing waypoint attached to a load."""

    load_id: str
    seq_no: int
    customer_name: Optional[str] = None
    address: Optional[str] = None
    miles: Optional[float] = None
    weight: Optional[float] = None
    created_at: str = Field(default_factory=utc_now_iso)


class LoadPatch(BaseModel):
    """Allowed mutable load fields.

    ``None`` means "leave unchanged"; an empty string clears the field.
    """

    model_config = ConfigDict(extra="forbid")

    driver_name: Optional[str] = None
    trailer_no: Optional[str] = None
    status: Optional[LoadStatus] = None
    eta: Optional[str] = None
    ship_req_date: Optional[str] = None
    carrier_code: Optional[str] = None
    ship_from_loc: Optional[str] = None

    @field_validator("eta", "ship_req_date")
    @classmethod
    def _timestamp_or_blank(cls, value: Optional[str]) -> Optional[str]:
        if value is None or not value.strip():
            return value
        try:
            return normalize_timestamp(value)
        except ValueError as exc:
            raise ValueError(f"'{value}' is not an ISO-8601 timestamp") from exc

    def changes(self) -> Dict[str, Any]:
        """Fields the caller actually supplied, with nulls stripped."""
        return self.model_dump(exclude_none=True)


class LineItemPatch(BaseModel):
    """Allowed mutable line-item fields."""

    model_config = ConfigDict(extra="forbid")

    status_code: Optional[LineStatus] = None
    markoff_reason: Optional[str] = None
    qty_shipped: Optional[float] = Field(default=None, ge=0)
    heat_number: Optional[str] = None

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)


class AuditEvent(BaseModel):
    """Append-only record of one field mutation or custom action."""

    event_id: int
    table_name: str = "loads"
    record_id: str
    action: AuditAction
    field_name: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    user_email: Optional[str] = None
    created_at: str


class StatusHistoryEvent(BaseModel):
    """Append-only record of one status transition."""

    event_id: int
    load_id: str
    old_status: Optional[str] = None
    new_status: str
    changed_by: Optional[str] = None
    changed_at: str
    notes: Optional[str] = None


class UserProfile(BaseModel):
    """Coordinator identity with organization scoped read filters."""

    email: str
    role: Role
    organization: Organization
    location_filter: Optional[str] = None
    carrier_filter: Optional[str] = None
    created_at: str = Field(default_factory=utc_now_iso)
    updated_at: str = Field(default_factory=utc_now_iso)

    @property
    def theme_color(self) -> str:
        return {
            Organization.WILLBANKS: "red",
            Organization.WSI: "blue",
            Organization.JORDAN: "green",
        }.get(self.organization, "gray")


class OperationError(BaseModel):
    """Structured failure returned instead of raising."""

    kind: ErrorKind
    message: str
    details: List[str] = Field(default_factory=list)


class LoadUpdateResult(BaseModel):
    """Outcome of a single update-load operation."""

    ok: bool
    load: Optional[LoadRecord] = None
    auto_transitioned: bool = False
    changed_fields: List[str] = Field(default_factory=list)
    warnings: List[OperationError] = Field(default_factory=list)
    error: Optional[OperationError] = None


class BulkStatusRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    load_ids: List[str] = Field(min_length=1)
    status: LoadStatus


class BulkStatusResult(BaseModel):
    """Per-load outcomes of a bulk status change, keyed by load id."""

    updated: int = 0
    failed: int = 0
    results: Dict[str, LoadUpdateResult] = Field(default_factory=dict)


class LineItemUpdateResult(BaseModel):
    ok: bool
    line_item: Optional[LoadDetailRecord] = None
    warnings: List[OperationError] = Field(default_factory=list)
    error: Optional[OperationError] = None


class ConfirmationValidation(BaseModel):
    """Accumulated confirmation precondition failures."""

    is_valid: bool
    errors: List[str] = Field(default_factory=list)


class ConfirmLoadRequest(BaseModel):
    trailer_number: str = ""


class DocumentReceipt(BaseModel):
    """Completion signal for one generated document."""

    load_id: str
    document_type: str
    filename: str
    path: str
    media_type: str
    generated_at: str = Field(default_factory=utc_now_iso)


class ConfirmationResult(BaseModel):
    """Outcome of the confirm-load workflow."""

    ok: bool
    is_confirmed: bool = False
    load: Optional[LoadRecord] = None
    documents: List[DocumentReceipt] = Field(default_factory=list)
    validation: Optional[ConfirmationValidation] = None
    warnings: List[OperationError] = Field(default_factory=list)
    error: Optional[OperationError] = None


class LoadWorkspace(BaseModel):
    """Everything the load detail view needs."""

    load: LoadRecord
    line_items: List[LoadDetailRecord] = Field(default_factory=list)
    stops: List[StopDetailRecord] = Field(default_factory=list)
    is_confirmed: bool = False


class LoadListResponse(BaseModel):
    """Visible loads for the requesting profile."""

    loads: List[LoadRecord]
    count: int
    counts_by_status: Dict[str, int] = Field(default_factory=dict)
    revision: int = 0
