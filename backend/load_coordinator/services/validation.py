"""Preconditions for confirming a load as Ready."""
from __future__ import annotations

import re
from typing import Any, Iterable, Mapping, Optional, Union

from load_coordinator.models.loads import ConfirmationValidation, LineStatus, LoadDetailRecord


TRAILER_PATTERN = re.compile(r"^\d+$")

LineItem = Union[LoadDetailRecord, Mapping[str, Any]]


def _field(item: LineItem, name: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


def _line_status(item: LineItem) -> str:
    value = _field(item, "status_code")
    return value.value if isinstance(value, LineStatus) else str(value or "")


def validate_confirmation(trailer_number: Optional[str], line_items: Iterable[LineItem]) -> ConfirmationValidation:
    """Collect every reason the load cannot be confirmed yet."""
    errors = []
    items = list(line_items)

    trailer = (trailer_number or "").strip()
    if not trailer:
        errors.append("Trailer number is required")
    elif not TRAILER_PATTERN.match(trailer):
        errors.append("Trailer number must be numeric")

    open_lines = [item for item in items if _line_status(item) == LineStatus.OPEN.value]
    if open_lines:
        errors.append(f'{len(open_lines)} line(s) still marked as "Open"')

    missing_reason = [
        item
        for item in items
        if _line_status(item) == LineStatus.MARKED_OFF.value
        and not str(_field(item, "markoff_reason") or "").strip()
    ]
    if missing_reason:
        errors.append(f"{len(missing_reason)} marked-off line(s) missing reason")

    return ConfirmationValidation(is_valid=not errors, errors=errors)
