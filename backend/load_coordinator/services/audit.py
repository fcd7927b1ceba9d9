"""Append-only audit and status-history recording."""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional

from load_coordinator.models.loads import AuditAction, AuditEvent, StatusHistoryEvent
from load_coordinator.services.load_store import LoadStore


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


class AuditRecorder:
    """Writes immutable audit events; nothing here updates or deletes."""

    def __init__(self, store: LoadStore) -> None:
        self._store = store

    def record_field_changes(
        self,
        load_id: str,
        before: Dict[str, Any],
        after: Dict[str, Any],
        fields: Iterable[str],
        user_email: Optional[str],
        labels: Optional[Mapping[str, str]] = None,
    ) -> List[AuditEvent]:
        events: List[AuditEvent] = []
        for name in fields:
            old_value = _as_text(before.get(name))
            new_value = _as_text(after.get(name))
            if old_value == new_value:
                continue
            row = self._store.append_audit(
                {
                    "record_id": load_id,
                    "action": AuditAction.UPDATE.value,
                    "field_name": (labels or {}).get(name, name),
                    "old_value": old_value,
                    "new_value": new_value,
                    "user_email": user_email,
                }
            )
            events.append(AuditEvent(**row))
        return events

    def record_created(self, load_id: str, user_email: Optional[str]) -> AuditEvent:
        row = self._store.append_audit(
            {
                "record_id": load_id,
                "action": AuditAction.CREATE.value,
                "field_name": "record_created",
                "new_value": load_id,
                "user_email": user_email,
            }
        )
        return AuditEvent(**row)

    def record_custom_action(
        self,
        load_id: str,
        action: str,
        details: str,
        user_email: Optional[str],
    ) -> AuditEvent:
        row = self._store.append_audit(
            {
                "record_id": load_id,
                "action": AuditAction.UPDATE.value,
                "field_name": "custom_action",
                "new_value": f"{action}: {details}",
                "user_email": user_email,
            }
        )
        return AuditEvent(**row)

    def record_status_change(
        self,
        load_id: str,
        old_status: Any,
        new_status: Any,
        changed_by: Optional[str],
        notes: Optional[str] = None,
    ) -> StatusHistoryEvent:
        row = self._store.append_status_history(
            {
                "load_id": load_id,
                "old_status": _as_text(old_status),
                "new_status": _as_text(new_status),
                "changed_by": changed_by,
                "notes": notes,
            }
        )
        return StatusHistoryEvent(**row)

    def audit_history(self, load_id: str) -> List[AuditEvent]:
        return [AuditEvent(**row) for row in self._store.list_audit(load_id)]

    def status_history(self, load_id: str) -> List[StatusHistoryEvent]:
        return [StatusHistoryEvent(**row) for row in self._store.list_status_history(load_id)]
