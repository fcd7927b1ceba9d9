"""Load mutation orchestration: field edits, auto status, confirmation and documents."""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Union

from pydantic import ValidationError

from load_coordinator.core.errors import (
    CoordinatorError,
    ErrorKind,
    LoadValidationError,
    NotFoundError,
    StaleWriteError,
)
from load_coordinator.core.logging import logger
from load_coordinator.models.documents import (
    BillOfLadingDocument,
    BillOfLadingStop,
    LoadingDocument,
    LoadingLine,
)
from load_coordinator.models.loads import (
    BulkStatusResult,
    ConfirmationResult,
    ConfirmationValidation,
    DocumentReceipt,
    LineItemPatch,
    LineItemUpdateResult,
    LineStatus,
    LoadDetailRecord,
    LoadPatch,
    LoadRecord,
    LoadStatus,
    LoadUpdateResult,
    LoadWorkspace,
    OperationError,
    StopDetailRecord,
    utc_now_iso,
)
from load_coordinator.services.audit import AuditRecorder
from load_coordinator.services.documents import DocumentService
from load_coordinator.services.load_store import LoadStore, RowQuery
from load_coordinator.services.status_rules import compute_final_status
from load_coordinator.services.validation import validate_confirmation


LINE_AUDIT_LABELS = {
    "status_code": "line_{line}_status",
    "markoff_reason": "line_{line}_reason",
    "qty_shipped": "line_{line}_qty_shipped",
    "heat_number": "line_{line}_heat_number",
}


def _operation_error(exc: CoordinatorError) -> OperationError:
    return OperationError(kind=exc.kind, message=exc.message, details=exc.details)


def _unknown_error(exc: Exception) -> OperationError:
    return OperationError(kind=ErrorKind.UNKNOWN, message=str(exc) or exc.__class__.__name__)


def _warning(message: str, exc: Optional[Exception] = None) -> OperationError:
    details = [str(exc)] if exc is not None else []
    return OperationError(kind=ErrorKind.PARTIAL_FAILURE, message=message, details=details)


def _validation_details(exc: ValidationError) -> List[str]:
    return [f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in exc.errors()]


class LoadCoordinator:
    """Business orchestration over an injected store, audit recorder and renderer."""

    def __init__(self, store: LoadStore, recorder: AuditRecorder, documents: DocumentService) -> None:
        self._store = store
        self._recorder = recorder
        self._documents = documents

    @property
    def store(self) -> LoadStore:
        return self._store

    @property
    def recorder(self) -> AuditRecorder:
        return self._recorder

    def _require_load(self, load_id: str) -> Dict[str, Any]:
        row = self._store.get("loads", load_id)
        if row is None:
            raise NotFoundError(f"Load {load_id} not found")
        return row

    def get_load(self, load_id: str) -> LoadRecord:
        return LoadRecord(**self._require_load(load_id))

    def line_items(self, load_id: str) -> List[LoadDetailRecord]:
        rows = self._store.query_filtered(
            "load_details",
            RowQuery(equals={"load_id": load_id}, order_by=[("line", False)]),
        )
        return [LoadDetailRecord(**row) for row in rows]

    def stops(self, load_id: str) -> List[StopDetailRecord]:
        rows = self._store.query_filtered(
            "stop_details",
            RowQuery(equals={"load_id": load_id}, order_by=[("seq_no", False)]),
        )
        return [StopDetailRecord(**row) for row in rows]

    def load_workspace(self, load_id: str) -> LoadWorkspace:
        load = self.get_load(load_id)
        return LoadWorkspace(
            load=load,
            line_items=self.line_items(load_id),
            stops=self.stops(load_id),
            is_confirmed=load.status != LoadStatus.OPEN,
        )

    def create_load(self, record: LoadRecord, actor: Optional[str]) -> LoadRecord:
        row = self._store.upsert("loads", [record.model_dump(mode="json")], conflict_key=["load_id"])[0]
        try:
            self._recorder.record_created(record.load_id, actor)
        except CoordinatorError as exc:
            logger.warning("Audit write failed for created load", load_id=record.load_id, error=exc.message)
        return LoadRecord(**row)

    @staticmethod
    def _normalize_load_fields(changes: Mapping[str, Any]) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        for name, value in changes.items():
            if isinstance(value, LoadStatus):
                fields[name] = value.value
            elif isinstance(value, str):
                cleaned = value.strip()
                fields[name] = cleaned or None
            else:
                fields[name] = value
        if "ship_from_loc" in fields and fields["ship_from_loc"] is None:
            fields["ship_from_loc"] = ""
        return fields

    @staticmethod
    def _coerce_patch(patch: Union[LoadPatch, Mapping[str, Any], None]) -> LoadPatch:
        if isinstance(patch, LoadPatch):
            return patch
        try:
            return LoadPatch.model_validate(dict(patch or {}))
        except ValidationError as exc:
            raise LoadValidationError("Invalid load update", details=_validation_details(exc)) from exc

    def update_load(
        self,
        load_id: str,
        patch: Union[LoadPatch, Mapping[str, Any], None],
        actor: Optional[str] = None,
    ) -> LoadUpdateResult:
        """Apply a field edit and the automatic status rule to one load.

        Never raises: failures come back as ``LoadUpdateResult.error`` and
        best-effort steps that fail after the primary write are listed in
        ``warnings``.
        """
        try:
            return self._update_load(load_id, self._coerce_patch(patch), actor)
        except CoordinatorError as exc:
            logger.warning("Load update failed", load_id=load_id, kind=exc.kind.value, error=exc.message)
            return LoadUpdateResult(ok=False, error=_operation_error(exc))
        except Exception as exc:
            logger.error("Load update failed unexpectedly", load_id=load_id, error=str(exc))
            return LoadUpdateResult(ok=False, error=_unknown_error(exc))

    def _update_load(self, load_id: str, patch: LoadPatch, actor: Optional[str]) -> LoadUpdateResult:
        fields = self._normalize_load_fields(patch.changes())
        current = self._require_load(load_id)
        now = utc_now_iso()

        if not fields:
            row = self._store.update("loads", load_id, {"updated_at": now})
            return LoadUpdateResult(ok=True, load=LoadRecord(**row))

        decision = compute_final_status(current.get("status", LoadStatus.OPEN.value), current.get("driver_name"), fields)
        # Status is only written when the caller set it or the rule derived it.
        write = {**fields, "updated_at": now}
        warnings: List[OperationError] = []
        auto_applied = decision.auto_transitioned

        if decision.auto_transitioned:
            write["status"] = decision.final_status.value
            # The derived status only lands if nobody wrote the load since we read it.
            try:
                row = self._store.update("loads", load_id, write, expected_updated_at=current.get("updated_at"))
            except StaleWriteError as exc:
                write.pop("status")
                row = self._store.update("loads", load_id, write)
                auto_applied = False
                warnings.append(
                    _warning(
                        f"Automatic status change to {decision.final_status.value} skipped: load was modified concurrently",
                        exc,
                    )
                )
        else:
            row = self._store.update("loads", load_id, write)

        audited = [name for name in write if name != "updated_at"]
        changed = [name for name in audited if current.get(name) != row.get(name)]

        try:
            self._recorder.record_field_changes(load_id, current, row, audited, actor)
        except CoordinatorError as exc:
            warnings.append(_warning("Audit log write failed", exc))

        old_status = current.get("status")
        if "status" in write and old_status != row.get("status"):
            notes = None
            if auto_applied:
                notes = "Auto-transition: driver assigned" if row["status"] == LoadStatus.ASSIGNED.value else "Auto-transition: driver cleared"
            try:
                self._recorder.record_status_change(load_id, old_status, row["status"], actor, notes=notes)
            except CoordinatorError as exc:
                warnings.append(_warning("Status history write failed", exc))

        logger.info(
            "Load updated",
            load_id=load_id,
            fields=sorted(fields.keys()),
            status=row.get("status"),
            auto_transitioned=auto_applied,
            warnings=len(warnings),
        )
        return LoadUpdateResult(
            ok=True,
            load=LoadRecord(**row),
            auto_transitioned=auto_applied,
            changed_fields=changed,
            warnings=warnings,
        )

    def bulk_update_status(
        self,
        load_ids: List[str],
        status: Union[LoadStatus, str],
        actor: Optional[str] = None,
    ) -> BulkStatusResult:
        """Set ``status`` on each load through ``update_load``.

        Loads are updated one at a time; a failure on one id is recorded in
        its result and the rest still run.
        """
        target = LoadStatus(status)
        result = BulkStatusResult()
        for load_id in dict.fromkeys(load_ids):
            outcome = self.update_load(load_id, {"status": target}, actor=actor)
            result.results[load_id] = outcome
            if outcome.ok:
                result.updated += 1
            else:
                result.failed += 1
        logger.info(
            "Bulk status update finished",
            status=target.value,
            requested=len(result.results),
            updated=result.updated,
            failed=result.failed,
        )
        return result

    def update_line_item(
        self,
        load_id: str,
        line: int,
        patch: Union[LineItemPatch, Mapping[str, Any]],
        actor: Optional[str] = None,
    ) -> LineItemUpdateResult:
        try:
            if not isinstance(patch, LineItemPatch):
                try:
                    patch = LineItemPatch.model_validate(dict(patch or {}))
                except ValidationError as exc:
                    raise LoadValidationError("Invalid line item update", details=_validation_details(exc)) from exc
            return self._update_line_item(load_id, line, patch, actor)
        except CoordinatorError as exc:
            logger.warning("Line item update failed", load_id=load_id, line=line, error=exc.message)
            return LineItemUpdateResult(ok=False, error=_operation_error(exc))
        except Exception as exc:
            logger.error("Line item update failed unexpectedly", load_id=load_id, line=line, error=str(exc))
            return LineItemUpdateResult(ok=False, error=_unknown_error(exc))

    def _update_line_item(self, load_id: str, line: int, patch: LineItemPatch, actor: Optional[str]) -> LineItemUpdateResult:
        load = self._require_load(load_id)
        if load.get("status") != LoadStatus.OPEN.value:
            raise LoadValidationError(
                f"Load {load_id} is confirmed; line items can no longer be edited",
                details=[f"status={load.get('status')}"],
            )
        current = self._store.get("load_details", (load_id, line))
        if current is None:
            raise NotFoundError(f"Line {line} not found on load {load_id}")

        fields: Dict[str, Any] = {}
        for name, value in patch.changes().items():
            if isinstance(value, LineStatus):
                fields[name] = value.value
            elif isinstance(value, str):
                fields[name] = value.strip() or None
            else:
                fields[name] = value
        if not fields:
            return LineItemUpdateResult(ok=True, line_item=LoadDetailRecord(**current))

        row = self._store.update("load_details", (load_id, line), fields)
        warnings: List[OperationError] = []
        labels = {name: label.format(line=line) for name, label in LINE_AUDIT_LABELS.items()}
        try:
            self._recorder.record_field_changes(load_id, current, row, fields.keys(), actor, labels=labels)
        except CoordinatorError as exc:
            warnings.append(_warning("Audit log write failed", exc))
        return LineItemUpdateResult(ok=True, line_item=LoadDetailRecord(**row), warnings=warnings)

    def check_confirmation(self, load_id: str, trailer_number: Optional[str]) -> ConfirmationValidation:
        self._require_load(load_id)
        return validate_confirmation(trailer_number, self.line_items(load_id))

    def confirm_load(self, load_id: str, trailer_number: Optional[str], actor: Optional[str] = None) -> ConfirmationResult:
        """Validate, promote to Ready, then generate the shipping documents.

        Validation failures leave the load untouched. Once the status write
        has landed a later failure is reported as a partial failure and the
        load stays Ready.
        """
        try:
            current = self._require_load(load_id)
            if current.get("status") != LoadStatus.OPEN.value:
                raise LoadValidationError(
                    f"Load {load_id} is already confirmed",
                    details=[f"status={current.get('status')}"],
                )
            validation = validate_confirmation(trailer_number, self.line_items(load_id))
            if not validation.is_valid:
                logger.info("Load confirmation rejected", load_id=load_id, errors=validation.errors)
                return ConfirmationResult(
                    ok=False,
                    load=LoadRecord(**current),
                    validation=validation,
                    error=OperationError(
                        kind=ErrorKind.VALIDATION_ERROR,
                        message="Cannot confirm load",
                        details=validation.errors,
                    ),
                )

            trailer = (trailer_number or "").strip()
            row = self._store.update(
                "loads",
                load_id,
                {"trailer_no": trailer, "status": LoadStatus.READY.value, "updated_at": utc_now_iso()},
            )
        except CoordinatorError as exc:
            logger.warning("Load confirmation failed", load_id=load_id, kind=exc.kind.value, error=exc.message)
            return ConfirmationResult(ok=False, error=_operation_error(exc))
        except Exception as exc:
            logger.error("Load confirmation failed unexpectedly", load_id=load_id, error=str(exc))
            return ConfirmationResult(ok=False, error=_unknown_error(exc))

        load = LoadRecord(**row)
        warnings: List[OperationError] = []
        try:
            self._recorder.record_field_changes(load_id, current, row, ["trailer_no", "status"], actor)
            self._recorder.record_status_change(load_id, current.get("status"), row["status"], actor, notes="Load confirmed")
        except CoordinatorError as exc:
            warnings.append(_warning("Audit log write failed", exc))

        documents: List[DocumentReceipt] = []
        try:
            documents.append(self.export_confirmed_csv(load_id, actor))
            documents.append(self.generate_loading_documents(load_id, actor))
            self._recorder.record_custom_action(
                load_id,
                "Load Confirmed",
                f"Load confirmed with trailer {trailer}. Generated documents.",
                actor,
            )
        except Exception as exc:
            logger.error("Post-confirmation step failed", load_id=load_id, error=str(exc))
            return ConfirmationResult(
                ok=False,
                is_confirmed=True,
                load=load,
                documents=documents,
                validation=validation,
                warnings=warnings,
                error=_warning("Load confirmed but document generation failed", exc),
            )

        logger.info("Load confirmed", load_id=load_id, trailer_no=trailer, documents=len(documents))
        return ConfirmationResult(
            ok=True,
            is_confirmed=True,
            load=load,
            documents=documents,
            validation=validation,
            warnings=warnings,
        )

    def _record_document(self, load_id: str, details: str, actor: Optional[str]) -> None:
        try:
            self._recorder.record_custom_action(load_id, "Document Generated", details, actor)
        except CoordinatorError as exc:
            logger.warning("Audit write failed for generated document", load_id=load_id, error=exc.message)

    def generate_loading_documents(self, load_id: str, actor: Optional[str] = None) -> DocumentReceipt:
        load = self.get_load(load_id)
        document = LoadingDocument(
            load_id=load.load_id,
            trailer_no=load.trailer_no or "",
            lines=[
                LoadingLine(
                    line=item.line,
                    item_desc=item.item_desc or "",
                    heat_number=item.heat_number or "",
                    qty_ordered=item.qty_ordered,
                    qty_shipped=item.qty_shipped,
                    status_code=item.status_code.value,
                    markoff_reason=item.markoff_reason or "",
                )
                for item in self.line_items(load_id)
            ],
        )
        receipt = self._documents.render_loading_docs(document)
        self._record_document(load_id, "Loading Documents PDF generated", actor)
        return receipt

    def generate_bill_of_lading(self, load_id: str, actor: Optional[str] = None) -> DocumentReceipt:
        load = self.get_load(load_id)
        stops = self.stops(load_id)
        if not stops:
            raise LoadValidationError("No stop details available for Bill of Lading generation")
        document = BillOfLadingDocument(
            load_id=load.load_id,
            driver_name=load.driver_name or "",
            trailer_no=load.trailer_no or "",
            stops=[
                BillOfLadingStop(
                    seq_no=stop.seq_no,
                    customer_name=stop.customer_name or "",
                    address=stop.address or "",
                    miles=stop.miles,
                    weight=stop.weight,
                )
                for stop in stops
            ],
        )
        receipt = self._documents.render_bill_of_lading(document)
        self._record_document(load_id, "Bill of Lading PDF generated", actor)
        return receipt

    def export_confirmed_csv(self, load_id: str, actor: Optional[str] = None) -> DocumentReceipt:
        self._require_load(load_id)
        receipt = self._documents.export_confirmed_csv(load_id, self.line_items(load_id))
        self._record_document(load_id, "Confirmed CSV generated", actor)
        return receipt
