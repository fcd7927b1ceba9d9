"""API routes for the load grid, load edits, confirmation and shipping documents."""
from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import FileResponse

from load_coordinator.core.auth import CoordinatorContext, get_coordinator_context, require_roles
from load_coordinator.core.dependencies import get_board, get_coordinator
from load_coordinator.core.errors import HTTP_STATUS_BY_KIND, CoordinatorError
from load_coordinator.core.logging import logger
from load_coordinator.models.loads import (
    AuditEvent,
    BulkStatusRequest,
    BulkStatusResult,
    ConfirmationResult,
    ConfirmationValidation,
    ConfirmLoadRequest,
    DocumentReceipt,
    LineItemPatch,
    LineItemUpdateResult,
    LoadListResponse,
    LoadPatch,
    LoadRecord,
    LoadUpdateResult,
    LoadWorkspace,
    OperationError,
    Role,
    StatusHistoryEvent,
    UserProfile,
)
from load_coordinator.services.coordinator import LoadCoordinator
from load_coordinator.services.visibility import LoadBoard, visible_loads

router = APIRouter(prefix="/loads", tags=["loads"])

# Load fields only ADMIN profiles may set directly.
ADMIN_ONLY_FIELDS = ("status", "carrier_code", "ship_from_loc")


class DocumentKind(str, Enum):
    LOADING_DOCS = "loading-docs"
    BILL_OF_LADING = "bill-of-lading"
    CONFIRMED_CSV = "confirmed-csv"


def _error_detail(error: OperationError) -> Dict[str, object]:
    return {"kind": error.kind.value, "message": error.message, "details": error.details}


def _raise_operation_error(error: OperationError) -> None:
    raise HTTPException(status_code=HTTP_STATUS_BY_KIND[error.kind], detail=_error_detail(error))


def _raise_coordinator_error(exc: CoordinatorError) -> None:
    raise HTTPException(
        status_code=HTTP_STATUS_BY_KIND[exc.kind],
        detail={"kind": exc.kind.value, "message": exc.message, "details": exc.details},
    )


def _visible_load(coordinator: LoadCoordinator, profile: UserProfile, load_id: str) -> LoadRecord:
    """Fetch a load, hiding it entirely from profiles that may not see it."""
    try:
        load = coordinator.get_load(load_id)
    except CoordinatorError as exc:
        _raise_coordinator_error(exc)
    if not visible_loads(profile).matches(load.model_dump(mode="json")):
        raise HTTPException(
            status_code=404,
            detail={"kind": "not_found", "message": f"Load {load_id} not found", "details": []},
        )
    return load


@router.get("", response_model=LoadListResponse)
def list_loads(
    context: CoordinatorContext = Depends(get_coordinator_context),
    board: LoadBoard = Depends(get_board),
):
    try:
        return board.list_loads(context.profile)
    except CoordinatorError as exc:
        logger.error("Failed to list loads", email=context.email, error=exc.message)
        _raise_coordinator_error(exc)


@router.post("/bulk-status", response_model=BulkStatusResult)
def bulk_update_status(
    request: BulkStatusRequest,
    context: CoordinatorContext = Depends(require_roles(Role.ADMIN)),
    coordinator: LoadCoordinator = Depends(get_coordinator),
):
    return coordinator.bulk_update_status(request.load_ids, request.status, actor=context.email)


@router.get("/{load_id}", response_model=LoadRecord)
def get_load(
    load_id: str,
    context: CoordinatorContext = Depends(get_coordinator_context),
    coordinator: LoadCoordinator = Depends(get_coordinator),
):
    return _visible_load(coordinator, context.profile, load_id)


@router.get("/{load_id}/workspace", response_model=LoadWorkspace)
def get_workspace(
    load_id: str,
    context: CoordinatorContext = Depends(get_coordinator_context),
    coordinator: LoadCoordinator = Depends(get_coordinator),
):
    _visible_load(coordinator, context.profile, load_id)
    try:
        return coordinator.load_workspace(load_id)
    except CoordinatorError as exc:
        _raise_coordinator_error(exc)


@router.patch("/{load_id}", response_model=LoadUpdateResult)
def update_load(
    load_id: str,
    patch: LoadPatch,
    context: CoordinatorContext = Depends(get_coordinator_context),
    coordinator: LoadCoordinator = Depends(get_coordinator),
):
    _visible_load(coordinator, context.profile, load_id)
    if context.role != Role.ADMIN:
        restricted = sorted(name for name in patch.changes() if name in ADMIN_ONLY_FIELDS)
        if restricted:
            raise HTTPException(
                status_code=403,
                detail=f"Role '{context.role.value}' may not change {', '.join(restricted)}",
            )
    result = coordinator.update_load(load_id, patch, actor=context.email)
    if not result.ok:
        _raise_operation_error(result.error)
    return result


@router.patch("/{load_id}/lines/{line}", response_model=LineItemUpdateResult)
def update_line_item(
    load_id: str,
    line: int,
    patch: LineItemPatch,
    context: CoordinatorContext = Depends(get_coordinator_context),
    coordinator: LoadCoordinator = Depends(get_coordinator),
):
    _visible_load(coordinator, context.profile, load_id)
    result = coordinator.update_line_item(load_id, line, patch, actor=context.email)
    if not result.ok:
        _raise_operation_error(result.error)
    return result


@router.post("/{load_id}/confirmation/validate", response_model=ConfirmationValidation)
def validate_confirmation(
    load_id: str,
    request: ConfirmLoadRequest,
    context: CoordinatorContext = Depends(get_coordinator_context),
    coordinator: LoadCoordinator = Depends(get_coordinator),
):
    _visible_load(coordinator, context.profile, load_id)
    try:
        return coordinator.check_confirmation(load_id, request.trailer_number)
    except CoordinatorError as exc:
        _raise_coordinator_error(exc)


@router.post("/{load_id}/confirm", response_model=ConfirmationResult)
def confirm_load(
    load_id: str,
    request: ConfirmLoadRequest,
    context: CoordinatorContext = Depends(get_coordinator_context),
    coordinator: LoadCoordinator = Depends(get_coordinator),
):
    _visible_load(coordinator, context.profile, load_id)
    result = coordinator.confirm_load(load_id, request.trailer_number, actor=context.email)
    # Past the status write the load is Ready; report it with the error attached.
    if not result.ok and not result.is_confirmed:
        _raise_operation_error(result.error)
    return result


@router.post("/{load_id}/documents/{kind}", response_model=DocumentReceipt)
def generate_document(
    load_id: str,
    kind: DocumentKind,
    download: bool = Query(default=False),
    context: CoordinatorContext = Depends(get_coordinator_context),
    coordinator: LoadCoordinator = Depends(get_coordinator),
):
    _visible_load(coordinator, context.profile, load_id)
    try:
        if kind == DocumentKind.LOADING_DOCS:
            receipt = coordinator.generate_loading_documents(load_id, actor=context.email)
        elif kind == DocumentKind.BILL_OF_LADING:
            receipt = coordinator.generate_bill_of_lading(load_id, actor=context.email)
        else:
            receipt = coordinator.export_confirmed_csv(load_id, actor=context.email)
    except CoordinatorError as exc:
        _raise_coordinator_error(exc)
    except Exception as exc:
        logger.error("Failed to generate document", load_id=load_id, kind=kind.value, error=str(exc))
        raise HTTPException(status_code=500, detail=str(exc))

    if download:
        return FileResponse(receipt.path, media_type=receipt.media_type, filename=receipt.filename)
    return receipt


@router.get("/{load_id}/audit", response_model=List[AuditEvent])
def get_audit_history(
    load_id: str,
    limit: Optional[int] = Query(default=None, ge=1, le=500),
    context: CoordinatorContext = Depends(get_coordinator_context),
    coordinator: LoadCoordinator = Depends(get_coordinator),
):
    _visible_load(coordinator, context.profile, load_id)
    events = coordinator.recorder.audit_history(load_id)
    return events[:limit] if limit else events


@router.get("/{load_id}/status-history", response_model=List[StatusHistoryEvent])
def get_status_history(
    load_id: str,
    context: CoordinatorContext = Depends(get_coordinator_context),
    coordinator: LoadCoordinator = Depends(get_coordinator),
):
    _visible_load(coordinator, context.profile, load_id)
    return coordinator.recorder.status_history(load_id)
