"""API routes for spreadsheet imports and the ERP sync."""
from __future__ import annotations

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile

from load_coordinator.core.auth import CoordinatorContext, require_roles
from load_coordinator.core.config import Settings
from load_coordinator.core.dependencies import get_app_settings, get_importer
from load_coordinator.core.errors import HTTP_STATUS_BY_KIND, CoordinatorError
from load_coordinator.core.logging import logger
from load_coordinator.models.loads import Role
from load_coordinator.models.uploads import ErpSyncResult, UploadKind, UploadResult, UploadValidation
from load_coordinator.services.importer import LoadImporter, read_table, validate_upload

router = APIRouter(prefix="/uploads", tags=["uploads"])


async def _read_rows(file: UploadFile, settings: Settings):
    content = await file.read()
    if len(content) > settings.max_upload_size:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Max size: {settings.max_upload_size / 1024 / 1024:.0f}MB",
        )
    try:
        return read_table(file.filename or "", content)
    except CoordinatorError as exc:
        raise HTTPException(status_code=HTTP_STATUS_BY_KIND[exc.kind], detail=exc.message)
    except Exception as exc:
        logger.error("Failed to parse upload", filename=file.filename, error=str(exc))
        raise HTTPException(status_code=400, detail=f"CSV parsing error: {exc}")


@router.post("/erp-sync", response_model=ErpSyncResult)
async def erp_sync(
    file: UploadFile = File(...),
    context: CoordinatorContext = Depends(require_roles(Role.ADMIN)),
    settings: Settings = Depends(get_app_settings),
    importer: LoadImporter = Depends(get_importer),
):
    rows = await _read_rows(file, settings)
    return importer.sync_erp(rows, actor=context.email)


@router.post("/{kind}/validate", response_model=UploadValidation)
async def validate_file(
    kind: UploadKind,
    file: UploadFile = File(...),
    context: CoordinatorContext = Depends(require_roles(Role.ADMIN)),
    settings: Settings = Depends(get_app_settings),
):
    rows = await _read_rows(file, settings)
    return validate_upload(rows, kind)


@router.post("/{kind}", response_model=UploadResult)
async def upload_file(
    kind: UploadKind,
    file: UploadFile = File(...),
    context: CoordinatorContext = Depends(require_roles(Role.ADMIN)),
    settings: Settings = Depends(get_app_settings),
    importer: LoadImporter = Depends(get_importer),
):
    rows = await _read_rows(file, settings)
    try:
        return importer.apply_upload(kind, file.filename or "", rows, actor=context.email)
    except CoordinatorError as exc:
        logger.warning("Upload rejected", kind=kind.value, filename=file.filename, error=exc.message)
        raise HTTPException(
            status_code=HTTP_STATUS_BY_KIND[exc.kind],
            detail={"kind": exc.kind.value, "message": exc.message, "details": exc.details},
        )
