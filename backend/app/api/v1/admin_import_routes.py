from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from ...core.logging import get_logger
from ...core.security import require_admin
from ...core.settings import get_settings
from ...models.user import User
from ...schemas.imports import CreateImportRequest, CreateImportResponse, ImportJobOut
from ...services.errors import NotFoundError
from ...services.imports import ImportPipeline, ImportService, resolve_file_type
from ..deps import get_import_pipeline, get_import_service


logger = get_logger(__name__)
settings = get_settings()
router = APIRouter(prefix="/api/v1/admin/imports", tags=["admin-import"])


@router.post("", response_model=CreateImportResponse, status_code=status.HTTP_202_ACCEPTED)
def create_import(
    body: CreateImportRequest,
    pipeline: ImportPipeline = Depends(get_import_pipeline),
    current_user: User = Depends(require_admin),
) -> CreateImportResponse:
    try:
        file_type = resolve_file_type(body.filename, body.format)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    if len(body.content.encode("utf-8")) > settings.imports.max_document_bytes:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Document exceeds {settings.imports.max_document_bytes} bytes",
        )

    job = pipeline.start(body.filename, file_type, body.content)
    logger.info("Import %s started by %s (%s)", job.import_id, current_user.username, body.filename)
    return CreateImportResponse(
        import_id=job.import_id,
        status=job.status,
        file_type=job.file_type,
        message="Import accepted",
    )


@router.get("/{import_id}", response_model=ImportJobOut)
def get_import(
    import_id: str,
    imports: ImportService = Depends(get_import_service),
    _: User = Depends(require_admin),
) -> ImportJobOut:
    try:
        job = imports.get_job(import_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return ImportJobOut.model_validate(job)
