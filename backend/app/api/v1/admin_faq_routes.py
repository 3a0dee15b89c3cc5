from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...core.logging import get_logger
from ...core.security import require_admin
from ...models.faq import FaqStatus
from ...models.user import User
from ...schemas.faq import (
    AdminFaqItemOut,
    AdminFaqListResponse,
    CreateFaqRequest,
    FaqActionRequest,
    FaqEditRequest,
)
from ...services.errors import InvalidTransitionError, NotFoundError, StorageError
from ...services.lifecycle import FaqLifecycle, LifecycleEvent
from ...services.orchestrator import LifecycleOrchestrator
from ..deps import get_lifecycle, get_orchestrator


logger = get_logger(__name__)
router = APIRouter(prefix="/api/v1/admin/faqs", tags=["admin-faq"])


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, InvalidTransitionError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, ValueError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    logger.error("Storage failure: %s", exc)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Internal server error",
    )


@router.get("", response_model=AdminFaqListResponse)
def list_faqs(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize"),
    status_filter: Optional[FaqStatus] = Query(None, alias="status"),
    keyword: Optional[str] = Query(None),
    lifecycle: FaqLifecycle = Depends(get_lifecycle),
    _: User = Depends(require_admin),
) -> AdminFaqListResponse:
    items, total = lifecycle.list_items(
        page=page,
        page_size=page_size,
        status=status_filter,
        keyword=keyword,
    )
    return AdminFaqListResponse(
        total=total,
        page=page,
        pageSize=page_size,
        items=[AdminFaqItemOut.model_validate(item) for item in items],
    )


@router.get("/{faq_id}", response_model=AdminFaqItemOut)
def get_faq(
    faq_id: int,
    lifecycle: FaqLifecycle = Depends(get_lifecycle),
    _: User = Depends(require_admin),
) -> AdminFaqItemOut:
    try:
        item = lifecycle.get_item(faq_id)
    except NotFoundError as exc:
        raise _http_error(exc) from exc
    return AdminFaqItemOut.model_validate(item)


@router.post("", response_model=AdminFaqItemOut, status_code=status.HTTP_201_CREATED)
def create_faq(
    body: CreateFaqRequest,
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator),
    current_user: User = Depends(require_admin),
) -> AdminFaqItemOut:
    try:
        item = orchestrator.submit(body.question, body.answer)
    except (ValueError, StorageError) as exc:
        raise _http_error(exc) from exc
    logger.info("FAQ %s submitted by %s", item.id, current_user.username)
    return AdminFaqItemOut.model_validate(item)


@router.post("/{faq_id}/actions", response_model=AdminFaqItemOut)
def apply_action(
    faq_id: int,
    body: FaqActionRequest,
    lifecycle: FaqLifecycle = Depends(get_lifecycle),
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator),
    current_user: User = Depends(require_admin),
) -> AdminFaqItemOut:
    try:
        if body.action == "retry":
            item = orchestrator.retry(faq_id)
        else:
            item = lifecycle.apply_review_action(faq_id, body.action, reviewer=current_user.username)
    except (NotFoundError, InvalidTransitionError, ValueError, StorageError) as exc:
        raise _http_error(exc) from exc
    return AdminFaqItemOut.model_validate(item)


@router.patch("/{faq_id}", response_model=AdminFaqItemOut)
def edit_faq(
    faq_id: int,
    body: FaqEditRequest,
    lifecycle: FaqLifecycle = Depends(get_lifecycle),
    orchestrator: LifecycleOrchestrator = Depends(get_orchestrator),
    current_user: User = Depends(require_admin),
) -> AdminFaqItemOut:
    try:
        item, event = lifecycle.manual_edit(
            faq_id,
            body.field_changes(),
            reviewer=current_user.username,
            status=body.status,
            change_reason=body.change_reason,
        )
    except (NotFoundError, InvalidTransitionError, ValueError, StorageError) as exc:
        raise _http_error(exc) from exc

    if event == LifecycleEvent.RETRY:
        orchestrator.dispatch(item.id)
    return AdminFaqItemOut.model_validate(item)
