from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...core.logging import get_logger
from ...core.security import require_history_access
from ...models.user import User
from ...schemas.faq import FaqItemOut, FaqListResponse
from ...schemas.version import VersionListResponse, VersionOut, VoteCounts
from ...services.errors import NotFoundError
from ...services.lifecycle import FaqLifecycle
from ...services.versions import VersionArchive, VersionEntry
from ..deps import get_archive, get_lifecycle


logger = get_logger(__name__)
router = APIRouter(prefix="/api/v1/faqs", tags=["faq"])


def _version_out(entry: VersionEntry) -> VersionOut:
    row = entry.version
    return VersionOut(
        version=row.version_number,
        answer=row.answer,
        answer_brief=row.answer_brief,
        question_en=row.question_en,
        answer_en=row.answer_en,
        answer_brief_en=row.answer_brief_en,
        change_reason=row.change_reason,
        created_at=row.created_at,
        votes=VoteCounts(upvote=entry.upvote_count, downvote=entry.downvote_count),
    )


@router.get("", response_model=FaqListResponse)
def list_published_faqs(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100, alias="pageSize"),
    tag: Optional[str] = Query(None),
    lifecycle: FaqLifecycle = Depends(get_lifecycle),
) -> FaqListResponse:
    items, total = lifecycle.list_published(page=page, page_size=page_size, tag=tag)
    return FaqListResponse(
        total=total,
        page=page,
        pageSize=page_size,
        items=[FaqItemOut.model_validate(item) for item in items],
    )


@router.get("/{faq_id}", response_model=FaqItemOut)
def get_published_faq(faq_id: int, lifecycle: FaqLifecycle = Depends(get_lifecycle)) -> FaqItemOut:
    try:
        item = lifecycle.get_published_item(faq_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return FaqItemOut.model_validate(item)


@router.get("/{faq_id}/versions", response_model=VersionListResponse)
def list_versions(
    faq_id: int,
    archive: VersionArchive = Depends(get_archive),
    _: User = Depends(require_history_access),
) -> VersionListResponse:
    try:
        history = archive.list_versions(faq_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return VersionListResponse(
        faq_id=history.faq_id,
        current_version=history.current_version,
        versions=[_version_out(entry) for entry in history.entries],
    )


@router.get("/{faq_id}/versions/{version}", response_model=VersionOut)
def get_version(
    faq_id: int,
    version: int,
    archive: VersionArchive = Depends(get_archive),
    _: User = Depends(require_history_access),
) -> VersionOut:
    try:
        entry = archive.get_version(faq_id, version)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return _version_out(entry)
