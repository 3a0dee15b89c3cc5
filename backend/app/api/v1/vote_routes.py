from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from ...core.logging import get_logger
from ...core.security import get_optional_user
from ...models.user import User
from ...schemas.vote import CastVoteRequest, CastVoteResponse, RevokeVoteResponse, VoteOut, VoterVotesResponse
from ...services.errors import NotFoundError, StorageError
from ...services.lifecycle import FaqLifecycle
from ...services.votes import VoteLedger, anonymous_voter_key, user_voter_key
from ..deps import get_lifecycle, get_vote_ledger


logger = get_logger(__name__)
router = APIRouter(prefix="/api/v1", tags=["vote"])


def _resolve_voter_key(current_user: Optional[User], fingerprint: Optional[str]) -> str:
    """Signed-in callers always vote as themselves; anonymous ones need a fingerprint."""
    if current_user is not None:
        return user_voter_key(current_user.id)
    try:
        return anonymous_voter_key(fingerprint)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@router.post("/faqs/{faq_id}/vote", response_model=CastVoteResponse)
def cast_vote(
    faq_id: int,
    body: CastVoteRequest,
    request: Request,
    ledger: VoteLedger = Depends(get_vote_ledger),
    lifecycle: FaqLifecycle = Depends(get_lifecycle),
    current_user: Optional[User] = Depends(get_optional_user),
) -> CastVoteResponse:
    voter_key = _resolve_voter_key(current_user, body.voter_key)
    ip_address = request.client.host if request.client else None
    try:
        lifecycle.get_published_item(faq_id)
        result = ledger.cast(
            faq_id,
            voter_key,
            body.type,
            reason=body.reason,
            detail=body.detail,
            ip_address=ip_address,
        )
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except StorageError as exc:
        logger.error("Vote on FAQ %s failed: %s", faq_id, exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from exc

    if result.conflict:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Already voted")
    return CastVoteResponse(inserted=result.inserted, switched=result.switched)


@router.delete("/faqs/{faq_id}/vote", response_model=RevokeVoteResponse)
def revoke_vote(
    faq_id: int,
    voter_key: Optional[str] = Query(None, alias="voterKey"),
    ledger: VoteLedger = Depends(get_vote_ledger),
    current_user: Optional[User] = Depends(get_optional_user),
) -> RevokeVoteResponse:
    key = _resolve_voter_key(current_user, voter_key)
    try:
        removed = ledger.revoke(faq_id, key)
    except StorageError as exc:
        logger.error("Revoking vote on FAQ %s failed: %s", faq_id, exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        ) from exc
    return RevokeVoteResponse(removed=removed)


@router.get("/votes", response_model=VoterVotesResponse)
def list_votes(
    voter_key: Optional[str] = Query(None, alias="voterKey"),
    ledger: VoteLedger = Depends(get_vote_ledger),
    current_user: Optional[User] = Depends(get_optional_user),
) -> VoterVotesResponse:
    key = _resolve_voter_key(current_user, voter_key)
    votes = ledger.votes_for_voter(key)
    return VoterVotesResponse(votes=[VoteOut.model_validate(vote) for vote in votes])
