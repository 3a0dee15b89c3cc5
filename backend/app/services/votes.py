from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Tuple

from sqlalchemy import case, delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.db import get_session, session_scope
from ..core.logging import get_logger
from ..models.faq import FaqItem, FaqVote, VoteType
from .errors import NotFoundError, StorageError


logger = get_logger(__name__)
MAX_FINGERPRINT_LENGTH = 128


@dataclass(frozen=True)
class CastResult:
    inserted: bool
    switched: bool

    @property
    def conflict(self) -> bool:
        return not self.inserted


class _LostRace(Exception):
    """Another writer changed this voter's row between our read and write."""


def user_voter_key(user_id: int) -> str:
    return f"user:{int(user_id)}"


def anonymous_voter_key(fingerprint: Optional[str]) -> str:
    value = (fingerprint or "").strip()
    if not value:
        raise ValueError("fingerprint is required")
    if len(value) > MAX_FINGERPRINT_LENGTH:
        raise ValueError("fingerprint is too long")
    return f"anon:{value}"


def _counter_column(vote_type: VoteType):
    if vote_type is VoteType.UPVOTE:
        return FaqItem.upvote_count
    if vote_type is VoteType.DOWNVOTE:
        return FaqItem.downvote_count
    raise ValueError(f"Unsupported vote type: {vote_type}")


class VoteLedger:
    """One active vote per (item, voter); keeps the item's counters in step.

    Every cast or revoke runs in one transaction. The unique constraint on
    (faq_id, voter_key) catches concurrent inserts; the losing request
    starts over and then sees the winner's row.
    """

    max_attempts = 5

    def cast(
        self,
        faq_id: int,
        voter_key: str,
        vote_type: VoteType,
        reason: Optional[str] = None,
        detail: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> CastResult:
        vote_type = VoteType(vote_type)
        if not voter_key:
            raise ValueError("voter key is required")

        for attempt in range(1, self.max_attempts + 1):
            try:
                with session_scope() as session:
                    result = self._cast_once(session, faq_id, voter_key, vote_type, reason, detail, ip_address)
            except _LostRace:
                logger.info("Vote race on FAQ %s for %s, attempt %s", faq_id, voter_key, attempt)
                continue

            if result.conflict:
                logger.info("Duplicate %s on FAQ %s from %s", vote_type.value, faq_id, voter_key)
            else:
                logger.info(
                    "Recorded %s on FAQ %s from %s (switched=%s)",
                    vote_type.value,
                    faq_id,
                    voter_key,
                    result.switched,
                )
            return result

        raise StorageError(f"Could not record vote on FAQ {faq_id} after {self.max_attempts} attempts")

    def _cast_once(
        self,
        session: Session,
        faq_id: int,
        voter_key: str,
        vote_type: VoteType,
        reason: Optional[str],
        detail: Optional[str],
        ip_address: Optional[str],
    ) -> CastResult:
        if session.get(FaqItem, faq_id) is None:
            raise NotFoundError(f"FAQ {faq_id} not found")

        existing = session.execute(
            select(FaqVote).where(FaqVote.faq_id == faq_id, FaqVote.voter_key == voter_key)
        ).scalar_one_or_none()
        if existing is not None and existing.vote_type == vote_type.value:
            return CastResult(inserted=False, switched=False)

        switched = False
        if existing is not None:
            previous_type = VoteType(existing.vote_type)
            if not self._delete_row(session, existing, voter_key):
                raise _LostRace()
            self._adjust(session, faq_id, previous_type, -1)
            switched = True

        session.add(
            FaqVote(
                faq_id=faq_id,
                voter_key=voter_key,
                vote_type=vote_type.value,
                reason=reason,
                detail=detail,
                ip_address=ip_address,
            )
        )
        try:
            session.flush()
        except IntegrityError as exc:
            raise _LostRace() from exc
        self._adjust(session, faq_id, vote_type, 1)
        return CastResult(inserted=True, switched=switched)

    def revoke(self, faq_id: int, voter_key: str) -> bool:
        for attempt in range(1, self.max_attempts + 1):
            with session_scope() as session:
                existing = session.execute(
                    select(FaqVote).where(FaqVote.faq_id == faq_id, FaqVote.voter_key == voter_key)
                ).scalar_one_or_none()
                if existing is None:
                    return False
                revoked_type = existing.vote_type
                if self._delete_row(session, existing, voter_key):
                    self._adjust(session, faq_id, VoteType(revoked_type), -1)
                    break
            logger.info("Vote race on FAQ %s for %s while revoking, attempt %s", faq_id, voter_key, attempt)
        else:
            raise StorageError(f"Could not revoke vote on FAQ {faq_id} after {self.max_attempts} attempts")

        logger.info("Revoked %s on FAQ %s from %s", revoked_type, faq_id, voter_key)
        return True

    def votes_for_voter(self, voter_key: str) -> List[FaqVote]:
        with get_session() as session:
            rows = (
                session.execute(
                    select(FaqVote).where(FaqVote.voter_key == voter_key).order_by(FaqVote.faq_id)
                )
                .scalars()
                .all()
            )
        return list(rows)

    def counts(self, faq_id: int) -> Tuple[int, int]:
        with get_session() as session:
            row = session.execute(
                select(FaqItem.upvote_count, FaqItem.downvote_count).where(FaqItem.id == faq_id)
            ).one_or_none()
        if row is None:
            raise NotFoundError(f"FAQ {faq_id} not found")
        return row[0], row[1]

    @staticmethod
    def _adjust(session: Session, faq_id: int, vote_type: VoteType, delta: int) -> None:
        column = _counter_column(vote_type)
        if delta > 0:
            new_value = column + delta
        else:
            # Clamp in SQL so racing decrements can never go below zero.
            new_value = case((column > 0, column - 1), else_=0)
        session.execute(
            update(FaqItem)
            .where(FaqItem.id == faq_id)
            .values({column: new_value})
            .execution_options(synchronize_session=False)
        )

    @staticmethod
    def _delete_row(session: Session, existing: FaqVote, voter_key: str) -> bool:
        # Match the row as read so a replacement that reused the id is left alone.
        removed = session.execute(
            delete(FaqVote).where(
                FaqVote.id == existing.id,
                FaqVote.voter_key == voter_key,
                FaqVote.vote_type == existing.vote_type,
            )
        ).rowcount
        return removed == 1
