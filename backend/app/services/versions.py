from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..core.db import get_session, session_scope
from ..core.logging import get_logger
from ..models.faq import FaqItem, FaqVersion
from .errors import NotFoundError


logger = get_logger(__name__)


@dataclass(frozen=True)
class VersionContent:
    """The part of an item that is versioned on publish."""

    answer: Optional[str]
    answer_brief: Optional[str] = None
    question_en: Optional[str] = None
    answer_en: Optional[str] = None
    answer_brief_en: Optional[str] = None

    @classmethod
    def live(cls, item: FaqItem) -> "VersionContent":
        return cls(
            answer=item.answer,
            answer_brief=item.answer_brief,
            question_en=item.question_en,
            answer_en=item.answer_en,
            answer_brief_en=item.answer_brief_en,
        )

    @classmethod
    def published(cls, item: FaqItem) -> "VersionContent":
        return cls(
            answer=item.published_answer,
            answer_brief=item.published_answer_brief,
            question_en=item.published_question_en,
            answer_en=item.published_answer_en,
            answer_brief_en=item.published_answer_brief_en,
        )


@dataclass
class VersionEntry:
    version: FaqVersion
    upvote_count: int
    downvote_count: int


@dataclass
class VersionHistory:
    faq_id: int
    current_version: int
    entries: List[VersionEntry]


class VersionArchive:
    """Append-only store of previously published answers.

    Rows are only ever inserted. Vote counts attached on read are the live
    counts of the item, votes are not tracked per version.
    """

    def snapshot(
        self,
        faq_id: int,
        version_number: int,
        content: VersionContent,
        change_reason: Optional[str] = None,
        session: Optional[Session] = None,
    ) -> FaqVersion:
        if session is not None:
            return self._insert(session, faq_id, version_number, content, change_reason)
        with session_scope() as own_session:
            return self._insert(own_session, faq_id, version_number, content, change_reason)

    @staticmethod
    def _insert(
        session: Session,
        faq_id: int,
        version_number: int,
        content: VersionContent,
        change_reason: Optional[str],
    ) -> FaqVersion:
        row = FaqVersion(
            faq_id=faq_id,
            version_number=version_number,
            answer=content.answer,
            answer_brief=content.answer_brief,
            question_en=content.question_en,
            answer_en=content.answer_en,
            answer_brief_en=content.answer_brief_en,
            change_reason=change_reason,
        )
        session.add(row)
        session.flush()
        logger.info("Archived version %s of FAQ %s", version_number, faq_id)
        return row

    def list_versions(self, faq_id: int) -> VersionHistory:
        with get_session() as session:
            item = session.get(FaqItem, faq_id)
            if item is None:
                raise NotFoundError(f"FAQ {faq_id} not found")
            rows = (
                session.execute(
                    select(FaqVersion)
                    .where(FaqVersion.faq_id == faq_id)
                    .order_by(FaqVersion.version_number.desc(), FaqVersion.id.desc())
                )
                .scalars()
                .all()
            )
            entries = [VersionEntry(row, item.upvote_count, item.downvote_count) for row in rows]
            return VersionHistory(faq_id=faq_id, current_version=item.current_version, entries=entries)

    def get_version(self, faq_id: int, version_number: int) -> VersionEntry:
        with get_session() as session:
            item = session.get(FaqItem, faq_id)
            if item is None:
                raise NotFoundError(f"FAQ {faq_id} not found")
            row = (
                session.execute(
                    select(FaqVersion)
                    .where(FaqVersion.faq_id == faq_id, FaqVersion.version_number == version_number)
                    .order_by(FaqVersion.id.desc())
                    .limit(1)
                )
                .scalars()
                .first()
            )
            if row is None:
                raise NotFoundError(f"Version {version_number} of FAQ {faq_id} not found")
            return VersionEntry(row, item.upvote_count, item.downvote_count)
