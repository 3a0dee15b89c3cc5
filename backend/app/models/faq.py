from __future__ import annotations

from datetime import datetime
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)

from .base import Base


class FaqStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    REVIEW = "review"
    PUBLISHED = "published"
    REJECTED = "rejected"
    FAILED = "failed"


class VoteType(str, Enum):
    UPVOTE = "upvote"
    DOWNVOTE = "downvote"


def _sql_in(values) -> str:
    return ", ".join(f"'{value.value}'" for value in values)


class FaqItem(Base):
    __tablename__ = "faq_items"
    __table_args__ = (
        CheckConstraint(f"status IN ({_sql_in(FaqStatus)})", name="ck_faq_items_status"),
        CheckConstraint(
            "(status = 'failed' AND error_message IS NOT NULL) "
            "OR (status <> 'failed' AND error_message IS NULL)",
            name="ck_faq_items_error_message",
        ),
        CheckConstraint(
            "status NOT IN ('review', 'published') OR answer IS NOT NULL",
            name="ck_faq_items_answer_present",
        ),
        CheckConstraint("upvote_count >= 0", name="ck_faq_items_upvote_floor"),
        CheckConstraint("downvote_count >= 0", name="ck_faq_items_downvote_floor"),
        CheckConstraint("current_version >= 1", name="ck_faq_items_version_positive"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    status = Column(String(20), nullable=False, default=FaqStatus.PENDING.value, index=True)

    question = Column(Text, nullable=False)
    answer_raw = Column(Text, nullable=False, comment="Original submission, never modified")
    answer = Column(Text, nullable=True)
    answer_brief = Column(Text, nullable=True)
    question_en = Column(Text, nullable=True)
    answer_en = Column(Text, nullable=True)
    answer_brief_en = Column(Text, nullable=True)

    tags = Column(JSON, nullable=False, default=list)
    categories = Column(JSON, nullable=False, default=list)
    references = Column(JSON, nullable=False, default=list)
    images = Column(JSON, nullable=False, default=list)

    current_version = Column(Integer, nullable=False, default=1)
    # Content as of the last publish; the next publish diffs against it.
    published_answer = Column(Text, nullable=True)
    published_answer_brief = Column(Text, nullable=True)
    published_question_en = Column(Text, nullable=True)
    published_answer_en = Column(Text, nullable=True)
    published_answer_brief_en = Column(Text, nullable=True)
    first_published_at = Column(DateTime, nullable=True)

    enrichment_attempt = Column(Integer, nullable=False, default=0)
    enrichment_started_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)

    upvote_count = Column(Integer, nullable=False, default=0)
    downvote_count = Column(Integer, nullable=False, default=0)

    reviewed_at = Column(DateTime, nullable=True)
    reviewed_by = Column(String(100), nullable=True)
    last_updated_at = Column(DateTime, nullable=True)
    created_at = Column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        default=datetime.utcnow,
    )
    updated_at = Column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        default=datetime.utcnow,
        onupdate=datetime.utcnow,
    )


class FaqVote(Base):
    __tablename__ = "faq_votes"
    __table_args__ = (
        UniqueConstraint("faq_id", "voter_key", name="uk_faq_votes_voter"),
        CheckConstraint(f"vote_type IN ({_sql_in(VoteType)})", name="ck_faq_votes_type"),
        {"sqlite_autoincrement": True},
    )

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    faq_id = Column(Integer, ForeignKey("faq_items.id", ondelete="CASCADE"), nullable=False, index=True)
    voter_key = Column(String(160), nullable=False, index=True, comment="user:<id> or anon:<fingerprint>")
    vote_type = Column(String(20), nullable=False)
    reason = Column(String(50), nullable=True)
    detail = Column(Text, nullable=True)
    ip_address = Column(String(45), nullable=True)
    created_at = Column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        default=datetime.utcnow,
    )


class FaqVersion(Base):
    __tablename__ = "faq_versions"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    faq_id = Column(Integer, ForeignKey("faq_items.id", ondelete="CASCADE"), nullable=False, index=True)
    version_number = Column(Integer, nullable=False, comment="Version this snapshot replaced")
    answer = Column(Text, nullable=True)
    answer_brief = Column(Text, nullable=True)
    question_en = Column(Text, nullable=True)
    answer_en = Column(Text, nullable=True)
    answer_brief_en = Column(Text, nullable=True)
    change_reason = Column(Text, nullable=True)
    created_at = Column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        default=datetime.utcnow,
    )


class FaqFavorite(Base):
    __tablename__ = "faq_favorites"
    __table_args__ = (UniqueConstraint("user_id", "faq_id", name="uk_faq_favorites_user_faq"),)

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    faq_id = Column(Integer, ForeignKey("faq_items.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(
        DateTime,
        nullable=False,
        server_default=func.now(),
        default=datetime.utcnow,
    )
