from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import func, select, text, update
from sqlalchemy.engine import Engine

from ..core.db import session_scope
from ..core.logging import get_logger
from ..models.faq import FaqItem, FaqStatus, FaqVote, VoteType
from .lifecycle import dedupe_labels
from .votes import anonymous_voter_key


logger = get_logger(__name__)

# Items that were mid-enrichment have no worker left; they restart from pending.
LEGACY_STATUS_MAP = {
    "ready": FaqStatus.PUBLISHED,
    "published": FaqStatus.PUBLISHED,
    "review": FaqStatus.REVIEW,
    "rejected": FaqStatus.REJECTED,
    "failed": FaqStatus.FAILED,
    "pending": FaqStatus.PENDING,
    "processing": FaqStatus.PENDING,
}

LEGACY_VOTE_MAP = {
    "upvote": VoteType.UPVOTE,
    "downvote": VoteType.DOWNVOTE,
    "outdated": VoteType.DOWNVOTE,
    "inaccurate": VoteType.DOWNVOTE,
}


@dataclass
class MigrationResult:
    items_migrated: int
    items_skipped: int
    votes_migrated: int
    votes_dropped: int


def _json_list(raw: Any) -> List[Any]:
    if raw is None:
        return []
    if isinstance(raw, str):
        stripped = raw.strip()
        if not stripped:
            return []
        if stripped.startswith("{") and stripped.endswith("}"):
            # Postgres text[] literal, e.g. {"a","b"}
            return [part.strip().strip('"') for part in stripped[1:-1].split(",") if part.strip()]
        try:
            parsed = json.loads(stripped)
        except json.JSONDecodeError:
            return []
        return parsed if isinstance(parsed, list) else []
    return list(raw)


def _as_datetime(raw: Any) -> Optional[datetime]:
    if raw is None or isinstance(raw, datetime):
        return raw
    try:
        return datetime.fromisoformat(str(raw).replace("Z", "+00:00")).replace(tzinfo=None)
    except ValueError:
        return None


class LegacyMigration:
    """One-time copy of a legacy knowledge base into the current schema.

    Legacy status and vote values are translated here once; nothing at
    runtime knows about them. Re-running skips items that already exist.
    """

    def __init__(self, source_engine: Engine) -> None:
        self.source_engine = source_engine

    def run(self) -> MigrationResult:
        items = self._fetch("SELECT * FROM faq_items ORDER BY id")
        votes = self._fetch("SELECT * FROM faq_votes ORDER BY created_at, id")

        migrated_ids: List[int] = []
        skipped = 0
        with session_scope() as session:
            for row in items:
                if session.get(FaqItem, row["id"]) is not None:
                    skipped += 1
                    continue
                session.add(self._convert_item(row))
                migrated_ids.append(row["id"])
            session.flush()

            latest_votes, dropped = self._collapse_votes(votes, set(migrated_ids))
            for (faq_id, voter_key), row in latest_votes.items():
                session.add(
                    FaqVote(
                        faq_id=faq_id,
                        voter_key=voter_key,
                        vote_type=LEGACY_VOTE_MAP[str(row["vote_type"])].value,
                        reason=row.get("reason"),
                        detail=row.get("detail"),
                        ip_address=row.get("ip_address"),
                        created_at=_as_datetime(row.get("created_at")) or datetime.utcnow(),
                    )
                )
            session.flush()

            for faq_id in migrated_ids:
                self._recount(session, faq_id)

        result = MigrationResult(
            items_migrated=len(migrated_ids),
            items_skipped=skipped,
            votes_migrated=len(latest_votes),
            votes_dropped=dropped,
        )
        logger.info(
            "Legacy migration done - items:%d skipped:%d votes:%d dropped:%d",
            result.items_migrated,
            result.items_skipped,
            result.votes_migrated,
            result.votes_dropped,
        )
        return result

    def _fetch(self, sql: str) -> List[Dict[str, Any]]:
        with self.source_engine.connect() as conn:
            return [dict(row._mapping) for row in conn.execute(text(sql))]

    @staticmethod
    def _convert_item(row: Mapping[str, Any]) -> FaqItem:
        legacy_status = str(row.get("status") or "pending").strip().lower()
        status = LEGACY_STATUS_MAP.get(legacy_status)
        if status is None:
            raise ValueError(f"Unknown legacy status {legacy_status!r} on item {row['id']}")

        answer = row.get("answer")
        if status in (FaqStatus.REVIEW, FaqStatus.PUBLISHED) and not answer:
            status = FaqStatus.PENDING
        error_message = None
        if status == FaqStatus.FAILED:
            error_message = row.get("error_message") or "Failed before migration"

        created_at = _as_datetime(row.get("created_at")) or datetime.utcnow()
        updated_at = _as_datetime(row.get("updated_at")) or created_at
        item = FaqItem(
            id=row["id"],
            status=status.value,
            question=row["question"],
            answer_raw=row.get("answer_raw") or answer or row["question"],
            answer=answer,
            answer_brief=row.get("answer_brief"),
            question_en=row.get("question_en"),
            answer_en=row.get("answer_en"),
            answer_brief_en=row.get("answer_brief_en"),
            tags=dedupe_labels(_json_list(row.get("tags"))),
            categories=dedupe_labels(_json_list(row.get("categories"))),
            references=_json_list(row.get("references")),
            images=_json_list(row.get("images")),
            current_version=int(row.get("current_version") or 1),
            enrichment_attempt=0,
            error_message=error_message,
            upvote_count=0,
            downvote_count=0,
            created_at=created_at,
            updated_at=updated_at,
        )
        if status == FaqStatus.PUBLISHED:
            item.published_answer = item.answer
            item.published_answer_brief = item.answer_brief
            item.published_question_en = item.question_en
            item.published_answer_en = item.answer_en
            item.published_answer_brief_en = item.answer_brief_en
            item.first_published_at = updated_at
            item.last_updated_at = updated_at
        return item

    @staticmethod
    def _collapse_votes(
        votes: List[Dict[str, Any]], known_items: set
    ) -> Tuple[Dict[Tuple[int, str], Dict[str, Any]], int]:
        """Keep each voter's most recent vote per item; legacy rows allowed one per type."""
        latest: Dict[Tuple[int, str], Dict[str, Any]] = {}
        dropped = 0
        for row in votes:
            vote_type = str(row.get("vote_type") or "")
            if row.get("faq_id") not in known_items or vote_type not in LEGACY_VOTE_MAP:
                dropped += 1
                continue
            try:
                voter_key = anonymous_voter_key(row.get("fingerprint"))
            except ValueError:
                dropped += 1
                continue
            key = (row["faq_id"], voter_key)
            if key in latest:
                dropped += 1
            latest[key] = row
        return latest, dropped

    @staticmethod
    def _recount(session, faq_id: int) -> None:
        counts = dict(
            session.execute(
                select(FaqVote.vote_type, func.count())
                .where(FaqVote.faq_id == faq_id)
                .group_by(FaqVote.vote_type)
            ).all()
        )
        session.execute(
            update(FaqItem)
            .where(FaqItem.id == faq_id)
            .values(
                upvote_count=counts.get(VoteType.UPVOTE.value, 0),
                downvote_count=counts.get(VoteType.DOWNVOTE.value, 0),
            )
            .execution_options(synchronize_session=False)
        )


def main() -> None:
    import os

    from sqlalchemy import create_engine

    from ..core.db import init_db

    source_url = os.getenv("LEGACY_DATABASE_URL")
    if not source_url:
        raise SystemExit("LEGACY_DATABASE_URL is not set")
    init_db()
    LegacyMigration(create_engine(source_url, future=True)).run()


if __name__ == "__main__":
    main()
