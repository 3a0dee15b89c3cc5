from __future__ import annotations

import json
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import exists, func, or_, select, update
from sqlalchemy.orm import Session

from ..core.db import get_session, session_scope
from ..core.logging import get_logger
from ..models.faq import FaqItem, FaqStatus
from .errors import InvalidTransitionError, NotFoundError
from .versions import VersionArchive, VersionContent


logger = get_logger(__name__)
MAX_ERROR_MESSAGE_LENGTH = 2000


class LifecycleEvent(str, Enum):
    ENRICHMENT_STARTED = "enrichment_started"
    ENRICHMENT_SUCCEEDED = "enrichment_succeeded"
    ENRICHMENT_FAILED = "enrichment_failed"
    RETRY = "retry"
    PUBLISH = "publish"
    REJECT = "reject"
    UNPUBLISH = "unpublish"


# event -> (statuses the event may fire from, resulting status)
TRANSITIONS: Dict[LifecycleEvent, Tuple[FrozenSet[FaqStatus], FaqStatus]] = {
    LifecycleEvent.ENRICHMENT_STARTED: (frozenset({FaqStatus.PENDING}), FaqStatus.PROCESSING),
    LifecycleEvent.ENRICHMENT_SUCCEEDED: (frozenset({FaqStatus.PROCESSING}), FaqStatus.REVIEW),
    LifecycleEvent.ENRICHMENT_FAILED: (frozenset({FaqStatus.PROCESSING}), FaqStatus.FAILED),
    LifecycleEvent.RETRY: (frozenset({FaqStatus.FAILED, FaqStatus.REJECTED}), FaqStatus.PENDING),
    LifecycleEvent.PUBLISH: (frozenset({FaqStatus.REVIEW}), FaqStatus.PUBLISHED),
    LifecycleEvent.REJECT: (frozenset({FaqStatus.REVIEW}), FaqStatus.REJECTED),
    LifecycleEvent.UNPUBLISH: (frozenset({FaqStatus.PUBLISHED}), FaqStatus.REVIEW),
}

REVIEW_ACTIONS = {
    "publish": LifecycleEvent.PUBLISH,
    "reject": LifecycleEvent.REJECT,
    "unpublish": LifecycleEvent.UNPUBLISH,
}

EDITABLE_FIELDS = frozenset(
    {
        "question",
        "answer",
        "answer_brief",
        "question_en",
        "answer_en",
        "answer_brief_en",
        "tags",
        "categories",
        "references",
        "images",
    }
)
REQUIRED_TEXT_FIELDS = frozenset({"question", "answer"})


def dedupe_labels(values: Optional[Iterable[str]]) -> List[str]:
    """Trim, drop blanks and duplicates, keep first-seen order."""
    seen: Dict[str, None] = {}
    for value in values or []:
        label = str(value).strip()
        if label:
            seen.setdefault(label, None)
    return list(seen)


def _route_status_change(current: FaqStatus, target: FaqStatus) -> Optional[LifecycleEvent]:
    for event, (sources, destination) in TRANSITIONS.items():
        if event in (
            LifecycleEvent.ENRICHMENT_STARTED,
            LifecycleEvent.ENRICHMENT_SUCCEEDED,
            LifecycleEvent.ENRICHMENT_FAILED,
        ):
            continue
        if current in sources and destination == target:
            return event
    return None


class FaqLifecycle:
    """Owns the status of FAQ items.

    Every status change goes through `_transition`, which checks the
    transition table and writes with a compare-and-swap on the expected
    status, so an automated completion and an admin action racing on the
    same item cannot both win.
    """

    def __init__(self, archive: Optional[VersionArchive] = None) -> None:
        self.archive = archive or VersionArchive()

    # -- reads -----------------------------------------------------------

    def get_item(self, item_id: int) -> FaqItem:
        with get_session() as session:
            item = session.get(FaqItem, item_id)
            if item is None:
                raise NotFoundError(f"FAQ {item_id} not found")
            session.expunge(item)
        return item

    def get_published_item(self, item_id: int) -> FaqItem:
        item = self.get_item(item_id)
        if item.status != FaqStatus.PUBLISHED.value:
            raise NotFoundError(f"FAQ {item_id} not found")
        return item

    def list_items(
        self,
        *,
        page: int,
        page_size: int,
        status: Optional[FaqStatus] = None,
        keyword: Optional[str] = None,
        tag: Optional[str] = None,
    ) -> Tuple[List[FaqItem], int]:
        if page < 1:
            page = 1
        if page_size < 1:
            page_size = 1

        filters = []
        if status is not None:
            filters.append(FaqItem.status == FaqStatus(status).value)
        if keyword:
            filters.append(
                or_(
                    FaqItem.question.contains(keyword, autoescape=True),
                    FaqItem.answer.contains(keyword, autoescape=True),
                )
            )

        with get_session() as session:
            if tag and tag.strip():
                filters.append(_has_tag(session.get_bind().dialect.name, tag.strip()))
            total = session.execute(
                select(func.count()).select_from(FaqItem).where(*filters)
            ).scalar_one()
            items = (
                session.execute(
                    select(FaqItem)
                    .where(*filters)
                    .order_by(FaqItem.created_at.desc(), FaqItem.id.desc())
                    .offset((page - 1) * page_size)
                    .limit(page_size)
                )
                .scalars()
                .all()
            )
        return list(items), total

    def list_published(
        self, *, page: int, page_size: int, tag: Optional[str] = None
    ) -> Tuple[List[FaqItem], int]:
        return self.list_items(page=page, page_size=page_size, status=FaqStatus.PUBLISHED, tag=tag)

    def existing_tags(self) -> List[str]:
        with get_session() as session:
            rows = session.execute(
                select(FaqItem.tags).where(FaqItem.status == FaqStatus.PUBLISHED.value)
            ).scalars()
            return dedupe_labels(tag for tags in rows for tag in (tags or []))

    def find_stale(self, status: FaqStatus, older_than: datetime) -> List[Tuple[int, int]]:
        """(id, enrichment attempt) of items sitting in `status` since before `older_than`."""
        status = FaqStatus(status)
        if status == FaqStatus.PROCESSING:
            since = func.coalesce(FaqItem.enrichment_started_at, FaqItem.updated_at)
        else:
            since = FaqItem.updated_at
        with get_session() as session:
            rows = session.execute(
                select(FaqItem.id, FaqItem.enrichment_attempt)
                .where(FaqItem.status == status.value, since < older_than)
                .order_by(FaqItem.id)
            ).all()
        return [(row[0], row[1]) for row in rows]

    # -- creation --------------------------------------------------------

    def create(self, question: str, answer_raw: str) -> FaqItem:
        question = (question or "").strip()
        answer_raw = (answer_raw or "").strip()
        if not question or not answer_raw:
            raise ValueError("Question and answer must not be empty")

        with session_scope() as session:
            item = FaqItem(
                question=question,
                answer_raw=answer_raw,
                status=FaqStatus.PENDING.value,
                tags=[],
                categories=[],
                references=[],
                images=[],
                current_version=1,
                enrichment_attempt=0,
                upvote_count=0,
                downvote_count=0,
            )
            session.add(item)
            session.flush()
            session.refresh(item)

        logger.info("Created FAQ %s in status %s", item.id, item.status)
        return item

    # -- enrichment events -----------------------------------------------

    def enrichment_started(self, item_id: int) -> FaqItem:
        with session_scope() as session:
            item = self._load(session, item_id)
            self._transition(
                session,
                item,
                LifecycleEvent.ENRICHMENT_STARTED,
                {
                    "error_message": None,
                    "enrichment_attempt": FaqItem.enrichment_attempt + 1,
                    "enrichment_started_at": datetime.utcnow(),
                },
            )
        return item

    def enrichment_succeeded(self, item_id: int, result: Any, attempt: Optional[int] = None) -> Optional[FaqItem]:
        """Record a successful enrichment.

        Returns None without touching the item when it is no longer
        processing or `attempt` belongs to an older run. A payload with no
        answer is refused only when it would otherwise apply.
        """
        values: Dict[str, Any] = {
            "answer": (getattr(result, "answer", None) or "").strip(),
            "answer_brief": getattr(result, "answer_brief", None),
            "question_en": getattr(result, "question_en", None),
            "answer_en": getattr(result, "answer_en", None),
            "answer_brief_en": getattr(result, "answer_brief_en", None),
            "tags": dedupe_labels(getattr(result, "tags", None)),
            "categories": dedupe_labels(getattr(result, "categories", None)),
            "references": [_dump(ref) for ref in getattr(result, "references", None) or []],
            "images": [_dump(image) for image in getattr(result, "images", None) or []],
            "error_message": None,
        }
        return self._complete(item_id, LifecycleEvent.ENRICHMENT_SUCCEEDED, values, attempt)

    def enrichment_failed(self, item_id: int, message: Optional[str], attempt: Optional[int] = None) -> Optional[FaqItem]:
        text = (message or "").strip() or "Unknown error"
        values = {"error_message": text[:MAX_ERROR_MESSAGE_LENGTH]}
        return self._complete(item_id, LifecycleEvent.ENRICHMENT_FAILED, values, attempt)

    def _complete(
        self,
        item_id: int,
        event: LifecycleEvent,
        values: Dict[str, Any],
        attempt: Optional[int],
    ) -> Optional[FaqItem]:
        with session_scope() as session:
            item = self._load(session, item_id)
            if item.status != FaqStatus.PROCESSING.value:
                logger.info("Ignoring %s for FAQ %s in status %s", event.value, item_id, item.status)
                return None
            if attempt is not None and item.enrichment_attempt != attempt:
                logger.info(
                    "Ignoring %s for FAQ %s from stale attempt %s (current %s)",
                    event.value,
                    item_id,
                    attempt,
                    item.enrichment_attempt,
                )
                return None
            if event == LifecycleEvent.ENRICHMENT_SUCCEEDED and not values.get("answer"):
                raise ValueError("Enrichment payload has no answer")
            applied = self._transition(
                session,
                item,
                event,
                values,
                extra_conditions=[FaqItem.enrichment_attempt == item.enrichment_attempt],
                quiet=True,
            )
            if not applied:
                return None
        return item

    # -- admin events ----------------------------------------------------

    def retry(self, item_id: int) -> FaqItem:
        with session_scope() as session:
            item = self._load(session, item_id)
            self._transition(session, item, LifecycleEvent.RETRY, {"error_message": None})
        return item

    def publish(self, item_id: int, reviewer: Optional[str] = None, change_reason: Optional[str] = None) -> FaqItem:
        with session_scope() as session:
            item = self._load(session, item_id)
            self._publish(session, item, reviewer, change_reason)
        return item

    def reject(self, item_id: int, reviewer: Optional[str] = None) -> FaqItem:
        with session_scope() as session:
            item = self._load(session, item_id)
            self._reject(session, item, reviewer)
        return item

    def unpublish(self, item_id: int) -> FaqItem:
        with session_scope() as session:
            item = self._load(session, item_id)
            self._transition(session, item, LifecycleEvent.UNPUBLISH, {"error_message": None})
        return item

    def apply_review_action(self, item_id: int, action: str, reviewer: Optional[str] = None) -> FaqItem:
        event = REVIEW_ACTIONS.get(action)
        if event is None:
            raise ValueError(f"Unsupported review action: {action}")
        if event == LifecycleEvent.PUBLISH:
            return self.publish(item_id, reviewer)
        if event == LifecycleEvent.REJECT:
            return self.reject(item_id, reviewer)
        return self.unpublish(item_id)

    def manual_edit(
        self,
        item_id: int,
        changes: Mapping[str, Any],
        *,
        reviewer: Optional[str] = None,
        status: Optional[FaqStatus] = None,
        change_reason: Optional[str] = None,
    ) -> Tuple[FaqItem, Optional[LifecycleEvent]]:
        """Apply admin field edits, then an optional status change.

        A status override that differs from the current status must map to
        one of the admin transitions; it is applied after the field edits so a
        publish sees the edited content.

        Edits to a published item go live at once: they are not reviewed and
        no version is recorded until the item is unpublished and published
        again.
        """
        values = self._validate_edits(changes)

        with session_scope() as session:
            item = self._load(session, item_id)
            current = FaqStatus(item.status)
            event: Optional[LifecycleEvent] = None
            if status is not None and FaqStatus(status) != current:
                event = _route_status_change(current, FaqStatus(status))
                if event is None:
                    raise InvalidTransitionError(current.value, "manual_edit")

            if values:
                self._apply_edits(session, item, current, values)
                logger.info("FAQ %s edited by %s: %s", item.id, reviewer, ", ".join(sorted(changes)))

            if event == LifecycleEvent.PUBLISH:
                self._publish(session, item, reviewer, change_reason)
            elif event == LifecycleEvent.REJECT:
                self._reject(session, item, reviewer)
            elif event is not None:
                self._transition(session, item, event, {"error_message": None})

        return item, event

    def revise_published(
        self,
        item_id: int,
        changes: Mapping[str, Any],
        *,
        reviewer: Optional[str] = None,
        change_reason: Optional[str] = None,
    ) -> FaqItem:
        """Replace the content of a published item as a new version.

        Unpublish, edit and publish share one unit of work; the replaced
        content is archived when it differs.
        """
        values = self._validate_edits(changes)
        with session_scope() as session:
            item = self._load(session, item_id)
            self._transition(session, item, LifecycleEvent.UNPUBLISH, {"error_message": None})
            if values:
                self._apply_edits(session, item, FaqStatus.REVIEW, values)
            self._publish(session, item, reviewer, change_reason)
        logger.info("FAQ %s revised by %s, now version %s", item.id, reviewer, item.current_version)
        return item

    @staticmethod
    def _validate_edits(changes: Mapping[str, Any]) -> Dict[str, Any]:
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

        values: Dict[str, Any] = {}
        for field, value in changes.items():
            if field in REQUIRED_TEXT_FIELDS:
                if not isinstance(value, str) or not value.strip():
                    raise ValueError(f"{field} must not be empty")
                values[field] = value.strip()
            elif field in ("tags", "categories"):
                values[field] = dedupe_labels(value)
            elif field in ("references", "images"):
                values[field] = [_dump(entry) for entry in value or []]
            else:
                values[field] = value
        return values

    # -- internals -------------------------------------------------------

    def _apply_edits(self, session: Session, item: FaqItem, current: FaqStatus, values: Dict[str, Any]) -> None:
        answer_after = values.get("answer", item.answer)
        if current in (FaqStatus.REVIEW, FaqStatus.PUBLISHED) and not answer_after:
            raise ValueError("Answer is required for items in review or published")
        values = dict(values, updated_at=datetime.utcnow())
        result = session.execute(
            update(FaqItem)
            .where(FaqItem.id == item.id, FaqItem.status == current.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidTransitionError(self._current_status(session, item.id), "manual_edit")
        session.refresh(item)
        if current == FaqStatus.PUBLISHED:
            logger.warning(
                "FAQ %s edited while published; public content changed outside versioning (version %s)",
                item.id,
                item.current_version,
            )

    def _publish(self, session: Session, item: FaqItem, reviewer: Optional[str], change_reason: Optional[str]) -> None:
        now = datetime.utcnow()
        content = VersionContent.live(item)
        previous = VersionContent.published(item)
        replaced_version = item.current_version
        first_publish = item.first_published_at is None
        changed = not first_publish and content != previous

        values: Dict[str, Any] = {
            "error_message": None,
            "reviewed_at": now,
            "reviewed_by": reviewer,
            "published_answer": content.answer,
            "published_answer_brief": content.answer_brief,
            "published_question_en": content.question_en,
            "published_answer_en": content.answer_en,
            "published_answer_brief_en": content.answer_brief_en,
        }
        if first_publish:
            values["first_published_at"] = now
            values["last_updated_at"] = now
        if changed:
            values["current_version"] = FaqItem.current_version + 1
            values["last_updated_at"] = now

        self._transition(
            session,
            item,
            LifecycleEvent.PUBLISH,
            values,
            extra_conditions=[FaqItem.current_version == replaced_version],
        )
        if changed:
            self.archive.snapshot(
                item.id,
                replaced_version,
                previous,
                change_reason=change_reason,
                session=session,
            )

    def _reject(self, session: Session, item: FaqItem, reviewer: Optional[str]) -> None:
        self._transition(
            session,
            item,
            LifecycleEvent.REJECT,
            {"error_message": None, "reviewed_at": datetime.utcnow(), "reviewed_by": reviewer},
        )

    @staticmethod
    def _load(session: Session, item_id: int) -> FaqItem:
        item = session.get(FaqItem, item_id)
        if item is None:
            raise NotFoundError(f"FAQ {item_id} not found")
        return item

    @staticmethod
    def _current_status(session: Session, item_id: int) -> str:
        status = session.execute(select(FaqItem.status).where(FaqItem.id == item_id)).scalar_one_or_none()
        return status or "missing"

    def _transition(
        self,
        session: Session,
        item: FaqItem,
        event: LifecycleEvent,
        values: Dict[str, Any],
        *,
        extra_conditions: Sequence[Any] = (),
        quiet: bool = False,
    ) -> bool:
        sources, destination = TRANSITIONS[event]
        current = FaqStatus(item.status)
        if current not in sources:
            raise InvalidTransitionError(current.value, event.value)

        payload = dict(values)
        payload["status"] = destination.value
        payload.setdefault("updated_at", datetime.utcnow())
        result = session.execute(
            update(FaqItem)
            .where(FaqItem.id == item.id, FaqItem.status == current.value, *extra_conditions)
            .values(**payload)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            if quiet:
                logger.info("FAQ %s changed concurrently, dropping %s", item.id, event.value)
                return False
            raise InvalidTransitionError(self._current_status(session, item.id), event.value)

        session.refresh(item)
        logger.info("FAQ %s: %s -> %s (%s)", item.id, current.value, destination.value, event.value)
        return True


def _dump(entry: Any) -> Dict[str, Any]:
    if hasattr(entry, "model_dump"):
        return entry.model_dump(exclude_none=True)
    return dict(entry)


def _has_tag(dialect: str, tag: str):
    """Exact membership test on the JSON `tags` array."""
    if dialect == "mysql":
        return func.json_contains(FaqItem.tags, json.dumps(tag)) == 1
    members = func.json_each(FaqItem.tags).table_valued("value", joins_implicitly=True)
    return exists(select(members.c.value).where(members.c.value == tag))
