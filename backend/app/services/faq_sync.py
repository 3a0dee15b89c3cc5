from __future__ import annotations

import argparse
import json
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func, select

from ..core.db import get_session
from ..core.logging import get_logger
from ..models.faq import FaqItem, FaqStatus, FaqVote, VoteType
from .errors import InvalidTransitionError, NotFoundError
from .lifecycle import FaqLifecycle, dedupe_labels


logger = get_logger(__name__)
DEFAULT_SYNC_DIR = "data/faq-sync"
SYNC_REVIEWER = "faq-sync"

# Content fields a pushed file may change; everything else in it is informational.
PUSH_FIELDS = (
    "question",
    "question_en",
    "answer",
    "answer_brief",
    "answer_en",
    "answer_brief_en",
    "tags",
    "categories",
    "references",
    "images",
)


@dataclass
class PullSelection:
    ids: Sequence[int] = ()
    status: Optional[FaqStatus] = None
    flagged: bool = False
    all_published: bool = False

    @property
    def empty(self) -> bool:
        return not (self.ids or self.status or self.flagged or self.all_published)


@dataclass
class PushResult:
    updated: List[int] = field(default_factory=list)
    unchanged: List[int] = field(default_factory=list)
    not_found: List[int] = field(default_factory=list)
    invalid: List[str] = field(default_factory=list)
    failed: List[int] = field(default_factory=list)


class FaqSync:
    """Round-trips item content through one JSON file per item.

    `pull` writes `<id>.json` files for offline editing; `push` applies the
    edited content back through the lifecycle. Published items are revised
    as a new version, other items get a plain edit.
    """

    def __init__(self, directory: Path, lifecycle: Optional[FaqLifecycle] = None) -> None:
        self.directory = Path(directory)
        self.lifecycle = lifecycle or FaqLifecycle()

    def pull(self, selection: PullSelection) -> List[Path]:
        if selection.empty:
            raise ValueError("Pull needs ids, a status, --flagged or --all")

        filters = []
        if selection.ids:
            filters.append(FaqItem.id.in_(list(selection.ids)))
        elif selection.status is not None:
            filters.append(FaqItem.status == FaqStatus(selection.status).value)
        elif selection.all_published:
            filters.append(FaqItem.status == FaqStatus.PUBLISHED.value)
        if selection.flagged:
            filters.append(FaqItem.downvote_count > FaqItem.upvote_count)

        with get_session() as session:
            items = session.execute(select(FaqItem).where(*filters).order_by(FaqItem.id)).scalars().all()
            reasons = self._downvote_reasons(session, [item.id for item in items])

        if not items:
            logger.info("No items matched the pull filters")
            return []

        self.directory.mkdir(parents=True, exist_ok=True)
        pulled_at = datetime.utcnow().isoformat()
        paths = []
        for item in items:
            path = self.directory / f"{item.id}.json"
            record = _export(item, reasons.get(item.id, {}), pulled_at)
            path.write_text(json.dumps(record, ensure_ascii=False, indent=2) + "\n", encoding="utf-8")
            paths.append(path)
            flagged = " [flagged]" if item.downvote_count > item.upvote_count else ""
            logger.info("Pulled %s: %s%s", path.name, item.question[:60], flagged)

        logger.info("Pulled %s item(s) to %s", len(paths), self.directory)
        return paths

    def push(self, dry_run: bool = False, reviewer: str = SYNC_REVIEWER) -> PushResult:
        if not self.directory.is_dir():
            raise FileNotFoundError(f"Sync directory not found: {self.directory}")

        result = PushResult()
        for path in sorted(self.directory.glob("*.json")):
            if path.name.startswith("_"):
                continue
            try:
                local = json.loads(path.read_text(encoding="utf-8"))
                item_id = int(local["id"])
            except (ValueError, KeyError, TypeError) as exc:
                logger.warning("Skipping %s: %s", path.name, exc)
                result.invalid.append(path.name)
                continue

            try:
                item = self.lifecycle.get_item(item_id)
            except NotFoundError:
                logger.warning("Skipping %s: FAQ %s not found", path.name, item_id)
                result.not_found.append(item_id)
                continue

            changes = _changed_fields(item, local)
            if not changes:
                result.unchanged.append(item_id)
                continue
            if dry_run:
                logger.info("Would update FAQ %s (v%s): %s", item_id, item.current_version, ", ".join(sorted(changes)))
                result.updated.append(item_id)
                continue

            change_reason = local.get("_change_reason")
            try:
                if item.status == FaqStatus.PUBLISHED.value:
                    self.lifecycle.revise_published(
                        item_id, changes, reviewer=reviewer, change_reason=change_reason
                    )
                else:
                    self.lifecycle.manual_edit(item_id, changes, reviewer=reviewer)
            except (ValueError, InvalidTransitionError) as exc:
                logger.warning("Could not push %s: %s", path.name, exc)
                result.failed.append(item_id)
                continue
            result.updated.append(item_id)

        logger.info(
            "Push done%s - updated:%d unchanged:%d not_found:%d invalid:%d failed:%d",
            " (dry run)" if dry_run else "",
            len(result.updated),
            len(result.unchanged),
            len(result.not_found),
            len(result.invalid),
            len(result.failed),
        )
        return result

    @staticmethod
    def _downvote_reasons(session, item_ids: List[int]) -> Dict[int, Dict[str, int]]:
        if not item_ids:
            return {}
        rows = session.execute(
            select(FaqVote.faq_id, FaqVote.reason, func.count())
            .where(
                FaqVote.faq_id.in_(item_ids),
                FaqVote.vote_type == VoteType.DOWNVOTE.value,
                FaqVote.reason.is_not(None),
            )
            .group_by(FaqVote.faq_id, FaqVote.reason)
        ).all()
        reasons: Dict[int, Dict[str, int]] = {}
        for faq_id, reason, count in rows:
            reasons.setdefault(faq_id, {})[reason] = count
        return reasons


def _export(item: FaqItem, downvote_reasons: Dict[str, int], pulled_at: str) -> Dict[str, Any]:
    record: Dict[str, Any] = {"id": item.id}
    for name in PUSH_FIELDS:
        record[name] = getattr(item, name)
    record.update(
        {
            "status": item.status,
            "current_version": item.current_version,
            "votes_summary": {"up": item.upvote_count, "down": item.downvote_count},
            "downvote_reasons": downvote_reasons,
            "_pulled_at": pulled_at,
        }
    )
    return record


def _changed_fields(item: FaqItem, local: Dict[str, Any]) -> Dict[str, Any]:
    changes: Dict[str, Any] = {}
    for name in PUSH_FIELDS:
        if name not in local:
            continue
        value = local[name]
        current = getattr(item, name)
        if name in ("tags", "categories"):
            if dedupe_labels(value) != list(current or []):
                changes[name] = value
        elif name in ("references", "images"):
            if list(value or []) != list(current or []):
                changes[name] = value
        elif name in ("question", "answer") and isinstance(value, str):
            if value.strip() != current:
                changes[name] = value
        elif value != current:
            changes[name] = value
    return changes


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Export FAQ items to JSON files and push edits back.")
    parser.add_argument("--dir", default=os.getenv("FAQ_SYNC_DIR", DEFAULT_SYNC_DIR), help="Sync directory")
    commands = parser.add_subparsers(dest="command", required=True)

    pull = commands.add_parser("pull", help="Write <id>.json files for the selected items")
    pull.add_argument("--all", action="store_true", help="All published items")
    pull.add_argument("--flagged", action="store_true", help="Items with more downvotes than upvotes")
    pull.add_argument("--ids", default="", help="Comma-separated item ids, e.g. 42,108")
    pull.add_argument("--status", choices=[status.value for status in FaqStatus])

    push = commands.add_parser("push", help="Apply edited files back to the database")
    push.add_argument("--dry-run", action="store_true", help="Report changes without writing them")
    push.add_argument("--reviewer", default=SYNC_REVIEWER)

    args = parser.parse_args(argv)

    from ..core.db import init_db

    init_db()
    sync = FaqSync(Path(args.dir))
    if args.command == "pull":
        ids = [int(part) for part in args.ids.split(",") if part.strip().isdigit()]
        selection = PullSelection(
            ids=ids,
            status=FaqStatus(args.status) if args.status else None,
            flagged=args.flagged,
            all_published=args.all,
        )
        if selection.empty:
            parser.error("pull needs --all, --flagged, --ids or --status")
        sync.pull(selection)
        return 0

    result = sync.push(dry_run=args.dry_run, reviewer=args.reviewer)
    return 1 if result.failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
