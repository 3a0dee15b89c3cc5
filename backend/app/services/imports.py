from __future__ import annotations

import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple

from sqlalchemy import select, update

from ..core.db import session_scope
from ..core.logging import get_logger
from ..core.settings import ImportSettings, get_settings
from ..models.imports import IMPORT_STAGE_ORDER, ImportJob, ImportStatus
from .enrichment import EnrichmentGateway, QaCandidate
from .errors import InvalidTransitionError, NotFoundError
from .orchestrator import LifecycleOrchestrator


logger = get_logger(__name__)
settings = get_settings()
SUPPORTED_FILE_TYPES = ("md", "txt")

# Nothing to judge when generation yields no candidates.
STAGE_SHORTCUTS = {ImportStatus.GENERATING: ImportStatus.COMPLETED}


class CandidateSource(Protocol):
    def generate_candidates(self, document_text: str, existing_tags: Sequence[str]) -> List[QaCandidate]:
        ...

    def judge_candidates(self, candidates: Sequence[QaCandidate], summary: str, threshold: float) -> List[bool]:
        ...


def _next_stages(current: ImportStatus) -> Tuple[ImportStatus, ...]:
    position = IMPORT_STAGE_ORDER.index(current)
    following = IMPORT_STAGE_ORDER[position + 1 : position + 2]
    shortcut = STAGE_SHORTCUTS.get(current)
    return following + ((shortcut,) if shortcut is not None else ())


def new_import_id() -> str:
    return f"imp_{int(time.time() * 1000)}_{secrets.token_hex(3)}"


def resolve_file_type(filename: str, format_hint: Optional[str] = None) -> str:
    file_type = (format_hint or "").strip().lower()
    if not file_type and "." in filename:
        file_type = filename.rsplit(".", 1)[-1].lower()
    file_type = file_type or "txt"
    if file_type not in SUPPORTED_FILE_TYPES:
        raise ValueError(f"Unsupported file type: {file_type}")
    return file_type


class ImportService:
    """Tracks import jobs.

    Jobs move one stage at a time through IMPORT_STAGE_ORDER, plus the
    STAGE_SHORTCUTS exits. Any stage may fail.
    Timeouts are decided by whoever looks at the job, the job itself never
    cancels.
    """

    def __init__(self, config: Optional[ImportSettings] = None) -> None:
        self.config = config or settings.imports

    def create_job(self, filename: str, file_type: str) -> ImportJob:
        with session_scope() as session:
            job = ImportJob(
                import_id=new_import_id(),
                filename=filename,
                file_type=file_type,
                status=ImportStatus.PENDING.value,
                total_qa=0,
                passed_qa=0,
                started_at=datetime.utcnow(),
            )
            session.add(job)
            session.flush()
            session.refresh(job)
        logger.info("Import %s created for %s", job.import_id, filename)
        return job

    def advance(
        self,
        import_id: str,
        status: ImportStatus,
        *,
        total_qa: Optional[int] = None,
        passed_qa: Optional[int] = None,
    ) -> ImportJob:
        target = ImportStatus(status)
        if target not in IMPORT_STAGE_ORDER:
            raise ValueError(f"{target.value} is not a forward import stage")

        values: Dict[str, Any] = {"status": target.value, "updated_at": datetime.utcnow()}
        if total_qa is not None:
            values["total_qa"] = total_qa
        if passed_qa is not None:
            values["passed_qa"] = passed_qa
        if target == ImportStatus.COMPLETED:
            values["finished_at"] = datetime.utcnow()

        with session_scope() as session:
            job = self._load(session, import_id)
            current = ImportStatus(job.status)
            if current.is_terminal or target not in _next_stages(current):
                raise InvalidTransitionError(current.value, target.value)
            self._swap(session, job, current, values)

        logger.info("Import %s: %s -> %s", import_id, current.value, target.value)
        return job

    def fail(self, import_id: str, message: str) -> Optional[ImportJob]:
        """Park a job in failed; a job that already ended is left alone."""
        with session_scope() as session:
            job = self._load(session, import_id)
            current = ImportStatus(job.status)
            if current.is_terminal:
                logger.warning("Import %s already %s, not recording failure: %s", import_id, current.value, message)
                return None
            values = {
                "status": ImportStatus.FAILED.value,
                "error_msg": (message or "Unknown error")[:2000],
                "finished_at": datetime.utcnow(),
                "updated_at": datetime.utcnow(),
            }
            if not self._swap(session, job, current, values, quiet=True):
                return None

        logger.warning("Import %s failed during %s: %s", import_id, current.value, message)
        return job

    def get_job(self, import_id: str, now: Optional[datetime] = None) -> ImportJob:
        with session_scope() as session:
            job = self._load(session, import_id)
            self._classify_timeout(session, job, now or datetime.utcnow())
        return job

    def sweep_timeouts(self, now: Optional[datetime] = None) -> List[str]:
        now = now or datetime.utcnow()
        cutoff = now - timedelta(seconds=self.config.timeout_seconds)
        open_statuses = [status.value for status in IMPORT_STAGE_ORDER if not status.is_terminal]
        timed_out: List[str] = []
        with session_scope() as session:
            jobs = (
                session.execute(
                    select(ImportJob).where(ImportJob.status.in_(open_statuses), ImportJob.started_at < cutoff)
                )
                .scalars()
                .all()
            )
            for job in jobs:
                if self._classify_timeout(session, job, now):
                    timed_out.append(job.import_id)
        return timed_out

    def _classify_timeout(self, session, job: ImportJob, now: datetime) -> bool:
        current = ImportStatus(job.status)
        if current.is_terminal:
            return False
        if now - job.started_at <= timedelta(seconds=self.config.timeout_seconds):
            return False
        values = {
            "status": ImportStatus.TIMEOUT.value,
            "error_msg": f"Import exceeded {self.config.timeout_seconds} seconds",
            "finished_at": now,
            "updated_at": now,
        }
        if not self._swap(session, job, current, values, quiet=True):
            return False
        logger.warning("Import %s timed out in %s", job.import_id, current.value)
        return True

    @staticmethod
    def _load(session, import_id: str) -> ImportJob:
        job = session.get(ImportJob, import_id)
        if job is None:
            raise NotFoundError(f"Import {import_id} not found")
        return job

    @staticmethod
    def _swap(session, job: ImportJob, current: ImportStatus, values: Dict[str, Any], quiet: bool = False) -> bool:
        result = session.execute(
            update(ImportJob)
            .where(ImportJob.import_id == job.import_id, ImportJob.status == current.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            if quiet:
                return False
            raise InvalidTransitionError(current.value, values["status"])
        session.refresh(job)
        return True


@dataclass
class ImportOutcome:
    import_id: str
    total_qa: int
    passed_qa: int
    item_ids: List[int]


class ImportPipeline:
    """parse -> generate -> judge -> enrich for one uploaded document.

    Passed candidates go through the same per-item path as manual
    submissions. Any exception ends the job as failed.
    """

    def __init__(
        self,
        orchestrator: LifecycleOrchestrator,
        imports: Optional[ImportService] = None,
        candidates: Optional[CandidateSource] = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.imports = imports or ImportService()
        self.candidates = candidates or EnrichmentGateway()

    def start(self, filename: str, file_type: str, document_text: str) -> ImportJob:
        job = self.imports.create_job(filename, file_type)
        self.orchestrator.executor.submit(self._run_safely, job.import_id, document_text)
        return job

    def _run_safely(self, import_id: str, document_text: str) -> Optional[ImportOutcome]:
        try:
            return self.run(import_id, document_text)
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Import %s crashed outside the pipeline: %s", import_id, exc)
            return None

    def run(self, import_id: str, document_text: str) -> Optional[ImportOutcome]:
        try:
            return self._run_stages(import_id, document_text)
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Import %s failed: %s", import_id, exc)
            self.imports.fail(import_id, str(exc) or type(exc).__name__)
            return None

    def _run_stages(self, import_id: str, document_text: str) -> ImportOutcome:
        self.imports.advance(import_id, ImportStatus.PARSING)
        text = self._parse(document_text)

        self.imports.advance(import_id, ImportStatus.GENERATING)
        existing_tags = self.orchestrator.lifecycle.existing_tags()
        generated = self.candidates.generate_candidates(text, existing_tags)
        if not generated:
            self.imports.advance(import_id, ImportStatus.COMPLETED, total_qa=0, passed_qa=0)
            return ImportOutcome(import_id, 0, 0, [])

        self.imports.advance(import_id, ImportStatus.JUDGING, total_qa=len(generated))
        summary = text[: self.imports.config.summary_chars]
        verdicts = self.candidates.judge_candidates(generated, summary, self.imports.config.judge_threshold)
        passed = [qa for qa, ok in zip(generated, verdicts) if ok]

        self.imports.advance(
            import_id,
            ImportStatus.ENRICHING,
            total_qa=len(generated),
            passed_qa=len(passed),
        )
        items = self.orchestrator.submit_batch((qa.question, qa.answer) for qa in passed)

        self.imports.advance(
            import_id,
            ImportStatus.COMPLETED,
            total_qa=len(generated),
            passed_qa=len(passed),
        )
        return ImportOutcome(import_id, len(generated), len(passed), [item.id for item in items])

    @staticmethod
    def _parse(document_text: str) -> str:
        text = (document_text or "").replace("\r\n", "\n").strip()
        if not text:
            raise ValueError("Document is empty")
        return text
