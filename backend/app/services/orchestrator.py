from __future__ import annotations

import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Protocol, Sequence, Set, Tuple

from ..core.logging import get_logger
from ..core.settings import get_settings
from ..models.faq import FaqItem, FaqStatus
from .enrichment import EnrichmentGateway, EnrichmentResult
from .errors import InvalidTransitionError, NotFoundError
from .lifecycle import FaqLifecycle


logger = get_logger(__name__)
settings = get_settings()


class Analyzer(Protocol):
    def analyze(self, question: str, answer_raw: str, existing_tags: Sequence[str]) -> EnrichmentResult:
        ...


class LifecycleOrchestrator:
    """Runs enrichment attempts in the background and feeds their outcome
    back into the lifecycle.

    Callers of `submit`/`retry` get the item back as soon as it is pending.
    Attempts may be delivered more than once; the lifecycle's compare-and-swap
    on `pending -> processing` and its attempt-checked completion handlers make
    the duplicates harmless.
    """

    def __init__(
        self,
        lifecycle: Optional[FaqLifecycle] = None,
        gateway: Optional[Analyzer] = None,
        executor: Optional[Executor] = None,
        max_workers: Optional[int] = None,
    ) -> None:
        self.lifecycle = lifecycle or FaqLifecycle()
        self.gateway = gateway or EnrichmentGateway()
        self.executor = executor or ThreadPoolExecutor(
            max_workers=max_workers or settings.enrichment.max_workers,
            thread_name_prefix="enrichment",
        )
        self._lock = threading.Lock()
        self._inflight: Set[Future] = set()

    def submit(self, question: str, answer_raw: str) -> FaqItem:
        item = self.lifecycle.create(question, answer_raw)
        self.dispatch(item.id)
        return item

    def retry(self, item_id: int) -> FaqItem:
        item = self.lifecycle.retry(item_id)
        self.dispatch(item.id)
        return item

    def submit_batch(self, pairs: Iterable[Tuple[str, str]]) -> List[FaqItem]:
        created: List[FaqItem] = []
        for index, (question, answer) in enumerate(pairs):
            try:
                created.append(self.submit(question, answer))
            except Exception as exc:  # pylint: disable=broad-except
                logger.exception("Batch candidate #%s could not be submitted: %s", index + 1, exc)
        logger.info("Batch submitted %s item(s)", len(created))
        return created

    def dispatch(self, item_id: int) -> Future:
        future = self.executor.submit(self._run_attempt, item_id)
        with self._lock:
            self._inflight.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._inflight.discard(future)

    def _run_attempt(self, item_id: int) -> Optional[FaqItem]:
        try:
            return self._enrich(item_id)
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Enrichment attempt for FAQ %s crashed: %s", item_id, exc)
            return None

    def _enrich(self, item_id: int) -> Optional[FaqItem]:
        try:
            item = self.lifecycle.enrichment_started(item_id)
        except InvalidTransitionError as exc:
            logger.info("Skipping enrichment for FAQ %s: %s", item_id, exc)
            return None
        except NotFoundError:
            logger.warning("Skipping enrichment for missing FAQ %s", item_id)
            return None

        attempt = item.enrichment_attempt
        try:
            existing_tags = self.lifecycle.existing_tags()
            result = self.gateway.analyze(item.question, item.answer_raw, existing_tags)
        except Exception as exc:  # pylint: disable=broad-except
            logger.warning("Enrichment failed for FAQ %s (attempt %s): %s", item_id, attempt, exc)
            return self.lifecycle.enrichment_failed(item_id, str(exc) or type(exc).__name__, attempt)

        try:
            return self.lifecycle.enrichment_succeeded(item_id, result, attempt)
        except ValueError as exc:
            return self.lifecycle.enrichment_failed(item_id, str(exc), attempt)

    # -- maintenance -----------------------------------------------------

    def redeliver_pending(self, older_than: timedelta, now: Optional[datetime] = None) -> List[int]:
        cutoff = (now or datetime.utcnow()) - older_than
        item_ids = [item_id for item_id, _ in self.lifecycle.find_stale(FaqStatus.PENDING, cutoff)]
        for item_id in item_ids:
            self.dispatch(item_id)
        if item_ids:
            logger.info("Re-dispatched %s pending FAQ(s): %s", len(item_ids), item_ids)
        return item_ids

    def fail_stale_processing(self, older_than: timedelta, now: Optional[datetime] = None) -> List[int]:
        cutoff = (now or datetime.utcnow()) - older_than
        failed: List[int] = []
        for item_id, attempt in self.lifecycle.find_stale(FaqStatus.PROCESSING, cutoff):
            # Pinned to the attempt that was seen stuck; a newer run is left alone.
            item = self.lifecycle.enrichment_failed(
                item_id,
                f"Enrichment did not finish within {int(older_than.total_seconds())} seconds",
                attempt,
            )
            if item is not None:
                failed.append(item_id)
        if failed:
            logger.warning("Marked %s stale FAQ(s) as failed: %s", len(failed), failed)
        return failed

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        with self._lock:
            pending = list(self._inflight)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def shutdown(self, wait_for_tasks: bool = False) -> None:
        logger.info("Shutting down enrichment executor")
        self.executor.shutdown(wait=wait_for_tasks)
