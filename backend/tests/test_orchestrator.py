import unittest
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest import mock

from backend.app.models.faq import FaqStatus
from backend.app.services.enrichment import EnrichmentResult
from backend.app.services.errors import EnrichmentError
from backend.app.services.lifecycle import FaqLifecycle
from backend.app.services.orchestrator import LifecycleOrchestrator
from backend.tests.support import FakeAnalyzer, reset_database


class LifecycleOrchestratorTests(unittest.TestCase):
    def setUp(self) -> None:
        reset_database()
        self.lifecycle = FaqLifecycle()
        self.analyzer = FakeAnalyzer()
        self.orchestrator = LifecycleOrchestrator(
            lifecycle=self.lifecycle,
            gateway=self.analyzer,
            executor=ThreadPoolExecutor(max_workers=1),
        )

    def tearDown(self) -> None:
        self.orchestrator.shutdown(wait_for_tasks=True)

    def _settle(self) -> None:
        self.assertTrue(self.orchestrator.wait_idle(timeout=10))

    def test_submit_returns_pending_and_enriches_in_background(self) -> None:
        item = self.orchestrator.submit("What is a transformer?", "attention")
        self.assertEqual(item.status, FaqStatus.PENDING.value)

        self._settle()
        enriched = self.lifecycle.get_item(item.id)
        self.assertEqual(enriched.status, FaqStatus.REVIEW.value)
        self.assertEqual(enriched.answer, "Polished answer")
        self.assertEqual(enriched.tags, ["ml"])
        self.assertEqual(enriched.enrichment_attempt, 1)
        self.assertEqual(self.analyzer.calls, ["What is a transformer?"])

    def test_gateway_failure_parks_item_in_failed(self) -> None:
        self.analyzer.error = EnrichmentError("AI API error (502)")
        item = self.orchestrator.submit("Q", "A")
        self._settle()

        failed = self.lifecycle.get_item(item.id)
        self.assertEqual(failed.status, FaqStatus.FAILED.value)
        self.assertEqual(failed.error_message, "AI API error (502)")

        self.analyzer.error = None
        self.orchestrator.retry(item.id)
        self._settle()
        recovered = self.lifecycle.get_item(item.id)
        self.assertEqual(recovered.status, FaqStatus.REVIEW.value)
        self.assertIsNone(recovered.error_message)
        self.assertEqual(recovered.enrichment_attempt, 2)

    def test_payload_without_answer_fails_the_attempt(self) -> None:
        self.analyzer.result = SimpleNamespace(answer="")
        item = self.orchestrator.submit("Q", "A")
        self._settle()

        failed = self.lifecycle.get_item(item.id)
        self.assertEqual(failed.status, FaqStatus.FAILED.value)
        self.assertEqual(failed.error_message, "Enrichment payload has no answer")

    def test_duplicate_delivery_runs_once(self) -> None:
        item = self.orchestrator.submit("Q", "A")
        self.orchestrator.dispatch(item.id)
        self.orchestrator.dispatch(item.id)
        self._settle()

        enriched = self.lifecycle.get_item(item.id)
        self.assertEqual(enriched.status, FaqStatus.REVIEW.value)
        self.assertEqual(enriched.enrichment_attempt, 1)
        self.assertEqual(len(self.analyzer.calls), 1)

    def test_batch_isolates_bad_candidates(self) -> None:
        items = self.orchestrator.submit_batch([("Q1", "A1"), ("", "A2"), ("Q3", "A3")])
        self._settle()

        self.assertEqual([item.question for item in items], ["Q1", "Q3"])
        for item in items:
            self.assertEqual(self.lifecycle.get_item(item.id).status, FaqStatus.REVIEW.value)

    def test_stale_processing_is_failed_and_late_result_dropped(self) -> None:
        item = self.lifecycle.create("Q", "A")
        started = self.lifecycle.enrichment_started(item.id)

        later = datetime.utcnow() + timedelta(hours=1)
        failed = self.orchestrator.fail_stale_processing(timedelta(minutes=10), now=later)
        self.assertEqual(failed, [item.id])
        self.assertEqual(self.lifecycle.get_item(item.id).status, FaqStatus.FAILED.value)

        late = self.lifecycle.enrichment_succeeded(
            item.id, EnrichmentResult(answer="late"), started.enrichment_attempt
        )
        self.assertIsNone(late)
        self.assertEqual(self.lifecycle.get_item(item.id).status, FaqStatus.FAILED.value)

    def test_stale_sweep_leaves_a_newer_attempt_running(self) -> None:
        item = self.lifecycle.create("Q", "A")
        self.lifecycle.enrichment_started(item.id)
        read_stale = self.lifecycle.find_stale

        def read_then_restart(status, older_than):
            stale = read_stale(status, older_than)
            # The stuck run ends and a retry starts between the read and the write.
            self.lifecycle.enrichment_failed(item.id, "timeout", attempt=1)
            self.lifecycle.retry(item.id)
            self.lifecycle.enrichment_started(item.id)
            return stale

        later = datetime.utcnow() + timedelta(hours=1)
        with mock.patch.object(self.lifecycle, "find_stale", side_effect=read_then_restart):
            failed = self.orchestrator.fail_stale_processing(timedelta(minutes=10), now=later)

        self.assertEqual(failed, [])
        current = self.lifecycle.get_item(item.id)
        self.assertEqual(current.status, FaqStatus.PROCESSING.value)
        self.assertEqual(current.enrichment_attempt, 2)

    def test_pending_items_are_redelivered(self) -> None:
        item = self.lifecycle.create("Q", "A")
        self.assertEqual(self.orchestrator.redeliver_pending(timedelta(minutes=1)), [])

        later = datetime.utcnow() + timedelta(hours=1)
        self.assertEqual(self.orchestrator.redeliver_pending(timedelta(minutes=1), now=later), [item.id])
        self._settle()
        self.assertEqual(self.lifecycle.get_item(item.id).status, FaqStatus.REVIEW.value)


if __name__ == "__main__":
    unittest.main()
