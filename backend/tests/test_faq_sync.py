import json
import tempfile
import unittest
from pathlib import Path

from backend.app.models.faq import FaqStatus, VoteType
from backend.app.services.enrichment import EnrichmentResult
from backend.app.services.faq_sync import FaqSync, PullSelection, main
from backend.app.services.lifecycle import FaqLifecycle
from backend.app.services.versions import VersionArchive
from backend.app.services.votes import VoteLedger, anonymous_voter_key
from backend.tests.support import reset_database


class FaqSyncTests(unittest.TestCase):
    def setUp(self) -> None:
        reset_database()
        self.archive = VersionArchive()
        self.lifecycle = FaqLifecycle(archive=self.archive)
        self._tmp = tempfile.TemporaryDirectory()
        self.directory = Path(self._tmp.name) / "faq-sync"
        self.sync = FaqSync(self.directory, lifecycle=self.lifecycle)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _in_review(self, question: str = "Q", answer: str = "first answer") -> int:
        item = self.lifecycle.create(question, "raw")
        self.lifecycle.enrichment_started(item.id)
        self.lifecycle.enrichment_succeeded(item.id, EnrichmentResult(answer=answer, tags=["ml"]))
        return item.id

    def _published(self, **kwargs) -> int:
        item_id = self._in_review(**kwargs)
        self.lifecycle.publish(item_id, reviewer="admin")
        return item_id

    def _read(self, item_id: int) -> dict:
        return json.loads((self.directory / f"{item_id}.json").read_text(encoding="utf-8"))

    def _pulled_ids(self, selection: PullSelection) -> list:
        return [int(path.stem) for path in self.sync.pull(selection)]

    def _write(self, name: str, payload) -> None:
        text = payload if isinstance(payload, str) else json.dumps(payload, ensure_ascii=False)
        (self.directory / name).write_text(text, encoding="utf-8")

    def test_pull_writes_content_and_vote_summary(self) -> None:
        item_id = self._published(question="什么是注意力?")
        ledger = VoteLedger()
        ledger.cast(item_id, anonymous_voter_key("a"), VoteType.DOWNVOTE, reason="outdated")
        ledger.cast(item_id, anonymous_voter_key("b"), VoteType.DOWNVOTE, reason="outdated")
        ledger.cast(item_id, anonymous_voter_key("c"), VoteType.UPVOTE)

        paths = self.sync.pull(PullSelection(ids=[item_id]))

        self.assertEqual([path.name for path in paths], [f"{item_id}.json"])
        record = self._read(item_id)
        self.assertEqual(record["question"], "什么是注意力?")
        self.assertEqual(record["answer"], "first answer")
        self.assertEqual(record["tags"], ["ml"])
        self.assertEqual(record["status"], FaqStatus.PUBLISHED.value)
        self.assertEqual(record["current_version"], 1)
        self.assertEqual(record["votes_summary"], {"up": 1, "down": 2})
        self.assertEqual(record["downvote_reasons"], {"outdated": 2})
        self.assertIn("_pulled_at", record)

    def test_pull_selections(self) -> None:
        published = self._published()
        flagged = self._published(question="Q2")
        in_review = self._in_review(question="Q3")
        VoteLedger().cast(flagged, anonymous_voter_key("a"), VoteType.DOWNVOTE)

        self.assertEqual(self._pulled_ids(PullSelection(all_published=True)), [published, flagged])
        self.assertEqual(self._pulled_ids(PullSelection(flagged=True)), [flagged])
        self.assertEqual(self._pulled_ids(PullSelection(status=FaqStatus.REVIEW)), [in_review])
        self.assertEqual(self.sync.pull(PullSelection(ids=[9999])), [])
        with self.assertRaises(ValueError):
            self.sync.pull(PullSelection())

    def test_push_revises_published_item_as_new_version(self) -> None:
        item_id = self._published()
        self.sync.pull(PullSelection(ids=[item_id]))
        record = self._read(item_id)
        record["answer"] = "second answer"
        record["_change_reason"] = "clarified"
        self._write(f"{item_id}.json", record)

        result = self.sync.push()

        self.assertEqual(result.updated, [item_id])
        item = self.lifecycle.get_item(item_id)
        self.assertEqual(item.status, FaqStatus.PUBLISHED.value)
        self.assertEqual(item.answer, "second answer")
        self.assertEqual(item.current_version, 2)
        entries = self.archive.list_versions(item_id).entries
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0].version.version_number, 1)
        self.assertEqual(entries[0].version.answer, "first answer")
        self.assertEqual(entries[0].version.change_reason, "clarified")

        again = self.sync.push()
        self.assertEqual((again.updated, again.unchanged), ([], [item_id]))
        self.assertEqual(self.lifecycle.get_item(item_id).current_version, 2)

    def test_push_edits_unpublished_item_without_versioning(self) -> None:
        item_id = self._in_review()
        self.sync.pull(PullSelection(ids=[item_id]))
        record = self._read(item_id)
        record["tags"] = ["ml", "nlp", "ml"]
        self._write(f"{item_id}.json", record)

        result = self.sync.push()

        self.assertEqual(result.updated, [item_id])
        item = self.lifecycle.get_item(item_id)
        self.assertEqual(item.status, FaqStatus.REVIEW.value)
        self.assertEqual(item.tags, ["ml", "nlp"])
        self.assertEqual(item.current_version, 1)
        self.assertEqual(self.archive.list_versions(item_id).entries, [])

    def test_dry_run_writes_nothing(self) -> None:
        item_id = self._published()
        self.sync.pull(PullSelection(ids=[item_id]))
        record = self._read(item_id)
        record["answer"] = "draft"
        self._write(f"{item_id}.json", record)

        result = self.sync.push(dry_run=True)

        self.assertEqual(result.updated, [item_id])
        item = self.lifecycle.get_item(item_id)
        self.assertEqual((item.answer, item.current_version), ("first answer", 1))

    def test_push_isolates_bad_files(self) -> None:
        item_id = self._published()
        self.directory.mkdir(parents=True)
        self._write("_notes.json", "not even json")
        self._write("broken.json", "{")
        self._write("no-id.json", {"answer": "x"})
        self._write("9999.json", {"id": 9999, "answer": "x"})
        self._write(f"{item_id}.json", {"id": item_id, "answer": "   "})

        result = self.sync.push()

        self.assertEqual(sorted(result.invalid), ["broken.json", "no-id.json"])
        self.assertEqual(result.not_found, [9999])
        self.assertEqual(result.failed, [item_id])
        item = self.lifecycle.get_item(item_id)
        self.assertEqual((item.status, item.answer), (FaqStatus.PUBLISHED.value, "first answer"))

    def test_command_line(self) -> None:
        item_id = self._published()
        self.assertEqual(main(["--dir", str(self.directory), "pull", "--ids", str(item_id)]), 0)
        self.assertTrue((self.directory / f"{item_id}.json").exists())
        self.assertEqual(main(["--dir", str(self.directory), "push", "--dry-run"]), 0)
        with self.assertRaises(SystemExit):
            main(["--dir", str(self.directory), "pull"])


if __name__ == "__main__":
    unittest.main()
