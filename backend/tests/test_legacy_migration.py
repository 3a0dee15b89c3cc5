import os
import tempfile
import unittest

from sqlalchemy import create_engine, text

from backend.app.models.faq import FaqStatus
from backend.app.services.lifecycle import FaqLifecycle
from backend.app.services.legacy_migration import LegacyMigration
from backend.app.services.votes import VoteLedger, anonymous_voter_key
from backend.tests.support import reset_database


LEGACY_SCHEMA = [
    """
    CREATE TABLE faq_items (
        id INTEGER PRIMARY KEY,
        question TEXT NOT NULL,
        answer TEXT,
        answer_brief TEXT,
        tags TEXT,
        status TEXT,
        error_message TEXT,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE faq_votes (
        id INTEGER PRIMARY KEY,
        faq_id INTEGER,
        fingerprint TEXT,
        vote_type TEXT,
        reason TEXT,
        created_at TEXT
    )
    """,
]


class LegacyMigrationTests(unittest.TestCase):
    def setUp(self) -> None:
        reset_database()
        handle, path = tempfile.mkstemp(suffix=".db")
        os.close(handle)
        self.addCleanup(os.remove, path)
        self.source = create_engine(f"sqlite:///{path}", future=True)
        self.addCleanup(self.source.dispose)

        with self.source.begin() as conn:
            for ddl in LEGACY_SCHEMA:
                conn.execute(text(ddl))
            conn.execute(
                text(
                    "INSERT INTO faq_items (id, question, answer, answer_brief, tags, status, created_at, updated_at) "
                    "VALUES (:id, :question, :answer, :brief, :tags, :status, :created, :updated)"
                ),
                [
                    {
                        "id": 1,
                        "question": "What is RLHF?",
                        "answer": "Reward modelling",
                        "brief": "RL from feedback",
                        "tags": '["rl", "rl", "alignment"]',
                        "status": "ready",
                        "created": "2024-01-01 10:00:00",
                        "updated": "2024-02-01 10:00:00",
                    },
                    {
                        "id": 2,
                        "question": "What is LoRA?",
                        "answer": None,
                        "brief": None,
                        "tags": "{lora,finetuning}",
                        "status": "processing",
                        "created": "2024-01-02 10:00:00",
                        "updated": None,
                    },
                    {
                        "id": 3,
                        "question": "What is MoE?",
                        "answer": None,
                        "brief": None,
                        "tags": None,
                        "status": "review",
                        "created": "2024-01-03 10:00:00",
                        "updated": None,
                    },
                ],
            )
            conn.execute(
                text(
                    "INSERT INTO faq_votes (faq_id, fingerprint, vote_type, reason, created_at) "
                    "VALUES (:faq_id, :fp, :vote_type, :reason, :created)"
                ),
                [
                    {"faq_id": 1, "fp": "fp-a", "vote_type": "upvote", "reason": None, "created": "2024-03-01 00:00:00"},
                    {"faq_id": 1, "fp": "fp-a", "vote_type": "outdated", "reason": "old", "created": "2024-03-02 00:00:00"},
                    {"faq_id": 1, "fp": "fp-b", "vote_type": "upvote", "reason": None, "created": "2024-03-03 00:00:00"},
                    {"faq_id": 99, "fp": "fp-c", "vote_type": "upvote", "reason": None, "created": "2024-03-04 00:00:00"},
                    {"faq_id": 1, "fp": "fp-d", "vote_type": "bogus", "reason": None, "created": "2024-03-05 00:00:00"},
                ],
            )

    def test_migrates_statuses_and_collapses_votes(self) -> None:
        result = LegacyMigration(self.source).run()

        self.assertEqual(result.items_migrated, 3)
        self.assertEqual(result.items_skipped, 0)
        self.assertEqual(result.votes_migrated, 2)
        self.assertEqual(result.votes_dropped, 3)

        lifecycle = FaqLifecycle()
        ready = lifecycle.get_item(1)
        self.assertEqual(ready.status, FaqStatus.PUBLISHED.value)
        self.assertEqual(ready.published_answer, "Reward modelling")
        self.assertEqual(ready.tags, ["rl", "alignment"])
        self.assertEqual((ready.upvote_count, ready.downvote_count), (1, 1))

        processing = lifecycle.get_item(2)
        self.assertEqual(processing.status, FaqStatus.PENDING.value)
        self.assertEqual(processing.tags, ["lora", "finetuning"])
        self.assertEqual(processing.answer_raw, "What is LoRA?")

        self.assertEqual(lifecycle.get_item(3).status, FaqStatus.PENDING.value)

        votes = VoteLedger().votes_for_voter(anonymous_voter_key("fp-a"))
        self.assertEqual([(vote.vote_type, vote.reason) for vote in votes], [("downvote", "old")])

    def test_rerun_skips_existing_items(self) -> None:
        LegacyMigration(self.source).run()
        again = LegacyMigration(self.source).run()

        self.assertEqual(again.items_migrated, 0)
        self.assertEqual(again.items_skipped, 3)
        self.assertEqual(again.votes_migrated, 0)
        self.assertEqual(VoteLedger().counts(1), (1, 1))


if __name__ == "__main__":
    unittest.main()
