import threading
import unittest
from concurrent.futures import ThreadPoolExecutor

from sqlalchemy import func, select, update

from backend.app.core.db import get_session, session_scope
from backend.app.models.faq import FaqItem, FaqVote, VoteType
from backend.app.services.errors import NotFoundError, StorageError
from backend.app.services.lifecycle import FaqLifecycle
from backend.app.services.votes import CastResult, VoteLedger, anonymous_voter_key, user_voter_key
from backend.tests.support import reset_database


class VoteLedgerTests(unittest.TestCase):
    def setUp(self) -> None:
        reset_database()
        self.ledger = VoteLedger()
        self.item_id = FaqLifecycle().create("Q", "A").id

    def _ledger_rows(self) -> int:
        with get_session() as session:
            return session.execute(
                select(func.count()).select_from(FaqVote).where(FaqVote.faq_id == self.item_id)
            ).scalar_one()

    def test_same_vote_twice_is_a_conflict(self) -> None:
        voter = anonymous_voter_key("browser-fp-1")
        first = self.ledger.cast(self.item_id, voter, VoteType.UPVOTE)
        second = self.ledger.cast(self.item_id, voter, VoteType.UPVOTE)

        self.assertEqual(first, CastResult(inserted=True, switched=False))
        self.assertEqual(second, CastResult(inserted=False, switched=False))
        self.assertTrue(second.conflict)
        self.assertEqual(self.ledger.counts(self.item_id), (1, 0))
        self.assertEqual(self._ledger_rows(), 1)

    def test_switching_vote_moves_the_counter(self) -> None:
        voter = user_voter_key(7)
        self.ledger.cast(self.item_id, voter, VoteType.UPVOTE)
        result = self.ledger.cast(self.item_id, voter, VoteType.DOWNVOTE, reason="outdated")

        self.assertEqual(result, CastResult(inserted=True, switched=True))
        self.assertEqual(self.ledger.counts(self.item_id), (0, 1))
        self.assertEqual(self._ledger_rows(), 1)
        votes = self.ledger.votes_for_voter(voter)
        self.assertEqual([(vote.faq_id, vote.vote_type, vote.reason) for vote in votes], [(self.item_id, "downvote", "outdated")])

    def test_user_and_anonymous_keys_are_separate_voters(self) -> None:
        self.ledger.cast(self.item_id, user_voter_key(1), VoteType.UPVOTE)
        self.ledger.cast(self.item_id, anonymous_voter_key("1"), VoteType.UPVOTE)
        self.assertEqual(self.ledger.counts(self.item_id), (2, 0))

    def test_revoke(self) -> None:
        voter = anonymous_voter_key("fp")
        self.assertFalse(self.ledger.revoke(self.item_id, voter))
        self.assertEqual(self.ledger.counts(self.item_id), (0, 0))

        self.ledger.cast(self.item_id, voter, VoteType.DOWNVOTE)
        self.assertTrue(self.ledger.revoke(self.item_id, voter))
        self.assertEqual(self.ledger.counts(self.item_id), (0, 0))
        self.assertEqual(self._ledger_rows(), 0)
        self.assertFalse(self.ledger.revoke(self.item_id, voter))

    def test_counter_never_goes_negative(self) -> None:
        voter = anonymous_voter_key("fp")
        self.ledger.cast(self.item_id, voter, VoteType.UPVOTE)
        with session_scope() as session:
            session.execute(update(FaqItem).where(FaqItem.id == self.item_id).values(upvote_count=0))

        self.assertTrue(self.ledger.revoke(self.item_id, voter))
        self.assertEqual(self.ledger.counts(self.item_id), (0, 0))

    def _assert_counters_match_rows(self) -> None:
        with get_session() as session:
            rows = dict(
                session.execute(
                    select(FaqVote.vote_type, func.count())
                    .where(FaqVote.faq_id == self.item_id)
                    .group_by(FaqVote.vote_type)
                ).all()
            )
        self.assertEqual(self.ledger.counts(self.item_id), (rows.get("upvote", 0), rows.get("downvote", 0)))

    def test_stale_read_does_not_delete_a_replaced_row(self) -> None:
        voter = anonymous_voter_key("fp")
        self.ledger.cast(self.item_id, voter, VoteType.UPVOTE)
        with get_session() as session:
            stale = session.execute(select(FaqVote).where(FaqVote.voter_key == voter)).scalar_one()
            session.expunge(stale)

        # Another request swapped the vote while keeping the row id.
        with session_scope() as session:
            session.execute(update(FaqVote).where(FaqVote.id == stale.id).values(vote_type="downvote"))

        with session_scope() as session:
            self.assertFalse(VoteLedger._delete_row(session, stale, voter))
        self.assertEqual(self._ledger_rows(), 1)

    def test_vote_ids_are_not_reused(self) -> None:
        voter = anonymous_voter_key("fp")
        self.ledger.cast(self.item_id, voter, VoteType.UPVOTE)
        first_id = self.ledger.votes_for_voter(voter)[0].id
        self.ledger.cast(self.item_id, voter, VoteType.DOWNVOTE)
        self.assertGreater(self.ledger.votes_for_voter(voter)[0].id, first_id)

    def test_concurrent_votes_from_one_voter_keep_counters_in_step(self) -> None:
        voter = anonymous_voter_key("racer")
        operations = [VoteType.UPVOTE, VoteType.DOWNVOTE, None] * 4
        barrier = threading.Barrier(len(operations))

        def run(vote_type):
            barrier.wait()
            try:
                if vote_type is None:
                    self.ledger.revoke(self.item_id, voter)
                else:
                    self.ledger.cast(self.item_id, voter, vote_type)
            except StorageError:
                # Gave up after repeated lost races; nothing was committed.
                pass

        for _ in range(3):
            with ThreadPoolExecutor(max_workers=len(operations)) as pool:
                list(pool.map(run, operations))
            self._assert_counters_match_rows()
            self.assertLessEqual(self._ledger_rows(), 1)

    def test_concurrent_first_votes_record_one_row(self) -> None:
        voter = user_voter_key(42)
        workers = 8
        barrier = threading.Barrier(workers)

        def cast(_):
            barrier.wait()
            return self.ledger.cast(self.item_id, voter, VoteType.UPVOTE)

        with ThreadPoolExecutor(max_workers=workers) as pool:
            results = list(pool.map(cast, range(workers)))

        self.assertEqual(sum(result.inserted for result in results), 1)
        self.assertEqual(self.ledger.counts(self.item_id), (1, 0))
        self.assertEqual(self._ledger_rows(), 1)

    def test_cast_on_missing_item(self) -> None:
        with self.assertRaises(NotFoundError):
            self.ledger.cast(self.item_id + 100, anonymous_voter_key("fp"), VoteType.UPVOTE)
        with self.assertRaises(NotFoundError):
            self.ledger.counts(self.item_id + 100)

    def test_voter_key_validation(self) -> None:
        with self.assertRaises(ValueError):
            anonymous_voter_key("   ")
        with self.assertRaises(ValueError):
            anonymous_voter_key("x" * 129)
        with self.assertRaises(ValueError):
            self.ledger.cast(self.item_id, "", VoteType.UPVOTE)
        self.assertEqual(anonymous_voter_key(" fp "), "anon:fp")
        self.assertEqual(user_voter_key(3), "user:3")


if __name__ == "__main__":
    unittest.main()
