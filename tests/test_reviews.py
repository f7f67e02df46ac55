from pathlib import Path
import sys
import unittest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.append(str(PROJECT_ROOT))

from market_fixtures import make_engine, seed_inventory  # noqa: E402
from trades.errors import (  # noqa: E402
    ALREADY_REVIEWED,
    CONTENT_REJECTED,
    INVALID_RATING,
    NO_COMPLETED_TRADE,
    REVIEWEE_NOT_PARTICIPANT,
    SELF_REVIEW,
    TRADE_NOT_FOUND,
    ConflictError,
    NotFoundError,
    SanitizationError,
    StateError,
    ValidationError,
)


class ReviewGateTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.engine, self.notifier = make_engine()
        await seed_inventory(self.engine)
        self.reviews = self.engine.reviews

    async def _completed_trade(self, sender="alice", receiver="bob", offered=("x",), wanted=("y",)):
        trade = await self.engine.create_offer(sender, receiver, list(offered), list(wanted))
        await self.engine.respond(receiver, trade.trade_id, accept=True)
        return await self.engine.complete(sender, trade.trade_id)

    async def test_review_allowed_once_per_party(self) -> None:
        trade = await self._completed_trade()
        self.assertTrue(await self.reviews.can_review("alice", trade.trade_id))
        self.assertTrue(await self.reviews.can_review("bob", trade.trade_id))

        await self.reviews.submit_review("alice", "bob", trade.trade_id, 5, "great trade")
        self.assertFalse(await self.reviews.can_review("alice", trade.trade_id))
        self.assertEqual(await self.reviews.review_block_reason("alice", trade.trade_id), ALREADY_REVIEWED)

        # the other party is unaffected
        await self.reviews.submit_review("bob", "alice", trade.trade_id, 4)

    async def test_review_requires_completed_trade(self) -> None:
        trade = await self.engine.create_offer("alice", "bob", ["x"], ["y"])
        await self.engine.respond("bob", trade.trade_id, accept=True)
        self.assertEqual(await self.reviews.review_block_reason("alice", trade.trade_id), NO_COMPLETED_TRADE)
        with self.assertRaises(StateError) as cm:
            await self.reviews.submit_review("alice", "bob", trade.trade_id, 5)
        self.assertEqual(cm.exception.code, NO_COMPLETED_TRADE)

    async def test_outsider_cannot_review(self) -> None:
        trade = await self._completed_trade()
        self.assertEqual(await self.reviews.review_block_reason("carol", trade.trade_id), NO_COMPLETED_TRADE)
        with self.assertRaises(StateError) as cm:
            await self.reviews.submit_review("carol", "bob", trade.trade_id, 3)
        self.assertEqual(cm.exception.code, NO_COMPLETED_TRADE)

    async def test_reviewee_must_be_counterparty(self) -> None:
        trade = await self._completed_trade()
        with self.assertRaises(ValidationError) as cm:
            await self.reviews.submit_review("alice", "carol", trade.trade_id, 3)
        self.assertEqual(cm.exception.code, REVIEWEE_NOT_PARTICIPANT)

    async def test_self_review_and_rating_bounds(self) -> None:
        trade = await self._completed_trade()
        with self.assertRaises(ValidationError) as cm:
            await self.reviews.submit_review("alice", "alice", trade.trade_id, 5)
        self.assertEqual(cm.exception.code, SELF_REVIEW)
        for rating in (0, 6, True, 4.5):
            with self.assertRaises(ValidationError) as cm:
                await self.reviews.submit_review("alice", "bob", trade.trade_id, rating)
            self.assertEqual(cm.exception.code, INVALID_RATING)

    async def test_missing_trade(self) -> None:
        with self.assertRaises(NotFoundError) as cm:
            await self.reviews.can_review("alice", "no-such-trade")
        self.assertEqual(cm.exception.code, TRADE_NOT_FOUND)

    async def test_spam_comment_rejected(self) -> None:
        trade = await self._completed_trade()
        with self.assertRaises(SanitizationError) as cm:
            await self.reviews.submit_review("alice", "bob", trade.trade_id, 5, "FREE MONEY at my shop")
        self.assertEqual(cm.exception.code, CONTENT_REJECTED)
        self.assertTrue(await self.reviews.can_review("alice", trade.trade_id))

    async def test_comment_links_removed(self) -> None:
        trade = await self._completed_trade()
        review = await self.reviews.submit_review("alice", "bob", trade.trade_id, 5, "see https://example.com/p")
        self.assertEqual(review.comment, "see [link removed]")

    async def test_legacy_review_without_trade_id(self) -> None:
        trade = await self._completed_trade()
        with self.assertLogs("trades.reviews", level="WARNING"):
            review = await self.reviews.submit_review("bob", "alice", None, 4)
        self.assertEqual(review.trade_id, trade.trade_id)

        with self.assertRaises(StateError):
            await self.reviews.submit_review("carol", "alice", None, 4)

    async def test_duplicate_insert_race_maps_to_already_reviewed(self) -> None:
        trade = await self._completed_trade()
        await self.reviews.submit_review("alice", "bob", trade.trade_id, 5)

        async def _never_reviewed(reviewer_id, trade_id):
            return False

        # simulate a second request that passed the pre-check before the first insert landed
        self.reviews.has_reviewed = _never_reviewed
        with self.assertRaises(ConflictError) as cm:
            await self.reviews.submit_review("alice", "bob", trade.trade_id, 3)
        self.assertEqual(cm.exception.code, ALREADY_REVIEWED)

    async def test_rating_summary(self) -> None:
        first = await self._completed_trade()
        second = await self._completed_trade("carol", "bob", ("z",), ("y2",))
        await self.reviews.submit_review("alice", "bob", first.trade_id, 5)
        await self.reviews.submit_review("carol", "bob", second.trade_id, 2)

        summary = await self.reviews.rating_summary("bob")
        self.assertEqual(summary.count, 2)
        self.assertEqual(summary.average, 3.5)
        self.assertEqual(len(await self.reviews.reviews_for_user("bob")), 2)

        empty = await self.reviews.rating_summary("carol")
        self.assertEqual((empty.count, empty.average), (0, None))
