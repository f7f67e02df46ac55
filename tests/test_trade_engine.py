from pathlib import Path
import sys
import unittest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.append(str(PROJECT_ROOT))

from market_fixtures import make_engine, seed_inventory  # noqa: E402
from trades.engine import CompletionResult  # noqa: E402
from trades.errors import (  # noqa: E402
    ALREADY_REVIEWED,
    ILLEGAL_TRANSITION,
    ITEM_BUSY,
    MISSING_TITLE,
    NOT_PARTICIPANT,
    NOT_RECEIVER,
    TRADE_NOT_FOUND,
    USER_BLOCKED,
    ConflictError,
    NotFoundError,
    StateError,
    ValidationError,
)
from trades.models import TradeStatus  # noqa: E402
from trades.progression import EVENT_REVIEW_SUBMITTED, EVENT_TRADE_COMPLETED  # noqa: E402


class TradeLifecycleTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.engine, self.notifier = make_engine()
        await seed_inventory(self.engine)

    async def test_offer_accept_complete_review(self) -> None:
        trade = await self.engine.create_offer("alice", "bob", ["x"], ["y"])
        self.assertEqual(trade.status, TradeStatus.PENDING)
        self.assertEqual((trade.offered_item_id, trade.wanted_item_id), ("x", "y"))

        accepted = await self.engine.respond("bob", trade.trade_id, accept=True)
        self.assertEqual(accepted.status, TradeStatus.ACCEPTED)
        self.assertIn("y", await self.engine.busy_item_ids("bob"))

        completed = await self.engine.complete("alice", trade.trade_id)
        self.assertEqual(completed.status, TradeStatus.COMPLETED)

        review = await self.engine.reviews.submit_review("alice", "bob", trade.trade_id, 5, "great trade")
        self.assertEqual(review.rating, 5)
        with self.assertRaises(ConflictError) as cm:
            await self.engine.reviews.submit_review("alice", "bob", trade.trade_id, 4)
        self.assertEqual(cm.exception.code, ALREADY_REVIEWED)

        await self.engine.progression.drain()
        self.assertEqual(self.notifier.names(), [EVENT_TRADE_COMPLETED, EVENT_REVIEW_SUBMITTED])

    async def test_reject_releases_sender_items(self) -> None:
        trade = await self.engine.create_offer("alice", "bob", ["x"], ["y"])
        rejected = await self.engine.respond("bob", trade.trade_id, accept=False)
        self.assertEqual(rejected.status, TradeStatus.REJECTED)
        self.assertEqual(await self.engine.busy_item_ids("alice"), frozenset())
        await self.engine.create_offer("alice", "carol", ["x"], ["z"])

    async def test_only_receiver_can_respond(self) -> None:
        trade = await self.engine.create_offer("alice", "bob", ["x"], ["y"])
        with self.assertRaises(ValidationError) as cm:
            await self.engine.respond("alice", trade.trade_id, accept=True)
        self.assertEqual(cm.exception.code, NOT_RECEIVER)

    async def test_respond_to_terminal_trade_is_state_error(self) -> None:
        trade = await self.engine.create_offer("alice", "bob", ["x"], ["y"])
        await self.engine.cancel("alice", trade.trade_id)
        with self.assertRaises(StateError) as cm:
            await self.engine.respond("bob", trade.trade_id, accept=True)
        self.assertEqual(cm.exception.code, ILLEGAL_TRANSITION)

    async def test_accepted_trade_cannot_be_responded_to_again(self) -> None:
        trade = await self.engine.create_offer("alice", "bob", ["x"], ["y"])
        await self.engine.respond("bob", trade.trade_id, accept=True)
        with self.assertRaises(StateError):
            await self.engine.respond("bob", trade.trade_id, accept=False)

    async def test_accept_rechecks_receiver_busy_set(self) -> None:
        first = await self.engine.create_offer("alice", "bob", ["x"], ["y"])
        second = await self.engine.create_offer("carol", "bob", ["z"], ["y"])
        await self.engine.respond("bob", first.trade_id, accept=True)
        with self.assertRaises(ConflictError) as cm:
            await self.engine.respond("bob", second.trade_id, accept=True)
        self.assertEqual(cm.exception.code, ITEM_BUSY)
        self.assertEqual((await self.engine.get_trade(second.trade_id)).status, TradeStatus.PENDING)

    async def test_accept_refused_after_block(self) -> None:
        trade = await self.engine.create_offer("alice", "bob", ["x"], ["y"])
        await self.engine.block_user("alice", "bob")
        with self.assertRaises(ValidationError) as cm:
            await self.engine.respond("bob", trade.trade_id, accept=True)
        self.assertEqual(cm.exception.code, USER_BLOCKED)

    async def test_complete_requires_accepted(self) -> None:
        trade = await self.engine.create_offer("alice", "bob", ["x"], ["y"])
        with self.assertRaises(StateError):
            await self.engine.complete("alice", trade.trade_id)

    async def test_outsider_cannot_cancel(self) -> None:
        trade = await self.engine.create_offer("alice", "bob", ["x"], ["y"])
        with self.assertRaises(ValidationError) as cm:
            await self.engine.cancel("carol", trade.trade_id)
        self.assertEqual(cm.exception.code, NOT_PARTICIPANT)

    async def test_either_party_can_cancel_accepted_trade(self) -> None:
        trade = await self.engine.create_offer("alice", "bob", ["x"], ["y"])
        await self.engine.respond("bob", trade.trade_id, accept=True)
        cancelled = await self.engine.cancel("bob", trade.trade_id)
        self.assertEqual(cancelled.status, TradeStatus.CANCELLED)
        self.assertEqual(await self.engine.busy_item_ids("bob"), frozenset())

    async def test_unknown_trade(self) -> None:
        with self.assertRaises(NotFoundError) as cm:
            await self.engine.get_trade("missing-trade")
        self.assertEqual(cm.exception.code, TRADE_NOT_FOUND)

    async def test_two_phase_completion(self) -> None:
        trade = await self.engine.create_offer("alice", "bob", ["x"], ["y"])
        await self.engine.respond("bob", trade.trade_id, accept=True)

        self.assertEqual(await self.engine.confirm_completion("alice", trade.trade_id), CompletionResult.CONFIRMED)
        self.assertEqual(
            await self.engine.confirm_completion("alice", trade.trade_id), CompletionResult.ALREADY_CONFIRMED
        )
        status = await self.engine.completion_status("bob", trade.trade_id)
        self.assertEqual(status, {"user_confirmed": False, "partner_confirmed": True, "is_complete": False})

        self.assertEqual(
            await self.engine.confirm_completion("bob", trade.trade_id), CompletionResult.TRADE_COMPLETED
        )
        self.assertEqual((await self.engine.get_trade(trade.trade_id)).status, TradeStatus.COMPLETED)
        self.assertEqual(
            await self.engine.confirm_completion("alice", trade.trade_id), CompletionResult.TRADE_COMPLETED
        )

        await self.engine.progression.drain()
        self.assertEqual(self.notifier.names(), [EVENT_TRADE_COMPLETED])

    async def test_confirm_pending_trade_is_state_error(self) -> None:
        trade = await self.engine.create_offer("alice", "bob", ["x"], ["y"])
        with self.assertRaises(StateError):
            await self.engine.confirm_completion("alice", trade.trade_id)

    async def test_history_records_every_transition(self) -> None:
        trade = await self.engine.create_offer("alice", "bob", ["x"], ["y"])
        await self.engine.respond("bob", trade.trade_id, accept=True)
        await self.engine.complete("bob", trade.trade_id)
        history = await self.engine.trade_history(trade.trade_id)
        self.assertEqual(
            [(h["from_status"], h["to_status"]) for h in history],
            [(None, "pending"), ("pending", "accepted"), ("accepted", "completed")],
        )
        self.assertEqual([h["actor_id"] for h in history], ["alice", "bob", "bob"])


class TradeQueryTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.engine, _ = make_engine()
        await seed_inventory(self.engine)

    async def test_incoming_and_sent_offers(self) -> None:
        t1 = await self.engine.create_offer("alice", "bob", ["x"], ["y"])
        t2 = await self.engine.create_offer("carol", "bob", ["z"], ["y2"])
        incoming = await self.engine.list_incoming_offers("bob")
        self.assertCountEqual([t.trade_id for t in incoming], [t1.trade_id, t2.trade_id])
        sent = await self.engine.list_sent_offers("alice")
        self.assertEqual([t.trade_id for t in sent], [t1.trade_id])

    async def test_active_trades_are_accepted_or_completed(self) -> None:
        t1 = await self.engine.create_offer("alice", "bob", ["x"], ["y"])
        t2 = await self.engine.create_offer("alice", "carol", ["x2"], ["z"])
        await self.engine.create_offer("alice", "bob", ["x3"], ["y2"])
        await self.engine.respond("bob", t1.trade_id, accept=True)
        await self.engine.respond("carol", t2.trade_id, accept=True)
        await self.engine.complete("carol", t2.trade_id)
        active = await self.engine.list_active_trades("alice")
        self.assertCountEqual([t.trade_id for t in active], [t1.trade_id, t2.trade_id])

    async def test_latest_trade_with(self) -> None:
        self.assertIsNone(await self.engine.latest_trade_with("alice", "bob"))
        await self.engine.create_offer("alice", "bob", ["x"], ["y"])
        newer = await self.engine.create_offer("bob", "alice", ["y2"], ["x2"])
        latest = await self.engine.latest_trade_with("alice", "bob")
        self.assertEqual(latest.trade_id, newer.trade_id)
        self.assertIsNone(await self.engine.latest_trade_with("alice", "bob", [TradeStatus.COMPLETED]))

    async def test_hydrate_reports_missing_items(self) -> None:
        trade = await self.engine.create_offer("alice", "bob", ["x", "x2"], ["y"])
        await self.engine.store.delete("items", "x2")
        [hydrated] = await self.engine.hydrate_trades([trade])
        self.assertEqual([i.item_id for i in hydrated.offered_items], ["x"])
        self.assertEqual([i.item_id for i in hydrated.wanted_items], ["y"])
        self.assertEqual(hydrated.missing_item_ids, ("x2",))

    async def test_add_item_requires_title(self) -> None:
        with self.assertRaises(ValidationError) as cm:
            await self.engine.add_item("alice", "   ")
        self.assertEqual(cm.exception.code, MISSING_TITLE)

    async def test_owned_items(self) -> None:
        items = await self.engine.list_owned_items("bob")
        self.assertCountEqual([i.item_id for i in items], ["y", "y2"])
        self.assertTrue(all(i.owner_id == "bob" for i in items))
