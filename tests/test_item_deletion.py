from pathlib import Path
import sys
import unittest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.append(str(PROJECT_ROOT))

from market_fixtures import FlakyRecordStore, make_engine, seed_inventory  # noqa: E402
from trades.errors import (  # noqa: E402
    CASCADE_INCOMPLETE,
    ITEM_NOT_FOUND,
    NOT_ITEM_OWNER,
    CascadeIncompleteError,
    NotFoundError,
    ValidationError,
)
from trades.models import TradeStatus  # noqa: E402


class ItemDeletionTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.store = FlakyRecordStore()
        self.engine, _ = make_engine(self.store)
        await seed_inventory(self.engine)

    async def _status(self, trade_id):
        return (await self.engine.get_trade(trade_id)).status

    async def test_deleting_wanted_item_cancels_accepted_trade(self) -> None:
        trade = await self.engine.create_offer("carol", "bob", ["z"], ["y"])
        await self.engine.respond("bob", trade.trade_id, accept=True)

        result = await self.engine.delete_item("bob", "y")
        self.assertEqual(result.cancelled_count, 1)
        self.assertEqual(result.cancelled_trade_ids, (trade.trade_id,))
        self.assertEqual(await self._status(trade.trade_id), TradeStatus.CANCELLED)
        self.assertIsNone(await self.engine.items.get_item("y"))
        self.assertEqual(await self.engine.busy_item_ids("carol"), frozenset())

    async def test_cascade_finds_items_in_additional_ids(self) -> None:
        bundle = await self.engine.create_offer("alice", "bob", ["x", "x2"], ["y", "y2"])
        other = await self.engine.create_offer("carol", "bob", ["z"], ["y2"])
        untouched = await self.engine.create_offer("carol", "alice", ["z2"], ["x3"])

        result = await self.engine.delete_item("bob", "y2")
        self.assertEqual(result.cancelled_count, 2)
        self.assertCountEqual(result.cancelled_trade_ids, [bundle.trade_id, other.trade_id])
        self.assertEqual(await self._status(untouched.trade_id), TradeStatus.PENDING)

    async def test_terminal_trades_are_left_alone(self) -> None:
        trade = await self.engine.create_offer("alice", "bob", ["x"], ["y"])
        await self.engine.respond("bob", trade.trade_id, accept=False)
        result = await self.engine.delete_item("alice", "x")
        self.assertEqual(result.cancelled_count, 0)
        self.assertEqual(await self._status(trade.trade_id), TradeStatus.REJECTED)

    async def test_partial_failure_keeps_item_and_rerun_finishes(self) -> None:
        first = await self.engine.create_offer("alice", "bob", ["x"], ["y"])
        second = await self.engine.create_offer("carol", "bob", ["z"], ["y"])
        self.store.fail_trade_updates.add(second.trade_id)

        with self.assertRaises(CascadeIncompleteError) as cm:
            await self.engine.delete_item("bob", "y")
        err = cm.exception
        self.assertEqual(err.code, CASCADE_INCOMPLETE)
        self.assertEqual(err.cancelled_count, 1)
        self.assertEqual(err.failed_trade_ids, (second.trade_id,))
        self.assertIsNotNone(await self.engine.items.get_item("y"))
        self.assertEqual(await self._status(first.trade_id), TradeStatus.CANCELLED)
        self.assertEqual(await self._status(second.trade_id), TradeStatus.PENDING)

        self.store.fail_trade_updates.clear()
        result = await self.engine.delete_item("bob", "y")
        self.assertEqual(result.cancelled_trade_ids, (second.trade_id,))
        self.assertIsNone(await self.engine.items.get_item("y"))

    async def test_only_owner_can_delete(self) -> None:
        with self.assertRaises(ValidationError) as cm:
            await self.engine.delete_item("alice", "y")
        self.assertEqual(cm.exception.code, NOT_ITEM_OWNER)

    async def test_missing_item(self) -> None:
        with self.assertRaises(NotFoundError) as cm:
            await self.engine.delete_item("alice", "gone")
        self.assertEqual(cm.exception.code, ITEM_NOT_FOUND)

    async def test_cancel_trades_for_item_is_idempotent(self) -> None:
        trade = await self.engine.create_offer("alice", "bob", ["x"], ["y"])
        first = await self.engine.cancel_trades_for_item("x")
        self.assertEqual(first.cancelled_trade_ids, (trade.trade_id,))
        self.assertTrue(first.complete)
        again = await self.engine.cancel_trades_for_item("x")
        self.assertEqual(again.cancelled_count, 0)
