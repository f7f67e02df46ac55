from pathlib import Path
import sys
import unittest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.append(str(PROJECT_ROOT))

from market_fixtures import FlakyRecordStore, make_engine, seed_inventory  # noqa: E402
from trades.busy import busy_reasons, compute_busy_item_ids  # noqa: E402
from trades.errors import StoreError  # noqa: E402
from trades.models import TradeOffer, TradeStatus  # noqa: E402


def _trade(trade_id, sender, receiver, offered, wanted, status=TradeStatus.PENDING) -> TradeOffer:
    return TradeOffer(
        trade_id=trade_id,
        sender_id=sender,
        receiver_id=receiver,
        offered_item_id=offered[0],
        wanted_item_id=wanted[0],
        additional_offered_item_ids=tuple(offered[1:]),
        additional_wanted_item_ids=tuple(wanted[1:]),
        status=status,
    )


def test_sender_locks_offered_items_while_pending() -> None:
    trades = [_trade("t1", "alice", "bob", ["x", "x2"], ["y"])]
    assert compute_busy_item_ids("alice", trades) == {"x", "x2"}


def test_pending_offer_does_not_lock_receiver_items() -> None:
    trades = [_trade("t1", "alice", "bob", ["x"], ["y", "y2"])]
    assert compute_busy_item_ids("bob", trades) == frozenset()


def test_accepting_locks_all_wanted_items() -> None:
    trades = [_trade("t1", "alice", "bob", ["x"], ["y", "y2"], TradeStatus.ACCEPTED)]
    assert compute_busy_item_ids("bob", trades) == {"y", "y2"}
    assert compute_busy_item_ids("alice", trades) == {"x"}


def test_terminal_trades_release_items() -> None:
    for status in (TradeStatus.REJECTED, TradeStatus.COUNTERED, TradeStatus.COMPLETED, TradeStatus.CANCELLED):
        trades = [_trade("t1", "alice", "bob", ["x"], ["y"], status)]
        assert compute_busy_item_ids("alice", trades) == frozenset()
        assert compute_busy_item_ids("bob", trades) == frozenset()


def test_busy_set_is_union_over_trades() -> None:
    trades = [
        _trade("t1", "alice", "bob", ["x"], ["y"]),
        _trade("t2", "carol", "alice", ["z"], ["x2", "x3"], TradeStatus.ACCEPTED),
        _trade("t3", "carol", "alice", ["z2"], ["x4"]),
    ]
    assert compute_busy_item_ids("alice", trades) == {"x", "x2", "x3"}


class BusyItemStoreTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.store = FlakyRecordStore()
        self.engine, _ = make_engine(self.store)
        await seed_inventory(self.engine)

    async def test_busy_ids_follow_trade_status(self) -> None:
        trade = await self.engine.create_offer("alice", "bob", ["x"], ["y"])
        self.assertEqual(await self.engine.busy_item_ids("alice"), {"x"})
        self.assertEqual(await self.engine.busy_item_ids("bob"), frozenset())

        await self.engine.respond("bob", trade.trade_id, accept=True)
        self.assertEqual(await self.engine.busy_item_ids("bob"), {"y"})

        await self.engine.cancel("alice", trade.trade_id)
        self.assertEqual(await self.engine.busy_item_ids("alice"), frozenset())
        self.assertEqual(await self.engine.busy_item_ids("bob"), frozenset())

    async def test_excluding_trade_leaves_it_out(self) -> None:
        trade = await self.engine.create_offer("alice", "bob", ["x"], ["y"])
        other = await self.engine.create_offer("alice", "carol", ["x2"], ["z"])
        busy = await self.engine.busy_item_ids("alice", excluding_trade_id=trade.trade_id)
        self.assertEqual(busy, {"x2"})
        self.assertTrue(other.is_active)

    async def test_excluded_trade_id_is_normalized(self) -> None:
        trade = await self.engine.create_offer("alice", "bob", ["x"], ["y"])
        busy = await self.engine.busy_item_ids("alice", excluding_trade_id=f"  {trade.trade_id.upper()} ")
        self.assertEqual(busy, frozenset())

    async def test_available_items_hide_pledged_ones(self) -> None:
        await self.engine.create_offer("alice", "bob", ["x"], ["y"])
        available = [item.item_id for item in await self.engine.available_items("alice")]
        self.assertCountEqual(available, ["x2", "x3"])

    async def test_is_item_busy_is_global(self) -> None:
        trade = await self.engine.create_offer("alice", "bob", ["x"], ["y"])
        self.assertTrue(await self.engine.is_item_busy("x"))
        self.assertFalse(await self.engine.is_item_busy("y"))
        await self.engine.respond("bob", trade.trade_id, accept=True)
        self.assertTrue(await self.engine.is_item_busy("y"))

    async def test_busy_reasons_name_the_holding_trade(self) -> None:
        trade = await self.engine.create_offer("alice", "bob", ["x", "x2"], ["y"])
        reasons = await busy_reasons(self.store, "alice", ["x", "x2", "x3"])
        self.assertEqual(reasons, {"x": [trade.trade_id], "x2": [trade.trade_id]})

    async def test_fetch_failure_fails_closed(self) -> None:
        await self.engine.create_offer("alice", "bob", ["x"], ["y"])
        self.store.fail_selects = True
        with self.assertRaises(StoreError):
            await self.engine.busy_item_ids("alice")
        with self.assertRaises(StoreError):
            await self.engine.create_offer("alice", "carol", ["x"], ["z"])
