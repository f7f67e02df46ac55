from __future__ import annotations

import asyncio
import os
import sys
import tempfile

SCRIPT_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.dirname(SCRIPT_DIR)
sys.path.insert(0, PROJECT_ROOT)

from market_repo import MarketRepo
from trades.engine import CompletionResult, TradeEngine
from trades.errors import ALREADY_REVIEWED, ITEM_BUSY, ConflictError, TradeError
from trades.models import TradeStatus
from trades.progression import EVENT_REVIEW_SUBMITTED, EVENT_TRADE_COMPLETED, RecordingProgressionNotifier
from trades.store import SqliteRecordStore


async def _run(db_path: str) -> None:
    store = SqliteRecordStore(db_path)
    notifier = RecordingProgressionNotifier()
    engine = TradeEngine(store, notifier=notifier)
    try:
        x = await engine.add_item("alice", "Road bike")
        x2 = await engine.add_item("alice", "Helmet")
        y = await engine.add_item("bob", "Guitar")
        z = await engine.add_item("carol", "Camera")

        # Test A: offer, accept, complete, review once
        trade = await engine.create_offer("alice", "bob", [x.item_id], [y.item_id], note="Swap?")
        assert trade.status == TradeStatus.PENDING
        assert trade.offered_item_id == x.item_id and trade.wanted_item_id == y.item_id

        accepted = await engine.respond("bob", trade.trade_id, accept=True)
        assert accepted.status == TradeStatus.ACCEPTED
        assert y.item_id in await engine.busy_item_ids("bob")

        completed = await engine.complete("alice", trade.trade_id)
        assert completed.status == TradeStatus.COMPLETED
        assert await engine.reviews.can_review("alice", trade.trade_id)

        await engine.reviews.submit_review("alice", "bob", trade.trade_id, 5, "great trade")
        try:
            await engine.reviews.submit_review("alice", "bob", trade.trade_id, 4, "again")
            raise AssertionError("Expected already-reviewed error did not occur")
        except ConflictError as exc:
            assert exc.code == ALREADY_REVIEWED

        # Test B: pledged item can't be offered to someone else
        pending = await engine.create_offer("alice", "carol", [x2.item_id], [z.item_id])
        try:
            await engine.create_offer("alice", "bob", [x2.item_id], [y.item_id])
            raise AssertionError("Expected busy-item conflict did not occur")
        except ConflictError as exc:
            assert exc.code == ITEM_BUSY

        # Test C: counter-offer swaps roles and supersedes the original
        result = await engine.counter_offer("carol", pending.trade_id, [z.item_id], [x2.item_id])
        assert result.original.status == TradeStatus.COUNTERED
        assert result.counter.sender_id == "carol" and result.counter.receiver_id == "alice"

        # Test D: two-phase completion
        await engine.respond("alice", result.counter.trade_id, accept=True)
        assert await engine.confirm_completion("carol", result.counter.trade_id) == CompletionResult.CONFIRMED
        assert await engine.confirm_completion("alice", result.counter.trade_id) == CompletionResult.TRADE_COMPLETED

        # Test E: deleting an item cancels the trades that reference it
        w = await engine.add_item("bob", "Amp")
        v = await engine.add_item("dave", "Drum kit")
        referencing = await engine.create_offer("dave", "bob", [v.item_id], [w.item_id])
        await engine.respond("bob", referencing.trade_id, accept=True)
        deletion = await engine.delete_item("bob", w.item_id)
        assert deletion.cancelled_count == 1
        assert (await engine.get_trade(referencing.trade_id)).status == TradeStatus.CANCELLED

        await engine.progression.drain()
        names = notifier.names()
        assert names.count(EVENT_TRADE_COMPLETED) == 2
        assert names.count(EVENT_REVIEW_SUBMITTED) == 1
    finally:
        store.close()

    with MarketRepo(db_path) as repo:
        repo.validate_integrity()


def main() -> None:
    with tempfile.TemporaryDirectory() as tmp:
        db_path = os.path.join(tmp, "smoke.db")
        try:
            asyncio.run(_run(db_path))
        except TradeError as exc:
            raise SystemExit(f"Smoke test failed: {exc}")
    print("Smoke test passed.")


if __name__ == "__main__":
    main()
