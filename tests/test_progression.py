from pathlib import Path
import sys
import unittest

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.append(str(PROJECT_ROOT))

from market_fixtures import OpenRateLimiter, seed_inventory  # noqa: E402
from trades.engine import TradeEngine  # noqa: E402
from trades.models import TradeStatus  # noqa: E402
from trades.progression import (  # noqa: E402
    EVENT_TRADE_COMPLETED,
    ProgressionDispatcher,
    RecordingProgressionNotifier,
)
from trades.store import MemoryRecordStore  # noqa: E402


class BrokenNotifier:
    async def on_trade_completed(self, trade) -> None:
        raise RuntimeError("xp service down")

    async def on_review_submitted(self, review) -> None:
        raise RuntimeError("xp service down")


class ProgressionTests(unittest.IsolatedAsyncioTestCase):
    async def test_notifier_failure_does_not_fail_completion(self) -> None:
        engine = TradeEngine(MemoryRecordStore(), notifier=BrokenNotifier(), rate_limiter=OpenRateLimiter())
        await seed_inventory(engine)
        trade = await engine.create_offer("alice", "bob", ["x"], ["y"])
        await engine.respond("bob", trade.trade_id, accept=True)

        with self.assertLogs("trades.progression", level="ERROR") as logs:
            completed = await engine.complete("alice", trade.trade_id)
            review = await engine.reviews.submit_review("alice", "bob", trade.trade_id, 5)
            await engine.progression.drain()

        self.assertEqual(completed.status, TradeStatus.COMPLETED)
        self.assertEqual(review.rating, 5)
        self.assertEqual(sum("[PROGRESSION_NOTIFY_FAILED]" in line for line in logs.output), 2)
        self.assertEqual(engine.progression.pending_count, 0)

    async def test_publish_returns_before_delivery(self) -> None:
        notifier = RecordingProgressionNotifier()
        dispatcher = ProgressionDispatcher(notifier)
        dispatcher.publish(EVENT_TRADE_COMPLETED, {"id": "t1"})
        self.assertEqual(notifier.events, [])
        self.assertEqual(dispatcher.pending_count, 1)
        await dispatcher.drain()
        self.assertEqual(notifier.events, [(EVENT_TRADE_COMPLETED, {"id": "t1"})])

    async def test_unknown_event_is_logged(self) -> None:
        dispatcher = ProgressionDispatcher(RecordingProgressionNotifier())
        with self.assertLogs("trades.progression", level="WARNING"):
            dispatcher.publish("badge_unlocked", {})
            await dispatcher.drain()


def test_publish_without_loop_is_dropped() -> None:
    notifier = RecordingProgressionNotifier()
    ProgressionDispatcher(notifier).publish(EVENT_TRADE_COMPLETED, {"id": "t1"})
    assert notifier.events == []
