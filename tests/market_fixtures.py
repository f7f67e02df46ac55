"""Shared builders for the trade tests (not collected: no test_ prefix)."""

from pathlib import Path
import sys

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.append(str(PROJECT_ROOT))

from guardrails.rate_limiter import ALLOWED, RateLimitDecision, RateLimiter  # noqa: E402
from schema import COLLECTION_TRADES  # noqa: E402
from trades.engine import TradeEngine  # noqa: E402
from trades.progression import RecordingProgressionNotifier  # noqa: E402
from trades.store import MemoryRecordStore  # noqa: E402


class OpenRateLimiter(RateLimiter):
    """Never throttles; keeps engine tests independent of the offer presets."""

    def check_and_record(self, key, cfg=None):
        return RateLimitDecision(ALLOWED)

    def check_hourly_limit(self, key, max_per_hour):
        return True


class FlakyRecordStore(MemoryRecordStore):
    """Memory store whose trade updates fail for selected ids."""

    def __init__(self):
        super().__init__()
        self.fail_trade_updates = set()
        self.fail_inserts = set()
        self.fail_selects = False

    async def insert(self, collection, record):
        if collection in self.fail_inserts:
            raise ConnectionError(f"network down inserting into {collection}")
        return await super().insert(collection, record)

    async def update(self, collection, record_id, patch):
        if collection == COLLECTION_TRADES and record_id in self.fail_trade_updates:
            raise ConnectionError(f"network down updating {record_id}")
        return await super().update(collection, record_id, patch)

    async def select(self, collection, filters=(), **kwargs):
        if self.fail_selects:
            raise ConnectionError("network down")
        return await super().select(collection, filters, **kwargs)


# owner -> item ids
DEFAULT_INVENTORY = {
    "alice": ["x", "x2", "x3"],
    "bob": ["y", "y2"],
    "carol": ["z", "z2"],
}


def make_engine(store=None, *, rate_limiter=None):
    store = store if store is not None else MemoryRecordStore()
    notifier = RecordingProgressionNotifier()
    engine = TradeEngine(store, notifier=notifier, rate_limiter=rate_limiter or OpenRateLimiter())
    return engine, notifier


async def seed_inventory(engine, inventory=None):
    items = {}
    for owner, item_ids in (inventory or DEFAULT_INVENTORY).items():
        for item_id in item_ids:
            items[item_id] = await engine.add_item(owner, f"item {item_id}", item_id=item_id)
    return items
