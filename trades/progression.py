"""Fire-and-forget delivery of trade events to the progression system.

Completing a trade or submitting a review must never fail because the
progression sink (XP, badges, counters) is slow or down. Events are delivered
on their own asyncio task; failures are logged and dropped.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, List, Protocol, Set, Tuple

from .models import Review, TradeOffer

logger = logging.getLogger(__name__)

EVENT_TRADE_COMPLETED = "trade_completed"
EVENT_REVIEW_SUBMITTED = "review_submitted"


class ProgressionNotifier(Protocol):
    async def on_trade_completed(self, trade: TradeOffer) -> None:
        ...

    async def on_review_submitted(self, review: Review) -> None:
        ...


class NullProgressionNotifier:
    async def on_trade_completed(self, trade: TradeOffer) -> None:
        return None

    async def on_review_submitted(self, review: Review) -> None:
        return None


class RecordingProgressionNotifier:
    """Keeps every event it receives; used by tests and the smoke script."""

    def __init__(self) -> None:
        self.events: List[Tuple[str, Any]] = []

    async def on_trade_completed(self, trade: TradeOffer) -> None:
        self.events.append((EVENT_TRADE_COMPLETED, trade))

    async def on_review_submitted(self, review: Review) -> None:
        self.events.append((EVENT_REVIEW_SUBMITTED, review))

    def names(self) -> List[str]:
        return [name for name, _ in self.events]


class ProgressionDispatcher:
    def __init__(self, notifier: ProgressionNotifier | None = None) -> None:
        self.notifier = notifier or NullProgressionNotifier()
        self._pending: Set[asyncio.Task] = set()

    def publish(self, event: str, payload: Any) -> None:
        """Schedule delivery and return immediately. Never raises into the caller."""
        try:
            task = asyncio.get_running_loop().create_task(self._deliver(event, payload))
        except RuntimeError:
            logger.warning("[PROGRESSION_NOTIFY_FAILED] event=%s no running event loop", event)
            return
        # keep a strong reference until the task finishes
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, event: str, payload: Any) -> None:
        try:
            if event == EVENT_TRADE_COMPLETED:
                await self.notifier.on_trade_completed(payload)
            elif event == EVENT_REVIEW_SUBMITTED:
                await self.notifier.on_review_submitted(payload)
            else:
                logger.warning("[PROGRESSION_UNKNOWN_EVENT] event=%s", event)
        except Exception:
            logger.exception("[PROGRESSION_NOTIFY_FAILED] event=%s", event)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def drain(self) -> None:
        """Wait for every delivery scheduled so far."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
