from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional

import config
from guardrails import sanitizer
from schema import COLLECTION_REVIEWS, new_id, normalize_user_id

from .errors import (
    ALREADY_REVIEWED,
    DUPLICATE_RECORD,
    INVALID_ID,
    INVALID_RATING,
    NO_COMPLETED_TRADE,
    REVIEWEE_NOT_PARTICIPANT,
    SELF_REVIEW,
    STORE_UNAVAILABLE,
    ConflictError,
    StateError,
    StoreError,
    TradeError,
    ValidationError,
)
from .models import Review, TradeOffer, TradeStatus, parse_review, serialize_review, utc_now_iso
from .negotiation_store import load_trade_or_404, select_trades
from .progression import EVENT_REVIEW_SUBMITTED, ProgressionDispatcher
from .store import RecordStore, eq

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RatingSummary:
    user_id: str
    average: Optional[float]
    count: int


def _uid(value: Any, field: str) -> str:
    try:
        return normalize_user_id(value)
    except ValueError as exc:
        raise ValidationError(INVALID_ID, str(exc), {field: value}) from exc


class ReviewGate:
    """Decides who may rate whom, and records ratings once per (reviewer, trade)."""

    def __init__(self, store: RecordStore, progression: Optional[ProgressionDispatcher] = None) -> None:
        self._store = store
        self._progression = progression or ProgressionDispatcher()

    async def _reviews(self, filters, **kwargs) -> list:
        try:
            return await self._store.select(COLLECTION_REVIEWS, filters, **kwargs)
        except TradeError:
            raise
        except Exception as exc:
            raise StoreError(STORE_UNAVAILABLE, "Failed to load reviews", {"error": str(exc)}) from exc

    async def has_reviewed(self, reviewer_id: str, trade_id: str) -> bool:
        rows = await self._reviews([eq("reviewer_id", reviewer_id), eq("trade_id", trade_id)], limit=1)
        return bool(rows)

    async def _block_reason_for(self, reviewer_id: str, trade: TradeOffer) -> Optional[str]:
        if trade.status != TradeStatus.COMPLETED or not trade.is_participant(reviewer_id):
            return NO_COMPLETED_TRADE
        if await self.has_reviewed(reviewer_id, trade.trade_id):
            return ALREADY_REVIEWED
        return None

    async def review_block_reason(self, reviewer_id: str, trade_id: str) -> Optional[str]:
        """None when the reviewer may rate this trade, else NO_COMPLETED_TRADE or ALREADY_REVIEWED."""
        reviewer = _uid(reviewer_id, "reviewer_id")
        trade = await load_trade_or_404(self._store, trade_id)
        return await self._block_reason_for(reviewer, trade)

    async def can_review(self, reviewer_id: str, trade_id: str) -> bool:
        return await self.review_block_reason(reviewer_id, trade_id) is None

    async def latest_completed_trade_between(self, user_a: str, user_b: str) -> Optional[TradeOffer]:
        completed = eq("status", TradeStatus.COMPLETED.value)
        trades = await select_trades(self._store, [eq("sender_id", user_a), eq("receiver_id", user_b), completed])
        trades += await select_trades(self._store, [eq("sender_id", user_b), eq("receiver_id", user_a), completed])
        if not trades:
            return None
        return max(trades, key=lambda t: (t.updated_at or t.created_at, t.created_at))

    async def submit_review(
        self,
        reviewer_id: str,
        reviewed_id: str,
        trade_id: Optional[str],
        rating: int,
        comment: Optional[str] = None,
    ) -> Review:
        reviewer = _uid(reviewer_id, "reviewer_id")
        reviewed = _uid(reviewed_id, "reviewed_id")
        if reviewer == reviewed:
            raise ValidationError(SELF_REVIEW, "Cannot review yourself", {"user_id": reviewer})
        if isinstance(rating, bool) or not isinstance(rating, int) or not (config.RATING_MIN <= rating <= config.RATING_MAX):
            raise ValidationError(
                INVALID_RATING,
                f"Rating must be between {config.RATING_MIN} and {config.RATING_MAX}",
                {"rating": rating},
            )

        if trade_id is None:
            # Legacy clients don't send a trade id. With several completed trades
            # between the same two users this picks the most recent one, which may
            # not be the trade the reviewer had in mind.
            trade = await self.latest_completed_trade_between(reviewer, reviewed)
            if trade is None:
                raise StateError(
                    NO_COMPLETED_TRADE,
                    "No completed trade between these users",
                    {"reviewer_id": reviewer, "reviewed_id": reviewed},
                )
            logger.warning("[REVIEW_LEGACY_TRADE_LOOKUP] reviewer=%s resolved trade_id=%s", reviewer, trade.trade_id)
        else:
            trade = await load_trade_or_404(self._store, trade_id)

        if not trade.is_participant(reviewer):
            # same answer review_block_reason gives an outsider
            raise StateError(
                NO_COMPLETED_TRADE,
                "No completed trade between these users",
                {"trade_id": trade.trade_id, "reviewer_id": reviewer},
            )
        if trade.counterparty(reviewer) != reviewed:
            raise ValidationError(
                REVIEWEE_NOT_PARTICIPANT,
                "Reviewed user is not the other party of this trade",
                {"trade_id": trade.trade_id, "reviewed_id": reviewed},
            )

        reason = await self._block_reason_for(reviewer, trade)
        if reason == NO_COMPLETED_TRADE:
            raise StateError(
                NO_COMPLETED_TRADE,
                "Trade is not completed",
                {"trade_id": trade.trade_id, "status": trade.status.value},
            )
        if reason == ALREADY_REVIEWED:
            raise ConflictError(ALREADY_REVIEWED, "Trade already reviewed", {"trade_id": trade.trade_id})

        text = ""
        if comment is not None and comment.strip():
            text = sanitizer.require_clean_text(comment, config.REVIEW_COMMENT_SANITIZER, field="comment")

        review = Review(
            review_id=new_id(),
            reviewer_id=reviewer,
            reviewed_id=reviewed,
            trade_id=trade.trade_id,
            rating=rating,
            comment=text,
            created_at=utc_now_iso(),
        )
        try:
            await self._store.insert(COLLECTION_REVIEWS, serialize_review(review))
        except ConflictError as exc:
            if exc.code != DUPLICATE_RECORD:
                raise
            # another request for the same (reviewer, trade) landed first
            raise ConflictError(ALREADY_REVIEWED, "Trade already reviewed", {"trade_id": trade.trade_id}) from exc
        except TradeError:
            raise
        except Exception as exc:
            raise StoreError(STORE_UNAVAILABLE, "Failed to save review", {"error": str(exc)}) from exc

        logger.info("[REVIEW_SUBMITTED] trade_id=%s reviewer=%s rating=%s", trade.trade_id, reviewer, rating)
        self._progression.publish(EVENT_REVIEW_SUBMITTED, review)
        return review

    async def reviews_for_user(self, user_id: str) -> List[Review]:
        uid = _uid(user_id, "user_id")
        rows = await self._reviews([eq("reviewed_id", uid)], order_by="created_at", descending=True)
        return [parse_review(row) for row in rows]

    async def rating_summary(self, user_id: str) -> RatingSummary:
        reviews = await self.reviews_for_user(user_id)
        if not reviews:
            return RatingSummary(user_id=normalize_user_id(user_id), average=None, count=0)
        average = sum(r.rating for r in reviews) / len(reviews)
        return RatingSummary(user_id=normalize_user_id(user_id), average=round(average, 2), count=len(reviews))
