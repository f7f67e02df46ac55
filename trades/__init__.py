"""Trade package: barter offers between users, their lifecycle, and reviews."""

from .errors import (
    CascadeIncompleteError,
    ConflictError,
    NotFoundError,
    RateLimitError,
    SanitizationError,
    StateError,
    StoreError,
    TradeError,
    ValidationError,
)
from .models import Item, Message, Review, TradeOffer, TradeStatus, parse_trade, serialize_trade
from .store import Filter, MemoryRecordStore, RecordStore, SqliteRecordStore
from .busy import busy_item_ids, compute_busy_item_ids, fetch_committed_trades, is_item_busy
from .offers import OfferDraft, build_offer_draft, draft_from_items, draft_to_trade
from .validator import validate_offer
from .progression import NullProgressionNotifier, ProgressionDispatcher, RecordingProgressionNotifier
from .engine import (
    CascadeResult,
    CompletionResult,
    CounterOfferResult,
    HydratedTrade,
    ItemDeletionResult,
    TradeEngine,
)

__all__ = [
    "TradeError",
    "ValidationError",
    "ConflictError",
    "NotFoundError",
    "StateError",
    "StoreError",
    "RateLimitError",
    "SanitizationError",
    "CascadeIncompleteError",
    "Item",
    "Message",
    "Review",
    "TradeOffer",
    "TradeStatus",
    "parse_trade",
    "serialize_trade",
    "Filter",
    "RecordStore",
    "MemoryRecordStore",
    "SqliteRecordStore",
    "busy_item_ids",
    "compute_busy_item_ids",
    "fetch_committed_trades",
    "is_item_busy",
    "OfferDraft",
    "build_offer_draft",
    "draft_from_items",
    "draft_to_trade",
    "validate_offer",
    "NullProgressionNotifier",
    "ProgressionDispatcher",
    "RecordingProgressionNotifier",
    "CascadeResult",
    "CompletionResult",
    "CounterOfferResult",
    "HydratedTrade",
    "ItemDeletionResult",
    "TradeEngine",
]
