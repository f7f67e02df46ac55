# schema.py
from __future__ import annotations

import re
import uuid
from typing import Any, Iterable, NewType, Tuple

# ============================================================================
# 0) Single Source of Truth: IDs / Versions
# ============================================================================

SCHEMA_VERSION: str = "1.0"

# IMPORTANT:
# - Always treat IDs as str. UUIDs are stored in their canonical lowercase form.
UserId = NewType("UserId", str)
ItemId = NewType("ItemId", str)
TradeId = NewType("TradeId", str)

# Ids are opaque, but they must be printable and bounded.
ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.:-]{0,127}$")


def new_id() -> str:
    return str(uuid.uuid4())


def normalize_id(value: Any, *, kind: str = "id") -> str:
    """Return the canonical string form of an opaque id.

    UUID-shaped values are lower-cased; anything else must match ID_RE.
    Raises ValueError on empty or malformed input.
    """
    if value is None:
        raise ValueError(f"{kind} is required")
    if isinstance(value, uuid.UUID):
        return str(value)
    s = str(value).strip()
    if not s:
        raise ValueError(f"{kind} is required")
    try:
        return str(uuid.UUID(s))
    except ValueError:
        pass
    if not ID_RE.match(s):
        raise ValueError(f"invalid {kind}: {value!r}")
    return s


def normalize_user_id(value: Any) -> UserId:
    return UserId(normalize_id(value, kind="user_id"))


def normalize_item_id(value: Any) -> ItemId:
    return ItemId(normalize_id(value, kind="item_id"))


def normalize_trade_id(value: Any) -> TradeId:
    return TradeId(normalize_id(value, kind="trade_id"))


def normalize_item_ids(values: Iterable[Any]) -> Tuple[ItemId, ...]:
    """Normalize a selection of item ids, keeping order (and duplicates)."""
    if values is None:
        return ()
    if isinstance(values, (str, bytes)):
        values = [values]
    return tuple(normalize_item_id(v) for v in values)


# ============================================================================
# 1) Collections / record columns
# ============================================================================

COLLECTION_ITEMS = "items"
COLLECTION_TRADES = "trades"
COLLECTION_REVIEWS = "reviews"
COLLECTION_MESSAGES = "messages"
COLLECTION_BLOCKED_USERS = "blocked_users"
COLLECTION_TRADE_HISTORY = "trade_history"
COLLECTION_LIKES = "likes"

# Every record carries its primary key under "id".
COL_ID = "id"

# Trade record keys (match the marketplace table columns).
TRADE_COL_SENDER_ID = "sender_id"
TRADE_COL_RECEIVER_ID = "receiver_id"
TRADE_COL_OFFERED_ITEM_ID = "offered_item_id"
TRADE_COL_WANTED_ITEM_ID = "wanted_item_id"
TRADE_COL_ADDITIONAL_OFFERED = "additional_offered_ids"
TRADE_COL_ADDITIONAL_WANTED = "additional_wanted_ids"
TRADE_COL_STATUS = "status"
TRADE_COL_CREATED_AT = "created_at"

# Item record keys.
ITEM_COL_OWNER_ID = "owner_id"

# Unique keys enforced by every record store.
UNIQUE_KEYS = {
    COLLECTION_REVIEWS: ("reviewer_id", "trade_id"),
    COLLECTION_BLOCKED_USERS: ("blocker_id", "blocked_id"),
    COLLECTION_LIKES: ("user_id", "item_id"),
}
