"""Busy-item resolution.

An item is "busy" for its owner when it is pledged in a committed trade:

- as the sender, every offered id of a pending or accepted trade;
- as the receiver, every wanted id of an accepted trade only.

A pending offer does not lock the receiver's items; they can still be offered
elsewhere until the receiver accepts. Busy sets are recomputed from the store
on every call and never cached.
"""

from __future__ import annotations

import logging
from typing import Dict, FrozenSet, Iterable, List, Optional, Set

from schema import COLLECTION_TRADES, normalize_item_id, normalize_trade_id, normalize_user_id

from .errors import INVALID_ID, STORE_UNAVAILABLE, StoreError, TradeError, ValidationError
from .models import COMMITTED_STATUSES, TradeOffer, TradeStatus, parse_trade
from .store import RecordStore, eq, in_

logger = logging.getLogger(__name__)

_COMMITTED_VALUES = tuple(sorted(s.value for s in COMMITTED_STATUSES))


async def _select_trades(store: RecordStore, filters) -> List[TradeOffer]:
    try:
        rows = await store.select(COLLECTION_TRADES, filters)
    except TradeError:
        raise
    except Exception as exc:
        # Never fall back to an empty busy set: that would let items be double-pledged.
        raise StoreError(STORE_UNAVAILABLE, "Failed to load committed trades", {"error": str(exc)}) from exc
    return [parse_trade(row) for row in rows]


async def fetch_committed_trades(
    store: RecordStore,
    user_id: str,
    excluding_trade_id: Optional[str] = None,
) -> List[TradeOffer]:
    """Pending/accepted trades where user_id is sender or receiver."""
    try:
        uid = normalize_user_id(user_id)
    except ValueError as exc:
        raise ValidationError(INVALID_ID, str(exc), {"user_id": user_id}) from exc
    excluded = None
    if excluding_trade_id is not None:
        try:
            excluded = normalize_trade_id(excluding_trade_id)
        except ValueError as exc:
            raise ValidationError(INVALID_ID, str(exc), {"trade_id": excluding_trade_id}) from exc

    status_filter = in_("status", _COMMITTED_VALUES)
    sent = await _select_trades(store, [eq("sender_id", uid), status_filter])
    received = await _select_trades(store, [eq("receiver_id", uid), status_filter])

    seen: Set[str] = set()
    out: List[TradeOffer] = []
    for trade in sent + received:
        if trade.trade_id in seen or trade.trade_id == excluded:
            continue
        seen.add(trade.trade_id)
        out.append(trade)
    return out


def compute_busy_item_ids(user_id: str, trades: Iterable[TradeOffer]) -> FrozenSet[str]:
    busy: Set[str] = set()
    for trade in trades:
        if trade.status not in COMMITTED_STATUSES:
            continue
        if trade.sender_id == user_id:
            busy.update(trade.all_offered_ids)
        if trade.receiver_id == user_id and trade.status == TradeStatus.ACCEPTED:
            busy.update(trade.all_wanted_ids)
    return frozenset(busy)


async def busy_item_ids(
    store: RecordStore,
    user_id: str,
    excluding_trade_id: Optional[str] = None,
) -> FrozenSet[str]:
    trades = await fetch_committed_trades(store, user_id, excluding_trade_id)
    return compute_busy_item_ids(normalize_user_id(user_id), trades)


def _pledging_trades(item_id: str, trades: Iterable[TradeOffer]) -> List[str]:
    out = []
    for trade in trades:
        if item_id in trade.all_offered_ids and trade.status in COMMITTED_STATUSES:
            out.append(trade.trade_id)
        elif item_id in trade.all_wanted_ids and trade.status == TradeStatus.ACCEPTED:
            out.append(trade.trade_id)
    return out


async def is_item_busy(store: RecordStore, item_id: str) -> bool:
    """Global check: is the item pledged in any committed trade, by anyone."""
    try:
        iid = normalize_item_id(item_id)
    except ValueError as exc:
        raise ValidationError(INVALID_ID, str(exc), {"item_id": item_id}) from exc
    trades = await _select_trades(store, [in_("status", _COMMITTED_VALUES)])
    return bool(_pledging_trades(iid, trades))


async def busy_reasons(
    store: RecordStore,
    user_id: str,
    item_ids: Iterable[str],
    excluding_trade_id: Optional[str] = None,
) -> Dict[str, List[str]]:
    """Map each busy item in item_ids to the trade ids that hold it (for error details)."""
    uid = normalize_user_id(user_id)
    trades = [
        t for t in await fetch_committed_trades(store, uid, excluding_trade_id)
        if t.sender_id == uid or t.status == TradeStatus.ACCEPTED
    ]
    reasons: Dict[str, List[str]] = {}
    for item_id in item_ids:
        holders = _pledging_trades(item_id, trades)
        if holders:
            reasons[item_id] = holders
    return reasons
