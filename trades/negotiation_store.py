"""Trade record access shared by the engine, the review gate and messaging.

Every read goes back to the record store; nothing here caches trades.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from schema import COLLECTION_TRADES, normalize_trade_id

from .errors import (
    INVALID_ID,
    RECORD_NOT_FOUND,
    STORE_UNAVAILABLE,
    TRADE_NOT_FOUND,
    NotFoundError,
    StoreError,
    TradeError,
    ValidationError,
)
from .models import TradeOffer, TradeStatus, parse_trade, serialize_trade, utc_now_iso
from .state_machine import ensure_transition
from .store import Filter, RecordStore
from .transaction_log import append_status_change

logger = logging.getLogger(__name__)

_WARN_COUNTS: Dict[str, int] = {}


def _warn_limited(code: str, msg: str, *, limit: int = 5) -> None:
    """Log warning with traceback, but cap repeats per code."""
    n = _WARN_COUNTS.get(code, 0)
    if n < limit:
        logger.warning("%s %s", code, msg, exc_info=True)
    _WARN_COUNTS[code] = n + 1


def _store_error(action: str, exc: Exception, **details: Any) -> StoreError:
    return StoreError(STORE_UNAVAILABLE, f"Failed to {action}", {**details, "error": str(exc)})


def trade_id_or_400(trade_id: Any) -> str:
    try:
        return normalize_trade_id(trade_id)
    except ValueError as exc:
        raise ValidationError(INVALID_ID, str(exc), {"trade_id": trade_id}) from exc


async def load_trade_or_404(store: RecordStore, trade_id: Any) -> TradeOffer:
    tid = trade_id_or_400(trade_id)
    try:
        raw = await store.get(COLLECTION_TRADES, tid)
    except TradeError:
        raise
    except Exception as exc:
        raise _store_error("load trade", exc, trade_id=tid) from exc
    if not raw:
        raise NotFoundError(TRADE_NOT_FOUND, "Trade not found", {"trade_id": tid})
    return parse_trade(raw)


async def select_trades(
    store: RecordStore,
    filters: Sequence[Filter],
    *,
    order_by: Optional[str] = "created_at",
    descending: bool = True,
    limit: Optional[int] = None,
) -> List[TradeOffer]:
    """Query trades; records that fail to parse are skipped with a (rate-limited) warning."""
    try:
        rows = await store.select(COLLECTION_TRADES, filters, order_by=order_by, descending=descending, limit=limit)
    except TradeError:
        raise
    except Exception as exc:
        raise _store_error("load trades", exc) from exc
    out: List[TradeOffer] = []
    for row in rows:
        try:
            out.append(parse_trade(row))
        except ValidationError:
            _warn_limited("[TRADE_RECORD_INVALID]", f"id={row.get('id')!r}")
    return out


async def insert_trade(store: RecordStore, trade: TradeOffer) -> TradeOffer:
    try:
        raw = await store.insert(COLLECTION_TRADES, serialize_trade(trade))
    except TradeError:
        raise
    except Exception as exc:
        raise _store_error("create trade", exc, trade_id=trade.trade_id) from exc
    return parse_trade(raw)


async def patch_trade(store: RecordStore, trade_id: str, patch: Mapping[str, Any]) -> TradeOffer:
    try:
        raw = await store.update(COLLECTION_TRADES, trade_id, dict(patch))
    except NotFoundError as exc:
        if exc.code != RECORD_NOT_FOUND:
            raise
        raise NotFoundError(TRADE_NOT_FOUND, "Trade not found", {"trade_id": trade_id}) from exc
    except TradeError:
        raise
    except Exception as exc:
        raise _store_error("update trade", exc, trade_id=trade_id) from exc
    return parse_trade(raw)


async def write_status(
    store: RecordStore,
    trade: TradeOffer,
    status: TradeStatus,
    *,
    actor_id: Optional[str],
    source: str,
    extra_patch: Optional[Mapping[str, Any]] = None,
) -> TradeOffer:
    """Move a freshly loaded trade to status and record the change.

    The transition is checked against the trade as loaded; a concurrent writer
    that changed the status in between wins or loses by write order.
    """
    ensure_transition(trade.status, status, trade_id=trade.trade_id)
    at = utc_now_iso()
    patch: Dict[str, Any] = {"status": status.value, "updated_at": at}
    if extra_patch:
        patch.update(extra_patch)
    updated = await patch_trade(store, trade.trade_id, patch)
    logger.info(
        "[TRADE_STATUS_CHANGED] trade_id=%s %s->%s actor=%s source=%s",
        trade.trade_id,
        trade.status.value,
        status.value,
        actor_id,
        source,
    )
    await append_status_change(store, updated, trade.status, status, actor_id=actor_id, source=source, at=at)
    return updated
