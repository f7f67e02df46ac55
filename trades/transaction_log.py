from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional

from schema import COLLECTION_TRADE_HISTORY, new_id

from .models import TradeOffer, TradeStatus, utc_now_iso
from .store import RecordStore, eq

logger = logging.getLogger(__name__)


def build_history_entry(
    trade: TradeOffer,
    from_status: Optional[TradeStatus],
    to_status: TradeStatus,
    *,
    actor_id: Optional[str],
    source: str,
    at: Optional[str] = None,
    extra_meta: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "id": new_id(),
        "trade_id": trade.trade_id,
        "from_status": from_status.value if from_status is not None else None,
        "to_status": to_status.value,
        "actor_id": actor_id,
        "source": source,
        "created_at": at or utc_now_iso(),
    }
    if extra_meta:
        entry["meta"] = dict(extra_meta)
    return entry


async def append_status_change(
    store: RecordStore,
    trade: TradeOffer,
    from_status: Optional[TradeStatus],
    to_status: TradeStatus,
    *,
    actor_id: Optional[str],
    source: str,
    at: Optional[str] = None,
    extra_meta: Optional[Mapping[str, Any]] = None,
) -> Optional[Dict[str, Any]]:
    """Append one history entry. The trade write already happened, so a failure
    here is logged and swallowed; returns None in that case."""
    entry = build_history_entry(
        trade, from_status, to_status, actor_id=actor_id, source=source, at=at, extra_meta=extra_meta
    )
    try:
        return await store.insert(COLLECTION_TRADE_HISTORY, entry)
    except Exception:
        logger.exception(
            "[TRADE_HISTORY_APPEND_FAILED] trade_id=%s %s->%s source=%s",
            trade.trade_id,
            entry["from_status"],
            entry["to_status"],
            source,
        )
        return None


async def list_trade_history(store: RecordStore, trade_id: str) -> List[Dict[str, Any]]:
    """History entries for one trade, oldest first."""
    return await store.select(COLLECTION_TRADE_HISTORY, [eq("trade_id", trade_id)], order_by="created_at")
