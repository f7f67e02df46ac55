"""Items a user has marked as interesting ("likes").

One record per (user, item). Marking is idempotent; offers and counter-offers
also mark the primary wanted item for their sender.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List

from schema import COLLECTION_LIKES, new_id, normalize_item_id, normalize_user_id

from .errors import (
    DUPLICATE_RECORD,
    INVALID_ID,
    STORE_UNAVAILABLE,
    ConflictError,
    StoreError,
    TradeError,
    ValidationError,
)
from .models import utc_now_iso
from .store import RecordStore, eq

logger = logging.getLogger(__name__)


def _ids(user_id: Any, item_id: Any) -> tuple:
    try:
        return normalize_user_id(user_id), normalize_item_id(item_id)
    except ValueError as exc:
        raise ValidationError(INVALID_ID, str(exc), {"user_id": user_id, "item_id": item_id}) from exc


async def _likes(store: RecordStore, filters, **kwargs) -> List[Dict[str, Any]]:
    try:
        return await store.select(COLLECTION_LIKES, filters, **kwargs)
    except TradeError:
        raise
    except Exception as exc:
        raise StoreError(STORE_UNAVAILABLE, "Failed to load interests", {"error": str(exc)}) from exc


async def save_interest(store: RecordStore, user_id: str, item_id: str) -> Dict[str, Any]:
    uid, iid = _ids(user_id, item_id)
    existing = await _likes(store, [eq("user_id", uid), eq("item_id", iid)], limit=1)
    if existing:
        return existing[0]
    record = {"id": new_id(), "user_id": uid, "item_id": iid, "created_at": utc_now_iso()}
    try:
        return await store.insert(COLLECTION_LIKES, record)
    except ConflictError as exc:
        if exc.code != DUPLICATE_RECORD:
            raise
        existing = await _likes(store, [eq("user_id", uid), eq("item_id", iid)], limit=1)
        if not existing:
            raise
        return existing[0]
    except TradeError:
        raise
    except Exception as exc:
        raise StoreError(STORE_UNAVAILABLE, "Failed to save interest", {"error": str(exc)}) from exc


async def remove_interest(store: RecordStore, user_id: str, item_id: str) -> bool:
    uid, iid = _ids(user_id, item_id)
    removed = False
    for record in await _likes(store, [eq("user_id", uid), eq("item_id", iid)]):
        removed = await store.delete(COLLECTION_LIKES, record["id"]) or removed
    return removed


async def interested_item_ids(store: RecordStore, user_id: str) -> List[str]:
    """Item ids the user marked, newest first."""
    try:
        uid = normalize_user_id(user_id)
    except ValueError as exc:
        raise ValidationError(INVALID_ID, str(exc), {"user_id": user_id}) from exc
    rows = await _likes(store, [eq("user_id", uid)], order_by="created_at", descending=True)
    return [row["item_id"] for row in rows]
