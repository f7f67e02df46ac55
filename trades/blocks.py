from __future__ import annotations

import logging
from typing import Any, Dict, List

from schema import COLLECTION_BLOCKED_USERS, new_id, normalize_user_id

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


def _uid(value: Any, field: str) -> str:
    try:
        return normalize_user_id(value)
    except ValueError as exc:
        raise ValidationError(INVALID_ID, str(exc), {field: value}) from exc


async def _blocks(store: RecordStore, blocker_id: str, blocked_id: str) -> List[Dict[str, Any]]:
    try:
        return await store.select(
            COLLECTION_BLOCKED_USERS,
            [eq("blocker_id", blocker_id), eq("blocked_id", blocked_id)],
        )
    except TradeError:
        raise
    except Exception as exc:
        raise StoreError(STORE_UNAVAILABLE, "Failed to load block list", {"error": str(exc)}) from exc


async def is_blocked_between(store: RecordStore, user_a: str, user_b: str) -> bool:
    """True if either user has blocked the other."""
    a, b = _uid(user_a, "user_id"), _uid(user_b, "user_id")
    if await _blocks(store, a, b):
        return True
    return bool(await _blocks(store, b, a))


async def block_user(store: RecordStore, blocker_id: str, blocked_id: str) -> Dict[str, Any]:
    """Idempotent: blocking twice returns the existing record."""
    blocker, blocked = _uid(blocker_id, "blocker_id"), _uid(blocked_id, "blocked_id")
    if blocker == blocked:
        raise ValidationError(INVALID_ID, "Cannot block yourself", {"user_id": blocker})
    existing = await _blocks(store, blocker, blocked)
    if existing:
        return existing[0]
    record = {"id": new_id(), "blocker_id": blocker, "blocked_id": blocked, "created_at": utc_now_iso()}
    try:
        stored = await store.insert(COLLECTION_BLOCKED_USERS, record)
    except ConflictError as exc:
        if exc.code != DUPLICATE_RECORD:
            raise
        # Lost a race with a concurrent block of the same pair.
        existing = await _blocks(store, blocker, blocked)
        if not existing:
            raise
        return existing[0]
    logger.info("[USER_BLOCKED] blocker=%s blocked=%s", blocker, blocked)
    return stored


async def unblock_user(store: RecordStore, blocker_id: str, blocked_id: str) -> bool:
    blocker, blocked = _uid(blocker_id, "blocker_id"), _uid(blocked_id, "blocked_id")
    removed = False
    for record in await _blocks(store, blocker, blocked):
        removed = await store.delete(COLLECTION_BLOCKED_USERS, record["id"]) or removed
    if removed:
        logger.info("[USER_UNBLOCKED] blocker=%s blocked=%s", blocker, blocked)
    return removed
