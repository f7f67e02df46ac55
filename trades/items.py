from __future__ import annotations

import logging
from typing import Dict, FrozenSet, Iterable, List, Optional

from schema import COLLECTION_ITEMS, ITEM_COL_OWNER_ID, normalize_item_id, normalize_user_id

from .errors import INVALID_ID, INVALID_RECORD, STORE_UNAVAILABLE, StoreError, TradeError, ValidationError
from .models import Item, parse_item
from .store import RecordStore, eq, in_

logger = logging.getLogger(__name__)


class ItemDirectory:
    """Read-only view over the items collection."""

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    async def _select(self, filters, **kwargs) -> list:
        try:
            return await self._store.select(COLLECTION_ITEMS, filters, **kwargs)
        except TradeError:
            raise
        except Exception as exc:
            raise StoreError(STORE_UNAVAILABLE, "Failed to load items", {"error": str(exc)}) from exc

    async def list_owned_items(self, user_id: str) -> List[Item]:
        """All items owned by user_id, newest first."""
        uid = _user_id(user_id)
        rows = await self._select([eq(ITEM_COL_OWNER_ID, uid)], order_by="created_at", descending=True)
        return [_parse_item_row(row) for row in rows]

    async def owned_item_ids(self, user_id: str) -> FrozenSet[str]:
        return frozenset(item.item_id for item in await self.list_owned_items(user_id))

    async def get_item(self, item_id: str) -> Optional[Item]:
        try:
            iid = normalize_item_id(item_id)
        except ValueError as exc:
            raise ValidationError(INVALID_ID, str(exc), {"item_id": item_id}) from exc
        try:
            row = await self._store.get(COLLECTION_ITEMS, iid)
        except TradeError:
            raise
        except Exception as exc:
            raise StoreError(STORE_UNAVAILABLE, "Failed to load item", {"item_id": iid, "error": str(exc)}) from exc
        return _parse_item_row(row) if row else None

    async def get_items(self, item_ids: Iterable[str]) -> Dict[str, Item]:
        """Batch fetch; ids that no longer exist are simply absent from the result."""
        ids = sorted({normalize_item_id(i) for i in item_ids})
        if not ids:
            return {}
        rows = await self._select([in_("id", ids)])
        items = [_parse_item_row(row) for row in rows]
        return {item.item_id: item for item in items}


def _user_id(value) -> str:
    try:
        return normalize_user_id(value)
    except ValueError as exc:
        raise ValidationError(INVALID_ID, str(exc), {"user_id": value}) from exc


def _parse_item_row(row) -> Item:
    try:
        return parse_item(row)
    except ValidationError:
        logger.error("[ITEM_RECORD_INVALID] %s", row.get("id") if isinstance(row, dict) else row)
        raise
    except (TypeError, KeyError) as exc:
        raise ValidationError(INVALID_RECORD, "Malformed item record", {"record": row}) from exc
