"""Async record store used by the negotiation engine.

The engine never keeps trade state of its own: every operation re-reads the
records it needs through this contract, so two clients acting on the same
trade see each other's writes (last write wins on a field).
"""

from __future__ import annotations

import asyncio
import copy
import sqlite3
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

from schema import COL_ID, UNIQUE_KEYS

from .errors import (
    DUPLICATE_RECORD,
    RECORD_NOT_FOUND,
    STORE_UNAVAILABLE,
    ConflictError,
    NotFoundError,
    StoreError,
)

FILTER_OPS = ("eq", "neq", "in", "contains")


@dataclass(frozen=True)
class Filter:
    field: str
    op: str
    value: Any

    def __post_init__(self) -> None:
        if self.op not in FILTER_OPS:
            raise ValueError(f"unsupported filter op {self.op!r}")


def eq(field: str, value: Any) -> Filter:
    return Filter(field, "eq", value)


def neq(field: str, value: Any) -> Filter:
    return Filter(field, "neq", value)


def in_(field: str, values: Iterable[Any]) -> Filter:
    return Filter(field, "in", tuple(values))


def contains(field: str, value: Any) -> Filter:
    return Filter(field, "contains", value)


def matches(record: Mapping[str, Any], filters: Sequence[Filter]) -> bool:
    for f in filters:
        actual = record.get(f.field)
        if f.op == "eq":
            if actual != f.value:
                return False
        elif f.op == "neq":
            if actual == f.value:
                return False
        elif f.op == "in":
            if actual not in f.value:
                return False
        elif f.op == "contains":
            if not isinstance(actual, (list, tuple)) or f.value not in actual:
                return False
    return True


def sort_and_limit(
    records: List[Dict[str, Any]],
    order_by: Optional[str],
    descending: bool,
    limit: Optional[int],
) -> List[Dict[str, Any]]:
    if order_by:
        records.sort(key=lambda r: (r.get(order_by) is None, r.get(order_by) or ""), reverse=descending)
    if limit is not None:
        records = records[: max(0, int(limit))]
    return records


class RecordStore(Protocol):
    async def insert(self, collection: str, record: Mapping[str, Any]) -> Dict[str, Any]:
        ...

    async def update(self, collection: str, record_id: str, patch: Mapping[str, Any]) -> Dict[str, Any]:
        ...

    async def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        ...

    async def select(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        ...

    async def delete(self, collection: str, record_id: str) -> bool:
        ...


def _unique_violation(collection: str, record: Mapping[str, Any], others: Iterable[Mapping[str, Any]]) -> bool:
    keys = UNIQUE_KEYS.get(collection)
    if not keys:
        return False
    candidate = tuple(record.get(k) for k in keys)
    for other in others:
        if other.get(COL_ID) == record.get(COL_ID):
            continue
        if tuple(other.get(k) for k in keys) == candidate:
            return True
    return False


class MemoryRecordStore:
    """Dict-backed store. Records are deep-copied on the way in and out."""

    def __init__(self) -> None:
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def _table(self, collection: str) -> Dict[str, Dict[str, Any]]:
        return self._data.setdefault(collection, {})

    async def insert(self, collection: str, record: Mapping[str, Any]) -> Dict[str, Any]:
        table = self._table(collection)
        record_id = record.get(COL_ID)
        if not record_id:
            raise ValueError("record requires an id")
        if record_id in table or _unique_violation(collection, record, table.values()):
            raise ConflictError(
                DUPLICATE_RECORD,
                f"Duplicate record in {collection}",
                {"collection": collection, "id": record_id},
            )
        table[record_id] = copy.deepcopy(dict(record))
        return copy.deepcopy(table[record_id])

    async def update(self, collection: str, record_id: str, patch: Mapping[str, Any]) -> Dict[str, Any]:
        table = self._table(collection)
        current = table.get(record_id)
        if current is None:
            raise NotFoundError(
                RECORD_NOT_FOUND,
                f"No {collection} record {record_id}",
                {"collection": collection, "id": record_id},
            )
        current.update(copy.deepcopy(dict(patch)))
        current[COL_ID] = record_id
        return copy.deepcopy(current)

    async def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        record = self._table(collection).get(record_id)
        return copy.deepcopy(record) if record is not None else None

    async def select(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        rows = [copy.deepcopy(r) for r in self._table(collection).values() if matches(r, filters)]
        return sort_and_limit(rows, order_by, descending, limit)

    async def delete(self, collection: str, record_id: str) -> bool:
        return self._table(collection).pop(record_id, None) is not None


class SqliteRecordStore:
    """Async adapter over MarketRepo.

    sqlite3 connections are blocking, so each call runs in a worker thread;
    the lock serializes access to the single shared connection.
    """

    def __init__(self, db_path: str, *, init_db: bool = True) -> None:
        from market_repo import MarketRepo  # local import to avoid cycles

        self._repo = MarketRepo(db_path, check_same_thread=False)
        self._lock = threading.Lock()
        if init_db:
            self._repo.init_db()

    @property
    def repo(self):
        return self._repo

    def close(self) -> None:
        self._repo.close()

    async def _call(self, fn, *args, **kwargs):
        def _locked():
            with self._lock:
                return fn(*args, **kwargs)

        try:
            return await asyncio.to_thread(_locked)
        except sqlite3.IntegrityError as exc:
            raise ConflictError(DUPLICATE_RECORD, "Duplicate record", {"error": str(exc)}) from exc
        except sqlite3.Error as exc:
            raise StoreError(STORE_UNAVAILABLE, "Record store failure", {"error": str(exc)}) from exc

    async def insert(self, collection: str, record: Mapping[str, Any]) -> Dict[str, Any]:
        return await self._call(self._repo.insert_record, collection, record)

    async def update(self, collection: str, record_id: str, patch: Mapping[str, Any]) -> Dict[str, Any]:
        updated = await self._call(self._repo.update_record, collection, record_id, patch)
        if updated is None:
            raise NotFoundError(
                RECORD_NOT_FOUND,
                f"No {collection} record {record_id}",
                {"collection": collection, "id": record_id},
            )
        return updated

    async def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        return await self._call(self._repo.get_record, collection, record_id)

    async def select(
        self,
        collection: str,
        filters: Sequence[Filter] = (),
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        return await self._call(
            self._repo.select_records,
            collection,
            filters,
            order_by=order_by,
            descending=descending,
            limit=limit,
        )

    async def delete(self, collection: str, record_id: str) -> bool:
        return await self._call(self._repo.delete_record, collection, record_id)
