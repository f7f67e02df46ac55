# market_repo.py
# Developer note:
# - SQLite DB is the single source of truth (SSOT) for items, trades and reviews.
# - CSV files are import/export only (no runtime reads/writes).
# - Every table keeps the full record in payload_json; the other columns are
#   copies of the fields we filter or sort on.
"""
MarketRepo: single source of truth (SQLite)

Usage (CLI):
  python market_repo.py init --db market.db
  python market_repo.py import_items --db market.db --csv items.csv
  python market_repo.py export_trades --db market.db --csv trades.csv
  python market_repo.py validate --db market.db

Python:
  from market_repo import MarketRepo
  repo = MarketRepo("market.db")
  repo.init_db()
  rows = repo.select_records("trades", [eq("sender_id", "alice")])
"""

from __future__ import annotations

import argparse
import contextlib
import datetime as _dt
import json
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from schema import (
    COL_ID,
    COLLECTION_BLOCKED_USERS,
    COLLECTION_ITEMS,
    COLLECTION_LIKES,
    COLLECTION_MESSAGES,
    COLLECTION_REVIEWS,
    COLLECTION_TRADE_HISTORY,
    COLLECTION_TRADES,
    SCHEMA_VERSION,
    normalize_item_id,
    normalize_user_id,
)


# ----------------------------
# Helpers
# ----------------------------

def _utc_now_iso() -> str:
    return _dt.datetime.now(_dt.timezone.utc).replace(microsecond=0).isoformat()

def _json_dumps(obj: Any) -> str:
    return json.dumps(
        obj,
        ensure_ascii=False,
        separators=(",", ":"),
        sort_keys=True,
        default=str,
    )

def _json_loads(value: Any, default: Any):
    """
    Safe JSON loader:
    - None -> default
    - already dict/list -> returns as-is
    - invalid JSON -> default
    """
    if value is None:
        return default
    if isinstance(value, (dict, list)):
        return value
    try:
        return json.loads(value)
    except (json.JSONDecodeError, TypeError):
        return default


# Indexed columns per table. Filters on anything else are applied in Python.
TABLE_COLUMNS: Dict[str, Sequence[str]] = {
    COLLECTION_ITEMS: ("owner_id", "title", "category", "created_at"),
    COLLECTION_TRADES: (
        "sender_id",
        "receiver_id",
        "offered_item_id",
        "wanted_item_id",
        "status",
        "created_at",
        "updated_at",
    ),
    COLLECTION_REVIEWS: ("reviewer_id", "reviewed_id", "trade_id", "created_at"),
    COLLECTION_MESSAGES: ("sender_id", "receiver_id", "trade_id", "created_at"),
    COLLECTION_BLOCKED_USERS: ("blocker_id", "blocked_id", "created_at"),
    COLLECTION_TRADE_HISTORY: ("trade_id", "created_at"),
    COLLECTION_LIKES: ("user_id", "item_id", "created_at"),
}

ITEMS_CSV_REQUIRED = ("item_id", "owner_id", "title")
ITEMS_CSV_OPTIONAL = ("category", "condition", "description", "created_at")


def _require_columns(cols: Sequence[str], required: Sequence[str]) -> None:
    missing = [c for c in required if c not in cols]
    if missing:
        raise ValueError(f"Missing required columns: {missing}. Found: {list(cols)}")


def _table(collection: str) -> str:
    if collection not in TABLE_COLUMNS:
        raise ValueError(f"unknown collection {collection!r}")
    return collection


# ----------------------------
# Repository
# ----------------------------

class MarketRepo:
    def __init__(self, db_path: str | Path, *, check_same_thread: bool = True):
        self.db_path = str(db_path)
        # autocommit mode; we manage BEGIN/COMMIT manually to guarantee atomic multi-row writes
        self._conn = sqlite3.connect(self.db_path, isolation_level=None, check_same_thread=check_same_thread)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON;")
        self._conn.execute("PRAGMA journal_mode = WAL;")  # good safety for frequent writes
        self._conn.execute("PRAGMA busy_timeout = 5000;")  # reduce transient 'database is locked'
        self._tx_depth = 0

    def close(self) -> None:
        self._conn.close()

    @contextlib.contextmanager
    def transaction(self, *, write: bool = True):
        """Transaction helper.

        - Outermost: BEGIN (read) or BEGIN IMMEDIATE (write) on the connection.
        - Nested: SAVEPOINT/RELEASE so callers can safely nest repo transactions.
        """
        cur = self._conn.cursor()
        depth0 = self._tx_depth
        sp_name: str | None = None
        try:
            if depth0 == 0:
                self._conn.execute("BEGIN IMMEDIATE;" if write else "BEGIN;")
            else:
                sp_name = f"sp_{depth0}"
                cur.execute(f"SAVEPOINT {sp_name};")

            self._tx_depth += 1
            try:
                yield cur
            except Exception:
                if depth0 == 0:
                    self._conn.rollback()
                else:
                    cur.execute(f"ROLLBACK TO SAVEPOINT {sp_name};")
                    cur.execute(f"RELEASE SAVEPOINT {sp_name};")
                raise
            else:
                if depth0 == 0:
                    self._conn.commit()
                else:
                    cur.execute(f"RELEASE SAVEPOINT {sp_name};")
            finally:
                self._tx_depth -= 1
        finally:
            cur.close()

    # ------------------------
    # Schema
    # ------------------------

    def init_db(self) -> None:
        if self._tx_depth != 0:
            # sqlite3 executescript() issues an implicit COMMIT; never run it inside an active transaction.
            raise RuntimeError("init_db() must not run inside an active transaction")
        now = _utc_now_iso()
        cur = self._conn.cursor()
        try:
            cur.executescript(
                f"""
                CREATE TABLE IF NOT EXISTS meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );

                INSERT INTO meta(key, value) VALUES ('schema_version', '{SCHEMA_VERSION}')
                ON CONFLICT(key) DO UPDATE SET value=excluded.value;
                INSERT OR IGNORE INTO meta(key, value) VALUES ('created_at', '{now}');

                CREATE TABLE IF NOT EXISTS items (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    title TEXT,
                    category TEXT,
                    created_at TEXT,
                    payload_json TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_items_owner_id ON items(owner_id);

                CREATE TABLE IF NOT EXISTS trades (
                    id TEXT PRIMARY KEY,
                    sender_id TEXT NOT NULL,
                    receiver_id TEXT NOT NULL,
                    offered_item_id TEXT NOT NULL,
                    wanted_item_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT,
                    payload_json TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_trades_sender_status ON trades(sender_id, status);
                CREATE INDEX IF NOT EXISTS idx_trades_receiver_status ON trades(receiver_id, status);
                CREATE INDEX IF NOT EXISTS idx_trades_offered_item ON trades(offered_item_id);
                CREATE INDEX IF NOT EXISTS idx_trades_wanted_item ON trades(wanted_item_id);

                CREATE TABLE IF NOT EXISTS reviews (
                    id TEXT PRIMARY KEY,
                    reviewer_id TEXT NOT NULL,
                    reviewed_id TEXT NOT NULL,
                    trade_id TEXT NOT NULL,
                    created_at TEXT,
                    payload_json TEXT NOT NULL,
                    UNIQUE(reviewer_id, trade_id)
                );
                CREATE INDEX IF NOT EXISTS idx_reviews_reviewed_id ON reviews(reviewed_id);

                CREATE TABLE IF NOT EXISTS messages (
                    id TEXT PRIMARY KEY,
                    sender_id TEXT NOT NULL,
                    receiver_id TEXT NOT NULL,
                    trade_id TEXT,
                    created_at TEXT,
                    payload_json TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_messages_trade_id ON messages(trade_id);

                CREATE TABLE IF NOT EXISTS blocked_users (
                    id TEXT PRIMARY KEY,
                    blocker_id TEXT NOT NULL,
                    blocked_id TEXT NOT NULL,
                    created_at TEXT,
                    payload_json TEXT NOT NULL,
                    UNIQUE(blocker_id, blocked_id)
                );

                CREATE TABLE IF NOT EXISTS trade_history (
                    id TEXT PRIMARY KEY,
                    trade_id TEXT NOT NULL,
                    created_at TEXT,
                    payload_json TEXT NOT NULL
                );
                CREATE INDEX IF NOT EXISTS idx_trade_history_trade_id ON trade_history(trade_id);

                CREATE TABLE IF NOT EXISTS likes (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    item_id TEXT NOT NULL,
                    created_at TEXT,
                    payload_json TEXT NOT NULL,
                    UNIQUE(user_id, item_id)
                );
                CREATE INDEX IF NOT EXISTS idx_likes_item_id ON likes(item_id);
                """
            )
        finally:
            cur.close()

    # ------------------------
    # Generic record access
    # ------------------------

    def _row_values(self, table: str, record: Mapping[str, Any]) -> List[Any]:
        values: List[Any] = [str(record[COL_ID])]
        for col in TABLE_COLUMNS[table]:
            value = record.get(col)
            values.append(None if value is None else str(value))
        values.append(_json_dumps(dict(record)))
        return values

    def insert_record(self, collection: str, record: Mapping[str, Any], *, cur: sqlite3.Cursor | None = None) -> Dict[str, Any]:
        table = _table(collection)
        if not record.get(COL_ID):
            raise ValueError("record requires an id")
        cols = [COL_ID, *TABLE_COLUMNS[table], "payload_json"]
        placeholders = ", ".join("?" for _ in cols)
        with self._maybe_transaction(cur, write=True) as cur:
            cur.execute(
                f"INSERT INTO {table}({', '.join(cols)}) VALUES ({placeholders});",
                self._row_values(table, record),
            )
        return dict(record)

    def get_record(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        table = _table(collection)
        row = self._conn.execute(
            f"SELECT payload_json FROM {table} WHERE id=?;",
            (str(record_id),),
        ).fetchone()
        if not row:
            return None
        return _json_loads(row["payload_json"], None)

    def update_record(
        self,
        collection: str,
        record_id: str,
        patch: Mapping[str, Any],
        *,
        cur: sqlite3.Cursor | None = None,
    ) -> Optional[Dict[str, Any]]:
        """Merge patch into the stored record. Returns None if the record is missing."""
        table = _table(collection)
        with self._maybe_transaction(cur, write=True) as cur:
            row = cur.execute(f"SELECT payload_json FROM {table} WHERE id=?;", (str(record_id),)).fetchone()
            if not row:
                return None
            record = _json_loads(row["payload_json"], {})
            record.update(dict(patch))
            record[COL_ID] = str(record_id)
            values = self._row_values(table, record)
            assignments = ", ".join(f"{col}=?" for col in [*TABLE_COLUMNS[table], "payload_json"])
            cur.execute(f"UPDATE {table} SET {assignments} WHERE id=?;", values[1:] + [values[0]])
        return record

    def delete_record(self, collection: str, record_id: str, *, cur: sqlite3.Cursor | None = None) -> bool:
        table = _table(collection)
        with self._maybe_transaction(cur, write=True) as cur:
            cur.execute(f"DELETE FROM {table} WHERE id=?;", (str(record_id),))
            return cur.rowcount > 0

    def select_records(
        self,
        collection: str,
        filters: Sequence[Any] = (),
        *,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        # local import: trades.store imports this module lazily as well
        from trades.store import matches, sort_and_limit

        table = _table(collection)
        indexed = set(TABLE_COLUMNS[table]) | {COL_ID}
        where: List[str] = []
        params: List[Any] = []
        residual = []
        for f in filters:
            if f.field not in indexed or f.op == "contains":
                residual.append(f)
                continue
            if f.op == "eq":
                where.append(f"{f.field} = ?")
                params.append(str(f.value))
            elif f.op == "neq":
                where.append(f"{f.field} != ?")
                params.append(str(f.value))
            elif f.op == "in":
                values = [str(v) for v in f.value]
                if not values:
                    return []
                where.append(f"{f.field} IN ({', '.join('?' for _ in values)})")
                params.extend(values)

        sql = f"SELECT payload_json FROM {table}"
        if where:
            sql += " WHERE " + " AND ".join(where)
        sql_sorted = not residual and (order_by is None or order_by in indexed)
        if sql_sorted and order_by:
            sql += f" ORDER BY {order_by} {'DESC' if descending else 'ASC'}"
        if sql_sorted and limit is not None:
            sql += " LIMIT ?"
            params.append(max(0, int(limit)))

        rows = self._conn.execute(sql, params).fetchall()
        out = [r for r in (_json_loads(row["payload_json"], None) for row in rows) if isinstance(r, dict)]
        if sql_sorted:
            return out
        out = [r for r in out if matches(r, residual)]
        return sort_and_limit(out, order_by, descending, limit)

    @contextlib.contextmanager
    def _maybe_transaction(self, cur: sqlite3.Cursor | None, *, write: bool = True):
        """Use provided cursor, or open a transaction and create a new cursor."""
        if cur is not None:
            yield cur
        else:
            with self.transaction(write=write) as cur2:
                yield cur2

    # ------------------------
    # Import / export (CSV)
    # ------------------------

    def _committed_trade_ids_for(self, item_ids: Sequence[str]) -> List[str]:
        """Pending/accepted trades that pledge any of item_ids, on either side."""
        from trades.models import COMMITTED_STATUSES
        from trades.store import in_

        wanted = set(item_ids)
        if not wanted:
            return []
        out = []
        committed = in_("status", sorted(s.value for s in COMMITTED_STATUSES))
        for trade in self.select_records(COLLECTION_TRADES, [committed], order_by="created_at"):
            ids = {trade.get("offered_item_id"), trade.get("wanted_item_id")}
            ids.update(trade.get("additional_offered_ids") or [])
            ids.update(trade.get("additional_wanted_ids") or [])
            if ids & wanted:
                out.append(trade[COL_ID])
        return out

    def import_items_csv(self, csv_path: str | Path, *, mode: str = "upsert") -> int:
        """Bulk-load listings from a CSV export. Returns the number of rows written.

        mode="upsert" adds or refreshes the listed items; mode="replace" also drops
        every item missing from the file. Items held by a pending or accepted trade
        can be neither dropped nor handed to another owner here: that has to go
        through the engine's delete path so the trades get cancelled. Such an
        import raises ValueError naming the trades and writes nothing.
        """
        import pandas as pd  # local import so repo can be used without pandas in non-import contexts

        if mode not in ("upsert", "replace"):
            raise ValueError(f"unknown import mode {mode!r}")

        df = pd.read_csv(csv_path, dtype=str).fillna("")
        _require_columns(list(df.columns), ITEMS_CSV_REQUIRED)

        now = _utc_now_iso()
        records = []
        for row in df.to_dict(orient="records"):
            record = {
                COL_ID: normalize_item_id(row["item_id"]),
                "owner_id": normalize_user_id(row["owner_id"]),
                "title": str(row["title"]).strip(),
            }
            for col in ITEMS_CSV_OPTIONAL:
                record[col] = str(row.get(col, "") or "").strip()
            record["created_at"] = record["created_at"] or now
            records.append(record)

        with self.transaction(write=True) as cur:
            owners = {r["id"]: r["owner_id"] for r in cur.execute("SELECT id, owner_id FROM items;").fetchall()}
            incoming = {r[COL_ID]: r["owner_id"] for r in records}
            touched = [i for i, owner in incoming.items() if i in owners and owners[i] != owner]
            if mode == "replace":
                touched += [i for i in owners if i not in incoming]
            blocking = self._committed_trade_ids_for(touched)
            if blocking:
                raise ValueError(
                    f"import would remove or re-own items held by active trades: {blocking}; "
                    "delete those items through the engine first"
                )

            if mode == "replace":
                for item_id in owners:
                    if item_id not in incoming:
                        cur.execute("DELETE FROM items WHERE id=?;", (item_id,))
            for record in records:
                if record[COL_ID] in owners:
                    self.update_record(COLLECTION_ITEMS, record[COL_ID], record, cur=cur)
                else:
                    self.insert_record(COLLECTION_ITEMS, record, cur=cur)
                    owners[record[COL_ID]] = record["owner_id"]
        return len(records)

    def export_trades_csv(self, csv_path: str | Path) -> int:
        import pandas as pd

        trades = self.select_records(COLLECTION_TRADES, order_by="created_at")
        rows = []
        for t in trades:
            row = dict(t)
            row["additional_offered_ids"] = ";".join(t.get("additional_offered_ids") or [])
            row["additional_wanted_ids"] = ";".join(t.get("additional_wanted_ids") or [])
            rows.append(row)
        columns = [
            COL_ID,
            "sender_id",
            "receiver_id",
            "offered_item_id",
            "wanted_item_id",
            "additional_offered_ids",
            "additional_wanted_ids",
            "status",
            "created_at",
            "updated_at",
            "parent_trade_id",
        ]
        df = pd.DataFrame(rows, columns=columns)
        df.to_csv(csv_path, index=False)
        return len(df)

    # ------------------------
    # Integrity
    # ------------------------

    def validate_integrity(self) -> None:
        """Check that active trades point at live items owned by the right party."""
        from trades.models import COMMITTED_STATUSES, TradeStatus

        valid_statuses = {s.value for s in TradeStatus}
        committed = {s.value for s in COMMITTED_STATUSES}
        owners = {
            r["id"]: r["owner_id"]
            for r in self._conn.execute("SELECT id, owner_id FROM items;").fetchall()
        }
        problems: List[str] = []
        for trade in self.select_records(COLLECTION_TRADES):
            tid = trade.get(COL_ID)
            status = trade.get("status")
            if status not in valid_statuses:
                problems.append(f"trade {tid}: unknown status {status!r}")
                continue
            if trade.get("sender_id") == trade.get("receiver_id"):
                problems.append(f"trade {tid}: sender equals receiver")
            if status not in committed:
                continue
            offered = [trade.get("offered_item_id")] + list(trade.get("additional_offered_ids") or [])
            wanted = [trade.get("wanted_item_id")] + list(trade.get("additional_wanted_ids") or [])
            for item_id in offered:
                if owners.get(item_id) != trade.get("sender_id"):
                    problems.append(f"trade {tid}: offered item {item_id} not owned by sender")
            for item_id in wanted:
                if owners.get(item_id) != trade.get("receiver_id"):
                    problems.append(f"trade {tid}: wanted item {item_id} not owned by receiver")
        if problems:
            raise ValueError("Integrity check failed:\n" + "\n".join(problems))

    # ------------------------
    # Convenience
    # ------------------------

    def __enter__(self) -> "MarketRepo":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


# ----------------------------
# CLI
# ----------------------------

def _cmd_init(args) -> None:
    with MarketRepo(args.db) as repo:
        repo.init_db()
    print(f"OK: initialized {args.db}")

def _cmd_import_items(args) -> None:
    with MarketRepo(args.db) as repo:
        repo.init_db()
        n = repo.import_items_csv(args.csv, mode=args.mode)
    print(f"OK: imported {n} items from {args.csv} into {args.db}")

def _cmd_export_trades(args) -> None:
    with MarketRepo(args.db) as repo:
        n = repo.export_trades_csv(args.csv)
    print(f"OK: exported {n} trades to {args.csv}")

def _cmd_validate(args) -> None:
    with MarketRepo(args.db) as repo:
        repo.validate_integrity()
    print(f"OK: validation passed for {args.db}")

def main(argv: Optional[Sequence[str]] = None) -> None:
    p = argparse.ArgumentParser(description="MarketRepo (SQLite single source of truth)")
    sub = p.add_subparsers(dest="cmd", required=True)

    p_init = sub.add_parser("init", help="initialize DB schema")
    p_init.add_argument("--db", required=True, help="path to sqlite db file")
    p_init.set_defaults(func=_cmd_init)

    p_imp = sub.add_parser("import_items", help="import item listings from csv")
    p_imp.add_argument("--db", required=True, help="path to sqlite db file")
    p_imp.add_argument("--csv", required=True, help="path to items csv file")
    p_imp.add_argument("--mode", choices=["replace", "upsert"], default="upsert")
    p_imp.set_defaults(func=_cmd_import_items)

    p_exp = sub.add_parser("export_trades", help="export trade records to csv")
    p_exp.add_argument("--db", required=True, help="path to sqlite db file")
    p_exp.add_argument("--csv", required=True, help="output csv path")
    p_exp.set_defaults(func=_cmd_export_trades)

    p_val = sub.add_parser("validate", help="validate DB integrity")
    p_val.add_argument("--db", required=True, help="path to sqlite db file")
    p_val.set_defaults(func=_cmd_validate)

    args = p.parse_args(argv)
    args.func(args)

if __name__ == "__main__":
    main()
