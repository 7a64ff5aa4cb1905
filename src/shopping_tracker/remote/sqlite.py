from __future__ import annotations

import os
import sqlite3
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, Union

from ..errors import StoreError
from ..logging import get_logger
from ..paths import find_project_root, state_dir
from .base import TABLES, Filters, Row, as_rows, is_multi


LOG = get_logger("store-sqlite")

DEFAULT_DB_FOLDER = "shopping"
DEFAULT_DB_FILENAME = "shopping.sqlite3"

_NOW = "(strftime('%Y-%m-%dT%H:%M:%fZ', 'now'))"

SCHEMA_SQL = f"""
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS shopping_lists (
  id          TEXT PRIMARY KEY,
  user_id     TEXT NOT NULL,
  name        TEXT NOT NULL,
  month       INTEGER NOT NULL DEFAULT 0,
  year        INTEGER NOT NULL DEFAULT 0,
  is_active   INTEGER NOT NULL DEFAULT 0,
  created_at  TEXT DEFAULT {_NOW},
  updated_at  TEXT DEFAULT {_NOW}
);

-- Children are deleted explicitly by the app, so no cascade here.
CREATE TABLE IF NOT EXISTS categories (
  id          TEXT PRIMARY KEY,
  list_id     TEXT NOT NULL REFERENCES shopping_lists(id),
  name        TEXT NOT NULL,
  is_custom   INTEGER NOT NULL DEFAULT 0,
  sort_order  INTEGER NOT NULL DEFAULT 0,
  created_at  TEXT DEFAULT {_NOW}
);

CREATE TABLE IF NOT EXISTS shopping_items (
  id          TEXT PRIMARY KEY,
  category_id TEXT NOT NULL REFERENCES categories(id),
  name        TEXT NOT NULL,
  quantity    INTEGER NOT NULL DEFAULT 1 CHECK(quantity >= 0),
  unit_price  REAL,
  market      TEXT,
  is_checked  INTEGER NOT NULL DEFAULT 0,
  sort_order  INTEGER NOT NULL DEFAULT 0,
  created_at  TEXT DEFAULT {_NOW},
  updated_at  TEXT DEFAULT {_NOW}
);

CREATE TABLE IF NOT EXISTS price_history (
  id          TEXT PRIMARY KEY,
  item_name   TEXT NOT NULL,
  user_id     TEXT NOT NULL,
  unit_price  REAL NOT NULL,
  market      TEXT,
  recorded_at TEXT DEFAULT {_NOW}
);

CREATE TABLE IF NOT EXISTS receipts (
  id              TEXT PRIMARY KEY,
  user_id         TEXT NOT NULL,
  list_id         TEXT,
  title           TEXT NOT NULL,
  total_amount    REAL NOT NULL DEFAULT 0,
  payment_method  TEXT,
  has_discount    INTEGER NOT NULL DEFAULT 0,
  discount_amount REAL NOT NULL DEFAULT 0,
  market          TEXT,
  purchase_date   TEXT DEFAULT {_NOW},
  created_at      TEXT DEFAULT {_NOW}
);

-- Line items go away with their receipt.
CREATE TABLE IF NOT EXISTS receipt_items (
  id          TEXT PRIMARY KEY,
  receipt_id  TEXT NOT NULL REFERENCES receipts(id) ON DELETE CASCADE,
  name        TEXT NOT NULL,
  quantity    REAL NOT NULL DEFAULT 1,
  unit_price  REAL NOT NULL DEFAULT 0,
  total_price REAL NOT NULL DEFAULT 0
);

CREATE INDEX IF NOT EXISTS idx_lists_user_active   ON shopping_lists(user_id, is_active);
CREATE INDEX IF NOT EXISTS idx_categories_list     ON categories(list_id);
CREATE INDEX IF NOT EXISTS idx_items_category      ON shopping_items(category_id);
CREATE INDEX IF NOT EXISTS idx_price_history_name  ON price_history(user_id, item_name);
CREATE INDEX IF NOT EXISTS idx_receipts_user       ON receipts(user_id, purchase_date);
CREATE INDEX IF NOT EXISTS idx_receipt_items       ON receipt_items(receipt_id);
"""

# Tables whose rows carry an updated_at column refreshed on every update.
_TOUCH_ON_UPDATE = {"shopping_lists", "shopping_items"}


class SqliteRecordStore:
    """SQLite-backed record store.

    - Places the DB under `<repo-root>/var/shopping/shopping.sqlite3` unless
      an explicit path is given.
    - Ensures schema on first use.
    - Assigns opaque string ids on insert, like a hosted backend would.
    """

    def __init__(self, db_path: Optional[str] = None, *, root_dir: Optional[str] = None) -> None:
        if db_path is None:
            db_folder = state_dir(find_project_root(root_dir), DEFAULT_DB_FOLDER, create=True)
            db_path = os.path.join(db_folder, DEFAULT_DB_FILENAME)
        else:
            os.makedirs(os.path.dirname(os.path.abspath(db_path)) or ".", exist_ok=True)
        self.db_path = db_path
        self._columns: Dict[str, Tuple[str, ...]] = {}
        LOG.info(f"Shopping DB path: {self.db_path}")
        self._ensure_schema()

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.db_path, timeout=10)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        try:
            yield conn
        finally:
            conn.close()

    def _ensure_schema(self) -> None:
        with self.connect() as conn:
            cur = conn.cursor()
            try:
                cur.execute("PRAGMA journal_mode=WAL;")
                cur.execute("PRAGMA synchronous=NORMAL;")
            except sqlite3.OperationalError:
                LOG.debug("WAL journal mode unavailable; continuing with defaults")
            cur.executescript(SCHEMA_SQL)
            conn.commit()
            for table in TABLES:
                cur.execute(f"PRAGMA table_info({table});")
                self._columns[table] = tuple(row[1] for row in cur.fetchall())
        LOG.debug("Shopping DB schema ensured.")

    # --------------- validation helpers ---------------
    def _check_table(self, table: str) -> Tuple[str, ...]:
        columns = self._columns.get(table)
        if columns is None:
            raise StoreError(f"Unsupported table: {table}", table=table)
        return columns

    def _check_columns(self, table: str, names: Sequence[str]) -> None:
        columns = self._check_table(table)
        unknown = [n for n in names if n not in columns]
        if unknown:
            raise StoreError(f"Unknown column(s) for {table}: {', '.join(unknown)}", table=table)

    def _where(self, table: str, filters: Optional[Filters]) -> Tuple[str, List[Any]]:
        if not filters:
            return "", []
        self._check_columns(table, list(filters.keys()))
        clauses: List[str] = []
        params: List[Any] = []
        for column, value in filters.items():
            if is_multi(value):
                values = list(value)
                if not values:
                    clauses.append("0")
                    continue
                clauses.append(f"{column} IN ({', '.join('?' for _ in values)})")
                params.extend(values)
            elif value is None:
                clauses.append(f"{column} IS NULL")
            else:
                clauses.append(f"{column} = ?")
                params.append(value)
        return "WHERE " + " AND ".join(clauses), params

    @staticmethod
    def _rows_to_dicts(rows: Sequence[sqlite3.Row]) -> List[Row]:
        return [dict(row) for row in rows]

    # --------------- CRUD ---------------
    def select(
        self,
        table: str,
        *,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Row]:
        self._check_table(table)
        where_sql, params = self._where(table, filters)
        order_sql = ""
        if order_by:
            self._check_columns(table, [order_by])
            direction = "DESC" if descending else "ASC"
            # Insertion order breaks ties between equal timestamps/positions.
            order_sql = f"ORDER BY {order_by} {direction}, rowid {direction}"
        limit_sql = ""
        if limit is not None:
            limit_sql = "LIMIT ?"
            params.append(int(limit))
        sql = f"SELECT * FROM {table} {where_sql} {order_sql} {limit_sql};"
        try:
            with self.connect() as conn:
                cur = conn.cursor()
                cur.execute(sql, params)
                return self._rows_to_dicts(cur.fetchall())
        except sqlite3.Error as exc:
            raise StoreError(f"select from {table} failed: {exc}", table=table) from exc

    def insert(self, table: str, rows: Union[Row, Sequence[Row]]) -> List[Row]:
        payload = as_rows(rows)
        if not payload:
            return []
        written: List[Row] = []
        try:
            with self.connect() as conn:
                cur = conn.cursor()
                for row in payload:
                    row.setdefault("id", uuid.uuid4().hex)
                    self._check_columns(table, list(row.keys()))
                    columns = ", ".join(row.keys())
                    marks = ", ".join("?" for _ in row)
                    cur.execute(
                        f"INSERT INTO {table} ({columns}) VALUES ({marks}) RETURNING *;",
                        list(row.values()),
                    )
                    written.append(dict(cur.fetchone()))
                conn.commit()
        except sqlite3.Error as exc:
            raise StoreError(f"insert into {table} failed: {exc}", table=table) from exc
        return written

    def update(self, table: str, values: Row, *, filters: Filters) -> List[Row]:
        if not filters:
            raise StoreError(f"update on {table} requires filters", table=table)
        values = dict(values)
        self._check_columns(table, list(values.keys()))
        assignments = [f"{column} = ?" for column in values]
        params: List[Any] = list(values.values())
        if table in _TOUCH_ON_UPDATE and "updated_at" not in values:
            assignments.append(f"updated_at = {_NOW}")
        where_sql, where_params = self._where(table, filters)
        sql = f"UPDATE {table} SET {', '.join(assignments)} {where_sql} RETURNING *;"
        try:
            with self.connect() as conn:
                cur = conn.cursor()
                cur.execute(sql, params + where_params)
                rows = self._rows_to_dicts(cur.fetchall())
                conn.commit()
                return rows
        except sqlite3.Error as exc:
            raise StoreError(f"update of {table} failed: {exc}", table=table) from exc

    def delete(self, table: str, *, filters: Filters) -> int:
        if not filters:
            raise StoreError(f"delete on {table} requires filters", table=table)
        where_sql, params = self._where(table, filters)
        try:
            with self.connect() as conn:
                cur = conn.cursor()
                cur.execute(f"DELETE FROM {table} {where_sql};", params)
                conn.commit()
                return int(cur.rowcount)
        except sqlite3.Error as exc:
            raise StoreError(f"delete from {table} failed: {exc}", table=table) from exc
