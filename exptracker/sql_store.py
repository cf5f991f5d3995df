# exptracker/sql_store.py
"""SQLite backend: same rules as JsonStore (they live in BaseStore), rows in tables."""
from __future__ import annotations

import json
import logging
import sqlite3
from pathlib import Path
from typing import Any, Dict, List, Optional

from exptracker import config as cfg
from exptracker.errors import NotFoundError, ValidationError
from exptracker.exporter import ImportPlan
from exptracker.models import Category, Transaction
from exptracker.store import BaseStore, default_categories

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 2

_TX_COLUMNS = ("id", "type", "amount", "currency", "category", "date",
               "note", "description", "createdAt", "updatedAt")
_CAT_COLUMNS = ("id", "name", "type", "color", "updatedAt")


class SqliteStore(BaseStore):
    backend = "sqlite"

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path) if db_path else cfg.database_path()
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._init_db()

    def __enter__(self) -> "SqliteStore":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    # ---------- schema ----------
    def _init_db(self) -> None:
        cur = self.conn.cursor()
        cur.execute("CREATE TABLE IF NOT EXISTS schema_version (version INTEGER PRIMARY KEY)")
        cur.execute("SELECT version FROM schema_version")
        row = cur.fetchone()
        current = row[0] if row else 0

        if current < 1:
            self._migrate_v1(cur)
        if current < 2:
            self._migrate_v2(cur)

        if current < SCHEMA_VERSION:
            cur.execute("DELETE FROM schema_version")
            cur.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
            logger.info("SQLite schema at %s migrated %s -> %s", self.db_path, current, SCHEMA_VERSION)
        self.conn.commit()

    def _migrate_v1(self, cur: sqlite3.Cursor) -> None:
        """V1: records tables."""
        cur.execute("""
            CREATE TABLE IF NOT EXISTS categories (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL,
                type TEXT NOT NULL DEFAULT 'expense',
                color TEXT,
                updatedAt TEXT
            )
        """)
        cur.execute("CREATE UNIQUE INDEX IF NOT EXISTS idx_categories_name ON categories(name COLLATE NOCASE)")
        cur.execute("""
            CREATE TABLE IF NOT EXISTS transactions (
                id TEXT PRIMARY KEY,
                type TEXT NOT NULL,
                amount REAL NOT NULL,
                currency TEXT NOT NULL,
                category TEXT NOT NULL,
                date TEXT NOT NULL,
                note TEXT DEFAULT '',
                description TEXT DEFAULT '',
                createdAt TEXT,
                updatedAt TEXT
            )
        """)
        cur.execute("CREATE INDEX IF NOT EXISTS idx_transactions_date ON transactions(date DESC, createdAt DESC)")
        cur.execute("CREATE INDEX IF NOT EXISTS idx_transactions_category ON transactions(category)")
        cur.execute("""
            CREATE TABLE IF NOT EXISTS settings (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                data TEXT NOT NULL
            )
        """)
        cur.execute("""
            CREATE TABLE IF NOT EXISTS fx_rates (
                code TEXT PRIMARY KEY,
                rate REAL NOT NULL
            )
        """)

    def _migrate_v2(self, cur: sqlite3.Cursor) -> None:
        """V2: default categories (first run only)."""
        cur.execute("SELECT COUNT(*) FROM categories")
        if cur.fetchone()[0] > 0:
            return
        for cat in default_categories():
            self._insert_category_row(cur, cat)

    # ---------- row helpers ----------
    @staticmethod
    def _tx_values(tx: Transaction) -> tuple:
        d = tx.to_dict()
        return tuple(d[c] for c in _TX_COLUMNS)

    @staticmethod
    def _insert_category_row(cur: sqlite3.Cursor, cat: Category) -> None:
        d = cat.to_dict()
        cur.execute(
            f"INSERT INTO categories ({', '.join(_CAT_COLUMNS)}) VALUES ({', '.join('?' * len(_CAT_COLUMNS))})",
            tuple(d[c] for c in _CAT_COLUMNS),
        )

    def _insert_tx_row(self, cur: sqlite3.Cursor, tx: Transaction) -> None:
        cur.execute(
            f"INSERT INTO transactions ({', '.join(_TX_COLUMNS)}) VALUES ({', '.join('?' * len(_TX_COLUMNS))})",
            self._tx_values(tx),
        )

    # ---------- transactions ----------
    def _all_transactions(self) -> List[Transaction]:
        rows = self.conn.execute(f"SELECT {', '.join(_TX_COLUMNS)} FROM transactions").fetchall()
        return [Transaction.from_dict(dict(r)) for r in rows]

    def _find_transaction(self, tx_id: str) -> Optional[Transaction]:
        row = self.conn.execute(
            f"SELECT {', '.join(_TX_COLUMNS)} FROM transactions WHERE id = ?", (tx_id,)
        ).fetchone()
        return Transaction.from_dict(dict(row)) if row else None

    # Single statements guarded by EXISTS, so a concurrent category delete on
    # another connection cannot leave a row pointing at nothing.
    def _insert_transaction(self, tx: Transaction) -> None:
        with self.conn:
            cur = self.conn.execute(
                f"INSERT INTO transactions ({', '.join(_TX_COLUMNS)}) "
                f"SELECT {', '.join('?' * len(_TX_COLUMNS))} "
                "WHERE EXISTS (SELECT 1 FROM categories WHERE id = ?)",
                self._tx_values(tx) + (tx.category,),
            )
        if cur.rowcount == 0:
            raise ValidationError("Category does not exist")

    def _replace_transaction(self, tx: Transaction) -> None:
        sets = ", ".join(f"{c} = ?" for c in _TX_COLUMNS[1:])
        values = self._tx_values(tx)
        with self.conn:
            cur = self.conn.execute(
                f"UPDATE transactions SET {sets} WHERE id = ? "
                "AND EXISTS (SELECT 1 FROM categories WHERE id = ?)",
                values[1:] + (tx.id, tx.category),
            )
        if cur.rowcount == 0:
            if self._find_transaction(tx.id) is None:
                raise NotFoundError("Transaction not found")
            raise ValidationError("Category does not exist")

    def _remove_transaction(self, tx_id: str) -> bool:
        with self.conn:
            cur = self.conn.execute("DELETE FROM transactions WHERE id = ?", (tx_id,))
        return cur.rowcount > 0

    # ---------- categories ----------
    def _all_categories(self) -> List[Category]:
        rows = self.conn.execute(f"SELECT {', '.join(_CAT_COLUMNS)} FROM categories").fetchall()
        return [Category.from_dict(dict(r)) for r in rows]

    def _insert_category(self, cat: Category) -> None:
        with self.conn:
            self._insert_category_row(self.conn.cursor(), cat)

    def _replace_category(self, cat: Category) -> None:
        with self.conn:
            self.conn.execute(
                "UPDATE categories SET name = ?, type = ?, color = ?, updatedAt = ? WHERE id = ?",
                (cat.name, cat.type, cat.color, cat.updated_at, cat.id),
            )

    def _remove_category(self, cat_id: str) -> bool:
        with self.conn:
            cur = self.conn.execute("DELETE FROM categories WHERE id = ?", (cat_id,))
        return cur.rowcount > 0

    def _remove_unused_category(self, cat_id: str) -> bool:
        with self.conn:
            cur = self.conn.execute(
                "DELETE FROM categories WHERE id = ? "
                "AND NOT EXISTS (SELECT 1 FROM transactions WHERE category = ?)",
                (cat_id, cat_id),
            )
        return cur.rowcount > 0

    def _category_in_use(self, cat_id: str) -> bool:
        row = self.conn.execute("SELECT 1 FROM transactions WHERE category = ? LIMIT 1", (cat_id,)).fetchone()
        return row is not None

    # ---------- settings / rates ----------
    def _load_settings(self) -> Optional[Dict[str, Any]]:
        row = self.conn.execute("SELECT data FROM settings WHERE id = 1").fetchone()
        return json.loads(row["data"]) if row else None

    def _save_settings(self, data: Dict[str, Any]) -> None:
        with self.conn:
            self.conn.execute(
                "INSERT INTO settings (id, data) VALUES (1, ?) "
                "ON CONFLICT(id) DO UPDATE SET data = excluded.data",
                (json.dumps(data),),
            )

    def _load_rates(self) -> Optional[Dict[str, float]]:
        rows = self.conn.execute("SELECT code, rate FROM fx_rates").fetchall()
        return {r["code"]: r["rate"] for r in rows} or None

    def _write_rates(self, cur: sqlite3.Cursor, rates: Dict[str, float]) -> None:
        cur.execute("DELETE FROM fx_rates")
        cur.executemany("INSERT INTO fx_rates (code, rate) VALUES (?, ?)", sorted(rates.items()))

    def _save_rates(self, rates: Dict[str, float]) -> None:
        with self.conn:
            self._write_rates(self.conn.cursor(), rates)

    def _apply_import(self, plan: ImportPlan) -> None:
        # one SQL transaction: all or nothing
        with self.conn:
            cur = self.conn.cursor()
            if plan.rates is not None:
                self._write_rates(cur, plan.rates.get_rates())
            if plan.categories is not None:
                cur.execute("DELETE FROM categories")
                for cat in plan.categories:
                    self._insert_category_row(cur, cat)
            if plan.transactions is not None:
                cur.execute("DELETE FROM transactions")
                for tx in plan.transactions:
                    self._insert_tx_row(cur, tx)
            if plan.settings is not None:
                cur.execute("DELETE FROM settings")
                cur.execute("INSERT INTO settings (id, data) VALUES (1, ?)", (json.dumps(plan.settings.to_dict()),))

    def ping(self) -> bool:
        row = self.conn.execute("SELECT 1 AS ok").fetchone()
        return row["ok"] == 1
