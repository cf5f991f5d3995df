# exptracker/store.py
"""
Persistence adapter. BaseStore owns the write-time rules (validation,
category references, unique names, in-use deletes); backends only move
records in and out of storage.

JsonStore keeps one JSON document per entity under DATA_DIR:
  transactions.json, categories.json, settings.json, fx_rates.json
"""
from __future__ import annotations

import json
import logging
import threading
from contextlib import nullcontext
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from exptracker import config as cfg
from exptracker.aggregate import TxFilter, apply_filters
from exptracker.errors import ConflictError, NotFoundError, TrackerError, ValidationError
from exptracker.exporter import ImportPlan, build_export, prepare_import
from exptracker.fx import RateTable
from exptracker.models import (
    Category,
    Settings,
    Transaction,
    apply_category_update,
    apply_transaction_update,
    build_category,
    build_transaction,
    merge_settings,
)

logger = logging.getLogger(__name__)


def default_categories() -> List[Category]:
    return [build_category({"name": name, "type": t}) for name, t in cfg.DEFAULT_CATEGORIES]


class BaseStore:
    backend = "base"

    # ---------- backend primitives ----------
    def _all_transactions(self) -> List[Transaction]:
        raise NotImplementedError

    def _find_transaction(self, tx_id: str) -> Optional[Transaction]:
        raise NotImplementedError

    def _insert_transaction(self, tx: Transaction) -> None:
        raise NotImplementedError

    def _replace_transaction(self, tx: Transaction) -> None:
        raise NotImplementedError

    def _remove_transaction(self, tx_id: str) -> bool:
        raise NotImplementedError

    def _all_categories(self) -> List[Category]:
        raise NotImplementedError

    def _insert_category(self, cat: Category) -> None:
        raise NotImplementedError

    def _replace_category(self, cat: Category) -> None:
        raise NotImplementedError

    def _remove_category(self, cat_id: str) -> bool:
        raise NotImplementedError

    def _category_in_use(self, cat_id: str) -> bool:
        raise NotImplementedError

    def _remove_unused_category(self, cat_id: str) -> bool:
        """Remove the category unless a transaction references it. False when kept."""
        if self._category_in_use(cat_id):
            return False
        return self._remove_category(cat_id)

    def _write_lock(self):
        """Held across check-then-write sequences that span several primitives."""
        return nullcontext()

    def _load_settings(self) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def _save_settings(self, data: Dict[str, Any]) -> None:
        raise NotImplementedError

    def _load_rates(self) -> Optional[Dict[str, float]]:
        raise NotImplementedError

    def _save_rates(self, rates: Dict[str, float]) -> None:
        raise NotImplementedError

    def _apply_import(self, plan: ImportPlan) -> None:
        raise NotImplementedError

    def ping(self) -> bool:
        raise NotImplementedError

    def close(self) -> None:
        pass

    # ---------- FX rates ----------
    def rates(self) -> RateTable:
        return RateTable(self._load_rates())

    def set_rates(self, partial: Mapping[str, Any]) -> Tuple[RateTable, List[str]]:
        if not isinstance(partial, Mapping):
            raise ValidationError("Rates must be an object of CODE: rate")
        table = self.rates()
        rejected = table.set_rates(partial)
        self._save_rates(table.get_rates())
        return table, rejected

    # ---------- settings ----------
    def get_settings(self) -> Settings:
        return Settings.from_dict(self._load_settings())

    def update_settings(self, payload: Mapping[str, Any]) -> Settings:
        if not isinstance(payload, Mapping):
            raise ValidationError("Settings must be an object")
        merged = merge_settings(self.get_settings(), payload, known_currencies=self.rates().known_codes())
        self._save_settings(merged.to_dict())
        logger.info("Settings updated: currency=%s language=%s", merged.currency, merged.language)
        return merged

    # ---------- categories ----------
    def list_categories(self) -> List[Category]:
        return sorted(self._all_categories(), key=lambda c: c.name.lower())

    def get_category(self, cat_id: str) -> Category:
        for c in self._all_categories():
            if c.id == cat_id:
                return c
        raise NotFoundError("Category not found")

    def resolve_category(self, ref: str) -> Optional[Category]:
        """Look a category up by id, then by name (case-insensitive)."""
        key = (ref or "").strip().lower()
        cats = self._all_categories()
        for c in cats:
            if c.id.lower() == key:
                return c
        for c in cats:
            if c.name.lower() == key:
                return c
        return None

    def _check_unique(self, cat: Category, exclude_id: Optional[str] = None) -> None:
        for c in self._all_categories():
            if c.id == exclude_id:
                continue
            if c.id == cat.id or c.name.lower() == cat.name.lower():
                raise ConflictError("Category with this id/name already exists")

    def create_category(self, payload: Mapping[str, Any]) -> Category:
        cat = build_category(payload or {})
        self._check_unique(cat)
        self._insert_category(cat)
        logger.info("Category created: %s (%s)", cat.id, cat.type)
        return cat

    def update_category(self, cat_id: str, payload: Mapping[str, Any]) -> Category:
        cur = self.get_category(cat_id)
        cat = apply_category_update(cur, payload or {})
        self._check_unique(cat, exclude_id=cur.id)
        self._replace_category(cat)
        return cat

    def delete_category(self, cat_id: str) -> None:
        with self._write_lock():
            self.get_category(cat_id)
            if not self._remove_unused_category(cat_id):
                # gone in the meantime -> 404, otherwise still referenced
                self.get_category(cat_id)
                raise ConflictError("Cannot delete category that is used by transactions")
        logger.info("Category deleted: %s", cat_id)

    # ---------- transactions ----------
    def list_transactions(self, flt: Optional[TxFilter] = None) -> List[Transaction]:
        rows = apply_filters(self._all_transactions(), flt, self._all_categories())
        rows.sort(key=lambda t: (t.date or "", t.created_at or ""), reverse=True)
        return rows

    def get_transaction(self, tx_id: str) -> Transaction:
        tx = self._find_transaction(tx_id)
        if tx is None:
            raise NotFoundError("Transaction not found")
        return tx

    def _require_category(self, ref: str) -> str:
        cat = self.resolve_category(ref)
        if cat is None:
            raise ValidationError("Category does not exist")
        return cat.id

    def create_transaction(self, payload: Mapping[str, Any]) -> Transaction:
        if not isinstance(payload, Mapping):
            raise ValidationError("Transaction must be an object")
        tx = build_transaction(
            payload,
            known_currencies=self.rates().known_codes(),
            default_currency=self.get_settings().currency,
        )
        with self._write_lock():
            tx.category = self._require_category(tx.category)
            self._insert_transaction(tx)
        logger.info("Transaction created: %s %s %.2f %s", tx.id, tx.type, tx.amount, tx.currency)
        return tx

    def update_transaction(self, tx_id: str, payload: Mapping[str, Any]) -> Transaction:
        if not isinstance(payload, Mapping):
            raise ValidationError("Transaction must be an object")
        known = self.rates().known_codes()
        with self._write_lock():
            cur = self.get_transaction(tx_id)
            tx = apply_transaction_update(cur, payload, known_currencies=known)
            if tx.category != cur.category:
                tx.category = self._require_category(tx.category)
            self._replace_transaction(tx)
        return tx

    def delete_transaction(self, tx_id: str) -> None:
        if not self._remove_transaction(tx_id):
            raise NotFoundError("Transaction not found")
        logger.info("Transaction deleted: %s", tx_id)

    # ---------- export / import ----------
    def export_all(self) -> Dict[str, Any]:
        return build_export(self.get_settings(), self.list_categories(),
                            self.list_transactions(), self.rates())

    def import_all(self, payload: Any) -> Dict[str, Any]:
        plan = prepare_import(
            payload,
            current_settings=self.get_settings(),
            current_rates=self.rates(),
            current_categories=self._all_categories(),
            current_transactions=self._all_transactions(),
        )
        self._apply_import(plan)
        counts = plan.counts()
        logger.info("Data imported: %s", counts)
        return counts


# ==================== JSON file backend ====================
# one lock for every JsonStore in the process: files are shared, stores are not
_JSON_LOCK = threading.RLock()


class JsonStore(BaseStore):
    backend = "json"

    TX_FILE = "transactions.json"
    CAT_FILE = "categories.json"
    SETTINGS_FILE = "settings.json"
    RATES_FILE = "fx_rates.json"

    def __init__(self, base_dir: Optional[Path] = None):
        self.base_dir = Path(base_dir) if base_dir else cfg.data_dir()
        self.base_dir.mkdir(parents=True, exist_ok=True)
        with _JSON_LOCK:
            if not self._path(self.CAT_FILE).exists():
                self._write(self.CAT_FILE, [c.to_dict() for c in default_categories()])

    # ---------- file I/O ----------
    def _path(self, name: str) -> Path:
        return self.base_dir / name

    def _read(self, name: str, fallback: Any) -> Any:
        p = self._path(name)
        if not p.exists():
            return fallback
        try:
            return json.loads(p.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.exception("Failed to read %s", p)
            raise TrackerError(f"Data file {name} is unreadable") from e

    def _write(self, name: str, data: Any) -> None:
        p = self._path(name)
        tmp = p.with_suffix(".tmp")
        tmp.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
        tmp.replace(p)

    # ---------- transactions ----------
    def _tx_rows(self) -> List[Dict[str, Any]]:
        return [r for r in (self._read(self.TX_FILE, []) or []) if isinstance(r, dict)]

    def _all_transactions(self) -> List[Transaction]:
        with _JSON_LOCK:
            return [Transaction.from_dict(r) for r in self._tx_rows()]

    def _find_transaction(self, tx_id: str) -> Optional[Transaction]:
        for tx in self._all_transactions():
            if tx.id == tx_id:
                return tx
        return None

    def _insert_transaction(self, tx: Transaction) -> None:
        with _JSON_LOCK:
            rows = self._tx_rows()
            rows.append(tx.to_dict())
            self._write(self.TX_FILE, rows)

    def _replace_transaction(self, tx: Transaction) -> None:
        with _JSON_LOCK:
            rows = [tx.to_dict() if r.get("id") == tx.id else r for r in self._tx_rows()]
            self._write(self.TX_FILE, rows)

    def _remove_transaction(self, tx_id: str) -> bool:
        with _JSON_LOCK:
            rows = self._tx_rows()
            kept = [r for r in rows if r.get("id") != tx_id]
            if len(kept) == len(rows):
                return False
            self._write(self.TX_FILE, kept)
            return True

    # ---------- categories ----------
    def _cat_rows(self) -> List[Dict[str, Any]]:
        return [r for r in (self._read(self.CAT_FILE, []) or []) if isinstance(r, dict)]

    def _all_categories(self) -> List[Category]:
        with _JSON_LOCK:
            return [Category.from_dict(r) for r in self._cat_rows()]

    def _insert_category(self, cat: Category) -> None:
        with _JSON_LOCK:
            rows = self._cat_rows()
            rows.append(cat.to_dict())
            self._write(self.CAT_FILE, rows)

    def _replace_category(self, cat: Category) -> None:
        with _JSON_LOCK:
            rows = [cat.to_dict() if r.get("id") == cat.id else r for r in self._cat_rows()]
            self._write(self.CAT_FILE, rows)

    def _remove_category(self, cat_id: str) -> bool:
        with _JSON_LOCK:
            rows = self._cat_rows()
            kept = [r for r in rows if r.get("id") != cat_id]
            if len(kept) == len(rows):
                return False
            self._write(self.CAT_FILE, kept)
            return True

    def _category_in_use(self, cat_id: str) -> bool:
        with _JSON_LOCK:
            return any(r.get("category") == cat_id for r in self._tx_rows())

    def _write_lock(self):
        return _JSON_LOCK

    # ---------- settings / rates ----------
    def _load_settings(self) -> Optional[Dict[str, Any]]:
        with _JSON_LOCK:
            return self._read(self.SETTINGS_FILE, None)

    def _save_settings(self, data: Dict[str, Any]) -> None:
        with _JSON_LOCK:
            self._write(self.SETTINGS_FILE, data)

    def _load_rates(self) -> Optional[Dict[str, float]]:
        with _JSON_LOCK:
            return self._read(self.RATES_FILE, None)

    def _save_rates(self, rates: Dict[str, float]) -> None:
        with _JSON_LOCK:
            self._write(self.RATES_FILE, rates)

    def _apply_import(self, plan: ImportPlan) -> None:
        with _JSON_LOCK:
            if plan.rates is not None:
                self._write(self.RATES_FILE, plan.rates.get_rates())
            if plan.categories is not None:
                self._write(self.CAT_FILE, [c.to_dict() for c in plan.categories])
            if plan.transactions is not None:
                self._write(self.TX_FILE, [t.to_dict() for t in plan.transactions])
            if plan.settings is not None:
                self._write(self.SETTINGS_FILE, plan.settings.to_dict())

    def ping(self) -> bool:
        with _JSON_LOCK:
            self._read(self.CAT_FILE, [])
        return True


def open_store(backend: Optional[str] = None) -> BaseStore:
    """Store for the configured backend (STORAGE_BACKEND)."""
    backend = (backend or cfg.storage_backend()).lower()
    if backend == "json":
        return JsonStore()
    if backend == "sqlite":
        from exptracker.sql_store import SqliteStore
        return SqliteStore()
    raise TrackerError(f"Unknown STORAGE_BACKEND: {backend!r}")
