# exptracker/exporter.py
"""
Whole-dataset JSON export/import and the CSV export of transaction rows.

Import accepts the current export shape and the older browser-storage one:
  {"meta": {...}, "settings": {...}, "categories": [...], "transactions": [...], "fxRates": {...}}
  {"version": "1.0", "data": [...], "settings": {...}, "categories": ["Food", ...]}
"""
from __future__ import annotations

import csv
import io
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional

from exptracker import config as cfg
from exptracker.dates import utc_now_iso
from exptracker.errors import ValidationError
from exptracker.fx import RateTable, convert
from exptracker.models import (
    Category,
    Settings,
    Transaction,
    build_category,
    import_transaction,
    merge_settings,
)


def build_export(settings: Settings, categories: Iterable[Category],
                 transactions: Iterable[Transaction], rates: RateTable) -> Dict[str, Any]:
    return {
        "meta": {
            "app": cfg.APP_NAME,
            "exportedAt": utc_now_iso(),
            "version": cfg.EXPORT_VERSION,
        },
        "settings": settings.to_dict(),
        "categories": [c.to_dict() for c in categories],
        "transactions": [t.to_dict() for t in transactions],
        "fxRates": rates.get_rates(),
    }


@dataclass
class ImportPlan:
    """Validated replacement data; None means "leave that part as it is"."""
    categories: Optional[List[Category]] = None
    transactions: Optional[List[Transaction]] = None
    settings: Optional[Settings] = None
    rates: Optional[RateTable] = None

    def counts(self) -> Dict[str, Optional[int]]:
        return {
            "categories": len(self.categories) if self.categories is not None else None,
            "transactions": len(self.transactions) if self.transactions is not None else None,
            "settings": 1 if self.settings is not None else None,
        }


def _category_from_import(raw: Any) -> Category:
    # legacy exports kept categories as bare names
    if isinstance(raw, str):
        return build_category({"name": raw, "type": "expense"})
    if not isinstance(raw, Mapping):
        raise ValidationError("Each category must be an object or a name")
    return build_category(raw)


def prepare_import(payload: Any, *, current_settings: Settings, current_rates: RateTable,
                   current_categories: Iterable[Category],
                   current_transactions: Iterable[Transaction] = ()) -> ImportPlan:
    """
    Validate everything up-front so a bad file changes nothing.
    Raises ValidationError naming the first offending row.
    """
    if not isinstance(payload, Mapping):
        raise ValidationError("Invalid import data format")

    plan = ImportPlan()

    rates = current_rates.snapshot()
    fx = payload.get("fxRates")
    if isinstance(fx, Mapping):
        rates.set_rates(fx)
        plan.rates = rates

    cats_raw = payload.get("categories")
    if cats_raw is not None:
        if not isinstance(cats_raw, list):
            raise ValidationError("'categories' must be a list")
        seen_ids, seen_names = set(), set()
        cats: List[Category] = []
        for i, raw in enumerate(cats_raw):
            try:
                cat = _category_from_import(raw)
            except ValidationError as e:
                raise ValidationError(f"categories[{i}]: {e.message}")
            if cat.id in seen_ids or cat.name.lower() in seen_names:
                raise ValidationError(f"categories[{i}]: duplicate category {cat.name!r}")
            seen_ids.add(cat.id)
            seen_names.add(cat.name.lower())
            cats.append(cat)
        plan.categories = cats

    settings_raw = payload.get("settings")
    if isinstance(settings_raw, list):
        settings_raw = settings_raw[0] if settings_raw else None
    if isinstance(settings_raw, Mapping):
        try:
            plan.settings = merge_settings(Settings(), settings_raw, known_currencies=rates.known_codes())
        except ValidationError as e:
            raise ValidationError(f"settings: {e.message}")

    tx_raw = payload.get("transactions", payload.get("data"))
    if tx_raw is not None:
        if not isinstance(tx_raw, list):
            raise ValidationError("'transactions' must be a list")
        final_cats = plan.categories if plan.categories is not None else list(current_categories)
        by_ref = {}
        for c in final_cats:
            by_ref.setdefault(c.id.lower(), c.id)
            by_ref.setdefault(c.name.lower(), c.id)
        default_currency = (plan.settings or current_settings).currency
        txs: List[Transaction] = []
        seen = set()
        for i, raw in enumerate(tx_raw):
            if not isinstance(raw, Mapping):
                raise ValidationError(f"transactions[{i}]: must be an object")
            try:
                tx = import_transaction(raw, known_currencies=rates.known_codes(),
                                        default_currency=default_currency)
            except ValidationError as e:
                raise ValidationError(f"transactions[{i}]: {e.message}")
            cat_id = by_ref.get(tx.category.lower())
            if cat_id is None:
                raise ValidationError(f"transactions[{i}]: category {tx.category!r} does not exist")
            if tx.id in seen:
                raise ValidationError(f"transactions[{i}]: duplicate id {tx.id!r}")
            seen.add(tx.id)
            tx.category = cat_id
            txs.append(tx)
        plan.transactions = txs
    elif plan.categories is not None:
        # replacing categories must not orphan the transactions that stay
        kept = {c.id for c in plan.categories}
        for tx in current_transactions:
            if tx.category not in kept:
                raise ValidationError(
                    f"categories: transaction {tx.id!r} uses category {tx.category!r} missing from the import"
                )

    return plan


CSV_COLUMNS = [
    "Date", "Type", "Category", "Amount", "Currency",
    "AmountInDisplay", "DisplayCurrency", "Description", "Note", "ID",
]


def transactions_csv(transactions: Iterable[Transaction], display_currency: str, rates: RateTable) -> str:
    """Rows with the original amount and the amount in the display currency (signed by type)."""
    display = display_currency.upper()
    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=CSV_COLUMNS)
    writer.writeheader()
    for tx in transactions:
        sign = -1 if tx.type == "expense" else 1
        amount = abs(float(tx.amount or 0))
        writer.writerow({
            "Date": tx.date,
            "Type": tx.type,
            "Category": tx.category,
            "Amount": sign * amount,
            "Currency": tx.currency or display,
            "AmountInDisplay": round(sign * convert(amount, tx.currency or display, display, rates), 6),
            "DisplayCurrency": display,
            "Description": tx.description,
            "Note": tx.note,
            "ID": tx.id,
        })
    return buf.getvalue()
