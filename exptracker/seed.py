# exptracker/seed.py
"""
Demo data for convincing charts.

  python -m exptracker.seed --months 8 --seed 42
"""
from __future__ import annotations

import argparse
import logging
import random
from datetime import date
from typing import Dict, List, Optional

from dateutil.relativedelta import relativedelta

from exptracker import config as cfg
from exptracker.store import BaseStore, open_store

logger = logging.getLogger(__name__)

INCOMES_PER_MONTH = 2
EXPENSES_PER_MONTH = 10


def demo_payloads(months_back: int = 8, *, rng: Optional[random.Random] = None,
                  today: Optional[date] = None, expense_categories: Optional[List[str]] = None,
                  income_category: str = "salary", currency: str = "EUR") -> List[Dict]:
    """Create-payloads for `months_back` full months plus the current one."""
    rng = rng or random.Random()
    today = today or date.today()
    expense_categories = expense_categories or ["food"]

    out: List[Dict] = []
    for m in range(months_back, -1, -1):
        first = (today - relativedelta(months=m)).replace(day=1)
        for _ in range(INCOMES_PER_MONTH):
            out.append({
                "type": "income",
                "amount": round(rng.uniform(700, 1600), 2),
                "currency": currency,
                "category": income_category,
                "note": "Monthly income",
                "date": first.replace(day=rng.randint(1, 4)).isoformat(),
            })
        for _ in range(EXPENSES_PER_MONTH):
            out.append({
                "type": "expense",
                "amount": round(rng.uniform(5, 120), 2),
                "currency": currency,
                "category": rng.choice(expense_categories),
                "note": "Auto-generated",
                "date": first.replace(day=rng.randint(5, 26)).isoformat(),
            })
    return out


def seed_store(store: BaseStore, months_back: int = 8, seed: Optional[int] = None,
               today: Optional[date] = None) -> int:
    """Append demo transactions through the store's normal validation; returns the count."""
    salary = store.resolve_category("salary") or store.create_category({"name": "Salary", "type": "income"})
    expense_ids = [c.id for c in store.list_categories() if c.type == "expense"]
    if not expense_ids:
        expense_ids = [store.create_category({"name": cfg.FALLBACK_CATEGORY, "type": "expense"}).id]

    payloads = demo_payloads(
        months_back,
        rng=random.Random(seed),
        today=today,
        expense_categories=expense_ids,
        income_category=salary.id,
        currency=store.get_settings().currency,
    )
    for p in payloads:
        store.create_transaction(p)
    logger.info("Seeded %d demo transactions (%d months back)", len(payloads), months_back)
    return len(payloads)


def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Fill the configured store with demo transactions.")
    ap.add_argument("--months", type=int, default=8, help="full months back to generate (default 8)")
    ap.add_argument("--seed", type=int, default=None, help="random seed for reproducible data")
    ap.add_argument("--backend", choices=("json", "sqlite"), default=None,
                    help="override STORAGE_BACKEND")
    args = ap.parse_args(argv)
    if args.months < 0:
        ap.error("--months must be >= 0")

    cfg.configure_logging()
    store = open_store(args.backend)
    try:
        n = seed_store(store, months_back=args.months, seed=args.seed)
    finally:
        store.close()
    print(f"Seeded {n} transactions into the {store.backend} store")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
