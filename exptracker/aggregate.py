# exptracker/aggregate.py
"""
Currency-normalized summaries over a snapshot of transactions.

Nothing here raises for a malformed record: the offending field is defaulted
(amount -> 0, unknown currency -> rate 1, bad date -> left out of the date
series) and an Issue is recorded so callers can tell a clean summary from a
best-effort one.
"""
from __future__ import annotations

import logging
import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from exptracker.config import FALLBACK_CATEGORY, TX_TYPES
from exptracker.dates import to_day
from exptracker.errors import ValidationError
from exptracker.fx import UNKNOWN_CURRENCY, convert_checked, rate_between

logger = logging.getLogger(__name__)

# Issue reasons
BAD_AMOUNT = "bad_amount"
BAD_DATE = "bad_date"
UNKNOWN_TYPE = "unknown_type"
UNRESOLVED_CATEGORY = "unresolved_category"
OUT_OF_RANGE = "out_of_range"


def _field(rec: Any, name: str) -> Any:
    """Read a field from a mapping or an object (Transaction)."""
    if isinstance(rec, Mapping):
        return rec.get(name)
    return getattr(rec, name, None)


def _magnitude(raw: Any) -> Tuple[float, bool]:
    """abs(float(raw)); (0.0, False) when raw is not a finite number."""
    if isinstance(raw, bool):
        return 0.0, False
    try:
        v = float(raw)
    except (TypeError, ValueError):
        return 0.0, False
    if not math.isfinite(v):
        return 0.0, False
    return abs(v), True


# ---------- category lookup (id or name, case-insensitive) ----------
def _category_index(categories: Optional[Iterable[Any]]) -> Optional[Dict[str, str]]:
    """Map lower-cased id and name -> category id. None when no list given."""
    if categories is None:
        return None
    idx: Dict[str, str] = {}
    for c in categories:
        if isinstance(c, str):
            cid, name = c, c
        else:
            cid, name = _field(c, "id"), _field(c, "name")
        cid = str(cid or name or "")
        if not cid:
            continue
        idx.setdefault(cid.lower(), cid)
        if name:
            idx.setdefault(str(name).lower(), cid)
    return idx


# ==================== Filtering ====================
@dataclass
class TxFilter:
    type: Optional[str] = None
    category: Optional[str] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    q: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not (self.type or self.category or self.date_from or self.date_to or self.q)

    @classmethod
    def from_args(cls, args: Mapping[str, Any]) -> "TxFilter":
        """Build from query args (startDate/endDate, with date_from/date_to accepted too)."""
        def _day(*keys):
            for k in keys:
                raw = (args.get(k) or "").strip()
                if raw:
                    d = to_day(raw)
                    if d is None:
                        raise ValidationError(f"Invalid {k}: {raw!r}")
                    return d
            return None

        tx_type = (args.get("type") or "").strip().lower()
        if tx_type in ("", "all"):
            tx_type = None
        elif tx_type not in TX_TYPES:
            raise ValidationError("Type must be 'income' or 'expense'")

        return cls(
            type=tx_type,
            category=(args.get("category") or "").strip() or None,
            date_from=_day("startDate", "date_from"),
            date_to=_day("endDate", "date_to"),
            q=(args.get("q") or args.get("search") or "").strip().lower() or None,
        )


def matches_filter(rec: Any, flt: TxFilter, cat_index: Optional[Dict[str, str]] = None) -> bool:
    if flt.type and str(_field(rec, "type") or "").lower() != flt.type:
        return False

    if flt.category:
        wanted = flt.category.lower()
        raw = str(_field(rec, "category") or "")
        if raw.lower() != wanted:
            if cat_index is None:
                return False
            resolved = cat_index.get(raw.lower())
            wanted_id = cat_index.get(wanted)
            if resolved is None or (resolved.lower() != wanted and resolved != wanted_id):
                return False

    if flt.date_from or flt.date_to:
        d = to_day(_field(rec, "date"))
        if d is None:
            return False
        if flt.date_from and d < flt.date_from:
            return False
        # whole end day is inclusive
        if flt.date_to and d > flt.date_to:
            return False

    if flt.q:
        blob = " ".join(
            str(_field(rec, k) or "") for k in ("description", "note", "category")
        ).lower()
        if flt.q.lower() not in blob:
            return False

    return True


def apply_filters(records: Iterable[Any], flt: Optional[TxFilter],
                  categories: Optional[Iterable[Any]] = None) -> List[Any]:
    rows = list(records or [])
    if flt is None or flt.is_empty:
        return rows
    idx = _category_index(categories)
    return [r for r in rows if matches_filter(r, flt, idx)]


# ==================== Summary ====================
@dataclass(frozen=True)
class Issue:
    record_id: str
    field: str
    reason: str

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.record_id, "field": self.field, "reason": self.reason}


@dataclass
class Summary:
    currency: str
    income: float = 0.0
    expense: float = 0.0
    balance: float = 0.0
    count: int = 0
    by_category: List[Dict[str, Any]] = field(default_factory=list)
    by_date: List[Dict[str, Any]] = field(default_factory=list)
    by_month: List[Dict[str, Any]] = field(default_factory=list)
    issues: List[Issue] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.issues

    def totals(self) -> Dict[str, float]:
        return {"income": self.income, "expense": self.expense, "balance": self.balance}

    def to_dict(self, precision: Optional[int] = None) -> Dict[str, Any]:
        def r(v: float) -> float:
            return round(v, precision) if precision is not None else v

        def rows(items, *keys):
            return [{**it, **{k: r(it[k]) for k in keys}} for it in items]

        return {
            "currency": self.currency,
            "count": self.count,
            "totals": {k: r(v) for k, v in self.totals().items()},
            "byCategory": rows(self.by_category, "amount"),
            "byDate": rows(self.by_date, "income", "expense"),
            "byMonth": rows(self.by_month, "income", "expense"),
            "issues": [i.to_dict() for i in self.issues],
            "clean": self.clean,
        }


def summarize(records: Iterable[Any], display_currency: str, rates: Any, *,
              flt: Optional[TxFilter] = None,
              categories: Optional[Iterable[Any]] = None) -> Summary:
    """
    Single pass over `records` (already a snapshot):
      - totals: income/expense in display currency, balance = income - expense
      - by_category: expense per category id (fallback bucket for empty/unknown)
      - by_date / by_month: income & expense per day / month, ascending
    """
    categories = list(categories) if categories is not None else None
    rows = apply_filters(records, flt, categories)
    idx = _category_index(categories)
    display = str(display_currency or "").strip().upper()

    out = Summary(currency=display)
    income = expense = 0.0
    by_cat: Dict[str, float] = defaultdict(float)
    by_day: Dict[str, Dict[str, float]] = defaultdict(lambda: {"income": 0.0, "expense": 0.0})
    by_month: Dict[str, Dict[str, float]] = defaultdict(lambda: {"income": 0.0, "expense": 0.0})

    for rec in rows:
        rid = str(_field(rec, "id") or "")
        out.count += 1

        amount, ok = _magnitude(_field(rec, "amount"))
        if not ok:
            out.issues.append(Issue(rid, "amount", BAD_AMOUNT))
        from_cur = _field(rec, "currency") or display
        conv = convert_checked(amount, from_cur, display, rates)
        if conv.reason == UNKNOWN_CURRENCY:
            out.issues.append(Issue(rid, "currency", UNKNOWN_CURRENCY))
        value = conv.value
        # income + expense bounds |balance|, so keeping it finite keeps all three finite
        if not math.isfinite(value) or not math.isfinite(income + expense + value):
            out.issues.append(Issue(rid, "amount", OUT_OF_RANGE))
            value = 0.0

        tx_type = str(_field(rec, "type") or "").lower()
        if tx_type not in TX_TYPES:
            out.issues.append(Issue(rid, "type", UNKNOWN_TYPE))
        kind = "income" if tx_type == "income" else "expense"
        if kind == "income":
            income += value
        else:
            expense += value
            cat = str(_field(rec, "category") or "")
            if cat and idx is not None:
                resolved = idx.get(cat.lower())
                if resolved is None:
                    out.issues.append(Issue(rid, "category", UNRESOLVED_CATEGORY))
                cat = resolved or ""
            by_cat[cat or FALLBACK_CATEGORY] += value

        d = to_day(_field(rec, "date"))
        if d is None:
            out.issues.append(Issue(rid, "date", BAD_DATE))
            continue
        key = d.isoformat()
        by_day[key][kind] += value
        by_month[key[:7]][kind] += value

    out.income = income
    out.expense = expense
    out.balance = income - expense
    out.by_category = [
        {"category": k, "amount": v}
        for k, v in sorted(by_cat.items(), key=lambda kv: (-kv[1], kv[0]))
    ]
    out.by_date = [{"date": k, **by_day[k]} for k in sorted(by_day)]
    out.by_month = [{"month": k, **by_month[k]} for k in sorted(by_month)]

    if out.issues:
        logger.info("Summary over %d records substituted defaults for %d field(s)",
                    out.count, len(out.issues))
    return out


def recent(records: Iterable[Any], display_currency: str, rates: Any, limit: int = 5) -> List[Dict[str, Any]]:
    """Newest-first rows with amounts converted for display."""
    display = str(display_currency or "").strip().upper()

    def _key(rec):
        d = to_day(_field(rec, "date"))
        return (d is not None, d or date.min, str(_field(rec, "createdAt") or _field(rec, "created_at") or ""))

    rows = sorted(records or [], key=_key, reverse=True)[: max(0, limit)]
    out = []
    for rec in rows:
        base = rec.to_dict() if hasattr(rec, "to_dict") else dict(rec)
        amount, _ = _magnitude(_field(rec, "amount"))
        from_cur = str(_field(rec, "currency") or display).upper()
        converted = convert_checked(amount, from_cur, display, rates).value
        base["convertedAmount"] = converted if math.isfinite(converted) else 0.0
        base["displayCurrency"] = display
        base["sign"] = "-" if str(_field(rec, "type") or "").lower() == "expense" else "+"
        base["fxRate"] = rate_between(from_cur, display, rates) if from_cur != display else None
        out.append(base)
    return out
