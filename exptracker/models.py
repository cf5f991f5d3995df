# exptracker/models.py
"""
Record types owned by the store, plus the write-time validation that keeps
their invariants (positive amounts, known currencies, known types).
"""
from __future__ import annotations

import hashlib
import logging
import math
import re
import uuid
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Iterable, Mapping, Optional

from exptracker import config as cfg
from exptracker.dates import day_key, today_str, utc_now_iso
from exptracker.errors import ValidationError

logger = logging.getLogger(__name__)

_COLOR_RE = re.compile(r"^#[0-9a-fA-F]{6}$")


def new_id() -> str:
    return uuid.uuid4().hex


def category_color(name: str) -> str:
    """Stable color for a category that was saved without one."""
    digest = hashlib.sha1((name or "").strip().lower().encode("utf-8")).hexdigest()
    return f"#{digest[:6]}"


def category_id_for(raw_id: Any, name: Any) -> str:
    return str(raw_id if raw_id not in (None, "") else (name or "")).strip().lower()


# ---------- field cleaners (raise ValidationError) ----------
def _clean_amount(raw: Any) -> float:
    if raw is None or raw == "" or isinstance(raw, bool):
        raise ValidationError("Amount is required")
    try:
        v = float(raw)
    except (TypeError, ValueError):
        raise ValidationError("Amount must be a number")
    if not math.isfinite(v) or v <= 0:
        raise ValidationError("Amount must be a positive number")
    if v > cfg.MAX_AMOUNT:
        raise ValidationError(f"Amount must not exceed {cfg.MAX_AMOUNT:,.0f}")
    return v


def _clean_type(raw: Any) -> str:
    t = str(raw or "").strip().lower()
    if t not in cfg.TX_TYPES:
        raise ValidationError("Type must be 'income' or 'expense'")
    return t


def _clean_date(raw: Any) -> str:
    if raw in (None, ""):
        return today_str()
    key = day_key(str(raw)[:10]) or day_key(raw)
    if not key:
        raise ValidationError(f"Invalid date: {raw!r}")
    return key


def _clean_currency(raw: Any, known: Iterable[str]) -> str:
    code = str(raw or "").strip().upper()
    if code not in set(known):
        raise ValidationError(f"Unknown currency: {raw!r}")
    return code


# ==================== Transaction ====================
@dataclass
class Transaction:
    id: str
    type: str
    amount: float
    currency: str
    category: str
    date: str  # YYYY-MM-DD
    note: str = ""
    description: str = ""
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "amount": self.amount,
            "currency": self.currency,
            "category": self.category,
            "date": self.date,
            "note": self.note,
            "description": self.description,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "Transaction":
        """Lenient constructor for rows already in storage."""
        return cls(
            id=str(d.get("id") or ""),
            type=str(d.get("type") or ""),
            amount=d.get("amount"),
            currency=str(d.get("currency") or ""),
            category=str(d.get("category") or ""),
            date=str(d.get("date") or ""),
            note=d.get("note") or "",
            description=d.get("description") or "",
            created_at=d.get("createdAt") or d.get("created_at"),
            updated_at=d.get("updatedAt") or d.get("updated_at"),
        )


def build_transaction(payload: Mapping[str, Any], *, known_currencies: Iterable[str],
                      default_currency: str) -> Transaction:
    """Validate a create payload. Category existence is checked by the store."""
    category = str(payload.get("category") or "").strip()
    if payload.get("amount") in (None, "") or not payload.get("type") or not category:
        raise ValidationError("Amount, type, and category are required")

    now = utc_now_iso()
    return Transaction(
        id=new_id(),
        type=_clean_type(payload.get("type")),
        amount=_clean_amount(payload.get("amount")),
        currency=_clean_currency(payload.get("currency") or default_currency, known_currencies),
        category=category,
        date=_clean_date(payload.get("date")),
        note=str(payload.get("note") or ""),
        description=str(payload.get("description") or ""),
        created_at=now,
        updated_at=now,
    )


def apply_transaction_update(tx: Transaction, payload: Mapping[str, Any], *,
                             known_currencies: Iterable[str]) -> Transaction:
    """Partial update: only supplied fields change."""
    changes: Dict[str, Any] = {}
    if payload.get("amount") is not None:
        changes["amount"] = _clean_amount(payload["amount"])
    if payload.get("type"):
        changes["type"] = _clean_type(payload["type"])
    if payload.get("currency"):
        changes["currency"] = _clean_currency(payload["currency"], known_currencies)
    if payload.get("category"):
        changes["category"] = str(payload["category"]).strip()
    if payload.get("date"):
        changes["date"] = _clean_date(payload["date"])
    if payload.get("description") is not None:
        changes["description"] = str(payload["description"])
    if payload.get("note") is not None:
        changes["note"] = str(payload["note"])

    if not changes:
        raise ValidationError("No fields to update")
    changes["updated_at"] = utc_now_iso()
    return replace(tx, **changes)


def import_transaction(d: Mapping[str, Any], *, known_currencies: Iterable[str],
                       default_currency: str) -> Transaction:
    """Validate one imported row, keeping its id and timestamps when present."""
    tx = build_transaction(d, known_currencies=known_currencies, default_currency=default_currency)
    if d.get("id") not in (None, ""):
        tx.id = str(d["id"])
    tx.created_at = d.get("createdAt") or tx.created_at
    tx.updated_at = d.get("updatedAt") or tx.updated_at
    return tx


# ==================== Category ====================
@dataclass
class Category:
    id: str
    name: str
    type: str = "expense"
    color: str = ""
    updated_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "color": self.color,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "Category":
        return cls(
            id=str(d.get("id") or ""),
            name=str(d.get("name") or ""),
            type=str(d.get("type") or "expense"),
            color=str(d.get("color") or ""),
            updated_at=d.get("updatedAt") or d.get("updated_at"),
        )


def _clean_color(raw: Any, name: str) -> str:
    if raw and _COLOR_RE.match(str(raw)):
        return str(raw).lower()
    return category_color(name)


def build_category(payload: Mapping[str, Any]) -> Category:
    name = str(payload.get("name") or "").strip()
    if not name or not payload.get("type"):
        raise ValidationError("Name and type are required")
    cat_id = category_id_for(payload.get("id"), name)
    return Category(
        id=cat_id,
        name=name,
        type=_clean_type(payload.get("type")),
        color=_clean_color(payload.get("color"), name),
        updated_at=payload.get("updatedAt") or utc_now_iso(),
    )


def apply_category_update(cat: Category, payload: Mapping[str, Any]) -> Category:
    name = str(payload.get("name") or "").strip()
    if not name or not payload.get("type"):
        raise ValidationError("Name and type are required")
    color = payload.get("color")
    return replace(
        cat,
        name=name,
        type=_clean_type(payload.get("type")),
        color=_clean_color(color, name) if color else (cat.color or category_color(name)),
        updated_at=utc_now_iso(),
    )


# ==================== Settings ====================
@dataclass
class Settings:
    currency: str = cfg.DEFAULT_SETTINGS["currency"]
    language: str = cfg.DEFAULT_SETTINGS["language"]
    date_format: str = cfg.DEFAULT_SETTINGS["dateFormat"]
    decimal_places: int = cfg.DEFAULT_SETTINGS["decimalPlaces"]
    theme: str = cfg.DEFAULT_SETTINGS["theme"]
    updated_at: Optional[str] = field(default=None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currency": self.currency,
            "language": self.language,
            "dateFormat": self.date_format,
            "decimalPlaces": self.decimal_places,
            "theme": self.theme,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, d: Optional[Mapping[str, Any]]) -> "Settings":
        d = d or {}
        s = cls()
        s.currency = str(d.get("currency") or s.currency).upper()
        s.language = str(d.get("language") or s.language)
        s.date_format = str(d.get("dateFormat") or s.date_format)
        s.theme = str(d.get("theme") or s.theme)
        places = d.get("decimalPlaces", d.get("decimalPrecision"))
        if places is not None:
            try:
                s.decimal_places = _clamp_places(places)
            except ValidationError:
                logger.warning("Stored decimalPlaces %r is not an integer; using %d", places, s.decimal_places)
        s.updated_at = d.get("updatedAt")
        return s


def _clamp_places(raw: Any) -> int:
    if isinstance(raw, bool):
        raise ValidationError("decimalPlaces must be an integer")
    try:
        n = int(raw)
    except (TypeError, ValueError):
        raise ValidationError("decimalPlaces must be an integer")
    return max(cfg.MIN_DECIMAL_PLACES, min(cfg.MAX_DECIMAL_PLACES, n))


def merge_settings(current: Settings, payload: Mapping[str, Any], *,
                   known_currencies: Iterable[str]) -> Settings:
    """Apply supplied fields on top of `current` (missing fields keep their value)."""
    changes: Dict[str, Any] = {}
    if payload.get("currency"):
        changes["currency"] = _clean_currency(payload["currency"], known_currencies)
    if payload.get("language"):
        lang = str(payload["language"]).strip().lower()
        if lang not in cfg.SUPPORTED_LANGUAGES:
            raise ValidationError(f"Unsupported language: {payload['language']!r}")
        changes["language"] = lang
    if payload.get("theme"):
        theme = str(payload["theme"]).strip().lower()
        if theme not in cfg.THEMES:
            raise ValidationError(f"Unsupported theme: {payload['theme']!r}")
        changes["theme"] = theme
    if payload.get("dateFormat"):
        changes["date_format"] = str(payload["dateFormat"])
    places = payload.get("decimalPlaces", payload.get("decimalPrecision"))
    if places is not None:
        changes["decimal_places"] = _clamp_places(places)

    changes["updated_at"] = utc_now_iso()
    return replace(current, **changes)
