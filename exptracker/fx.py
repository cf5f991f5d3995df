# exptracker/fx.py
"""
Currency rate table + conversion.

Rates are quoted as "units of CODE per 1 base unit" (base = EUR):
  rates = {EUR: 1, USD: 1.08, RUB: 95}
  convert(100, 'EUR', 'RUB') = 100 * 95
  convert(100, 'USD', 'EUR') = 100 / 1.08
  convert(100, 'USD', 'RUB') = 100 * (95 / 1.08)
"""
from __future__ import annotations

import logging
import math
import re
from typing import Any, Dict, List, Mapping, NamedTuple, Optional, Set

from exptracker.config import BASE_CURRENCY, CURRENCY_SYMBOLS, DEFAULT_RATES

logger = logging.getLogger(__name__)

_CODE_RE = re.compile(r"^[A-Z]{3}$")

# Degradation reasons reported by convert_checked()
NON_FINITE_AMOUNT = "non_finite_amount"
UNKNOWN_CURRENCY = "unknown_currency"


def _norm_code(code: Any) -> str:
    return str(code or "").strip().upper()


def _positive_rate(value: Any) -> Optional[float]:
    """Return value as a float if it is a finite number > 0, else None."""
    if isinstance(value, bool):
        return None
    try:
        v = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(v) or v <= 0:
        return None
    return v


class RateTable:
    """Mutable rate table with the base currency pinned at 1."""

    def __init__(self, rates: Optional[Mapping[str, Any]] = None, base: str = BASE_CURRENCY):
        self.base = _norm_code(base)
        self._rates: Dict[str, float] = {k: float(v) for k, v in DEFAULT_RATES.items()}
        self._rates[self.base] = 1.0
        if rates:
            self.set_rates(rates)

    def get_rates(self) -> Dict[str, float]:
        return dict(self._rates)

    def rate(self, code: str) -> Optional[float]:
        return self._rates.get(_norm_code(code))

    def known_codes(self) -> Set[str]:
        return set(self._rates)

    def is_known(self, code: str) -> bool:
        return _norm_code(code) in self._rates

    def set_rates(self, partial: Mapping[str, Any]) -> List[str]:
        """
        Merge `partial` into the table. Bad values are ignored (the previous
        value is kept) and the base rate is always forced back to 1.
        Returns the codes that were rejected.
        """
        rejected: List[str] = []
        for raw_code, raw_value in (partial or {}).items():
            code = _norm_code(raw_code)
            if code == self.base:
                continue
            v = _positive_rate(raw_value)
            if v is None or not _CODE_RE.match(code):
                rejected.append(str(raw_code))
                continue
            self._rates[code] = v
        self._rates[self.base] = 1.0
        if rejected:
            logger.warning("Ignored invalid FX rate entries: %s", ", ".join(rejected))
        return rejected

    def snapshot(self) -> "RateTable":
        """Independent copy for a single aggregation pass."""
        return RateTable(self._rates, base=self.base)

    def to_dict(self) -> Dict[str, Any]:
        return {"base": self.base, "rates": self.get_rates()}

    def __repr__(self) -> str:
        return f"RateTable(base={self.base!r}, rates={self._rates!r})"


class Conversion(NamedTuple):
    value: float
    reason: Optional[str] = None

    @property
    def clean(self) -> bool:
        return self.reason is None


def _as_rates(rates: Any) -> Mapping[str, float]:
    if isinstance(rates, RateTable):
        return rates.get_rates()
    return rates or {}


def convert_checked(amount: Any, from_currency: Any, to_currency: Any, rates: Any) -> Conversion:
    """Like convert(), but reports which default (if any) was substituted."""
    if isinstance(amount, bool):
        return Conversion(0.0, NON_FINITE_AMOUNT)
    try:
        a = float(amount)
    except (TypeError, ValueError):
        return Conversion(0.0, NON_FINITE_AMOUNT)
    if not math.isfinite(a):
        return Conversion(0.0, NON_FINITE_AMOUNT)

    table = _as_rates(rates)
    base = rates.base if isinstance(rates, RateTable) else BASE_CURRENCY
    src = _norm_code(from_currency) or base
    dst = _norm_code(to_currency) or base

    if src == dst:
        return Conversion(a)

    reason = None
    rf = _positive_rate(table.get(src))
    rt = _positive_rate(table.get(dst))
    if rf is None:
        rf, reason = 1.0, UNKNOWN_CURRENCY
    if rt is None:
        rt, reason = 1.0, UNKNOWN_CURRENCY

    # src -> base -> dst
    return Conversion(a / rf * rt, reason)


def convert(amount: Any, from_currency: Any, to_currency: Any, rates: Any) -> float:
    return convert_checked(amount, from_currency, to_currency, rates).value


def rate_between(from_currency: str, to_currency: str, rates: Any) -> float:
    """Factor for "1 FROM = x TO" notes."""
    return convert(1.0, from_currency, to_currency, rates)


def currency_symbol(code: str) -> str:
    c = _norm_code(code)
    return CURRENCY_SYMBOLS.get(c, c)
