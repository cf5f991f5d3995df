import math

import pytest

from exptracker.config import DEFAULT_RATES
from exptracker.fx import (
    NON_FINITE_AMOUNT,
    UNKNOWN_CURRENCY,
    RateTable,
    convert,
    convert_checked,
    currency_symbol,
    rate_between,
)


def test_convert_eur_to_rub():
    assert convert(100, "EUR", "RUB", DEFAULT_RATES) == pytest.approx(9500)


def test_convert_cross_rate_goes_through_base():
    assert convert(100, "USD", "RUB", DEFAULT_RATES) == pytest.approx(100 * 95 / 1.08)
    assert round(convert(100, "USD", "RUB", DEFAULT_RATES), 2) == 8796.30


def test_same_currency_is_identity():
    assert convert(123.45, "RUB", "RUB", DEFAULT_RATES) == 123.45
    assert convert(-7, "usd", "USD", DEFAULT_RATES) == -7


def test_round_trip():
    there = convert(250, "USD", "RUB", DEFAULT_RATES)
    assert convert(there, "RUB", "USD", DEFAULT_RATES) == pytest.approx(250)


def test_empty_code_means_base():
    conv = convert_checked(10, "", "EUR", DEFAULT_RATES)
    assert conv.value == 10
    assert conv.clean


def test_unknown_currency_falls_back_to_rate_one():
    conv = convert_checked(10, "XYZ", "EUR", DEFAULT_RATES)
    assert conv.value == pytest.approx(10)
    assert conv.reason == UNKNOWN_CURRENCY

    conv = convert_checked(10, "EUR", "XYZ", DEFAULT_RATES)
    assert conv.value == pytest.approx(10)
    assert not conv.clean


@pytest.mark.parametrize("amount", [float("nan"), float("inf"), "abc", None, True])
def test_non_finite_amount_converts_to_zero(amount):
    conv = convert_checked(amount, "USD", "EUR", DEFAULT_RATES)
    assert conv.value == 0.0
    assert conv.reason == NON_FINITE_AMOUNT


def test_rate_table_defaults_and_base():
    table = RateTable()
    assert table.get_rates() == {"EUR": 1.0, "USD": 1.08, "RUB": 95.0}
    assert table.base == "EUR"
    # callers get a copy
    table.get_rates()["USD"] = 2
    assert table.rate("USD") == 1.08


def test_set_rates_rejects_bad_entries_and_pins_base():
    table = RateTable()
    rejected = table.set_rates({"USD": -1, "RUB": float("inf"), "EUR": 3, "GBP": 0.85, "pounds": 2})
    rates = table.get_rates()
    assert rates["USD"] == 1.08
    assert rates["RUB"] == 95.0
    assert rates["EUR"] == 1.0
    assert rates["GBP"] == 0.85
    assert sorted(rejected) == ["RUB", "USD", "pounds"]


def test_set_rates_merges_partial_update():
    table = RateTable()
    assert table.set_rates({"usd": "1.1"}) == []
    assert table.rate("USD") == 1.1
    assert table.rate("RUB") == 95.0


def test_convert_accepts_rate_table():
    table = RateTable({"USD": 1.25})
    assert convert(125, "USD", "EUR", table) == pytest.approx(100)
    assert rate_between("EUR", "USD", table) == pytest.approx(1.25)


def test_snapshot_is_independent():
    table = RateTable()
    snap = table.snapshot()
    table.set_rates({"USD": 2})
    assert snap.rate("USD") == 1.08


def test_currency_symbol():
    assert currency_symbol("usd") == "$"
    assert currency_symbol("EUR") == "€"
    assert currency_symbol("GBP") == "GBP"


def test_conversion_result_is_finite_for_valid_input():
    for src in DEFAULT_RATES:
        for dst in DEFAULT_RATES:
            assert math.isfinite(convert(1e9, src, dst, DEFAULT_RATES))
