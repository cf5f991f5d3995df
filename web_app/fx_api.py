# web_app/fx_api.py
from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from exptracker.errors import ValidationError
from exptracker.fx import convert_checked, currency_symbol, rate_between
from web_app.db import get_store

fx_api = Blueprint("fx_api", __name__, url_prefix="/api/fx")


def _table_payload(table) -> dict:
    out = table.to_dict()
    out["symbols"] = {code: currency_symbol(code) for code in sorted(table.known_codes())}
    return out


@fx_api.get("")
def get_rates():
    return jsonify(_table_payload(get_store().rates()))


@fx_api.put("")
def set_rates():
    """
    Merge {CODE: rate} into the table. Invalid entries are ignored and listed
    under "rejected"; the base currency always stays at 1.
    """
    payload = request.get_json(silent=True)
    if isinstance(payload, dict) and isinstance(payload.get("rates"), dict):
        payload = payload["rates"]
    table, rejected = get_store().set_rates(payload)
    if rejected:
        current_app.logger.warning("FX update ignored: %s", rejected)
    return jsonify({**_table_payload(table), "rejected": rejected})


@fx_api.get("/convert")
def convert_amount():
    src = (request.args.get("from") or "").strip().upper()
    dst = (request.args.get("to") or "").strip().upper()
    raw = request.args.get("amount")
    if raw is None or not src or not dst:
        raise ValidationError("Missing 'amount', 'from' or 'to'")

    table = get_store().rates()
    conv = convert_checked(raw, src, dst, table)
    return jsonify({
        "amount": raw,
        "from": src,
        "to": dst,
        "result": conv.value,
        "rate": rate_between(src, dst, table),
        "degraded": conv.reason,
    })
