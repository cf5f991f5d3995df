# web_app/app.py
from __future__ import annotations

import json
import os
from datetime import date

from flask import Flask, Response, jsonify, request
from werkzeug.exceptions import HTTPException
from werkzeug.utils import secure_filename

from exptracker import config as cfg
from exptracker.aggregate import TxFilter, recent, summarize
from exptracker.dates import utc_now_iso
from exptracker.errors import TrackerError, ValidationError
from exptracker.exporter import transactions_csv
from web_app import db
from web_app.category_api import category_api
from web_app.db import get_store
from web_app.fx_api import fx_api

cfg.configure_logging()

# ---- Flask app ----
app = Flask(__name__)
app.secret_key = os.environ.get("SECRET_KEY", "dev")
db.init_app(app)

# --- Auth exemptions (must be defined before password_gate) ---
EXEMPT_PATHS = {
    "/api/health",
}

@app.before_request
def password_gate():
    required = os.environ.get("APP_PASSWORD")
    if not required:
        return  # gate disabled when no password configured
    if request.method in ("HEAD", "OPTIONS") or request.path in EXEMPT_PATHS:
        return
    auth = request.authorization
    expected_user = os.environ.get("APP_USER")  # optional
    if auth and ((expected_user is None or auth.username == expected_user) and auth.password == required):
        return
    return Response(
        "Authentication required", 401, {"WWW-Authenticate": 'Basic realm="ExpenseTracker"'}
    )

app.logger.info("[Config] DATA_DIR=%s STORAGE_BACKEND=%s",
                os.environ.get("DATA_DIR", "data"), cfg.storage_backend())

# ---- Blueprints ----
app.register_blueprint(category_api)
app.register_blueprint(fx_api)


# ------------------ MIDDLEWARE ------------------
@app.after_request
def add_api_headers(resp):
    resp.headers["Access-Control-Allow-Origin"] = cfg.cors_origin()
    resp.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
    resp.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"
    resp.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
    resp.headers["Pragma"] = "no-cache"
    resp.headers["Expires"] = "0"
    return resp


# ------------------ ERRORS ------------------
@app.errorhandler(TrackerError)
def handle_tracker_error(e: TrackerError):
    if e.status_code >= 500:
        app.logger.error("%s %s failed: %s", request.method, request.path, e.message)
    else:
        app.logger.info("%s %s rejected (%s): %s", request.method, request.path, e.status_code, e.message)
    return jsonify(e.to_dict()), e.status_code

@app.errorhandler(HTTPException)
def handle_http_error(e: HTTPException):
    return jsonify({"error": e.description}), e.code

@app.errorhandler(Exception)
def handle_unexpected(e: Exception):
    app.logger.exception("Unhandled error on %s %s", request.method, request.path)
    return jsonify({"error": "Internal server error"}), 500


# ------------------ helpers ------------------
def _display_currency(store) -> str:
    return (request.args.get("currency") or store.get_settings().currency).strip().upper()

def _precision(store):
    raw = request.args.get("precision")
    if raw in (None, ""):
        return store.get_settings().decimal_places
    try:
        n = int(raw)
    except ValueError:
        raise ValidationError("precision must be an integer")
    return max(cfg.MIN_DECIMAL_PLACES, min(cfg.MAX_DECIMAL_PLACES, n))


# ------------------ ROUTES ------------------
@app.get("/api/health")
def healthz():
    store = get_store()
    try:
        ok = store.ping()
    except Exception:
        app.logger.exception("health check: storage ping failed")
        return jsonify({"status": "error", "error": "Storage unavailable"}), 500
    return jsonify({"status": "ok", "storage": store.backend, "db": ok, "timestamp": utc_now_iso()})


# -------- Transactions --------
@app.get("/api/transactions")
def list_transactions():
    """
    Query: type=income|expense, category=<id or name>, startDate/endDate=YYYY-MM-DD
    (inclusive), q=<text in description/note/category>. Newest first.
    """
    flt = TxFilter.from_args(request.args)
    rows = get_store().list_transactions(flt)
    return jsonify([t.to_dict() for t in rows])

@app.get("/api/transactions/recent")
def recent_transactions():
    store = get_store()
    try:
        limit = int(request.args.get("limit") or 5)
    except ValueError:
        raise ValidationError("limit must be an integer")
    rows = recent(store.list_transactions(), _display_currency(store), store.rates(), limit=limit)
    return jsonify(rows)

@app.get("/api/transactions/export.csv")
def export_transactions_csv():
    store = get_store()
    flt = TxFilter.from_args(request.args)
    body = transactions_csv(store.list_transactions(flt), _display_currency(store), store.rates())
    fname = f"transactions_{date.today().isoformat()}.csv"
    return Response(body, mimetype="text/csv",
                    headers={"Content-Disposition": f"attachment; filename={fname}"})

@app.get("/api/transactions/<tx_id>")
def get_transaction(tx_id: str):
    return jsonify(get_store().get_transaction(tx_id).to_dict())

@app.post("/api/transactions")
def create_transaction():
    payload = request.get_json(silent=True) or {}
    tx = get_store().create_transaction(payload)
    return jsonify(tx.to_dict()), 201

@app.put("/api/transactions/<tx_id>")
def update_transaction(tx_id: str):
    payload = request.get_json(silent=True) or {}
    tx = get_store().update_transaction(tx_id, payload)
    return jsonify(tx.to_dict())

@app.delete("/api/transactions/<tx_id>")
def delete_transaction(tx_id: str):
    get_store().delete_transaction(tx_id)
    return "", 204


# -------- Settings --------
@app.get("/api/settings")
def get_settings():
    return jsonify(get_store().get_settings().to_dict())

@app.put("/api/settings")
def update_settings():
    payload = request.get_json(silent=True) or {}
    return jsonify(get_store().update_settings(payload).to_dict())


# -------- Summary (dashboard / reports) --------
@app.get("/api/summary")
def api_summary():
    """
    Totals, expense by category and income/expense per day and month, all in
    ?currency= (default: settings currency). Accepts the same filters as
    /api/transactions. Rounded to ?precision= or the settings decimal places.
    """
    store = get_store()
    flt = TxFilter.from_args(request.args)
    categories = store.list_categories()
    summary = summarize(
        store.list_transactions(),
        _display_currency(store),
        store.rates().snapshot(),
        flt=flt,
        categories=categories,
    )
    return jsonify(summary.to_dict(precision=_precision(store)))


# -------- Export / Import --------
@app.get("/api/export")
def export_data():
    payload = get_store().export_all()
    return Response(
        json.dumps(payload, ensure_ascii=False, indent=2),
        mimetype="application/json",
        headers={"Content-Disposition": f"attachment; filename={cfg.EXPORT_FILENAME}"},
    )

@app.post("/api/import")
def import_data():
    """Replace the dataset from a JSON body or an uploaded 'file' field."""
    upload = request.files.get("file")
    if upload is not None:
        try:
            payload = json.loads(upload.read().decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            raise ValidationError("Invalid file format")
        app.logger.info("Import from upload %s", secure_filename(upload.filename or "") or "<unnamed>")
    else:
        payload = request.get_json(silent=True)
        if payload is None:
            raise ValidationError("Invalid import data format")

    counts = get_store().import_all(payload)
    return jsonify({"message": "Data imported successfully", "imported": counts})


# ------------------ MAIN ------------------
if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.environ.get("PORT", "3000")),
            debug=os.environ.get("FLASK_DEBUG") == "1")
