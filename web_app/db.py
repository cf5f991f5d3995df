# web_app/db.py
# Per-request store handle (one SQLite connection per request; JsonStore is cheap).
from __future__ import annotations

from flask import Flask, g

from exptracker.store import BaseStore, open_store


def get_store() -> BaseStore:
    if "store" not in g:
        g.store = open_store()
    return g.store


def close_store(exc=None) -> None:
    store = g.pop("store", None)
    if store is not None:
        store.close()


def init_app(app: Flask) -> None:
    app.teardown_appcontext(close_store)
