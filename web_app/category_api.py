# web_app/category_api.py
from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request

from web_app.db import get_store

category_api = Blueprint("category_api", __name__, url_prefix="/api/categories")


@category_api.get("")
def list_categories():
    """All categories, sorted by name. ?type=income|expense narrows the list."""
    cats = get_store().list_categories()
    wanted = (request.args.get("type") or "").strip().lower()
    if wanted and wanted != "all":
        cats = [c for c in cats if c.type == wanted]
    return jsonify([c.to_dict() for c in cats])


@category_api.get("/<cat_id>")
def get_category(cat_id: str):
    return jsonify(get_store().get_category(cat_id).to_dict())


@category_api.post("")
def create_category():
    payload = request.get_json(silent=True) or {}
    cat = get_store().create_category(payload)
    return jsonify(cat.to_dict()), 201


@category_api.put("/<cat_id>")
def update_category(cat_id: str):
    """Name and type are required; color is optional and kept when omitted."""
    payload = request.get_json(silent=True) or {}
    cat = get_store().update_category(cat_id, payload)
    return jsonify(cat.to_dict())


@category_api.delete("/<cat_id>")
def delete_category(cat_id: str):
    get_store().delete_category(cat_id)
    current_app.logger.info("Deleted category %s", cat_id)
    return "", 204
