# swordfight/routes.py
from flask import Blueprint, current_app, jsonify, request

from . import state
from .engine.errors import UnknownCharacter

swordfight_bp = Blueprint("swordfight", __name__)


def _ext():
    return current_app.extensions["swordfight"]


@swordfight_bp.after_request
def allow_listed_origins(response):
    origin = request.headers.get("Origin")
    if origin and origin in _ext()["config"]["allowed_origins"]:
        response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Vary"] = "Origin"
    return response


@swordfight_bp.route("/healthz")
def healthz():
    return jsonify({"status": "ok", "rooms": len(state.rooms)})


@swordfight_bp.route("/characters/index.json")
def character_index():
    catalog = _ext()["catalog"]
    return jsonify([
        {"slug": slug, "name": catalog.get_character(slug).name}
        for slug in catalog.available_characters()
    ])


@swordfight_bp.route("/characters/<slug>.json")
def character_detail(slug):
    try:
        return jsonify(_ext()["catalog"].raw(slug))
    except UnknownCharacter as exc:
        return jsonify({"error": str(exc)}), 404
