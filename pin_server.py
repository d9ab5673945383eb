#!/usr/bin/env python3
"""
Pinboard Server
---------------
JSON API over a PinStore backed by the SQLite repository.

Usage:
    python pin_server.py --port 3000 --db ./pins.db

API (every /api route takes the acting user in the X-User-Id header):
    GET    /health
    GET    /api/pins                               → { pins, count, max_pins }
    POST   /api/pins                               → body { entity_type, entity_id }
    DELETE /api/pins/<entity_type>/<entity_id>
    DELETE /api/pins/by-id/<pin_id>
    POST   /api/pins/<entity_type>/<entity_id>/touch
    POST   /api/pins/by-id/<pin_id>/touch
    PUT    /api/pins/order                         → body { ordered_ids: [...] }
    POST   /api/pins/sweep                         → { evicted: [{ pin, reason }] }
    GET    /api/preferences/<key>
    PUT    /api/preferences/<key>                  → body { value }

Mutating routes require X-API-Key when the configured API key env var is set.

Pins are cached per user after the first request, so run one server process
per database file. The repository re-checks uniqueness and max_pins on insert.
"""

import hmac
import logging
import os
import sys
import threading
from functools import wraps
from typing import Optional

from flask import Flask, jsonify, request, g

from pinboard.config import PinConfig
from pinboard.errors import (
    CapacityExceeded,
    DuplicatePin,
    InvalidEntityType,
    InvalidReorder,
    NotFound,
    PersistenceError,
    PinError,
)
from pinboard.persistence import SQLitePinRepository
from pinboard.preferences import PreferenceStore
from pinboard.store import PinStore

logger = logging.getLogger("pin_server")

ERROR_STATUS = {
    InvalidEntityType: 400,
    InvalidReorder: 400,
    NotFound: 404,
    DuplicatePin: 409,
    CapacityExceeded: 409,
    PersistenceError: 503,
}


def create_app(
    config: Optional[PinConfig] = None,
    store: Optional[PinStore] = None,
    preferences: Optional[PreferenceStore] = None,
) -> Flask:
    """Build the Flask app. Pass a store to share one across hosts or tests."""
    config = config or PinConfig.load()
    if store is None:
        repository = SQLitePinRepository(config.db_path, max_pins=config.max_pins)
        store = PinStore(config=config, repository=repository)
    if preferences is None:
        preferences = PreferenceStore(config.db_path, events=store.events)

    app = Flask(__name__)
    load_lock = threading.Lock()

    # ── Auth / request helpers ──────────────────────────────────────────────

    def require_api_key(f):
        """Decorator: reject mutations without a valid X-API-Key header."""
        @wraps(f)
        def decorated(*args, **kwargs):
            secret = config.api_key
            if secret:
                provided = request.headers.get("X-API-Key", "").strip()
                if not hmac.compare_digest(provided, secret):
                    code = 401 if not provided else 403
                    return jsonify({"error": "unauthorized"}), code
            return f(*args, **kwargs)
        return decorated

    def require_user(f):
        """Decorator: resolve X-User-Id and make sure that user's pins are loaded."""
        @wraps(f)
        def decorated(*args, **kwargs):
            user_id = request.headers.get("X-User-Id", "").strip()
            if not user_id:
                return jsonify({"error": "missing_user", "message": "X-User-Id header is required"}), 400
            with load_lock:
                if not store.is_loaded(user_id):
                    store.load(user_id)
            g.user_id = user_id
            return f(*args, **kwargs)
        return decorated

    @app.errorhandler(PinError)
    def handle_pin_error(error: PinError):
        status = ERROR_STATUS.get(type(error), 400)
        if status >= 500:
            logger.error(f"{request.method} {request.path} failed: {error}")
        return jsonify({"error": error.kind, "message": error.message}), status

    def body() -> dict:
        return request.get_json(force=True, silent=True) or {}

    # ── Routes ──────────────────────────────────────────────────────────────

    @app.route("/health")
    def health():
        return jsonify({"status": "ok", "db": config.db_path, "max_pins": config.max_pins})

    @app.route("/api/pins", methods=["GET"])
    @require_user
    def api_list_pins():
        views = store.list(g.user_id)
        return jsonify({
            "pins": [v.to_dict() for v in views],
            "count": len(views),
            "max_pins": config.max_pins,
        })

    @app.route("/api/pins", methods=["POST"])
    @require_api_key
    @require_user
    def api_pin():
        data = body()
        entity_type = str(data.get("entity_type", "")).strip()
        entity_id = str(data.get("entity_id", "")).strip()
        if not entity_id:
            return jsonify({"error": "invalid_request", "message": "entity_id is required"}), 400
        item = store.pin(g.user_id, entity_type, entity_id)
        return jsonify({"pin": item.to_dict()}), 201

    @app.route("/api/pins/by-id/<pin_id>", methods=["DELETE"])
    @require_api_key
    @require_user
    def api_unpin_by_id(pin_id):
        item = store.unpin_by_id(g.user_id, pin_id)
        return jsonify({"removed": item.to_dict()})

    @app.route("/api/pins/by-id/<pin_id>/touch", methods=["POST"])
    @require_api_key
    @require_user
    def api_touch_by_id(pin_id):
        item = store.touch_by_id(g.user_id, pin_id)
        return jsonify({"pin": item.to_dict()})

    @app.route("/api/pins/order", methods=["PUT"])
    @require_api_key
    @require_user
    def api_reorder():
        ordered_ids = body().get("ordered_ids")
        if not isinstance(ordered_ids, list):
            raise InvalidReorder("ordered_ids must be a list")
        items = store.reorder(g.user_id, ordered_ids)
        return jsonify({"pins": [p.to_dict() for p in items]})

    @app.route("/api/pins/sweep", methods=["POST"])
    @require_api_key
    @require_user
    def api_sweep():
        evicted = store.sweep(g.user_id)
        return jsonify({"evicted": [e.to_dict() for e in evicted]})

    @app.route("/api/pins/<entity_type>/<entity_id>", methods=["DELETE"])
    @require_api_key
    @require_user
    def api_unpin(entity_type, entity_id):
        item = store.unpin(g.user_id, entity_type, entity_id)
        return jsonify({"removed": item.to_dict()})

    @app.route("/api/pins/<entity_type>/<entity_id>/touch", methods=["POST"])
    @require_api_key
    @require_user
    def api_touch(entity_type, entity_id):
        item = store.touch(g.user_id, entity_type, entity_id)
        return jsonify({"pin": item.to_dict()})

    @app.route("/api/preferences/<key>", methods=["GET"])
    @require_user
    def api_get_preference(key):
        return jsonify({"key": key, "value": preferences.get(g.user_id, key)})

    @app.route("/api/preferences/<key>", methods=["PUT"])
    @require_api_key
    @require_user
    def api_set_preference(key):
        data = body()
        if "value" not in data:
            return jsonify({"error": "invalid_request", "message": "value is required"}), 400
        value = preferences.set(g.user_id, key, data["value"])
        return jsonify({"key": key, "value": value})

    return app


# ── Main ─────────────────────────────────────────────────────────────────────

if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Pinboard Server")
    parser.add_argument("--host", default="127.0.0.1",
                        help="Bind address (use 0.0.0.0 to expose on network)")
    parser.add_argument("--port", type=int, default=3000)
    parser.add_argument("--config", help="Path to pinboard.yaml")
    parser.add_argument("--db", help="Path to pins.db (overrides PINBOARD_DB env var)")
    args = parser.parse_args()

    if args.db:
        os.environ["PINBOARD_DB"] = args.db

    cfg = PinConfig.load(args.config)
    logging.basicConfig(
        level=getattr(logging, cfg.log_level.upper(), logging.INFO),
        format="%(asctime)s [pin_server] %(levelname)s: %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    if not cfg.api_key:
        logger.warning(f"{cfg.api_key_env} is not set; mutating routes are unauthenticated")

    logger.info(f"Serving pins from {cfg.db_path} on http://{args.host}:{args.port}")
    create_app(cfg).run(host=args.host, port=args.port, debug=False, threaded=True)
