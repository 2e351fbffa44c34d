from __future__ import annotations

import logging
from functools import wraps
from typing import Any, Dict, List, Optional

from flask import (
    Flask,
    current_app,
    jsonify,
    request,
    session,
)
from flask_cors import CORS
from werkzeug.security import check_password_hash, generate_password_hash

from .balances import user_balances
from .config import config
from .models import BarNight, Profile
from .store import LedgerStore, StoreError
from .submission import BarNightRequest, ValidationError, parse_bar_night_request


def create_app(store: Optional[LedgerStore] = None) -> Flask:
    app = Flask(__name__)
    app.config["SECRET_KEY"] = config.SECRET_KEY
    app.config["SESSION_COOKIE_NAME"] = config.SESSION_COOKIE_NAME
    app.config["SESSION_COOKIE_HTTPONLY"] = config.SESSION_COOKIE_HTTPONLY
    app.config["SESSION_COOKIE_SAMESITE"] = config.SESSION_COOKIE_SAMESITE
    app.logger.setLevel(config.LOG_LEVEL)
    logging.getLogger("barnight").setLevel(config.LOG_LEVEL)

    CORS(
        app,
        supports_credentials=True,
        resources={r"/api/*": {"origins": config.CORS_ORIGINS}},
    )

    app.extensions["ledger_store"] = store if store is not None else LedgerStore()

    register_routes(app)
    return app


def require_login(func):
    @wraps(func)
    def wrapper(*args, **kwargs):
        if "user_id" not in session:
            return jsonify({"error": "authentication_required"}), 401
        return func(*args, **kwargs)

    return wrapper


def _store() -> LedgerStore:
    return current_app.extensions["ledger_store"]


def register_routes(app: Flask) -> None:
    @app.errorhandler(StoreError)
    def handle_store_error(exc: StoreError):
        app.logger.error("Ledger store failure: %s", exc, exc_info=exc)
        return jsonify({"error": "store_failure"}), 500

    @app.post("/api/register")
    def register():
        payload = _json_object()
        if payload is None:
            return jsonify({"error": "invalid_payload"}), 400
        name = (payload.get("name") or "").strip()
        email = (payload.get("email") or "").strip().lower()
        password = payload.get("password") or ""

        if not name or not email or not password:
            return jsonify({"error": "missing_fields"}), 400

        if _store().find_user_by_email(email):
            return jsonify({"error": "email_in_use"}), 409

        user_id = _store().create_user(name, email, generate_password_hash(password))

        session["user_id"] = user_id
        session["user_name"] = name

        return jsonify({"id": user_id, "name": name, "email": email})

    @app.post("/api/login")
    def login():
        payload = _json_object()
        if payload is None:
            return jsonify({"error": "invalid_payload"}), 400
        email = (payload.get("email") or "").strip().lower()
        password = payload.get("password") or ""

        if not email or not password:
            return jsonify({"error": "missing_fields"}), 400

        user = _store().find_user_by_email(email)
        if not user or not check_password_hash(user["password"], password):
            return jsonify({"error": "invalid_credentials"}), 401

        session["user_id"] = user["id"]
        session["user_name"] = user["display_name"]

        return jsonify({"id": user["id"], "name": user["display_name"], "email": email})

    @app.post("/api/logout")
    @require_login
    def logout():
        session.clear()
        return jsonify({"status": "ok"})

    @app.get("/api/session")
    def get_session():
        if "user_id" in session:
            return jsonify(
                {
                    "authenticated": True,
                    "user": {"id": session["user_id"], "name": session["user_name"]},
                }
            )
        return jsonify({"authenticated": False})

    @app.get("/api/profiles")
    @require_login
    def list_profiles():
        try:
            profiles = _store().list_profiles()
        except StoreError:
            app.logger.exception("Error fetching profiles")
            profiles = []
        return jsonify([profile.to_dict() for profile in profiles])

    @app.get("/api/bar-nights")
    @require_login
    def list_bar_nights():
        profiles, nights = _load_ledger()
        return jsonify(
            {
                "bar_nights": [night.to_dict() for night in nights],
                "balances": _balances_payload(profiles, nights),
            }
        )

    @app.get("/api/balances")
    @require_login
    def get_balances():
        profiles, nights = _load_ledger()
        return jsonify(_balances_payload(profiles, nights))

    @app.post("/api/bar-nights")
    @require_login
    def create_bar_night():
        payload = request.get_json(force=True, silent=True)
        try:
            night_request = parse_bar_night_request(payload)
            _check_known_users(night_request)
        except ValidationError as exc:
            return jsonify({"error": exc.code}), 400

        night_id = _store().create_bar_night(night_request, created_by=session["user_id"])
        return jsonify({"id": night_id}), 201

    @app.put("/api/bar-nights/<int:night_id>")
    @require_login
    def update_bar_night(night_id: int):
        if not _store().get_bar_night(night_id):
            return jsonify({"error": "bar_night_not_found"}), 404

        payload = request.get_json(force=True, silent=True)
        try:
            night_request = parse_bar_night_request(payload, require_name=True)
            _check_known_users(night_request)
        except ValidationError as exc:
            return jsonify({"error": exc.code}), 400

        _store().update_bar_night(night_id, night_request)
        return jsonify({"id": night_id, "status": "updated"})

    @app.delete("/api/bar-nights/<int:night_id>")
    @require_login
    def delete_bar_night(night_id: int):
        night = _store().get_bar_night(night_id)
        if not night:
            return jsonify({"error": "bar_night_not_found"}), 404

        # Only the user who logged the night may delete it
        if night["created_by"] != session.get("user_id"):
            return jsonify({"error": "forbidden_only_creator_can_delete"}), 403

        _store().delete_bar_night(night_id)
        return jsonify({"status": "deleted"}), 200


def _load_ledger():
    """Fetch profiles and nights. A failed nights read leaves every known user at zero."""
    try:
        profiles = _store().list_profiles()
    except StoreError:
        current_app.logger.exception("Error fetching profiles")
        return [], []

    try:
        nights = _store().list_bar_nights()
    except StoreError:
        current_app.logger.exception("Error fetching bar nights")
        nights = []
    return profiles, nights


def _json_object() -> Optional[Dict[str, Any]]:
    payload = request.get_json(force=True, silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        return None
    return payload


def _balances_payload(profiles: List[Profile], nights: List[BarNight]) -> List[Dict[str, Any]]:
    return [
        {"user": entry["user"].to_dict(), "balance": float(entry["balance"])}
        for entry in user_balances(profiles, nights)
    ]


def _check_known_users(night_request: BarNightRequest) -> None:
    known = {profile.user_id for profile in _store().list_profiles()}
    if not night_request.referenced_user_ids() <= known:
        raise ValidationError("unknown_user")


app = create_app()


if __name__ == "__main__":
    app.run(debug=True)
