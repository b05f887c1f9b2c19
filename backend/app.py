import logging
import os
from dataclasses import dataclass
from datetime import datetime

from flask import Blueprint, Flask, current_app, jsonify, make_response, request
from flask_cors import CORS
from sqlalchemy import text

from auth import SESSION_COOKIE, SessionResolver, clear_session_cookie, set_session_cookie
from config import load_config
from errors import CreationFailed, InvalidCode, JournalError
from logging_config import setup_logging
from models import db
from mood_service import MoodAnalyzer
from pipeline import EntryPipeline, TimelineCache
from store import EntryStore, IdentityStore, RetryPolicy, ensure_schema

logger = logging.getLogger("emojournal.app")

api = Blueprint("api", __name__)


@dataclass
class Services:
    """Everything the routes need, built once per app in ``create_app``."""

    retry: RetryPolicy
    users: IdentityStore
    entries: EntryStore
    sessions: SessionResolver
    analyzer: MoodAnalyzer
    pipeline: EntryPipeline


def build_services(app):
    config = app.config
    retry = RetryPolicy(
        attempts=config["STORE_RETRY_ATTEMPTS"],
        base_delay=config["STORE_RETRY_BASE_DELAY"],
    )
    users = IdentityStore(db, retry)
    entries = EntryStore(db, retry)
    sessions = SessionResolver(users)
    analyzer = MoodAnalyzer(
        api_key=config.get("OPENAI_API_KEY"),
        model=config["OPENAI_MODEL"],
        api_url=config["OPENAI_API_URL"],
        app_url=config.get("PUBLIC_APP_URL", ""),
    )
    pipeline = EntryPipeline(
        sessions, analyzer, entries,
        cache=TimelineCache(
            max_users=config["TIMELINE_CACHE_MAX_USERS"],
            ttl=config["TIMELINE_CACHE_TTL"],
        ),
        timeline_limit=config["TIMELINE_LIMIT"],
    )
    return Services(retry, users, entries, sessions, analyzer, pipeline)


def services() -> Services:
    return current_app.extensions["emojournal"]


def _session_token():
    return request.cookies.get(SESSION_COOKIE)


def _secure_cookies():
    return current_app.config["SESSION_COOKIE_SECURE"]


def _auth_response(user):
    resp = make_response(jsonify({"success": True, "user": user.to_dict()}), 200)
    return set_session_cookie(resp, user, secure=_secure_cookies())


# ---------- Routes ----------

@api.route("/health")
def health():
    """Simple health check + DB connectivity test."""
    db_ok = True
    try:
        with db.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except Exception:
        logger.warning("Health check could not reach the database", exc_info=True)
        db_ok = False
    analyzer = services().analyzer
    return jsonify({
        "ok": True,
        "db_ok": db_ok,
        "llm_configured": analyzer.llm_configured,
        "model": analyzer.model,
        "time": datetime.utcnow().isoformat() + "Z"
    }), 200


@api.route("/auth/signup", methods=["POST"])
def signup():
    """Create an account and log it in; the response carries the new login code."""
    data = request.get_json(silent=True) or {}
    name = data.get("name")
    name = name.strip() if isinstance(name, str) else ""
    if not name:
        return jsonify({"success": False, "error": "Missing 'name'"}), 400
    user = services().users.create_user(name)
    return _auth_response(user)


@api.route("/auth/login", methods=["POST"])
def login():
    data = request.get_json(silent=True) or {}
    user = services().sessions.login(data.get("loginCode"))
    return _auth_response(user)


@api.route("/auth/logout", methods=["POST"])
def logout():
    services().sessions.logout(_session_token())
    resp = make_response(jsonify({"success": True}), 200)
    return clear_session_cookie(resp, secure=_secure_cookies())


@api.route("/auth/check")
def auth_check():
    user = services().sessions.current_user(_session_token())
    return jsonify({
        "authenticated": user is not None,
        "user": user.to_dict() if user else None,
    }), 200


@api.route("/journal", methods=["POST"])
def submit_entry():
    """Analyze + save one entry for the logged-in user."""
    data = request.get_json(silent=True) or {}
    result = services().pipeline.submit_entry(_session_token(), data.get("content"))
    return jsonify(result.to_dict()), result.status_code


@api.route("/entries", methods=["GET"])
def list_entries():
    """The current user's entries, latest first (empty when logged out)."""
    return jsonify(services().pipeline.list_entries(_session_token())), 200


@api.route("/debug")
def debug_state():
    """Row counts for diagnosing a deployment (disable in prod)."""
    if not current_app.config["ALLOW_DEBUG"]:
        return jsonify({"error": "debug disabled"}), 403
    svc = services()
    user = svc.sessions.current_user(_session_token())
    return jsonify({
        "users": svc.users.count(),
        "entries": svc.entries.count(),
        "user": user.to_dict() if user else None,
        "user_entries": svc.entries.count(user.id) if user else 0,
        "llm_configured": svc.analyzer.llm_configured,
    }), 200


@api.route("/init-db", methods=["POST"])
def init_db():
    """Optional: safe-guarded schema migration endpoint (disable in prod)."""
    if not current_app.config["ALLOW_INIT_DB"]:
        return jsonify({"error": "init disabled"}), 403
    ensure_schema(db, services().retry)
    return jsonify({"ok": True, "message": "Tables created"}), 200


@api.errorhandler(InvalidCode)
def handle_invalid_code(error):
    return jsonify({"success": False, "error": error.public_message}), error.status_code


@api.errorhandler(CreationFailed)
def handle_creation_failed(error):
    logger.error("Error creating user: %s", error, exc_info=error.__cause__)
    return jsonify({"success": False, "error": error.public_message}), error.status_code


@api.errorhandler(JournalError)
def handle_journal_error(error):
    logger.error("Unhandled journal error: %s", error)
    return jsonify({"success": False, "error": error.public_message}), error.status_code


def create_app(test_config=None):
    app = Flask(__name__)
    app.config.update(load_config())
    if test_config:
        app.config.update(test_config)

    setup_logging(
        app.config["LOG_LEVEL"],
        json_output=app.config["ENVIRONMENT"] == "production",
    )

    if not app.config.get("SQLALCHEMY_DATABASE_URI"):
        raise RuntimeError(
            "DATABASE_URL environment variable is required. "
            "Add your Postgres connection string to the environment."
        )

    # Init DB
    db.init_app(app)
    app.extensions["emojournal"] = build_services(app)
    if app.config["AUTO_MIGRATE"]:
        with app.app_context():
            ensure_schema(db, app.extensions["emojournal"].retry)

    # --- CORS (allow your deployed frontend origin if provided) ---
    frontend_origin = app.config.get("FRONTEND_ORIGIN")
    if frontend_origin:
        CORS(app, resources={r"/*": {"origins": [frontend_origin]}}, supports_credentials=True)
    else:
        # Dev fallback: allow all (ok for local dev; tighten for prod)
        CORS(app)

    app.register_blueprint(api)
    return app


if __name__ == "__main__":
    create_app().run(
        host="0.0.0.0",
        port=int(os.getenv("PORT", "5000")),
        debug=True
    )
