import atexit
import logging

from flask import Flask, g, request
from dotenv import load_dotenv
from werkzeug.exceptions import HTTPException

from app.hearth.config import load_config
from app.hearth.db import init_db, teardown_db_session
from app.hearth.errors import HttpError, SessionStoreError
from app.hearth.janitor import SessionJanitor
from app.hearth.lockout import AccountLockout
from app.hearth.network import TrustClassifier
from app.hearth.rbac import PermissionRegistry
from app.hearth.routes import bp as routes_bp
from app.hearth.auth import (
    LoginRateLimiter,
    bp as auth_bp,
    enforce_kiosk_restrictions,
    load_current_session,
    sync_session_cookie,
)
from app.hearth.admin import bp as admin_bp
from app.hearth.bootstrap import bp as bootstrap_bp
from app.hearth.sessions import SessionStore

logger = logging.getLogger(__name__)

# State-changing endpoints reachable without a CSRF token (no session to protect yet).
CSRF_EXEMPT_ENDPOINTS = frozenset({"auth.login", "auth.pin_login", "bootstrap.post_bootstrap"})


def create_app(*, start_janitor: bool | None = None) -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())

    from app.hearth.security import validate_csrf

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)

    store = SessionStore(app.extensions["sqlalchemy_sessionmaker"])
    app.extensions["session_store"] = store
    app.extensions["trust_classifier"] = TrustClassifier(
        trusted_proxies=app.config["TRUSTED_PROXIES"],
        local_cidrs=app.config["LOCAL_CIDRS"],
    )
    app.extensions["permission_registry"] = PermissionRegistry(
        refresh_seconds=app.config["PERMISSIONS_REFRESH_SECONDS"],
    )
    app.extensions["login_rate_limiter"] = LoginRateLimiter(
        limit=app.config["LOGIN_RATE_LIMIT"],
        window_seconds=app.config["LOGIN_RATE_WINDOW_SECONDS"],
    )
    app.extensions["account_lockout"] = AccountLockout(
        threshold=app.config["LOCKOUT_THRESHOLD"],
        window_minutes=app.config["LOCKOUT_WINDOW_MINUTES"],
    )

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(bootstrap_bp, url_prefix="/bootstrap")

    def _refresh_permissions() -> None:
        if request.path.startswith(("/health", "/healthz")):
            return None
        app.extensions["permission_registry"].maybe_refresh(app.extensions["sqlalchemy_sessionmaker"])

    def _csrf_guard():
        if not app.config.get("CSRF_ENABLED"):
            return None
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            if request.endpoint in CSRF_EXEMPT_ENDPOINTS:
                return None
            if not validate_csrf(request):
                raise HttpError(400, "CSRF_INVALID", "CSRF token missing or invalid.")
        return None

    app.before_request(load_current_session)
    app.before_request(enforce_kiosk_restrictions)
    app.before_request(_refresh_permissions)
    app.before_request(_csrf_guard)
    app.after_request(sync_session_cookie)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(HttpError)
    def _err_http(e: HttpError):  # type: ignore[no-redef]
        if e.status == 403:
            missing = getattr(g, "missing_permission", None)
            app.logger.warning(
                "Forbidden: code=%s missing_permission=%s request_id=%s", e.code, missing, getattr(g, "request_id", None)
            )
        return e.to_payload(), e.status

    @app.errorhandler(SessionStoreError)
    def _err_session_store(e: SessionStoreError):  # type: ignore[no-redef]
        app.logger.exception("Session store unavailable (request_id=%s)", getattr(g, "request_id", None))
        return {"error": {"code": "SERVICE_UNAVAILABLE"}}, 503

    @app.errorhandler(HTTPException)
    def _err_werkzeug(e: HTTPException):  # type: ignore[no-redef]
        return {"error": {"code": (e.name or "error").upper().replace(" ", "_")}}, e.code or 500

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return {"error": {"code": "SERVER_ERROR"}}, 500

    if start_janitor is None:
        start_janitor = bool(app.config.get("SESSION_JANITOR_ENABLED"))
    janitor = SessionJanitor(store, interval_seconds=app.config["SESSION_JANITOR_INTERVAL_SECONDS"])
    app.extensions["session_janitor"] = janitor
    if start_janitor:
        janitor.start()
        atexit.register(janitor.stop)

    logger.info("create_app() complete; app ready to serve")
    return app
