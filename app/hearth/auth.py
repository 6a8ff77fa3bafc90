from __future__ import annotations

import threading
import time
import uuid
from collections import defaultdict

from flask import Blueprint, Response, current_app, g, jsonify, request
from werkzeug.security import check_password_hash, generate_password_hash

from app.hearth.audit import record_event
from app.hearth.db import db_session
from app.hearth.errors import HttpError
from app.hearth.kiosk import is_kiosk_blocked_route
from app.hearth.lockout import AccountLockout, LockoutStatus
from app.hearth.models import User
from app.hearth.rbac import current_session, request_classification
from app.hearth.security import clear_session_cookie, ensure_csrf_token, read_session_cookie, set_session_cookie
from app.hearth.sessions import Session, SessionStore

bp = Blueprint("auth", __name__)

MIN_PASSWORD_LENGTH = 8


class LoginRateLimiter:
    """Sliding-window attempt counter keyed by client ip (per process)."""

    def __init__(self, limit: int = 5, window_seconds: float = 300.0) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self._attempts: dict[str, list[float]] = defaultdict(list)
        self._lock = threading.Lock()

    def _prune(self, cutoff: float) -> None:
        for key in [k for k, times in self._attempts.items() if not times or times[-1] <= cutoff]:
            del self._attempts[key]

    def is_limited(self, key: str) -> bool:
        cutoff = time.monotonic() - self.window_seconds
        with self._lock:
            recent = [t for t in self._attempts.get(key, ()) if t > cutoff]
            if not recent:
                self._attempts.pop(key, None)
                return False
            self._attempts[key] = recent
            return len(recent) >= self.limit

    def record(self, key: str) -> None:
        now = time.monotonic()
        with self._lock:
            self._prune(now - self.window_seconds)
            self._attempts[key].append(now)

    def clear(self, key: str) -> None:
        with self._lock:
            self._attempts.pop(key, None)


def _store() -> SessionStore:
    return current_app.extensions["session_store"]


def session_ttl_minutes(sess: Session | None = None, *, kiosk: bool = False) -> float:
    if kiosk or (sess is not None and sess.is_kiosk):
        return current_app.config["KIOSK_SESSION_TTL_HOURS"] * 60
    return current_app.config["SESSION_TTL_MINUTES"]


def issue_session_cookie(resp: Response, sess: Session) -> Response:
    set_session_cookie(resp, sess.sid, session_ttl_minutes(sess))
    g.session_cookie_written = True
    return resp


def drop_session_cookie(resp: Response) -> Response:
    clear_session_cookie(resp)
    g.session_cookie_written = True
    return resp


def load_current_session() -> None:
    """
    Resolves g.current_session / g.current_user from the session cookie.
    Session store failures propagate: an outage is not "logged out".
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    g.current_session = None
    g.current_user = None
    if request.path.startswith(("/health", "/healthz")):
        return

    request_classification()
    sid = read_session_cookie(request)
    if not sid:
        return

    store = _store()
    sess = store.get(sid)
    if sess is None:
        g.stale_session_cookie = True
        return

    user = db_session().get(User, sess.user_id)
    if not user or not user.is_active:
        store.destroy(sid)
        g.stale_session_cookie = True
        return

    if current_app.config.get("SESSION_ROLLING"):
        store.touch(sid, session_ttl_minutes(sess))
        g.refresh_session_cookie = True

    g.current_session = sess
    g.current_user = user


def enforce_kiosk_restrictions() -> None:
    sess = current_session()
    if sess is None or not sess.is_kiosk:
        return
    if is_kiosk_blocked_route(request.path):
        current_app.logger.warning("Kiosk session blocked: %s %s (user_id=%s)", request.method, request.path, sess.user_id)
        raise HttpError(403, "KIOSK_RESTRICTED", "This action is not available in kiosk mode")


def sync_session_cookie(resp: Response) -> Response:
    """after_request: keep the browser cookie in step with the store."""
    if getattr(g, "session_cookie_written", False):
        return resp
    sess = current_session()
    if sess is not None and getattr(g, "refresh_session_cookie", False):
        set_session_cookie(resp, sess.sid, session_ttl_minutes(sess))
    elif getattr(g, "stale_session_cookie", False):
        clear_session_cookie(resp)
    return resp


def _client_ip() -> str:
    return request_classification().client_ip or "unknown"


def _user_payload(user: User) -> dict:
    return {"id": user.id, "display_name": user.display_name, "role": user.role}


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def _str_field(body: dict, name: str) -> str:
    value = body.get(name)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise HttpError(400, "INVALID_INPUT", f"{name} must be a string")
    return value


def _lockout() -> AccountLockout:
    return current_app.extensions["account_lockout"]


def _account_locked(s, user: User, status: LockoutStatus, message: str) -> HttpError:
    lockout = _lockout()
    retry_after = status.retry_after_seconds(lockout.now())
    record_event(
        s,
        actor_id=user.id,
        action="auth.lockout",
        result="denied",
        entity_type="User",
        entity_id=str(user.id),
        metadata={"failed_attempts": status.failed_attempts, "retry_after": retry_after},
    )
    s.commit()
    return HttpError(423, "ACCOUNT_LOCKED", message, details={"retry_after": retry_after})


def _replace_current_session(store: SessionStore) -> None:
    old_sid = read_session_cookie(request)
    if old_sid:
        store.destroy(old_sid)


@bp.post("/login")
def login():
    body = _json_body()
    email = _str_field(body, "email").strip().lower()
    password = _str_field(body, "password")
    ip = _client_ip()
    limiter: LoginRateLimiter = current_app.extensions["login_rate_limiter"]

    if limiter.is_limited(ip):
        raise HttpError(429, "RATE_LIMITED", "Too many login attempts. Please wait and try again.")
    limiter.record(ip)

    s = db_session()
    user = s.query(User).filter(User.email == email).one_or_none() if email else None
    if not user or not user.is_active or not user.password_hash:
        record_event(s, actor_id=None, action="auth.login_failed", result="denied", entity_type="User", entity_id=email or None)
        s.commit()
        raise HttpError(401, "INVALID_CREDENTIALS", "Invalid credentials.")

    lockout = _lockout()
    status = lockout.check(s, user.id)
    if status.is_locked:
        raise _account_locked(s, user, status, "Account locked. Try again later.")

    if not check_password_hash(user.password_hash, password):
        status = lockout.record_failure(s, user.id, request_classification().client_ip)
        record_event(s, actor_id=None, action="auth.login_failed", result="denied", entity_type="User", entity_id=email)
        if status.is_locked:
            raise _account_locked(s, user, status, "Too many failed attempts. Account is now locked.")
        s.commit()
        raise HttpError(401, "INVALID_CREDENTIALS", "Invalid credentials.")

    store = _store()
    _replace_current_session(store)
    sess = store.create(user.id, user.role, session_ttl_minutes(), client_ip=request_classification().client_ip)
    limiter.clear(ip)
    lockout.clear(s, user.id)
    record_event(s, actor_id=user.id, action="auth.login", entity_type="User", entity_id=str(user.id))
    s.commit()
    return issue_session_cookie(jsonify({"ok": True, "user": _user_payload(user)}), sess)


@bp.post("/pin/login")
def pin_login():
    cls = request_classification()
    if not cls.is_local:
        current_app.logger.warning("Kiosk PIN login refused for non-local client %s", cls.client_ip)
        raise HttpError(403, "KIOSK_LOCAL_ONLY", "Kiosk mode is only available on the local network")

    body = _json_body()
    pin = body.get("pin")
    if isinstance(pin, int) and not isinstance(pin, bool):
        pin = str(pin)
    user_id = body.get("user_id")
    if isinstance(user_id, str) and user_id.strip().isdecimal():
        user_id = int(user_id)
    if not isinstance(pin, str) or not pin or type(user_id) is not int or not 0 < user_id < 2**63:
        raise HttpError(400, "INVALID_INPUT", "user_id and pin are required")

    ip = _client_ip()
    limiter: LoginRateLimiter = current_app.extensions["login_rate_limiter"]
    if limiter.is_limited(ip):
        raise HttpError(429, "RATE_LIMITED", "Too many login attempts. Please wait and try again.")
    limiter.record(ip)

    s = db_session()
    user = s.get(User, user_id)
    if not user or not user.is_active or not user.kiosk_pin_hash:
        record_event(s, actor_id=None, action="auth.pin_login_failed", result="denied", entity_type="User", entity_id=str(user_id))
        s.commit()
        raise HttpError(401, "INVALID_CREDENTIALS", "Invalid PIN.")

    lockout = _lockout()
    status = lockout.check(s, user.id)
    if status.is_locked:
        raise _account_locked(s, user, status, "Account locked. Try again later.")

    if not check_password_hash(user.kiosk_pin_hash, pin):
        status = lockout.record_failure(s, user.id, cls.client_ip)
        record_event(s, actor_id=None, action="auth.pin_login_failed", result="denied", entity_type="User", entity_id=str(user_id))
        if status.is_locked:
            raise _account_locked(s, user, status, "Too many failed attempts. Account is now locked.")
        s.commit()
        raise HttpError(401, "INVALID_CREDENTIALS", "Invalid PIN.")

    store = _store()
    _replace_current_session(store)
    sess = store.create(user.id, user.role, session_ttl_minutes(kiosk=True), is_kiosk=True, client_ip=cls.client_ip)
    limiter.clear(ip)
    lockout.clear(s, user.id)
    record_event(s, actor_id=user.id, action="auth.pin_login", entity_type="User", entity_id=str(user.id))
    s.commit()
    return issue_session_cookie(jsonify({"ok": True, "user": _user_payload(user), "kiosk": True}), sess)


@bp.post("/logout")
def logout():
    sid = read_session_cookie(request)
    if sid:
        _store().destroy(sid)
    sess = current_session()
    if sess is not None:
        s = db_session()
        record_event(s, actor_id=sess.user_id, action="auth.logout", entity_type="User", entity_id=str(sess.user_id))
        s.commit()
    return drop_session_cookie(jsonify({"ok": True}))


@bp.get("/me")
def me():
    sess = current_session()
    user: User | None = getattr(g, "current_user", None)
    if sess is None or user is None:
        raise HttpError(401, "AUTH_REQUIRED", "Authentication required")
    return {"user": _user_payload(user), "session": sess.to_dict()}


@bp.get("/session")
def session_status():
    sess = current_session()
    if sess is None:
        return {"valid": False}, 401
    return {"valid": True, "user_id": sess.user_id, "role": sess.role, "expires_at": sess.expires_at.isoformat()}


@bp.get("/csrf")
def csrf():
    return {"csrf_token": ensure_csrf_token()}


@bp.post("/password")
def change_password():
    sess = current_session()
    user: User | None = getattr(g, "current_user", None)
    if sess is None or user is None:
        raise HttpError(401, "AUTH_REQUIRED", "Authentication required")

    body = _json_body()
    current_password = _str_field(body, "current_password")
    new_password = _str_field(body, "new_password")
    if len(new_password) < MIN_PASSWORD_LENGTH:
        raise HttpError(400, "INVALID_INPUT", f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if not user.password_hash or not check_password_hash(user.password_hash, current_password):
        raise HttpError(401, "INVALID_CREDENTIALS", "Current password is incorrect.")

    s = db_session()
    user.password_hash = generate_password_hash(new_password)
    _lockout().clear(s, user.id)
    record_event(s, actor_id=user.id, action="auth.password_change", entity_type="User", entity_id=str(user.id))
    s.commit()

    # Every other device is signed out; this one gets a fresh session.
    store = _store()
    revoked = store.destroy_for_user(user.id)
    fresh = store.create(user.id, sess.role, session_ttl_minutes(), client_ip=request_classification().client_ip)
    current_app.logger.info("Password changed for user_id=%s; revoked %d session(s)", user.id, revoked)
    return issue_session_cookie(jsonify({"ok": True}), fresh)
