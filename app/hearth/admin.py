from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request

from app.hearth.audit import record_event
from app.hearth.auth import issue_session_cookie, session_ttl_minutes
from app.hearth.db import db_session
from app.hearth.errors import HttpError
from app.hearth.models import PermissionRule, User
from app.hearth.policy import Rule
from app.hearth.rbac import ROLES, PermissionRegistry, current_session, replace_rules, require_permission
from app.hearth.sessions import Session, SessionStore

bp = Blueprint("admin", __name__)


def _store() -> SessionStore:
    return current_app.extensions["session_store"]


def _registry() -> PermissionRegistry:
    return current_app.extensions["permission_registry"]


def _current_session() -> Session:
    sess = current_session()
    if sess is None:
        raise RuntimeError("No current session")
    return sess


# ---------- Impersonation ----------
@bp.post("/impersonate/<int:user_id>")
@require_permission("admin.impersonate")
def impersonate_start(user_id: int):
    sess = _current_session()
    if sess.impersonated_by is not None:
        raise HttpError(400, "ALREADY_IMPERSONATING", "Stop the current impersonation first")
    if user_id == sess.user_id:
        raise HttpError(400, "BAD_REQUEST", "Invalid user ID")

    s = db_session()
    target = s.get(User, user_id)
    if not target or not target.is_active:
        raise HttpError(404, "NOT_FOUND", "User not found")

    store = _store()
    store.destroy(sess.sid)
    new_sess = store.create(
        target.id,
        target.role,
        session_ttl_minutes(),
        impersonated_by=sess.user_id,
        client_ip=sess.client_ip,
    )
    record_event(
        s,
        actor_id=sess.user_id,
        action="admin.impersonate.start",
        entity_type="User",
        entity_id=str(target.id),
        metadata={"target_user_id": target.id, "target_display_name": target.display_name},
    )
    s.commit()
    payload = {
        "ok": True,
        "impersonating": {"id": target.id, "display_name": target.display_name, "role": target.role},
        "original_admin_id": sess.user_id,
    }
    return issue_session_cookie(jsonify(payload), new_sess)


@bp.post("/impersonate/stop")
def impersonate_stop():
    sess = current_session()
    if sess is None:
        raise HttpError(401, "AUTH_REQUIRED", "Authentication required")
    if sess.impersonated_by is None:
        raise HttpError(400, "NOT_IMPERSONATING", "Not currently impersonating")

    s = db_session()
    admin = s.get(User, sess.impersonated_by)
    store = _store()
    store.destroy(sess.sid)
    if not admin or not admin.is_active:
        g.current_session = None
        g.stale_session_cookie = True
        raise HttpError(401, "AUTH_REQUIRED", "Original account is no longer available")

    new_sess = store.create(admin.id, admin.role, session_ttl_minutes(), client_ip=sess.client_ip)
    record_event(
        s,
        actor_id=admin.id,
        action="admin.impersonate.stop",
        entity_type="User",
        entity_id=str(sess.user_id),
        metadata={"was_impersonating": sess.user_id},
    )
    s.commit()
    payload = {"ok": True, "user": {"id": admin.id, "display_name": admin.display_name, "role": admin.role}}
    return issue_session_cookie(jsonify(payload), new_sess)


# ---------- Permission rules ----------
@bp.get("/permissions")
@require_permission("perm.read")
def permissions_list():
    s = db_session()
    rows = s.query(PermissionRule).order_by(PermissionRule.role, PermissionRule.action_pattern).all()
    effective = {role: [r.to_dict() for r in rules] for role, rules in _registry().snapshot().items()}
    return {
        "items": [
            {"role": r.role, "action_pattern": r.action_pattern, "effect": r.effect, "local_only": bool(r.local_only)}
            for r in rows
        ],
        "effective": effective,
    }


@bp.put("/permissions")
@require_permission("perm.manage")
def permissions_replace():
    body = request.get_json(silent=True)
    items = body.get("items") if isinstance(body, dict) else None
    if not isinstance(items, list) or not items:
        raise HttpError(400, "BAD_REQUEST", "items[] required")

    parsed: list[tuple[str, Rule]] = []
    for item in items:
        if not isinstance(item, dict):
            raise HttpError(400, "BAD_REQUEST", "invalid rule")
        role = item.get("role")
        if not isinstance(role, str) or role.strip() not in ROLES:
            raise HttpError(400, "BAD_REQUEST", f"invalid role {role!r}")
        try:
            parsed.append((role.strip(), Rule.from_mapping(item)))
        except ValueError as e:
            raise HttpError(400, "BAD_REQUEST", str(e)) from e

    sess = _current_session()
    s = db_session()
    count = replace_rules(s, parsed)
    record_event(
        s,
        actor_id=sess.user_id,
        action="perm.replace",
        entity_type="PermissionRule",
        metadata={"count": count},
    )
    s.commit()
    _registry().refresh(s)
    return "", 204


@bp.post("/permissions/refresh")
@require_permission("perm.manage")
def permissions_refresh():
    _registry().refresh(db_session())
    return "", 204


# ---------- User sessions ----------
@bp.get("/users/<int:user_id>/sessions")
@require_permission("sessions.read")
def user_sessions_list(user_id: int):
    items = [x.to_dict() for x in _store().list_for_user(user_id)]
    return {"items": items}


@bp.delete("/users/<int:user_id>/sessions")
@require_permission("sessions.revoke")
def user_sessions_revoke(user_id: int):
    sess = _current_session()
    revoked = _store().destroy_for_user(user_id)
    s = db_session()
    record_event(
        s,
        actor_id=sess.user_id,
        action="sessions.revoke",
        entity_type="User",
        entity_id=str(user_id),
        metadata={"revoked": revoked},
    )
    s.commit()
    return {"revoked": revoked}
