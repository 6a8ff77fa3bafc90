from __future__ import annotations

from flask import Blueprint, current_app, request
from sqlalchemy import update
from sqlalchemy.orm import Session
from werkzeug.security import generate_password_hash

from app.hearth.audit import record_event
from app.hearth.auth import MIN_PASSWORD_LENGTH
from app.hearth.db import db_session
from app.hearth.errors import HttpError
from app.hearth.models import HouseholdSettings, User
from app.hearth.rbac import request_classification
from app.hearth.utils import utcnow

bp = Blueprint("bootstrap", __name__)

BOOTSTRAP_FIELDS = ("admin_name", "admin_email", "admin_password", "household_name")


def get_household_settings(s: Session) -> HouseholdSettings:
    row = s.get(HouseholdSettings, 1)
    if row is None:
        row = HouseholdSettings(id=1, is_bootstrapped=False)
        s.add(row)
        s.flush()
    return row


def validate_bootstrap_payload(payload) -> list[str]:
    if not isinstance(payload, dict):
        return ["Request body must be a JSON object."]
    errors = [f"{field} must be a string." for field in BOOTSTRAP_FIELDS if not isinstance(payload.get(field) or "", str)]
    if errors:
        return errors
    name = (payload.get("admin_name") or "").strip()
    if len(name) < 2:
        errors.append("Admin name is required (min 2 characters).")
    email = (payload.get("admin_email") or "").strip()
    if "@" not in email:
        errors.append("Valid email is required.")
    password = payload.get("admin_password") or ""
    if len(password) < MIN_PASSWORD_LENGTH:
        errors.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    return errors


def claim_bootstrap(s: Session, household_name: str | None = None) -> bool:
    """Flip is_bootstrapped in a single conditional UPDATE; False when another request got there first."""
    values = {"is_bootstrapped": True, "updated_at": utcnow()}
    if household_name:
        values["household_name"] = household_name
    result = s.execute(
        update(HouseholdSettings)
        .where(HouseholdSettings.id == 1, HouseholdSettings.is_bootstrapped.is_(False))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


@bp.get("/status")
def bootstrap_status():
    s = db_session()
    row = s.get(HouseholdSettings, 1)
    return {"bootstrapped": bool(row and row.is_bootstrapped)}


@bp.post("")
def post_bootstrap():
    cls = request_classification()
    if not cls.is_local:
        current_app.logger.warning("Bootstrap refused for non-local client %s", cls.client_ip)
        raise HttpError(403, "PERMISSION_DENIED", "Local network required")

    s = db_session()
    settings = get_household_settings(s)
    if settings.is_bootstrapped:
        raise HttpError(409, "ALREADY_BOOTSTRAPPED", "Already bootstrapped")

    payload = request.get_json(silent=True)
    if payload is None:
        payload = {}
    errors = validate_bootstrap_payload(payload)
    if errors:
        raise HttpError(400, "INVALID_INPUT", " ".join(errors))

    if not claim_bootstrap(s, (payload.get("household_name") or "").strip()):
        s.rollback()
        current_app.logger.warning("Concurrent bootstrap lost the race; refusing second admin")
        raise HttpError(409, "ALREADY_BOOTSTRAPPED", "Already bootstrapped")

    admin = User(
        display_name=payload["admin_name"].strip(),
        email=payload["admin_email"].strip().lower(),
        password_hash=generate_password_hash(payload["admin_password"]),
        role="admin",
        is_active=True,
    )
    s.add(admin)
    s.flush()

    record_event(
        s,
        actor_id=admin.id,
        action="bootstrap.complete",
        entity_type="User",
        entity_id=str(admin.id),
        metadata={"admin_email": admin.email},
    )
    s.commit()
    return {"ok": True, "user": {"id": admin.id, "display_name": admin.display_name, "role": admin.role}}, 201
