from __future__ import annotations

import logging
import time
from collections.abc import Callable, Iterable
from functools import wraps
from typing import Any

from flask import current_app, g, request
from sqlalchemy import delete, select
from sqlalchemy.orm import Session, sessionmaker

from app.hearth.errors import HttpError
from app.hearth.models import PermissionRule
from app.hearth.network import Classification
from app.hearth.policy import ALLOW, DENY, Decision, Rule, evaluate
from app.hearth.sessions import Session as UserSession

logger = logging.getLogger(__name__)

ROLES = ("admin", "member", "kid", "kiosk")

# Used until the permission_rules table says otherwise, and for any role with no rows.
DEFAULT_ROLE_RULES: dict[str, tuple[Rule, ...]] = {
    "admin": (Rule("*", ALLOW),),
    "member": (),
    "kid": (),
    "kiosk": (Rule("dashboard.read", ALLOW, local_only=True),),
}


class PermissionRegistry:
    """Role -> rule set resolver backed by the permission_rules table."""

    def __init__(self, defaults: dict[str, tuple[Rule, ...]] | None = None, refresh_seconds: float = 300.0) -> None:
        self._rules: dict[str, tuple[Rule, ...]] = dict(DEFAULT_ROLE_RULES if defaults is None else defaults)
        self.refresh_seconds = refresh_seconds
        self._loaded_at: float | None = None

    def rules_for(self, role: str) -> tuple[Rule, ...]:
        return self._rules.get(role, ())

    def snapshot(self) -> dict[str, tuple[Rule, ...]]:
        return dict(self._rules)

    def refresh(self, s: Session) -> None:
        rows = s.scalars(select(PermissionRule).order_by(PermissionRule.id)).all()
        loaded: dict[str, list[Rule]] = {}
        for r in rows:
            try:
                rule = Rule(action_pattern=r.action_pattern, effect=r.effect, local_only=bool(r.local_only))
            except ValueError:
                logger.warning("Skipping malformed permission rule id=%s effect=%r", r.id, r.effect)
                continue
            loaded.setdefault(r.role, []).append(rule)

        nxt = dict(self._rules)
        for role in set(nxt) | set(loaded):
            if loaded.get(role):
                nxt[role] = tuple(loaded[role])
        # Swap in one assignment so concurrent readers see old or new, never a mix.
        self._rules = nxt
        self._loaded_at = time.monotonic()

    def is_stale(self) -> bool:
        if self._loaded_at is None:
            return True
        if self.refresh_seconds <= 0:
            return False
        return time.monotonic() - self._loaded_at >= self.refresh_seconds

    def maybe_refresh(self, sm: sessionmaker[Session]) -> None:
        if not self.is_stale():
            return
        s = sm()
        try:
            self.refresh(s)
        except Exception as e:
            # Keep serving the previous rules; retry on a later request.
            self._loaded_at = time.monotonic()
            logger.error("Permission refresh failed (keeping previous rules): %s", e)
        finally:
            s.close()


def replace_rules(s: Session, items: Iterable[tuple[str, Rule]]) -> int:
    """Replace every stored rule. Caller owns the transaction."""
    s.execute(delete(PermissionRule))
    count = 0
    for role, rule in items:
        s.add(PermissionRule(role=role, action_pattern=rule.action_pattern, effect=rule.effect, local_only=rule.local_only))
        count += 1
    return count


def current_session() -> UserSession | None:
    return getattr(g, "current_session", None)


def request_classification() -> Classification:
    cls: Classification | None = getattr(g, "classification", None)
    if cls is None:
        cls = current_app.extensions["trust_classifier"].classify_request(request)
        g.classification = cls
    return cls


def check_permission(sess: UserSession | None, action: str) -> Decision:
    if sess is None:
        return Decision(allowed=False)
    registry: PermissionRegistry = current_app.extensions["permission_registry"]
    return evaluate(action, registry.rules_for(sess.role), request_classification().is_local)


def user_can(action: str) -> bool:
    return check_permission(current_session(), action).allowed


def _deny(action: str, decision: Decision | None = None) -> HttpError:
    # Which rule (or none) caused the denial stays server-side.
    g.missing_permission = action
    if decision is not None and decision.matched_rule is not None and decision.matched_rule.effect == DENY:
        logger.info("Permission denied by rule %r for action=%s", decision.matched_rule.action_pattern, action)
    return HttpError(403, "PERMISSION_DENIED", "You do not have permission for this action")


def require_permission(action: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            sess = current_session()
            if sess is None:
                raise HttpError(401, "AUTH_REQUIRED", "Authentication required")
            decision = check_permission(sess, action)
            if not decision.allowed:
                raise _deny(action, decision)
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def require_role(*roles: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            sess = current_session()
            if sess is None:
                raise HttpError(401, "AUTH_REQUIRED", "Authentication required")
            if roles and sess.role not in roles:
                raise _deny(f"role:{'|'.join(roles)}")
            return fn(*args, **kwargs)

        return wrapped

    return decorator
