import json
from typing import Any

from flask import g, has_request_context
from sqlalchemy.orm import Session

from app.hearth.models import AuditEvent


def record_event(
    s: Session,
    *,
    actor_id: int | None,
    action: str,
    result: str = "ok",
    entity_type: str | None = None,
    entity_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    """
    Append-only audit event helper. Picks request id, client ip and the
    impersonating admin (if any) from the current request.
    """
    rid = request_id
    client_ip = None
    impersonated_by = None
    if has_request_context():
        rid = rid or getattr(g, "request_id", None)
        cls = getattr(g, "classification", None)
        client_ip = cls.client_ip if cls is not None else None
        sess = getattr(g, "current_session", None)
        impersonated_by = sess.impersonated_by if sess is not None else None
    ev = AuditEvent(
        request_id=rid,
        actor_user_id=actor_id,
        impersonated_by=impersonated_by,
        action=action,
        result=result,
        entity_type=entity_type,
        entity_id=entity_id,
        client_ip=client_ip,
        metadata_json=json.dumps(metadata, sort_keys=True) if metadata else None,
    )
    s.add(ev)
    return ev
