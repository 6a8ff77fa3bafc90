from flask import Blueprint, current_app

bp = Blueprint("routes", __name__)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    janitor = current_app.extensions.get("session_janitor")
    return {"ok": True, "session_janitor": bool(janitor and janitor.running)}


@bp.get("/healthz")
def healthz():
    """
    Fast liveness check for containers. No DB access, minimal overhead.
    """
    return "ok", 200
