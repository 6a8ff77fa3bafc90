import secrets

from flask import Flask, Request, Response, current_app, session


def ensure_csrf_token() -> str:
    """Ensure a CSRF token exists in the signed Flask cookie and return it."""
    token = session.get("csrf_token")
    if not token:
        token = secrets.token_urlsafe(32)
        session["csrf_token"] = token
    return token


def validate_csrf(req: Request) -> bool:
    """Validate CSRF token from the X-CSRF-Token header or JSON body."""
    token = req.headers.get("X-CSRF-Token")
    if not token and req.is_json:
        json_data = req.get_json(silent=True)
        if isinstance(json_data, dict):
            token = json_data.get("csrf_token")
    expected = session.get("csrf_token")
    if not isinstance(token, str) or not isinstance(expected, str) or not token or not expected:
        return False
    return secrets.compare_digest(token.encode("utf-8"), expected.encode("utf-8"))


def _cookie_kwargs(app: Flask) -> dict:
    return {
        "httponly": True,
        "secure": bool(app.config.get("SESSION_COOKIE_SECURE")),
        "samesite": app.config.get("SESSION_COOKIE_SAMESITE", "Lax"),
        "path": "/",
    }


def set_session_cookie(resp: Response, sid: str, ttl_minutes: float) -> None:
    app = current_app
    resp.set_cookie(
        app.config["HEARTH_SESSION_COOKIE_NAME"],
        sid,
        max_age=int(ttl_minutes * 60),
        **_cookie_kwargs(app),
    )


def clear_session_cookie(resp: Response) -> None:
    app = current_app
    resp.set_cookie(app.config["HEARTH_SESSION_COOKIE_NAME"], "", max_age=0, **_cookie_kwargs(app))


def read_session_cookie(req: Request) -> str:
    return (req.cookies.get(current_app.config["HEARTH_SESSION_COOKIE_NAME"]) or "").strip()
