import os
from dataclasses import dataclass

from app.hearth.utils import parse_bool, parse_csv

DEFAULT_LOCAL_CIDRS = (
    "127.0.0.0/8",
    "::1/128",
    "10.0.0.0/8",
    "172.16.0.0/12",
    "192.168.0.0/16",
    "fc00::/7",
    "fe80::/10",
)


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    database_url: str

    session_cookie_name: str
    session_ttl_minutes: int
    session_rolling: bool
    kiosk_session_ttl_hours: int

    trusted_proxies: tuple[str, ...]
    local_cidrs: tuple[str, ...]

    session_janitor_enabled: bool
    session_janitor_interval_seconds: int
    permissions_refresh_seconds: int

    csrf_enabled: bool
    login_rate_limit: int
    login_rate_window_seconds: int
    lockout_threshold: int
    lockout_window_minutes: int


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getint(name: str, default: int, minimum: int = 0) -> int:
    raw = _getenv(name, str(default))
    try:
        value = int(raw)
    except ValueError as e:
        raise RuntimeError(f"{name} must be an integer (got {raw!r}).") from e
    if value < minimum:
        raise RuntimeError(f"{name} must be >= {minimum} (got {value}).")
    return value


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        database_url=_getenv("DATABASE_URL", "sqlite:///hearth.db"),
        session_cookie_name=_getenv("SESSION_COOKIE_NAME", "hearth_sid"),
        session_ttl_minutes=_getint("SESSION_TTL_MINUTES", 120, minimum=1),
        session_rolling=parse_bool(os.environ.get("SESSION_ROLLING"), default=True),
        kiosk_session_ttl_hours=_getint("KIOSK_SESSION_TTL_HOURS", 720, minimum=1),
        trusted_proxies=parse_csv(os.environ.get("TRUSTED_PROXIES")),
        local_cidrs=parse_csv(os.environ.get("LOCAL_CIDRS")) or DEFAULT_LOCAL_CIDRS,
        session_janitor_enabled=parse_bool(os.environ.get("SESSION_JANITOR_ENABLED"), default=True),
        session_janitor_interval_seconds=_getint("SESSION_JANITOR_INTERVAL_SECONDS", 300, minimum=1),
        permissions_refresh_seconds=_getint("PERMISSIONS_REFRESH_SECONDS", 300),
        csrf_enabled=parse_bool(os.environ.get("CSRF_ENABLED"), default=True),
        login_rate_limit=_getint("LOGIN_RATE_LIMIT", 5, minimum=1),
        login_rate_window_seconds=_getint("LOGIN_RATE_WINDOW_SECONDS", 300, minimum=1),
        lockout_threshold=_getint("LOCKOUT_THRESHOLD", 5),
        lockout_window_minutes=_getint("LOCKOUT_WINDOW_MINUTES", 15, minimum=1),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "DATABASE_URL": s.database_url,
        "HEARTH_SESSION_COOKIE_NAME": s.session_cookie_name,
        "SESSION_TTL_MINUTES": s.session_ttl_minutes,
        "SESSION_ROLLING": s.session_rolling,
        "KIOSK_SESSION_TTL_HOURS": s.kiosk_session_ttl_hours,
        "TRUSTED_PROXIES": s.trusted_proxies,
        "LOCAL_CIDRS": s.local_cidrs,
        "SESSION_JANITOR_ENABLED": s.session_janitor_enabled,
        "SESSION_JANITOR_INTERVAL_SECONDS": s.session_janitor_interval_seconds,
        "PERMISSIONS_REFRESH_SECONDS": s.permissions_refresh_seconds,
        "CSRF_ENABLED": s.csrf_enabled,
        "LOGIN_RATE_LIMIT": s.login_rate_limit,
        "LOGIN_RATE_WINDOW_SECONDS": s.login_rate_window_seconds,
        "LOCKOUT_THRESHOLD": s.lockout_threshold,
        "LOCKOUT_WINDOW_MINUTES": s.lockout_window_minutes,
        # security defaults (Flask's own signed cookie only carries the CSRF token)
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        "MAX_CONTENT_LENGTH": 1 * 1024 * 1024,
    }
