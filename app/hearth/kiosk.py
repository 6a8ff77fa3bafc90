"""
Route restrictions for kiosk sessions (shared household display devices).

Path globs: '*' matches a single path segment, '**' any number of segments.
Matching is case-insensitive.
"""
from __future__ import annotations

import re
from functools import lru_cache

KIOSK_BLOCKED_PATTERNS = (
    # Admin and first-run setup
    "/admin/**",
    "/bootstrap",
    "/bootstrap/**",
    # System configuration
    "/settings/**",
    # Credential management
    "/auth/password",
    "/users/*/password",
    "/users/pin",
    "/users/*/pin",
    "/users/invite",
    "/users/*/invite",
    # Data export
    "/export/**",
    # Destructive household operations
    "/household/delete",
    "/households/*/delete",
    "/themes/*/delete",
    # Session management and audit trail
    "/auth/sessions",
    "/auth/sessions/**",
    "/audit/**",
    # Uploads
    "/media/upload",
    "/notifications/settings",
)


@lru_cache(maxsize=256)
def _glob_to_regex(pattern: str) -> re.Pattern[str]:
    out = []
    i = 0
    while i < len(pattern):
        if pattern.startswith("**", i):
            out.append(".*")
            i += 2
        elif pattern[i] == "*":
            out.append("[^/]*")
            i += 1
        else:
            out.append(re.escape(pattern[i]))
            i += 1
    return re.compile("^" + "".join(out) + "$")


def path_matches(path: str, pattern: str) -> bool:
    return _glob_to_regex(pattern.lower()).match(path.lower()) is not None


def is_kiosk_blocked_route(path: str, patterns: tuple[str, ...] = KIOSK_BLOCKED_PATTERNS) -> bool:
    normalized = "/" + path.strip().strip("/") if path.strip("/") else "/"
    return any(path_matches(normalized, p) for p in patterns)
