"""
Allow/deny rule evaluation for actions like "settings.read" or "calendar.create".

Rules carry a wildcard pattern ("calendar.*", "*"), an effect and an optional
local-only flag. Evaluation is pure: no I/O, no shared state besides the
compiled-pattern cache.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Iterable, Sequence

ALLOW = "allow"
DENY = "deny"
EFFECTS = (ALLOW, DENY)


@dataclass(frozen=True)
class Rule:
    action_pattern: str
    effect: str
    local_only: bool = False

    def __post_init__(self) -> None:
        if self.effect not in EFFECTS:
            raise ValueError(f"Invalid rule effect {self.effect!r}. Must be one of: {', '.join(EFFECTS)}")
        if not isinstance(self.action_pattern, str):
            raise ValueError("Rule action_pattern must be a string.")

    @classmethod
    def from_mapping(cls, data: dict[str, Any]) -> "Rule":
        pattern = data.get("action_pattern", data.get("actionPattern"))
        if pattern is None or str(pattern).strip() == "":
            raise ValueError("Rule action_pattern is required.")
        return cls(
            action_pattern=str(pattern).strip(),
            effect=str(data.get("effect") or "").strip().lower(),
            local_only=bool(data.get("local_only", data.get("localOnly", False))),
        )

    def to_dict(self) -> dict[str, Any]:
        return {"action_pattern": self.action_pattern, "effect": self.effect, "local_only": self.local_only}

    @property
    def wildcard_count(self) -> int:
        return self.action_pattern.count("*")


@dataclass(frozen=True)
class Decision:
    allowed: bool
    matched_rule: Rule | None = None


@lru_cache(maxsize=1024)
def compile_pattern(pattern: str) -> re.Pattern[str]:
    """
    Compile a wildcard pattern into an anchored regex.
    '*' matches any (possibly empty) substring; every other character is literal.
        'calendar.*' -> ^calendar\\..*\\Z
        '*'          -> ^.*\\Z
    """
    body = ".*".join(re.escape(part) for part in pattern.split("*"))
    return re.compile(f"^{body}\\Z", re.DOTALL)


def matches(pattern: str, action: str) -> bool:
    return compile_pattern(pattern).match(action) is not None


def _specificity(rule: Rule) -> tuple[int, int]:
    # Fewer wildcards first, then longer patterns.
    return (rule.wildcard_count, -len(rule.action_pattern))


def evaluate(action: str, rules: Iterable[Rule], is_local_request: bool) -> Decision:
    """
    Decide whether `action` is permitted.

    Any matching deny wins, regardless of local_only. Otherwise the most specific
    matching allow (local_only allows count only for local requests) is selected.
    No matching allow means deny.

    Exact specificity ties keep the earlier rule in `rules`; callers should not
    depend on which of two equally specific rules is reported.
    """
    rule_list: Sequence[Rule] = rules if isinstance(rules, (list, tuple)) else list(rules)

    for rule in rule_list:
        if rule.effect == DENY and matches(rule.action_pattern, action):
            return Decision(allowed=False, matched_rule=rule)

    candidates = [
        rule
        for rule in rule_list
        if rule.effect == ALLOW
        and matches(rule.action_pattern, action)
        and (not rule.local_only or is_local_request)
    ]
    if not candidates:
        return Decision(allowed=False)

    best = sorted(candidates, key=_specificity)[0]
    return Decision(allowed=True, matched_rule=best)


def is_allowed(action: str, rules: Iterable[Rule], is_local_request: bool) -> bool:
    return evaluate(action, rules, is_local_request).allowed
