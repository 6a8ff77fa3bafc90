"""
Unit tests for allow/deny rule evaluation.

Tests cover:
- Wildcard matching (literal characters, empty matches)
- Deny precedence
- Specificity ordering between allows
- Local-only allows
- Rule validation
"""

import pytest

from app.hearth.policy import ALLOW, DENY, Decision, Rule, evaluate, is_allowed, matches


class TestMatches:
    """Tests for matches()"""

    def test_exact_pattern(self):
        assert matches("settings.read", "settings.read")
        assert not matches("settings.read", "settings.readx")
        assert not matches("settings.read", "xsettings.read")

    def test_star_matches_any_substring(self):
        assert matches("settings.*", "settings.read")
        assert matches("settings.*", "settings.members.invite")
        assert matches("*.read", "calendar.read")
        assert matches("cal*.create", "calendar.create")

    def test_star_matches_empty(self):
        """'*' may match nothing at all"""
        assert matches("*", "")
        assert matches("settings.*", "settings.")
        assert not matches("settings.*", "settings")

    def test_regex_metacharacters_are_literal(self):
        """Only '*' is special; '.', '+', '(' etc. match themselves"""
        assert not matches("settings.read", "settingsXread")
        assert matches("a+b(c)", "a+b(c)")
        assert not matches("a+b", "aab")
        assert matches("[x]", "[x]")
        assert not matches("[x]", "x")

    def test_multiple_wildcards(self):
        assert matches("*.*", "a.b")
        assert matches("*.*", ".")
        assert not matches("*.*", "ab")

    def test_trailing_newline_is_not_ignored(self):
        """The match is anchored at the true end of the action"""
        assert not matches("settings.read", "settings.read\n")
        assert not matches("settings.*.x", "settings.a.x\n")
        assert matches("settings.*", "settings.read\n")
        d = evaluate("settings.read\n", [Rule("settings.read", ALLOW)], is_local_request=True)
        assert d.allowed is False


class TestEvaluate:
    """Tests for evaluate()"""

    def test_no_rules_denies(self):
        d = evaluate("calendar.read", [], is_local_request=True)
        assert d == Decision(allowed=False)

    def test_no_matching_allow_denies(self):
        rules = [Rule("calendar.*", ALLOW)]
        d = evaluate("settings.read", rules, is_local_request=True)
        assert d.allowed is False
        assert d.matched_rule is None

    def test_matching_allow(self):
        allow = Rule("calendar.*", ALLOW)
        d = evaluate("calendar.read", [allow], is_local_request=False)
        assert d.allowed is True
        assert d.matched_rule == allow

    def test_deny_wins_over_allow(self):
        """A matching deny beats any allow, however specific"""
        deny = Rule("settings.*", DENY)
        rules = [Rule("settings.delete", ALLOW), deny]
        d = evaluate("settings.delete", rules, is_local_request=True)
        assert d.allowed is False
        assert d.matched_rule == deny

    def test_deny_applies_even_when_local_only_and_remote(self):
        """local_only never weakens a deny"""
        deny = Rule("*", DENY, local_only=True)
        d = evaluate("calendar.read", [Rule("*", ALLOW), deny], is_local_request=False)
        assert d.allowed is False
        assert d.matched_rule == deny

    def test_settings_wildcard_allow_with_specific_deny(self):
        rules = [Rule("settings.*", ALLOW), Rule("settings.delete", DENY)]
        assert evaluate("settings.read", rules, is_local_request=False).allowed is True
        assert evaluate("settings.delete", rules, is_local_request=False).allowed is False

    def test_most_specific_allow_is_reported(self):
        """Fewer wildcards first, then the longer pattern"""
        star = Rule("*", ALLOW)
        prefix = Rule("calendar.*", ALLOW)
        exact = Rule("calendar.read", ALLOW)
        d = evaluate("calendar.read", [star, prefix, exact], is_local_request=False)
        assert d.matched_rule == exact

        d = evaluate("calendar.create", [star, prefix, exact], is_local_request=False)
        assert d.matched_rule == prefix

    def test_longer_pattern_breaks_wildcard_tie(self):
        short = Rule("cal*", ALLOW)
        long = Rule("calendar.*", ALLOW)
        d = evaluate("calendar.read", [short, long], is_local_request=False)
        assert d.matched_rule == long

    def test_local_only_allow_requires_local_request(self):
        rule = Rule("dashboard.read", ALLOW, local_only=True)
        assert evaluate("dashboard.read", [rule], is_local_request=True).allowed is True
        assert evaluate("dashboard.read", [rule], is_local_request=False).allowed is False

    def test_local_only_allow_skipped_in_favour_of_general_allow(self):
        local = Rule("dashboard.read", ALLOW, local_only=True)
        general = Rule("dashboard.*", ALLOW)
        d = evaluate("dashboard.read", [local, general], is_local_request=False)
        assert d.allowed is True
        assert d.matched_rule == general

    def test_deterministic(self):
        """Same inputs produce the same decision"""
        rules = [Rule("*", ALLOW), Rule("settings.*", DENY), Rule("calendar.read", ALLOW, local_only=True)]
        first = evaluate("calendar.read", rules, is_local_request=True)
        for _ in range(5):
            assert evaluate("calendar.read", rules, is_local_request=True) == first

    def test_accepts_any_iterable(self):
        rules = (r for r in [Rule("calendar.*", ALLOW), Rule("calendar.delete", DENY)])
        assert evaluate("calendar.delete", rules, is_local_request=True).allowed is False

    def test_is_allowed(self):
        assert is_allowed("x", [Rule("*", ALLOW)], is_local_request=False) is True
        assert is_allowed("x", [], is_local_request=False) is False


class TestRule:
    """Tests for Rule construction"""

    def test_invalid_effect_rejected(self):
        with pytest.raises(ValueError):
            Rule("calendar.*", "maybe")

    def test_from_mapping_accepts_camel_case(self):
        rule = Rule.from_mapping({"actionPattern": "calendar.*", "effect": "Allow", "localOnly": True})
        assert rule == Rule("calendar.*", ALLOW, local_only=True)

    def test_from_mapping_requires_pattern(self):
        with pytest.raises(ValueError):
            Rule.from_mapping({"effect": "allow"})
        with pytest.raises(ValueError):
            Rule.from_mapping({"action_pattern": "  ", "effect": "allow"})

    def test_to_dict(self):
        assert Rule("a.*", DENY).to_dict() == {"action_pattern": "a.*", "effect": "deny", "local_only": False}

    def test_wildcard_count(self):
        assert Rule("*.*", ALLOW).wildcard_count == 2
        assert Rule("a.b", ALLOW).wildcard_count == 0
