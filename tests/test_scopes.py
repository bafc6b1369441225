"""Unit tests for OAuth scope helpers."""
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../src'))

from lark_cli.auth.scopes import (
    canonical_scope_string,
    canonicalize_scopes,
    missing_scopes,
    parse_scope_list,
    scope_satisfied,
    select_preferred_scopes,
)


class TestCanonicalizeScopes:
    """Tests for the canonical scope form."""

    def test_offline_access_forced_first(self):
        assert canonicalize_scopes(["wiki:wiki", "drive:drive"]) == [
            "offline_access",
            "drive:drive",
            "wiki:wiki",
        ]

    def test_duplicates_and_blanks_dropped(self):
        assert canonicalize_scopes(["drive:drive", " drive:drive ", "", "offline_access"]) == [
            "offline_access",
            "drive:drive",
        ]

    def test_idempotent(self):
        once = canonicalize_scopes(["task:task:read", "drive:drive", "offline_access"])
        assert canonicalize_scopes(once) == once

    def test_offline_optional(self):
        assert canonicalize_scopes(["b", "a"], require_offline=False) == ["a", "b"]
        assert canonicalize_scopes(["b", "offline_access"], require_offline=False) == [
            "offline_access",
            "b",
        ]

    def test_canonical_scope_string(self):
        assert canonical_scope_string("drive:drive offline_access") == "offline_access drive:drive"
        assert canonical_scope_string("") == ""


class TestScopeMatching:
    """Tests for granted-scope comparisons."""

    def test_parse_commas_and_whitespace(self):
        assert parse_scope_list("a, b\tc  a") == ["a", "b", "c"]

    def test_readonly_satisfied_by_full_scope(self):
        assert scope_satisfied("drive:drive:readonly", ["drive:drive"])
        assert not scope_satisfied("drive:drive:readonly", ["wiki:wiki"])

    def test_full_scope_satisfied_by_readonly_grant(self):
        assert scope_satisfied("drive:drive", ["offline_access", "drive:drive:readonly"])
        assert missing_scopes(["drive:drive"], ["drive:drive:readonly"]) == []
        assert not scope_satisfied("drive:drive", ["drive:drive:write"])

    def test_missing_scopes(self):
        assert missing_scopes(
            ["drive:drive", "wiki:wiki:readonly"], ["offline_access", "wiki:wiki"]
        ) == ["drive:drive"]
        assert missing_scopes(["drive:drive"], ["drive:drive"]) == []

    def test_select_preferred_scopes(self):
        assert select_preferred_scopes(
            ["drive:drive:readonly", "drive:drive", "wiki:wiki:readonly"]
        ) == ["drive:drive", "wiki:wiki:readonly"]
