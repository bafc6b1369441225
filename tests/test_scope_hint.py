"""Unit tests for missing-scope hints."""
import os
import shutil
import sys
import tempfile

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../src'))

from fakes import make_state
from lark_cli.auth.scope_hint import (
    REAUTHORIZE_MARKER,
    ScopeHintEnricher,
    looks_like_permission_denied,
    scopes_from_message,
)
from lark_cli.core import set_command_path
from lark_cli.utils.errors import ApiError, ScopeInsufficientError


class TestPermissionDetection:
    """Tests for recognizing missing-scope failures."""

    def test_scope_code(self):
        assert looks_like_permission_denied(ApiError("denied", code=99991679))

    def test_other_code_is_not_a_scope_error(self):
        assert not looks_like_permission_denied(ApiError("scope of the request", code=1254302))

    def test_code_in_message(self):
        assert looks_like_permission_denied(RuntimeError("request failed (code=99991679)"))

    def test_retryable_errors_are_ignored(self):
        error = ApiError("rate limited", code=99991679, retryable=True)
        assert not looks_like_permission_denied(error)

    def test_message_fallback(self):
        assert looks_like_permission_denied(RuntimeError("Access denied: insufficient scope"))
        assert looks_like_permission_denied(RuntimeError("应用未获得所需的权限范围"))
        assert not looks_like_permission_denied(RuntimeError("not found"))

    def test_scopes_from_message(self):
        message = "required one of [drive:drive, drive:drive:readonly] for [file]"
        assert scopes_from_message(message) == ["drive:drive", "drive:drive:readonly"]


class TestScopeHintEnricher:
    """Tests for ScopeHintEnricher.enrich."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.state = make_state(self.temp_dir)
        self.enricher = ScopeHintEnricher()

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_scopes_from_message_are_preferred(self):
        set_command_path("drive search")
        error = ApiError("need [wiki:wiki:readonly, wiki:wiki]", code=99991679)

        enriched = self.enricher.enrich(self.state, error)

        assert isinstance(enriched, ScopeInsufficientError)
        assert enriched.missing_scopes == ["offline_access", "wiki:wiki"]
        assert enriched.__cause__ is error

    def test_hint_text(self):
        set_command_path("drive search")
        error = ApiError("permission denied", code=99991679)

        enriched = self.enricher.enrich(self.state, error)

        assert str(enriched) == (
            "permission denied (code=99991679)\n"
            "Missing user OAuth scopes: offline_access, drive:drive.\n"
            "Re-authorize with:\n"
            '  lark auth user login --scopes "offline_access drive:drive" --force-consent'
        )

    def test_rate_limit_passes_through(self):
        set_command_path("drive search")
        error = ApiError("too many requests", code=99991400, retryable=True)
        assert self.enricher.enrich(self.state, error) is error

    def test_already_enriched_passes_through(self):
        set_command_path("drive search")
        error = RuntimeError(f"scope missing\n{REAUTHORIZE_MARKER}\n  lark auth user login")
        assert self.enricher.enrich(self.state, error) is error

    def test_no_known_scopes(self):
        set_command_path("something unmapped")
        error = ApiError("permission denied", code=99991679)
        assert self.enricher.enrich(self.state, error) is error
