"""Unit tests for user token login, refresh and status."""
import os
import shutil
import sys
import tempfile
from urllib.parse import parse_qs, urlparse

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../src'))

from fakes import (
    APP_ID,
    APP_SECRET,
    DEFAULT_ACCOUNT,
    NOW,
    FakeKeyring,
    FakeRequest,
    make_config,
    make_state,
)
from lark_cli.auth.selection import LoginScopeRequest
from lark_cli.auth.user_token import (
    UserTokenManager,
    format_unix_time,
    resolve_login_request,
)
from lark_cli.core import UserAccount, UserRefreshTokenPayload
from lark_cli.utils.errors import (
    ConflictingFlagsError,
    LarkCLIError,
    RefreshRejectedError,
    TokenEndpointError,
    TokenMissingOrExpiredError,
)

TOKEN_URL = "https://open.feishu.cn/open-apis/authen/v2/oauth/token"


def refresh_ok(**overrides):
    body = {
        "code": 0,
        "access_token": "u-new",
        "refresh_token": "r-new",
        "expires_in": 7200,
        "scope": "drive:drive offline_access",
    }
    body.update(overrides)
    return body


class TestEnsureUserToken:
    """Tests for UserTokenManager.ensure."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.request = FakeRequest()

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _state(self, account=None):
        config = make_config()
        if account is not None:
            config.user_accounts[DEFAULT_ACCOUNT] = account
        return make_state(self.temp_dir, config=config, request=self.request)

    def test_valid_cached_token(self):
        state = self._state(
            UserAccount(user_access_token="u-old", user_access_token_expires_at=NOW + 600)
        )

        assert UserTokenManager(state).ensure() == "u-old"
        assert self.request.calls == []

    def test_no_refresh_token(self):
        state = self._state(
            UserAccount(user_access_token="u-old", user_access_token_expires_at=NOW - 1)
        )

        with pytest.raises(TokenMissingOrExpiredError) as exc_info:
            UserTokenManager(state).ensure()

        assert "lark auth user login" in exc_info.value.remediation
        assert self.request.calls == []

    def test_unknown_account(self):
        state = self._state()
        with pytest.raises(TokenMissingOrExpiredError):
            UserTokenManager(state).ensure("nobody")

    def test_refresh_persists_rotated_token(self):
        state = self._state(
            UserAccount(
                user_access_token="u-old",
                user_access_token_expires_at=NOW + 30,
                refresh_token="r-old",
                user_refresh_token_payload=UserRefreshTokenPayload(
                    services=["drive"], scopes="offline_access drive:drive", created_at=1
                ),
            )
        )
        self.request.queue(refresh_ok())

        assert UserTokenManager(state).ensure() == "u-new"

        call = self.request.calls[0]
        assert call["url"] == TOKEN_URL
        assert call["json"] == {
            "grant_type": "refresh_token",
            "client_id": APP_ID,
            "client_secret": APP_SECRET,
            "refresh_token": "r-old",
        }
        account = state.config.user_accounts[DEFAULT_ACCOUNT]
        assert account.user_access_token == "u-new"
        assert account.refresh_token == "r-new"
        assert account.user_access_token_expires_at == NOW + 7200
        assert account.user_access_token_scope == "offline_access drive:drive"
        assert account.user_refresh_token_payload.created_at == NOW
        assert os.path.exists(state.config_path)

    def test_refresh_without_rotation_keeps_old_refresh_token(self):
        state = self._state(UserAccount(refresh_token="r-old", user_access_token_scope="a:b"))
        body = refresh_ok()
        del body["refresh_token"]
        del body["scope"]
        self.request.queue(body)

        UserTokenManager(state).ensure()

        account = state.config.user_accounts[DEFAULT_ACCOUNT]
        assert account.refresh_token == "r-old"
        assert account.user_access_token_scope == "a:b"

    def test_rejected_refresh_changes_nothing(self):
        state = self._state(
            UserAccount(
                user_access_token="u-old",
                user_access_token_expires_at=NOW - 5,
                refresh_token="r-old",
                user_scopes=["offline_access", "drive:drive"],
            )
        )
        self.request.queue(
            {"error": "invalid_grant", "error_description": "refresh token revoked", "code": 20064},
            status=400,
        )

        with pytest.raises(RefreshRejectedError) as exc_info:
            UserTokenManager(state).ensure()

        assert "refresh token revoked" in str(exc_info.value)
        assert "--force-consent" in exc_info.value.remediation
        account = state.config.user_accounts[DEFAULT_ACCOUNT]
        assert account.refresh_token == "r-old"
        assert account.user_access_token == "u-old"
        assert not os.path.exists(state.config_path)

    def test_rejected_refresh_with_ok_status(self):
        state = self._state(UserAccount(refresh_token="r-old"))
        self.request.queue({"code": 20037, "msg": "refresh token expired"})

        with pytest.raises(RefreshRejectedError):
            UserTokenManager(state).ensure()

    def test_server_error_is_transient(self):
        state = self._state(UserAccount(refresh_token="r-old"))
        self.request.queue("upstream failure", status=503)

        with pytest.raises(TokenEndpointError) as exc_info:
            UserTokenManager(state).ensure()

        assert not isinstance(exc_info.value, RefreshRejectedError)
        assert state.config.user_accounts[DEFAULT_ACCOUNT].refresh_token == "r-old"

    def test_rate_limit_is_transient(self):
        state = self._state(UserAccount(refresh_token="r-old"))
        self.request.queue({"code": 99991400, "msg": "too many requests"})

        with pytest.raises(TokenEndpointError):
            UserTokenManager(state).ensure()

    def test_refresh_through_keychain(self):
        backend = FakeKeyring()
        config = make_config(keyring_backend="keychain")
        config.user_accounts[DEFAULT_ACCOUNT] = UserAccount(refresh_token="r-old")
        state = make_state(
            self.temp_dir, config=config, keyring_backend=backend, request=self.request
        )
        self.request.queue(refresh_ok())

        UserTokenManager(state).ensure()

        account = state.config.user_accounts[DEFAULT_ACCOUNT]
        assert account.refresh_token == ""
        username = f"{APP_ID}:https://open.feishu.cn:{DEFAULT_ACCOUNT}:user-refresh-token"
        assert backend.entries[("lark-cli", username)] == "r-new"


class TestUserLogin:
    """Tests for the authorization-code login."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.request = FakeRequest()
        self.state = make_state(self.temp_dir, request=self.request)
        self.received = {}

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _receiver(self, code="auth-code"):
        def receive(auth_url, expected_state, open_browser, timeout):
            self.received.update(
                url=auth_url, state=expected_state, open_browser=open_browser, timeout=timeout
            )
            return code

        return receive

    def test_authorization_url_uses_pkce(self):
        manager = UserTokenManager(self.state)
        url, state, verifier = manager.authorization_url(
            APP_ID, APP_SECRET, ["offline_access", "drive:drive"], force_consent=True
        )

        parsed = urlparse(url)
        query = parse_qs(parsed.query)
        assert parsed.netloc == "open.feishu.cn"
        assert parsed.path == "/open-apis/authen/v1/authorize"
        assert query["client_id"] == [APP_ID]
        assert query["scope"] == ["offline_access drive:drive"]
        assert query["state"] == [state]
        assert query["code_challenge_method"] == ["S256"]
        assert query["prompt"] == ["consent"]
        assert query["redirect_uri"] == ["http://localhost:17653/oauth/callback"]
        assert verifier

    def test_login_persists_tokens_and_payload(self):
        self.request.queue(refresh_ok(access_token="u-1", refresh_token="r-1"))
        manager = UserTokenManager(self.state, code_receiver=self._receiver())
        request = LoginScopeRequest(
            scopes=["offline_access", "drive:drive"], services=["drive"], source="services"
        )

        status = manager.login(request, account="work", open_browser=False, timeout=5)

        assert self.received["open_browser"] is False
        assert self.received["timeout"] == 5
        call = self.request.calls[0]
        assert call["json"]["grant_type"] == "authorization_code"
        assert call["json"]["code"] == "auth-code"
        assert call["json"]["code_verifier"]

        account = self.state.config.user_accounts["work"]
        assert account.refresh_token == "r-1"
        assert account.user_scopes == ["offline_access", "drive:drive"]
        assert account.user_refresh_token_payload.services == ["drive"]
        assert account.user_refresh_token_payload.created_at == NOW
        assert status.account == "work"
        assert status.refresh_token_present is True
        assert status.expires_at_rfc3339 == format_unix_time(NOW + 7200)

    def test_login_forces_offline_access(self):
        self.request.queue(refresh_ok())
        manager = UserTokenManager(self.state, code_receiver=self._receiver())

        manager.login(LoginScopeRequest(scopes=["drive:drive"]))

        query = parse_qs(urlparse(self.received["url"]).query)
        assert query["scope"] == ["offline_access drive:drive"]

    def test_login_without_refresh_token_persists_nothing(self):
        body = refresh_ok()
        del body["refresh_token"]
        self.request.queue(body)
        manager = UserTokenManager(self.state, code_receiver=self._receiver())

        with pytest.raises(TokenMissingOrExpiredError) as exc_info:
            manager.login(LoginScopeRequest(scopes=["offline_access"]))

        assert "refresh_token missing" in str(exc_info.value)
        assert DEFAULT_ACCOUNT not in self.state.config.user_accounts
        assert not os.path.exists(self.state.config_path)

    def test_failed_exchange(self):
        self.request.queue({"error": "invalid_grant", "code": 20003}, status=400)
        manager = UserTokenManager(self.state, code_receiver=self._receiver())

        with pytest.raises(TokenEndpointError):
            manager.login(LoginScopeRequest(scopes=["offline_access"]))

    def test_empty_code(self):
        manager = UserTokenManager(self.state, code_receiver=self._receiver(code=""))

        with pytest.raises(LarkCLIError):
            manager.login(LoginScopeRequest(scopes=["offline_access"]))
        assert self.request.calls == []


class TestLoginRequest:
    """Tests for choosing the scopes of a login."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.state = make_state(self.temp_dir)

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_scopes_conflict_with_services(self):
        with pytest.raises(ConflictingFlagsError):
            resolve_login_request(self.state, scopes=["drive:drive"], services=["drive"])
        with pytest.raises(ConflictingFlagsError):
            resolve_login_request(self.state, scopes=["drive:drive"], readonly=True)

    def test_explicit_scopes(self):
        request = resolve_login_request(self.state, scopes=["wiki:wiki,drive:drive"])
        assert request.scopes == ["offline_access", "drive:drive", "wiki:wiki"]
        assert request.source == "flag"

    def test_services(self):
        request = resolve_login_request(self.state, services=["drive"], readonly=True)
        assert request.scopes == ["offline_access", "drive:drive:readonly"]
        assert request.services == ["drive"]
        assert request.source == "services"

    def test_readonly_alone_uses_default_services(self):
        request = resolve_login_request(self.state, readonly=True)
        assert request.services == ["drive"]

    def test_previous_selection(self):
        self.state.config.user_accounts[DEFAULT_ACCOUNT] = UserAccount(
            user_scopes=["offline_access", "wiki:wiki"]
        )
        request = resolve_login_request(self.state)
        assert request.scopes == ["offline_access", "wiki:wiki"]
        assert request.source == "previous"

    def test_defaults(self):
        request = resolve_login_request(self.state)
        assert request.scopes == ["offline_access"]
        assert request.source == "default"


class TestStatus:
    """Tests for account status reporting."""

    def test_status_without_tokens_suggests_login(self):
        temp_dir = tempfile.mkdtemp()
        try:
            state = make_state(temp_dir)
            status = UserTokenManager(state).status()
            assert status.account == DEFAULT_ACCOUNT
            assert status.refresh_token_present is False
            assert status.remediation.startswith("lark auth user login")
            assert "u-" not in str(status.to_dict())
        finally:
            shutil.rmtree(temp_dir, ignore_errors=True)

    def test_format_unix_time(self):
        assert format_unix_time(0) == ""
        assert format_unix_time(1_700_000_000) == "2023-11-14T22:13:20Z"
