"""Unit tests for the tenant token manager."""
import os
import shutil
import sys
import tempfile

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../src'))

from fakes import APP_ID, APP_SECRET, NOW, Clock, FakeRequest, make_config, make_state, read_config_file
from lark_cli.auth.tenant_token import TenantTokenManager, cached_token_valid
from lark_cli.utils.errors import ConfigurationError, TokenEndpointError

GRANT_OK = {"code": 0, "msg": "ok", "tenant_access_token": "t-new", "expire": 7200}


class TestCachedTokenValid:
    """Tests for the expiry margin."""

    def test_margin_is_sixty_seconds(self):
        assert cached_token_valid("t", NOW + 61, NOW)
        assert not cached_token_valid("t", NOW + 60, NOW)

    def test_empty_token_or_zero_expiry(self):
        assert not cached_token_valid("", NOW + 3600, NOW)
        assert not cached_token_valid("t", 0, NOW)


class TestTenantTokenManager:
    """Tests for TenantTokenManager.ensure."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.request = FakeRequest()
        self.clock = Clock()

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _state(self, **config_values):
        return make_state(
            self.temp_dir,
            config=make_config(**config_values),
            request=self.request,
            clock=self.clock,
        )

    def test_cached_token_makes_no_request(self):
        state = self._state(
            tenant_access_token="t-cached", tenant_access_token_expires_at=NOW + 3600
        )

        assert TenantTokenManager(state).ensure() == "t-cached"
        assert self.request.calls == []

    def test_expired_token_is_granted_once(self):
        state = self._state(tenant_access_token="t-old", tenant_access_token_expires_at=NOW + 30)
        self.request.queue(GRANT_OK)
        manager = TenantTokenManager(state)

        assert manager.ensure() == "t-new"
        assert manager.ensure() == "t-new"

        assert len(self.request.calls) == 1
        call = self.request.calls[0]
        assert call["url"] == "https://open.feishu.cn/open-apis/auth/v3/tenant_access_token/internal"
        assert call["method"] == "POST"
        assert call["json"] == {"app_id": APP_ID, "app_secret": APP_SECRET}

    def test_granted_token_is_persisted(self):
        state = self._state()
        self.request.queue(GRANT_OK)

        TenantTokenManager(state).ensure()

        data = read_config_file(state)
        assert data["tenant_access_token"] == "t-new"
        assert data["tenant_access_token_expires_at"] == NOW + 7200

    def test_token_refetched_after_expiry(self):
        state = self._state()
        self.request.queue(GRANT_OK)
        self.request.queue(dict(GRANT_OK, tenant_access_token="t-next"))
        manager = TenantTokenManager(state)

        manager.ensure()
        self.clock.now += 7200 - 59
        assert manager.ensure() == "t-next"
        assert len(self.request.calls) == 2

    def test_business_error_is_not_persisted(self):
        state = self._state(tenant_access_token="t-old", tenant_access_token_expires_at=NOW - 1)
        self.request.queue({"code": 10003, "msg": "invalid app_secret"})

        with pytest.raises(TokenEndpointError) as exc_info:
            TenantTokenManager(state).ensure()

        assert "invalid app_secret" in str(exc_info.value)
        assert exc_info.value.code == 10003
        assert state.config.tenant_access_token == "t-old"
        assert not os.path.exists(state.config_path)

    def test_http_error(self):
        state = self._state()
        self.request.queue("Bad Gateway", status=502)

        with pytest.raises(TokenEndpointError) as exc_info:
            TenantTokenManager(state).ensure()
        assert exc_info.value.status == 502

    def test_missing_credentials(self):
        state = self._state(app_secret="")

        with pytest.raises(ConfigurationError) as exc_info:
            TenantTokenManager(state).ensure()

        assert "lark auth login" in str(exc_info.value)
        assert self.request.calls == []
