"""Unit tests for the OAuth callback server."""
import os
import sys
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../src'))

from lark_cli.auth.oauth_callback_server import (
    SUCCESS_MESSAGE,
    OAuthCallbackServer,
    receive_authorization_code,
)
from lark_cli.auth.oauth_config import OAuthConfig
from lark_cli.utils.errors import LarkCLIError


class TestOAuthCallbackRoute:
    """Tests for the redirect handler."""

    def setup_method(self):
        self.server = OAuthCallbackServer("expected-state")
        self.client = TestClient(self.server.app)

    def test_code_is_delivered(self):
        response = self.client.get(
            "/oauth/callback", params={"state": "expected-state", "code": "abc"}
        )

        assert response.status_code == 200
        assert SUCCESS_MESSAGE in response.text
        assert self.server.wait_for_code(0.1) == "abc"

    def test_state_mismatch_is_rejected(self):
        response = self.client.get("/oauth/callback", params={"state": "forged", "code": "abc"})

        assert response.status_code == 400
        assert "state mismatch" in response.text
        with pytest.raises(LarkCLIError) as exc_info:
            self.server.wait_for_code(0.1)
        assert "state mismatch" in str(exc_info.value)

    def test_error_redirect(self):
        response = self.client.get(
            "/oauth/callback",
            params={
                "state": "expected-state",
                "error": "access_denied",
                "error_description": "user <b>declined</b>",
            },
        )

        assert response.status_code == 400
        assert "<b>declined</b>" not in response.text
        with pytest.raises(LarkCLIError) as exc_info:
            self.server.wait_for_code(0.1)
        assert "access_denied" in str(exc_info.value)

    def test_missing_code(self):
        response = self.client.get("/oauth/callback", params={"state": "expected-state"})
        assert response.status_code == 400

    def test_first_redirect_wins(self):
        self.client.get("/oauth/callback", params={"state": "expected-state", "code": "first"})
        self.client.get("/oauth/callback", params={"state": "forged", "code": "second"})
        assert self.server.wait_for_code(0.1) == "first"

    def test_timeout(self):
        with pytest.raises(LarkCLIError) as exc_info:
            self.server.wait_for_code(0.01)
        assert "timed out" in str(exc_info.value)


class TestReceiveAuthorizationCode:
    """Tests for the browser leg of the login."""

    def test_server_start_failure(self):
        with patch.object(OAuthCallbackServer, "start", return_value=(False, "Port 1 is already in use")):
            with pytest.raises(LarkCLIError) as exc_info:
                receive_authorization_code("https://example/auth", "s", open_browser=False)
        assert "already in use" in str(exc_info.value)

    def test_prints_url_and_stops_server(self):
        printed = []
        with patch.object(OAuthCallbackServer, "start", return_value=(True, "")), \
                patch.object(OAuthCallbackServer, "wait_for_code", return_value="abc"), \
                patch.object(OAuthCallbackServer, "stop") as stop, \
                patch("lark_cli.auth.oauth_callback_server.webbrowser.open") as browser:
            code = receive_authorization_code(
                "https://example/auth",
                "s",
                open_browser=False,
                oauth_config=OAuthConfig(),
                echo=printed.append,
            )

        assert code == "abc"
        assert "https://example/auth" in printed
        browser.assert_not_called()
        stop.assert_called_once()
