"""
OAuth Configuration Management for the lark CLI.

This module centralizes OAuth-related configuration to eliminate hardcoded values.
PKCE (S256) is always used for the user authorization-code flow.
"""

import os
from typing import Optional

from ..core.config import normalize_base_url
from ..utils.constants import (
    DEFAULT_HTTP_TIMEOUT,
    DEFAULT_LOGIN_TIMEOUT,
    DEFAULT_OAUTH_CALLBACK_PATH,
    DEFAULT_OAUTH_PORT,
    TENANT_TOKEN_PATH,
    USER_AUTHORIZE_PATH,
    USER_TOKEN_PATH,
)


class OAuthConfig:
    """
    Centralized OAuth configuration management.

    Provides a single source of truth for the local callback listener and the
    Lark token endpoint URLs.
    """

    def __init__(self) -> None:
        # Local callback listener
        self.host = os.getenv("LARK_OAUTH_HOST", "localhost")
        self.port = int(os.getenv("LARK_OAUTH_PORT", str(DEFAULT_OAUTH_PORT)))
        self.callback_path = DEFAULT_OAUTH_CALLBACK_PATH

        # Timeouts in seconds
        self.login_timeout = int(
            os.getenv("LARK_OAUTH_LOGIN_TIMEOUT", str(DEFAULT_LOGIN_TIMEOUT))
        )
        self.http_timeout = int(os.getenv("LARK_HTTP_TIMEOUT", str(DEFAULT_HTTP_TIMEOUT)))

        self.redirect_uri = self._get_redirect_uri()

    def _get_redirect_uri(self) -> str:
        """Get the OAuth redirect URI."""
        explicit_uri = os.getenv("LARK_OAUTH_REDIRECT_URI")
        if explicit_uri:
            return explicit_uri
        return f"http://{self.host}:{self.port}{self.callback_path}"

    def authorize_url(self, base_url: str) -> str:
        return normalize_base_url(base_url) + USER_AUTHORIZE_PATH

    def user_token_url(self, base_url: str) -> str:
        return normalize_base_url(base_url) + USER_TOKEN_PATH

    def tenant_token_url(self, base_url: str) -> str:
        return normalize_base_url(base_url) + TENANT_TOKEN_PATH


# Global configuration instance
_oauth_config: Optional[OAuthConfig] = None


def get_oauth_config() -> OAuthConfig:
    """Get the global OAuth configuration instance."""
    global _oauth_config
    if _oauth_config is None:
        _oauth_config = OAuthConfig()
    return _oauth_config


def reload_oauth_config() -> OAuthConfig:
    """Reload the OAuth configuration from environment variables."""
    global _oauth_config
    _oauth_config = OAuthConfig()
    return _oauth_config
