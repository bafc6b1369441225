"""
Tenant access token management for the lark CLI.

The tenant token is fetched through the app-credential grant and cached in
the config file until it is within 60 seconds of expiring.
"""

import logging
from typing import Any, Optional, Tuple

from ..core.config import PersistedConfig
from ..utils.constants import TOKEN_EXPIRY_MARGIN_SECONDS
from ..utils.errors import TokenEndpointError
from .oauth_config import OAuthConfig, get_oauth_config
from .token_endpoint import post_json

logger = logging.getLogger(__name__)


def cached_token_valid(token: str, expires_at: int, now: int) -> bool:
    """A cached token is usable when set and valid beyond now + margin."""
    if not token or expires_at == 0:
        return False
    return expires_at > now + TOKEN_EXPIRY_MARGIN_SECONDS


def tenant_token_cached(config: PersistedConfig, now: int) -> bool:
    return cached_token_valid(
        config.tenant_access_token, config.tenant_access_token_expires_at, now
    )


class TenantTokenManager:
    """Fetches and caches the tenant access token for one AppState."""

    def __init__(self, state: Any, oauth_config: Optional[OAuthConfig] = None) -> None:
        self.state = state
        self.oauth_config = oauth_config or get_oauth_config()

    def ensure(self) -> str:
        """
        Return a valid tenant access token, granting a new one if needed.

        Returns:
            Tenant access token.

        Raises:
            ConfigurationError: If app_id or app_secret cannot be resolved.
            TokenEndpointError: If the grant fails; nothing is persisted.
        """
        app_id, app_secret = self.state.require_credentials()
        config = self.state.config
        now = self.state.now()

        if tenant_token_cached(config, now):
            logger.debug("Using cached tenant access token")
            return config.tenant_access_token

        token, expires_in = self._grant(app_id, app_secret)
        config.tenant_access_token = token
        config.tenant_access_token_expires_at = now + expires_in
        self.state.save_config()
        logger.info(f"Obtained tenant access token (expires in {expires_in}s)")
        return token

    def _grant(self, app_id: str, app_secret: str) -> Tuple[str, int]:
        url = self.oauth_config.tenant_token_url(self.state.config.effective_base_url())
        response = post_json(
            self.state.request,
            url,
            {"app_id": app_id, "app_secret": app_secret},
            timeout=self.oauth_config.http_timeout,
        )

        if not response.ok or response.code != 0:
            raise TokenEndpointError(
                f"tenant access token failed: {response.message}",
                status=response.status,
                code=response.code or None,
            )

        token = response.body.get("tenant_access_token") or ""
        try:
            expires_in = int(response.body.get("expire") or 0)
        except (TypeError, ValueError):
            expires_in = 0
        if not token or expires_in <= 0:
            raise TokenEndpointError(
                "tenant access token failed: response missing token or expiry",
                status=response.status,
            )
        return token, expires_in
