"""
User OAuth token management for the lark CLI.

This module runs the user authorization-code login (with PKCE) and the
refresh-token grant, and reports per-account token status. Tokens are read
and written through the credential store selected by keyring_backend.
"""

import logging
import os
import secrets
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from google_auth_oauthlib.flow import Flow

from ..core.config import UserRefreshTokenPayload
from ..utils.constants import RATE_LIMIT_CODES
from ..utils.errors import (
    ConflictingFlagsError,
    LarkCLIError,
    RefreshRejectedError,
    TokenEndpointError,
    TokenMissingOrExpiredError,
)
from . import registry
from .credential_store import StoredUserToken, load_user_token, save_user_token
from .oauth_callback_server import receive_authorization_code
from .oauth_config import OAuthConfig, get_oauth_config
from .scopes import (
    canonical_scope_string,
    canonicalize_scopes,
    ensure_offline_access,
    format_scopes,
    get_default_scopes,
    parse_scope_list,
)
from .selection import (
    LoginScopeRequest,
    ScopeSelection,
    SelectionHistory,
    Selector,
    run_selection,
)
from .tenant_token import cached_token_valid
from .token_endpoint import TokenResponse, post_json

logger = logging.getLogger(__name__)

CodeReceiver = Callable[[str, str, bool, Optional[float]], str]


@dataclass
class UserAccountStatus:
    """Token status of one user account, without secret values."""

    account: str
    access_token_present: bool
    refresh_token_present: bool
    expires_at: int
    expires_at_rfc3339: str
    scope: str
    refresh_token_services: List[str] = field(default_factory=list)
    refresh_token_scopes: str = ""
    refresh_token_created_at: int = 0
    remediation: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def format_unix_time(value: int) -> str:
    if not value:
        return ""
    return (
        datetime.fromtimestamp(value, tz=timezone.utc)
        .isoformat()
        .replace("+00:00", "Z")
    )


def relogin_command(scopes: Optional[List[str]] = None) -> str:
    """Login command that re-requests the given scopes with forced consent."""
    return registry.login_command(ensure_offline_access(scopes or []), force_consent=True)


def resolve_login_request(
    state: Any,
    account: Optional[str] = None,
    scopes: Optional[List[str]] = None,
    services: Optional[List[str]] = None,
    readonly: bool = False,
    selector: Optional[Selector] = None,
) -> LoginScopeRequest:
    """
    Work out which scopes a login should request.

    Sources, in order: explicit scopes, services (registry suggestions), the
    interactive selector, the account's previous selection, the defaults.

    Raises:
        ConflictingFlagsError: If scopes are combined with services or readonly.
        RegistryError: If a service is unknown or cannot use a user token.
        SelectionCanceledError: If the interactive selection is canceled.
    """
    if scopes and (services or readonly):
        raise ConflictingFlagsError("--scopes cannot be combined with --services or --readonly")

    if scopes:
        parsed = parse_scope_list(",".join(scopes))
        return LoginScopeRequest(scopes=canonicalize_scopes(parsed), source="flag")

    if services or readonly:
        names = registry.expand_service_aliases(services or []) or list(
            registry.DEFAULT_USER_OAUTH_SERVICES
        )
        suggested = registry.user_oauth_scopes_from_services(names, readonly)
        return LoginScopeRequest(
            scopes=canonicalize_scopes(suggested), services=names, source="services"
        )

    history = SelectionHistory.from_config(state.config, state.resolve_account(account))
    if selector is not None:
        return run_selection(ScopeSelection(history), selector)

    if history.scopes:
        return LoginScopeRequest(
            scopes=canonicalize_scopes(history.scopes),
            services=history.services,
            source="previous",
        )
    if history.services:
        suggested = registry.user_oauth_scopes_from_services(history.services)
        return LoginScopeRequest(
            scopes=canonicalize_scopes(suggested),
            services=history.services,
            source="previous",
        )
    return LoginScopeRequest(scopes=canonicalize_scopes(get_default_scopes()), source="default")


class UserTokenManager:
    """Login, refresh and status of user OAuth tokens for one AppState."""

    def __init__(
        self,
        state: Any,
        oauth_config: Optional[OAuthConfig] = None,
        code_receiver: Optional[CodeReceiver] = None,
    ) -> None:
        self.state = state
        self.oauth_config = oauth_config or get_oauth_config()
        self.code_receiver = code_receiver or self._receive_code

    def _receive_code(
        self, auth_url: str, expected_state: str, open_browser: bool, timeout: Optional[float]
    ) -> str:
        return receive_authorization_code(
            auth_url,
            expected_state,
            open_browser=open_browser,
            timeout=timeout,
            oauth_config=self.oauth_config,
        )

    def _account_scopes(self, account_name: str) -> List[str]:
        account = self.state.config.get_account(account_name)
        return list(account.user_scopes) if account is not None else []

    # Refresh

    def ensure(self, account: Optional[str] = None) -> str:
        """
        Return a valid user access token, refreshing it when needed.

        Args:
            account: Account name; resolved through AppState when None.

        Raises:
            ConfigurationError: If app credentials are missing.
            TokenMissingOrExpiredError: If no valid token and no refresh token exist.
            RefreshRejectedError: If the refresh token is rejected; nothing is persisted.
            TokenEndpointError: On transient or rate-limit failures of the endpoint.
        """
        app_id, app_secret = self.state.require_credentials()
        name = self.state.resolve_account(account)
        stored = load_user_token(self.state, name)
        now = self.state.now()

        if cached_token_valid(stored.access_token, stored.expires_at, now):
            logger.debug(f"Using cached user access token for account {name!r}")
            return stored.access_token

        if not stored.refresh_token:
            raise TokenMissingOrExpiredError(
                f"user access token missing or expired for account {name!r} "
                "and no refresh token is stored",
                remediation=relogin_command(self._account_scopes(name)),
            )

        refreshed = self._refresh(name, stored, app_id, app_secret, now)
        save_user_token(self.state, name, refreshed)
        if refreshed.refresh_token != stored.refresh_token:
            account = self.state.config.get_account(name, create=True)
            if account.user_refresh_token_payload is not None:
                account.user_refresh_token_payload.created_at = now
        self.state.save_config()
        logger.info(f"Refreshed user access token for account {name!r}")
        return refreshed.access_token

    def _refresh(
        self,
        account_name: str,
        stored: StoredUserToken,
        app_id: str,
        app_secret: str,
        now: int,
    ) -> StoredUserToken:
        response = post_json(
            self.state.request,
            self.oauth_config.user_token_url(self.state.config.effective_base_url()),
            {
                "grant_type": "refresh_token",
                "client_id": app_id,
                "client_secret": app_secret,
                "refresh_token": stored.refresh_token,
            },
            timeout=self.oauth_config.http_timeout,
        )

        if response.status >= 500 or response.status == 429 or response.code in RATE_LIMIT_CODES:
            raise TokenEndpointError(
                f"refresh user access token failed: {response.message}",
                status=response.status,
                code=response.code or None,
            )
        if not response.ok or response.code != 0 or response.body.get("error"):
            raise RefreshRejectedError(
                f"refresh token rejected for account {account_name!r}: "
                f"{response.message}; full relogin required",
                remediation=relogin_command(self._account_scopes(account_name)),
            )

        access_token, expires_in = self._parse_token(response, "refresh user access token")
        granted = canonical_scope_string(response.body.get("scope") or "")
        return StoredUserToken(
            access_token=access_token,
            refresh_token=response.body.get("refresh_token") or stored.refresh_token,
            expires_at=now + expires_in,
            scope=granted or stored.scope,
        )

    @staticmethod
    def _parse_token(response: TokenResponse, action: str) -> Tuple[str, int]:
        access_token = response.body.get("access_token") or ""
        try:
            expires_in = int(response.body.get("expires_in") or 0)
        except (TypeError, ValueError):
            expires_in = 0
        if not access_token or expires_in <= 0:
            raise TokenEndpointError(
                f"{action} failed: response missing access_token or expires_in",
                status=response.status,
            )
        return access_token, expires_in

    # Login

    def authorization_url(
        self,
        app_id: str,
        app_secret: str,
        scopes: List[str],
        force_consent: bool = False,
        oauth_state: Optional[str] = None,
    ) -> Tuple[str, str, str]:
        """
        Build the authorization URL with PKCE.

        Returns:
            Tuple of (url, state, code_verifier).
        """
        base_url = self.state.config.effective_base_url()
        client_config = {
            "web": {
                "client_id": app_id,
                "client_secret": app_secret,
                "auth_uri": self.oauth_config.authorize_url(base_url),
                "token_uri": self.oauth_config.user_token_url(base_url),
            }
        }
        flow = Flow.from_client_config(
            client_config,
            scopes=scopes,
            redirect_uri=self.oauth_config.redirect_uri,
            state=oauth_state or secrets.token_urlsafe(16),
            autogenerate_code_verifier=True,
        )
        kwargs = {}
        if force_consent:
            kwargs["prompt"] = "consent"
        url, returned_state = flow.authorization_url(**kwargs)
        logger.debug(f"Authorization URL built. State: {returned_state[:8]}...")
        return url, returned_state, flow.code_verifier

    def exchange_code(
        self, app_id: str, app_secret: str, code: str, code_verifier: str
    ) -> StoredUserToken:
        """
        Exchange an authorization code for user tokens.

        Raises:
            TokenEndpointError: If the exchange fails.
        """
        response = post_json(
            self.state.request,
            self.oauth_config.user_token_url(self.state.config.effective_base_url()),
            {
                "grant_type": "authorization_code",
                "client_id": app_id,
                "client_secret": app_secret,
                "code": code,
                "redirect_uri": self.oauth_config.redirect_uri,
                "code_verifier": code_verifier,
            },
            timeout=self.oauth_config.http_timeout,
        )
        if not response.ok or response.code != 0 or response.body.get("error"):
            raise TokenEndpointError(
                f"exchange authorization code failed: {response.message}",
                status=response.status,
                code=response.code or None,
            )
        access_token, expires_in = self._parse_token(response, "exchange authorization code")
        return StoredUserToken(
            access_token=access_token,
            refresh_token=response.body.get("refresh_token") or "",
            expires_at=self.state.now() + expires_in,
            scope=canonical_scope_string(response.body.get("scope") or ""),
        )

    def login(
        self,
        request: LoginScopeRequest,
        account: Optional[str] = None,
        force_consent: bool = False,
        open_browser: bool = True,
        timeout: Optional[float] = None,
    ) -> UserAccountStatus:
        """
        Run the full authorization-code login for an account.

        Nothing is persisted unless the code exchange succeeds and returns a
        refresh token.

        Args:
            request: Scopes to request.
            account: Account name; resolved through AppState when None.
            force_consent: Ask the user to consent again.
            open_browser: Open the authorization URL in a browser.
            timeout: Seconds to wait for the redirect.

        Returns:
            Status of the account after login.
        """
        app_id, app_secret = self.state.require_credentials()
        name = self.state.resolve_account(account)
        scopes = ensure_offline_access(request.scopes)

        auth_url, oauth_state, code_verifier = self.authorization_url(
            app_id, app_secret, scopes, force_consent=force_consent
        )
        logger.info(f"Starting user login for account {name!r} with scopes: {format_scopes(scopes)}")
        code = self.code_receiver(auth_url, oauth_state, open_browser, timeout)
        if not code:
            raise LarkCLIError("Login failed: empty authorization code")

        token = self.exchange_code(app_id, app_secret, code, code_verifier)
        if not token.refresh_token:
            raise TokenMissingOrExpiredError(
                "offline access was not granted: refresh_token missing",
                remediation=relogin_command(scopes),
            )

        account_record = self.state.config.get_account(name, create=True)
        account_record.user_scopes = scopes
        account_record.user_refresh_token_payload = UserRefreshTokenPayload(
            services=list(request.services),
            scopes=token.scope or format_scopes(scopes),
            created_at=self.state.now(),
        )
        save_user_token(self.state, name, token)
        self.state.save_config()
        logger.info(f"User login complete for account {name!r}")
        return self.status(name)

    # Status

    def status(self, account: Optional[str] = None) -> UserAccountStatus:
        """Report token presence, expiry and granted scopes of an account."""
        name = self.state.resolve_account(account)
        stored = load_user_token(self.state, name)
        record = self.state.config.get_account(name)
        payload = None
        if record is not None and record.belongs_to(self.state.identity()):
            payload = record.user_refresh_token_payload

        remediation = ""
        if not stored.refresh_token:
            remediation = relogin_command(self._account_scopes(name))

        return UserAccountStatus(
            account=name,
            access_token_present=bool(stored.access_token),
            refresh_token_present=bool(stored.refresh_token),
            expires_at=stored.expires_at,
            expires_at_rfc3339=format_unix_time(stored.expires_at),
            scope=stored.scope,
            refresh_token_services=list(payload.services) if payload else [],
            refresh_token_scopes=payload.scopes if payload else "",
            refresh_token_created_at=payload.created_at if payload else 0,
            remediation=remediation,
        )


def user_access_token_from_env() -> Optional[str]:
    """LARK_USER_ACCESS_TOKEN, when set."""
    token = os.getenv("LARK_USER_ACCESS_TOKEN", "").strip()
    return token or None
