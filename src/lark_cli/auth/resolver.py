"""
Token resolution for the lark CLI.

Every command that calls the Lark API obtains its token here. The choice of
token type is a side-effect-free function of the requested type, the types
the command allows, the configured default and an optional override; the
resolver then delegates to the tenant or user token manager.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, List, Optional, Tuple, TypeVar

from ..utils.constants import TOKEN_TYPE_TENANT, TOKEN_TYPE_USER
from ..utils.errors import (
    ConflictingFlagsError,
    LarkCLIError,
    ScopeInsufficientError,
    TokenMissingOrExpiredError,
    UnsupportedTokenTypeError,
)
from . import registry
from .scope_hint import ScopeHintEnricher
from .scopes import format_scopes, missing_scopes, parse_scope_list
from .tenant_token import TenantTokenManager
from .user_token import UserTokenManager, relogin_command, user_access_token_from_env

logger = logging.getLogger(__name__)

T = TypeVar("T")


class TokenPolicy(str, Enum):
    AUTO = "auto"
    TENANT = TOKEN_TYPE_TENANT
    USER = TOKEN_TYPE_USER


# Allowed-set labels are ordered tenant, user
_POLICY_ORDER = (TokenPolicy.TENANT, TokenPolicy.USER)


@dataclass(frozen=True)
class TokenOverride:
    """One-shot token supplied for this invocation; never persisted."""

    token: str
    type: TokenPolicy


def parse_token_type(value: Optional[str]) -> TokenPolicy:
    """
    Parse a token type string; empty means auto.

    Raises:
        UnsupportedTokenTypeError: If the value is not auto, tenant or user.
    """
    text = (value or "").strip().lower()
    if not text:
        return TokenPolicy.AUTO
    try:
        return TokenPolicy(text)
    except ValueError:
        raise UnsupportedTokenTypeError(
            f"unknown token type {value!r} (expected auto, tenant, or user)"
        ) from None


def _allowed_label(allowed: Iterable[TokenPolicy]) -> str:
    allowed_set = set(allowed)
    return ", ".join(p.value for p in _POLICY_ORDER if p in allowed_set)


def decide_token_type(
    requested: TokenPolicy,
    allowed: Iterable[TokenPolicy],
    default_token_type: TokenPolicy = TokenPolicy.TENANT,
    override: Optional[TokenOverride] = None,
) -> TokenPolicy:
    """
    Pick the concrete token type for a command.

    Args:
        requested: Type asked for on the command line (AUTO when not given).
        allowed: Types the command may use.
        default_token_type: Configured default used for AUTO requests.
        override: Optional one-shot token.

    Returns:
        TokenPolicy.TENANT or TokenPolicy.USER.

    Raises:
        ConflictingFlagsError: If an override contradicts an explicit request.
        UnsupportedTokenTypeError: If the chosen type is not allowed.
    """
    allowed_set = {p for p in allowed if p is not TokenPolicy.AUTO}
    if not allowed_set:
        raise LarkCLIError("command declares no allowed token types")
    label = _allowed_label(allowed_set)

    if override is not None and override.token:
        if requested is not TokenPolicy.AUTO and requested is not override.type:
            raise ConflictingFlagsError(
                f"token type {requested.value} conflicts with provided "
                f"{override.type.value} token"
            )
        if override.type not in allowed_set:
            raise UnsupportedTokenTypeError(
                f"token type {override.type.value} not supported; supported: {label}"
            )
        return override.type

    if len(allowed_set) == 1:
        (only,) = allowed_set
        if requested is not TokenPolicy.AUTO and requested is not only:
            raise UnsupportedTokenTypeError(
                f"token type {requested.value} not supported; supported: {label}"
            )
        return only

    chosen = default_token_type if requested is TokenPolicy.AUTO else requested
    if chosen is TokenPolicy.AUTO:
        chosen = TokenPolicy.TENANT
    if chosen not in allowed_set:
        raise UnsupportedTokenTypeError(
            f"token type {chosen.value} not supported; supported: {label}"
        )
    return chosen


class TokenResolver:
    """Resolves the access token a command uses."""

    def __init__(
        self,
        state: Any,
        tenant_manager: Optional[TenantTokenManager] = None,
        user_manager: Optional[UserTokenManager] = None,
    ) -> None:
        self.state = state
        self.tenant_manager = tenant_manager or TenantTokenManager(state)
        self.user_manager = user_manager or UserTokenManager(state)

    def allowed_types(self, command: Optional[str] = None) -> List[TokenPolicy]:
        """Token types the command may use; unmapped commands allow both."""
        types = registry.token_types_for_command(command or self.state.command)
        if not types:
            return list(_POLICY_ORDER)
        return [TokenPolicy(t) for t in types]

    def override_for(self, allowed: Iterable[TokenPolicy]) -> Optional[TokenOverride]:
        """Override from --user-access-token, else LARK_USER_ACCESS_TOKEN when user is allowed."""
        if self.state.user_access_token:
            return TokenOverride(self.state.user_access_token, TokenPolicy.USER)
        env_token = user_access_token_from_env()
        if env_token and TokenPolicy.USER in set(allowed):
            return TokenOverride(env_token, TokenPolicy.USER)
        return None

    def resolve(
        self,
        allowed: Optional[Iterable[TokenPolicy]] = None,
        override: Optional[TokenOverride] = None,
        requested: Optional[TokenPolicy] = None,
    ) -> Tuple[str, TokenPolicy]:
        """
        Resolve a token for the executing command.

        Args:
            allowed: Allowed types; defaults to the registry entry of the command.
            override: One-shot token; defaults to the flag or environment override.
            requested: Requested type; defaults to the --token-type option.

        Returns:
            Tuple of (token, token type).
        """
        allowed_list = list(allowed) if allowed is not None else self.allowed_types()
        if override is None:
            override = self.override_for(allowed_list)
        if requested is None:
            requested = parse_token_type(self.state.token_type)
        default = TokenPolicy(self.state.config.effective_default_token_type())

        token_type = decide_token_type(requested, allowed_list, default, override)
        logger.debug(f"Resolved token type {token_type.value} for {self.state.command!r}")

        if override is not None and override.token:
            return override.token, token_type

        if token_type is TokenPolicy.TENANT:
            return self.tenant_manager.ensure(), token_type

        self.preflight()
        token = self.user_manager.ensure()
        if not token:
            raise TokenMissingOrExpiredError(
                "user access token is empty", remediation=relogin_command()
            )
        return token, token_type

    def preflight(self, command: Optional[str] = None, account: Optional[str] = None) -> None:
        """
        Check the account's granted scopes against the command's requirements.

        Passes when the command is unmapped or no granted scope is recorded.

        Raises:
            ScopeInsufficientError: If required scopes are missing.
        """
        command = command or self.state.command
        requirement = registry.requirements_for_command(command) if command else None
        if requirement is None:
            return

        name = self.state.resolve_account(account)
        record = self.state.config.get_account(name)
        if record is None or not record.belongs_to(self.state.identity()):
            return
        granted = parse_scope_list(record.user_access_token_scope)
        if not granted:
            return

        missing = missing_scopes(requirement.required_user_scopes, granted)
        if not missing:
            return

        remediation = relogin_command(list(granted) + missing)
        raise ScopeInsufficientError(
            f"user OAuth scopes missing for account {name!r}: {format_scopes(missing)}",
            missing_scopes=missing,
            remediation=remediation,
        )


def run_with_token(
    state: Any,
    fn: Callable[[str, TokenPolicy], T],
    resolver: Optional[TokenResolver] = None,
    allowed: Optional[Iterable[TokenPolicy]] = None,
    enricher: Optional[ScopeHintEnricher] = None,
) -> T:
    """
    Resolve a token, call ``fn(token, token_type)`` and enrich user-token failures.

    Errors from ``fn`` propagate; permission errors on user tokens gain
    missing-scope hints first.
    """
    resolver = resolver or TokenResolver(state)
    token, token_type = resolver.resolve(allowed=allowed)
    try:
        return fn(token, token_type)
    except Exception as e:
        if token_type is not TokenPolicy.USER:
            raise
        enriched = (enricher or ScopeHintEnricher()).enrich(state, e)
        if enriched is e:
            raise
        raise enriched from e
