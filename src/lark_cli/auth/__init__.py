"""
Credential and access-token lifecycle for the lark CLI.

This package provides:
- Swappable secret storage (config file or OS keychain)
- The auth registry of per-command token types and OAuth scopes
- Tenant and user token managers with caching and refresh
- Token resolution and missing-scope hints for API errors
"""

from .credential_store import (
    Bucket,
    CredentialStore,
    FileCredentialStore,
    KeyringCredentialStore,
    get_keyring_store,
    set_keyring_store,
    persist_app_secret,
    resolve_app_secret_storage,
)
from .registry import (
    AuthRequirement,
    explain_command,
    list_user_oauth_services,
    requirements_for_command,
    required_user_scopes_from_services_report,
    suggested_user_oauth_scopes_from_services,
)
from .scopes import OFFLINE_ACCESS, canonicalize_scopes
from .tenant_token import TenantTokenManager
from .user_token import UserTokenManager, UserAccountStatus, resolve_login_request
from .resolver import (
    TokenOverride,
    TokenPolicy,
    TokenResolver,
    decide_token_type,
    run_with_token,
)
from .scope_hint import ScopeHintEnricher

__all__ = [
    # Credential Store
    "Bucket",
    "CredentialStore",
    "FileCredentialStore",
    "KeyringCredentialStore",
    "get_keyring_store",
    "set_keyring_store",
    "persist_app_secret",
    "resolve_app_secret_storage",
    # Registry
    "AuthRequirement",
    "explain_command",
    "list_user_oauth_services",
    "requirements_for_command",
    "required_user_scopes_from_services_report",
    "suggested_user_oauth_scopes_from_services",
    # Scopes
    "OFFLINE_ACCESS",
    "canonicalize_scopes",
    # Token managers
    "TenantTokenManager",
    "UserTokenManager",
    "UserAccountStatus",
    "resolve_login_request",
    # Resolution
    "TokenOverride",
    "TokenPolicy",
    "TokenResolver",
    "decide_token_type",
    "run_with_token",
    "ScopeHintEnricher",
]
