"""
Persisted configuration for the lark CLI.

This module owns the JSON config file: its dataclass model, load/save with
restrictive permissions, environment fallbacks and base URL helpers.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from ..utils.constants import (
    DEFAULT_BASE_URL,
    DEFAULT_USER_ACCOUNT,
    KEYRING_BACKEND_AUTO,
    KEYRING_BACKEND_FILE,
    KEYRING_BACKEND_KEYCHAIN,
    PLATFORM_BASE_URLS,
    TOKEN_TYPE_TENANT,
    TOKEN_TYPE_USER,
)
from ..utils.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Config directory
CONFIG_DIR = os.path.expanduser(os.getenv("LARK_CONFIG_DIR", "~/.config/lark"))
CONFIG_FILE_NAME = "config.json"


@dataclass
class UserRefreshTokenPayload:
    """What a login originally asked for, so relogin can be rebuilt."""

    services: List[str] = field(default_factory=list)
    scopes: str = ""
    created_at: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserRefreshTokenPayload":
        return cls(
            services=list(data.get("services") or []),
            scopes=data.get("scopes") or "",
            created_at=int(data.get("created_at") or 0),
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.services:
            data["services"] = list(self.services)
        if self.scopes:
            data["scopes"] = self.scopes
        if self.created_at:
            data["created_at"] = self.created_at
        return data


@dataclass
class UserAccount:
    """One user OAuth identity under an application identity.

    ``bucket`` records the app identity key the tokens were issued for.
    """

    user_access_token: str = ""
    user_access_token_expires_at: int = 0
    refresh_token: str = ""
    user_scopes: List[str] = field(default_factory=list)
    user_access_token_scope: str = ""
    user_refresh_token_payload: Optional[UserRefreshTokenPayload] = None
    bucket: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserAccount":
        payload = data.get("user_refresh_token_payload")
        return cls(
            user_access_token=data.get("user_access_token") or "",
            user_access_token_expires_at=int(
                data.get("user_access_token_expires_at") or 0
            ),
            refresh_token=data.get("refresh_token") or "",
            user_scopes=list(data.get("user_scopes") or []),
            user_access_token_scope=data.get("user_access_token_scope") or "",
            user_refresh_token_payload=(
                UserRefreshTokenPayload.from_dict(payload) if payload else None
            ),
            bucket=data.get("bucket") or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.user_access_token:
            data["user_access_token"] = self.user_access_token
        if self.user_access_token_expires_at:
            data["user_access_token_expires_at"] = self.user_access_token_expires_at
        if self.refresh_token:
            data["refresh_token"] = self.refresh_token
        if self.user_scopes:
            data["user_scopes"] = list(self.user_scopes)
        if self.user_access_token_scope:
            data["user_access_token_scope"] = self.user_access_token_scope
        if self.user_refresh_token_payload is not None:
            payload = self.user_refresh_token_payload.to_dict()
            if payload:
                data["user_refresh_token_payload"] = payload
        if self.bucket:
            data["bucket"] = self.bucket
        return data

    def clear_tokens(self) -> None:
        """Forget tokens and grant metadata but keep the requested scopes."""
        self.user_access_token = ""
        self.user_access_token_expires_at = 0
        self.refresh_token = ""
        self.user_access_token_scope = ""
        self.user_refresh_token_payload = None
        self.bucket = ""

    def belongs_to(self, identity: "AppIdentity") -> bool:
        """False when the tokens were recorded for another app identity."""
        return not self.bucket or self.bucket == identity.key()


@dataclass(frozen=True)
class AppIdentity:
    """Application identity: the literal (app_id, base_url) pair."""

    app_id: str
    base_url: str

    def key(self) -> str:
        return f"{self.app_id}:{self.base_url}"


_PERSISTED_KEYS = (
    "app_id",
    "app_secret",
    "app_secret_in_keyring",
    "base_url",
    "default_token_type",
    "default_user_account",
    "keyring_backend",
    "user_scopes",
    "tenant_access_token",
    "tenant_access_token_expires_at",
    "user_accounts",
    "user_account_buckets",
)


@dataclass
class PersistedConfig:
    """Root record of the config file.

    Values taken from the environment live in the ``env_*`` fields and are
    never written back to disk.
    """

    app_id: str = ""
    app_secret: str = ""
    app_secret_in_keyring: bool = False
    base_url: str = ""
    default_token_type: str = ""
    default_user_account: str = ""
    keyring_backend: str = ""
    user_scopes: List[str] = field(default_factory=list)
    tenant_access_token: str = ""
    tenant_access_token_expires_at: int = 0
    user_accounts: Dict[str, UserAccount] = field(default_factory=dict)
    user_account_buckets: Dict[str, str] = field(default_factory=dict)
    extra: Dict[str, Any] = field(default_factory=dict, repr=False)
    env_app_id: str = field(default="", repr=False, compare=False)
    env_app_secret: str = field(default="", repr=False, compare=False)
    env_keyring_backend: str = field(default="", repr=False, compare=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PersistedConfig":
        accounts = {
            name: UserAccount.from_dict(account or {})
            for name, account in (data.get("user_accounts") or {}).items()
        }
        return cls(
            app_id=data.get("app_id") or "",
            app_secret=data.get("app_secret") or "",
            app_secret_in_keyring=bool(data.get("app_secret_in_keyring")),
            base_url=data.get("base_url") or "",
            default_token_type=data.get("default_token_type") or "",
            default_user_account=data.get("default_user_account") or "",
            keyring_backend=data.get("keyring_backend") or "",
            user_scopes=list(data.get("user_scopes") or []),
            tenant_access_token=data.get("tenant_access_token") or "",
            tenant_access_token_expires_at=int(
                data.get("tenant_access_token_expires_at") or 0
            ),
            user_accounts=accounts,
            user_account_buckets={
                str(k): str(v) for k, v in (data.get("user_account_buckets") or {}).items() if v
            },
            extra={k: v for k, v in data.items() if k not in _PERSISTED_KEYS},
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = dict(self.extra)
        data["app_id"] = self.app_id
        if self.app_secret:
            data["app_secret"] = self.app_secret
        if self.app_secret_in_keyring:
            data["app_secret_in_keyring"] = True
        data["base_url"] = self.base_url
        if self.default_token_type:
            data["default_token_type"] = self.default_token_type
        if self.default_user_account:
            data["default_user_account"] = self.default_user_account
        if self.keyring_backend:
            data["keyring_backend"] = self.keyring_backend
        if self.user_scopes:
            data["user_scopes"] = list(self.user_scopes)
        if self.tenant_access_token:
            data["tenant_access_token"] = self.tenant_access_token
        if self.tenant_access_token_expires_at:
            data["tenant_access_token_expires_at"] = self.tenant_access_token_expires_at
        accounts = {
            name: account.to_dict() for name, account in sorted(self.user_accounts.items())
        }
        if accounts:
            data["user_accounts"] = accounts
        if self.user_account_buckets:
            data["user_account_buckets"] = dict(sorted(self.user_account_buckets.items()))
        return data

    def resolved_app_id(self) -> str:
        return self.app_id or self.env_app_id

    def effective_base_url(self) -> str:
        return normalize_base_url(self.base_url) or DEFAULT_BASE_URL

    def effective_default_token_type(self) -> str:
        if self.default_token_type.strip().lower() == TOKEN_TYPE_USER:
            return TOKEN_TYPE_USER
        return TOKEN_TYPE_TENANT

    def effective_keyring_backend(self) -> str:
        """Return ``file`` or ``keychain``; ``auto`` and empty map to ``file``."""
        backend = (self.keyring_backend or self.env_keyring_backend).strip().lower()
        if backend == KEYRING_BACKEND_KEYCHAIN:
            return KEYRING_BACKEND_KEYCHAIN
        return KEYRING_BACKEND_FILE

    def identity(self) -> AppIdentity:
        return AppIdentity(self.resolved_app_id(), self.effective_base_url())

    def get_account(self, name: str, create: bool = False) -> Optional[UserAccount]:
        account = self.user_accounts.get(name)
        if account is None and create:
            account = UserAccount()
            self.user_accounts[name] = account
        return account

    def clear_tenant_token(self) -> None:
        self.tenant_access_token = ""
        self.tenant_access_token_expires_at = 0


def normalize_keyring_backend(value: str) -> str:
    """Validate a keyring backend name."""
    backend = value.strip().lower()
    if backend not in (KEYRING_BACKEND_FILE, KEYRING_BACKEND_KEYCHAIN, KEYRING_BACKEND_AUTO):
        raise ConfigurationError(
            f"invalid keyring backend {value!r} (expected file, keychain, or auto)"
        )
    return backend


def normalize_base_url(base_url: str) -> str:
    """Strip whitespace, trailing slashes and a trailing /open-apis segment."""
    url = (base_url or "").strip().rstrip("/")
    if url.endswith("/open-apis"):
        url = url[: -len("/open-apis")].rstrip("/")
    return url


def platform_base_url(platform: str) -> str:
    """Map a platform name (feishu or lark) to its base URL."""
    name = platform.strip().lower()
    if name not in PLATFORM_BASE_URLS:
        raise ConfigurationError(f"unknown platform {platform!r} (expected feishu or lark)")
    return PLATFORM_BASE_URLS[name]


def platform_from_base_url(base_url: str) -> str:
    """Guess the platform for a base URL; unknown hosts are ``custom``."""
    host = (urlparse(normalize_base_url(base_url)).hostname or "").lower()
    if host.endswith("larksuite.com") or host.endswith("larkoffice.com"):
        return "lark"
    if host.endswith("feishu.cn"):
        return "feishu"
    return "custom"


def user_account_bucket_key(app_id: str, base_url: str, profile: Optional[str] = None) -> str:
    """
    Key of the default user account bucket for an (app_id, base_url, profile).

    The base URL is normalized and lower-cased; an empty profile and any
    casing of "default" share one bucket.
    """
    name = (profile or "").strip()
    if not name or name.lower() == DEFAULT_USER_ACCOUNT:
        name = DEFAULT_USER_ACCOUNT
    return f"{app_id.strip()}|{normalize_base_url(base_url).lower()}|{name}"


def validate_profile_name(profile: str) -> str:
    name = profile.strip()
    if not name or ".." in name or "/" in name or "\\" in name:
        raise ConfigurationError(f"invalid profile name {profile!r}")
    return name


def default_config_path(profile: Optional[str] = None) -> str:
    """
    Get the config file path for a profile.

    Args:
        profile: Optional profile name; profiles live under CONFIG_DIR/profiles.

    Returns:
        Absolute path of the config file.
    """
    if profile:
        return os.path.join(
            CONFIG_DIR, "profiles", validate_profile_name(profile), CONFIG_FILE_NAME
        )
    return os.path.join(CONFIG_DIR, CONFIG_FILE_NAME)


def resolve_config_path(
    explicit_path: Optional[str] = None, profile: Optional[str] = None
) -> str:
    """Resolve the config path from flag, LARK_CONFIG, profile/LARK_PROFILE, default."""
    if explicit_path:
        return os.path.expanduser(explicit_path)
    env_path = os.getenv("LARK_CONFIG")
    if env_path:
        return os.path.expanduser(env_path)
    return default_config_path(profile or os.getenv("LARK_PROFILE"))


def apply_env_fallbacks(config: PersistedConfig) -> None:
    """Fill env_* fields for values the config file leaves empty."""
    if not config.app_id:
        config.env_app_id = os.getenv("LARK_APP_ID", "").strip()
    if not config.app_secret:
        config.env_app_secret = os.getenv("LARK_APP_SECRET", "").strip()
    if not config.keyring_backend:
        config.env_keyring_backend = os.getenv("LARK_KEYRING_BACKEND", "").strip()


def load_config(path: str) -> PersistedConfig:
    """
    Load the config file, returning an empty config when it does not exist.

    Raises:
        ConfigurationError: If the file exists but is not valid JSON.
    """
    config = PersistedConfig()
    if os.path.exists(path):
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"failed to read config {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"config {path} must contain a JSON object")
        config = PersistedConfig.from_dict(data)
        logger.debug(f"Loaded config from {path}")
    else:
        logger.debug(f"No config file at {path}")
    apply_env_fallbacks(config)
    return config


def save_config(path: str, config: PersistedConfig) -> None:
    """Write the config atomically with 0600 permissions."""
    directory = os.path.dirname(path) or "."
    os.makedirs(directory, mode=0o700, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(prefix=".config-", suffix=".json", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(config.to_dict(), f, indent=2)
            f.write("\n")
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, path)
    except OSError:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise
    logger.debug(f"Saved config to {path}")
