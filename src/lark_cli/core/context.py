"""
Invocation context for the lark CLI.

This module provides the per-invocation AppState and a context variable
holding the command path currently being executed.
"""

import contextvars
import logging
import os
import time
from typing import Any, Callable, Optional, Tuple

from ..utils.constants import DEFAULT_USER_ACCOUNT, KEYRING_BACKEND_KEYCHAIN
from ..utils.errors import ConfigurationError
from .config import (
    AppIdentity,
    PersistedConfig,
    load_config,
    save_config,
    user_account_bucket_key,
)

logger = logging.getLogger(__name__)

# Context variable to hold the executing command path (e.g. "drive search")
_command_path: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "command_path", default=None
)


def get_command_path() -> Optional[str]:
    """
    Get the command path being executed.

    Returns:
        Space separated command path or None if not set.
    """
    return _command_path.get()


def set_command_path(command_path: Optional[str]) -> None:
    """
    Set the command path being executed.

    Args:
        command_path: Space separated command path, or None to clear.
    """
    _command_path.set(command_path)


class AppState:
    """State shared by every component during one CLI invocation.

    Attributes:
        config_path: Path of the JSON config file.
        config: Loaded PersistedConfig.
        token_type: Token type requested on the command line (auto/tenant/user).
        account: Account requested on the command line, if any.
        profile: Config profile name; part of the default account bucket.
        request: google.auth transport used for token endpoints.
        clock: Returns the current unix time; injectable for tests.
    """

    def __init__(
        self,
        config_path: str,
        config: Optional[PersistedConfig] = None,
        token_type: str = "auto",
        account: Optional[str] = None,
        user_access_token: Optional[str] = None,
        keyring_store: Any = None,
        request: Any = None,
        clock: Callable[[], float] = time.time,
        profile: Optional[str] = None,
    ) -> None:
        self.config_path = config_path
        self.config = config if config is not None else load_config(config_path)
        self.token_type = token_type
        self.account = account
        self.profile = profile
        self.user_access_token = user_access_token
        self.clock = clock
        self._keyring_store = keyring_store
        self._request = request
        self._app_secret: Optional[str] = None

    @property
    def command(self) -> Optional[str]:
        return get_command_path()

    @property
    def request(self) -> Any:
        if self._request is None:
            from google.auth.transport.requests import Request

            self._request = Request()
        return self._request

    def now(self) -> int:
        return int(self.clock())

    def save_config(self) -> None:
        save_config(self.config_path, self.config)

    def identity(self) -> AppIdentity:
        return self.config.identity()

    def resolve_account(self, explicit: Optional[str] = None) -> str:
        """
        Resolve the account name: flag, LARK_ACCOUNT, config default, "default".

        Once an app_id is known, "default" resolves to the per-(app_id,
        base_url, profile) bucket so each app identity keeps its own tokens.
        """
        name = DEFAULT_USER_ACCOUNT
        for candidate in (
            explicit,
            self.account,
            os.getenv("LARK_ACCOUNT"),
            self.config.default_user_account,
        ):
            if candidate and candidate.strip():
                name = candidate.strip()
                break
        if name != DEFAULT_USER_ACCOUNT or not self.config.resolved_app_id():
            return name
        key = self.default_bucket_key()
        return self.config.user_account_buckets.get(key) or key

    def default_bucket_key(self) -> str:
        identity = self.identity()
        return user_account_bucket_key(identity.app_id, identity.base_url, self.profile)

    def bind_default_account(self, name: str) -> None:
        """Record name as the default account of the current bucket."""
        key = self.default_bucket_key()
        if name == key and self.config.user_account_buckets.get(key) != name:
            self.config.user_account_buckets[key] = name
            logger.debug(f"Bound default account bucket {key}")

    def keyring_store(self) -> Any:
        if self._keyring_store is None:
            from ..auth.credential_store import get_keyring_store

            self._keyring_store = get_keyring_store()
        return self._keyring_store

    def user_token_store(self) -> Any:
        """Credential store selected by keyring_backend for user tokens."""
        from ..auth.credential_store import FileCredentialStore

        if self.config.effective_keyring_backend() == KEYRING_BACKEND_KEYCHAIN:
            return self.keyring_store()
        return FileCredentialStore(self.config)

    def app_secret(self) -> str:
        if self._app_secret is None:
            from ..auth.credential_store import load_app_secret

            self._app_secret = load_app_secret(self) or ""
        return self._app_secret

    def remember_app_secret(self, secret: Optional[str]) -> None:
        self._app_secret = secret

    def require_credentials(self) -> Tuple[str, str]:
        """
        Return (app_id, app_secret) or fail.

        Raises:
            ConfigurationError: If either value cannot be resolved.
        """
        app_id = self.config.resolved_app_id()
        app_secret = self.app_secret() if app_id else ""
        if not app_id or not app_secret:
            raise ConfigurationError(
                "app_id and app_secret must be set in config",
                remediation="lark auth login --app-id <id> --app-secret <secret>",
            )
        return app_id, app_secret
