"""
Credential Store for the lark CLI.

This module provides a standardized interface for secret storage and retrieval
with two interchangeable backends: the plaintext config file and the OS keychain
(through the ``keyring`` library). It also owns the app secret and user token
persistence rules built on top of those backends.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

import keyring
from keyring.errors import KeyringError, NoKeyringError, PasswordDeleteError

from ..core.config import AppIdentity, PersistedConfig
from ..utils.constants import (
    KEYRING_SERVICE,
    KIND_APP_SECRET,
    KIND_USER_ACCESS_TOKEN,
    KIND_USER_REFRESH_TOKEN,
)
from ..utils.errors import (
    ConfigurationError,
    ConflictingFlagsError,
    KeyringUnsupportedError,
    LarkCLIError,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Bucket:
    """Storage key derived from the application identity and an optional account."""

    identity: AppIdentity
    account: Optional[str] = None

    def __str__(self) -> str:
        if self.account:
            return f"{self.identity.key()}:{self.account}"
        return self.identity.key()


class CredentialStore(ABC):
    """Abstract base class for secret storage."""

    @abstractmethod
    def get(self, kind: str, bucket: Bucket) -> Optional[str]:
        """Get a secret, or None when it is not stored."""
        pass

    @abstractmethod
    def set(self, kind: str, bucket: Bucket, secret: str) -> None:
        """Store a secret."""
        pass

    @abstractmethod
    def delete(self, kind: str, bucket: Bucket) -> None:
        """Delete a secret. Deleting a missing secret succeeds."""
        pass


class FileCredentialStore(CredentialStore):
    """Credential store backed by plaintext fields of the config file.

    Changes only touch the in-memory config; the caller saves it.
    """

    def __init__(self, config: PersistedConfig) -> None:
        self.config = config

    def get(self, kind: str, bucket: Bucket) -> Optional[str]:
        if kind == KIND_APP_SECRET:
            return self.config.app_secret or None
        account = self.config.get_account(self._account_name(bucket))
        if account is None:
            return None
        if kind == KIND_USER_REFRESH_TOKEN:
            return account.refresh_token or None
        if kind == KIND_USER_ACCESS_TOKEN:
            return account.user_access_token or None
        raise ValueError(f"unknown credential kind: {kind}")

    def set(self, kind: str, bucket: Bucket, secret: str) -> None:
        if kind == KIND_APP_SECRET:
            self.config.app_secret = secret
            return
        account = self.config.get_account(self._account_name(bucket), create=True)
        if kind == KIND_USER_REFRESH_TOKEN:
            account.refresh_token = secret
        elif kind == KIND_USER_ACCESS_TOKEN:
            account.user_access_token = secret
        else:
            raise ValueError(f"unknown credential kind: {kind}")

    def delete(self, kind: str, bucket: Bucket) -> None:
        if kind == KIND_APP_SECRET:
            self.config.app_secret = ""
            return
        account = self.config.get_account(self._account_name(bucket))
        if account is None:
            return
        if kind == KIND_USER_REFRESH_TOKEN:
            account.refresh_token = ""
        elif kind == KIND_USER_ACCESS_TOKEN:
            account.user_access_token = ""
        else:
            raise ValueError(f"unknown credential kind: {kind}")

    @staticmethod
    def _account_name(bucket: Bucket) -> str:
        if not bucket.account:
            raise ValueError("user credentials require an account bucket")
        return bucket.account


class KeyringCredentialStore(CredentialStore):
    """Credential store backed by the OS keychain.

    Entries use service ``lark-cli`` and username ``"<bucket>:<kind>"``.
    """

    def __init__(self, backend: Any = None, service: str = KEYRING_SERVICE) -> None:
        """
        Initialize the keychain store.

        Args:
            backend: keyring backend instance. If None, uses keyring.get_keyring().
            service: Keychain service name.
        """
        self._backend = backend
        self.service = service

    @property
    def backend(self) -> Any:
        if self._backend is None:
            self._backend = keyring.get_keyring()
        return self._backend

    @staticmethod
    def username(kind: str, bucket: Bucket) -> str:
        return f"{bucket}:{kind}"

    def get(self, kind: str, bucket: Bucket) -> Optional[str]:
        username = self.username(kind, bucket)
        try:
            secret = self.backend.get_password(self.service, username)
        except NoKeyringError as e:
            raise KeyringUnsupportedError(str(e)) from e
        except KeyringError as e:
            raise LarkCLIError(f"keychain read failed for {username}: {e}") from e
        logger.debug(f"Keychain lookup {username}: {'found' if secret else 'missing'}")
        return secret or None

    def set(self, kind: str, bucket: Bucket, secret: str) -> None:
        username = self.username(kind, bucket)
        try:
            self.backend.set_password(self.service, username, secret)
        except NoKeyringError as e:
            raise KeyringUnsupportedError(str(e)) from e
        except KeyringError as e:
            raise LarkCLIError(f"keychain write failed for {username}: {e}") from e
        logger.info(f"Stored {kind} in keychain")

    def delete(self, kind: str, bucket: Bucket) -> None:
        username = self.username(kind, bucket)
        try:
            self.backend.delete_password(self.service, username)
            logger.info(f"Deleted {kind} from keychain")
        except (PasswordDeleteError, NoKeyringError) as e:
            logger.debug(f"Keychain delete {username} skipped: {e}")
        except KeyringError as e:
            raise LarkCLIError(f"keychain delete failed for {username}: {e}") from e


# Global keychain store instance
_keyring_store: Optional[CredentialStore] = None


def get_keyring_store() -> CredentialStore:
    """Get the global keychain store instance."""
    global _keyring_store

    if _keyring_store is None:
        _keyring_store = KeyringCredentialStore()
        logger.debug(f"Initialized keychain store: {type(_keyring_store).__name__}")

    return _keyring_store


def set_keyring_store(store: Optional[CredentialStore]) -> None:
    """Set the global keychain store instance."""
    global _keyring_store
    _keyring_store = store
    logger.debug(f"Set keychain store: {type(store).__name__}")


# App secret


def resolve_app_secret_storage(
    config: PersistedConfig, keyring_flag: bool, config_flag: bool
) -> bool:
    """
    Decide whether the app secret goes to the keychain.

    Args:
        config: Current config; its storage is kept when no flag is set.
        keyring_flag: --store-secret-in-keyring was given.
        config_flag: --store-secret-in-config was given.

    Returns:
        True to store in the keychain, False to store in the config file.

    Raises:
        ConflictingFlagsError: If both flags are given.
    """
    if keyring_flag and config_flag:
        raise ConflictingFlagsError(
            "--store-secret-in-keyring and --store-secret-in-config are mutually exclusive"
        )
    if keyring_flag:
        return True
    if config_flag:
        return False
    return config.app_secret_in_keyring


def persist_app_secret(state: Any, secret: str, store_in_keyring: bool) -> None:
    """
    Store the app secret in exactly one backend and clear it from the other.

    The config is updated in memory; the caller saves it.

    Raises:
        ConfigurationError: If the secret is empty.
        KeyringUnsupportedError: If the keychain is requested but unavailable.
    """
    secret = (secret or "").strip()
    if not secret:
        raise ConfigurationError("app secret must not be empty")

    config = state.config
    bucket = Bucket(state.identity())
    keychain = state.keyring_store()

    if store_in_keyring:
        keychain.set(KIND_APP_SECRET, bucket, secret)
        config.app_secret = ""
        config.app_secret_in_keyring = True
    else:
        config.app_secret = secret
        config.app_secret_in_keyring = False
        keychain.delete(KIND_APP_SECRET, bucket)

    state.remember_app_secret(secret)
    logger.info(
        f"App secret stored in {'keychain' if store_in_keyring else 'config file'}"
    )


def delete_app_secret(state: Any) -> None:
    """Remove the app secret from both backends."""
    config = state.config
    state.keyring_store().delete(KIND_APP_SECRET, Bucket(state.identity()))
    config.app_secret = ""
    config.app_secret_in_keyring = False
    state.remember_app_secret(None)


def change_app_identity(
    state: Any, app_id: Optional[str] = None, base_url: Optional[str] = None
) -> bool:
    """
    Point the config at a new app_id and/or base URL.

    None leaves a value unchanged; an empty base_url resets it to the default.
    When the identity changes, the cached tenant token is dropped and a
    keychain-stored app secret moves to the new identity's entry, so the secret
    is still stored in exactly one place. The config is updated in memory; the
    caller saves it.

    Returns:
        True if the app identity changed.
    """
    config = state.config
    old_identity = state.identity()
    if app_id is not None:
        config.app_id = app_id.strip()
    if base_url is not None:
        config.base_url = base_url
    new_identity = state.identity()
    if new_identity == old_identity:
        return False

    logger.info(f"App identity changed from {old_identity.key()} to {new_identity.key()}")
    config.clear_tenant_token()
    if config.app_secret_in_keyring:
        keychain = state.keyring_store()
        secret = keychain.get(KIND_APP_SECRET, Bucket(old_identity))
        if secret:
            keychain.set(KIND_APP_SECRET, Bucket(new_identity), secret)
            keychain.delete(KIND_APP_SECRET, Bucket(old_identity))
        else:
            logger.warning(f"No keychain app secret found for {old_identity.key()}")
    return True


def load_app_secret(state: Any) -> Optional[str]:
    """
    Resolve the app secret: config file, then keychain, then LARK_APP_SECRET.

    Raises:
        ConfigurationError: If the config points at a missing keychain entry.
        KeyringUnsupportedError: If the keychain is required but unavailable.
    """
    config = state.config
    if config.app_secret:
        return config.app_secret
    if config.app_secret_in_keyring:
        secret = state.keyring_store().get(KIND_APP_SECRET, Bucket(state.identity()))
        if secret:
            return secret
        raise ConfigurationError(
            "app secret is marked as stored in the keychain but no entry was found",
            remediation="lark auth login --app-secret <secret> --store-secret-in-keyring",
        )
    return config.env_app_secret or None


# User tokens


@dataclass
class StoredUserToken:
    """User token values as seen by the token managers."""

    access_token: str = ""
    refresh_token: str = ""
    expires_at: int = 0
    scope: str = ""


def _uses_keychain(state: Any) -> bool:
    return not isinstance(state.user_token_store(), FileCredentialStore)


def load_user_token(state: Any, account_name: str) -> StoredUserToken:
    """
    Read the stored user token for an account.

    With the keychain backend, tokens still sitting in the config file are
    moved into the keychain and the plaintext copy is cleared. Tokens recorded for another app identity are not returned.
    """
    config = state.config
    account = config.get_account(account_name)
    if account is None:
        return StoredUserToken()
    if not account.belongs_to(state.identity()):
        logger.debug(
            f"Account {account_name!r} holds tokens for {account.bucket}; ignoring them"
        )
        return StoredUserToken()

    store = state.user_token_store()
    bucket = Bucket(state.identity(), account_name)

    if _uses_keychain(state) and (account.user_access_token or account.refresh_token):
        logger.info(f"Migrating user tokens for account {account_name!r} to keychain")
        if account.user_access_token:
            store.set(KIND_USER_ACCESS_TOKEN, bucket, account.user_access_token)
        if account.refresh_token:
            store.set(KIND_USER_REFRESH_TOKEN, bucket, account.refresh_token)
        account.user_access_token = ""
        account.refresh_token = ""
        state.save_config()

    return StoredUserToken(
        access_token=store.get(KIND_USER_ACCESS_TOKEN, bucket) or "",
        refresh_token=store.get(KIND_USER_REFRESH_TOKEN, bucket) or "",
        expires_at=account.user_access_token_expires_at,
        scope=account.user_access_token_scope,
    )


def save_user_token(state: Any, account_name: str, token: StoredUserToken) -> None:
    """
    Write a user token through the selected backend.

    Keychain writes leave the plaintext fields empty in the same config update.
    The caller saves the config.
    """
    account = state.config.get_account(account_name, create=True)
    store = state.user_token_store()
    bucket = Bucket(state.identity(), account_name)

    if token.access_token:
        store.set(KIND_USER_ACCESS_TOKEN, bucket, token.access_token)
    else:
        store.delete(KIND_USER_ACCESS_TOKEN, bucket)
    if token.refresh_token:
        store.set(KIND_USER_REFRESH_TOKEN, bucket, token.refresh_token)
    if _uses_keychain(state):
        account.user_access_token = ""
        account.refresh_token = ""

    account.user_access_token_expires_at = token.expires_at
    if token.scope:
        account.user_access_token_scope = token.scope
    account.bucket = state.identity().key()
    state.bind_default_account(account_name)


def clear_user_tokens(state: Any, account_name: str) -> None:
    """Remove an account's tokens from the selected backend and the config file."""
    bucket = Bucket(state.identity(), account_name)
    store = state.user_token_store()
    for kind in (KIND_USER_ACCESS_TOKEN, KIND_USER_REFRESH_TOKEN):
        store.delete(kind, bucket)
    account = state.config.get_account(account_name)
    if account is not None:
        account.clear_tokens()
    logger.info(f"Cleared user tokens for account {account_name!r}")


def switch_user_token_backend(state: Any, backend: str) -> None:
    """
    Change keyring_backend and move every account's tokens to the new backend.

    The config is updated in memory; the caller saves it.
    """
    config = state.config
    old_store = state.user_token_store()
    tokens = {name: load_user_token(state, name) for name in list(config.user_accounts)}

    config.keyring_backend = backend
    new_store = state.user_token_store()
    if type(new_store) is type(old_store):
        return

    for name, token in tokens.items():
        if not (token.access_token or token.refresh_token):
            continue
        account = config.get_account(name)
        account.user_access_token = ""
        account.refresh_token = ""
        save_user_token(state, name, token)
        if not isinstance(old_store, FileCredentialStore):
            bucket = Bucket(state.identity(), name)
            for kind in (KIND_USER_ACCESS_TOKEN, KIND_USER_REFRESH_TOKEN):
                old_store.delete(kind, bucket)
    logger.info(f"Moved user tokens of {len(tokens)} account(s) to the {backend} backend")
