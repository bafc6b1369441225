"""
Core utilities package for the lark CLI.

This package provides the persisted configuration and the invocation context.
"""

from .config import (
    AppIdentity,
    PersistedConfig,
    UserAccount,
    UserRefreshTokenPayload,
    load_config,
    save_config,
    normalize_base_url,
    resolve_config_path,
)
from .context import (
    AppState,
    get_command_path,
    set_command_path,
)

__all__ = [
    # Config
    "AppIdentity",
    "PersistedConfig",
    "UserAccount",
    "UserRefreshTokenPayload",
    "load_config",
    "save_config",
    "normalize_base_url",
    "resolve_config_path",
    # Context
    "AppState",
    "get_command_path",
    "set_command_path",
]
