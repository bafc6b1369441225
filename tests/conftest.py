"""Pytest configuration for the lark CLI tests."""
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../src'))
sys.path.insert(0, os.path.dirname(__file__))

from lark_cli.auth.credential_store import set_keyring_store
from lark_cli.auth.oauth_config import reload_oauth_config
from lark_cli.core import set_command_path

LARK_ENV_VARS = (
    "LARK_APP_ID",
    "LARK_APP_SECRET",
    "LARK_KEYRING_BACKEND",
    "LARK_USER_ACCESS_TOKEN",
    "LARK_ACCOUNT",
    "LARK_PROFILE",
    "LARK_CONFIG",
    "LARK_OAUTH_PORT",
    "LARK_OAUTH_HOST",
    "LARK_OAUTH_REDIRECT_URI",
)


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch):
    """Run every test without LARK_* variables, command path or global keychain store."""
    for name in LARK_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    reload_oauth_config()
    set_command_path(None)
    yield
    set_keyring_store(None)
    set_command_path(None)
