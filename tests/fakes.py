"""Test doubles shared by the lark CLI tests."""
import json
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '../src'))

from keyring.backend import KeyringBackend
from keyring.errors import PasswordDeleteError

from lark_cli.auth.credential_store import KeyringCredentialStore
from lark_cli.core import AppState, PersistedConfig

NOW = 1_700_000_000
APP_ID = "cli_test"
APP_SECRET = "app-secret-value"
FEISHU = "https://open.feishu.cn"
# Storage label the implicit default account resolves to for APP_ID on Feishu
DEFAULT_ACCOUNT = f"{APP_ID}|{FEISHU}|default"


class FakeKeyring(KeyringBackend):
    """In-memory keyring backend."""

    priority = 1

    def __init__(self):
        super().__init__()
        self.entries = {}

    def get_password(self, service, username):
        return self.entries.get((service, username))

    def set_password(self, service, username, password):
        self.entries[(service, username)] = password

    def delete_password(self, service, username):
        if (service, username) not in self.entries:
            raise PasswordDeleteError("not found")
        del self.entries[(service, username)]


class FakeResponse:
    def __init__(self, status, data):
        self.status = status
        self.data = data
        self.headers = {}


class FakeRequest:
    """google.auth transport double returning queued responses and recording calls."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls = []

    def queue(self, body, status=200):
        self.responses.append((status, body))

    def __call__(self, url, method="GET", body=None, headers=None, timeout=None, **kwargs):
        payload = json.loads(body.decode("utf-8")) if body else None
        self.calls.append({"url": url, "method": method, "json": payload, "timeout": timeout})
        if not self.responses:
            raise AssertionError(f"unexpected request to {url}")
        status, data = self.responses.pop(0)
        if isinstance(data, dict):
            data = json.dumps(data)
        return FakeResponse(status, data.encode("utf-8"))


class Clock:
    """Settable clock for AppState."""

    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


def make_config(**overrides):
    values = {"app_id": APP_ID, "app_secret": APP_SECRET, "base_url": FEISHU}
    values.update(overrides)
    return PersistedConfig(**values)


def make_state(tmpdir, config=None, keyring_backend=None, request=None, clock=None, **kwargs):
    """AppState over a temp config path with fake keyring, transport and clock."""
    return AppState(
        os.path.join(tmpdir, "config.json"),
        config=config if config is not None else make_config(),
        keyring_store=KeyringCredentialStore(backend=keyring_backend or FakeKeyring()),
        request=request or FakeRequest(),
        clock=clock or Clock(),
        **kwargs,
    )


def read_config_file(state):
    with open(state.config_path, "r", encoding="utf-8") as f:
        return json.load(f)
