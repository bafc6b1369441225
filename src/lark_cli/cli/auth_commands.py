"""Authentication commands: app credentials, tenant and user tokens, scopes."""

import logging
import sys
from typing import Tuple

import click

from ..auth import registry
from ..auth.credential_store import (
    change_app_identity,
    clear_user_tokens,
    persist_app_secret,
    resolve_app_secret_storage,
)
from ..auth.resolver import TokenResolver
from ..auth.scopes import canonicalize_scopes, format_scopes, parse_scope_list
from ..auth.selection import ClickSelector
from ..auth.tenant_token import TenantTokenManager
from ..auth.user_token import UserTokenManager, format_unix_time, resolve_login_request
from ..core import set_command_path
from ..core.config import platform_base_url, platform_from_base_url
from ..utils.errors import ConfigurationError, LarkCLIError
from .main import chosen_base_url, cli, emit, handle_errors

logger = logging.getLogger(__name__)


def _split_scopes(values: Tuple[str, ...]) -> list:
    return parse_scope_list(",".join(values))


@cli.group()
def auth():
    """Manage app credentials and access tokens."""


@auth.command()
@click.option("--app-id", help="App ID of the Lark/Feishu app.")
@click.option("--app-secret", help="App secret of the Lark/Feishu app.")
@click.option("--base-url", help="Open platform base URL.")
@click.option(
    "--platform",
    type=click.Choice(["feishu", "lark"], case_sensitive=False),
    help="Use the base URL of a platform.",
)
@click.option("--store-secret-in-keyring", is_flag=True, help="Keep the app secret in the OS keychain.")
@click.option("--store-secret-in-config", is_flag=True, help="Keep the app secret in the config file.")
@click.pass_obj
@handle_errors
def login(obj, app_id, app_secret, base_url, platform, store_secret_in_keyring, store_secret_in_config):
    """Save app credentials."""
    state = obj.get_state()
    config = state.config
    store_in_keyring = resolve_app_secret_storage(
        config, store_secret_in_keyring, store_secret_in_config
    )
    new_base_url = chosen_base_url(base_url, platform)

    app_id = (app_id or config.resolved_app_id()).strip()
    if not app_secret and app_id == config.resolved_app_id():
        app_secret = state.app_secret()
    if not app_id or not app_secret:
        raise ConfigurationError(
            "missing credentials: provide --app-id/--app-secret or set LARK_APP_ID/LARK_APP_SECRET"
        )

    change_app_identity(state, app_id=app_id, base_url=new_base_url or None)
    persist_app_secret(state, app_secret, store_in_keyring)
    state.save_config()
    emit(
        obj,
        {
            "app_id": app_id,
            "base_url": config.effective_base_url(),
            "app_secret_storage": "keychain" if store_in_keyring else "config",
            "config_path": state.config_path,
        },
    )


@auth.command()
@click.pass_obj
@handle_errors
def tenant(obj):
    """Print the tenant access token, fetching it when needed."""
    state = obj.get_state()
    token = TenantTokenManager(state).ensure()
    expires_at = state.config.tenant_access_token_expires_at
    emit(
        obj,
        {
            "tenant_access_token": token,
            "expires_at": expires_at,
            "expires_at_rfc3339": format_unix_time(expires_at),
        },
    )


@auth.command()
@click.argument("command", nargs=-1, required=True)
@click.option("--readonly", is_flag=True, help="Suggest read-only scopes.")
@click.pass_obj
@handle_errors
def explain(obj, command, readonly):
    """Explain the token types and OAuth scopes a command needs."""
    payload = registry.explain_command(" ".join(command), readonly=readonly)
    lines = [
        f"command: {payload['command']}",
        f"services: {', '.join(payload['services'])}",
        f"token types: {', '.join(payload['token_types'])}",
        f"requires offline access: {'yes' if payload['requires_offline'] else 'no'}",
        f"required user scopes: {format_scopes(payload['required_user_scopes']) or '-'}",
    ]
    if payload["services_missing_required_user_scopes"]:
        lines.append(
            "services without declared user scopes: "
            + ", ".join(payload["services_missing_required_user_scopes"])
        )
    if payload["suggested_user_login_command"]:
        lines.append(f"suggested login: {payload['suggested_user_login_command']}")
    emit(obj, payload, lines)


@auth.command()
@click.argument("command", nargs=-1, required=True)
@click.pass_obj
@handle_errors
def token(obj, command):
    """Print the access token COMMAND would use."""
    state = obj.get_state()
    command_path = " ".join(command)
    set_command_path(command_path)
    value, token_type = TokenResolver(state).resolve()
    emit(
        obj,
        {"command": command_path, "token_type": token_type.value, "token": value},
        [value],
    )


# Platform


@auth.group()
def platform():
    """Show or switch the open platform (Feishu or Lark)."""


@platform.command("set")
@click.argument("name", type=click.Choice(["feishu", "lark"], case_sensitive=False))
@click.pass_obj
@handle_errors
def platform_set(obj, name):
    """Switch to the feishu or lark platform."""
    state = obj.get_state()
    new_base_url = platform_base_url(name)
    change_app_identity(state, base_url=new_base_url)
    state.save_config()
    emit(obj, {"platform": name.lower(), "base_url": new_base_url})


@platform.command("info")
@click.pass_obj
@handle_errors
def platform_info(obj):
    """Show the current platform and base URL."""
    config = obj.get_state().config
    base_url = config.effective_base_url()
    emit(obj, {"platform": platform_from_base_url(base_url), "base_url": base_url})


# User OAuth


@auth.group()
def user():
    """Manage user OAuth logins and accounts."""


@user.command("login")
@click.option("--scopes", multiple=True, help="Scopes to request (repeatable, comma or space separated).")
@click.option("--services", multiple=True, help="Services to request scopes for (repeatable).")
@click.option("--readonly", is_flag=True, help="Request read-only scopes for the services.")
@click.option("--force-consent", is_flag=True, help="Ask for consent again.")
@click.option("--no-browser", is_flag=True, help="Print the authorization URL instead of opening it.")
@click.option("--timeout", type=float, help="Seconds to wait for the browser redirect.")
@click.pass_obj
@handle_errors
def user_login(obj, scopes, services, readonly, force_consent, no_browser, timeout):
    """Log in a user account through the browser."""
    state = obj.get_state()
    service_names = [s for value in services for s in value.replace(",", " ").split()]
    selector = None
    if not (scopes or service_names or readonly) and sys.stdin.isatty():
        selector = ClickSelector()

    request = resolve_login_request(
        state,
        scopes=list(scopes),
        services=service_names,
        readonly=readonly,
        selector=selector,
    )
    logger.debug(f"Login scopes from {request.source}: {format_scopes(request.scopes)}")
    status = UserTokenManager(state).login(
        request,
        force_consent=force_consent,
        open_browser=not no_browser,
        timeout=timeout,
    )
    payload = status.to_dict()
    emit(
        obj,
        payload,
        [
            f"Logged in account {status.account!r}",
            f"scope: {status.scope or '-'}",
            f"expires at: {status.expires_at_rfc3339 or '-'}",
        ],
    )


@user.command("status")
@click.pass_obj
@handle_errors
def user_status(obj):
    """Show token status of the selected account."""
    status = UserTokenManager(obj.get_state()).status()
    emit(obj, status.to_dict())


@user.command("services")
@click.option("--readonly", is_flag=True, help="Show read-only scopes.")
@click.pass_obj
@handle_errors
def user_services(obj, readonly):
    """List services that accept user tokens and their scopes."""
    services = {
        name: registry.suggested_user_oauth_scopes_from_services([name], readonly)
        for name in registry.list_user_oauth_services()
    }
    emit(
        obj,
        {"services": services},
        [f"{name}: {format_scopes(scopes) or '-'}" for name, scopes in services.items()],
    )


# Accounts


@user.group()
def accounts():
    """Manage named user accounts."""


@accounts.command("list")
@click.pass_obj
@handle_errors
def accounts_list(obj):
    """List user accounts."""
    state = obj.get_state()
    current = state.resolve_account()
    names = sorted(state.config.user_accounts)
    emit(
        obj,
        {"accounts": names, "current": current},
        [f"{'*' if name == current else ' '} {name}" for name in names] or ["no accounts"],
    )


@accounts.command("set")
@click.argument("name")
@click.pass_obj
@handle_errors
def accounts_set(obj, name):
    """Make NAME the default user account."""
    state = obj.get_state()
    name = name.strip()
    if not name:
        raise LarkCLIError("account name must not be empty")
    state.config.default_user_account = name
    state.save_config()
    emit(obj, {"default_user_account": name})


@accounts.command("remove")
@click.argument("name")
@click.pass_obj
@handle_errors
def accounts_remove(obj, name):
    """Remove account NAME and its stored tokens."""
    state = obj.get_state()
    config = state.config
    if name not in config.user_accounts:
        raise LarkCLIError(f"unknown account {name!r}")
    clear_user_tokens(state, name)
    del config.user_accounts[name]
    for key in [k for k, v in config.user_account_buckets.items() if v == name]:
        del config.user_account_buckets[key]
    if config.default_user_account == name:
        config.default_user_account = ""
    state.save_config()
    emit(obj, {"removed": name})


# Requested scopes


def _account_for_scopes(state):
    name = state.resolve_account()
    return name, state.config.get_account(name, create=True)


def _save_scopes(obj, state, name, account, scopes):
    account.user_scopes = canonicalize_scopes(scopes)
    state.save_config()
    emit(
        obj,
        {"account": name, "user_scopes": account.user_scopes},
        [format_scopes(account.user_scopes)],
    )


@user.group()
def scopes():
    """Edit the scopes requested at the next login."""


@scopes.command("list")
@click.pass_obj
@handle_errors
def scopes_list(obj):
    """Show requested and granted scopes of the selected account."""
    state = obj.get_state()
    name = state.resolve_account()
    account = state.config.get_account(name)
    requested = list(account.user_scopes) if account else list(state.config.user_scopes)
    granted = parse_scope_list(account.user_access_token_scope) if account else []
    emit(
        obj,
        {"account": name, "user_scopes": requested, "granted_scopes": granted},
        [
            f"account: {name}",
            f"requested: {format_scopes(requested) or '-'}",
            f"granted: {format_scopes(granted) or '-'}",
        ],
    )


@scopes.command("set")
@click.argument("values", nargs=-1, required=True)
@click.pass_obj
@handle_errors
def scopes_set(obj, values):
    """Replace the requested scopes."""
    state = obj.get_state()
    name, account = _account_for_scopes(state)
    _save_scopes(obj, state, name, account, _split_scopes(values))


@scopes.command("add")
@click.argument("values", nargs=-1, required=True)
@click.pass_obj
@handle_errors
def scopes_add(obj, values):
    """Add scopes to the requested scopes."""
    state = obj.get_state()
    name, account = _account_for_scopes(state)
    current = account.user_scopes or state.config.user_scopes
    _save_scopes(obj, state, name, account, list(current) + _split_scopes(values))


@scopes.command("remove")
@click.argument("values", nargs=-1, required=True)
@click.pass_obj
@handle_errors
def scopes_remove(obj, values):
    """Remove scopes from the requested scopes; offline_access always stays."""
    state = obj.get_state()
    name, account = _account_for_scopes(state)
    removed = set(_split_scopes(values))
    current = account.user_scopes or state.config.user_scopes
    _save_scopes(obj, state, name, account, [s for s in current if s not in removed])

