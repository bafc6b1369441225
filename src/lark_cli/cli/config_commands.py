"""Config commands: show and edit the persisted configuration."""

import logging

import click

from ..auth.credential_store import (
    change_app_identity,
    clear_user_tokens,
    delete_app_secret,
    persist_app_secret,
    resolve_app_secret_storage,
    switch_user_token_backend,
)
from ..core.config import normalize_keyring_backend, platform_from_base_url
from ..utils.errors import ConflictingFlagsError
from .main import chosen_base_url, cli, emit, handle_errors

logger = logging.getLogger(__name__)


def _secret_storage(config) -> str:
    if config.app_secret_in_keyring:
        return "keychain"
    if config.app_secret:
        return "config"
    if config.env_app_secret:
        return "env"
    return ""


@cli.group()
def config():
    """Show or edit the config file."""


@config.command("get")
@click.pass_obj
@handle_errors
def config_get(obj):
    """Show the config; secrets are reported by location only."""
    state = obj.get_state()
    cfg = state.config
    base_url = cfg.effective_base_url()
    emit(
        obj,
        {
            "config_path": state.config_path,
            "app_id": cfg.resolved_app_id(),
            "app_secret_storage": _secret_storage(cfg),
            "base_url": base_url,
            "platform": platform_from_base_url(base_url),
            "default_token_type": cfg.effective_default_token_type(),
            "default_user_account": cfg.default_user_account,
            "keyring_backend": cfg.effective_keyring_backend(),
            "user_scopes": list(cfg.user_scopes),
            "tenant_token_cached": bool(cfg.tenant_access_token),
            "user_accounts": sorted(cfg.user_accounts),
        },
    )


@config.command("set")
@click.option("--app-id", help="App ID of the Lark/Feishu app.")
@click.option("--app-secret", help="App secret of the Lark/Feishu app.")
@click.option("--base-url", help="Open platform base URL.")
@click.option(
    "--platform",
    type=click.Choice(["feishu", "lark"], case_sensitive=False),
    help="Use the base URL of a platform.",
)
@click.option(
    "--default-token-type",
    type=click.Choice(["tenant", "user"], case_sensitive=False),
    help="Token type used when --token-type is auto.",
)
@click.option("--default-user-account", help="Account used when --account is not given.")
@click.option(
    "--keyring-backend",
    type=click.Choice(["file", "keychain", "auto"], case_sensitive=False),
    help="Where user tokens are stored.",
)
@click.option("--store-secret-in-keyring", is_flag=True, help="Keep the app secret in the OS keychain.")
@click.option("--store-secret-in-config", is_flag=True, help="Keep the app secret in the config file.")
@click.pass_obj
@handle_errors
def config_set(
    obj,
    app_id,
    app_secret,
    base_url,
    platform,
    default_token_type,
    default_user_account,
    keyring_backend,
    store_secret_in_keyring,
    store_secret_in_config,
):
    """Set config values."""
    state = obj.get_state()
    cfg = state.config
    store_in_keyring = resolve_app_secret_storage(
        cfg, store_secret_in_keyring, store_secret_in_config
    )
    new_base_url = chosen_base_url(base_url, platform)
    storage_flag = store_secret_in_keyring or store_secret_in_config
    if not any(
        (app_id, app_secret, new_base_url, default_token_type, default_user_account,
         keyring_backend, storage_flag)
    ):
        raise click.UsageError("nothing to set; pass at least one option")

    # The secret is read under the old identity before it changes.
    if storage_flag and not app_secret:
        app_secret = state.app_secret()

    change_app_identity(state, app_id=app_id or None, base_url=new_base_url or None)

    if app_secret:
        persist_app_secret(state, app_secret, store_in_keyring)
    if default_token_type:
        cfg.default_token_type = default_token_type.lower()
    if default_user_account:
        cfg.default_user_account = default_user_account.strip()
    if keyring_backend:
        switch_user_token_backend(state, normalize_keyring_backend(keyring_backend))

    state.save_config()
    logger.info(f"Saved config to {state.config_path}")
    click.echo(f"Saved {state.config_path}", err=obj.json_output)


@config.command("unset")
@click.option("--app-secret", is_flag=True, help="Remove the app secret from config and keychain.")
@click.option("--base-url", is_flag=True, help="Reset the base URL to the default platform.")
@click.option("--tenant-token", is_flag=True, help="Drop the cached tenant token.")
@click.option("--user-tokens", is_flag=True, help="Remove the selected account's user tokens.")
@click.pass_obj
@handle_errors
def config_unset(obj, app_secret, base_url, tenant_token, user_tokens):
    """Remove config values."""
    if not any((app_secret, base_url, tenant_token, user_tokens)):
        raise click.UsageError("nothing to unset; pass at least one option")
    if base_url and user_tokens:
        raise ConflictingFlagsError(
            "--base-url changes the token bucket; unset --user-tokens in a separate call"
        )
    state = obj.get_state()
    cfg = state.config
    if app_secret:
        delete_app_secret(state)
    if user_tokens:
        clear_user_tokens(state, state.resolve_account())
    if base_url:
        change_app_identity(state, base_url="")
    if tenant_token or app_secret:
        cfg.clear_tenant_token()
    state.save_config()
    click.echo(f"Saved {state.config_path}", err=obj.json_output)
