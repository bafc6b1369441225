"""CLI initialization and shared helpers."""

import json
import logging
import os
import sys
from functools import wraps
from typing import Any, Callable, Dict, Iterable, Optional

import click
from google.auth.exceptions import TransportError

from ..core import AppState, normalize_base_url, resolve_config_path, set_command_path
from ..core.config import platform_base_url
from ..utils.errors import (
    ConflictingFlagsError,
    LarkCLIError,
    SelectionCanceledError,
    format_error,
)

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(levelname)s %(name)s: %(message)s"


class CLIContext:
    """Options of the root command and the lazily built AppState.

    Tests may pass a prebuilt state or a transport through ``CliRunner.invoke(obj=...)``.
    """

    def __init__(self, state: Optional[AppState] = None, request: Any = None) -> None:
        self.state = state
        self.request = request
        self.config_path: Optional[str] = None
        self.profile: Optional[str] = None
        self.token_type = "auto"
        self.account: Optional[str] = None
        self.user_access_token: Optional[str] = None
        self.json_output = False

    def get_state(self) -> AppState:
        """Build the AppState on first use so config errors surface per command."""
        if self.state is None:
            path = resolve_config_path(self.config_path, self.profile)
            self.state = AppState(
                path,
                token_type=self.token_type,
                account=self.account,
                user_access_token=self.user_access_token,
                request=self.request,
                profile=self.profile or os.getenv("LARK_PROFILE"),
            )
            logger.debug(f"Using config {path}")
        return self.state


def handle_errors(fn: Callable) -> Callable:
    """
    Map lark errors to click exceptions and record the executing command path.

    ConflictingFlagsError exits with a usage error (2); every other
    LarkCLIError and transport failure exits with 1.
    """

    @wraps(fn)
    def wrapper(*args, **kwargs):
        ctx = click.get_current_context()
        action = " ".join(ctx.command_path.split()[1:])
        set_command_path(action or None)
        try:
            return fn(*args, **kwargs)
        except SelectionCanceledError as e:
            click.echo(e.message, err=True)
        except ConflictingFlagsError as e:
            raise click.UsageError(e.format_message(), ctx=ctx) from e
        except LarkCLIError as e:
            logger.debug(f"{ctx.command_path} failed", exc_info=True)
            raise click.ClickException(format_error(action, e)) from e
        except TransportError as e:
            raise click.ClickException(format_error(action, e)) from e

    return wrapper


def chosen_base_url(base_url: Optional[str], platform: Optional[str]) -> str:
    """Base URL chosen by --base-url or --platform; empty when neither is given."""
    if base_url and platform:
        raise ConflictingFlagsError("--base-url and --platform are mutually exclusive")
    if platform:
        return platform_base_url(platform)
    return normalize_base_url(base_url or "")


def emit(obj: CLIContext, payload: Dict[str, Any], lines: Optional[Iterable[str]] = None) -> None:
    """Print a payload as JSON with --json, else as text lines (or key: value pairs)."""
    if obj.json_output:
        click.echo(json.dumps(payload, indent=2, ensure_ascii=False))
        return
    if lines is None:
        lines = (f"{key}: {_text(value)}" for key, value in payload.items())
    for line in lines:
        click.echo(line)


def _text(value: Any) -> str:
    if isinstance(value, bool):
        return "yes" if value else "no"
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value) or "-"
    if value is None or value == "":
        return "-"
    return str(value)


@click.group()
@click.option("--config", "config_path", help="Path of the config file.")
@click.option("--profile", help="Use the named config profile.")
@click.option(
    "--token-type",
    type=click.Choice(["auto", "tenant", "user"], case_sensitive=False),
    default="auto",
    show_default=True,
    help="Token type for API calls.",
)
@click.option("--account", help="User account for user tokens.")
@click.option(
    "--user-access-token",
    help="Use this user access token for this invocation only.",
)
@click.option("--json", "json_output", is_flag=True, help="Print JSON output.")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging on stderr.")
@click.pass_context
def cli(ctx, config_path, profile, token_type, account, user_access_token, json_output, verbose):
    """Lark/Feishu command line tool."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=LOG_FORMAT,
        stream=sys.stderr,
    )
    obj = ctx.ensure_object(CLIContext)
    obj.config_path = config_path
    obj.profile = profile
    obj.token_type = token_type.lower()
    obj.account = account
    obj.user_access_token = user_access_token
    obj.json_output = json_output
    if obj.state is not None:
        obj.state.token_type = obj.token_type
        obj.state.account = account or obj.state.account
        obj.state.user_access_token = user_access_token or obj.state.user_access_token
