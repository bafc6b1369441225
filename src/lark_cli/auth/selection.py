"""
Interactive OAuth scope selection for ``auth user login``.

The two-mode flow (select by service or by scope) is an explicit state
machine. Terminal widgets sit behind the Selector interface; ClickSelector
is the prompt-based implementation used by the CLI.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional

import click

from ..core.config import PersistedConfig
from ..utils.errors import RegistryError, SelectionCanceledError
from . import registry
from .scopes import (
    OFFLINE_ACCESS,
    canonicalize_scopes,
    ensure_offline_access,
    get_default_scopes,
    normalize_scopes,
    parse_scope_list,
)

logger = logging.getLogger(__name__)


@dataclass
class LoginScopeRequest:
    """Scopes a login will request and where they came from.

    Attributes:
        scopes: Canonical scope list.
        services: Services the scopes were derived from, if any.
        source: One of flag, services, interactive, previous, default.
    """

    scopes: List[str]
    services: List[str] = field(default_factory=list)
    source: str = "flag"


class SelectionState(Enum):
    CHOOSING_MODE = "choosing_mode"
    SELECTING_SERVICES = "selecting_services"
    SELECTING_SCOPES = "selecting_scopes"
    CANCELED = "canceled"
    CONFIRMED = "confirmed"


class SelectionMode(Enum):
    SERVICES = "services"
    SCOPES = "scopes"


MODE_LABELS = {
    SelectionMode.SERVICES: "Select by service (recommended)",
    SelectionMode.SCOPES: "Select by scope",
}

_TERMINAL_STATES = (SelectionState.CANCELED, SelectionState.CONFIRMED)


@dataclass
class SelectionHistory:
    """Previously requested services and scopes of an account."""

    services: List[str] = field(default_factory=list)
    scopes: List[str] = field(default_factory=list)

    @classmethod
    def from_config(cls, config: PersistedConfig, account_name: str) -> "SelectionHistory":
        """
        Rebuild the previous selection of an account.

        Scopes come from the account's requested scopes, then the refresh
        token payload, the granted scope string and finally the config-level
        default scopes. Services come from the refresh token payload.
        """
        account = config.get_account(account_name)
        services: List[str] = []
        scopes: List[str] = []
        if account is not None:
            scopes = normalize_scopes(account.user_scopes)
            payload = account.user_refresh_token_payload
            if payload is not None:
                services = registry.normalize_services(payload.services)
                if not scopes:
                    scopes = parse_scope_list(payload.scopes)
            if not scopes:
                scopes = parse_scope_list(account.user_access_token_scope)
        if not scopes:
            scopes = normalize_scopes(config.user_scopes)
        return cls(services=services, scopes=scopes)


class ScopeSelection:
    """State machine behind the interactive scope selector."""

    def __init__(self, history: Optional[SelectionHistory] = None) -> None:
        self.history = history or SelectionHistory()
        self.state = SelectionState.CHOOSING_MODE
        self.mode: Optional[SelectionMode] = None
        self.services: List[str] = []
        self.scopes: List[str] = []

    @property
    def default_mode(self) -> SelectionMode:
        if self.history.scopes and not self.history.services:
            return SelectionMode.SCOPES
        return SelectionMode.SERVICES

    def service_options(self) -> List[str]:
        return registry.list_user_oauth_services()

    def default_services(self) -> List[str]:
        available = set(self.service_options())
        previous = [name for name in self.history.services if name in available]
        return previous or list(registry.DEFAULT_USER_OAUTH_SERVICES)

    def scope_options(self) -> List[str]:
        """Every known user scope plus the previous selection, offline_access first."""
        scopes: List[str] = list(self.history.scopes)
        for name in self.service_options():
            service = registry.REGISTRY[name]
            scopes.extend(service.user_scopes.full)
            scopes.extend(service.user_scopes.readonly)
            scopes.extend(service.required_user_scopes or ())
        return ensure_offline_access(scopes)

    def default_scopes(self) -> List[str]:
        return ensure_offline_access(self.history.scopes or get_default_scopes())

    @property
    def locked_scopes(self) -> List[str]:
        return [OFFLINE_ACCESS]

    @property
    def done(self) -> bool:
        return self.state in _TERMINAL_STATES

    def _require(self, *states: SelectionState) -> None:
        if self.state not in states:
            raise RuntimeError(f"invalid transition from {self.state.value}")

    def choose_mode(self, mode: SelectionMode) -> None:
        self._require(SelectionState.CHOOSING_MODE)
        self.mode = mode
        if mode is SelectionMode.SERVICES:
            self.state = SelectionState.SELECTING_SERVICES
        else:
            self.state = SelectionState.SELECTING_SCOPES

    def select_services(self, services: Iterable[str]) -> None:
        """
        Confirm a service selection.

        Raises:
            ValueError: If no service is selected.
            RegistryError: If a service cannot be used for user OAuth.
        """
        self._require(SelectionState.SELECTING_SERVICES)
        chosen = registry.normalize_services(services)
        if not chosen:
            raise ValueError("select at least one service")
        scopes = registry.user_oauth_scopes_from_services(chosen)
        self.services = chosen
        self.scopes = ensure_offline_access(scopes)
        self.state = SelectionState.CONFIRMED

    def select_scopes(self, scopes: Iterable[str]) -> None:
        """Confirm a scope selection; offline_access is always kept."""
        self._require(SelectionState.SELECTING_SCOPES)
        self.services = []
        self.scopes = ensure_offline_access(scopes)
        self.state = SelectionState.CONFIRMED

    def back(self) -> None:
        self._require(SelectionState.SELECTING_SERVICES, SelectionState.SELECTING_SCOPES)
        self.mode = None
        self.state = SelectionState.CHOOSING_MODE

    def cancel(self) -> None:
        if not self.done:
            self.state = SelectionState.CANCELED

    def result(self) -> LoginScopeRequest:
        """
        Return the confirmed selection.

        Raises:
            SelectionCanceledError: If the selection was canceled.
        """
        if self.state is SelectionState.CANCELED:
            raise SelectionCanceledError()
        self._require(SelectionState.CONFIRMED)
        return LoginScopeRequest(
            scopes=canonicalize_scopes(self.scopes),
            services=list(self.services),
            source="interactive",
        )


class Selector(ABC):
    """Presents a list and returns the selection, or None on cancel."""

    @abstractmethod
    def choose_one(self, title: str, options: List[str], default: int = 0) -> Optional[int]:
        pass

    @abstractmethod
    def choose_many(
        self,
        title: str,
        options: List[str],
        defaults: List[str],
        locked: List[str],
    ) -> Optional[List[str]]:
        pass

    def notify(self, message: str) -> None:
        click.echo(message, err=True)


class ClickSelector(Selector):
    """Numbered-list selector built on click prompts. Enter q to cancel."""

    def choose_one(self, title: str, options: List[str], default: int = 0) -> Optional[int]:
        click.echo(title)
        for i, option in enumerate(options, start=1):
            click.echo(f"  {i}) {option}")
        while True:
            answer = click.prompt("Choice", default=str(default + 1)).strip().lower()
            if answer in ("q", "quit"):
                return None
            if answer.isdigit() and 1 <= int(answer) <= len(options):
                return int(answer) - 1
            self.notify(f"Enter a number between 1 and {len(options)}, or q to cancel")

    def choose_many(
        self,
        title: str,
        options: List[str],
        defaults: List[str],
        locked: List[str],
    ) -> Optional[List[str]]:
        click.echo(title)
        for i, option in enumerate(options, start=1):
            mark = "x" if option in defaults or option in locked else " "
            suffix = " (required)" if option in locked else ""
            click.echo(f"  [{mark}] {i}) {option}{suffix}")
        while True:
            answer = click.prompt(
                "Numbers separated by commas (enter keeps the checked items)",
                default="",
                show_default=False,
            ).strip().lower()
            if answer in ("q", "quit"):
                return None
            if not answer:
                return list(defaults)
            picks = [part.strip() for part in answer.replace(" ", ",").split(",") if part.strip()]
            if all(p.isdigit() and 1 <= int(p) <= len(options) for p in picks):
                return [options[int(p) - 1] for p in picks]
            self.notify(f"Enter numbers between 1 and {len(options)}, or q to cancel")


def run_selection(selection: ScopeSelection, selector: Selector) -> LoginScopeRequest:
    """
    Drive the selection state machine with a selector until it terminates.

    Raises:
        SelectionCanceledError: If the user cancels.
    """
    modes = [SelectionMode.SERVICES, SelectionMode.SCOPES]
    while not selection.done:
        if selection.state is SelectionState.CHOOSING_MODE:
            index = selector.choose_one(
                "How do you want to choose OAuth scopes?",
                [MODE_LABELS[mode] for mode in modes],
                default=modes.index(selection.default_mode),
            )
            if index is None:
                selection.cancel()
            else:
                selection.choose_mode(modes[index])
        elif selection.state is SelectionState.SELECTING_SERVICES:
            chosen = selector.choose_many(
                "Select services",
                selection.service_options(),
                selection.default_services(),
                [],
            )
            if chosen is None:
                selection.cancel()
                continue
            try:
                selection.select_services(chosen)
            except (ValueError, RegistryError) as e:
                selector.notify(str(e))
        else:
            chosen = selector.choose_many(
                "Select OAuth scopes",
                selection.scope_options(),
                selection.default_scopes(),
                selection.locked_scopes,
            )
            if chosen is None:
                selection.cancel()
            else:
                selection.select_scopes(chosen)
    logger.debug(f"Scope selection finished in state {selection.state.value}")
    return selection.result()
