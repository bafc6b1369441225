"""
Lark OAuth scope helpers for the lark CLI.

This module defines the always-required scopes and the canonical form used for
every scope set the CLI requests, persists or compares.
"""

import logging
import re
from typing import Iterable, List

from ..utils.constants import OFFLINE_ACCESS_SCOPE

logger = logging.getLogger(__name__)

# Scope required to receive a refresh token at all
OFFLINE_ACCESS = OFFLINE_ACCESS_SCOPE

DEFAULT_USER_SCOPES = [OFFLINE_ACCESS]

READONLY_SUFFIX = ":readonly"

_SCOPE_SEPARATORS = re.compile(r"[,\s]+")


def get_default_scopes() -> List[str]:
    """
    Get the scopes requested when nothing else is known.

    Returns:
        List of default OAuth scopes.
    """
    return list(DEFAULT_USER_SCOPES)


def parse_scope_list(raw: str) -> List[str]:
    """Split a scope string on commas and whitespace, keeping order."""
    return normalize_scopes(_SCOPE_SEPARATORS.split(raw or ""))


def normalize_scopes(scopes: Iterable[str]) -> List[str]:
    """Trim, drop empties and de-duplicate, keeping first occurrence order."""
    seen = set()
    out = []
    for scope in scopes:
        scope = (scope or "").strip()
        if not scope or scope in seen:
            continue
        seen.add(scope)
        out.append(scope)
    return out


def canonicalize_scopes(scopes: Iterable[str], require_offline: bool = True) -> List[str]:
    """
    Canonical scope list: de-duplicated, sorted, offline_access first.

    offline_access is forced in when require_offline is set and kept when
    already present. Canonicalizing a canonical list returns it unchanged.

    Args:
        scopes: Scopes in any order, possibly with duplicates.
        require_offline: Whether offline_access must be included.

    Returns:
        Canonical list of scopes.
    """
    items = normalize_scopes(scopes)
    rest = sorted(scope for scope in items if scope != OFFLINE_ACCESS)
    if require_offline or OFFLINE_ACCESS in items:
        return [OFFLINE_ACCESS] + rest
    return rest


def ensure_offline_access(scopes: Iterable[str]) -> List[str]:
    return canonicalize_scopes(scopes, require_offline=True)


def canonical_scope_string(raw: str) -> str:
    """Canonical space-separated form of a granted scope string."""
    return " ".join(canonicalize_scopes(parse_scope_list(raw), require_offline=False))


def format_scopes(scopes: Iterable[str]) -> str:
    return " ".join(scopes)


def scope_satisfied(required: str, granted: Iterable[str]) -> bool:
    """
    Check whether a required scope is covered by the granted set.

    A ``:readonly`` scope is satisfied by its full counterpart, and a full
    scope by its ``:readonly`` variant.
    """
    granted_set = set(granted)
    if required in granted_set:
        return True
    if required.endswith(READONLY_SUFFIX):
        return required[: -len(READONLY_SUFFIX)] in granted_set
    return required + READONLY_SUFFIX in granted_set


def missing_scopes(required: Iterable[str], granted: Iterable[str]) -> List[str]:
    """Return required scopes not covered by granted, in canonical order."""
    granted_list = list(granted)
    missing = [
        scope for scope in normalize_scopes(required)
        if not scope_satisfied(scope, granted_list)
    ]
    return canonicalize_scopes(missing, require_offline=False)


def select_preferred_scopes(scopes: Iterable[str]) -> List[str]:
    """Drop ``:readonly`` scopes whose full counterpart is also listed."""
    items = normalize_scopes(scopes)
    present = set(items)
    return [
        scope for scope in items
        if not (
            scope.endswith(READONLY_SUFFIX)
            and scope[: -len(READONLY_SUFFIX)] in present
        )
    ]
