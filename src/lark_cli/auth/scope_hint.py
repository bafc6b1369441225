"""
Missing-scope hints for failed user-token API calls.

When a wrapped API call fails with a permission-denied shape, the error is
re-raised with the missing OAuth scopes and a copy-pasteable relogin command.
Rate-limit and other retryable errors pass through unchanged.
"""

import logging
import re
from typing import Any, List, Optional

from ..utils.constants import CODE_USER_SCOPE_INSUFFICIENT
from ..utils.errors import ApiError, ScopeInsufficientError
from . import registry
from .scopes import ensure_offline_access, normalize_scopes, select_preferred_scopes

logger = logging.getLogger(__name__)

REAUTHORIZE_MARKER = "Re-authorize with:"

_CODE_PATTERN = re.compile(r"code=(\d+)")
_BRACKETS_PATTERN = re.compile(r"\[(.*?)\]")
_SCOPE_SPLIT = re.compile(r"[,\s]+")


def _error_code(err: BaseException, message: str) -> Optional[int]:
    if isinstance(err, ApiError) and err.code:
        return err.code
    match = _CODE_PATTERN.search(message)
    return int(match.group(1)) if match else None


def looks_like_permission_denied(err: BaseException) -> bool:
    """
    Decide whether an error is a missing-scope failure.

    A business code, when present, decides on its own. Otherwise the message
    must mention scopes.
    """
    if getattr(err, "retryable", False):
        return False
    message = str(err)
    code = _error_code(err, message)
    if code is not None:
        return code == CODE_USER_SCOPE_INSUFFICIENT
    return "scope" in message.lower() or "权限范围" in message


def scopes_from_message(message: str) -> List[str]:
    """Scope names listed in square brackets of an error message."""
    scopes: List[str] = []
    for group in _BRACKETS_PATTERN.findall(message):
        tokens = [token for token in _SCOPE_SPLIT.split(group) if token]
        if any(":" in token for token in tokens):
            scopes.extend(token for token in tokens if ":" in token)
    return normalize_scopes(scopes)


def scopes_for_command(command: Optional[str]) -> List[str]:
    if not command:
        return []
    requirement = registry.requirements_for_command(command)
    if requirement is None:
        return []
    return requirement.required_user_scopes


class ScopeHintEnricher:
    """Adds missing-scope information to permission-denied errors."""

    def enrich(self, state: Any, err: BaseException) -> BaseException:
        """
        Return an enriched error, or ``err`` itself when no hint applies.

        Args:
            state: AppState; its command path is used to infer scopes.
            err: Error raised by the wrapped API call.
        """
        message = str(err)
        if isinstance(err, ScopeInsufficientError) or REAUTHORIZE_MARKER in message:
            return err
        if not looks_like_permission_denied(err):
            return err

        scopes = scopes_from_message(message) or scopes_for_command(state.command)
        if not scopes:
            logger.debug("Permission error without known scopes; not enriching")
            return err

        scopes = ensure_offline_access(select_preferred_scopes(scopes))
        command = registry.login_command(scopes, force_consent=True)
        hint = (
            f"{message}\n"
            f"Missing user OAuth scopes: {', '.join(scopes)}.\n"
            f"{REAUTHORIZE_MARKER}\n"
            f"  {command}"
        )
        logger.info(f"Permission error for {state.command!r}; suggesting scopes {scopes}")
        enriched = ScopeInsufficientError(hint, missing_scopes=scopes)
        enriched.__cause__ = err
        return enriched
