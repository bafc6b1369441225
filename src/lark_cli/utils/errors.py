"""Custom exceptions for the lark CLI auth core.

This module provides structured error handling with specific exception types
for each credential and token failure. All exceptions inherit from LarkCLIError.
"""
from typing import List, Optional


class LarkCLIError(Exception):
    """Base exception for all lark CLI errors.

    Attributes:
        message: Human-readable error description.
        remediation: Optional command the user can run to fix the problem.
    """

    def __init__(self, message: str, remediation: Optional[str] = None) -> None:
        self.message = message
        self.remediation = remediation
        super().__init__(self.format_message())

    def format_message(self) -> str:
        """Format the error message, optionally including the remediation command."""
        if self.remediation:
            return f"{self.message}; run `{self.remediation}`"
        return self.message


class ConfigurationError(LarkCLIError):
    """Raised when app_id or app_secret cannot be resolved."""
    pass


class KeyringUnsupportedError(LarkCLIError):
    """Raised when the platform has no usable keychain backend."""

    def __init__(self, detail: Optional[str] = None) -> None:
        message = (
            "keychain backend is not supported on this platform; "
            "use keyring_backend=file or store app secret in config"
        )
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class TokenMissingOrExpiredError(LarkCLIError):
    """Raised when no usable token is stored and it cannot be refreshed."""
    pass


class ScopeInsufficientError(LarkCLIError):
    """Raised when a user token lacks the OAuth scopes a command needs.

    Attributes:
        missing_scopes: Scopes that were not granted.
    """

    def __init__(
        self,
        message: str,
        missing_scopes: List[str],
        remediation: Optional[str] = None,
    ) -> None:
        self.missing_scopes = list(missing_scopes)
        super().__init__(message, remediation)


class ConflictingFlagsError(LarkCLIError):
    """Raised when mutually exclusive flags or token types are combined."""
    pass


class UnsupportedTokenTypeError(LarkCLIError):
    """Raised when a token type is not allowed for the command."""
    pass


class RefreshRejectedError(LarkCLIError):
    """Raised when the token endpoint rejects a refresh token.

    A full relogin is required; the refresh is never retried.
    """
    pass


class TokenEndpointError(LarkCLIError):
    """Raised when a token endpoint call fails for a non-credential reason.

    Attributes:
        status: HTTP status returned by the endpoint.
        code: Lark business code from the response body, if any.
    """

    def __init__(
        self, message: str, status: Optional[int] = None, code: Optional[int] = None
    ) -> None:
        self.status = status
        self.code = code
        super().__init__(message)


class RegistryError(LarkCLIError):
    """Raised when the auth registry is asked about an unknown service."""
    pass


class SelectionCanceledError(LarkCLIError):
    """Raised when the user cancels the interactive scope selection."""

    def __init__(self) -> None:
        super().__init__("Login canceled")


class ApiError(LarkCLIError):
    """Error returned by a wrapped Lark API call.

    Command handlers raise this so that scope hints can inspect the
    business code instead of parsing text.

    Attributes:
        code: Lark business code.
        retryable: True for rate-limit and transient failures.
    """

    def __init__(self, message: str, code: int = 0, retryable: bool = False) -> None:
        self.code = code
        self.retryable = retryable
        super().__init__(message)

    def format_message(self) -> str:
        if self.code:
            return f"{self.message} (code={self.code})"
        return self.message


def format_error(action: str, error: Exception) -> str:
    """Format an error message consistently.

    Args:
        action: The command that failed (e.g., "auth tenant").
        error: The exception that occurred.

    Returns:
        Formatted error string.
    """
    if isinstance(error, LarkCLIError):
        return f"{action} failed: {error.format_message()}"
    return f"{action} failed: {str(error)}"
