"""Custom exception hierarchy for the Nylas CLI.

This module defines a structured exception hierarchy for the error
conditions that may occur while configuring credentials, running the
OAuth login flow, persisting secrets and grants, and talking to the
Nylas API.
"""

from __future__ import annotations


class NylasCLIError(Exception):
    """Base exception for all Nylas CLI errors.

    All custom exceptions in the Nylas CLI inherit from this base class,
    enabling consistent error handling and catch-all exception handling patterns.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary containing additional error context.
    """

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        """Initialize the exception.

        Args:
            message: Human-readable error description.
            details: Optional dictionary containing additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message

    @property
    def hint(self) -> str | None:
        """Remediation text for the user, if any."""
        hint = self.details.get("hint")
        return str(hint) if hint else None

    def with_context(self, **context: object) -> NylasCLIError:
        """Attach context (step, resource) without replacing existing keys."""
        for key, value in context.items():
            self.details.setdefault(key, value)
        return self


class NotConfiguredError(NylasCLIError):
    """Exception raised when required credentials have not been set up.

    Examples:
        - No API key in the environment or the secret store
        - Login attempted without a client ID
    """

    def __init__(self, message: str, details: dict[str, object] | None = None) -> None:
        details = dict(details or {})
        details.setdefault("hint", "Run 'nylas auth config' first")
        super().__init__(message, details)


class ConfigError(NylasCLIError):
    """Exception raised when the configuration file cannot be used."""

    pass


class ValidationError(NylasCLIError):
    """Exception raised for input validation errors.

    Attributes:
        field: The name of the field that failed validation, if applicable.
    """

    def __init__(
        self,
        message: str,
        field: str | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        """Initialize the validation error exception.

        Args:
            message: Human-readable error description.
            field: The name of the field that failed validation.
            details: Optional dictionary containing additional error context.
        """
        super().__init__(message, details)
        self.field = field


class AuthenticationError(NylasCLIError):
    """Exception raised for OAuth flow failures.

    Examples:
        - The provider redirected back with ``error=access_denied``
        - The authorization code could not be exchanged
        - The callback carried a mismatching state parameter
    """

    pass


class AuthTimeoutError(AuthenticationError):
    """Exception raised when the OAuth callback never arrived.

    Raised both for an elapsed timeout and for explicit cancellation, so the
    user can tell "try again" apart from a provider-side rejection.
    """

    pass


class InvalidProviderError(AuthenticationError):
    """Exception raised for an unsupported provider name."""

    pass


class PortInUseError(AuthenticationError):
    """Exception raised when the OAuth callback port is already bound.

    Attributes:
        port: The port that could not be bound.
    """

    def __init__(
        self,
        message: str,
        port: int,
        details: dict[str, object] | None = None,
    ) -> None:
        details = dict(details or {})
        details.setdefault("port", port)
        details.setdefault(
            "hint",
            "Free the port or change 'callback_port' in the config file",
        )
        super().__init__(message, details)
        self.port = port


class BrowserError(NylasCLIError):
    """Exception raised when no browser could be launched."""

    pass


class NotFoundError(NylasCLIError):
    """Base exception for lookups that found nothing."""

    pass


class GrantNotFoundError(NotFoundError):
    """Exception raised when a grant ID or email is unknown."""

    pass


class NoDefaultGrantError(NotFoundError):
    """Exception raised when no default grant has been set."""

    def __init__(
        self,
        message: str = "No default grant set",
        details: dict[str, object] | None = None,
    ) -> None:
        details = dict(details or {})
        details.setdefault(
            "hint", "Run 'nylas auth login' or 'nylas auth switch <grant>'"
        )
        super().__init__(message, details)


class SecretNotFoundError(NotFoundError):
    """Exception raised when a named secret is not stored."""

    pass


class SecretStoreError(NylasCLIError):
    """Exception raised when secrets cannot be read or written.

    Examples:
        - Permission denied writing the encrypted credentials file
        - The keyring backend rejected a write
        - The credentials file could not be decrypted
    """

    pass


class KeyringUnavailableError(SecretStoreError):
    """Exception raised when the OS keyring cannot be used."""

    pass


class NylasAPIError(NylasCLIError):
    """Exception raised for errors from Nylas API calls.

    Attributes:
        status_code: HTTP status code from the API response.
        error_type: Nylas error type (e.g. ``invalid_request``), if available.
    """

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        error_type: str | None = None,
        details: dict[str, object] | None = None,
    ) -> None:
        """Initialize the Nylas API error exception.

        Args:
            message: Human-readable error description.
            status_code: HTTP status code from the API response.
            error_type: Nylas error type, if available.
            details: Optional dictionary containing additional error context.
        """
        super().__init__(message, details)
        self.status_code = status_code
        self.error_type = error_type


class NetworkError(NylasAPIError):
    """Exception raised when the Nylas API could not be reached."""

    pass


__all__ = [
    "NylasCLIError",
    "NotConfiguredError",
    "ConfigError",
    "ValidationError",
    "AuthenticationError",
    "AuthTimeoutError",
    "InvalidProviderError",
    "PortInUseError",
    "BrowserError",
    "NotFoundError",
    "GrantNotFoundError",
    "NoDefaultGrantError",
    "SecretNotFoundError",
    "SecretStoreError",
    "KeyringUnavailableError",
    "NylasAPIError",
    "NetworkError",
]
