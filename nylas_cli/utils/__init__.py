"""Utility functions and helpers for the Nylas CLI.

This module provides common utilities including custom exceptions and
encryption helpers.
"""

from nylas_cli.utils.encryption import (
    decrypt_data,
    encrypt_data,
    generate_key,
    key_from_hex,
    load_or_create_key,
)
from nylas_cli.utils.errors import (
    AuthenticationError,
    AuthTimeoutError,
    BrowserError,
    ConfigError,
    GrantNotFoundError,
    InvalidProviderError,
    KeyringUnavailableError,
    NetworkError,
    NoDefaultGrantError,
    NotConfiguredError,
    NotFoundError,
    NylasAPIError,
    NylasCLIError,
    PortInUseError,
    SecretNotFoundError,
    SecretStoreError,
    ValidationError,
)

__all__ = [
    # Encryption utilities
    "generate_key",
    "encrypt_data",
    "decrypt_data",
    "key_from_hex",
    "load_or_create_key",
    # Exception hierarchy
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
