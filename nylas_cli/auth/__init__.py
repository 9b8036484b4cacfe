"""Authentication module for the Nylas CLI.

This module provides the browser-based OAuth login flow and grant
management, including:

- Credential resolution (environment first, then the secret store)
- A single-use loopback server that captures the OAuth redirect
- A detached system browser launcher
- Login orchestration, revocation and default-grant switching

Usage:
    >>> from nylas_cli.auth import AuthService, Browser, ConfigService
    >>>
    >>> service = AuthService(client, grant_store, config_store, Browser())
    >>> grant = service.login("google", timeout=300)
    >>>
    >>> # Later, switch between accounts
    >>> service.switch_grant("work@example.com")
    >>> service.logout()
"""

from nylas_cli.auth.browser import Browser
from nylas_cli.auth.callback import CALLBACK_PATH, LOOPBACK_HOST, CallbackServer
from nylas_cli.auth.config_service import (
    ENV_API_KEY,
    ENV_CLIENT_ID,
    ENV_CLIENT_SECRET,
    ConfigService,
)
from nylas_cli.auth.service import DEFAULT_LOGIN_TIMEOUT, AuthService, LoginStep

__all__ = [
    # Login flow
    "AuthService",
    "LoginStep",
    "DEFAULT_LOGIN_TIMEOUT",
    # Callback server
    "CallbackServer",
    "CALLBACK_PATH",
    "LOOPBACK_HOST",
    # Browser
    "Browser",
    # Credentials
    "ConfigService",
    "ENV_API_KEY",
    "ENV_CLIENT_ID",
    "ENV_CLIENT_SECRET",
]
