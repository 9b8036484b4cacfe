"""Domain models shared across the Nylas CLI."""

from nylas_cli.domain.models import (
    DEFAULT_CALLBACK_PORT,
    APIConfig,
    AuthStatus,
    Config,
    Grant,
    GrantStatus,
    OutputConfig,
    Provider,
)

__all__ = [
    "DEFAULT_CALLBACK_PORT",
    "Provider",
    "Grant",
    "GrantStatus",
    "AuthStatus",
    "APIConfig",
    "OutputConfig",
    "Config",
]
