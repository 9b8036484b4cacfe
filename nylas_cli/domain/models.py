"""Pydantic models for grants, authentication status and configuration.

This module defines the data shared between the secret store, the OAuth
login flow, the Nylas API adapter and the CLI.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from nylas_cli.utils.errors import InvalidProviderError

DEFAULT_CALLBACK_PORT = 8080


class Provider(str, Enum):
    """Mailbox vendor a grant is associated with."""

    GOOGLE = "google"
    MICROSOFT = "microsoft"
    IMAP = "imap"
    EWS = "ews"
    YAHOO = "yahoo"
    ICLOUD = "icloud"
    ZOOM = "zoom"
    OTHER = "other"

    @classmethod
    def parse(cls, value: str | Provider) -> Provider:
        """Parse a user-supplied provider name.

        Args:
            value: Provider name, case-insensitive.

        Returns:
            The matching Provider member.

        Raises:
            InvalidProviderError: If the name is not a supported provider.
        """
        if isinstance(value, Provider):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as e:
            raise InvalidProviderError(
                f"Invalid provider: {value!r}",
                details={"supported": [p.value for p in cls]},
            ) from e

    @property
    def display_name(self) -> str:
        """Human-readable provider label."""
        return _DISPLAY_NAMES[self]


_DISPLAY_NAMES = {
    Provider.GOOGLE: "Google",
    Provider.MICROSOFT: "Microsoft",
    Provider.IMAP: "IMAP",
    Provider.EWS: "Exchange (EWS)",
    Provider.YAHOO: "Yahoo",
    Provider.ICLOUD: "iCloud",
    Provider.ZOOM: "Zoom",
    Provider.OTHER: "Other",
}


class Grant(BaseModel):
    """An authorized mailbox connection.

    The ``id`` is issued by Nylas and never changes; ``grant_status`` is the
    only field expected to change in place.

    Attributes:
        id: Provider-issued grant identifier.
        email: Mailbox address.
        provider: Mailbox vendor.
        grant_status: "valid" or a provider-specific invalid state.
        scope: Granted OAuth scopes, in order.
        created_at: Creation time reported by Nylas.
        updated_at: Last update time reported by Nylas.
    """

    id: str = Field(..., min_length=1, description="Grant identifier")
    email: str = Field(default="", description="Mailbox address")
    provider: Provider = Field(default=Provider.OTHER, description="Mailbox vendor")
    grant_status: str = Field(default="valid", description="Grant status")
    scope: list[str] = Field(default_factory=list, description="Granted scopes")
    created_at: datetime | None = Field(default=None, description="Creation time")
    updated_at: datetime | None = Field(default=None, description="Last update time")

    @field_validator("provider", mode="before")
    @classmethod
    def _coerce_provider(cls, value: Any) -> Any:
        # Nylas reports providers this CLI does not model (e.g. "virtual-calendar")
        if isinstance(value, str) and value.lower() not in {p.value for p in Provider}:
            return Provider.OTHER
        if isinstance(value, str):
            return value.lower()
        return value

    @field_validator("scope", mode="before")
    @classmethod
    def _split_scope(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return value.split()
        return value

    @property
    def is_valid(self) -> bool:
        """True when Nylas reports the grant as usable."""
        return self.grant_status == "valid"


class GrantStatus(BaseModel):
    """One row of the local grant listing."""

    id: str
    email: str
    provider: Provider
    status: str
    is_default: bool = False
    error: str | None = None


class AuthStatus(BaseModel):
    """Summary returned by ``nylas auth status``."""

    configured: bool
    secret_store: str
    config_path: str
    region: str
    api_key_source: str | None = None
    default_grant: Grant | None = None
    grant_count: int = 0


# =============================================================================
# Configuration
# =============================================================================


class APIConfig(BaseModel):
    """Nylas API connection settings."""

    base_url: str | None = Field(default=None, description="Override API base URL")
    timeout: float = Field(default=90, gt=0, description="Request timeout (s)")
    rate_limit: int = Field(default=10, ge=1, description="Requests per second")
    retry_count: int = Field(default=3, ge=0, description="Connection retries")


class OutputConfig(BaseModel):
    """Command output preferences."""

    format: Literal["table", "json", "yaml"] = "table"
    color: Literal["auto", "always", "never"] = "auto"
    timezone: str = ""


class Config(BaseModel):
    """Process-wide settings document stored in ``config.yaml``."""

    region: Literal["us", "eu"] = "us"
    callback_port: int = Field(default=DEFAULT_CALLBACK_PORT, ge=1, le=65535)
    watch_interval: int = Field(default=60, ge=1, description="Seconds")
    api: APIConfig = Field(default_factory=APIConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)


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
