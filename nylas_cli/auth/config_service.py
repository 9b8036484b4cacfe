"""Credential resolution and persistence.

Each credential (API key, client ID, client secret) is resolved on its own,
first non-empty value wins:

1. Environment variable (NYLAS_API_KEY, NYLAS_CLIENT_ID, NYLAS_CLIENT_SECRET)
2. SecretStore

so the API key may come from the environment while the client ID comes
from the keyring.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping

from nylas_cli.store.config_store import ConfigStore
from nylas_cli.store.secret_store import (
    KEY_API_KEY,
    KEY_CLIENT_ID,
    KEY_CLIENT_SECRET,
    SecretStore,
)
from nylas_cli.utils.errors import (
    NotConfiguredError,
    SecretNotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

ENV_API_KEY = "NYLAS_API_KEY"
ENV_CLIENT_ID = "NYLAS_CLIENT_ID"
ENV_CLIENT_SECRET = "NYLAS_CLIENT_SECRET"

CREDENTIAL_ENV_VARS = {
    KEY_API_KEY: ENV_API_KEY,
    KEY_CLIENT_ID: ENV_CLIENT_ID,
    KEY_CLIENT_SECRET: ENV_CLIENT_SECRET,
}

SOURCE_ENV = "env"
SOURCE_STORE = "secret store"


class ConfigService:
    """Answers "is the CLI configured" and manages stored credentials."""

    def __init__(
        self,
        secrets: SecretStore,
        config_store: ConfigStore,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self._secrets = secrets
        self._config_store = config_store
        self._environ = environ if environ is not None else os.environ

    @property
    def secret_store(self) -> SecretStore:
        """The backing secret store."""
        return self._secrets

    def _lookup(self, key: str) -> tuple[str | None, str | None]:
        env_value = self._environ.get(CREDENTIAL_ENV_VARS[key], "").strip()
        if env_value:
            return env_value, SOURCE_ENV

        try:
            stored = self._secrets.get(key).strip()
        except SecretNotFoundError:
            return None, None
        if stored:
            return stored, SOURCE_STORE
        return None, None

    def resolve(self, key: str) -> str | None:
        """Resolve one credential, environment first, then the secret store."""
        if key not in CREDENTIAL_ENV_VARS:
            raise ValidationError(f"Unknown credential: {key}", field="key")
        return self._lookup(key)[0]

    def source(self, key: str) -> str | None:
        """Where ``key`` resolves from: "env", "secret store", or None."""
        if key not in CREDENTIAL_ENV_VARS:
            raise ValidationError(f"Unknown credential: {key}", field="key")
        return self._lookup(key)[1]

    def is_configured(self) -> bool:
        """True when an API key is available from any source."""
        return self.resolve(KEY_API_KEY) is not None

    def get_api_key(self) -> str:
        """Return the API key.

        Raises:
            NotConfiguredError: If no API key is set anywhere.
        """
        api_key = self.resolve(KEY_API_KEY)
        if api_key is None:
            raise NotConfiguredError(
                "Nylas API key not configured",
                details={"env_var": ENV_API_KEY},
            )
        return api_key

    def get_client_id(self) -> str:
        """Return the OAuth client (application) ID.

        Raises:
            NotConfiguredError: If no client ID is set anywhere.
        """
        client_id = self.resolve(KEY_CLIENT_ID)
        if client_id is None:
            raise NotConfiguredError(
                "Nylas client ID not configured",
                details={"env_var": ENV_CLIENT_ID},
            )
        return client_id

    def get_client_secret(self) -> str | None:
        """Return the OAuth client secret, if one was configured."""
        return self.resolve(KEY_CLIENT_SECRET)

    def save_credentials(
        self,
        api_key: str,
        client_id: str | None = None,
        client_secret: str | None = None,
        region: str | None = None,
    ) -> None:
        """Persist credentials to the secret store and the region to config.

        Raises:
            ValidationError: If the API key is empty or the region unknown.
            SecretStoreError: If the secrets cannot be written.
            ConfigError: If the config file cannot be written.
        """
        if not api_key or not api_key.strip():
            raise ValidationError("API key must not be empty", field="api_key")

        if region is not None:
            region = region.strip().lower()
            if region not in ("us", "eu"):
                raise ValidationError(
                    f"Invalid region: {region!r}",
                    field="region",
                    details={"supported": ["us", "eu"]},
                )

        self._secrets.set(KEY_API_KEY, api_key.strip())
        if client_id:
            self._secrets.set(KEY_CLIENT_ID, client_id.strip())
        if client_secret:
            self._secrets.set(KEY_CLIENT_SECRET, client_secret.strip())

        if region is not None:
            config = self._config_store.load().model_copy(update={"region": region})
            self._config_store.save(config)
        elif not self._config_store.exists():
            self._config_store.save(self._config_store.load())

        logger.info("Saved credentials to %s", self._secrets.name)

    def reset(self) -> None:
        """Delete every stored credential. Environment variables are untouched."""
        for key in CREDENTIAL_ENV_VARS:
            self._secrets.delete(key)
        logger.info("Removed stored credentials from %s", self._secrets.name)


__all__ = [
    "ENV_API_KEY",
    "ENV_CLIENT_ID",
    "ENV_CLIENT_SECRET",
    "SOURCE_ENV",
    "SOURCE_STORE",
    "ConfigService",
]
