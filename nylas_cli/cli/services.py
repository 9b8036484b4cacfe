"""Per-invocation wiring of stores, the API client and the auth service."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from nylas_cli.auth.browser import Browser
from nylas_cli.auth.config_service import ConfigService
from nylas_cli.auth.service import AuthService
from nylas_cli.nylas.client import NylasClient
from nylas_cli.store.config_store import CONFIG_FILE, ConfigStore
from nylas_cli.store.grant_store import GrantStore
from nylas_cli.store.secret_store import SecretStore, new_secret_store


@dataclass
class Services:
    """Everything a command needs, built once per CLI invocation."""

    config_store: ConfigStore
    secrets: SecretStore
    config: ConfigService
    grants: GrantStore
    auth: AuthService


def build_services(config_dir: Path | None = None) -> Services:
    """Build the production service graph.

    Args:
        config_dir: Override the config directory (defaults to
            ``default_config_dir()``).
    """
    config_store = ConfigStore(config_dir / CONFIG_FILE if config_dir else None)
    secrets = new_secret_store(config_store.path.parent)
    config_service = ConfigService(secrets, config_store)

    config = config_store.load()
    client = NylasClient(config_service, region=config.region, api_config=config.api)
    grants = GrantStore(secrets)

    return Services(
        config_store=config_store,
        secrets=secrets,
        config=config_service,
        grants=grants,
        auth=AuthService(client, grants, config_store, Browser()),
    )


__all__ = ["Services", "build_services"]
