"""Persistence for secrets, grants and configuration.

- SecretStore: named secrets in the OS keyring or an encrypted file
- GrantStore: the grant registry and default-grant pointer
- ConfigStore: the YAML settings file

Usage:
    >>> from nylas_cli.store import ConfigStore, GrantStore, new_secret_store
    >>>
    >>> config_store = ConfigStore()
    >>> secrets = new_secret_store(config_store.path.parent)
    >>> grants = GrantStore(secrets)
    >>> grants.get_default_grant()
"""

from nylas_cli.store.config_store import CONFIG_FILE, ConfigStore, default_config_dir
from nylas_cli.store.grant_store import GrantStore, dump_grants
from nylas_cli.store.secret_store import (
    KEY_API_KEY,
    KEY_CLIENT_ID,
    KEY_CLIENT_SECRET,
    KEY_GRANTS,
    EncryptedFileSecretStore,
    KeyringSecretStore,
    SecretStore,
    keyring_disabled,
    new_secret_store,
)

__all__ = [
    # Secrets
    "SecretStore",
    "KeyringSecretStore",
    "EncryptedFileSecretStore",
    "new_secret_store",
    "keyring_disabled",
    "KEY_API_KEY",
    "KEY_CLIENT_ID",
    "KEY_CLIENT_SECRET",
    "KEY_GRANTS",
    # Grants
    "GrantStore",
    "dump_grants",
    # Config
    "CONFIG_FILE",
    "ConfigStore",
    "default_config_dir",
]
