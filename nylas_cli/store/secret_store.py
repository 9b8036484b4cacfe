"""Named-secret persistence backed by the OS keyring or an encrypted file.

The CLI stores a handful of small secrets: the API key, the OAuth client ID
and secret, and the serialized grant list. They go to the OS credential
manager (macOS Keychain, Secret Service, Windows Credential Manager) through
the ``keyring`` library. When no keyring is usable (headless servers, CI,
containers) they go to a single AES-256-GCM encrypted JSON document under
the config directory instead.

The backend is chosen once, by ``new_secret_store()``; callers only ever see
the ``SecretStore`` interface.

Storage location (file backend): <config_dir>/credentials.enc

Security considerations:
- The credentials file is written with mode 0600, its directory with 0700
- The file is replaced atomically so a crash never leaves a torn document
- The encryption key comes from NYLAS_FILE_STORE_KEY or a generated key file
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

import keyring
from keyring.backend import KeyringBackend
from keyring.backends import fail
from keyring.errors import KeyringError, PasswordDeleteError

from nylas_cli.utils.encryption import (
    decrypt_data,
    encrypt_data,
    key_from_hex,
    load_or_create_key,
)
from nylas_cli.utils.errors import (
    KeyringUnavailableError,
    NylasCLIError,
    SecretNotFoundError,
    SecretStoreError,
)

logger = logging.getLogger(__name__)

# Stable secret names; renaming any of these orphans existing installations.
KEY_API_KEY = "api_key"
KEY_CLIENT_ID = "client_id"
KEY_CLIENT_SECRET = "client_secret"
KEY_GRANTS = "grants"

KEYRING_SERVICE = "nylas"
CREDENTIALS_FILE = "credentials.enc"
KEY_FILE = ".credentials.key"

ENV_DISABLE_KEYRING = "NYLAS_DISABLE_KEYRING"
ENV_FILE_STORE_KEY = "NYLAS_FILE_STORE_KEY"

_PROBE_KEY = "__nylas_probe__"


class SecretStore(ABC):
    """Key-value persistence for named secrets."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable backend name, shown by ``nylas auth status``."""

    @abstractmethod
    def get(self, key: str) -> str:
        """Return the secret stored under ``key``.

        Raises:
            SecretNotFoundError: If nothing is stored under ``key``.
            SecretStoreError: If the backend cannot be read.
        """

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Store ``value`` under ``key``, replacing any previous value.

        Raises:
            SecretStoreError: If the value cannot be persisted.
        """

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove ``key``. Removing a missing key is not an error.

        Raises:
            SecretStoreError: If the backend rejects the removal.
        """


class KeyringSecretStore(SecretStore):
    """Secret store over the OS credential manager.

    Example:
        >>> store = KeyringSecretStore()
        >>> store.set("api_key", "nyk_v0_...")
        >>> store.get("api_key")
        'nyk_v0_...'
    """

    def __init__(
        self,
        service: str = KEYRING_SERVICE,
        backend: KeyringBackend | None = None,
    ) -> None:
        """Bind to a keyring backend and verify it is usable.

        Args:
            service: Keyring service name all secrets are namespaced under.
            backend: Keyring backend; defaults to the one keyring selects
                for this platform.

        Raises:
            KeyringUnavailableError: If no usable keyring backend exists.
        """
        self._service = service
        self._backend = backend if backend is not None else keyring.get_keyring()

        if isinstance(self._backend, fail.Keyring) or self._backend.priority <= 0:
            raise KeyringUnavailableError(
                "No usable OS keyring backend",
                details={"backend": type(self._backend).__name__},
            )

        # Locked or daemon-less keyrings only fail on first access
        try:
            self._backend.get_password(self._service, _PROBE_KEY)
        except Exception as e:
            raise KeyringUnavailableError(
                f"OS keyring is not accessible: {e}",
                details={
                    "backend": type(self._backend).__name__,
                    "error_type": type(e).__name__,
                },
            ) from e

        logger.debug("Using keyring backend %s", type(self._backend).__name__)

    @property
    def name(self) -> str:
        return "system keyring"

    def get(self, key: str) -> str:
        try:
            value = self._backend.get_password(self._service, key)
        except KeyringError as e:
            logger.debug("Keyring read failed for %s: %s", key, e)
            raise SecretStoreError(
                f"Failed to read secret from keyring: {e}",
                details={"key": key, "error_type": type(e).__name__},
            ) from e

        if value is None:
            raise SecretNotFoundError(
                f"Secret not found: {key}", details={"key": key}
            )
        return value

    def set(self, key: str, value: str) -> None:
        try:
            self._backend.set_password(self._service, key, value)
            logger.debug("Stored secret %s in keyring", key)
        except KeyringError as e:
            logger.debug("Keyring write failed for %s: %s", key, e)
            raise SecretStoreError(
                f"Failed to write secret to keyring: {e}",
                details={"key": key, "error_type": type(e).__name__},
            ) from e

    def delete(self, key: str) -> None:
        try:
            self._backend.delete_password(self._service, key)
            logger.debug("Deleted secret %s from keyring", key)
        except PasswordDeleteError:
            logger.debug("No secret %s to delete from keyring", key)
        except KeyringError as e:
            logger.debug("Keyring delete failed for %s: %s", key, e)
            raise SecretStoreError(
                f"Failed to delete secret from keyring: {e}",
                details={"key": key, "error_type": type(e).__name__},
            ) from e


class EncryptedFileSecretStore(SecretStore):
    """Secret store over one encrypted JSON document.

    Every write decrypts the whole document, updates it and re-encrypts it
    with a fresh IV.

    Attributes:
        path: Location of the encrypted credentials document.
    """

    def __init__(self, config_dir: Path, key: bytes | None = None) -> None:
        """Initialize the file store.

        Args:
            config_dir: Directory holding the credentials file.
            key: 32-byte encryption key. Defaults to NYLAS_FILE_STORE_KEY,
                else a key file generated next to the credentials.

        Raises:
            SecretStoreError: If the directory or key cannot be prepared.
        """
        self._dir = Path(config_dir)
        self.path = self._dir / CREDENTIALS_FILE

        try:
            self._dir.mkdir(mode=0o700, parents=True, exist_ok=True)
            self._dir.chmod(0o700)
        except OSError as e:
            raise SecretStoreError(
                f"Cannot create secret store directory: {e}",
                details={"path": str(self._dir), "error_type": type(e).__name__},
            ) from e

        if key is None:
            hex_key = os.getenv(ENV_FILE_STORE_KEY)
            key = (
                key_from_hex(hex_key)
                if hex_key
                else load_or_create_key(self._dir / KEY_FILE)
            )
        self._key = key
        logger.debug("Encrypted file secret store at %s", self.path)

    @property
    def name(self) -> str:
        return "encrypted file"

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}

        try:
            envelope = json.loads(self.path.read_text())
            plaintext = decrypt_data(
                bytes.fromhex(envelope["iv"]),
                bytes.fromhex(envelope["ciphertext"]),
                self._key,
            )
            secrets: dict[str, str] = json.loads(plaintext.decode("utf-8"))
            return secrets
        except NylasCLIError as e:
            raise SecretStoreError(
                "Credentials file could not be decrypted",
                details={
                    "path": str(self.path),
                    "hint": f"Check {ENV_FILE_STORE_KEY} or remove the file and "
                    "run 'nylas auth config' again",
                },
            ) from e
        except (OSError, KeyError, ValueError) as e:
            logger.debug("Failed to read credentials file: %s", e)
            raise SecretStoreError(
                f"Failed to read credentials file: {e}",
                details={"path": str(self.path), "error_type": type(e).__name__},
            ) from e

    def _write(self, secrets: dict[str, str]) -> None:
        encrypted = encrypt_data(json.dumps(secrets).encode("utf-8"), self._key)
        envelope = {
            "iv": encrypted["iv"].hex(),
            "ciphertext": encrypted["ciphertext"].hex(),
        }

        tmp_name: str | None = None
        try:
            fd, tmp_name = tempfile.mkstemp(dir=self._dir, prefix=".credentials.")
            with os.fdopen(fd, "w") as f:
                json.dump(envelope, f)
            os.chmod(tmp_name, 0o600)
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as e:
            logger.debug("Failed to write credentials file: %s", e)
            raise SecretStoreError(
                f"Failed to write credentials file: {e}",
                details={"path": str(self.path), "error_type": type(e).__name__},
            ) from e
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)

    def get(self, key: str) -> str:
        secrets = self._read()
        if key not in secrets:
            raise SecretNotFoundError(
                f"Secret not found: {key}", details={"key": key}
            )
        return secrets[key]

    def set(self, key: str, value: str) -> None:
        secrets = self._read()
        secrets[key] = value
        self._write(secrets)
        logger.debug("Stored secret %s in %s", key, self.path)

    def delete(self, key: str) -> None:
        secrets = self._read()
        if secrets.pop(key, None) is None:
            logger.debug("No secret %s to delete", key)
            return
        self._write(secrets)
        logger.debug("Deleted secret %s from %s", key, self.path)


def keyring_disabled() -> bool:
    """Check whether NYLAS_DISABLE_KEYRING asks for the file backend."""
    return os.getenv(ENV_DISABLE_KEYRING, "").lower() in ("true", "1", "yes")


def new_secret_store(
    config_dir: Path,
    disable_keyring: bool | None = None,
    keyring_backend: KeyringBackend | None = None,
) -> SecretStore:
    """Pick the secret store backend for this process.

    Tries the OS keyring first and silently falls back to the encrypted
    file when the keyring is disabled or unusable.

    Args:
        config_dir: Directory for the encrypted file backend.
        disable_keyring: Skip the keyring. Defaults to NYLAS_DISABLE_KEYRING.
        keyring_backend: Explicit keyring backend (mainly for tests).

    Returns:
        The selected SecretStore.

    Raises:
        SecretStoreError: If neither backend can be initialized.
    """
    if disable_keyring is None:
        disable_keyring = keyring_disabled()

    if not disable_keyring:
        try:
            return KeyringSecretStore(backend=keyring_backend)
        except KeyringUnavailableError as e:
            logger.info("Keyring unavailable, using encrypted file store: %s", e)

    return EncryptedFileSecretStore(config_dir)


__all__ = [
    "KEY_API_KEY",
    "KEY_CLIENT_ID",
    "KEY_CLIENT_SECRET",
    "KEY_GRANTS",
    "SecretStore",
    "KeyringSecretStore",
    "EncryptedFileSecretStore",
    "keyring_disabled",
    "new_secret_store",
]
