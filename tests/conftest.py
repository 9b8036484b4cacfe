"""Pytest configuration and fixtures for Nylas CLI tests."""

from __future__ import annotations

from pathlib import Path

import pytest
from keyring.backend import KeyringBackend
from keyring.errors import PasswordDeleteError

from nylas_cli.domain.models import Grant, Provider
from nylas_cli.store.config_store import CONFIG_FILE, ConfigStore
from nylas_cli.store.grant_store import GrantStore
from nylas_cli.store.secret_store import EncryptedFileSecretStore, SecretStore
from nylas_cli.utils.encryption import generate_key
from nylas_cli.utils.errors import SecretNotFoundError


class MemoryKeyring(KeyringBackend):
    """In-memory keyring backend."""

    priority = 1  # type: ignore[assignment]

    def __init__(self) -> None:
        super().__init__()
        self.passwords: dict[tuple[str, str], str] = {}

    def get_password(self, service: str, username: str) -> str | None:
        return self.passwords.get((service, username))

    def set_password(self, service: str, username: str, password: str) -> None:
        self.passwords[(service, username)] = password

    def delete_password(self, service: str, username: str) -> None:
        if (service, username) not in self.passwords:
            raise PasswordDeleteError("not found")
        del self.passwords[(service, username)]


class MemorySecretStore(SecretStore):
    """Dict-backed SecretStore for service-level tests."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}

    @property
    def name(self) -> str:
        return "memory"

    def get(self, key: str) -> str:
        if key not in self.data:
            raise SecretNotFoundError(f"Secret not found: {key}")
        return self.data[key]

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)


@pytest.fixture(autouse=True)
def isolated_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Keep every test away from the real keyring, config dir and credentials."""
    config_dir = tmp_path / "nylas-config"
    monkeypatch.setenv("NYLAS_CONFIG_DIR", str(config_dir))
    monkeypatch.setenv("NYLAS_DISABLE_KEYRING", "1")
    monkeypatch.setenv("NYLAS_FILE_STORE_KEY", generate_key().hex())
    for var in ("NYLAS_API_KEY", "NYLAS_CLIENT_ID", "NYLAS_CLIENT_SECRET"):
        monkeypatch.delenv(var, raising=False)
    return config_dir


@pytest.fixture
def config_dir(isolated_environment: Path) -> Path:
    """Fixture providing the isolated config directory."""
    return isolated_environment


@pytest.fixture
def memory_keyring() -> MemoryKeyring:
    """Fixture providing a working in-memory keyring backend."""
    return MemoryKeyring()


@pytest.fixture
def secret_store() -> MemorySecretStore:
    """Fixture providing an empty in-memory secret store."""
    return MemorySecretStore()


@pytest.fixture
def file_store(config_dir: Path) -> EncryptedFileSecretStore:
    """Fixture providing an encrypted file store in the config directory."""
    return EncryptedFileSecretStore(config_dir)


@pytest.fixture
def config_store(config_dir: Path) -> ConfigStore:
    """Fixture providing a config store in the isolated config directory."""
    return ConfigStore(config_dir / CONFIG_FILE)


@pytest.fixture
def grant_store(secret_store: MemorySecretStore) -> GrantStore:
    """Fixture providing a grant store over the in-memory secret store."""
    return GrantStore(secret_store)


@pytest.fixture
def work_grant() -> Grant:
    """Fixture providing a Google grant."""
    return Grant(
        id="grant-work-123",
        email="work@example.com",
        provider=Provider.GOOGLE,
        scope=["email.read_only"],
    )


@pytest.fixture
def personal_grant() -> Grant:
    """Fixture providing a Microsoft grant."""
    return Grant(
        id="grant-personal-456",
        email="me@outlook.example",
        provider=Provider.MICROSOFT,
    )
