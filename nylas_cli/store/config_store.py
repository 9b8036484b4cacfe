"""YAML configuration file loader and writer.

The config file holds non-secret settings (region, callback port, API and
output preferences). Secrets never go here; they live in the SecretStore.

Storage location: $NYLAS_CONFIG_DIR, else $XDG_CONFIG_HOME/nylas,
else ~/.config/nylas, file ``config.yaml``.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError as PydanticValidationError

from nylas_cli.domain.models import Config
from nylas_cli.utils.errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_FILE = "config.yaml"
ENV_CONFIG_DIR = "NYLAS_CONFIG_DIR"


def default_config_dir() -> Path:
    """Resolve the directory holding config and file-backed secrets."""
    override = os.getenv(ENV_CONFIG_DIR)
    if override:
        return Path(override).expanduser()

    xdg = os.getenv("XDG_CONFIG_HOME")
    base = Path(xdg).expanduser() if xdg else Path.home() / ".config"
    return base / "nylas"


class ConfigStore:
    """Loads and saves ``Config`` as YAML.

    Attributes:
        path: Location of the YAML file.
    """

    def __init__(self, path: Path | None = None) -> None:
        """Initialize the store.

        Args:
            path: Config file path. Defaults to ``default_config_dir()/config.yaml``.
        """
        self.path = path if path is not None else default_config_dir() / CONFIG_FILE

    def exists(self) -> bool:
        """Check whether the config file has been written."""
        return self.path.exists()

    def _read_dict(self) -> dict[str, Any]:
        try:
            with open(self.path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(
                f"Invalid YAML in {self.path}: {e}",
                details={"path": str(self.path)},
            ) from e
        except OSError as e:
            raise ConfigError(
                f"Cannot read config file: {e}",
                details={"path": str(self.path), "error_type": type(e).__name__},
            ) from e

        if data is None:
            return {}

        if not isinstance(data, dict):
            raise ConfigError(
                f"Configuration must be a mapping, got {type(data).__name__}",
                details={"path": str(self.path)},
            )
        return data

    def load(self) -> Config:
        """Load the config, merging defaults for anything missing.

        Returns:
            The validated Config. A missing file yields all defaults.

        Raises:
            ConfigError: If the file is unreadable, not YAML, or has
                invalid values.
        """
        if not self.exists():
            logger.debug("No config file at %s, using defaults", self.path)
            return Config()

        data = self._read_dict()
        try:
            return Config.model_validate(data)
        except PydanticValidationError as e:
            fields = [".".join(str(p) for p in err["loc"]) for err in e.errors()]
            raise ConfigError(
                f"Invalid configuration in {self.path}",
                details={"fields": fields, "path": str(self.path)},
            ) from e

    def save(self, config: Config) -> None:
        """Write ``config`` to disk with owner-only permissions.

        Raises:
            ConfigError: If the file cannot be written.
        """
        try:
            self.path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                yaml.safe_dump(
                    config.model_dump(mode="json", exclude_none=True),
                    f,
                    sort_keys=False,
                )
            self.path.chmod(0o600)
        except OSError as e:
            logger.debug("Failed to save config: %s", e)
            raise ConfigError(
                f"Failed to save config: {e}",
                details={"path": str(self.path), "error_type": type(e).__name__},
            ) from e
        logger.info("Saved config to %s", self.path)


__all__ = [
    "CONFIG_FILE",
    "ConfigStore",
    "default_config_dir",
]
