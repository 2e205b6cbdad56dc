"""Runtime settings and vault layout.

Settings come from ZENODOTUS_* environment variables, optionally overlaid with
a YAML mapping file. Nothing here is module-global: callers build a
VaultSettings and pass it (or the VaultLayout it resolves) to each operation.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from zenodotus.utils.digest import DEFAULT_DIGEST_ALGORITHM, is_supported_algorithm

INDEX_FILE_NAME = "index.db"
STORAGE_DIR_NAME = "storage"


@dataclass(frozen=True)
class VaultLayout:
    """Resolved locations of a vault's index file and storage area."""

    index_path: Path
    storage_dir: Path

    def slot_path(self, digest: str) -> Path:
        """Storage slot for a digest: the file is named by the digest itself."""
        return self.storage_dir / digest


class VaultSettings(BaseSettings):
    """Settings for locating and creating a vault."""

    model_config = SettingsConfigDict(env_prefix="ZENODOTUS_")

    vault_dir: Path = Field(
        Path("."),
        description="Vault root holding index.db and the storage directory.",
    )

    index_file: Path | None = Field(
        None,
        description="Explicit index file; overrides the vault's own index.db.",
    )

    digest_algorithm: str = Field(
        DEFAULT_DIGEST_ALGORITHM,
        description="hashlib algorithm recorded in newly created indexes.",
    )

    log_level: str = Field("INFO", description="Console log level.")

    log_file: Path | None = Field(
        None,
        description="Optional rotating log file. No file logging when unset.",
    )

    @field_validator("digest_algorithm")
    @classmethod
    def _check_algorithm(cls, value: str) -> str:
        value = value.lower()
        if not is_supported_algorithm(value):
            raise ValueError(f"Unsupported digest algorithm '{value}'")
        return value

    @field_validator("log_level")
    @classmethod
    def _normalize_level(cls, value: str) -> str:
        return value.upper()

    def layout(self) -> VaultLayout:
        root = self.vault_dir.expanduser()
        index_path = (
            self.index_file.expanduser()
            if self.index_file is not None
            else root / INDEX_FILE_NAME
        )
        return VaultLayout(index_path=index_path, storage_dir=root / STORAGE_DIR_NAME)

    def for_vault(self, vault_dir: Path) -> VaultSettings:
        """Copy of these settings rooted at vault_dir, using its own index.db."""
        return self.model_copy(update={"vault_dir": vault_dir, "index_file": None})


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file must be a mapping: {path}")
    return data


def load_settings(config_file: Path | None = None, **overrides: Any) -> VaultSettings:
    """Build settings from the environment, a YAML file, and explicit overrides.

    Precedence, highest first: overrides (None values ignored), the YAML file,
    ZENODOTUS_* environment variables, field defaults.
    """
    values: dict[str, Any] = {}
    if config_file is not None:
        values.update(_load_yaml(config_file))
    values.update({key: value for key, value in overrides.items() if value is not None})
    return VaultSettings(**values)
