"""Shared test fixtures for vault tests"""

import os
import random
from pathlib import Path

import pytest
from faker import Faker

from zenodotus.stages.bootstrap import initialize
from zenodotus.storage.factories import EntryFactory, TagFactory
from zenodotus.storage.manager import open_or_initialize
from zenodotus.utils.config import VaultSettings


@pytest.fixture(scope="session", autouse=True)
def setup_factory_seed():
    """Configure factory_boy/Faker to use a deterministic seed for reproducibility.

    The seed can be set via FACTORY_SEED environment variable, or will be
    randomly generated. The seed is printed to stdout for reproducibility.
    """
    seed = os.environ.get("FACTORY_SEED")
    if seed:
        seed = int(seed)
    else:
        seed = random.randint(0, 2**32 - 1)

    print(f"\n{'=' * 70}")
    print(f"Factory seed: {seed}")
    print(f"To reproduce this test run, set: FACTORY_SEED={seed}")
    print(f"{'=' * 70}\n")

    Faker.seed(seed)
    random.seed(seed)

    return seed


@pytest.fixture
def settings(tmp_path: Path) -> VaultSettings:
    """Settings rooted at an empty vault directory."""
    vault_dir = tmp_path / "vault"
    vault_dir.mkdir()
    return VaultSettings(vault_dir=vault_dir)


@pytest.fixture
def vault(settings: VaultSettings):
    """An initialized vault; yields its layout."""
    return initialize(settings.vault_dir, settings)


@pytest.fixture
def manager(vault):
    """IndexManager opened on the vault's index.db."""
    with open_or_initialize(vault.index_path) as index_manager:
        yield index_manager


@pytest.fixture
def index_session(manager):
    """Session on the vault index with the row factories bound to it."""
    with manager.get_session() as session:
        EntryFactory._meta.sqlalchemy_session = session  # type: ignore[misc]
        TagFactory._meta.sqlalchemy_session = session  # type: ignore[misc]
        yield session


@pytest.fixture
def make_file(tmp_path: Path):
    """Write a source file outside the vault and return its path."""
    incoming = tmp_path / "incoming"
    incoming.mkdir()

    def _make_file(name: str, content: bytes | str) -> Path:
        path = incoming / name
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, str):
            content = content.encode("utf-8")
        path.write_bytes(content)
        return path

    return _make_file
