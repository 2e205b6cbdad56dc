"""Create a new, empty vault."""

import logging
from pathlib import Path

from zenodotus.errors import PreconditionError, VaultIOError
from zenodotus.storage.manager import open_or_initialize
from zenodotus.utils.config import VaultLayout, VaultSettings

logger = logging.getLogger(__name__)


def check_empty_directory(directory: Path) -> None:
    """Raise PreconditionError unless directory exists, is a directory, and is empty."""
    if not directory.exists():
        raise PreconditionError(f"{directory} does not exist")
    if not directory.is_dir():
        raise PreconditionError(f"{directory} is not a directory")
    try:
        has_children = any(directory.iterdir())
    except OSError as e:
        raise PreconditionError(f"Can't list {directory}: {e}") from e
    if has_children:
        raise PreconditionError(f"{directory} is not empty")


def initialize(directory: Path, settings: VaultSettings) -> VaultLayout:
    """Initialize a vault in directory.

    Creates index.db through the schema manager, then the storage directory.
    Nothing is written when the precondition fails.

    IMPORTANT: If the index is created but the storage directory can't be,
    the vault is left half-initialized. Re-running initialize on it fails the
    emptiness check; remove index.db by hand first.

    Raises:
        PreconditionError: If directory is missing, not a directory, or not empty
        SchemaError: If the index can't be created
        VaultIOError: If the storage directory can't be created
    """
    directory = Path(directory).expanduser()
    check_empty_directory(directory)

    layout = settings.for_vault(directory).layout()

    with open_or_initialize(layout.index_path, settings.digest_algorithm):
        pass

    try:
        layout.storage_dir.mkdir()
    except OSError as e:
        raise VaultIOError(
            f"Created {layout.index_path} but not {layout.storage_dir}: {e}"
        ) from e

    logger.info(f"Initialized vault in {directory}")
    return layout
