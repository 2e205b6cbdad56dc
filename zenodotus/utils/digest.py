"""Content digests for vault files."""

import hashlib
from pathlib import Path

from zenodotus.errors import VaultIOError

DEFAULT_DIGEST_ALGORITHM = "sha256"

# Read files in 1 MiB blocks so large files never load fully into memory
BLOCK_SIZE = 1024 * 1024


def is_supported_algorithm(algorithm: str) -> bool:
    """Check that algorithm is a fixed-length hashlib digest."""
    # shake_* digests need an explicit length, so they can't name a slot
    return algorithm in hashlib.algorithms_available and not algorithm.startswith(
        "shake_"
    )


def digest_bytes(data: bytes, algorithm: str = DEFAULT_DIGEST_ALGORITHM) -> str:
    return hashlib.new(algorithm, data).hexdigest()


def digest_file(path: Path, algorithm: str = DEFAULT_DIGEST_ALGORITHM) -> str:
    """Hash the full content of a file.

    Args:
        path: File to hash
        algorithm: hashlib algorithm name

    Returns:
        Lowercase hexadecimal digest string

    Raises:
        VaultIOError: If the file cannot be read
    """
    hasher = hashlib.new(algorithm)
    try:
        with open(path, "rb") as f:
            while True:
                block = f.read(BLOCK_SIZE)
                if not block:
                    break
                hasher.update(block)
    except OSError as e:
        raise VaultIOError(f"Can't read {path}: {e}") from e
    return hasher.hexdigest()
