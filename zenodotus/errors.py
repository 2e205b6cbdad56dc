"""Error taxonomy for vault operations.

Every operation raises one of these and never retries; callers decide how to
present the failure.
"""

from __future__ import annotations

from typing import Sequence


class VaultError(Exception):
    """Base class for all vault failures."""


class VaultIOError(VaultError):
    """Source file unreadable or a filesystem step failed."""


class SchemaError(VaultError):
    """Index store could not be opened or its schema could not be created."""


class ConstraintError(VaultError):
    """A digest or logical name is already indexed."""

    def __init__(self, message: str, conflicts: Sequence = ()):
        super().__init__(message)
        self.conflicts = list(conflicts)


class NotFoundError(VaultError):
    """A digest prefix matched no entry."""

    def __init__(self, prefix: str):
        super().__init__(f"No entry matches digest prefix '{prefix}'")
        self.prefix = prefix


class AmbiguousPrefixError(VaultError):
    """A digest prefix matched more than one entry."""

    def __init__(self, prefix: str, match_count: int):
        super().__init__(
            f"Digest prefix '{prefix}' is ambiguous ({match_count} entries match). "
            "Supply a longer prefix."
        )
        self.prefix = prefix
        self.match_count = match_count


class PreconditionError(VaultError):
    """The target of an initialization is not an existing, empty directory."""
