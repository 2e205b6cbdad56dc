"""Storage module for the vault's SQLite index.

index.db holds three tables:
1. settings - schema_version and the digest algorithm of the index
2. entries - one row per content digest, each with a unique logical name
3. tags - append-only (digest, name, value) records
"""

from zenodotus.storage.manager import IndexManager, open_or_initialize

__all__ = ["IndexManager", "open_or_initialize"]
