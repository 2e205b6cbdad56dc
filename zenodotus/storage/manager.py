"""Schema manager for the vault's index.db.

This module opens the SQLite index, bootstraps its schema on first use, and
reads the stored schema version exactly once per open. Schema evolution goes
through SCHEMA_UPGRADES, which maps a stored version to the step that brings
the index to the next version.
"""

import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from zenodotus.errors import SchemaError
from zenodotus.storage.index_models import (
    IndexBase,
    Settings,
    INDEX_SCHEMA_VERSION,
    SCHEMA_VERSION_KEY,
    DIGEST_ALGORITHM_KEY,
)
from zenodotus.utils.digest import DEFAULT_DIGEST_ALGORITHM, is_supported_algorithm

logger = logging.getLogger(__name__)


# CRITICAL: Set PRAGMAs per connection, not per engine
# SQLite requires these settings on every new connection
@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_conn, connection_record):
    """Enable foreign key enforcement for every new connection.

    Without this, tags could reference digests that were never indexed.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _bootstrap_v1(engine: Engine, digest_algorithm: str) -> None:
    """Create settings, entries and tags, and seed schema_version = 1.

    There is no rollback: if a statement fails partway through, the tables
    created so far stay behind and must be cleaned up by hand.
    """
    IndexBase.metadata.create_all(engine)
    with Session(engine) as session:
        session.merge(Settings(key=SCHEMA_VERSION_KEY, value=str(1)))
        if session.get(Settings, DIGEST_ALGORITHM_KEY) is None:
            session.add(Settings(key=DIGEST_ALGORITHM_KEY, value=digest_algorithm))
        session.commit()


# Stored version -> step that upgrades the index to version + 1
SCHEMA_UPGRADES: dict[int, Callable[[Engine, str], None]] = {
    0: _bootstrap_v1,
}


class IndexManager:
    """Handle on an opened and schema-checked index.db.

    Usage:
        with open_or_initialize(path) as manager:
            with manager.get_session() as session:
                ...

    IMPORTANT:
    - The schema version is read once, when the manager is created
    - Only INDEX_SCHEMA_VERSION is supported; newer indexes are rejected
    - digest_algorithm is the one recorded in the index, not the one requested,
      once the index exists
    """

    def __init__(
        self,
        index_path: Path | str,
        digest_algorithm: str = DEFAULT_DIGEST_ALGORITHM,
    ):
        """Open the index and bring its schema up to date.

        Args:
            index_path: Path to the index file (":memory:" for an in-memory index)
            digest_algorithm: hashlib algorithm recorded when bootstrapping a new index

        Raises:
            SchemaError: If the store cannot be opened or bootstrapped
        """
        self.index_path = Path(index_path)
        self.engine: Engine | None = None
        self.schema_version = 0
        self.digest_algorithm = digest_algorithm
        self._requested_algorithm = digest_algorithm
        self._sessionmaker = None

        self._open_engine()
        try:
            self._ensure_schema()
        except SchemaError:
            self.close()
            raise

    def _open_engine(self):
        # Handle in-memory database path
        if str(self.index_path) == ":memory:":
            db_url = "sqlite:///:memory:"
        else:
            db_url = f"sqlite:///{self.index_path}"

        try:
            self.engine = create_engine(db_url)
            # create_engine is lazy; connect once so open failures surface here
            with self.engine.connect():
                pass
        except SQLAlchemyError as e:
            raise SchemaError(f"Can't open index {self.index_path}: {e}") from e

        # Rows handed back to callers stay readable after commit and close
        self._sessionmaker = sessionmaker(bind=self.engine, expire_on_commit=False)

    def _read_schema_version(self) -> int:
        """Read the stored schema version; 0 means the index needs bootstrap.

        Raises:
            SchemaError: If the existence check or the version read fails
        """
        try:
            if not inspect(self.engine).has_table(Settings.__tablename__):
                return 0
            with self.get_session() as session:
                meta = session.get(Settings, SCHEMA_VERSION_KEY)
        except SQLAlchemyError as e:
            raise SchemaError(
                f"Error checking schema version of {self.index_path}: {e}"
            ) from e

        if meta is None or meta.value is None:
            return 0
        try:
            return int(meta.value)
        except ValueError as e:
            raise SchemaError(
                f"Index {self.index_path} has an unreadable schema_version "
                f"'{meta.value}'"
            ) from e

    def _ensure_schema(self):
        """Verify the schema version, running upgrade steps where needed.

        Raises:
            SchemaError: If the stored version is unsupported or a step fails
        """
        version = self._read_schema_version()

        if version > INDEX_SCHEMA_VERSION:
            raise SchemaError(
                f"index.db schema version mismatch: "
                f"database is v{version}, code supports up to v{INDEX_SCHEMA_VERSION}."
            )

        while version < INDEX_SCHEMA_VERSION:
            step = SCHEMA_UPGRADES.get(version)
            if step is None:
                raise SchemaError(
                    f"No upgrade path from schema v{version} for {self.index_path}"
                )
            logger.info(
                f"Upgrading index {self.index_path} from schema v{version} "
                f"to v{version + 1}"
            )
            try:
                step(self.engine, self._requested_algorithm)
            except SQLAlchemyError as e:
                raise SchemaError(
                    f"Error creating schema in {self.index_path}: {e}"
                ) from e
            version += 1

        self.schema_version = version
        self.digest_algorithm = self._read_digest_algorithm()

    def _read_digest_algorithm(self) -> str:
        try:
            with self.get_session() as session:
                meta = session.get(Settings, DIGEST_ALGORITHM_KEY)
        except SQLAlchemyError as e:
            raise SchemaError(
                f"Error reading settings of {self.index_path}: {e}"
            ) from e
        if meta is None or not meta.value:
            return DEFAULT_DIGEST_ALGORITHM
        if not is_supported_algorithm(meta.value):
            raise SchemaError(
                f"Index {self.index_path} uses digest algorithm "
                f"'{meta.value}', which this host does not support"
            )
        return meta.value

    @contextmanager
    def get_session(self, read_only: bool = False) -> Iterator[Session]:
        """Get a SQLAlchemy session for index.db.

        Args:
            read_only: If True, the session raises on flush. Use for listings
                so a traversal can never mutate the index.

        Returns:
            Context manager yielding a SQLAlchemy session
        """
        session = self._sessionmaker()

        if read_only:
            # Prevent writes by raising on flush
            @event.listens_for(session, "before_flush")
            def prevent_flush(session, flush_context, instances):
                raise RuntimeError("Cannot modify index.db with a read-only session.")

        try:
            yield session
        finally:
            session.close()

    def close(self):
        """Release all pooled connections."""
        if self.engine is not None:
            self.engine.dispose()

    def __enter__(self) -> "IndexManager":
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


def open_or_initialize(
    index_path: Path | str, digest_algorithm: str = DEFAULT_DIGEST_ALGORITHM
) -> IndexManager:
    """Open the index at index_path, bootstrapping the schema if it is absent."""
    return IndexManager(index_path, digest_algorithm=digest_algorithm)
