"""Digest -> logical name index.

One entry per content digest and one entry per logical name. duplicate_check
gives callers a readable error before anything is written; the unique
constraints on Entry are what actually hold the invariant.
"""

import logging
from typing import List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError

from zenodotus.errors import ConstraintError
from zenodotus.storage.index_models import Entry
from zenodotus.storage.manager import IndexManager

logger = logging.getLogger(__name__)


def describe_conflicts(entries: List[Entry]) -> str:
    return ", ".join(f"{entry.digest} ({entry.name})" for entry in entries)


class ContentIndex:
    """Entry lookups and inserts against an opened index."""

    def __init__(self, manager: IndexManager):
        self.manager = manager

    def duplicate_check(self, digest: str, name: str) -> List[Entry]:
        """Return entries whose digest equals digest OR whose name equals name.

        A single OR query; an entry matching on both fields appears once.
        """
        with self.manager.get_session(read_only=True) as session:
            conflicts = (
                session.execute(
                    select(Entry)
                    .where(or_(Entry.digest == digest, Entry.name == name))
                    .order_by(Entry.digest)
                )
                .scalars()
                .all()
            )
            for entry in conflicts:
                session.expunge(entry)
        return list(conflicts)

    def insert(self, digest: str, name: str) -> Entry:
        """Record a new entry.

        Raises:
            ConstraintError: If digest or name is already indexed
        """
        with self.manager.get_session() as session:
            entry = Entry(digest=digest, name=name)
            session.add(entry)
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise ConstraintError(
                    f"Entry for {digest} ({name}) violates index uniqueness: {e.orig}"
                ) from e
            session.expunge(entry)
        logger.debug(f"Indexed {digest} as {name}")
        return entry

    def get(self, digest: str) -> Optional[Entry]:
        with self.manager.get_session(read_only=True) as session:
            entry = session.get(Entry, digest)
            if entry is not None:
                session.expunge(entry)
            return entry

    def find_by_prefix(self, prefix: str, limit: int | None = None) -> List[Entry]:
        """Return entries whose digest starts with prefix, ordered by digest."""
        query = (
            select(Entry)
            .where(Entry.digest.startswith(prefix.lower(), autoescape=True))
            .order_by(Entry.digest)
        )
        if limit is not None:
            query = query.limit(limit)

        with self.manager.get_session(read_only=True) as session:
            entries = session.execute(query).scalars().all()
            for entry in entries:
                session.expunge(entry)
        return list(entries)

    def count_by_prefix(self, prefix: str) -> int:
        with self.manager.get_session(read_only=True) as session:
            return session.execute(
                select(func.count())
                .select_from(Entry)
                .where(Entry.digest.startswith(prefix.lower(), autoescape=True))
            ).scalar_one()
