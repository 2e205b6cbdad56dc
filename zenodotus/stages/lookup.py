"""Ordered listings of entries and their tags."""

from dataclasses import dataclass, field
from typing import Iterator, List, Optional, Tuple

from sqlalchemy import select

from zenodotus.storage.index_models import Entry, Tag
from zenodotus.storage.manager import IndexManager


@dataclass(frozen=True)
class ListedEntry:
    digest: str
    name: str
    tags: List[Tuple[str, Optional[str]]] = field(default_factory=list)


class PrefixListing:
    """Entries whose digest starts with prefix, ordered by digest.

    Nothing is queried until iteration starts, and every new iteration runs
    the query again, so a listing can be walked more than once.
    """

    def __init__(self, manager: IndexManager, prefix: str = ""):
        self.manager = manager
        self.prefix = prefix.lower()

    def __iter__(self) -> Iterator[ListedEntry]:
        with self.manager.get_session(read_only=True) as session:
            entries = session.execute(
                select(Entry.digest, Entry.name)
                .where(Entry.digest.startswith(self.prefix, autoescape=True))
                .order_by(Entry.digest)
            )
            for digest, name in entries.all():
                tags = session.execute(
                    select(Tag.name, Tag.value)
                    .where(Tag.digest == digest)
                    .order_by(Tag.tag_id)
                ).all()
                yield ListedEntry(
                    digest=digest,
                    name=name,
                    tags=[(tag_name, value) for tag_name, value in tags],
                )


def list_by_prefix(manager: IndexManager, prefix: str = "") -> PrefixListing:
    """List entries by digest prefix; an empty prefix lists the whole index."""
    return PrefixListing(manager, prefix)
