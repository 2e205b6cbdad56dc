"""Index database models for the vault.

This module defines SQLAlchemy models for index.db, which maps content digests
to logical names and holds the tags attached to them.

IMPORTANT: Entries and tags are append-only. Nothing in the vault updates or
deletes a row once it has been committed.
"""

from typing import List, Optional
from sqlalchemy import (
    String,
    Integer,
    ForeignKey,
    Index,
)
from sqlalchemy.orm import DeclarativeBase, relationship, Mapped, mapped_column

# Schema version (increment on breaking changes)
INDEX_SCHEMA_VERSION = 1

SCHEMA_VERSION_KEY = "schema_version"
DIGEST_ALGORITHM_KEY = "digest_algorithm"


class IndexBase(DeclarativeBase):
    pass


class Entry(IndexBase):
    """Indexed file content, keyed by digest.

    CRITICAL: Both digest and name are unique. The duplicate pre-check in
    ContentIndex gives a readable error; these constraints are what actually
    keep the index consistent.
    """

    __tablename__ = "entries"

    digest: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False, unique=True)

    # Relationships
    tags: Mapped[List["Tag"]] = relationship(
        back_populates="entry", order_by="Tag.tag_id"
    )

    def __repr__(self) -> str:
        return f"Entry(digest={self.digest!r}, name={self.name!r})"


class Tag(IndexBase):
    """Free-form metadata attached to an entry.

    Many tags may share a digest or a name, and repeated identical tags are
    stored as separate rows.
    """

    __tablename__ = "tags"

    tag_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    digest: Mapped[str] = mapped_column(ForeignKey("entries.digest"), nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    value: Mapped[Optional[str]] = mapped_column(String, nullable=True)

    # Relationship
    entry: Mapped["Entry"] = relationship(back_populates="tags")

    __table_args__ = (Index("idx_tags_digest", "digest"),)

    def __repr__(self) -> str:
        return f"Tag(digest={self.digest!r}, name={self.name!r}, value={self.value!r})"


class Settings(IndexBase):
    """Key-value store for index-level settings.

    Holds schema_version and the digest algorithm the index was created with.
    """

    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[Optional[str]] = mapped_column(String)
