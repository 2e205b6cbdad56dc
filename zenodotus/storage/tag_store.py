"""Append-only tag records with digest prefix resolution."""

import logging
from typing import List, Optional

from sqlalchemy import select

from zenodotus.errors import AmbiguousPrefixError, NotFoundError
from zenodotus.storage.content_index import ContentIndex
from zenodotus.storage.index_models import Tag
from zenodotus.storage.manager import IndexManager

logger = logging.getLogger(__name__)


class TagStore:
    def __init__(self, manager: IndexManager):
        self.manager = manager
        self.content_index = ContentIndex(manager)

    def resolve_prefix(self, prefix: str) -> str:
        """Map a digest prefix to the single full digest it identifies.

        Raises:
            NotFoundError: If no entry matches
            AmbiguousPrefixError: If two or more entries match
        """
        matches = self.content_index.find_by_prefix(prefix, limit=2)
        if not matches:
            raise NotFoundError(prefix)
        if len(matches) > 1:
            raise AmbiguousPrefixError(
                prefix, self.content_index.count_by_prefix(prefix)
            )
        return matches[0].digest

    def add_tag(
        self, digest_or_prefix: str, name: str, value: Optional[str] = None
    ) -> Tag:
        """Attach a tag to the entry identified by digest_or_prefix.

        Identical tags are not deduplicated; every call appends a row.
        """
        digest = self.resolve_prefix(digest_or_prefix)

        with self.manager.get_session() as session:
            tag = Tag(digest=digest, name=name, value=value)
            session.add(tag)
            session.commit()
            session.expunge(tag)

        logger.info(f"Tagged {digest} with {name}={value}")
        return tag

    def tags_for(self, digest: str) -> List[Tag]:
        """Return the tags of digest in the order the store yields them."""
        with self.manager.get_session(read_only=True) as session:
            tags = (
                session.execute(
                    select(Tag).where(Tag.digest == digest).order_by(Tag.tag_id)
                )
                .scalars()
                .all()
            )
            for tag in tags:
                session.expunge(tag)
        return list(tags)
