"""factory_boy factories for index rows, used by the test suite.

Tests bind each factory to a session before use:

    EntryFactory._meta.sqlalchemy_session = session
"""

import factory
from factory.alchemy import SQLAlchemyModelFactory

from zenodotus.storage.index_models import Entry, Tag
from zenodotus.utils.digest import digest_bytes


class EntryFactory(SQLAlchemyModelFactory):
    class Meta:
        model = Entry
        sqlalchemy_session = None
        sqlalchemy_session_persistence = "commit"

    digest = factory.Sequence(lambda n: digest_bytes(f"entry-{n}".encode()))
    name = factory.Sequence(lambda n: f"file-{n}.txt")


class TagFactory(SQLAlchemyModelFactory):
    class Meta:
        model = Tag
        sqlalchemy_session = None
        sqlalchemy_session_persistence = "commit"

    entry = factory.SubFactory(EntryFactory)
    digest = factory.SelfAttribute("entry.digest")
    name = factory.Faker("word")
    value = factory.Faker("sentence", nb_words=3)
