"""Zenodotus: a single-user content-addressed file vault.

Files are digested, relocated into digest-named storage, indexed in SQLite,
and optionally annotated with free-form tags.
"""

__version__ = "0.1.0"
