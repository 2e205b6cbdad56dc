"""Ingest files into the vault.

Each file goes through READ_HASH -> DUPLICATE_CHECK -> RECORD -> RELOCATE and
ends in DONE, or FAILED from whichever step raised. Steps run strictly in
order and are never retried.

CRITICAL: the entry is committed to the index before the file is moved into
its storage slot. If RELOCATE fails, the index references a digest whose slot
does not exist yet. Nothing rolls the entry back; the failure is reported and
the source file is left where it was.
"""

import errno
import logging
import os
import shutil
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from zenodotus.errors import ConstraintError, VaultError, VaultIOError
from zenodotus.storage.content_index import ContentIndex, describe_conflicts
from zenodotus.storage.manager import IndexManager
from zenodotus.utils.config import VaultLayout
from zenodotus.utils.digest import digest_file

logger = logging.getLogger(__name__)


class IngestState(str, Enum):
    """Steps of the per-file ingest state machine."""

    READ_HASH = "read_hash"
    DUPLICATE_CHECK = "duplicate_check"
    RECORD = "record"
    RELOCATE = "relocate"
    DONE = "done"
    FAILED = "failed"


@dataclass
class IngestResult:
    """Outcome of ingesting one file.

    state is the step currently running, DONE on success, or FAILED, in
    which case failed_at names the step that raised and error holds the
    exception exactly as raised.
    """

    source: Path
    name: Optional[str] = None
    digest: Optional[str] = None
    state: IngestState = IngestState.READ_HASH
    failed_at: Optional[IngestState] = None
    error: Optional[Exception] = None

    @property
    def succeeded(self) -> bool:
        return self.state == IngestState.DONE


def resolve_source(source: Path) -> Path:
    """Canonical path of a source file.

    Raises:
        VaultIOError: If the path cannot be resolved or is not a regular file
    """
    try:
        resolved = Path(source).resolve(strict=True)
    except (OSError, RuntimeError) as e:
        raise VaultIOError(f"Can't resolve {source}: {e}") from e
    if not resolved.is_file():
        raise VaultIOError(f"{source} is not a regular file")
    return resolved


def _copy_into_slot(source: Path, slot: Path) -> None:
    # Copy beside the slot first so the slot only ever holds complete content
    partial = slot.with_name(f".{slot.name}.partial")
    try:
        shutil.copy2(source, partial)
        os.replace(partial, slot)
    except OSError:
        partial.unlink(missing_ok=True)
        raise


def relocate(source: Path, slot: Path, keep_source: bool = False) -> Path:
    """Move source into its storage slot, blocking until it is there.

    A plain rename is used when source and storage share a filesystem. When
    the rename crosses filesystems, the content is copied into place and the
    source deleted afterwards. With keep_source, the content is always copied
    and the source is left untouched.

    Raises:
        VaultIOError: If the slot already exists or any filesystem step fails
    """
    if slot.exists():
        raise VaultIOError(f"Storage slot {slot} already exists")

    try:
        if keep_source:
            _copy_into_slot(source, slot)
        else:
            try:
                os.rename(source, slot)
            except OSError as e:
                if e.errno != errno.EXDEV:
                    raise
                logger.info(f"{source} is on another filesystem, copying into {slot}")
                _copy_into_slot(source, slot)
                source.unlink()
    except OSError as e:
        raise VaultIOError(f"Can't move {source} into {slot}: {e}") from e

    return slot


class IngestPipeline:
    """Ingest files into one vault.

    Usage:
        pipeline = IngestPipeline(manager, settings.layout())
        result = pipeline.ingest(Path("report.txt"))
    """

    def __init__(
        self, manager: IndexManager, layout: VaultLayout, keep_source: bool = False
    ):
        self.index = ContentIndex(manager)
        self.layout = layout
        self.algorithm = manager.digest_algorithm
        self.keep_source = keep_source

    def ingest(self, source: Path, name: Optional[str] = None) -> IngestResult:
        """Ingest a single file.

        Args:
            source: File to ingest
            name: Logical name; defaults to the file's base name

        Returns:
            The result, in state DONE

        Raises:
            VaultIOError: If the source can't be read or can't be relocated
            ConstraintError: If the digest or name is already indexed
        """
        result = IngestResult(source=Path(source), name=name)
        self._run(result)
        return result

    def ingest_all(
        self, requests: Iterable[Tuple[Path, Optional[str]]]
    ) -> List[IngestResult]:
        """Ingest several files, each independently of the others.

        A failing file is recorded as FAILED and the remaining files are still
        processed. Callers should treat the batch as failed if any result failed.
        """
        results = []
        for source, name in requests:
            result = IngestResult(source=Path(source), name=name)
            try:
                self._run(result)
            except (VaultError, SQLAlchemyError) as e:
                result.failed_at = result.state
                result.state = IngestState.FAILED
                result.error = e
                logger.error(
                    f"Failed to ingest {source} at {result.failed_at.value}: {e}"
                )
            results.append(result)
        return results

    def _run(self, result: IngestResult) -> None:
        result.state = IngestState.READ_HASH
        source = resolve_source(result.source)
        result.source = source
        if result.name is None:
            result.name = source.name
        try:
            result.name.encode("utf-8")
        except UnicodeEncodeError as e:
            raise VaultIOError(
                f"Name {result.name!r} of {source} is not valid UTF-8"
            ) from e
        result.digest = digest_file(source, self.algorithm)

        result.state = IngestState.DUPLICATE_CHECK
        conflicts = self.index.duplicate_check(result.digest, result.name)
        if conflicts:
            raise ConstraintError(
                f"{source} ({result.digest}) conflicts with indexed "
                f"{describe_conflicts(conflicts)}",
                conflicts,
            )

        result.state = IngestState.RECORD
        self.index.insert(result.digest, result.name)

        result.state = IngestState.RELOCATE
        slot = self.layout.slot_path(result.digest)
        try:
            relocate(source, slot, keep_source=self.keep_source)
        except VaultIOError:
            logger.warning(
                f"{result.digest} is indexed but its content never reached {slot}"
            )
            raise

        result.state = IngestState.DONE
        logger.info(f"Ingested {source} as {result.name} ({result.digest})")
