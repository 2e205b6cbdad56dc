import errno
import os
import sys
from pathlib import Path

import pytest

from zenodotus.errors import ConstraintError, VaultIOError
from zenodotus.stages import ingest as ingest_module
from zenodotus.stages.bootstrap import initialize
from zenodotus.stages.ingest import IngestPipeline, IngestState, relocate
from zenodotus.storage.index_models import Entry
from zenodotus.storage.manager import open_or_initialize
from zenodotus.utils.config import VaultSettings
from zenodotus.utils.digest import digest_bytes, digest_file

HELLO = digest_bytes(b"hello")


@pytest.fixture
def pipeline(manager, vault):
    return IngestPipeline(manager, vault)


def _storage_files(vault) -> list[str]:
    return sorted(p.name for p in vault.storage_dir.iterdir())


class TestIngest:
    def test_ingest_hello_as_report(self, pipeline, vault, make_file):
        source = make_file("hello.txt", "hello")

        result = pipeline.ingest(source, "report.txt")

        assert result.state == IngestState.DONE
        assert result.succeeded
        assert (result.digest, result.name) == (HELLO, "report.txt")
        assert pipeline.index.get(HELLO).name == "report.txt"

    def test_source_moved_into_slot(self, pipeline, vault, make_file):
        source = make_file("hello.txt", "hello")

        pipeline.ingest(source)

        assert not source.exists()
        assert _storage_files(vault) == [HELLO]
        assert digest_file(vault.slot_path(HELLO)) == HELLO

    def test_name_defaults_to_file_name(self, pipeline, make_file):
        source = make_file("notes.md", "some notes")

        result = pipeline.ingest(source)

        assert result.name == "notes.md"

    def test_keep_source_copies(self, manager, vault, make_file):
        source = make_file("hello.txt", "hello")

        IngestPipeline(manager, vault, keep_source=True).ingest(source)

        assert source.read_bytes() == b"hello"
        assert vault.slot_path(HELLO).read_bytes() == b"hello"

    def test_repeat_ingestion_fails_with_constraint_error(
        self, pipeline, vault, make_file, index_session
    ):
        pipeline.ingest(make_file("hello.txt", "hello"), "report.txt")
        again = make_file("again.txt", "hello")

        with pytest.raises(ConstraintError) as exc_info:
            pipeline.ingest(again, "report.txt")

        conflicts = exc_info.value.conflicts
        assert [(e.digest, e.name) for e in conflicts] == [(HELLO, "report.txt")]
        assert "report.txt" in str(exc_info.value)
        assert again.exists()
        assert index_session.query(Entry).count() == 1

    def test_identical_bytes_under_new_name_rejected(
        self, pipeline, vault, make_file, index_session
    ):
        pipeline.ingest(make_file("a.bin", b"\x00\x01\x02"))
        duplicate = make_file("b.bin", b"\x00\x01\x02")

        with pytest.raises(ConstraintError):
            pipeline.ingest(duplicate, "something-else.bin")

        assert duplicate.read_bytes() == b"\x00\x01\x02"
        assert index_session.query(Entry).count() == 1
        assert len(_storage_files(vault)) == 1

    def test_same_name_different_content_rejected(self, pipeline, make_file):
        pipeline.ingest(make_file("a.txt", "first"), "shared.txt")

        with pytest.raises(ConstraintError):
            pipeline.ingest(make_file("b.txt", "second"), "shared.txt")

    def test_missing_source_raises_io_error(self, pipeline, tmp_path, index_session):
        with pytest.raises(VaultIOError):
            pipeline.ingest(tmp_path / "missing.txt")

        assert index_session.query(Entry).count() == 0

    def test_directory_source_raises_io_error(self, pipeline, tmp_path):
        with pytest.raises(VaultIOError, match="not a regular file"):
            pipeline.ingest(tmp_path)

    def test_uses_index_digest_algorithm(self, tmp_path, make_file):
        vault_dir = tmp_path / "sha1-vault"
        vault_dir.mkdir()
        settings = VaultSettings(vault_dir=vault_dir, digest_algorithm="sha1")
        layout = initialize(vault_dir, settings)

        with open_or_initialize(layout.index_path) as manager:
            result = IngestPipeline(manager, layout).ingest(make_file("h.txt", "hello"))

        assert result.digest == digest_bytes(b"hello", "sha1")
        assert layout.slot_path(result.digest).exists()


class TestRelocateFailure:
    def test_relocate_failure_leaves_entry_indexed(
        self, pipeline, vault, make_file, monkeypatch
    ):
        def fail_rename(src, dst):
            raise PermissionError(errno.EACCES, "Permission denied")

        monkeypatch.setattr(ingest_module.os, "rename", fail_rename)
        source = make_file("hello.txt", "hello")

        with pytest.raises(VaultIOError):
            pipeline.ingest(source)

        # The entry stays indexed while its slot is missing
        assert pipeline.index.get(HELLO) is not None
        assert not vault.slot_path(HELLO).exists()
        assert source.exists()

    def test_cross_device_falls_back_to_copy(
        self, pipeline, vault, make_file, monkeypatch
    ):
        def cross_device(src, dst):
            raise OSError(errno.EXDEV, "Invalid cross-device link")

        monkeypatch.setattr(ingest_module.os, "rename", cross_device)
        source = make_file("hello.txt", "hello")

        result = pipeline.ingest(source)

        assert result.succeeded
        assert not source.exists()
        assert _storage_files(vault) == [HELLO]
        assert vault.slot_path(HELLO).read_bytes() == b"hello"


class TestRelocate:
    def test_existing_slot_is_never_overwritten(self, tmp_path):
        source = tmp_path / "source"
        source.write_bytes(b"new")
        slot = tmp_path / "slot"
        slot.write_bytes(b"old")

        with pytest.raises(VaultIOError, match="already exists"):
            relocate(source, slot)

        assert slot.read_bytes() == b"old"
        assert source.exists()

    def test_missing_storage_dir(self, tmp_path):
        source = tmp_path / "source"
        source.write_bytes(b"data")

        with pytest.raises(VaultIOError):
            relocate(source, tmp_path / "no-storage" / "slot")

        assert source.exists()

    def test_failed_copy_leaves_no_partial_file(self, tmp_path, monkeypatch):
        source = tmp_path / "source"
        source.write_bytes(b"data")
        storage = tmp_path / "storage"
        storage.mkdir()

        def broken_replace(src, dst):
            raise OSError(errno.EIO, "I/O error")

        monkeypatch.setattr(ingest_module.os, "replace", broken_replace)

        with pytest.raises(VaultIOError):
            relocate(source, storage / "slot", keep_source=True)

        assert list(storage.iterdir()) == []
        assert source.exists()


class TestIngestAll:
    def test_failure_does_not_stop_other_files(self, pipeline, vault, make_file):
        first = make_file("first.txt", "first")
        duplicate = make_file("dup.txt", "first")
        third = make_file("third.txt", "third")

        results = pipeline.ingest_all(
            [
                (first, None),
                (duplicate, None),
                (Path("/nonexistent/file"), None),
                (third, None),
            ]
        )

        assert [r.state for r in results] == [
            IngestState.DONE,
            IngestState.FAILED,
            IngestState.FAILED,
            IngestState.DONE,
        ]
        assert results[1].failed_at == IngestState.DUPLICATE_CHECK
        assert isinstance(results[1].error, ConstraintError)
        assert results[2].failed_at == IngestState.READ_HASH
        assert isinstance(results[2].error, VaultIOError)
        assert len(_storage_files(vault)) == 2

    def test_every_ingested_digest_has_one_matching_slot(
        self, pipeline, vault, make_file
    ):
        sources = [make_file(f"file{i}.txt", f"content {i}") for i in range(5)]

        results = pipeline.ingest_all((source, None) for source in sources)

        assert all(r.succeeded for r in results)
        assert _storage_files(vault) == sorted(r.digest for r in results)
        for result in results:
            assert digest_file(vault.slot_path(result.digest)) == result.digest

    def test_relocate_failure_recorded(self, pipeline, make_file, monkeypatch):
        def fail_rename(src, dst):
            raise OSError(errno.EACCES, "denied")

        monkeypatch.setattr(ingest_module.os, "rename", fail_rename)

        results = pipeline.ingest_all([(make_file("a.txt", "a"), None)])

        assert results[0].state == IngestState.FAILED
        assert results[0].failed_at == IngestState.RELOCATE
        assert results[0].digest == digest_bytes(b"a")

    @pytest.mark.skipif(
        sys.platform in ("darwin", "win32"),
        reason="file system requires UTF-8 file names",
    )
    def test_undecodable_file_name_fails_alone(self, pipeline, vault, make_file):
        good = make_file("good.txt", "good")
        incoming = os.fsencode(good.parent)
        undecodable = Path(os.fsdecode(os.path.join(incoming, b"caf\xe9.txt")))
        undecodable.write_bytes(b"latin-1 name")

        results = pipeline.ingest_all([(undecodable, None), (good, None)])

        assert results[0].state == IngestState.FAILED
        assert results[0].failed_at == IngestState.READ_HASH
        assert isinstance(results[0].error, VaultIOError)
        assert undecodable.exists()
        assert results[1].succeeded
        assert _storage_files(vault) == [digest_bytes(b"good")]
