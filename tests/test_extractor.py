"""Tests for safe archive extraction."""

from __future__ import annotations

import io
import stat
import zipfile
from pathlib import Path

import pytest

from foldersync.archive import (
    ArchiveError,
    ZipSlipError,
    extract,
    normalize_entry_name,
    pack_to_file,
    verify,
)
from foldersync.storage import clear_directory

from .conftest import make_zip, snapshot


@pytest.fixture
def packed(tree: Path, tmp_path: Path) -> Path:
    archive = tmp_path / "tree.zip"
    pack_to_file(tree, archive)
    return archive


# ---------------------------------------------------------------------------
# Name normalization
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("name, expected", [
    ("notes/todo.txt", "notes/todo.txt"),
    ("notes\\todo.txt", "notes/todo.txt"),
    ("/abs/file.txt", "abs/file.txt"),
    ("///abs/file.txt", "abs/file.txt"),
    ("./a/./b/../c.txt", "a/c.txt"),
    ("dir/", "dir"),
    ("", "."),
    ("/", "."),
    ("../../etc/passwd", "../../etc/passwd"),
    ("a/../../escape", "../escape"),
])
def test_normalize_entry_name(name: str, expected: str) -> None:
    assert normalize_entry_name(name) == expected


# ---------------------------------------------------------------------------
# Round trip
# ---------------------------------------------------------------------------


class TestRoundTrip:
    """Packing then extracting reproduces the tree."""

    def test_same_paths_and_contents(self, tree: Path, packed: Path, tmp_path: Path) -> None:
        dest = tmp_path / "restored"
        extract(packed, dest)
        assert snapshot(dest) == snapshot(tree)

    def test_returns_entry_count(self, packed: Path, tmp_path: Path) -> None:
        with zipfile.ZipFile(packed) as zf:
            expected = len(zf.infolist())
        assert extract(packed, tmp_path / "restored") == expected

    def test_empty_directory_restored(self, packed: Path, tmp_path: Path) -> None:
        dest = tmp_path / "restored"
        extract(packed, dest)
        assert (dest / "empty").is_dir()
        assert list((dest / "empty").iterdir()) == []

    def test_permission_bits_preserved(self, packed: Path, tmp_path: Path) -> None:
        dest = tmp_path / "restored"
        extract(packed, dest)
        assert stat.S_IMODE((dest / "run.sh").stat().st_mode) == 0o755

    def test_directory_permission_bits_preserved(self, tmp_path: Path) -> None:
        source = tmp_path / "source"
        (source / "private").mkdir(parents=True)
        (source / "private" / "key.txt").write_text("secret")
        (source / "private").chmod(0o700)
        archive = tmp_path / "private.zip"
        pack_to_file(source, archive)

        dest = tmp_path / "restored"
        extract(archive, dest)
        assert stat.S_IMODE((dest / "private").stat().st_mode) == 0o700
        assert (dest / "private" / "key.txt").read_text() == "secret"

    def test_read_only_directory_gets_its_children(self, tmp_path: Path) -> None:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as zf:
            info = zipfile.ZipInfo("locked/")
            info.external_attr = (stat.S_IFDIR | 0o555) << 16 | 0x10
            zf.writestr(info, b"")
            child = zipfile.ZipInfo("locked/inner.txt")
            child.external_attr = (stat.S_IFREG | 0o644) << 16
            zf.writestr(child, b"inside")

        dest = tmp_path / "dest"
        extract(io.BytesIO(buffer.getvalue()), dest)
        try:
            assert (dest / "locked" / "inner.txt").read_bytes() == b"inside"
            assert stat.S_IMODE((dest / "locked").stat().st_mode) == 0o555
        finally:
            (dest / "locked").chmod(0o755)

    def test_accepts_file_object(self, packed: Path, tmp_path: Path) -> None:
        dest = tmp_path / "restored"
        extract(io.BytesIO(packed.read_bytes()), dest)
        assert (dest / "notes" / "todo.txt").read_text() == "buy milk"

    def test_creates_missing_destination(self, packed: Path, tmp_path: Path) -> None:
        dest = tmp_path / "a" / "b" / "c"
        extract(packed, dest)
        assert (dest / "top.txt").exists()

    def test_idempotent_into_cleared_destination(self, packed: Path, tmp_path: Path) -> None:
        dest = tmp_path / "restored"
        extract(packed, dest)
        first = snapshot(dest)

        clear_directory(dest)
        extract(packed, dest)
        assert snapshot(dest) == first


# ---------------------------------------------------------------------------
# Entry handling
# ---------------------------------------------------------------------------


class TestEntries:
    """Tests for how individual entries are materialized."""

    def test_existing_file_truncated(self, tmp_path: Path) -> None:
        dest = tmp_path / "dest"
        dest.mkdir()
        (dest / "file.txt").write_text("a much longer previous content")

        extract(io.BytesIO(make_zip([("file.txt", b"short")])), dest)
        assert (dest / "file.txt").read_bytes() == b"short"

    def test_parents_created_without_directory_entries(self, tmp_path: Path) -> None:
        dest = tmp_path / "dest"
        extract(io.BytesIO(make_zip([("x/y/z.txt", b"data")])), dest)
        assert (dest / "x" / "y" / "z.txt").read_bytes() == b"data"

    def test_backslash_names(self, tmp_path: Path) -> None:
        dest = tmp_path / "dest"
        extract(io.BytesIO(make_zip([("win\\dir\\file.txt", b"data")])), dest)
        assert (dest / "win" / "dir" / "file.txt").read_bytes() == b"data"

    def test_leading_slash_stays_inside(self, tmp_path: Path) -> None:
        dest = tmp_path / "dest"
        extract(io.BytesIO(make_zip([("/abs/file.txt", b"data")])), dest)
        assert (dest / "abs" / "file.txt").read_bytes() == b"data"

    def test_directory_flag_without_trailing_slash(self, tmp_path: Path) -> None:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as zf:
            info = zipfile.ZipInfo("folder")
            info.external_attr = (stat.S_IFDIR | 0o755) << 16 | 0x10
            zf.writestr(info, b"")

        dest = tmp_path / "dest"
        extract(io.BytesIO(buffer.getvalue()), dest)
        assert (dest / "folder").is_dir()

    def test_symlink_entry_written_with_default_mode(self, tmp_path: Path) -> None:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as zf:
            info = zipfile.ZipInfo("link")
            info.external_attr = (stat.S_IFLNK | 0o777) << 16
            zf.writestr(info, b"target.txt")

        dest = tmp_path / "dest"
        extract(io.BytesIO(buffer.getvalue()), dest)
        assert not (dest / "link").is_symlink()
        assert stat.S_IMODE((dest / "link").stat().st_mode) == 0o644

    def test_special_bits_dropped(self, tmp_path: Path) -> None:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as zf:
            info = zipfile.ZipInfo("tool")
            info.external_attr = (stat.S_IFREG | stat.S_ISUID | 0o755) << 16
            zf.writestr(info, b"#!/bin/sh\n")

        dest = tmp_path / "dest"
        extract(io.BytesIO(buffer.getvalue()), dest)
        assert stat.S_IMODE((dest / "tool").stat().st_mode) == 0o755

    def test_missing_mode_defaults(self, tmp_path: Path) -> None:
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as zf:
            zf.writestr(zipfile.ZipInfo("plain.txt"), b"data")

        dest = tmp_path / "dest"
        extract(io.BytesIO(buffer.getvalue()), dest)
        assert stat.S_IMODE((dest / "plain.txt").stat().st_mode) == 0o644


# ---------------------------------------------------------------------------
# Zip slip
# ---------------------------------------------------------------------------


class TestZipSlip:
    """Hostile entries must abort the whole extraction."""

    @pytest.mark.parametrize("name", [
        "../../etc/passwd",
        "../sibling.txt",
        "ok/../../escape.txt",
        "/../../escape.txt",
        "..\\..\\escape.txt",
        "C:/Windows/escape.txt",
        "c:escape.txt",
    ])
    def test_rejected(self, tmp_path: Path, name: str) -> None:
        dest = tmp_path / "deep" / "dest"
        archive = make_zip([("good.txt", b"fine"), (name, b"evil")])

        with pytest.raises(ZipSlipError) as excinfo:
            extract(io.BytesIO(archive), dest)

        assert excinfo.value.entry_name == name
        assert "illegal file path" in str(excinfo.value)

    def test_nothing_written_before_rejection(self, tmp_path: Path) -> None:
        dest = tmp_path / "deep" / "dest"
        archive = make_zip([
            ("good.txt", b"fine"),
            ("sub/also-good.txt", b"fine"),
            ("../../escaped.txt", b"evil"),
        ])

        with pytest.raises(ZipSlipError):
            extract(io.BytesIO(archive), dest)

        assert not (tmp_path / "escaped.txt").exists()
        assert list(dest.iterdir()) == []

    def test_symlink_inside_destination_cannot_redirect(self, tmp_path: Path) -> None:
        outside = tmp_path / "outside"
        outside.mkdir()
        dest = tmp_path / "dest"
        dest.mkdir()
        (dest / "link").symlink_to(outside, target_is_directory=True)

        with pytest.raises(ZipSlipError):
            extract(io.BytesIO(make_zip([("link/planted.txt", b"evil")])), dest)

        assert not (outside / "planted.txt").exists()

    def test_zip_slip_is_an_archive_error(self) -> None:
        assert issubclass(ZipSlipError, ArchiveError)


# ---------------------------------------------------------------------------
# Broken input
# ---------------------------------------------------------------------------


class TestBrokenArchives:
    """Unreadable archives raise ArchiveError."""

    def test_not_a_zip(self, tmp_path: Path) -> None:
        with pytest.raises(ArchiveError, match="invalid archive"):
            extract(io.BytesIO(b"this is not a zip file"), tmp_path / "dest")

    def test_truncated_zip(self, packed: Path, tmp_path: Path) -> None:
        data = packed.read_bytes()
        with pytest.raises(ArchiveError):
            extract(io.BytesIO(data[: len(data) // 2]), tmp_path / "dest")


# ---------------------------------------------------------------------------
# Verification
# ---------------------------------------------------------------------------


class TestVerify:
    """Checking an archive without writing it."""

    def test_counts_entries(self, packed: Path, tmp_path: Path) -> None:
        with zipfile.ZipFile(packed) as zf:
            expected = len(zf.infolist())
        assert verify(packed, tmp_path / "dest") == expected

    def test_writes_nothing(self, packed: Path, tmp_path: Path) -> None:
        dest = tmp_path / "dest"
        verify(packed, dest)
        assert not dest.exists()

    def test_zip_slip(self, tmp_path: Path) -> None:
        with pytest.raises(ZipSlipError):
            verify(io.BytesIO(make_zip([("../up.txt", b"evil")])), tmp_path / "dest")

    def test_not_a_zip(self, tmp_path: Path) -> None:
        with pytest.raises(ArchiveError, match="invalid archive"):
            verify(io.BytesIO(b"garbage"), tmp_path / "dest")

    def test_corrupt_member(self, tmp_path: Path) -> None:
        data = bytearray(make_zip([("file.txt", b"some content worth checking")]))
        offset = data.index(b"some content")
        data[offset] ^= 0xFF

        with pytest.raises(ArchiveError, match="corrupt"):
            verify(io.BytesIO(bytes(data)), tmp_path / "dest")
