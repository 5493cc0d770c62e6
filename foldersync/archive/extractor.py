"""
Safe Archive Extraction

Every entry is resolved against the destination root before anything is
written. A single entry that would land outside the root ("zip slip")
rejects the whole archive, so a hostile upload never touches disk.
"""

import logging
import os
import posixpath
import re
import shutil
import stat
import zipfile
import zlib
from pathlib import Path
from typing import BinaryIO, List, Tuple, Union

logger = logging.getLogger(__name__)

DEFAULT_DIR_MODE = 0o755
DEFAULT_FILE_MODE = 0o644

# MS-DOS directory attribute, set by Windows archivers instead of a trailing "/"
_MSDOS_DIRECTORY = 0x10

_DRIVE_PREFIX = re.compile(r"^[A-Za-z]:")


class ArchiveError(Exception):
    """The archive could not be read or applied."""


class ZipSlipError(ArchiveError):
    """An archive entry resolves outside the extraction root."""

    def __init__(self, entry_name: str, dest: Path):
        self.entry_name = entry_name
        self.dest = dest
        super().__init__(f"illegal file path in archive: {entry_name!r} escapes {dest}")


def normalize_entry_name(name: str) -> str:
    """
    Normalize a stored entry name to a clean relative POSIX path.

    Backslashes become forward slashes, leading slashes are dropped and
    "." / ".." segments are collapsed. ".." segments that climb above the
    root survive, so the caller can still detect them.
    """
    name = name.replace("\\", "/").lstrip("/")
    if not name:
        return "."
    return posixpath.normpath(name)


def _is_directory(info: zipfile.ZipInfo) -> bool:
    if info.is_dir() or info.filename.endswith("\\"):
        return True
    if info.external_attr & _MSDOS_DIRECTORY:
        return True
    return stat.S_ISDIR(info.external_attr >> 16)


def _stored_mode(info: zipfile.ZipInfo, default: int, kind: int) -> int:
    """Permission bits stored for an entry, or default when none apply."""
    mode = info.external_attr >> 16
    if stat.S_IFMT(mode) not in (0, kind):
        # symlinks and device nodes are materialized as plain entries
        return default
    return (mode & 0o777) or default


def _file_mode(info: zipfile.ZipInfo) -> int:
    return _stored_mode(info, DEFAULT_FILE_MODE, stat.S_IFREG)


def _dir_mode(info: zipfile.ZipInfo) -> int:
    return _stored_mode(info, DEFAULT_DIR_MODE, stat.S_IFDIR)


def _resolve_target(info: zipfile.ZipInfo, root: Path) -> Path:
    """Map an entry onto the filesystem, refusing anything outside root."""
    if _DRIVE_PREFIX.match(info.filename):
        raise ZipSlipError(info.filename, root)

    relative = normalize_entry_name(info.filename)
    target = (root / relative).resolve()

    if not target.is_relative_to(root):
        raise ZipSlipError(info.filename, root)

    return target


def _open(archive: Union[str, os.PathLike, BinaryIO]) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(archive)
    except zipfile.BadZipFile as e:
        raise ArchiveError(f"invalid archive: {e}") from e


def _plan(zf: zipfile.ZipFile, root: Path) -> List[Tuple[zipfile.ZipInfo, Path]]:
    plan: List[Tuple[zipfile.ZipInfo, Path]] = []
    for info in zf.infolist():
        try:
            plan.append((info, _resolve_target(info, root)))
        except ZipSlipError:
            logger.warning(f"Rejected archive entry {info.filename!r} for {root}")
            raise
    return plan


def verify(archive: Union[str, os.PathLike, BinaryIO], dest: Union[str, os.PathLike]) -> int:
    """
    Check that an archive would extract cleanly under dest, writing nothing.

    Entry names are resolved against dest and every member's CRC is
    checked, so a caller can refuse a bad archive before clearing dest.

    Returns:
        Number of entries in the archive

    Raises:
        ZipSlipError: if any entry escapes dest
        ArchiveError: if the archive is not a readable zip
    """
    root = Path(dest).resolve()

    with _open(archive) as zf:
        plan = _plan(zf, root)
        try:
            bad = zf.testzip()
        except (zipfile.BadZipFile, zlib.error, EOFError) as e:
            raise ArchiveError(f"corrupt archive: {e}") from e
        if bad is not None:
            raise ArchiveError(f"corrupt entry {bad!r}")

    return len(plan)


def extract(archive: Union[str, os.PathLike, BinaryIO], dest: Union[str, os.PathLike]) -> int:
    """
    Extract a zip archive under dest.

    All entries are validated before the first write. Extraction is not
    transactional: an I/O error half-way leaves earlier entries on disk,
    so callers should extract into a freshly cleared directory.

    Args:
        archive: Path to a zip file, or a readable binary file object
        dest: Destination root (created if missing)

    Returns:
        Number of entries extracted

    Raises:
        ZipSlipError: if any entry escapes dest
        ArchiveError: if the archive is not a readable zip
        OSError: on filesystem errors
    """
    root = Path(dest)
    root.mkdir(parents=True, exist_ok=True)
    root = root.resolve()

    with _open(archive) as zf:
        plan = _plan(zf, root)
        directories: List[Tuple[Path, int]] = []

        for info, target in plan:
            if _is_directory(info):
                target.mkdir(mode=DEFAULT_DIR_MODE, parents=True, exist_ok=True)
                directories.append((target, _dir_mode(info)))
                continue

            target.parent.mkdir(mode=DEFAULT_DIR_MODE, parents=True, exist_ok=True)
            try:
                with zf.open(info) as src, open(target, "wb") as out:
                    shutil.copyfileobj(src, out)
            except (zipfile.BadZipFile, zlib.error, EOFError) as e:
                raise ArchiveError(f"corrupt entry {info.filename!r}: {e}") from e
            os.chmod(target, _file_mode(info))

    # Deepest first, after every file is in place, so a read-only
    # directory never blocks writing its own children
    for target, mode in sorted(directories, key=lambda d: len(d[0].parts), reverse=True):
        os.chmod(target, mode)

    logger.debug(f"Extracted {len(plan)} entries into {root}")
    return len(plan)
