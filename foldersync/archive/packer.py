"""
Folder Archiver

Design Decision: Archive Format
===============================

Options Considered:
1. tar.gz - Native on POSIX, streams well
   - Awkward on Windows clients

2. zip - Universally readable, per-entry compression
   - Central directory at the end, but writable to unseekable
     streams with data descriptors

3. Custom framing (length-prefixed entries)
   - Full control, but nothing else can open it

Decision: zip
- Every platform can inspect a downloaded folder.zip
- zipfile writes to unseekable sinks, so the server can stream
  the archive straight into the HTTP response
- Directory entries (trailing "/") keep empty folders

Walk Order:
The tree is traversed with an explicit stack. Siblings are visited in
sorted name order, so two archives of the same tree list their entries
in the same order.
"""

import logging
import os
import stat
import zipfile
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Iterator, Union

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024  # 64KB

PathLike = Union[str, os.PathLike]


@dataclass
class ArchiveEntry:
    """A single file or directory found under the archived root."""
    relative_path: str  # forward slashes, no leading "/"
    is_directory: bool
    mode: int
    path: Path  # source on disk

    @property
    def arcname(self) -> str:
        """Name stored in the archive (directories end with "/")."""
        if self.is_directory:
            return self.relative_path + "/"
        return self.relative_path


def walk_tree(root: PathLike) -> Iterator[ArchiveEntry]:
    """
    Lazily enumerate every file and directory under root.

    The root itself is not yielded. A directory is always yielded before
    anything inside it. Symlinked directories are not descended into,
    symlinks to files are treated as the files they point to, and other
    special files (sockets, fifos, broken links) are skipped.

    Raises:
        OSError: if any directory cannot be listed
    """
    root = Path(root)
    stack = [(root, "")]

    while stack:
        current, prefix = stack.pop()

        with os.scandir(current) as it:
            children = sorted(it, key=lambda e: e.name)

        subdirs = []
        for child in children:
            relative = f"{prefix}{child.name}"

            if child.is_dir(follow_symlinks=False):
                info = child.stat(follow_symlinks=False)
                yield ArchiveEntry(
                    relative_path=relative,
                    is_directory=True,
                    mode=stat.S_IMODE(info.st_mode),
                    path=Path(child.path),
                )
                subdirs.append((Path(child.path), relative + "/"))
            elif child.is_file():
                info = child.stat()
                yield ArchiveEntry(
                    relative_path=relative,
                    is_directory=False,
                    mode=stat.S_IMODE(info.st_mode),
                    path=Path(child.path),
                )
            else:
                logger.debug(f"Skipping special file: {child.path}")

        # Reversed so the first sibling is popped first
        stack.extend(reversed(subdirs))


class _StreamSink:
    """Write-only buffer that zipfile treats as an unseekable stream."""

    def __init__(self):
        self._buffer = bytearray()

    def write(self, data) -> int:
        self._buffer.extend(data)
        return len(data)

    def flush(self):
        pass

    @property
    def pending(self) -> int:
        return len(self._buffer)

    def drain(self) -> bytes:
        data = bytes(self._buffer)
        self._buffer.clear()
        return data


def iter_archive(root: PathLike, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
    """
    Yield a zip archive of root as a sequence of byte chunks.

    Nothing is staged on disk: file contents are read and compressed as
    the consumer pulls chunks, so memory stays around chunk_size no matter
    how large the tree is.

    Args:
        root: Directory to archive
        chunk_size: Approximate size of each yielded chunk

    Raises:
        OSError: on any read error; the stream produced so far is unusable
    """
    sink = _StreamSink()

    with zipfile.ZipFile(sink, "w", compression=zipfile.ZIP_DEFLATED,
                         strict_timestamps=False) as archive:
        for entry in walk_tree(root):
            info = zipfile.ZipInfo.from_file(
                entry.path, entry.arcname, strict_timestamps=False
            )

            if entry.is_directory:
                archive.writestr(info, b"")
            else:
                info.compress_type = zipfile.ZIP_DEFLATED
                with open(entry.path, "rb") as src, archive.open(info, "w") as dst:
                    while True:
                        block = src.read(chunk_size)
                        if not block:
                            break
                        dst.write(block)
                        if sink.pending >= chunk_size:
                            yield sink.drain()

            if sink.pending >= chunk_size:
                yield sink.drain()

    # Central directory is written on close
    if sink.pending:
        yield sink.drain()


def write_archive(root: PathLike, fileobj: BinaryIO,
                  chunk_size: int = CHUNK_SIZE) -> int:
    """
    Write a zip archive of root into an open binary file object.

    Returns:
        Number of bytes written
    """
    written = 0
    for chunk in iter_archive(root, chunk_size):
        fileobj.write(chunk)
        written += len(chunk)
    return written


def pack_to_file(root: PathLike, dest: PathLike) -> int:
    """
    Archive root into the file at dest.

    The partially written file is removed if archiving fails.

    Returns:
        Number of bytes written
    """
    dest = Path(dest)
    try:
        with open(dest, "wb") as f:
            written = write_archive(root, f)
    except BaseException:
        dest.unlink(missing_ok=True)
        raise

    logger.debug(f"Packed {root} into {dest} ({written:,} bytes)")
    return written
