"""
Archive Module - Packing and Safe Extraction

Turns a directory tree into a zip stream and back again.
"""

from .packer import (
    ArchiveEntry, CHUNK_SIZE, walk_tree, iter_archive,
    write_archive, pack_to_file,
)
from .extractor import ArchiveError, ZipSlipError, extract, normalize_entry_name, verify

__all__ = [
    'ArchiveEntry',
    'ArchiveError',
    'CHUNK_SIZE',
    'ZipSlipError',
    'extract',
    'iter_archive',
    'normalize_entry_name',
    'pack_to_file',
    'walk_tree',
    'verify',
    'write_archive',
]
