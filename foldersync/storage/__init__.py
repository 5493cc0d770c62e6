"""
Storage Module - Guarded Access to the Storage Root

Reader/writer locking for the synchronized folder and the helper that
wipes it before a replacement.
"""

from .guard import StorageGuard
from .paths import UnsafePathError, clear_directory, is_filesystem_root

__all__ = ['StorageGuard', 'UnsafePathError', 'clear_directory', 'is_filesystem_root']
