"""
Filesystem helpers for replacing a whole directory tree.
"""

import logging
import os
import shutil
import stat
import sys
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)


class UnsafePathError(OSError):
    """Refusing to wipe a path that is a filesystem root."""


def _retry_writable(func, path, _exc):
    """rmtree error hook: make the parent writable and try once more."""
    parent = os.path.dirname(path)
    os.chmod(parent, stat.S_IMODE(os.lstat(parent).st_mode) | stat.S_IRWXU)
    func(path)


def _rmtree(path: str):
    # onerror is deprecated from 3.12 in favour of onexc
    if sys.version_info >= (3, 12):
        shutil.rmtree(path, onexc=_retry_writable)
    else:
        shutil.rmtree(path, onerror=_retry_writable)


def is_filesystem_root(path: Union[str, os.PathLike]) -> bool:
    """True for "/", a bare drive like "C:\\", or anything resolving to one."""
    resolved = Path(path).resolve()
    return resolved == Path(resolved.anchor) or resolved.parent == resolved


def clear_directory(path: Union[str, os.PathLike]) -> Path:
    """
    Remove everything inside path, keeping (or creating) the directory itself.

    Returns:
        The absolute path that was cleared

    Raises:
        UnsafePathError: if path resolves to a filesystem root
        OSError: if anything cannot be removed
    """
    target = Path(path).absolute()
    if is_filesystem_root(target):
        raise UnsafePathError(f"refusing to clean unsafe path: {target}")

    target.mkdir(parents=True, exist_ok=True)

    removed = 0
    with os.scandir(target) as it:
        children = list(it)

    for child in children:
        if child.is_dir(follow_symlinks=False):
            _rmtree(child.path)
        else:
            os.unlink(child.path)
        removed += 1

    logger.debug(f"Cleared {removed} entries from {target}")
    return target
