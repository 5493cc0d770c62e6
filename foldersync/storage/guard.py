"""
Storage Guard

Design Decision: Locking Strategy
=================================

Options Considered:
1. One asyncio.Lock around every request
   - Simple, but serializes downloads needlessly

2. File lock (fcntl/flock) on the storage directory
   - Works across processes, platform-specific

3. In-process reader/writer lock
   - Downloads share, uploads exclude everyone

Decision: asyncio reader/writer lock
- The server is a single process, so in-process state is enough
- Many downloads can stream the same tree at once
- An upload waits for running downloads, then blocks new ones,
  so a download never sees a half-replaced tree
- Waiting writers block new readers, so uploads are not starved
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

logger = logging.getLogger(__name__)


class StorageGuard:
    """
    Reader/writer lock over the storage root.

    Usage:
        async with guard.shared() as root:
            ...  # read the tree

        async with guard.exclusive() as root:
            ...  # replace the tree
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self._cond = asyncio.Condition()
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @property
    def readers(self) -> int:
        """Number of shared holders right now."""
        return self._readers

    @property
    def writer_active(self) -> bool:
        return self._writer

    @asynccontextmanager
    async def shared(self) -> AsyncIterator[Path]:
        """Hold the storage for reading."""
        async with self._cond:
            await self._cond.wait_for(
                lambda: not self._writer and self._waiting_writers == 0
            )
            self._readers += 1

        try:
            yield self.root
        finally:
            async with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @asynccontextmanager
    async def exclusive(self) -> AsyncIterator[Path]:
        """Hold the storage for replacing it."""
        async with self._cond:
            self._waiting_writers += 1
            try:
                await self._cond.wait_for(
                    lambda: not self._writer and self._readers == 0
                )
            finally:
                self._waiting_writers -= 1
                # Readers parked behind a cancelled writer must wake up
                self._cond.notify_all()
            self._writer = True

        logger.debug(f"Exclusive storage lock acquired: {self.root}")
        try:
            yield self.root
        finally:
            async with self._cond:
                self._writer = False
                self._cond.notify_all()
            logger.debug(f"Exclusive storage lock released: {self.root}")
