"""
Token Store

Design Decision: Token Reloading
================================

Options Considered:
1. Read the token file on every request
   - Always current, but one disk read per request

2. Load once at startup
   - Fast, but adding a client needs a restart

3. Load at startup, poll the file's mtime in the background
   - Fast lookups, new tokens picked up within one interval

4. inotify/watchdog file events
   - Instant, but extra dependency and awkward with Docker secrets

Decision: Poll mtime on a fixed interval
- Lookups are a set membership test
- A reload builds a complete new set, then swaps the reference,
  so a request never sees a half-loaded set
- A failed reload keeps the previous set in effect
"""

import asyncio
import logging
import os
import threading
from pathlib import Path
from typing import FrozenSet, Optional, Union

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_INTERVAL = 5.0  # seconds


def parse_tokens(text: str) -> FrozenSet[str]:
    """One token per line; surrounding whitespace and blank lines are ignored."""
    return frozenset(
        line.strip() for line in text.splitlines() if line.strip()
    )


class TokenStore:
    """
    In-memory set of valid tokens backed by a line-delimited file.

    Membership checks and swaps share one lock; the critical section is
    a single reference read or assignment.
    """

    def __init__(self, path: Union[str, os.PathLike],
                 refresh_interval: float = DEFAULT_REFRESH_INTERVAL):
        self.path = Path(path)
        self.refresh_interval = refresh_interval if refresh_interval > 0 else DEFAULT_REFRESH_INTERVAL

        self._tokens: FrozenSet[str] = frozenset()
        self._lock = threading.Lock()
        self._loaded_mtime_ns: Optional[int] = None
        self._task: Optional[asyncio.Task] = None

    def __contains__(self, token: object) -> bool:
        if not isinstance(token, str):
            return False
        with self._lock:
            tokens = self._tokens
        return token in tokens

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)

    def is_valid(self, token: Optional[str]) -> bool:
        """Check a presented token. Empty or missing tokens are never valid."""
        return bool(token) and token in self

    def _swap(self, tokens: FrozenSet[str], mtime_ns: Optional[int]):
        with self._lock:
            self._tokens = tokens
            self._loaded_mtime_ns = mtime_ns
        logger.info(f"Tokens loaded: {len(tokens)}")

    # === Loading ===

    def load(self) -> bool:
        """
        Read the token file synchronously (used at startup).

        Returns:
            True if the file was read, False if it could not be
        """
        try:
            mtime_ns = os.stat(self.path).st_mtime_ns
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning(f"No tokens loaded from {self.path}: {e}")
            return False

        self._swap(parse_tokens(text), mtime_ns)
        return True

    async def refresh(self) -> bool:
        """
        Reload the token file if it changed since the last load.

        Returns:
            True if a new set was swapped in
        """
        try:
            info = await aiofiles.os.stat(self.path)
        except OSError as e:
            logger.debug(f"Token file not available: {e}")
            return False

        if self._loaded_mtime_ns is not None and info.st_mtime_ns <= self._loaded_mtime_ns:
            return False

        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                text = await f.read()
        except OSError as e:
            logger.warning(f"Token reload from {self.path} failed, keeping previous set: {e}")
            return False

        self._swap(parse_tokens(text), info.st_mtime_ns)
        return True

    # === Background refresh ===

    async def watch(self):
        """Poll the token file forever (until cancelled)."""
        while True:
            await asyncio.sleep(self.refresh_interval)
            await self.refresh()

    def start(self) -> asyncio.Task:
        """Start the background refresh task on the running loop."""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.watch())
            logger.debug(f"Watching {self.path} every {self.refresh_interval}s")
        return self._task

    async def stop(self):
        """Cancel the background refresh task."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
