"""Background reaper for expired uploads.

Every ``interval_seconds`` the sweeper retires sessions older than the TTL,
whether or not they were ever downloaded, and deletes their files. It then
scans the upload directory for files no live session points at (left
behind by a restart) and deletes those past the TTL by modification time.

The sweeper does not coordinate with in-flight downloads. A failed tick is
logged and never stops the loop.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Optional

from .registry import SessionRegistry
from .storage import LocalFileStorage

logger = logging.getLogger(__name__)


class ExpirySweeper:
    """Periodic TTL enforcement over the registry and storage.

    Args:
        registry:         Live session registry.
        storage:          Storage holding uploaded files.
        ttl_seconds:      Maximum age of an unclaimed upload.
        interval_seconds: Delay between sweeps.
        clock:            Wall clock; must match the one sessions were stamped with.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        storage: LocalFileStorage,
        ttl_seconds: float = 300,
        interval_seconds: float = 300,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._registry = registry
        self._storage = storage
        self._ttl = ttl_seconds
        self._interval = interval_seconds
        self._clock = clock
        self._sweep_task: Optional[asyncio.Task] = None  # type: ignore[type-arg]

    @property
    def running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start the background sweep task."""
        if self.running:
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info(
            "Expiry sweeper started (TTL=%ss, interval=%ss)",
            self._ttl,
            self._interval,
        )

    async def stop(self) -> None:
        """Cancel the sweep task; an in-flight sweep is abandoned."""
        if self._sweep_task:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        logger.info("Expiry sweeper stopped")

    # ------------------------------------------------------------------
    # Sweeping
    # ------------------------------------------------------------------

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self.sweep_once()
            except Exception:
                logger.exception("Expiry sweep failed")

    async def sweep_once(self) -> int:
        """Delete every expired upload; returns the number of files removed."""
        now = self._clock()
        removed = 0

        for session in self._registry.snapshot():
            if session.age(now) <= self._ttl:
                continue
            if self._registry.remove(session.code, expected=session) is None:
                # Served while we were looking, possibly with the code reused since.
                continue
            try:
                if await self._storage.delete(session.storage_key):
                    removed += 1
                logger.info("Expired session code=%d name=%s", session.code, session.original_name)
            except OSError:
                logger.exception("Failed to delete expired file for code=%d", session.code)

        live_keys = self._registry.storage_keys()
        for key in await self._storage.list_keys():
            if key in live_keys:
                continue
            try:
                mtime = await self._storage.modified_time(key)
                if mtime is None or now - mtime <= self._ttl:
                    continue
                # Re-check: an upload may have registered this key meanwhile.
                if key in self._registry.storage_keys():
                    continue
                if await self._storage.delete(key):
                    removed += 1
                    logger.info("Deleted orphaned file: %s", key)
            except OSError:
                logger.exception("Failed to delete orphaned file %s", key)

        if removed:
            logger.info("Expiry sweep: removed %d files", removed)
        return removed
