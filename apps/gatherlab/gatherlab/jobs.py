from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from gatherlab import queries
from gatherlab.config import Config
from gatherlab.db import get_runner, write_transaction

logger = logging.getLogger(__name__)


def prune_stale_sessions(runner, ttl_minutes: Optional[int] = None) -> int:
    """Delete pending sessions (and their RSVPs) that haven't moved within the TTL."""
    ttl = ttl_minutes if ttl_minutes is not None else Config.PENDING_SESSION_TTL_MINUTES
    cutoff = (datetime.now(timezone.utc) - timedelta(minutes=ttl)).isoformat()
    with write_transaction(runner):
        stale = queries.list_stale_pending_sessions(runner, cutoff)
        for row in stale:
            queries.delete_rsvp_session(runner, int(row["id"]))
    if stale:
        logger.info("Pruned %s stale rsvp sessions", len(stale))
    return len(stale)


def _prune_once() -> int:
    runner = get_runner()
    try:
        return prune_stale_sessions(runner)
    finally:
        runner.connection.close()


class Jobs:
    def __init__(self, interval: float = 300):
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self.run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def run(self) -> None:
        while True:
            try:
                await asyncio.to_thread(_prune_once)
            except Exception:
                logger.exception("Error while pruning rsvp sessions")
            await asyncio.sleep(self.interval)
