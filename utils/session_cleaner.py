"""Periodic removal of idle chat sessions."""

import asyncio
import logging

from services.realtime.session_store import SessionStore

logger = logging.getLogger(__name__)


class SessionCleaner:
    """Destroy sessions whose last activity is older than the configured timeout."""

    def __init__(self, store: SessionStore, timeout_seconds: float = 3_600) -> None:
        """
        Args:
            store: Shared in-memory session store.
            timeout_seconds: Idle threshold in seconds; sessions idle longer are destroyed.
        """
        self._store = store
        self.timeout_seconds = timeout_seconds

    async def prune_expired_sessions(self) -> int:
        """Destroy idle sessions and return the count removed."""
        return await self._store.sweep_expired(self.timeout_seconds)

    async def run_periodic_cleanup(self, interval_seconds: float = 60) -> None:
        """
        Repeatedly prune idle sessions at the given interval until cancelled.

        Args:
            interval_seconds: Seconds to sleep between cleanup runs.
        """
        while True:
            try:
                await asyncio.sleep(interval_seconds)
                await self.prune_expired_sessions()
            except asyncio.CancelledError:
                break
            except Exception:
                # Keep sweeping on the next tick.
                logger.exception("Session cleanup failed")
