"""
Retention Sweeper - Purges sessions older than the retention period

Runs outside request flow (operator CLI or a cron-like scheduler).
A failure on one session is logged and skipped so the rest of the
batch still gets swept.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Union

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class RetentionSweeper:
    """Deletes sessions whose last write is older than a cutoff"""

    def __init__(self, store, clock: Optional[Callable[[], datetime]] = None):
        """
        Args:
            store: ArtifactStore (needs list_sessions, last_modified, delete_session)
            clock: Returns the current UTC datetime; injectable for tests
        """
        self.store = store
        self.clock = clock or _utc_now

    def sweep(self, retention_period: Union[timedelta, int, float]) -> int:
        """
        Delete every session last modified before now - retention_period.

        Args:
            retention_period: timedelta, or a number of days

        Returns:
            int: Number of sessions removed
        """
        if not isinstance(retention_period, timedelta):
            retention_period = timedelta(days=retention_period)
        if retention_period < timedelta(0):
            raise ValueError("retention_period must not be negative")

        cutoff = self.clock() - retention_period
        removed = 0

        for session_id in sorted(self.store.list_sessions()):
            try:
                modified = self.store.last_modified(session_id)
                if modified is None or modified >= cutoff:
                    continue
                self.store.delete_session(session_id)
                removed += 1
                logger.info(f"Swept session {session_id} (last modified {modified.isoformat()})")
            except Exception as e:
                logger.error(f"Failed to sweep session {session_id}: {e}")

        logger.info(f"Retention sweep removed {removed} session(s) older than {cutoff.isoformat()}")
        return removed
