"""Event retention: purge old events that are already folded everywhere."""

import time
from typing import Callable, Dict, Optional

from common.config import config
from common.database import db as _default_db
from common.logging.logger import get_logger
from common.repositories import EventRepository

logger = get_logger("retention")

SECONDS_PER_DAY = 86400


class EventRetention:
    def __init__(self, database=None, clock: Optional[Callable[[], float]] = None):
        self._db = database or _default_db
        self.clock = clock or time.time
        self.events = EventRepository(self._db)

    def purge(self, days_to_keep: Optional[int] = None) -> Dict[str, int]:
        """
        Deletes events older than *days_to_keep* days.

        Events still ahead of any consumer's checkpoint are kept regardless
        of age, so purging never changes what an item's stats will fold.

        Returns:
            Deleted row count per stream.
        """
        days = days_to_keep if days_to_keep is not None else config.get("retention.days_to_keep")
        if days < 0:
            raise ValueError(f"days_to_keep must be non-negative, got {days}")

        cutoff = self.clock() - days * SECONDS_PER_DAY
        with self._db.transaction() as conn:
            deleted = self.events.purge_folded(cutoff, conn=conn)

        logger.info(f"Purged events older than {days} days: {deleted}")
        return deleted
