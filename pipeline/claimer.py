"""Batch claimer: exclusive, non-blocking reservation of dirty items."""

from typing import List, Optional

from common.config import config
from common.database import db as _default_db
from common.errors import TransientStorageError
from common.logging.logger import get_logger
from common.models import DirtyMarker
from common.repositories import DirtyQueueRepository

logger = get_logger("claimer")


class BatchClaimer:
    """
    Reserves up to ``batch_size`` dirty items for one worker.

    The select and delete run in one BEGIN IMMEDIATE transaction opened
    with a very short busy timeout. When another claimer or writer holds
    the write lock the attempt gives up at once and returns an empty
    batch instead of queueing behind it, so two callers can never be
    handed the same item and none of them blocks.
    """

    def __init__(self, database=None, lock_timeout: Optional[float] = None):
        self._db = database or _default_db
        self.queue = DirtyQueueRepository(self._db)
        self.lock_timeout = (
            lock_timeout if lock_timeout is not None
            else config.get("database.claim_lock_timeout_seconds")
        )

    def claim_markers(self, batch_size: int) -> List[DirtyMarker]:
        if batch_size <= 0:
            return []
        try:
            with self._db.transaction(timeout=self.lock_timeout) as conn:
                markers = self.queue.take(batch_size, conn)
        except TransientStorageError as e:
            logger.debug(f"Claim skipped, queue locked: {e}")
            return []

        if markers:
            logger.debug(f"Claimed {len(markers)} dirty items")
        return markers

    def claim(self, batch_size: int) -> List[str]:
        """Returns the claimed item ids, highest priority then oldest first."""
        return [m.item_id for m in self.claim_markers(batch_size)]
