"""
Event ingestion: append one event and mark its items dirty, atomically.

Each record_* call runs a single BEGIN IMMEDIATE transaction that
1. ensures the rater row exists,
2. appends exactly one event,
3. (ratings only) freezes the rater's calibration into the event and folds
   the raw score into the rater's running mean/variance,
4. marks every referenced item dirty with the event's priority.
Either everything is written or nothing is.
"""

import math
import time
from typing import Callable, Optional

from common.database import db as _default_db
from common.errors import EventValidationError
from common.logging.logger import get_logger
from common.repositories import EventRepository, RaterRepository, DirtyQueueRepository
from ranking.calibration import update_running_stats
from ranking.policy import ScoringPolicy, get_policy
from ranking.weights import (
    EVENT_PAIRWISE,
    EVENT_RATING,
    EVENT_FAVORITE,
    WEIGHT_NORMAL,
    WEIGHT_CLASSES,
    dirty_priority,
)

logger = get_logger("ingestion")

MIN_RAW_SCORE = 0.0
MAX_RAW_SCORE = 100.0


def _require_id(field: str, value) -> str:
    if not isinstance(value, str) or not value.strip():
        raise EventValidationError(field, "must be a non-empty string")
    return value


def _require_number(field: str, value) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise EventValidationError(field, f"must be a number, got {type(value).__name__}")
    if not math.isfinite(value):
        raise EventValidationError(field, f"must be finite, got {value!r}")
    return float(value)


class EventIngestionService:
    """Write path consumed by the voting client."""

    def __init__(
        self,
        database=None,
        policy: Optional[ScoringPolicy] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._db = database or _default_db
        self.policy = policy or get_policy()
        self.clock = clock or time.time
        self.events = EventRepository(self._db)
        self.raters = RaterRepository(self._db)
        self.queue = DirtyQueueRepository(self._db)

    def record_pairwise_result(
        self,
        rater_id: str,
        item_a_id: str,
        item_b_id: str,
        winner_id: str,
        item_a_snapshot_rating: float,
        item_b_snapshot_rating: float,
        weight_class: str = WEIGHT_NORMAL,
    ) -> int:
        """
        Appends a head-to-head result.

        The snapshot ratings are the two items' rating means as shown to the
        rater; they are stored with the event and used as the frozen
        opponent rating when each side is processed.

        Returns:
            The new event id.
        """
        _require_id("rater_id", rater_id)
        _require_id("item_a_id", item_a_id)
        _require_id("item_b_id", item_b_id)
        _require_id("winner_id", winner_id)
        if item_a_id == item_b_id:
            raise EventValidationError("item_b_id", "an item cannot be compared with itself")
        if winner_id not in (item_a_id, item_b_id):
            raise EventValidationError("winner_id", f"'{winner_id}' is not a participant")
        if weight_class not in WEIGHT_CLASSES:
            raise EventValidationError("weight_class", f"unknown weight class '{weight_class}'")
        snapshot_a = _require_number("item_a_snapshot_rating", item_a_snapshot_rating)
        snapshot_b = _require_number("item_b_snapshot_rating", item_b_snapshot_rating)
        for field, snapshot in (("item_a_snapshot_rating", snapshot_a), ("item_b_snapshot_rating", snapshot_b)):
            if not self.policy.snapshot_rating_min <= snapshot <= self.policy.snapshot_rating_max:
                raise EventValidationError(
                    field,
                    f"{snapshot:g} outside [{self.policy.snapshot_rating_min:g}, "
                    f"{self.policy.snapshot_rating_max:g}]",
                )

        now = self.clock()
        priority = dirty_priority(EVENT_PAIRWISE, weight_class)
        with self._db.transaction() as conn:
            self.raters.ensure(rater_id, self.policy, now, conn=conn)
            event_id = self.events.insert_pairwise(
                rater_id, item_a_id, item_b_id, winner_id,
                snapshot_a, snapshot_b, weight_class, now, conn=conn,
            )
            self.queue.mark_dirty(item_a_id, priority, now, conn=conn)
            self.queue.mark_dirty(item_b_id, priority, now, conn=conn)

        logger.debug(
            f"Pairwise event {event_id}: {item_a_id} vs {item_b_id}, "
            f"winner={winner_id} ({weight_class})"
        )
        return event_id

    def record_rating(self, rater_id: str, item_id: str, raw_score: float) -> int:
        """Appends a single-item rating (raw score 0-100). Returns the event id."""
        _require_id("rater_id", rater_id)
        _require_id("item_id", item_id)
        score = _require_number("raw_score", raw_score)
        if not MIN_RAW_SCORE <= score <= MAX_RAW_SCORE:
            raise EventValidationError(
                "raw_score", f"{score} outside [{MIN_RAW_SCORE:g}, {MAX_RAW_SCORE:g}]"
            )

        now = self.clock()
        with self._db.transaction() as conn:
            rater = self.raters.ensure(rater_id, self.policy, now, conn=conn)
            # The event keeps the calibration as it was before this score.
            event_id = self.events.insert_rating(
                rater_id, item_id, score,
                rater.rating_mean, rater.rating_std, now, conn=conn,
            )
            running = update_running_stats(
                rater.rating_mean, rater.m2, rater.rating_sample_count, score, self.policy
            )
            self.raters.update_calibration(
                rater_id, running.mean, running.std, running.count, running.m2, conn=conn
            )
            self.queue.mark_dirty(item_id, dirty_priority(EVENT_RATING), now, conn=conn)

        logger.debug(
            f"Rating event {event_id}: {item_id} <- {score:g} by {rater_id}",
            extra={"event_id": event_id, "item_id": item_id, "rater_id": rater_id},
        )
        return event_id

    def record_favorite(self, rater_id: str, item_id: str) -> int:
        """Appends a favorite signal. Returns the event id."""
        _require_id("rater_id", rater_id)
        _require_id("item_id", item_id)

        now = self.clock()
        with self._db.transaction() as conn:
            self.raters.ensure(rater_id, self.policy, now, conn=conn)
            event_id = self.events.insert_favorite(rater_id, item_id, now, conn=conn)
            self.queue.mark_dirty(item_id, dirty_priority(EVENT_FAVORITE), now, conn=conn)

        logger.debug(
            f"Favorite event {event_id}: {item_id} by {rater_id}",
            extra={"event_id": event_id, "item_id": item_id, "rater_id": rater_id},
        )
        return event_id
