"""
Incremental stats updater.

Folds an item's new events (ids past its per-stream checkpoints) into its
running sufficient statistics. The work is split in two phases:

- compute(item_id) reads the stored row and the new events and returns a
  StatsUpdate without writing anything.
- apply(update, conn) persists it inside the caller's transaction with a
  checkpoint-guarded upsert, so stats and checkpoints move together.
"""

import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, Optional, Tuple

from common.database import db as _default_db
from common.errors import DataIntegrityError
from common.logging.logger import get_logger
from common.models import ItemStats, Rater
from common.repositories import EventRepository, RaterRepository, ItemStatsRepository
from ranking.calibration import normalize_rating
from ranking.policy import ScoringPolicy, get_policy
from ranking.rating import update_rating
from ranking.weights import EVENT_PAIRWISE, EVENT_RATING, EVENT_FAVORITE, event_weight

logger = get_logger("updater")


@dataclass
class StatsUpdate:
    """Result of the read phase for one item."""
    item_id: str
    stats: ItemStats
    # None when the item had no stats row yet
    expected_checkpoints: Optional[Tuple[int, int, int]]
    pairwise_count: int = 0
    rating_count: int = 0
    favorite_count: int = 0

    @property
    def event_count(self) -> int:
        return self.pairwise_count + self.rating_count + self.favorite_count

    @property
    def is_new(self) -> bool:
        return self.expected_checkpoints is None


class IncrementalStatsUpdater:
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
        self.stats_repo = ItemStatsRepository(self._db)

    # -- read phase ---------------------------------------------------------

    def compute(self, item_id: str) -> StatsUpdate:
        """
        Folds every event past the stored checkpoints into a copy of the stats.

        Raises:
            DataIntegrityError: an event is at or behind its checkpoint, does
                not reference the item, or its rater row is missing.
        """
        stored = self.stats_repo.get(item_id)
        if stored is None:
            stats = ItemStats.fresh(item_id, self.policy)
            expected = None
        else:
            stats = replace(stored)
            expected = stored.checkpoints

        update = StatsUpdate(item_id=item_id, stats=stats, expected_checkpoints=expected)
        update.pairwise_count = self._fold_pairwise(stats)
        update.rating_count = self._fold_ratings(stats)
        update.favorite_count = self._fold_favorites(stats)
        stats.updated_at = self.clock()
        return update

    def _fold_pairwise(self, stats: ItemStats) -> int:
        events = self.events.pairwise_for_item(stats.item_id, stats.last_processed_pairwise_id)
        for event in events:
            self._check_order(stats.item_id, "pairwise", event.id, stats.last_processed_pairwise_id)
            if not event.involves(stats.item_id):
                raise DataIntegrityError(
                    stats.item_id, f"pairwise event {event.id} does not reference the item"
                )
            try:
                weight = event_weight(EVENT_PAIRWISE, {"weight_class": event.weight_class}, self.policy)
            except ValueError as e:
                raise DataIntegrityError(stats.item_id, f"pairwise event {event.id}: {e}") from e

            stats.rating_mean, stats.rating_uncertainty = update_rating(
                stats.rating_mean,
                stats.rating_uncertainty,
                event.opponent_snapshot(stats.item_id),
                event.outcome_for(stats.item_id),
                weight,
                self.policy,
            )
            stats.sum_pairwise_weight += weight
            stats.total_pairwise += 1
            stats.last_processed_pairwise_id = event.id
        return len(events)

    def _fold_ratings(self, stats: ItemStats) -> int:
        events = self.events.ratings_for_item(stats.item_id, stats.last_processed_rating_id)
        if not events:
            return 0
        raters = self._load_raters(stats.item_id, {e.rater_id for e in events})
        for event in events:
            self._check_order(stats.item_id, "rating", event.id, stats.last_processed_rating_id)
            if event.item_id != stats.item_id:
                raise DataIntegrityError(
                    stats.item_id, f"rating event {event.id} does not reference the item"
                )
            normalized = normalize_rating(
                event.raw_score, event.rater_mean_snapshot, event.rater_std_snapshot, self.policy
            )
            weight = self._rater_weight(EVENT_RATING, raters[event.rater_id])
            stats.sum_weighted_rating += normalized * weight
            stats.sum_weight += weight
            stats.total_ratings += 1
            stats.last_processed_rating_id = event.id
        return len(events)

    def _fold_favorites(self, stats: ItemStats) -> int:
        events = self.events.favorites_for_item(stats.item_id, stats.last_processed_favorite_id)
        if not events:
            return 0
        raters = self._load_raters(stats.item_id, {e.rater_id for e in events})
        for event in events:
            self._check_order(stats.item_id, "favorite", event.id, stats.last_processed_favorite_id)
            if event.item_id != stats.item_id:
                raise DataIntegrityError(
                    stats.item_id, f"favorite event {event.id} does not reference the item"
                )
            stats.sum_favorite_weight += self._rater_weight(EVENT_FAVORITE, raters[event.rater_id])
            stats.total_favorites += 1
            stats.last_processed_favorite_id = event.id
        return len(events)

    def _load_raters(self, item_id: str, rater_ids) -> Dict[str, Rater]:
        raters = self.raters.get_many(rater_ids)
        missing = set(rater_ids) - set(raters)
        if missing:
            raise DataIntegrityError(item_id, f"unknown rater(s): {', '.join(sorted(missing))}")
        return raters

    def _rater_weight(self, event_type: str, rater: Rater) -> float:
        return event_weight(
            event_type,
            {
                "reliability_score": rater.reliability_score,
                "reliability_sample_count": rater.reliability_sample_count,
            },
            self.policy,
        )

    @staticmethod
    def _check_order(item_id: str, stream: str, event_id: int, checkpoint: int) -> None:
        if event_id <= checkpoint:
            raise DataIntegrityError(
                item_id, f"{stream} checkpoint would move backward ({checkpoint} -> {event_id})"
            )

    # -- write phase --------------------------------------------------------

    def apply(self, update: StatsUpdate, conn) -> None:
        """Persists *update* in the caller's transaction (checkpoint-guarded)."""
        self.stats_repo.save(update.stats, update.expected_checkpoints, conn)
        logger.debug(
            f"Updated {update.item_id}: +{update.pairwise_count} pairwise, "
            f"+{update.rating_count} ratings, +{update.favorite_count} favorites "
            f"(rating_mean={update.stats.rating_mean:.1f}, "
            f"uncertainty={update.stats.rating_uncertainty:.1f})"
        )

    def update(self, item_id: str) -> StatsUpdate:
        """compute() and apply() in one transaction, without publishing."""
        update = self.compute(item_id)
        with self._db.transaction() as conn:
            self.apply(update, conn)
        return update
