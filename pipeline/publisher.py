"""Score publisher: debounced writes to the read-optimized score table."""

import time
from typing import Callable, Optional

from common.database import db as _default_db
from common.logging.logger import get_logger
from common.models import ItemStats, PublishedScore
from common.repositories import PublishedScoreRepository
from ranking.pipeline import ScorePipeline, ScoreResult
from ranking.policy import ScoringPolicy

logger = get_logger("publisher")


def should_publish(
    current: Optional[PublishedScore], result: ScoreResult, policy: ScoringPolicy
) -> bool:
    """
    True when the item has no published row, the provisional flag flips,
    or the score moved by more than the minimum delta.
    """
    if current is None:
        return True
    if current.provisional != result.provisional:
        return True
    return abs(result.score - current.score) > policy.min_publish_delta


class ScorePublisher:
    def __init__(
        self,
        database=None,
        pipeline: Optional[ScorePipeline] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._db = database or _default_db
        self.pipeline = pipeline or ScorePipeline()
        self.clock = clock or time.time
        self.scores = PublishedScoreRepository(self._db)

    @property
    def policy(self) -> ScoringPolicy:
        return self.pipeline.policy

    def publish(self, item_id: str, stats: ItemStats, conn=None) -> bool:
        """
        Scores *stats* and writes the published row if the change is meaningful.

        Pass the connection of the transaction that persisted *stats* so that
        both commit together.

        Returns:
            True if a row was written.
        """
        result = self.pipeline.score(stats)
        current = self.scores.get(item_id, conn=conn)
        if not should_publish(current, result, self.policy):
            logger.debug(
                f"Skipped publish for {item_id}: {result.score:.2f} "
                f"within {self.policy.min_publish_delta} of {current.score:.2f}"
            )
            return False

        breakdown = result.breakdown
        self.scores.upsert(PublishedScore(
            item_id=item_id,
            score=result.score,
            rating_mean=stats.rating_mean,
            rating_uncertainty=stats.rating_uncertainty,
            confidence=result.confidence,
            provisional=result.provisional,
            rating_component=breakdown.rating_component,
            rating_signal_component=breakdown.rating_signal_component,
            favorite_component=breakdown.favorite_component,
            reliability_factor=breakdown.reliability_factor,
            policy_version=self.policy.version,
            revision=(current.revision + 1) if current else 1,
            updated_at=self.clock(),
        ), conn=conn)

        if current is not None and current.provisional and not result.provisional:
            logger.info(f"Item {item_id} left provisional (confidence={result.confidence:.1f})")
        logger.debug(
            f"Published {item_id}: score={result.score:.2f} "
            f"confidence={result.confidence:.1f} provisional={result.provisional}"
        )
        return True
