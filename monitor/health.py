import time
from typing import Callable, List, Optional

from common.config import config
from common.database import db as _default_db
from common.logging.logger import get_logger
from common.models import PipelineHealth
from common.repositories import MetricsRepository
from ranking.weights import PRIORITY_BOOSTED_PAIRWISE

logger = get_logger("health")


class PipelineHealthMonitor:
    def __init__(
        self,
        database=None,
        metrics_repo: Optional[MetricsRepository] = None,
        clock: Optional[Callable[[], float]] = None,
        high_priority_threshold: int = PRIORITY_BOOSTED_PAIRWISE,
    ):
        self._db = database or _default_db
        self._metrics = metrics_repo or MetricsRepository(self._db)
        self.clock = clock or time.time
        self.high_priority_threshold = high_priority_threshold

    def compute_health(self) -> PipelineHealth:
        """
        Snapshot of the scoring backlog and publication state.
        """
        now = self.clock()
        dirty, high, oldest, average = self._metrics.get_queue_snapshot(self.high_priority_threshold)
        tracked, published, provisional = self._metrics.get_publication_counts()

        health = PipelineHealth(
            dirty_count=dirty,
            high_priority_count=high,
            oldest_dirty_age_seconds=max(0.0, now - oldest) if oldest is not None else 0.0,
            avg_dirty_age_seconds=max(0.0, now - average) if average is not None else 0.0,
            tracked_items=tracked,
            published_count=published,
            provisional_count=provisional,
        )
        logger.info(f"Pipeline health: {health.to_dict()}")
        return health

    def check_health(self, health: Optional[PipelineHealth] = None) -> List[str]:
        """
        Checks metrics against thresholds and logs alerts.

        Pass a snapshot from compute_health() to avoid querying twice.
        """
        if health is None:
            health = self.compute_health()
        max_backlog = config.get("monitor.max_dirty_backlog")
        max_age = config.get("monitor.max_oldest_dirty_seconds")

        alerts = []
        if health.dirty_count > max_backlog:
            alerts.append(
                f"WARNING: Dirty backlog of {health.dirty_count} items exceeds {max_backlog}"
            )

        if health.oldest_dirty_age_seconds > max_age:
            alerts.append(
                f"WARNING: Oldest dirty item waiting {health.oldest_dirty_age_seconds:.0f}s "
                f"(limit {max_age:.0f}s)"
            )

        if health.high_priority_count > 0 and health.oldest_dirty_age_seconds > max_age / 2:
            alerts.append(
                f"INFO: {health.high_priority_count} high-priority items pending."
            )

        for alert in alerts:
            logger.warning(alert)

        return alerts


if __name__ == "__main__":
    monitor = PipelineHealthMonitor()
    monitor.check_health()
