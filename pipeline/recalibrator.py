"""
Periodic rater reliability recalibration.

A rater's reliability is nudged toward how often their pairwise picks agree
with the eventual consensus, i.e. the side with the higher current rating
mean. Only *settled* events count: both items must already have folded the
event into their stats. Each rater is walked in id order from their
reliability checkpoint and the walk stops at the first unsettled event, so
an event is never counted twice and never skipped.
"""

import time
from dataclasses import dataclass, asdict, field
from typing import Callable, Dict, Any, List, Optional

import numpy as np

from common.config import config
from common.database import db as _default_db
from common.logging.logger import get_logger
from common.models import PairwiseEvent, Rater
from common.repositories import EventRepository, RaterRepository, ItemStatsRepository
from ranking.policy import ScoringPolicy, get_policy

logger = get_logger("recalibrator")

CONSENSUS_BASELINE = 0.5


@dataclass
class RecalibrationReport:
    raters_scanned: int = 0
    raters_updated: int = 0
    events_consumed: int = 0
    agreements: int = 0
    ties_skipped: int = 0
    raters_waiting: int = 0
    conflicts: int = 0
    reliability_scores: List[float] = field(default_factory=list)

    @property
    def mean_reliability(self) -> Optional[float]:
        if not self.reliability_scores:
            return None
        return float(np.mean(self.reliability_scores))

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data.pop('reliability_scores')
        data['mean_reliability'] = self.mean_reliability
        return data


def reliability_target(agreement_rate: float, policy: ScoringPolicy) -> float:
    """Agreement at the coin-flip baseline maps to neutral; perfect agreement to 2x neutral."""
    target = agreement_rate / CONSENSUS_BASELINE * policy.reliability_neutral
    return float(np.clip(target, policy.reliability_min, policy.reliability_max))


def step_reliability(
    current: float, agreements: int, samples: int, alpha: float, policy: ScoringPolicy
) -> float:
    """One bounded exponential-smoothing step toward the agreement target."""
    if samples < policy.min_reliability_samples:
        return policy.reliability_neutral
    target = reliability_target(agreements / samples, policy)
    stepped = current + alpha * (target - current)
    return float(np.clip(stepped, policy.reliability_min, policy.reliability_max))


class ReliabilityRecalibrator:
    def __init__(
        self,
        database=None,
        policy: Optional[ScoringPolicy] = None,
        alpha: Optional[float] = None,
        batch_size: Optional[int] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self._db = database or _default_db
        self.policy = policy or get_policy()
        self.alpha = alpha if alpha is not None else config.get("recalibration.alpha")
        self.batch_size = batch_size or config.get("recalibration.batch_size")
        self.clock = clock or time.time
        self.events = EventRepository(self._db)
        self.raters = RaterRepository(self._db)
        self.stats_repo = ItemStatsRepository(self._db)

    def run(self) -> RecalibrationReport:
        """Recalibrates every rater with unconsumed pairwise events."""
        report = RecalibrationReport()
        for rater_id in self.raters.ids_with_pending_pairwise():
            report.raters_scanned += 1
            self.recalibrate_rater(rater_id, report)

        logger.info(f"Reliability recalibration: {report.to_dict()}")
        return report

    def recalibrate_rater(self, rater_id: str, report: RecalibrationReport) -> bool:
        rater = self.raters.get(rater_id)
        if rater is None:
            return False

        events = self.events.pairwise_for_rater(
            rater_id, rater.last_reliability_event_id, self.batch_size
        )
        settled, means = self._settled_prefix(events)
        if len(settled) < len(events):
            report.raters_waiting += 1
        if not settled:
            return False

        agreements, ties = self._score_agreement(settled, means)
        samples = rater.reliability_sample_count + len(settled) - ties
        total_agreements = rater.reliability_agreements + agreements
        new_score = step_reliability(
            rater.reliability_score, total_agreements, samples, self.alpha, self.policy
        )

        with self._db.transaction() as conn:
            applied = self.raters.update_reliability(
                rater_id,
                reliability_score=new_score,
                sample_count=samples,
                agreements=total_agreements,
                last_event_id=settled[-1].id,
                updated_at=self.clock(),
                expected_last_event_id=rater.last_reliability_event_id,
                conn=conn,
            )
        if not applied:
            report.conflicts += 1
            logger.warning(
                f"Rater {rater_id} was recalibrated concurrently, skipping",
                extra={"rater_id": rater_id},
            )
            return False

        report.raters_updated += 1
        report.events_consumed += len(settled)
        report.agreements += agreements
        report.ties_skipped += ties
        report.reliability_scores.append(new_score)
        self._log_change(rater, new_score, samples)
        return True

    def _settled_prefix(self, events: List[PairwiseEvent]):
        """Returns the leading settled events and the current rating mean per item."""
        if not events:
            return [], {}
        stats = self.stats_repo.get_many(
            {e.item_a_id for e in events} | {e.item_b_id for e in events}
        )
        settled = []
        for event in events:
            a, b = stats.get(event.item_a_id), stats.get(event.item_b_id)
            if a is None or b is None:
                break
            if min(a.last_processed_pairwise_id, b.last_processed_pairwise_id) < event.id:
                break
            settled.append(event)
        return settled, {item_id: s.rating_mean for item_id, s in stats.items()}

    @staticmethod
    def _score_agreement(events: List[PairwiseEvent], means: Dict[str, float]):
        """Returns (agreements, ties) for settled *events* against current consensus."""
        mean_a = np.array([means[e.item_a_id] for e in events], dtype=float)
        mean_b = np.array([means[e.item_b_id] for e in events], dtype=float)
        picked_a = np.array([e.winner_id == e.item_a_id for e in events], dtype=bool)

        diff = mean_a - mean_b
        decided = diff != 0
        agreed = decided & ((diff > 0) == picked_a)
        return int(agreed.sum()), int((~decided).sum())

    def _log_change(self, rater: Rater, new_score: float, samples: int) -> None:
        if samples < self.policy.min_reliability_samples:
            logger.debug(
                f"Rater {rater.rater_id}: {samples} settled samples, staying neutral"
            )
        else:
            logger.debug(
                f"Rater {rater.rater_id}: reliability "
                f"{rater.reliability_score:.3f} -> {new_score:.3f} ({samples} samples)"
            )
