"""Score aggregation and confidence strategies."""

import math
from typing import Dict

from common.models import ItemStats
from ranking.policy import ScoringPolicy
from ranking.protocols import ScoreAggregator, ConfidenceModel


class WeightedBlendAggregator(ScoreAggregator):
    """Weighted average of 0-100 components, clamped to 0-100."""

    def aggregate(
        self,
        components: Dict[str, float],
        weights: Dict[str, float],
    ) -> float:
        score = 0.0
        total_weight = 0.0

        for name, value in components.items():
            if name in weights:
                weight = weights[name]
                score += value * weight
                total_weight += weight

        if total_weight > 0:
            return max(0.0, min(100.0, score / total_weight))
        return 0.0


class EvidenceConfidence(ConfidenceModel):
    """
    Saturating confidence from weighted evidence across all three streams.

    Every event adds a strictly positive amount of evidence, so confidence
    never decreases as events arrive, and 1 - exp(-x) keeps it below 100.
    """

    def evidence(self, stats: ItemStats, policy: ScoringPolicy) -> float:
        return (
            policy.pairwise_evidence_weight * stats.sum_pairwise_weight
            + policy.rating_evidence_weight * stats.sum_weight
            + policy.favorite_evidence_weight * stats.sum_favorite_weight
        )

    def compute(self, stats: ItemStats, policy: ScoringPolicy) -> float:
        evidence = max(0.0, self.evidence(stats, policy))
        return 100.0 * (1.0 - math.exp(-evidence / policy.confidence_scale))
