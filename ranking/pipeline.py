"""Score pipeline: orchestrates components, aggregation and confidence."""

from dataclasses import dataclass, asdict
from typing import Dict, Any, List, Optional

from common.models import ItemStats, ScoreBreakdown
from ranking.aggregation import WeightedBlendAggregator, EvidenceConfidence
from ranking.components import BUILTIN_COMPONENTS, reliability_factor
from ranking.policy import ScoringPolicy, get_policy
from ranking.protocols import ScoreComponent, ScoreAggregator, ConfidenceModel
from ranking.registry import ComponentRegistry


@dataclass
class ScoreResult:
    score: float
    confidence: float
    provisional: bool
    breakdown: ScoreBreakdown

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class ScorePipeline:
    """
    Turns running item statistics into a bounded, explainable score.

    Args:
        policy: Scoring policy (defaults to the config-driven policy).
        components: Optional list of components (defaults to BUILTIN_COMPONENTS).
        aggregator: Optional aggregator (defaults to WeightedBlendAggregator).
        confidence: Optional confidence model (defaults to EvidenceConfidence).
    """

    def __init__(
        self,
        policy: Optional[ScoringPolicy] = None,
        components: Optional[List[ScoreComponent]] = None,
        aggregator: Optional[ScoreAggregator] = None,
        confidence: Optional[ConfidenceModel] = None,
    ):
        self.policy = policy or get_policy()
        self.registry = ComponentRegistry()
        for c in (components or BUILTIN_COMPONENTS):
            self.registry.register(c)

        self.aggregator = aggregator or WeightedBlendAggregator()
        self.confidence_model = confidence or EvidenceConfidence()

    def compute_components(self, stats: ItemStats) -> Dict[str, float]:
        """Compute all registered components for *stats*."""
        return {c.name: c.compute(stats, self.policy) for c in self.registry.components}

    def compute_score(self, components: Dict[str, float]) -> float:
        return self.aggregator.aggregate(components, self.registry.weights(self.policy))

    def compute_confidence(self, stats: ItemStats) -> float:
        return min(100.0, self.confidence_model.compute(stats, self.policy))

    def score(self, stats: ItemStats) -> ScoreResult:
        components = self.compute_components(stats)
        confidence = self.compute_confidence(stats)
        breakdown = ScoreBreakdown(
            rating_component=round(components.get("rating", self.policy.neutral_component), 2),
            rating_signal_component=round(
                components.get("rating_signal", self.policy.neutral_component), 2
            ),
            favorite_component=round(components.get("favorite", self.policy.neutral_component), 2),
            reliability_factor=round(reliability_factor(stats, self.policy), 4),
        )
        return ScoreResult(
            score=round(self.compute_score(components), 2),
            confidence=round(confidence, 2),
            provisional=confidence < self.policy.min_publish_confidence,
            breakdown=breakdown,
        )
