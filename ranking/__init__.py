"""
Ranking package: pure scoring math, free of persistence.

Public API:
    ScoringPolicy, get_policy
    ScorePipeline, ScoreResult, ComponentRegistry
    ScoreComponent, ScoreAggregator, ConfidenceModel
    WeightedBlendAggregator, EvidenceConfidence
    update_rating, update_running_stats, normalize_rating,
    effective_reliability, dirty_priority, event_weight
"""

from ranking.policy import ScoringPolicy, get_policy
from ranking.protocols import ScoreComponent, ScoreAggregator, ConfidenceModel
from ranking.registry import ComponentRegistry
from ranking.aggregation import WeightedBlendAggregator, EvidenceConfidence
from ranking.pipeline import ScorePipeline, ScoreResult
from ranking.rating import expected_score, update_rating
from ranking.calibration import update_running_stats, normalize_rating, effective_reliability
from ranking.weights import dirty_priority, event_weight

__all__ = [
    # Policy
    "ScoringPolicy",
    "get_policy",
    # Protocols
    "ScoreComponent",
    "ScoreAggregator",
    "ConfidenceModel",
    # Pipeline
    "ScorePipeline",
    "ScoreResult",
    "ComponentRegistry",
    # Aggregation
    "WeightedBlendAggregator",
    "EvidenceConfidence",
    # Math
    "expected_score",
    "update_rating",
    "update_running_stats",
    "normalize_rating",
    "effective_reliability",
    "dirty_priority",
    "event_weight",
]
