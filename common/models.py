"""
Domain model dataclasses for the ranking engine.

Each persisted model provides:
- COLUMNS: the SELECT list matching its field order
- from_row(): classmethod to construct from a database row tuple
- to_dict(): plain dict for logging and read-path consumers
"""

from dataclasses import dataclass, asdict, fields
from typing import Optional, Dict, Any, Tuple


def _columns(model) -> str:
    return ", ".join(f.name for f in fields(model))


@dataclass
class Rater:
    """Per-rater calibration (Welford accumulators) and reliability."""
    rater_id: str
    rating_mean: float
    rating_std: float
    rating_sample_count: int
    m2: float
    reliability_score: float
    reliability_sample_count: int
    reliability_agreements: int
    last_reliability_event_id: int
    reliability_updated_at: Optional[float]
    created_at: float

    @classmethod
    def from_row(cls, row: tuple) -> "Rater":
        return cls(*row)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PairwiseEvent:
    """Immutable head-to-head result with both sides' ratings frozen at event time."""
    id: int
    rater_id: str
    item_a_id: str
    item_b_id: str
    winner_id: str
    item_a_rating_snapshot: float
    item_b_rating_snapshot: float
    weight_class: str
    created_at: float

    @classmethod
    def from_row(cls, row: tuple) -> "PairwiseEvent":
        return cls(*row)

    def involves(self, item_id: str) -> bool:
        return item_id in (self.item_a_id, self.item_b_id)

    def opponent_snapshot(self, item_id: str) -> float:
        """Rating of the other side as captured when the event was created."""
        if item_id == self.item_a_id:
            return self.item_b_rating_snapshot
        return self.item_a_rating_snapshot

    def outcome_for(self, item_id: str) -> float:
        return 1.0 if self.winner_id == item_id else 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class RatingEvent:
    """Immutable single-item rating with the rater's calibration frozen at event time."""
    id: int
    rater_id: str
    item_id: str
    raw_score: float
    rater_mean_snapshot: float
    rater_std_snapshot: float
    created_at: float

    @classmethod
    def from_row(cls, row: tuple) -> "RatingEvent":
        return cls(*row)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class FavoriteEvent:
    id: int
    rater_id: str
    item_id: str
    created_at: float

    @classmethod
    def from_row(cls, row: tuple) -> "FavoriteEvent":
        return cls(*row)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DirtyMarker:
    """Pending-recompute flag for one item."""
    item_id: str
    priority: int
    first_seen_at: float
    last_event_at: float

    @classmethod
    def from_row(cls, row: tuple) -> "DirtyMarker":
        return cls(*row)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ItemStats:
    """Running sufficient statistics for one item plus its per-stream checkpoints."""
    item_id: str
    rating_mean: float
    rating_uncertainty: float
    last_processed_pairwise_id: int = 0
    last_processed_rating_id: int = 0
    last_processed_favorite_id: int = 0
    sum_weighted_rating: float = 0.0
    sum_weight: float = 0.0
    sum_favorite_weight: float = 0.0
    sum_pairwise_weight: float = 0.0
    total_pairwise: int = 0
    total_ratings: int = 0
    total_favorites: int = 0
    updated_at: Optional[float] = None

    @classmethod
    def fresh(cls, item_id: str, policy) -> "ItemStats":
        """Maximum-uncertainty prior with zero accumulators."""
        return cls(
            item_id=item_id,
            rating_mean=policy.default_rating_mean,
            rating_uncertainty=policy.default_rating_uncertainty,
        )

    @classmethod
    def from_row(cls, row: tuple) -> "ItemStats":
        return cls(*row)

    @property
    def checkpoints(self) -> Tuple[int, int, int]:
        return (
            self.last_processed_pairwise_id,
            self.last_processed_rating_id,
            self.last_processed_favorite_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ScoreBreakdown:
    """Explainability components behind a published score."""
    rating_component: float
    rating_signal_component: float
    favorite_component: float
    reliability_factor: float

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class PublishedScore:
    item_id: str
    score: float
    rating_mean: float
    rating_uncertainty: float
    confidence: float
    provisional: bool
    rating_component: float
    rating_signal_component: float
    favorite_component: float
    reliability_factor: float
    policy_version: Optional[str]
    revision: int
    updated_at: float

    @classmethod
    def from_row(cls, row: tuple) -> "PublishedScore":
        values = list(row)
        values[5] = bool(values[5])
        return cls(*values)

    @property
    def breakdown(self) -> ScoreBreakdown:
        return ScoreBreakdown(
            rating_component=self.rating_component,
            rating_signal_component=self.rating_signal_component,
            favorite_component=self.favorite_component,
            reliability_factor=self.reliability_factor,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class LeaderboardEntry:
    """Public leaderboard row (non-provisional items only)."""
    item_id: str
    score: float
    confidence: float
    breakdown: ScoreBreakdown

    def to_dict(self) -> Dict[str, Any]:
        return {
            'item_id': self.item_id,
            'score': self.score,
            'confidence': self.confidence,
            'component_breakdown': self.breakdown.to_dict(),
        }


@dataclass
class PipelineHealth:
    """Operational metrics for the scoring pipeline."""
    dirty_count: int
    high_priority_count: int
    oldest_dirty_age_seconds: float
    avg_dirty_age_seconds: float
    tracked_items: int
    published_count: int
    provisional_count: int

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


RATER_COLUMNS = _columns(Rater)
PAIRWISE_COLUMNS = _columns(PairwiseEvent)
RATING_COLUMNS = _columns(RatingEvent)
FAVORITE_COLUMNS = _columns(FavoriteEvent)
DIRTY_COLUMNS = _columns(DirtyMarker)
ITEM_STATS_COLUMNS = _columns(ItemStats)
PUBLISHED_COLUMNS = _columns(PublishedScore)
