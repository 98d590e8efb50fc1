"""Built-in score components."""

import math

from common.models import ItemStats
from ranking.policy import ScoringPolicy
from ranking.protocols import ScoreComponent


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


class RatingComponent(ScoreComponent):
    """Bayesian rating mean rescaled into 0-100."""

    @property
    def name(self) -> str:
        return "rating"

    def compute(self, stats: ItemStats, policy: ScoringPolicy) -> float:
        span = policy.rating_ceiling - policy.rating_floor
        return _clamp((stats.rating_mean - policy.rating_floor) / span * 100.0)


class RatingSignalComponent(ScoreComponent):
    """Reliability-weighted average of calibrated ratings."""

    @property
    def name(self) -> str:
        return "rating_signal"

    def compute(self, stats: ItemStats, policy: ScoringPolicy) -> float:
        if stats.total_ratings == 0 or stats.sum_weight <= 0:
            return policy.neutral_component
        return _clamp(stats.sum_weighted_rating / stats.sum_weight)


class FavoriteComponent(ScoreComponent):
    """
    Saturating favorite signal.

    Zero favorites sits at the neutral midpoint; each additional favorite
    closes a fixed fraction of the remaining gap to 100, so the first
    favorite on an unknown item moves it more than the tenth on a popular one.
    """

    @property
    def name(self) -> str:
        return "favorite"

    def compute(self, stats: ItemStats, policy: ScoringPolicy) -> float:
        neutral = policy.neutral_component
        saturation = 1.0 - math.exp(-max(stats.sum_favorite_weight, 0.0) / policy.favorite_scale)
        return _clamp(neutral + (100.0 - neutral) * saturation)


def reliability_factor(stats: ItemStats, policy: ScoringPolicy) -> float:
    """Mean rater weight behind the item's ratings and favorites."""
    contributions = stats.total_ratings + stats.total_favorites
    if contributions == 0:
        return policy.reliability_neutral
    return (stats.sum_weight + stats.sum_favorite_weight) / contributions


BUILTIN_COMPONENTS = [
    RatingComponent(),
    RatingSignalComponent(),
    FavoriteComponent(),
]
