"""Abstract base classes for the scoring system."""

from abc import ABC, abstractmethod
from typing import Dict

from common.models import ItemStats
from ranking.policy import ScoringPolicy


class ScoreComponent(ABC):
    """Protocol for one signal feeding the blended score."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique component name (e.g. 'rating_signal'); keys the policy weights."""
        ...

    @abstractmethod
    def compute(self, stats: ItemStats, policy: ScoringPolicy) -> float:
        """
        Compute the component value from running statistics.

        Args:
            stats: The item's running statistics.
            policy: Scoring policy with normalization constants.

        Returns:
            Score in [0.0, 100.0]; the policy's neutral value when the
            item has no events of this component's type.
        """
        ...


class ScoreAggregator(ABC):
    """Protocol for combining per-component values into a final score."""

    @abstractmethod
    def aggregate(
        self,
        components: Dict[str, float],
        weights: Dict[str, float],
    ) -> float:
        """Return a single aggregate score in [0.0, 100.0]."""
        ...


class ConfidenceModel(ABC):
    """Protocol for turning accumulated evidence into a 0-100 confidence."""

    @abstractmethod
    def compute(self, stats: ItemStats, policy: ScoringPolicy) -> float:
        ...
