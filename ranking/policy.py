"""
Versioned scoring policy.

Every tunable constant of the scoring math lives here and is passed
explicitly into the scoring functions, so a policy change is one auditable
object rather than constants scattered through the pipeline.
"""

from dataclasses import dataclass, asdict, fields
from typing import Dict, Any, List, Optional


@dataclass(frozen=True)
class ScoringPolicy:
    version: str = "v2-incremental"

    # Bayesian rating state
    default_rating_mean: float = 1200.0
    default_rating_uncertainty: float = 350.0
    base_step: float = 32.0
    boosted_weight: float = 2.0
    uncertainty_floor: float = 50.0
    uncertainty_decay: float = 0.98
    uncertainty_drift: float = 0.0
    # Accepted range for rating snapshots supplied with pairwise events
    snapshot_rating_min: float = 0.0
    snapshot_rating_max: float = 4000.0

    # Rater calibration
    rater_default_mean: float = 50.0
    rater_default_std: float = 15.0
    rater_std_floor: float = 5.0
    z_clamp: float = 2.5

    # Rater reliability
    reliability_neutral: float = 1.0
    reliability_min: float = 0.1
    reliability_max: float = 2.0
    min_reliability_samples: int = 5

    # Components
    rating_floor: float = 800.0
    rating_ceiling: float = 1600.0
    neutral_component: float = 50.0
    favorite_scale: float = 3.0

    # Blend weights
    weight_rating: float = 0.40
    weight_rating_signal: float = 0.30
    weight_favorite: float = 0.30

    # Confidence and publication
    pairwise_evidence_weight: float = 1.0
    rating_evidence_weight: float = 1.5
    favorite_evidence_weight: float = 1.0
    confidence_scale: float = 20.0
    min_publish_confidence: float = 40.0
    min_publish_delta: float = 0.5

    @classmethod
    def from_config(cls, cfg=None) -> "ScoringPolicy":
        """Builds a policy from the ``scoring.*`` section of config.json."""
        if cfg is None:
            from common.config import config as cfg
        values: Dict[str, Any] = {}
        for f in fields(cls):
            value = cfg.get(f"scoring.{f.name}")
            if value is not None:
                values[f.name] = f.type(value) if isinstance(f.type, type) else value
        return cls(**values)

    @property
    def component_weights(self) -> Dict[str, float]:
        return {
            "rating": self.weight_rating,
            "rating_signal": self.weight_rating_signal,
            "favorite": self.weight_favorite,
        }

    def validate(self) -> List[str]:
        """Returns a list of human-readable problems; empty when the policy is usable."""
        errors = []
        weights = self.component_weights.values()
        if any(w < 0 for w in weights) or sum(weights) <= 0:
            errors.append("component weights must be non-negative with a positive sum")
        if self.reliability_min <= 0 or self.reliability_min >= self.reliability_max:
            errors.append("reliability_min must be positive and below reliability_max")
        if not self.reliability_min <= self.reliability_neutral <= self.reliability_max:
            errors.append("reliability_neutral must lie within the reliability bounds")
        if self.snapshot_rating_min >= self.snapshot_rating_max:
            errors.append("snapshot_rating_min must be below snapshot_rating_max")
        if self.rating_floor >= self.rating_ceiling:
            errors.append("rating_floor must be below rating_ceiling")
        if self.boosted_weight < 1.0:
            errors.append("boosted_weight should not be below the normal weight of 1.0")
        if not 0 < self.uncertainty_decay <= 1.0:
            errors.append("uncertainty_decay must be in (0, 1]")
        if self.rater_std_floor <= 0:
            errors.append("rater_std_floor must be positive")
        if self.z_clamp <= 0 or self.favorite_scale <= 0 or self.confidence_scale <= 0:
            errors.append("z_clamp, favorite_scale and confidence_scale must be positive")
        if not 0 <= self.neutral_component <= 100:
            errors.append("neutral_component must be within 0-100")
        return errors

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


_default_policy: Optional[ScoringPolicy] = None


def get_policy() -> ScoringPolicy:
    """Process-wide policy built from config.json on first use."""
    global _default_policy
    if _default_policy is None:
        _default_policy = ScoringPolicy.from_config()
    return _default_policy
