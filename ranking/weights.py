"""Event weighting and dirty-queue priority, kept free of persistence."""

from typing import Any, Dict, Optional

from ranking.calibration import effective_reliability
from ranking.policy import ScoringPolicy

EVENT_PAIRWISE = "pairwise"
EVENT_RATING = "rating"
EVENT_FAVORITE = "favorite"
EVENT_TYPES = (EVENT_PAIRWISE, EVENT_RATING, EVENT_FAVORITE)

WEIGHT_NORMAL = "normal"
WEIGHT_BOOSTED = "boosted"
WEIGHT_CLASSES = (WEIGHT_NORMAL, WEIGHT_BOOSTED)

# favorite > boosted pairwise > rating > plain pairwise
PRIORITY_FAVORITE = 15
PRIORITY_BOOSTED_PAIRWISE = 10
PRIORITY_RATING = 5
PRIORITY_PAIRWISE = 0


def dirty_priority(event_type: str, weight_class: Optional[str] = None) -> int:
    """Queue priority of the dirty marker raised by one event."""
    if event_type == EVENT_FAVORITE:
        return PRIORITY_FAVORITE
    if event_type == EVENT_RATING:
        return PRIORITY_RATING
    if event_type == EVENT_PAIRWISE:
        if weight_class == WEIGHT_BOOSTED:
            return PRIORITY_BOOSTED_PAIRWISE
        return PRIORITY_PAIRWISE
    raise ValueError(f"Unknown event type: {event_type}")


def event_weight(event_type: str, metadata: Dict[str, Any], policy: ScoringPolicy) -> float:
    """
    Weight an event carries when folded into an item's statistics.

    Pairwise events are weighted by their class (``weight_class``); ratings
    and favorites by the submitting rater's reliability
    (``reliability_score`` and ``reliability_sample_count``).
    """
    if event_type == EVENT_PAIRWISE:
        weight_class = metadata.get("weight_class", WEIGHT_NORMAL)
        if weight_class == WEIGHT_BOOSTED:
            return policy.boosted_weight
        if weight_class == WEIGHT_NORMAL:
            return 1.0
        raise ValueError(f"Unknown weight class: {weight_class}")
    if event_type in (EVENT_RATING, EVENT_FAVORITE):
        return effective_reliability(
            metadata.get("reliability_score", policy.reliability_neutral),
            metadata.get("reliability_sample_count", 0),
            policy,
        )
    raise ValueError(f"Unknown event type: {event_type}")
