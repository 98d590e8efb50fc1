"""Bayesian (Glicko-lite) rating update against a frozen opponent snapshot."""

import math
from typing import Tuple

from ranking.policy import ScoringPolicy


# Largest exponent passed to pow; 10**300 is still a finite float
MAX_EXPONENT = 300.0


def expected_score(rating: float, opponent_rating: float) -> float:
    """Logistic (Elo) win expectation of *rating* against *opponent_rating*."""
    exponent = (opponent_rating - rating) / 400.0
    exponent = max(-MAX_EXPONENT, min(MAX_EXPONENT, exponent))
    return 1.0 / (1.0 + math.pow(10.0, exponent))


def shrink_uncertainty(uncertainty: float, policy: ScoringPolicy) -> float:
    """One step of evidence: decay toward the floor, never upward."""
    drifted = math.sqrt(uncertainty * uncertainty + policy.uncertainty_drift ** 2)
    shrunk = max(policy.uncertainty_floor, drifted * policy.uncertainty_decay)
    return min(uncertainty, shrunk)


def update_rating(
    mean: float,
    uncertainty: float,
    opponent_snapshot: float,
    outcome: float,
    weight: float,
    policy: ScoringPolicy,
) -> Tuple[float, float]:
    """
    Folds one comparison into (mean, uncertainty).

    Args:
        mean: Current rating mean of the item.
        uncertainty: Current rating uncertainty (sigma).
        opponent_snapshot: Opponent rating captured when the event was created.
        outcome: 1.0 for a win, 0.0 for a loss.
        weight: Vote weight (1.0 normal, policy.boosted_weight for boosted).
        policy: Scoring policy.

    Returns:
        (new_mean, new_uncertainty)
    """
    expectation = expected_score(mean, opponent_snapshot)
    new_mean = mean + policy.base_step * weight * (outcome - expectation)
    return new_mean, shrink_uncertainty(uncertainty, policy)
