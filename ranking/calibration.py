"""Rater calibration: online mean/variance, score normalization, reliability weight."""

import math
from dataclasses import dataclass

from ranking.policy import ScoringPolicy


@dataclass
class RunningStats:
    mean: float
    m2: float
    count: int
    std: float


def rater_std(m2: float, count: int, policy: ScoringPolicy) -> float:
    """Sample standard deviation, never below the floor; default until two samples exist."""
    if count > 1:
        std = math.sqrt(max(m2, 0.0) / (count - 1))
    else:
        std = policy.rater_default_std
    return max(policy.rater_std_floor, std)


def update_running_stats(
    mean: float,
    m2: float,
    count: int,
    x: float,
    policy: ScoringPolicy,
) -> RunningStats:
    """Welford single-pass update with one new observation *x*."""
    n = count + 1
    delta = x - mean
    new_mean = mean + delta / n
    new_m2 = m2 + delta * (x - new_mean)
    return RunningStats(
        mean=new_mean,
        m2=new_m2,
        count=n,
        std=rater_std(new_m2, n, policy),
    )


def normalize_rating(
    raw_score: float,
    rater_mean: float,
    rater_std_value: float,
    policy: ScoringPolicy,
) -> float:
    """
    Maps a raw 0-100 score onto the shared 0-100 scale.

    The rater's own mean maps to 50 and each rater standard deviation
    moves the value by 50 / z_clamp points, so a habitually harsh rater's
    70 can be worth more than a generous rater's 90.
    """
    std = max(rater_std_value, policy.rater_std_floor)
    z = (raw_score - rater_mean) / std
    z = max(-policy.z_clamp, min(policy.z_clamp, z))
    return 50.0 + z * (50.0 / policy.z_clamp)


def effective_reliability(
    reliability_score: float,
    reliability_sample_count: int,
    policy: ScoringPolicy,
) -> float:
    """Reliability used as a signal weight; neutral until enough settled samples exist."""
    if reliability_sample_count < policy.min_reliability_samples:
        return policy.reliability_neutral
    return max(policy.reliability_min, min(policy.reliability_max, reliability_score))
