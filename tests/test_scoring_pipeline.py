"""Tests for the score pipeline, component registry, components and confidence."""

import pytest

from common.models import ItemStats
from ranking.aggregation import WeightedBlendAggregator, EvidenceConfidence
from ranking.components import (
    BUILTIN_COMPONENTS,
    RatingComponent,
    RatingSignalComponent,
    FavoriteComponent,
    reliability_factor,
)
from ranking.pipeline import ScorePipeline
from ranking.policy import ScoringPolicy
from ranking.protocols import ScoreComponent
from ranking.registry import ComponentRegistry


@pytest.fixture
def policy():
    return ScoringPolicy()


def _stats(policy, **overrides):
    stats = ItemStats.fresh("item-x", policy)
    for key, value in overrides.items():
        setattr(stats, key, value)
    return stats


# ── ComponentRegistry ──────────────────────────────────────────

class TestComponentRegistry:
    def test_register_and_get(self):
        reg = ComponentRegistry()
        component = BUILTIN_COMPONENTS[0]
        reg.register(component)
        assert reg.get(component.name) is component

    def test_names_order(self):
        reg = ComponentRegistry()
        for c in BUILTIN_COMPONENTS:
            reg.register(c)
        assert reg.names == ["rating", "rating_signal", "favorite"]

    def test_unregister(self):
        reg = ComponentRegistry()
        reg.register(BUILTIN_COMPONENTS[0])
        reg.unregister(BUILTIN_COMPONENTS[0].name)
        assert reg.get(BUILTIN_COMPONENTS[0].name) is None
        assert len(reg) == 0

    def test_unregister_nonexistent_is_noop(self):
        reg = ComponentRegistry()
        reg.unregister("does_not_exist")  # Should not raise

    def test_weights_follow_policy(self, policy):
        reg = ComponentRegistry()
        for c in BUILTIN_COMPONENTS:
            reg.register(c)
        assert reg.weights(policy) == {"rating": 0.40, "rating_signal": 0.30, "favorite": 0.30}

    def test_contains(self):
        reg = ComponentRegistry()
        reg.register(BUILTIN_COMPONENTS[0])
        assert BUILTIN_COMPONENTS[0].name in reg
        assert "nonexistent" not in reg


# ── Components ────────────────────────────────────────────────

class TestComponents:
    def test_neutral_defaults_for_fresh_item(self, policy):
        stats = _stats(policy)
        assert RatingComponent().compute(stats, policy) == pytest.approx(50.0)
        assert RatingSignalComponent().compute(stats, policy) == pytest.approx(50.0)
        assert FavoriteComponent().compute(stats, policy) == pytest.approx(50.0)

    def test_rating_component_scale(self, policy):
        assert RatingComponent().compute(_stats(policy, rating_mean=1600), policy) == pytest.approx(100.0)
        assert RatingComponent().compute(_stats(policy, rating_mean=2400), policy) == pytest.approx(100.0)
        assert RatingComponent().compute(_stats(policy, rating_mean=500), policy) == pytest.approx(0.0)
        assert RatingComponent().compute(_stats(policy, rating_mean=1216), policy) == pytest.approx(52.0)

    def test_rating_signal_is_weighted_average(self, policy):
        stats = _stats(policy, sum_weighted_rating=90.0 * 1.0 + 30.0 * 0.5, sum_weight=1.5, total_ratings=2)
        assert RatingSignalComponent().compute(stats, policy) == pytest.approx(70.0)

    def test_favorite_diminishing_returns(self, policy):
        component = FavoriteComponent()
        values = [
            component.compute(_stats(policy, sum_favorite_weight=float(n), total_favorites=n), policy)
            for n in range(0, 12)
        ]
        gains = [b - a for a, b in zip(values, values[1:])]
        assert all(g > 0 for g in gains)
        assert all(later < earlier for earlier, later in zip(gains, gains[1:]))
        assert values[-1] < 100.0

    def test_reliability_factor(self, policy):
        assert reliability_factor(_stats(policy), policy) == 1.0
        stats = _stats(policy, sum_weight=3.0, total_ratings=2, sum_favorite_weight=0.6, total_favorites=1)
        assert reliability_factor(stats, policy) == pytest.approx(1.2)


# ── Custom Component ──────────────────────────────────────────

class _ConstantComponent(ScoreComponent):
    """Test component that always returns a fixed value."""

    def __init__(self, val: float, component_name: str = "rating"):
        self._val = val
        self._name = component_name

    @property
    def name(self):
        return self._name

    def compute(self, stats, policy):
        return self._val


class TestCustomComponent:
    def test_custom_component_in_pipeline(self, policy):
        pipe = ScorePipeline(policy, components=[_ConstantComponent(80.0)])
        result = pipe.score(_stats(policy))
        assert result.score == pytest.approx(80.0)

    def test_register_replaces_existing(self, policy):
        pipe = ScorePipeline(policy)
        pipe.registry.register(_ConstantComponent(0.0, "favorite"))
        components = pipe.compute_components(_stats(policy))
        assert components["favorite"] == 0.0


# ── ScorePipeline ─────────────────────────────────────────────

class TestScorePipeline:
    @pytest.fixture
    def pipeline(self, policy):
        return ScorePipeline(policy)

    def test_builtin_components_registered(self, pipeline):
        assert len(pipeline.registry) == 3

    def test_fresh_item_is_neutral_and_provisional(self, pipeline, policy):
        result = pipeline.score(_stats(policy))
        assert result.score == pytest.approx(50.0)
        assert result.confidence == 0.0
        assert result.provisional is True

    def test_example_item(self, pipeline, policy):
        """One win from 1200 and one calibrated 90 rating."""
        stats = _stats(
            policy,
            rating_mean=1216.0, rating_uncertainty=343.0,
            sum_pairwise_weight=1.0, total_pairwise=1,
            sum_weighted_rating=90.0, sum_weight=1.0, total_ratings=1,
        )
        result = pipeline.score(stats)
        assert result.score == pytest.approx(0.4 * 52.0 + 0.3 * 90.0 + 0.3 * 50.0)
        assert result.breakdown.rating_component == pytest.approx(52.0)
        assert result.breakdown.rating_signal_component == pytest.approx(90.0)
        assert result.breakdown.favorite_component == pytest.approx(50.0)
        assert 0.0 < result.confidence < policy.min_publish_confidence
        assert result.provisional is True

    def test_score_bounded(self, pipeline, policy):
        high = _stats(
            policy, rating_mean=3000.0, sum_weighted_rating=500.0, sum_weight=5.0,
            total_ratings=5, sum_favorite_weight=100.0, total_favorites=100,
        )
        low = _stats(policy, rating_mean=0.0, sum_weighted_rating=0.0, sum_weight=5.0, total_ratings=5)
        assert 0.0 <= pipeline.score(low).score <= 100.0
        assert 0.0 <= pipeline.score(high).score <= 100.0

    def test_enough_evidence_leaves_provisional(self, pipeline, policy):
        result = pipeline.score(_stats(policy, sum_pairwise_weight=30.0, total_pairwise=30))
        assert result.confidence > policy.min_publish_confidence
        assert result.provisional is False

    def test_score_rounded(self, pipeline, policy):
        result = pipeline.score(_stats(policy, rating_mean=1203.337))
        assert result.score == round(result.score, 2)


# ── Aggregation and confidence ────────────────────────────────

class TestWeightedBlendAggregator:
    def test_zero_weights(self):
        agg = WeightedBlendAggregator()
        assert agg.aggregate({"a": 50.0}, {}) == 0.0

    def test_weighted_average(self):
        agg = WeightedBlendAggregator()
        assert agg.aggregate({"a": 100.0, "b": 0.0}, {"a": 3.0, "b": 1.0}) == pytest.approx(75.0)

    def test_clamped(self):
        agg = WeightedBlendAggregator()
        assert agg.aggregate({"a": 140.0}, {"a": 1.0}) == 100.0


class TestEvidenceConfidence:
    def test_zero_evidence(self, policy):
        assert EvidenceConfidence().compute(_stats(policy), policy) == 0.0

    def test_never_reaches_hundred(self, policy):
        stats = _stats(policy, sum_pairwise_weight=1e6, sum_weight=1e6, sum_favorite_weight=1e6)
        assert EvidenceConfidence().compute(stats, policy) <= 100.0

    def test_monotone_in_every_stream(self, policy):
        model = EvidenceConfidence()
        stats = _stats(policy)
        previous = model.compute(stats, policy)
        for field_name in ["sum_pairwise_weight", "sum_weight", "sum_favorite_weight"] * 10:
            setattr(stats, field_name, getattr(stats, field_name) + 0.1)
            current = model.compute(stats, policy)
            assert current > previous
            previous = current

    def test_ratings_count_more_than_pairwise(self, policy):
        model = EvidenceConfidence()
        rating = model.compute(_stats(policy, sum_weight=1.0), policy)
        pairwise = model.compute(_stats(policy, sum_pairwise_weight=1.0), policy)
        assert rating > pairwise
