"""Tests for pipeline/ingestion.py: validation, atomicity and dirty marking."""

import pytest

from common.errors import EventValidationError, StorageError
from ranking.weights import (
    PRIORITY_FAVORITE,
    PRIORITY_BOOSTED_PAIRWISE,
    PRIORITY_RATING,
    PRIORITY_PAIRWISE,
)


class TestRecordPairwise:
    def test_appends_event_and_marks_both_items(self, ingestion, event_repo, queue_repo):
        event_id = ingestion.record_pairwise_result("r1", "a", "b", "a", 1250.0, 1180.0)
        events = event_repo.pairwise_for_item("a")
        assert [e.id for e in events] == [event_id]
        assert events[0].item_a_rating_snapshot == 1250.0
        assert events[0].item_b_rating_snapshot == 1180.0
        assert events[0].weight_class == "normal"
        assert queue_repo.get("a").priority == PRIORITY_PAIRWISE
        assert queue_repo.get("b").priority == PRIORITY_PAIRWISE
        assert queue_repo.count() == 2

    def test_boosted_priority(self, ingestion, queue_repo):
        ingestion.record_pairwise_result("r1", "a", "b", "b", 1200, 1200, weight_class="boosted")
        assert queue_repo.get("a").priority == PRIORITY_BOOSTED_PAIRWISE

    def test_ids_increase(self, ingestion):
        first = ingestion.record_pairwise_result("r1", "a", "b", "a", 1200, 1200)
        second = ingestion.record_pairwise_result("r1", "a", "c", "c", 1200, 1200)
        assert second > first

    def test_creates_rater(self, ingestion, rater_repo, policy):
        ingestion.record_pairwise_result("new-rater", "a", "b", "a", 1200, 1200)
        rater = rater_repo.get("new-rater")
        assert rater is not None
        assert rater.reliability_score == policy.reliability_neutral
        assert rater.rating_mean == policy.rater_default_mean

    @pytest.mark.parametrize("kwargs, field", [
        (dict(item_b_id="a", winner_id="a"), "item_b_id"),
        (dict(winner_id="z"), "winner_id"),
        (dict(weight_class="super"), "weight_class"),
        (dict(rater_id=""), "rater_id"),
        (dict(item_a_snapshot_rating="1200"), "item_a_snapshot_rating"),
        (dict(item_b_snapshot_rating=float("nan")), "item_b_snapshot_rating"),
        (dict(item_a_snapshot_rating=float("inf")), "item_a_snapshot_rating"),
        (dict(item_b_snapshot_rating=float("-inf")), "item_b_snapshot_rating"),
        (dict(item_b_snapshot_rating=1e6), "item_b_snapshot_rating"),
        (dict(item_a_snapshot_rating=-5.0), "item_a_snapshot_rating"),
    ])
    def test_rejects_invalid(self, ingestion, event_repo, queue_repo, rater_repo, kwargs, field):
        args = dict(
            rater_id="r1", item_a_id="a", item_b_id="b", winner_id="a",
            item_a_snapshot_rating=1200.0, item_b_snapshot_rating=1200.0,
        )
        args.update(kwargs)
        with pytest.raises(EventValidationError) as exc:
            ingestion.record_pairwise_result(**args)
        assert exc.value.field == field
        assert event_repo.get_counts()["pairwise"] == 0
        assert queue_repo.count() == 0
        assert rater_repo.get_count() == 0


class TestRecordRating:
    def test_snapshot_is_pre_event_calibration(self, ingestion, event_repo, rater_repo):
        for item, score in [("o1", 50), ("o2", 60), ("o3", 70)]:
            ingestion.record_rating("r1", item, score)
        rater = rater_repo.get("r1")
        assert rater.rating_mean == pytest.approx(60.0)
        assert rater.rating_std == pytest.approx(10.0)
        assert rater.rating_sample_count == 3

        ingestion.record_rating("r1", "x", 80)
        event = event_repo.ratings_for_item("x")[0]
        assert event.raw_score == 80.0
        assert event.rater_mean_snapshot == pytest.approx(60.0)
        assert event.rater_std_snapshot == pytest.approx(10.0)
        assert rater_repo.get("r1").rating_sample_count == 4

    def test_first_rating_uses_defaults(self, ingestion, event_repo, policy):
        ingestion.record_rating("r1", "x", 95)
        event = event_repo.ratings_for_item("x")[0]
        assert event.rater_mean_snapshot == policy.rater_default_mean
        assert event.rater_std_snapshot == policy.rater_default_std

    def test_priority(self, ingestion, queue_repo):
        ingestion.record_rating("r1", "x", 40)
        assert queue_repo.get("x").priority == PRIORITY_RATING

    @pytest.mark.parametrize("score", [-0.1, 100.5, True, None, "80", float("inf")])
    def test_rejects_bad_scores(self, ingestion, event_repo, queue_repo, rater_repo, score):
        with pytest.raises(EventValidationError):
            ingestion.record_rating("r1", "x", score)
        assert event_repo.get_counts()["rating"] == 0
        assert queue_repo.count() == 0
        assert rater_repo.get("r1") is None

    def test_boundaries_accepted(self, ingestion):
        ingestion.record_rating("r1", "x", 0)
        ingestion.record_rating("r1", "x", 100)


class TestRecordFavorite:
    def test_appends_and_marks(self, ingestion, event_repo, queue_repo):
        event_id = ingestion.record_favorite("r1", "x")
        assert [e.id for e in event_repo.favorites_for_item("x")] == [event_id]
        assert queue_repo.get("x").priority == PRIORITY_FAVORITE

    def test_rejects_empty_item(self, ingestion):
        with pytest.raises(EventValidationError):
            ingestion.record_favorite("r1", "  ")


class TestDirtyMarking:
    def test_priority_is_max_of_pending_reasons(self, ingestion, queue_repo):
        ingestion.record_favorite("r1", "x")
        ingestion.record_rating("r1", "x", 70)
        ingestion.record_pairwise_result("r1", "x", "y", "x", 1200, 1200)
        assert queue_repo.get("x").priority == PRIORITY_FAVORITE
        assert queue_repo.count() == 2

    def test_refresh_keeps_first_seen(self, ingestion, queue_repo, clock):
        start = clock()
        ingestion.record_rating("r1", "x", 70)
        clock.advance(30)
        ingestion.record_pairwise_result("r1", "x", "y", "y", 1200, 1200)
        marker = queue_repo.get("x")
        assert marker.first_seen_at == start
        assert marker.last_event_at == start + 30
        assert marker.priority == PRIORITY_RATING


class TestAtomicity:
    def test_failed_dirty_mark_rolls_back_event(self, ingestion, event_repo, rater_repo, monkeypatch):
        def broken_mark_dirty(*args, **kwargs):
            raise StorageError("sqlite", "disk I/O error")

        monkeypatch.setattr(ingestion.queue, "mark_dirty", broken_mark_dirty)
        with pytest.raises(StorageError):
            ingestion.record_rating("r1", "x", 70)

        assert event_repo.get_counts() == {"pairwise": 0, "rating": 0, "favorite": 0}
        assert rater_repo.get("r1") is None

    def test_failed_second_mark_rolls_back_pairwise(self, ingestion, event_repo, queue_repo, monkeypatch):
        original = ingestion.queue.mark_dirty
        calls = []

        def flaky_mark_dirty(item_id, priority, at, conn=None):
            calls.append(item_id)
            if len(calls) == 2:
                raise StorageError("sqlite", "disk I/O error")
            return original(item_id, priority, at, conn=conn)

        monkeypatch.setattr(ingestion.queue, "mark_dirty", flaky_mark_dirty)
        with pytest.raises(StorageError):
            ingestion.record_pairwise_result("r1", "a", "b", "a", 1200, 1200)

        assert event_repo.get_counts()["pairwise"] == 0
        assert queue_repo.count() == 0
