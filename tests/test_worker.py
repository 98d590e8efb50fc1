"""Tests for pipeline/worker.py: batch processing, error isolation and shutdown."""

import time

import pytest

from common.errors import DataIntegrityError, TransientStorageError
from pipeline.worker import ScoringWorker, WorkerPool


def _ratings(ingestion, items):
    for item in items:
        ingestion.record_rating("r1", item, 75)


class TestProcessOnce:
    def test_processes_and_publishes(self, ingestion, worker, queue_repo, stats_repo, scores_repo):
        _ratings(ingestion, ["x", "y", "z"])
        assert worker.process_once() == 3

        assert queue_repo.count() == 0
        for item in ["x", "y", "z"]:
            assert stats_repo.get(item).total_ratings == 1
            assert scores_repo.get(item) is not None

        stats = worker.get_stats()
        assert stats['batches'] == 1
        assert stats['claimed'] == 3
        assert stats['processed'] == 3
        assert stats['published'] == 3

    def test_empty_queue(self, worker):
        assert worker.process_once() == 0
        assert worker.get_stats()['batches'] == 0

    def test_pairwise_marks_both_sides(self, ingestion, worker, drain_queue, stats_repo):
        ingestion.record_pairwise_result("r1", "a", "b", "a", 1200.0, 1200.0)
        assert drain_queue(worker) == 2
        assert stats_repo.get("a").rating_mean == pytest.approx(1216.0)
        assert stats_repo.get("b").rating_mean == pytest.approx(1184.0)

    def test_reprocessing_without_events_keeps_revision(self, ingestion, worker, queue_repo, scores_repo, clock):
        _ratings(ingestion, ["x"])
        worker.process_once()
        queue_repo.mark_dirty("x", 0, clock())
        worker.process_once()
        assert scores_repo.get("x").revision == 1

    def test_event_landing_mid_update_is_picked_up_next_pass(self, ingestion, worker, queue_repo, stats_repo, monkeypatch):
        first_id = ingestion.record_rating("r1", "x", 70)
        original = worker.updater.compute
        late_ids = []

        def compute_then_rate(item_id):
            update = original(item_id)
            if not late_ids:
                late_ids.append(ingestion.record_rating("r1", "x", 30))
            return update

        monkeypatch.setattr(worker.updater, "compute", compute_then_rate)
        assert worker.process_once() == 1

        assert queue_repo.get("x") is not None
        stats = stats_repo.get("x")
        assert stats.last_processed_rating_id == first_id
        assert stats.total_ratings == 1

        assert worker.process_once() == 1
        stats = stats_repo.get("x")
        assert stats.last_processed_rating_id == late_ids[0] > first_id
        assert stats.total_ratings == 2
        assert queue_repo.get("x") is None

    def test_extreme_stored_snapshot_still_scores(self, ingestion, worker, event_repo, queue_repo, stats_repo, clock):
        ingestion.record_rating("r1", "warmup", 50)
        worker.process_once()
        event_repo.insert_pairwise("r1", "x", "whale", "x", 1200.0, 1e6, "normal", clock())
        queue_repo.mark_dirty("x", 0, clock())

        assert worker.process_once() == 1
        stats = stats_repo.get("x")
        assert stats.total_pairwise == 1
        assert 1200.0 < stats.rating_mean < 1300.0
        assert queue_repo.get("x") is None


class TestErrorIsolation:
    def test_integrity_error_requeues_only_that_item(self, ingestion, worker, queue_repo, stats_repo, monkeypatch):
        _ratings(ingestion, ["good-1", "bad", "good-2"])
        original = worker.updater.compute

        def compute(item_id):
            if item_id == "bad":
                raise DataIntegrityError(item_id, "checkpoint moved backwards")
            return original(item_id)

        monkeypatch.setattr(worker.updater, "compute", compute)
        worker.process_once()

        assert stats_repo.get("good-1") is not None
        assert stats_repo.get("good-2") is not None
        assert stats_repo.get("bad") is None
        assert queue_repo.get("bad") is not None

        stats = worker.get_stats()
        assert stats['integrity_errors'] == 1
        assert stats['requeued'] == 1
        assert stats['processed'] == 2

    def test_unexpected_error_is_contained(self, ingestion, worker, queue_repo, monkeypatch):
        _ratings(ingestion, ["x", "y"])
        original = worker.updater.compute

        def compute(item_id):
            if item_id == "x":
                raise ValueError("boom")
            return original(item_id)

        monkeypatch.setattr(worker.updater, "compute", compute)
        worker.process_once()
        assert queue_repo.get("x") is not None
        assert queue_repo.get("y") is None
        assert worker.get_stats()['failures'] == 1

    def test_transient_error_is_retried(self, ingestion, worker, scores_repo, monkeypatch):
        _ratings(ingestion, ["x"])
        original = worker.process_item
        attempts = []

        def flaky(item_id):
            attempts.append(item_id)
            if len(attempts) < 3:
                raise TransientStorageError("sqlite", "database is locked")
            return original(item_id)

        monkeypatch.setattr(worker, "process_item", flaky)
        worker.process_once()

        assert len(attempts) == 3
        assert scores_repo.get("x") is not None
        assert worker.get_stats()['retries'] == 2
        assert worker.get_stats()['requeued'] == 0

    def test_persistent_transient_error_requeues(self, ingestion, worker, queue_repo, monkeypatch):
        _ratings(ingestion, ["x"])
        attempts = []

        def locked(item_id):
            attempts.append(item_id)
            raise TransientStorageError("sqlite", "database is locked")

        monkeypatch.setattr(worker, "process_item", locked)
        worker.process_once()

        assert len(attempts) == worker.max_retries + 1
        assert queue_repo.get("x") is not None
        assert worker.get_stats()['requeued'] == 1

    def test_drain_terminates_with_failing_item(self, ingestion, worker, event_repo, queue_repo, stats_repo, scores_repo, clock):
        # No rater row exists for "ghost", so "bad" fails on every pass
        event_repo.insert_favorite("ghost", "bad", clock())
        queue_repo.mark_dirty("bad", 15, clock())
        ingestion.record_rating("r1", "good", 70)

        progress = []
        for _ in range(5):
            progress.append(worker.process_once())
            if progress[-1] == 0:
                break

        assert progress == [1, 0]
        assert scores_repo.get("good") is not None
        assert stats_repo.get("bad") is None
        assert queue_repo.get("bad") is not None
        assert worker.get_stats()["integrity_errors"] == 2

    def test_drain_helper_stops_on_failing_queue(self, worker, event_repo, queue_repo, drain_queue, clock):
        event_repo.insert_favorite("ghost", "bad", clock())
        queue_repo.mark_dirty("bad", 15, clock())
        assert drain_queue(worker) == 0
        assert queue_repo.count() == 1


class TestShutdown:
    def test_stop_before_batch_requeues_everything(self, ingestion, worker, queue_repo, stats_repo):
        _ratings(ingestion, ["x", "y", "z"])
        worker.stop()
        assert worker.process_once() == 0

        assert queue_repo.count() == 3
        assert stats_repo.get_count() == 0
        assert worker.get_stats()['requeued'] == 3

    def test_stop_mid_batch_finishes_current_item(self, ingestion, worker, queue_repo, stats_repo, monkeypatch):
        _ratings(ingestion, ["x", "y", "z"])
        original = worker.process_item
        processed = []

        def process_then_stop(item_id):
            result = original(item_id)
            processed.append(item_id)
            worker.stop()
            return result

        monkeypatch.setattr(worker, "process_item", process_then_stop)
        worker.process_once()

        assert len(processed) == 1
        assert stats_repo.get(processed[0]) is not None
        assert queue_repo.count() == 2
        assert queue_repo.get(processed[0]) is None

    def test_requeued_marker_keeps_first_seen(self, ingestion, worker, queue_repo, clock):
        start = clock()
        _ratings(ingestion, ["x"])
        worker.stop()
        worker.process_once()
        assert queue_repo.get("x").first_seen_at == start

    def test_threaded_run_drains_queue(self, ingestion, worker, queue_repo, stats_repo):
        _ratings(ingestion, [f"item-{i}" for i in range(20)])
        worker.start()

        deadline = time.time() + 10
        while stats_repo.get_count() < 20 and time.time() < deadline:
            time.sleep(0.01)
        worker.stop()
        worker.join(timeout=5)

        assert not worker.is_alive()
        assert queue_repo.count() == 0
        assert stats_repo.get_count() == 20


class TestWorkerPool:
    def test_pool_drains_queue(self, memory_db, ingestion, queue_repo, stats_repo):
        _ratings(ingestion, [f"item-{i}" for i in range(40)])
        pool = WorkerPool(
            memory_db, num_workers=3, recalibration_interval=0,
            batch_size=5, poll_interval=0.01, max_retries=2, backoff_base=0.0,
        )
        pool.start()

        deadline = time.time() + 15
        while stats_repo.get_count() < 40 and time.time() < deadline:
            time.sleep(0.01)
        pool.stop(timeout=5)

        assert queue_repo.count() == 0
        assert stats_repo.get_count() == 40
        stats = pool.get_stats()
        assert stats['workers'] == 3
        assert stats['processed'] == 40
        assert 'recalibration_runs' not in stats

    def test_pool_with_recalibration(self, memory_db):
        pool = WorkerPool(memory_db, num_workers=1, recalibration_interval=60)
        assert pool.recalibration is not None
        assert pool.get_stats()['recalibration_runs'] == 0
        assert isinstance(pool.workers[0], ScoringWorker)
