"""
Pipeline package: write path, background scoring and maintenance.

    EventIngestionService   -- append events, mark items dirty
    BatchClaimer            -- exclusive non-blocking batch reservation
    IncrementalStatsUpdater -- fold new events into running stats
    ScorePublisher          -- debounced publication of scores
    ReliabilityRecalibrator -- periodic rater reliability
    EventRetention          -- purge of fully folded old events
    ScoringWorker, WorkerPool
"""

from pipeline.ingestion import EventIngestionService
from pipeline.claimer import BatchClaimer
from pipeline.updater import IncrementalStatsUpdater, StatsUpdate
from pipeline.publisher import ScorePublisher, should_publish
from pipeline.recalibrator import ReliabilityRecalibrator, RecalibrationReport
from pipeline.retention import EventRetention
from pipeline.worker import ScoringWorker, WorkerPool

__all__ = [
    "EventIngestionService",
    "BatchClaimer",
    "IncrementalStatsUpdater",
    "StatsUpdate",
    "ScorePublisher",
    "should_publish",
    "ReliabilityRecalibrator",
    "RecalibrationReport",
    "EventRetention",
    "ScoringWorker",
    "WorkerPool",
]
