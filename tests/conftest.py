"""
Shared pytest fixtures for the ranking engine tests.

Uses DI to inject temp-file SQLite databases, a fixed scoring policy and a
controllable clock, so the components run without touching production state.

The conftest patches the Config singleton at import time so that the
module-level `db = Database()` in common/database.py doesn't fail
when config.json points to an unreachable path.
"""

import os
import sys
import tempfile
from pathlib import Path

# Ensure project root is on sys.path so imports work from tests/
sys.path.insert(0, str(Path(__file__).parent.parent))

# Patch Config BEFORE anything else imports common.database, so the
# module-level `db = Database()` singleton doesn't crash.
import common.config as config_module
from common.config import Config

_test_config = object.__new__(Config)
_test_config._config = {
    "database": {"sqlite_path": os.path.join(tempfile.gettempdir(), "aesthetic_rank_test_singleton.db")},
    "paths": {},
}
Config._instance = _test_config
config_module.config = _test_config

# Now it's safe to import database and repos
import pytest
from common.database import Database
from common.repositories import (
    EventRepository,
    RaterRepository,
    DirtyQueueRepository,
    ItemStatsRepository,
    PublishedScoreRepository,
    MetricsRepository,
)
from ranking.pipeline import ScorePipeline
from ranking.policy import ScoringPolicy
from pipeline.claimer import BatchClaimer
from pipeline.ingestion import EventIngestionService
from pipeline.publisher import ScorePublisher
from pipeline.recalibrator import ReliabilityRecalibrator
from pipeline.updater import IncrementalStatsUpdater
from pipeline.worker import ScoringWorker


class FakeClock:
    """Deterministic clock: call it for the time, advance() to move it."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture
def memory_db(tmp_path):
    """Provides a fresh file-backed SQLite database with full schema.

    Uses tmp_path so each test gets an isolated database (unlike :memory:
    which creates a new DB per connection and loses schema).
    """
    db_file = str(tmp_path / "test_rank.db")
    return Database(db_path=db_file)


@pytest.fixture
def policy():
    return ScoringPolicy()


@pytest.fixture
def clock():
    return FakeClock()


# ---- repositories ----

@pytest.fixture
def event_repo(memory_db):
    return EventRepository(memory_db)


@pytest.fixture
def rater_repo(memory_db):
    return RaterRepository(memory_db)


@pytest.fixture
def queue_repo(memory_db):
    return DirtyQueueRepository(memory_db)


@pytest.fixture
def stats_repo(memory_db):
    return ItemStatsRepository(memory_db)


@pytest.fixture
def scores_repo(memory_db):
    return PublishedScoreRepository(memory_db)


@pytest.fixture
def metrics_repo(memory_db):
    return MetricsRepository(memory_db)


# ---- services ----

@pytest.fixture
def ingestion(memory_db, policy, clock):
    return EventIngestionService(memory_db, policy=policy, clock=clock)


@pytest.fixture
def updater(memory_db, policy, clock):
    return IncrementalStatsUpdater(memory_db, policy=policy, clock=clock)


@pytest.fixture
def publisher(memory_db, policy, clock):
    return ScorePublisher(memory_db, pipeline=ScorePipeline(policy), clock=clock)


@pytest.fixture
def claimer(memory_db):
    return BatchClaimer(memory_db)


@pytest.fixture
def recalibrator(memory_db, policy, clock):
    return ReliabilityRecalibrator(memory_db, policy=policy, alpha=0.25, batch_size=1000, clock=clock)


@pytest.fixture
def worker(memory_db, updater, publisher, claimer):
    return ScoringWorker(
        worker_id=0,
        database=memory_db,
        updater=updater,
        publisher=publisher,
        claimer=claimer,
        batch_size=50,
        poll_interval=0.01,
        max_retries=2,
        backoff_base=0.0,
    )


def drain(worker) -> int:
    """Runs process_once until a pass makes no progress; returns items processed."""
    total = 0
    while True:
        processed = worker.process_once()
        if not processed:
            return total
        total += processed


@pytest.fixture
def drain_queue():
    return drain
