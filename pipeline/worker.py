"""
Scoring workers.

Each ScoringWorker runs the loop
    claim a batch -> for each item: compute, then apply + publish in one
    transaction -> repeat
and shares no in-memory state with other workers; all coordination goes
through the dirty-queue claim.

Per-item error isolation:
- TransientStorageError: retried with exponential backoff, then requeued.
- DataIntegrityError / other errors: logged, item requeued, batch continues.

Shutdown is cooperative: stop() lets the item in flight finish (its write is
one transaction) and puts the rest of the claimed batch back on the queue.
"""

import random
import signal
import threading
import time
from typing import Optional, Dict, Any, List

from common.config import config
from common.database import db as _default_db
from common.errors import RankingError, DataIntegrityError, TransientStorageError, StorageError
from common.logging.logger import get_logger
from common.models import DirtyMarker
from common.repositories import DirtyQueueRepository
from pipeline.claimer import BatchClaimer
from pipeline.publisher import ScorePublisher
from pipeline.recalibrator import ReliabilityRecalibrator
from pipeline.updater import IncrementalStatsUpdater

logger = get_logger("worker")


class ScoringWorker(threading.Thread):
    def __init__(
        self,
        worker_id: int,
        database=None,
        updater: Optional[IncrementalStatsUpdater] = None,
        publisher: Optional[ScorePublisher] = None,
        claimer: Optional[BatchClaimer] = None,
        batch_size: Optional[int] = None,
        poll_interval: Optional[float] = None,
        max_retries: Optional[int] = None,
        backoff_base: Optional[float] = None,
    ):
        super().__init__(name=f"ScoringWorker-{worker_id}", daemon=True)
        self.worker_id = worker_id
        self._db = database or _default_db

        self.updater = updater or IncrementalStatsUpdater(self._db)
        self.publisher = publisher or ScorePublisher(self._db)
        self.claimer = claimer or BatchClaimer(self._db)
        self.queue = DirtyQueueRepository(self._db)

        # Read all params from config
        self.batch_size = batch_size or config.get("worker.batch_size")
        self.poll_interval = poll_interval if poll_interval is not None else config.get("worker.poll_interval_seconds")
        self.max_retries = max_retries if max_retries is not None else config.get("worker.max_retries")
        self.backoff_base = backoff_base if backoff_base is not None else config.get("worker.backoff_base_seconds")

        self._stop_event = threading.Event()
        self._stats = {
            'batches': 0,
            'claimed': 0,
            'processed': 0,
            'published': 0,
            'retries': 0,
            'requeued': 0,
            'integrity_errors': 0,
            'failures': 0,
        }

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def run(self):
        """Main worker loop."""
        logger.info(f"Worker {self.worker_id} started")

        while not self.stopping:
            progressed = self.process_once()
            if progressed == 0:
                # Idle or all claimed items failed; jitter keeps workers out of lockstep
                self._stop_event.wait(self.poll_interval * (0.5 + random.random()))

        logger.info(f"Worker {self.worker_id} stopped. Stats: {self._stats}")

    def process_once(self) -> int:
        """
        Claims and processes one batch.

        Returns:
            Number of items processed successfully. Items that failed and
            were requeued do not count, so a queue holding only failing
            items reports 0.
        """
        markers = self.claimer.claim_markers(self.batch_size)
        if not markers:
            return 0

        self._stats['batches'] += 1
        self._stats['claimed'] += len(markers)
        progressed = 0
        for index, marker in enumerate(markers):
            if self.stopping:
                self._requeue_all(markers[index:])
                break
            if self._process_marker(marker):
                progressed += 1
        return progressed

    def process_item(self, item_id: str) -> bool:
        """
        Folds the item's new events and publishes, in one transaction.

        Returns:
            True if a published row was written.
        """
        update = self.updater.compute(item_id)
        with self._db.transaction() as conn:
            if update.event_count or update.is_new:
                self.updater.apply(update, conn)
            published = self.publisher.publish(item_id, update.stats, conn)
        return published

    def _process_marker(self, marker: DirtyMarker) -> bool:
        attempt = 0
        context = {"worker_id": self.worker_id, "item_id": marker.item_id}
        while True:
            try:
                if self.process_item(marker.item_id):
                    self._stats['published'] += 1
                self._stats['processed'] += 1
                return True
            except TransientStorageError as e:
                attempt += 1
                if attempt > self.max_retries or self.stopping:
                    logger.warning(
                        f"Worker {self.worker_id}: giving up on {marker.item_id} "
                        f"after {attempt} attempts: {e}",
                        extra=context,
                    )
                    self._requeue(marker)
                    return False
                self._stats['retries'] += 1
                delay = self.backoff_base * (2 ** (attempt - 1)) * (1 + random.random())
                logger.debug(
                    f"Worker {self.worker_id}: retrying {marker.item_id} in {delay:.3f}s: {e}",
                    extra=context,
                )
                self._stop_event.wait(delay)
            except DataIntegrityError as e:
                self._stats['integrity_errors'] += 1
                logger.error(f"Worker {self.worker_id}: {e}", extra=context)
                self._requeue(marker)
                return False
            except RankingError as e:
                self._stats['failures'] += 1
                logger.error(f"Worker {self.worker_id}: failed on {marker.item_id}: {e}", extra=context)
                self._requeue(marker)
                return False
            except Exception as e:
                self._stats['failures'] += 1
                logger.exception(
                    f"Worker {self.worker_id}: unexpected error on {marker.item_id}: {e}",
                    extra=context,
                )
                self._requeue(marker)
                return False

    def _requeue(self, marker: DirtyMarker) -> None:
        try:
            self.queue.requeue(marker)
            self._stats['requeued'] += 1
        except StorageError as e:
            logger.error(f"Worker {self.worker_id}: could not requeue {marker.item_id}: {e}")

    def _requeue_all(self, markers: List[DirtyMarker]) -> None:
        for marker in markers:
            self._requeue(marker)
        logger.info(f"Worker {self.worker_id}: returned {len(markers)} unprocessed items to the queue")

    def stop(self):
        """Stops the worker after the item in flight."""
        self._stop_event.set()

    def get_stats(self) -> Dict[str, int]:
        return dict(self._stats)


class RecalibrationThread(threading.Thread):
    """Runs the reliability recalibrator on a fixed interval."""

    def __init__(self, recalibrator: ReliabilityRecalibrator, interval: float):
        super().__init__(name="ReliabilityRecalibrator", daemon=True)
        self.recalibrator = recalibrator
        self.interval = interval
        self._stop_event = threading.Event()
        self.runs = 0

    def run(self):
        while not self._stop_event.wait(self.interval):
            try:
                self.recalibrator.run()
                self.runs += 1
            except RankingError as e:
                logger.error(f"Reliability recalibration failed: {e}")

    def stop(self):
        self._stop_event.set()


class WorkerPool:
    """
    Manages a pool of scoring workers plus the periodic recalibration thread.
    """

    def __init__(
        self,
        database=None,
        num_workers: Optional[int] = None,
        recalibration_interval: Optional[float] = None,
        **worker_kwargs,
    ):
        self._db = database or _default_db

        # Read from config
        num_workers = num_workers or config.get("worker.count")
        if recalibration_interval is None:
            recalibration_interval = config.get("worker.recalibration_interval_seconds")

        self.workers: List[ScoringWorker] = [
            ScoringWorker(worker_id=i, database=self._db, **worker_kwargs)
            for i in range(num_workers)
        ]

        self.recalibration: Optional[RecalibrationThread] = None
        if recalibration_interval and recalibration_interval > 0:
            self.recalibration = RecalibrationThread(
                ReliabilityRecalibrator(self._db), recalibration_interval
            )

        self._shutdown_requested = threading.Event()

    def start(self):
        for worker in self.workers:
            worker.start()
        if self.recalibration:
            self.recalibration.start()
        logger.info(
            f"Started {len(self.workers)} workers"
            + (f", recalibrating every {self.recalibration.interval:.0f}s" if self.recalibration else "")
        )

    def stop(self, timeout: float = 30.0):
        """Stops all workers; each finishes its current item and requeues the rest."""
        logger.info(f"Stopping {len(self.workers)} workers...")
        self._shutdown_requested.set()

        for worker in self.workers:
            worker.stop()
        if self.recalibration:
            self.recalibration.stop()

        for worker in self.workers:
            worker.join(timeout=timeout)
            if worker.is_alive():
                logger.warning(f"{worker.name} did not finish in time")
        if self.recalibration:
            self.recalibration.join(timeout=timeout)

        logger.info(f"WorkerPool stopped. Stats: {self.get_stats()}")

    def join(self, timeout: Optional[float] = None):
        for worker in self.workers:
            worker.join(timeout=timeout)

    def install_signal_handlers(self):
        """Installs SIGINT/SIGTERM handlers for graceful shutdown."""
        def handler(sig, frame):
            logger.info(f"Received signal {sig}, initiating graceful shutdown...")
            self._shutdown_requested.set()

        signal.signal(signal.SIGINT, handler)
        signal.signal(signal.SIGTERM, handler)

    def run_forever(self, poll: float = 0.5):
        """Starts the pool and blocks until a shutdown signal arrives."""
        self.install_signal_handlers()
        self.start()
        try:
            while not self._shutdown_requested.wait(poll):
                if not any(w.is_alive() for w in self.workers):
                    logger.error("All workers exited unexpectedly")
                    break
        finally:
            self.stop()

    def get_stats(self) -> Dict[str, Any]:
        """Aggregates stats from all workers."""
        totals: Dict[str, Any] = {}
        for worker in self.workers:
            for key, value in worker.get_stats().items():
                totals[key] = totals.get(key, 0) + value
        totals['workers'] = len(self.workers)
        if self.recalibration:
            totals['recalibration_runs'] = self.recalibration.runs
        return totals
