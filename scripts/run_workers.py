#!/usr/bin/env python3
"""
Scoring Workers

Runs scoring workers that drain the dirty queue, plus the periodic
reliability recalibration thread. Stops gracefully on SIGINT/SIGTERM.

All parameters read from config.json under the "worker" section;
command-line flags override them.

Usage:
    python scripts/run_workers.py
    python scripts/run_workers.py --workers 4 --batch-size 100
    python scripts/run_workers.py --once
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from common.config import config
from common.logging.logger import setup_logger, get_logger

logger = get_logger("run_workers")


def main():
    parser = argparse.ArgumentParser(
        description="Scoring Workers - Fold new events into item scores"
    )

    parser.add_argument(
        "--workers",
        type=int,
        default=config.get("worker.count"),
        help="Number of worker threads"
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=config.get("worker.batch_size"),
        help="Dirty items claimed per batch"
    )
    parser.add_argument(
        "--recalibration-interval",
        type=float,
        default=config.get("worker.recalibration_interval_seconds"),
        help="Seconds between reliability recalibrations (0 disables)"
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Drain the queue once in the foreground and exit"
    )

    args = parser.parse_args()

    setup_logger("run_workers", console_output=True)

    for warning in config.validate():
        print(f"Config warning: {warning}")
    logger.info(f"Worker settings: {config.section('worker')}")

    from ranking.policy import get_policy
    from pipeline.worker import ScoringWorker, WorkerPool

    problems = get_policy().validate()
    if problems:
        for problem in problems:
            logger.error(f"Scoring policy: {problem}")
        return 1

    if args.once:
        worker = ScoringWorker(worker_id=0, batch_size=args.batch_size)
        # Stops at the first cycle with no progress
        while worker.process_once():
            pass
        remaining = worker.queue.count()
        if remaining:
            logger.warning(f"{remaining} items left dirty after failures. Stats: {worker.get_stats()}")
        else:
            logger.info(f"Queue drained. Stats: {worker.get_stats()}")
        return 0

    pool = WorkerPool(
        num_workers=args.workers,
        recalibration_interval=args.recalibration_interval,
        batch_size=args.batch_size,
    )
    pool.run_forever()
    return 0


if __name__ == "__main__":
    sys.exit(main())
