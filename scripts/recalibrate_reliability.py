#!/usr/bin/env python3
"""
Rater Reliability Recalibration

Runs one reliability recalibration pass over every rater with settled,
unconsumed pairwise events. Intended for cron when the worker pool's
built-in recalibration thread is disabled.

Usage:
    python scripts/recalibrate_reliability.py
    python scripts/recalibrate_reliability.py --alpha 0.1
"""

import argparse
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from common.config import config
from common.logging.logger import setup_logger, get_logger

logger = get_logger("recalibrate")


def main():
    parser = argparse.ArgumentParser(
        description="Recalibrate rater reliability from settled pairwise outcomes"
    )

    parser.add_argument(
        "--alpha",
        type=float,
        default=config.get("recalibration.alpha"),
        help="Smoothing step toward the agreement target"
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=config.get("recalibration.batch_size"),
        help="Maximum events consumed per rater per pass"
    )

    args = parser.parse_args()

    setup_logger("recalibrate", console_output=True)

    from pipeline.recalibrator import ReliabilityRecalibrator

    recalibrator = ReliabilityRecalibrator(alpha=args.alpha, batch_size=args.batch_size)
    report = recalibrator.run()
    print(json.dumps(report.to_dict(), indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
