#!/usr/bin/env python3
"""
Event Retention

Deletes events older than the retention window that every consumer has
already folded into its checkpoints.

Usage:
    python scripts/purge_events.py
    python scripts/purge_events.py --days 30
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from common.config import config
from common.logging.logger import setup_logger, get_logger

logger = get_logger("purge_events")


def main():
    parser = argparse.ArgumentParser(description="Purge fully folded old events")

    parser.add_argument(
        "--days",
        type=int,
        default=config.get("retention.days_to_keep"),
        help="Keep events newer than this many days"
    )

    args = parser.parse_args()

    setup_logger("purge_events", console_output=True)

    from pipeline.retention import EventRetention

    deleted = EventRetention().purge(args.days)
    print(f"Deleted: pairwise={deleted['pairwise']} "
          f"rating={deleted['rating']} favorite={deleted['favorite']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
