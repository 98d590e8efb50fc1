#!/usr/bin/env python3
"""
Health Check Script

Reports scoring pipeline backlog and publication counts.

Thresholds read from config.json under the "monitor" section.

Input:
    - dirty_items, item_stats and published_scores from SQLite

Output:
    - Health alerts and metrics to console

Usage:
    python scripts/run_health_check.py
    python scripts/run_health_check.py --json
    python scripts/run_health_check.py --top 20
"""

import argparse
import json
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from common.logging.logger import setup_logger, get_logger

logger = get_logger("health_check")


def main():
    parser = argparse.ArgumentParser(
        description="Health Check - Report scoring backlog and publication state"
    )

    parser.add_argument(
        "--json",
        action="store_true",
        help="Print metrics as JSON instead of a table"
    )
    parser.add_argument(
        "--top",
        type=int,
        default=0,
        help="Also show the top N ranked items"
    )

    args = parser.parse_args()

    # Setup logging
    setup_logger("health_check", console_output=True)

    from common.repositories import PublishedScoreRepository
    from monitor.health import PipelineHealthMonitor

    monitor = PipelineHealthMonitor()
    health = monitor.compute_health()
    alerts = monitor.check_health(health)
    top = PublishedScoreRepository().leaderboard(limit=args.top) if args.top > 0 else []

    if args.json:
        print(json.dumps({
            'health': health.to_dict(),
            'alerts': alerts,
            'leaderboard': [e.to_dict() for e in top],
        }, indent=2))
        return 1 if alerts else 0

    print("\n" + "=" * 60)
    print("PIPELINE HEALTH")
    print("=" * 60)
    print(f"Dirty items:          {health.dirty_count}")
    print(f"High priority:        {health.high_priority_count}")
    print(f"Oldest dirty age:     {health.oldest_dirty_age_seconds:.1f}s")
    print(f"Average dirty age:    {health.avg_dirty_age_seconds:.1f}s")
    print(f"Tracked items:        {health.tracked_items}")
    print(f"Published (ranked):   {health.published_count}")
    print(f"Provisional:          {health.provisional_count}")
    print("=" * 60)
    if top:
        print("TOP RANKED")
        for rank, entry in enumerate(top, start=1):
            print(f"#{rank:<3} {entry.item_id:<30} score {entry.score:6.2f}  confidence {entry.confidence:5.1f}")
        print("=" * 60)

    if alerts:
        print("\nALERTS:")
        for alert in alerts:
            print(f"  - {alert}")
        return 1

    print("\nNo alerts. Pipeline is keeping up.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
