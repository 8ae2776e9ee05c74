#!/usr/bin/env python3
"""
Command Line Interface for the Venue Quote Monitor.
"""

import argparse
import sys
import json
from datetime import datetime
from pathlib import Path

from loguru import logger


EXIT_PRIMARY_UNAVAILABLE = 1
EXIT_SNAPSHOT_ERROR = 2


def setup_logging(verbose: bool = False, level: str = "INFO"):
    """Configure logging."""
    level = "DEBUG" if verbose else level
    logger.remove()
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}",
        level=level,
        colorize=True
    )


def cmd_run(args):
    """Run one monitoring pass over a snapshot."""
    from api.snapshot_client import SnapshotClient, SnapshotError
    from config.settings import get_config
    from core.orchestrator import create_monitor, PrimaryVenueUnavailable

    config = get_config()
    overrides = {}
    if args.baseline:
        overrides["baseline"] = config.baseline.model_copy(update={"path": Path(args.baseline)})
    if args.dry_run:
        overrides["dry_run"] = True
    if overrides:
        config = config.model_copy(update=overrides)

    client = SnapshotClient(primary_venue=config.primary_venue)
    try:
        snapshot = client.load(args.snapshot)
    except SnapshotError as e:
        logger.error(str(e))
        return EXIT_SNAPSHOT_ERROR

    monitor = create_monitor(config)
    try:
        result = monitor.run(snapshot)
    except PrimaryVenueUnavailable as e:
        logger.error(f"Primary venue unavailable: {e}")
        return EXIT_PRIMARY_UNAVAILABLE

    stats = result.stats
    spots = " | ".join(f"{a} ${p:,.0f}" for a, p in sorted(snapshot.spots.items()))
    health = f"{stats.health_pct:.1f}%" if stats.health_pct is not None else "n/a"
    age = f"{stats.baseline_age_hours:.1f}h" if stats.baseline_age_hours is not None else "n/a"

    print(f"\n{'='*60}")
    print(f"RUN {result.as_of.isoformat()} - {len(result.alerts)} alerts")
    print(f"{'='*60}")
    if spots:
        print(spots)
    print(f"Quoter health: {health} | Coverage: {stats.coverage_pct:.1f}% "
          f"({stats.quoted_count}/{stats.total_count})")
    print(f"Baseline: {age} old{' (captured this run)' if stats.baseline_captured else ''}")
    print(f"{stats.critical_count} critical | {stats.warning_count} warning | "
          f"{stats.actionable_count} actionable | {stats.suppressed_count} suppressed\n")

    only_critical = args.only_critical or config.materiality.only_critical
    to_send = result.dispatchable(only_critical)
    if not to_send:
        print("No alerts to dispatch.")

    for i, a in enumerate(to_send[:args.top_n], 1):
        print(f"{i}. [{a.severity.value.upper()}] [{a.category.value}] {a.asset} - {a.title}")
        print(f"   {a.message}")
        if a.profitable:
            print(f"   ACTIONABLE | net ${a.net_profit:.2f}" if a.net_profit is not None else "   ACTIONABLE")
    if len(to_send) > args.top_n:
        print(f"...and {len(to_send) - args.top_n} more")

    if args.export:
        config.data_dir.mkdir(parents=True, exist_ok=True)
        stamp = datetime.now().strftime('%Y%m%d_%H%M%S')
        output_file = config.data_dir / f"alerts_{stamp}.{args.export}"
        if args.export == "csv":
            result.to_dataframe().to_csv(output_file, index=False)
        else:
            with open(output_file, "w") as f:
                json.dump({
                    "as_of": result.as_of.isoformat(),
                    "stats": stats.to_dict(),
                    "alerts": [a.to_dict() for a in result.alerts],
                }, f, indent=2, default=str)
        logger.info(f"Results exported to {output_file}")

    return 0


def cmd_baseline(args):
    """Summarize the persisted baseline."""
    import pandas as pd
    from analysis.baseline import BaselineStore
    from config.settings import get_config
    from utils.helpers import utc_now

    config = get_config()
    path = Path(args.path) if args.path else config.baseline.path
    # Show even stale baselines; expiry only matters for runs
    store = BaselineStore(path, max_age_hours=None)
    baseline = store.load(utc_now())
    if baseline is None:
        print(f"No usable baseline at {path}")
        return 1

    age = baseline.age_hours(utc_now())
    stale = age > config.baseline.max_age_hours
    print(f"\nBaseline {baseline.timestamp.isoformat()} ({age:.1f}h old{', STALE' if stale else ''})")
    print(f"Quoted: {baseline.quoted_count} / {baseline.total_count}\n")

    df = pd.DataFrame(store.bucket_summary(baseline))
    if df.empty:
        print("No buckets")
    else:
        print(df.to_string(index=False, float_format=lambda v: f"{v:.2f}"))
    return 0


def cmd_solve_iv(args):
    """Solve implied volatility for a single option price."""
    from analysis.vol_solver import VolatilitySolver

    T = args.days / 365
    iv = VolatilitySolver().implied_volatility(args.price, args.spot, args.strike, T, args.type)
    if iv is None:
        print("Unsolvable")
        return 1
    print(f"Implied volatility: {iv * 100:.2f}%")
    return 0


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Venue Quote Monitor CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s run snapshot.json                  Run one monitoring pass
  %(prog)s run https://host/snapshot --dry-run   Fetch snapshot, don't persist baseline
  %(prog)s run snapshot.json --export csv     Export alerts
  %(prog)s baseline                           Show baseline buckets
  %(prog)s solve-iv 1250 65000 70000 14 C     Implied vol for one option
        """
    )

    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose output")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Run command
    run_parser = subparsers.add_parser("run", help="Run one monitoring pass")
    run_parser.add_argument("snapshot", help="Snapshot JSON file or http(s) URL")
    run_parser.add_argument("-b", "--baseline", help="Baseline file path")
    run_parser.add_argument("--dry-run", action="store_true", help="Do not persist a new baseline")
    run_parser.add_argument("--only-critical", action="store_true", help="Only show critical alerts")
    run_parser.add_argument("--top-n", type=int, default=20, help="Number of alerts to print")
    run_parser.add_argument("--export", choices=["json", "csv"], help="Export alerts to data dir")
    run_parser.set_defaults(func=cmd_run)

    # Baseline command
    baseline_parser = subparsers.add_parser("baseline", help="Show persisted baseline")
    baseline_parser.add_argument("-p", "--path", help="Baseline file path")
    baseline_parser.set_defaults(func=cmd_baseline)

    # Solve IV command
    iv_parser = subparsers.add_parser("solve-iv", help="Solve implied volatility")
    iv_parser.add_argument("price", type=float, help="Option price")
    iv_parser.add_argument("spot", type=float, help="Underlying spot")
    iv_parser.add_argument("strike", type=float, help="Strike")
    iv_parser.add_argument("days", type=float, help="Days to expiry")
    iv_parser.add_argument("type", choices=["C", "P"], help="Call or put")
    iv_parser.set_defaults(func=cmd_solve_iv)

    args = parser.parse_args()

    from config.settings import get_config
    setup_logging(args.verbose, get_config().log_level)

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    sys.exit(args.func(args))


if __name__ == "__main__":
    main()
