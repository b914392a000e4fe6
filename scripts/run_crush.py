#!/usr/bin/env python
"""
FileCrush command line.

Usage:
    # Full run: plan, merge with local worker threads, install
    python scripts/run_crush.py run warehouse/events warehouse/events_crushed

    # Preview the plan only
    python scripts/run_crush.py run warehouse/events warehouse/events_crushed --dry-run

    # Distributed run: plan once, launch one worker per partition, then install
    python scripts/run_crush.py plan warehouse/events warehouse/events_crushed
    python scripts/run_crush.py worker --partition 0 --run-dir tmp/crush-<uuid>
    python scripts/run_crush.py install --run-dir tmp/crush-<uuid>

    # Crush one directory into one file, leaving sources in place
    python scripts/run_crush.py standalone warehouse/events/day=1 warehouse/day1.seq
"""
import argparse
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from config import load_config
from crush import CrushError, CrushJob, InstallError
from storage import create_crush_storage

logger = logging.getLogger("run_crush")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="FileCrush - Consolidate small files into fewer, larger files"
    )
    parser.add_argument(
        "--config",
        type=str,
        help="Path to config file (default: config/config.yaml)"
    )
    parser.add_argument(
        "--timestamp",
        type=str,
        help="Crush timestamp yyyymmddHHMMSS for output names (default: now)"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    run = subparsers.add_parser("run", help="Plan, merge and install in one process")
    run.add_argument("source", help="Source directory, relative to the storage root")
    run.add_argument("dest", help="Destination (move) or holding (clone) directory")
    run.add_argument("--dry-run", action="store_true", help="Plan and log only")

    plan = subparsers.add_parser("plan", help="Write the run manifests and print the run dir")
    plan.add_argument("source", help="Source directory, relative to the storage root")
    plan.add_argument("dest", help="Destination (move) or holding (clone) directory")
    plan.add_argument("--dry-run", action="store_true", help="Plan and log only")

    worker = subparsers.add_parser("worker", help="Merge one partition of a planned run")
    worker.add_argument("--partition", type=int, required=True, help="Partition id")
    worker.add_argument("--run-dir", type=str, required=True, help="Run directory from 'plan'")

    install = subparsers.add_parser("install", help="Install the outputs of a planned run")
    install.add_argument("--run-dir", type=str, required=True, help="Run directory from 'plan'")
    install.add_argument("--keep-run-dir", action="store_true", help="Do not delete the run dir")

    standalone = subparsers.add_parser("standalone", help="Crush one directory into one file")
    standalone.add_argument("source", help="Directory whose files are crushed")
    standalone.add_argument("dest", help="Output file")

    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    # Load config
    config = load_config(args.config)

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format=config.log_format
    )

    logger.info("=" * 80)
    logger.info(f"FileCrush: {args.command}")
    logger.info("=" * 80)

    try:
        storage = create_crush_storage(config)

        if args.command == "run":
            job = CrushJob(config, storage, timestamp=args.timestamp)
            counters = job.run(args.source, args.dest, dry_run=args.dry_run)
            logger.info(f"Done: {counters}")

        elif args.command == "plan":
            job = CrushJob(config, storage, timestamp=args.timestamp)
            plan = job.plan(args.source, args.dest, write=not args.dry_run)
            logger.info(f"Plan:\n{plan.summary()}")
            if not args.dry_run:
                print(plan.run_dir)

        elif args.command == "worker":
            job = CrushJob.resume(config, storage, args.run_dir)
            counters = job.run_partition(args.partition)
            logger.info(f"Partition {args.partition}: {counters}")

        elif args.command == "install":
            job = CrushJob.resume(config, storage, args.run_dir)
            counters = job.install()
            if not args.keep_run_dir:
                job.cleanup()
            logger.info(f"Installed: {counters}")

        elif args.command == "standalone":
            job = CrushJob(config, storage, timestamp=args.timestamp)
            counters = job.run_standalone(args.source, args.dest)
            logger.info(f"Done: {counters}")

    except InstallError as e:
        logger.error(f"Install failed: {e}")
        if e.remediation is not None:
            logger.error(e.remediation.describe())
        return 2
    except CrushError as e:
        logger.error(f"Crush failed: {e}", exc_info=True)
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
