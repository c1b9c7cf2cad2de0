#!/usr/bin/env python3
"""Run the certificate pipeline jobs from the command line.

Same jobs as the /api/jobs endpoints, plus notification delivery, without
an HTTP scheduler in front.

Usage:
    python scripts/run_workers.py --once
    python scripts/run_workers.py --loop --interval 30
    python scripts/run_workers.py --loop --max-iterations 5 -v

Tuning is read from the environment (CERT_JOB_BATCH_SIZE,
FEEDBACK_INVITE_BATCH_SIZE, WORKER_BATCH_SIZE, WORKER_MAX_RETRIES,
WORKER_POLL_INTERVAL_SECONDS, TASK_CLAIM_TIMEOUT_SECONDS); the flags below
override it for one invocation.
"""

import argparse
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from medcerts.workers import (  # noqa: E402
    RunnerResult,
    configure_worker_logging,
    run_worker_loop,
    run_worker_once,
)

logger = logging.getLogger("run_workers")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Run the certificate pipeline background jobs",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument("--once", action="store_true", help="Run one pass and exit")
    mode.add_argument("--loop", action="store_true", help="Run passes until interrupted")

    parser.add_argument("--interval", type=int, help="Seconds between passes (loop mode)")
    parser.add_argument("--max-iterations", type=int, help="Stop after this many passes (loop mode)")
    parser.add_argument("--batch-size", type=int, help="Items per batch, applied to every job")
    parser.add_argument("--max-retries", type=int, help="Delivery attempts per notification")

    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG")
    verbosity.add_argument("-q", "--quiet", action="store_true", help="Log warnings only")
    return parser


def print_summary(result: RunnerResult) -> None:
    """Print a per-job report of one pass."""
    print("\n=== Certificate pipeline pass ===")
    print(f"Jobs run:  {result.workers_run}")
    print(f"Processed: {result.total_processed}")
    print(f"Failed:    {result.total_failed}")

    for name, worker_result in result.worker_results.items():
        print(f"\n[{name}] {worker_result.status.value}")
        print(f"  processed={worker_result.processed_count} failed={worker_result.failed_count}")
        if worker_result.claimed_elsewhere:
            print(f"  claimed elsewhere={worker_result.claimed_elsewhere}")
        for key, value in worker_result.metadata.items():
            print(f"  {key}={value}")
        for error in worker_result.errors:
            print(f"  ! {error['item_id']}: {error['error']}")

    for error in result.errors:
        print(f"\nERROR {error}")


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if args.verbose:
        configure_worker_logging(logging.DEBUG)
    elif args.quiet:
        configure_worker_logging(logging.WARNING)
    else:
        configure_worker_logging(logging.INFO)

    try:
        if args.once:
            result = run_worker_once(batch_size=args.batch_size, max_retries=args.max_retries)
            print_summary(result)
            return 1 if result.errors else 0

        passes = run_worker_loop(
            interval_seconds=args.interval,
            max_iterations=args.max_iterations,
            batch_size=args.batch_size,
            max_retries=args.max_retries,
        )
        logger.info(f"Stopped after {passes} passes")
        return 0

    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 0
    except Exception:
        logger.exception("Worker process failed")
        return 1


if __name__ == "__main__":
    sys.exit(main())
