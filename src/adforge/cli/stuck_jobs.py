"""CLI command for inspecting jobs stuck in processing.

Nothing reclaims a job whose worker died mid-run; this lists such jobs and,
only when asked, marks them failed. Credits are not refunded.

Usage:
    python -m adforge.cli.stuck_jobs [OPTIONS]

Examples:
    # List jobs processing for more than 30 minutes (default)
    python -m adforge.cli.stuck_jobs

    # Use a 2 hour threshold
    python -m adforge.cli.stuck_jobs --older-than-minutes 120

    # Fail the stuck jobs
    python -m adforge.cli.stuck_jobs --mark-failed

    # Verbose logging
    python -m adforge.cli.stuck_jobs -v
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace
from dataclasses import dataclass, field
from datetime import timedelta
from uuid import UUID

import structlog

from adforge.core import timezone  # noqa: F401
from adforge.core.config import Settings, configure_logging
from adforge.core.database import setup_db_session
from adforge.core.timezone import utcnow
from adforge.uow import create_uow_factory

logger = structlog.get_logger()

DEFAULT_OLDER_THAN_MINUTES = 30
OPERATOR_FAILURE_MESSAGE = "Marked failed by operator: job exceeded processing time limit"


@dataclass
class StuckJobsResult:
    found: list[tuple[UUID, UUID, str]] = field(default_factory=list)  # (job, user, updated_at)
    failed_count: int = 0


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        description="List (and optionally fail) jobs stuck in processing",
        epilog="Stuck jobs keep their consumed credits; no refund is issued",
    )

    parser.add_argument(
        "--older-than-minutes",
        type=int,
        default=DEFAULT_OLDER_THAN_MINUTES,
        help=f"Processing age threshold in minutes (default: {DEFAULT_OLDER_THAN_MINUTES})",
    )

    parser.add_argument(
        "--limit",
        type=int,
        default=100,
        help="Maximum number of jobs to inspect (default: 100)",
    )

    parser.add_argument(
        "--mark-failed",
        action="store_true",
        help="Transition the listed jobs to failed",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


async def release_stuck_jobs(
    uow_factory, older_than: timedelta, mark_failed: bool = False, limit: int = 100
) -> StuckJobsResult:
    """Find jobs in processing whose last transition is older than `older_than`.

    Args:
        uow_factory: UnitOfWork factory
        older_than: Age threshold measured from the processing transition
        mark_failed: Fail the jobs found (in one transaction)
        limit: Maximum number of jobs to handle

    Returns:
        StuckJobsResult listing the jobs found and how many were failed
    """
    result = StuckJobsResult()
    cutoff = utcnow() - older_than

    async with await uow_factory() as uow:
        jobs = await uow.jobs.get_stuck_processing(cutoff, limit=limit)
        for job in jobs:
            result.found.append((job.id, job.user_id, job.updated_at.isoformat()))
            if mark_failed:
                job.mark_failed(OPERATOR_FAILURE_MESSAGE)
                await uow.jobs.save(job)
                result.failed_count += 1
                logger.warning("job.marked_failed_by_operator", job_id=str(job.id))

    return result


async def async_main(argv: list[str] | None = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]
    if args.verbose:
        settings.log_level = "DEBUG"
    configure_logging(settings)

    logger.info(
        "cli.started",
        older_than_minutes=args.older_than_minutes,
        mark_failed=args.mark_failed,
    )

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    try:
        result = await release_stuck_jobs(
            uow_factory,
            timedelta(minutes=args.older_than_minutes),
            mark_failed=args.mark_failed,
            limit=args.limit,
        )
    except KeyboardInterrupt:
        logger.info("cli.interrupted")
        print("\nInterrupted by user", file=sys.stderr)
        return 130

    except Exception as e:
        logger.error("cli.unexpected_error", error=str(e), error_type=type(e).__name__)
        print(f"\nUnexpected error: {e}", file=sys.stderr)
        return 1

    print("\n" + "=" * 60)
    print("Stuck Jobs Summary")
    print("=" * 60)
    print(f"Threshold: processing for more than {args.older_than_minutes} minutes")
    print(f"Jobs found: {len(result.found)}")
    for job_id, user_id, updated_at in result.found[:20]:
        print(f"  - {job_id} (user {user_id}, processing since {updated_at})")
    if len(result.found) > 20:
        print(f"  ... and {len(result.found) - 20} more")

    if args.mark_failed:
        print(f"\nJobs marked failed: {result.failed_count}")
    elif result.found:
        print("\nRe-run with --mark-failed to fail these jobs")
    print("=" * 60 + "\n")

    return 0


def main() -> None:
    """Synchronous entry point for CLI."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
