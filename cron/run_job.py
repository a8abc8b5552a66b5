#!/usr/bin/env python3
"""
Periodic job runner.

Schedule each job from cron, for example:
    */15 * * * * cd /path/to/shift-dispatch && python -m cron.run_job close_bid_windows
    0 * * * *    cd /path/to/shift-dispatch && python -m cron.run_job auto_drop_unconfirmed
    5 9 * * *    cd /path/to/shift-dispatch && python -m cron.run_job detect_no_shows
    0 18 * * *   cd /path/to/shift-dispatch && python -m cron.run_job send_confirmation_reminders
    0 2 * * *    cd /path/to/shift-dispatch && python -m cron.run_job run_daily_health_evaluation
    30 2 * * 1   cd /path/to/shift-dispatch && python -m cron.run_job run_weekly_health_evaluation
    0 3 * * *    cd /path/to/shift-dispatch && python -m cron.run_job performance_check
    0 6 * * *    cd /path/to/shift-dispatch && python -m cron.run_job send_shift_reminders
    0 * * * *    cd /path/to/shift-dispatch && python -m cron.run_job send_stale_shift_reminders

Exit code is 0 when the run succeeded and 1 otherwise. Failed runs are never
retried here; the next scheduled run picks up whatever is still due.
"""

import argparse
import asyncio
import logging
import signal
import sys
from datetime import date, datetime
from typing import List, Optional

from shift_dispatch.core.errors import JobExecutionError
from shift_dispatch.database import async_session_maker
from shift_dispatch.models import JobRun
from shift_dispatch.services.context import get_context
from shift_dispatch.services.jobs import JOB_NAMES, TransitionOrchestrator, raise_for_status


logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("run_job")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run one periodic dispatch job.")
    parser.add_argument("job_name", choices=JOB_NAMES)
    parser.add_argument(
        "--as-of",
        type=date.fromisoformat,
        default=None,
        help="Evaluation date (YYYY-MM-DD) for health jobs; defaults to today",
    )
    return parser.parse_args(argv)


async def run_job(job_name: str, as_of: Optional[date] = None) -> JobRun:
    """Run a job once, stopping between units on SIGINT/SIGTERM."""
    orchestrator = TransitionOrchestrator(async_session_maker, get_context())

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, orchestrator.request_cancel)
        except NotImplementedError:
            # Windows event loops
            pass

    return await orchestrator.run(job_name, as_of=as_of)


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    args = parse_args(argv)
    logger.info("=" * 60)
    logger.info(f"{args.job_name.upper()} - {datetime.utcnow().isoformat()}")
    logger.info("=" * 60)

    try:
        run = asyncio.run(run_job(args.job_name, args.as_of))
    except Exception as e:
        logger.error(f"Job {args.job_name} could not run: {e}")
        return 1

    summary = run.summary or {}
    print("\n" + "=" * 40)
    print("JOB SUMMARY")
    print("=" * 40)
    print(f"Job:        {run.job_name}")
    print(f"Run:        {run.id}")
    print(f"Status:     {run.status.value}")
    print(f"Processed:  {summary.get('processed', 0)}")
    for outcome, count in sorted(summary.get("counts", {}).items()):
        print(f"  {outcome}: {count}")
    if run.failed_entity_ids:
        print(f"\nFailed entities: {len(run.failed_entity_ids)}")
        for entity_id in run.failed_entity_ids[:5]:
            print(f"  - {entity_id}")
    if run.error_message:
        print(f"Error: {run.error_message}")
    print("=" * 40)

    try:
        raise_for_status(run)
    except JobExecutionError as e:
        logger.error(f"{e} ({len(e.failed_entity_ids)} failed entities)")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
