"""
Scheduler for automated report syncs

Uses APScheduler to check the report sync regularly and to force one
refresh per day at a fixed local time.
"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from zoneinfo import ZoneInfo
import asyncio

from adsync.config import get_settings
from adsync.models.base import init_db
from adsync.services.report_sync_service import get_report_sync_service
from adsync.utils.logger import log

settings = get_settings()
scheduler = AsyncIOScheduler()


# Sync Functions

async def check_report_sync():
    """Start a background sync if the interval has elapsed (frequent tick)"""
    try:
        service = get_report_sync_service()
        if service.trigger_if_due("scheduled"):
            log.info("Scheduled check started a report sync")
        else:
            log.debug("Scheduled check: report sync not due")
    except Exception as e:
        log.error(f"Scheduled report sync check error: {str(e)}")


async def run_daily_report_sync():
    """Force the daily refresh regardless of the interval"""
    try:
        service = get_report_sync_service()
        outcome = service.trigger(force=True, trigger="scheduled")
        log.info(f"Daily report sync: {outcome}")
    except Exception as e:
        log.error(f"Daily report sync error: {str(e)}")


def setup_scheduler():
    """
    Configure the report sync jobs.

    - Due check:   every sync_check_interval_minutes (runs only if due)
    - Daily sync:  sync_schedule_hour:sync_schedule_minute in sync_timezone (forced)
    """
    tz = ZoneInfo(settings.sync_timezone)

    scheduler.add_job(
        check_report_sync,
        trigger=IntervalTrigger(minutes=settings.sync_check_interval_minutes),
        id='report_sync_check',
        name='Report Sync Due Check',
        replace_existing=True,
        max_instances=1
    )
    scheduler.add_job(
        run_daily_report_sync,
        trigger=CronTrigger(
            hour=settings.sync_schedule_hour,
            minute=settings.sync_schedule_minute,
            timezone=tz,
        ),
        id='report_sync_daily',
        name='Report Sync Daily Refresh',
        replace_existing=True,
        max_instances=1
    )

    log.info(
        f"Scheduler configured: due check every {settings.sync_check_interval_minutes}min, "
        f"daily sync at {settings.sync_schedule_hour:02d}:{settings.sync_schedule_minute:02d} "
        f"({settings.sync_timezone})"
    )


def start_scheduler():
    """Start the scheduler (must be called with a running event loop)"""
    setup_scheduler()
    scheduler.start()
    log.info("Scheduler started")


def stop_scheduler():
    """Stop the scheduler"""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        log.info("Scheduler stopped")


def run_sync_now() -> dict:
    """
    Run one report sync in the foreground and wait for it

    Returns:
        Dict with the run result
    """
    log.info("Manually running report sync...")
    init_db()
    service = get_report_sync_service()
    result = asyncio.run(service.run(trigger="manual"))
    return result.to_dict()


def get_scheduled_jobs() -> list:
    """
    Get list of all scheduled jobs

    Returns:
        List of job info dicts
    """
    jobs = []

    for job in scheduler.get_jobs():
        # Jobs added before start() have no next_run_time yet
        next_run = getattr(job, 'next_run_time', None)

        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': next_run.isoformat() if next_run else None,
            'trigger': str(job.trigger)
        })

    return jobs


async def _serve_forever():
    start_scheduler()
    try:
        await asyncio.Event().wait()
    finally:
        stop_scheduler()


# CLI for manual syncs

if __name__ == "__main__":
    import sys

    if len(sys.argv) < 2:
        print("Usage: python -m adsync.scheduler <command>")
        print("\nCommands:")
        print("  start    Start the scheduler")
        print("  sync     Run one report sync now and wait for it")
        print("  list     List all scheduled jobs")
        sys.exit(1)

    command = sys.argv[1]

    if command == "start":
        print("Starting scheduler...")
        init_db()
        try:
            asyncio.run(_serve_forever())
        except (KeyboardInterrupt, SystemExit):
            print("\nShutting down scheduler...")

    elif command == "sync":
        result = run_sync_now()

        if result['success']:
            print(f"✓ Synced {result['records']} records: {result['datasets']}")
        else:
            print(f"✗ Error: {result['error']}")
            sys.exit(1)

    elif command == "list":
        print("\nScheduled Jobs:")
        print("-" * 80)

        setup_scheduler()
        jobs = get_scheduled_jobs()

        if not jobs:
            print("No jobs scheduled")
        else:
            for job in jobs:
                print(f"\nID:       {job['id']}")
                print(f"Name:     {job['name']}")
                print(f"Next Run: {job['next_run']}")
                print(f"Trigger:  {job['trigger']}")

    else:
        print(f"Unknown command: {command}")
        sys.exit(1)
