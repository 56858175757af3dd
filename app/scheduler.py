"""
Scheduler for automated AWB reconciliation

Uses APScheduler to run the bulk tracking sync on a cron schedule.
"""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from zoneinfo import ZoneInfo

from app.config import get_settings
from app.models import SyncType
from app.services.reconciliation_service import ReconciliationService
from app.utils.logger import log

settings = get_settings()
scheduler = AsyncIOScheduler()


async def sync_awb_statuses():
    """Scheduled bulk reconciliation"""
    try:
        log.info("Starting scheduled AWB sync...")
        result = await ReconciliationService().run_bulk(SyncType.SCHEDULED)
        log.info(
            f"Scheduled AWB sync {result.get('status')}: "
            f"{result.get('orders_processed', 0)} checked, "
            f"{result.get('awbs_updated', 0)} updated, "
            f"{result.get('errors_count', 0)} errors"
        )
    except Exception as e:
        log.error(f"Scheduled AWB sync error: {str(e)}")


def setup_scheduler():
    """
    Configure scheduled jobs.

    Cron times are in settings.scheduler_timezone.

    - AWB tracking sync: settings.sync_awb_schedule (default every 2 hours)
    """
    scheduler.add_job(
        sync_awb_statuses,
        trigger=CronTrigger.from_crontab(
            settings.sync_awb_schedule,
            timezone=ZoneInfo(settings.scheduler_timezone),
        ),
        id='awb_status_sync',
        name='FanCourier AWB Status Sync',
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )


def start_scheduler():
    """Start the scheduler"""
    setup_scheduler()
    scheduler.start()
    log.info("Scheduler started")


def stop_scheduler():
    """Stop the scheduler"""
    if scheduler.running:
        scheduler.shutdown()
        log.info("Scheduler stopped")


def get_scheduled_jobs() -> list:
    """Scheduled jobs with their next run time"""
    jobs = []
    for job in scheduler.get_jobs():
        # Jobs added before start() have no next_run_time yet
        next_run = getattr(job, "next_run_time", None)
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run_time": next_run.isoformat() if next_run else None,
        })
    return jobs
