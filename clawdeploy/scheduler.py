"""
APScheduler configuration for periodic backups.

Manages:
- The interval backup job (every BACKUP_HOURS hours)
- A one-off backup shortly after start (boot catch-up)
"""

import logging
from datetime import datetime, timedelta, timezone

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from clawdeploy.backup.executor import run_backup


logger = logging.getLogger(__name__)

# Global scheduler instance and the settings its jobs run with
scheduler = None
backup_settings = None

# Seconds between scheduler start and the catch-up backup
INITIAL_DELAY_SECONDS = 300


def init_scheduler(settings, hours: int = None, initial_delay: int = INITIAL_DELAY_SECONDS):
    """
    Initialize and configure APScheduler.

    Args:
        settings: BackupSettings the backup jobs run with
        hours: Interval between backups (default: settings.backup_hours)
        initial_delay: Seconds until the catch-up backup (None or 0 disables it)

    Returns:
        BlockingScheduler instance
    """
    global scheduler, backup_settings

    if scheduler is not None:
        return scheduler

    backup_settings = settings
    hours = hours or settings.backup_hours
    if hours <= 0:
        raise ValueError(f"Backup interval must be positive, got {hours}")

    job_defaults = {
        'coalesce': True,  # Combine multiple pending instances into one
        'max_instances': 1,  # Only one backup at a time
        'misfire_grace_time': 300  # 5 minutes grace period for misfires
    }

    scheduler = BlockingScheduler(job_defaults=job_defaults, timezone='UTC')

    scheduler.add_job(
        func=_execute_backup_wrapper,
        trigger=IntervalTrigger(hours=hours),
        id='backup_interval',
        name=f'Backup every {hours}h',
        replace_existing=True
    )

    if initial_delay:
        scheduler.add_job(
            func=_execute_backup_wrapper,
            trigger=DateTrigger(run_date=datetime.now(timezone.utc) + timedelta(seconds=initial_delay)),
            id='backup_initial',
            name='Backup after start',
            replace_existing=True
        )

    logger.info(f"Scheduler configured: backup every {hours}h")
    return scheduler


def start_scheduler():
    """
    Start the scheduler. Blocks until the scheduler is shut down.
    """
    if scheduler is None:
        raise RuntimeError("Scheduler not initialized. Call init_scheduler() first.")

    for job in get_scheduled_jobs():
        logger.info(f"  - {job['id']}: {job['name']} (next run: {job['next_run'] or 'N/A'})")

    scheduler.start()


def stop_scheduler():
    """Stop the scheduler and forget it."""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
    scheduler = None


def _execute_backup_wrapper():
    """
    Run one backup in scheduler context.

    Failures are logged; the scheduler keeps running.
    """
    try:
        logger.info("Scheduler executing backup")
        result = run_backup(backup_settings)
        logger.info(f"Scheduled backup completed: {result.location}")
    except Exception as e:
        logger.error(f"Scheduled backup failed: {e}")


def get_scheduled_jobs() -> list:
    """
    Get list of all scheduled jobs.

    Returns:
        List of dicts with job information
    """
    if scheduler is None:
        return []

    jobs = []

    for job in scheduler.get_jobs():
        next_run = getattr(job, 'next_run_time', None)
        jobs.append({
            'id': job.id,
            'name': job.name,
            'next_run': next_run.isoformat() if next_run else None,
            'trigger': str(job.trigger)
        })

    return jobs
