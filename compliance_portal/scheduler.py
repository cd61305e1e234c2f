import logging

from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy.orm import Session

from compliance_portal.config import settings
from compliance_portal.db import SessionLocal
from compliance_portal.metrics import run_timed_job
from compliance_portal.services.timesheet_service import mark_expired_timesheets


scheduler = BackgroundScheduler(timezone=settings.app_timezone)
logger = logging.getLogger(__name__)


def _with_db(task):
    db: Session = SessionLocal()
    try:
        return task(db)
    finally:
        db.close()


def _run_job(label: str, task) -> None:
    run_timed_job(label, lambda: _with_db(task))


def expire_timesheets_job():
    _run_job('expire_timesheets', lambda db: mark_expired_timesheets(db))


def start_scheduler():
    if not settings.enable_scheduler:
        logger.info('scheduler_disabled')
        return
    scheduler.add_job(
        expire_timesheets_job,
        'interval',
        minutes=max(1, int(settings.expire_timesheets_interval_minutes)),
        id='expire_timesheets',
        replace_existing=True,
    )

    if not scheduler.running:
        scheduler.start()


def stop_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
