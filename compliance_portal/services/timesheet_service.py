from __future__ import annotations

import calendar
import logging
from datetime import date, timedelta
from enum import Enum

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from compliance_portal.config import settings
from compliance_portal.core.store_guard import SafeConflictError, store_access
from compliance_portal.core.time_provider import TimeProvider, default_time_provider
from compliance_portal.metrics import timed_service
from compliance_portal.models import LearnerProfile, SubmissionStatus, TimesheetSchedule, TimesheetSubmission
from compliance_portal.services.achievement_service import BadgeType, announce_award, stage_award
from compliance_portal.services.notification_service import NotificationDispatcher, default_dispatcher
from compliance_portal.services.status_resolver import timesheet_status


logger = logging.getLogger(__name__)

PERIODS = (1, 2)
FIRST_PERIOD_DUE_DAY = 15
PERFECT_ATTENDANCE_POINTS = 10


class DownloadOutcome(str, Enum):
    RECORDED = 'recorded'
    FORBIDDEN = 'forbidden'
    NOT_FOUND = 'not_found'


def _validate_period(period: int) -> int:
    if int(period) not in PERIODS:
        raise ValueError('period must be 1 or 2')
    return int(period)


def period_due_date(month: int, year: int, period: int) -> date:
    period = _validate_period(period)
    if period == 1:
        return date(year, month, FIRST_PERIOD_DUE_DAY)
    return date(year, month, calendar.monthrange(year, month)[1])


def expected_periods(month: int, year: int) -> list[dict]:
    return [{'period': period, 'due_date': period_due_date(month, year, period)} for period in PERIODS]


def month_complete(periods: list[TimesheetSchedule]) -> bool:
    """True when two or more periods exist and every one has an upload on record.

    Expiry is ignored: completeness tracks upload history, not availability.
    """
    if len(periods) < 2:
        return False
    return all(row.submission is not None and row.submission.uploaded_at is not None for row in periods)


def ensure_month_schedule(db: Session, learner_id: int, month: int, year: int) -> list[TimesheetSchedule]:
    with store_access(db, 'ensure_month_schedule', learner_id=learner_id, month=month, year=year):
        if db.get(LearnerProfile, learner_id) is None:
            raise LookupError('Learner not found')
        existing = {
            row.period: row
            for row in db.query(TimesheetSchedule)
            .filter(
                TimesheetSchedule.learner_id == learner_id,
                TimesheetSchedule.month == month,
                TimesheetSchedule.year == year,
            )
            .all()
        }
        missing = [item for item in expected_periods(month, year) if item['period'] not in existing]
        if missing:
            try:
                for item in missing:
                    db.add(
                        TimesheetSchedule(
                            learner_id=learner_id,
                            month=month,
                            year=year,
                            period=item['period'],
                            due_date=item['due_date'],
                        )
                    )
                db.commit()
            except IntegrityError:
                # A concurrent request created the same periods.
                db.rollback()
        rows = (
            db.query(TimesheetSchedule)
            .options(selectinload(TimesheetSchedule.submission))
            .filter(
                TimesheetSchedule.learner_id == learner_id,
                TimesheetSchedule.month == month,
                TimesheetSchedule.year == year,
            )
            .order_by(TimesheetSchedule.period.asc())
            .all()
        )
    return rows


def list_month_periods(
    db: Session,
    learner_id: int,
    month: int,
    year: int,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    rows = ensure_month_schedule(db, learner_id, month, year)
    now = time_provider.naive_now()
    periods = []
    for row in rows:
        submission = row.submission
        status = timesheet_status(row, submission, now=now)
        periods.append(
            {
                'schedule_id': row.id,
                'period': row.period,
                'due_date': row.due_date.isoformat(),
                'status': status.value,
                'uploaded_at': submission.uploaded_at.isoformat() if submission and submission.uploaded_at else None,
                'absent_days': submission.absent_days if submission else None,
                'download_count': int(submission.download_count or 0) if submission else 0,
                'can_download': bool(submission and submission.file_path) and status != SubmissionStatus.EXPIRED,
            }
        )
    return {
        'learner_id': learner_id,
        'month': month,
        'year': year,
        'complete': month_complete(rows),
        'periods': periods,
    }


@timed_service('record_timesheet_upload')
def record_timesheet_upload(
    db: Session,
    learner_id: int,
    month: int,
    year: int,
    period: int,
    *,
    file_path: str,
    file_name: str = '',
    absent_days: int | None = None,
    dispatcher: NotificationDispatcher = default_dispatcher,
    time_provider: TimeProvider = default_time_provider,
) -> TimesheetSubmission:
    """Store the period's file and its upload awards in one transaction."""
    period = _validate_period(period)
    if absent_days is not None and int(absent_days) < 0:
        raise ValueError('absent_days must be non-negative')
    rows = ensure_month_schedule(db, learner_id, month, year)
    schedule = next(row for row in rows if row.period == period)
    now = time_provider.naive_now()

    with store_access(db, 'record_timesheet_upload', learner_id=learner_id, schedule_id=schedule.id):
        submission = (
            db.query(TimesheetSubmission)
            .filter(TimesheetSubmission.schedule_id == schedule.id)
            .with_for_update()
            .first()
        )
        first_upload = submission is None
        if submission is None:
            submission = TimesheetSubmission(schedule_id=schedule.id, learner_id=learner_id, download_count=0)
            db.add(submission)
        else:
            window = timedelta(days=settings.timesheet_edit_window_days)
            if submission.uploaded_at is not None and now - submission.uploaded_at > window:
                raise SafeConflictError('Timesheet edit window has closed for this period.')
            if timesheet_status(schedule, submission, now=now) == SubmissionStatus.EXPIRED:
                raise SafeConflictError('Timesheet has expired and can no longer be replaced.')
        submission.file_path = file_path
        submission.file_name = file_name or file_path.rsplit('/', 1)[-1]
        submission.uploaded_at = now
        submission.absent_days = int(absent_days) if absent_days is not None else None
        submission.expiration_date = now + timedelta(days=settings.timesheet_retention_days)
        submission.is_expired = False
        badges = []
        if first_upload:
            label = date(year, month, 1).strftime('%B %Y')
            badges.append(
                stage_award(
                    db,
                    learner_id,
                    BadgeType.TIMESHEET_UPLOAD.value,
                    'Timesheet Uploaded',
                    f'Uploaded period {period} timesheet for {label}',
                    settings.timesheet_upload_points,
                    time_provider=time_provider,
                )
            )
            if submission.absent_days == 0:
                badges.append(
                    stage_award(
                        db,
                        learner_id,
                        BadgeType.PERFECT_ATTENDANCE.value,
                        'Perfect Attendance',
                        f'No absent days in period {period} of {label}',
                        PERFECT_ATTENDANCE_POINTS,
                        time_provider=time_provider,
                    )
                )
        db.commit()
        db.refresh(submission)

    logger.info(
        'timesheet_uploaded',
        extra={'learner_id': learner_id, 'schedule_id': schedule.id, 'period': period, 'first_upload': first_upload},
    )
    for badge in badges:
        if badge is not None:
            announce_award(db, dispatcher, badge)
    return submission


def record_download(
    db: Session,
    schedule_id: int,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> DownloadOutcome:
    """Count one download of a period's timesheet file.

    Refused when the submission is expired or has no file. The increment is a
    single conditional UPDATE, so concurrent downloads never lose counts and a
    submission that expires in between is not counted.
    """
    now = time_provider.naive_now()
    with store_access(db, 'record_download', schedule_id=schedule_id):
        schedule = db.get(TimesheetSchedule, schedule_id)
        if schedule is None:
            return DownloadOutcome.NOT_FOUND
        submission = schedule.submission
        if submission is None or not submission.file_path:
            logger.info('download_forbidden reason=no_file schedule_id=%s', schedule_id)
            return DownloadOutcome.FORBIDDEN
        if timesheet_status(schedule, submission, now=now) == SubmissionStatus.EXPIRED:
            logger.info('download_forbidden reason=expired schedule_id=%s', schedule_id)
            return DownloadOutcome.FORBIDDEN

        updated = (
            db.query(TimesheetSubmission)
            .filter(
                TimesheetSubmission.id == submission.id,
                TimesheetSubmission.is_expired.is_(False),
                TimesheetSubmission.file_path.isnot(None),
                TimesheetSubmission.file_path != '',
                or_(TimesheetSubmission.expiration_date.is_(None), TimesheetSubmission.expiration_date >= now),
            )
            .update(
                {TimesheetSubmission.download_count: TimesheetSubmission.download_count + 1},
                synchronize_session=False,
            )
        )
        db.commit()
    if not updated:
        logger.info('download_forbidden reason=changed schedule_id=%s', schedule_id)
        return DownloadOutcome.FORBIDDEN
    return DownloadOutcome.RECORDED


def mark_expired_timesheets(db: Session, *, time_provider: TimeProvider = default_time_provider) -> int:
    now = time_provider.naive_now()
    with store_access(db, 'mark_expired_timesheets'):
        updated = (
            db.query(TimesheetSubmission)
            .filter(
                TimesheetSubmission.is_expired.is_(False),
                TimesheetSubmission.expiration_date.isnot(None),
                TimesheetSubmission.expiration_date < now,
            )
            .update({TimesheetSubmission.is_expired: True}, synchronize_session=False)
        )
        db.commit()
    logger.info('timesheets_marked_expired count=%s', updated)
    return int(updated or 0)
