from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import date, datetime
from typing import Callable, Iterable

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session, selectinload

from compliance_portal.config import settings
from compliance_portal.core.store_guard import StoreAccessError, store_access
from compliance_portal.core.time_provider import TimeProvider, default_time_provider
from compliance_portal.metrics import timed_service
from compliance_portal.models import (
    Document,
    FeedbackSubmission,
    LearnerProfile,
    SubmissionStatus,
    TimesheetSchedule,
)
from compliance_portal.services.document_service import applicable_document_types, checklist_for, document_label
from compliance_portal.services.feedback_service import feedback_due_date, month_label
from compliance_portal.services.notification_service import engagement_signal
from compliance_portal.services.status_resolver import feedback_status, resolve_status, timesheet_status
from compliance_portal.services.timesheet_service import PERIODS, period_due_date


logger = logging.getLogger(__name__)

WEIGHT_FEEDBACK = 0.40
WEIGHT_TIMESHEET = 0.35
WEIGHT_DOCUMENT = 0.15
WEIGHT_ENGAGEMENT = 0.10

LATE_PENALTY_PER_DAY = 0.05
LATE_CREDIT_FLOOR = 0.5
ENGAGEMENT_TARGET = 80.0
DEFAULT_WINDOW_MONTHS = 3
MAX_LISTED_DOCUMENTS = 3

MonthKey = tuple[int, int]


def clamp_percent(value: float) -> float:
    return max(0.0, min(100.0, float(value)))


def combine_scores(feedback: float, timesheet: float, document: float, engagement: float) -> float:
    total = (
        clamp_percent(feedback) * WEIGHT_FEEDBACK
        + clamp_percent(timesheet) * WEIGHT_TIMESHEET
        + clamp_percent(document) * WEIGHT_DOCUMENT
        + clamp_percent(engagement) * WEIGHT_ENGAGEMENT
    )
    return round(clamp_percent(total), 2)


def status_message(overall: float) -> str:
    if overall >= 80:
        return 'Excellent compliance!'
    if overall >= 60:
        return 'Good progress, room for improvement'
    return 'Immediate attention required'


def late_submission_credit(submitted_at: date | datetime, due_date: date) -> float:
    """1.0 on time, then 5% less per late day, never below half credit.

    Missing submissions earn nothing, so any submission outranks none.
    """
    submitted_day = submitted_at.date() if isinstance(submitted_at, datetime) else submitted_at
    days_late = (submitted_day - due_date).days
    if days_late <= 0:
        return 1.0
    return max(LATE_CREDIT_FLOOR, 1.0 - LATE_PENALTY_PER_DAY * days_late)


def _uploaded_on_time(uploaded_at: datetime | None, due_date: date) -> bool:
    return uploaded_at is not None and uploaded_at.date() <= due_date


def compute_feedback_score(
    feedback_history: Iterable[FeedbackSubmission],
    *,
    months: list[MonthKey],
    now: datetime,
) -> tuple[float, dict]:
    by_month = {(int(row.year), int(row.month)): row for row in feedback_history}
    required = 0
    on_time = 0
    credit = 0.0
    missing: list[MonthKey] = []
    for year, month in months:
        row = by_month.get((year, month))
        if row is None:
            status = resolve_status(feedback_due_date(month, year), now=now)
        else:
            status = feedback_status(row, now=now)
        if status == SubmissionStatus.PENDING:
            continue
        required += 1
        if status == SubmissionStatus.SUBMITTED:
            credit += late_submission_credit(row.submitted_at, row.due_date)
            if _uploaded_on_time(row.submitted_at, row.due_date):
                on_time += 1
        else:
            missing.append((year, month))
    score = 100.0 if required == 0 else round(credit / required * 100.0, 2)
    return score, {'required': required, 'on_time': on_time, 'missing': missing}


def compute_timesheet_score(
    timesheet_history: Iterable[TimesheetSchedule],
    *,
    months: list[MonthKey],
    now: datetime,
) -> tuple[float, dict]:
    by_period = {(int(row.year), int(row.month), int(row.period)): row for row in timesheet_history}
    required = 0
    on_time = 0
    uploaded = 0
    missing: list[tuple[int, int, int]] = []
    expired: list[tuple[int, int, int]] = []
    for year, month in months:
        for period in PERIODS:
            schedule = by_period.get((year, month, period))
            if schedule is None:
                status = resolve_status(period_due_date(month, year, period), now=now)
            else:
                status = timesheet_status(schedule, schedule.submission, now=now)
            if status == SubmissionStatus.PENDING:
                continue
            required += 1
            if status == SubmissionStatus.SUBMITTED:
                uploaded += 1
                if _uploaded_on_time(schedule.submission.uploaded_at, schedule.due_date):
                    on_time += 1
            elif status == SubmissionStatus.EXPIRED:
                expired.append((year, month, period))
            else:
                missing.append((year, month, period))
    score = 100.0 if required == 0 else round(uploaded / required * 100.0, 2)
    return score, {'required': required, 'on_time': on_time, 'missing': missing, 'expired': expired}


def compute_document_score(
    document_history: Iterable[Document],
    *,
    applicable_documents: Iterable[str] = (),
) -> tuple[float, dict]:
    checklist = checklist_for(tuple(applicable_documents))
    uploaded_types = {str(row.document_type) for row in document_history}
    present = [doc for doc in checklist if doc in uploaded_types]
    missing = [doc for doc in checklist if doc not in uploaded_types]
    score = 100.0 if not checklist else round(len(present) / len(checklist) * 100.0, 2)
    return score, {'required': len(checklist), 'present': len(present), 'missing': missing}


def _feedback_action(missing: list[MonthKey], score: float) -> str | None:
    if missing:
        year, month = missing[0]
        if len(missing) == 1:
            return f'Submit feedback for {month_label(month, year)}'
        others = len(missing) - 1
        return f'Submit feedback for {month_label(month, year)} and {others} other month{"s" if others > 1 else ""}'
    if score < 100:
        return 'Submit monthly feedback before the due date'
    return None


def _timesheet_action(missing: list[tuple[int, int, int]], expired: list[tuple[int, int, int]]) -> str | None:
    if missing:
        year, month, period = missing[0]
        if len(missing) == 1:
            return f'Upload Period {period} timesheet for {month_label(month, year)}'
        return f'Upload {len(missing)} outstanding timesheets, starting with Period {period} for {month_label(month, year)}'
    if expired:
        plural = 's' if len(expired) > 1 else ''
        return f'Contact your mentor about {len(expired)} expired timesheet{plural}'
    return None


def _document_action(missing: list[str]) -> str | None:
    if not missing:
        return None
    labels = [document_label(doc) for doc in missing[:MAX_LISTED_DOCUMENTS]]
    text = f'Upload missing documents: {", ".join(labels)}'
    remaining = len(missing) - len(labels)
    if remaining > 0:
        text += f' and {remaining} more'
    return text


def _engagement_action(score: float) -> str | None:
    if score < ENGAGEMENT_TARGET:
        return 'Read your notifications and complete your profile to improve engagement'
    return None


def compute_score(
    feedback_history: Iterable[FeedbackSubmission],
    timesheet_history: Iterable[TimesheetSchedule],
    document_history: Iterable[Document],
    engagement: float,
    *,
    months: list[MonthKey],
    now: datetime,
    applicable_documents: Iterable[str] = (),
) -> dict:
    """Weighted compliance score for one learner over ``months``.

    Pure: identical inputs give identical output, including the order and
    wording of ``next_actions`` (feedback, timesheet, document, engagement).
    """
    months = sorted({(int(year), int(month)) for year, month in months})
    feedback_score, feedback_details = compute_feedback_score(feedback_history, months=months, now=now)
    timesheet_score, timesheet_details = compute_timesheet_score(timesheet_history, months=months, now=now)
    document_score, document_details = compute_document_score(document_history, applicable_documents=applicable_documents)
    engagement_score = round(clamp_percent(engagement or 0.0), 2)
    overall = combine_scores(feedback_score, timesheet_score, document_score, engagement_score)

    candidates = (
        _feedback_action(feedback_details['missing'], feedback_score),
        _timesheet_action(timesheet_details['missing'], timesheet_details['expired']),
        _document_action(document_details['missing']),
        _engagement_action(engagement_score),
    )
    return {
        'overall': overall,
        'feedback': feedback_score,
        'timesheet': timesheet_score,
        'document': document_score,
        'engagement': engagement_score,
        'next_actions': [action for action in candidates if action],
        'status_message': status_message(overall),
        'on_time_items': feedback_details['on_time'] + timesheet_details['on_time'],
        'required_items': feedback_details['required'] + timesheet_details['required'],
        'weights': {
            'feedback': WEIGHT_FEEDBACK,
            'timesheet': WEIGHT_TIMESHEET,
            'document': WEIGHT_DOCUMENT,
            'engagement': WEIGHT_ENGAGEMENT,
        },
    }


def _shift_month(year: int, month: int, offset: int) -> MonthKey:
    index = year * 12 + (month - 1) + offset
    return index // 12, index % 12 + 1


def month_window(end_year: int, end_month: int, count: int, *, start: date | None = None) -> list[MonthKey]:
    """The ``count`` months ending at (end_year, end_month), never earlier than ``start``'s month."""
    window = [_shift_month(end_year, end_month, -offset) for offset in range(max(1, count) - 1, -1, -1)]
    if start is not None:
        window = [key for key in window if key >= (start.year, start.month)]
    return window or [(end_year, end_month)]


def window_bounds(months: list[MonthKey]) -> tuple[datetime, datetime]:
    first_year, first_month = min(months)
    last_year, last_month = max(months)
    end_year, end_month = _shift_month(last_year, last_month, 1)
    return datetime(first_year, first_month, 1), datetime(end_year, end_month, 1)


def load_learner_history(db: Session, learner_id: int, months: list[MonthKey]) -> dict:
    month_filter = or_(*[and_(FeedbackSubmission.year == year, FeedbackSubmission.month == month) for year, month in months])
    schedule_filter = or_(*[and_(TimesheetSchedule.year == year, TimesheetSchedule.month == month) for year, month in months])
    feedback_rows = (
        db.query(FeedbackSubmission)
        .filter(FeedbackSubmission.learner_id == learner_id, month_filter)
        .all()
    )
    schedules = (
        db.query(TimesheetSchedule)
        .options(selectinload(TimesheetSchedule.submission))
        .filter(TimesheetSchedule.learner_id == learner_id, schedule_filter)
        .all()
    )
    # Documents count toward a window only once uploaded before it closes.
    _, window_end = window_bounds(months)
    documents = (
        db.query(Document)
        .filter(Document.learner_id == learner_id, Document.uploaded_at < window_end)
        .all()
    )
    return {
        'feedback': feedback_rows,
        'timesheets': schedules,
        'documents': documents,
        'applicable_documents': applicable_document_types(db, learner_id),
    }


def compute_learner_score_for_months(
    db: Session,
    learner_id: int,
    months: list[MonthKey],
    *,
    engagement: float | None = None,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    with store_access(db, 'compute_learner_score', learner_id=learner_id):
        learner = db.get(LearnerProfile, learner_id)
        if learner is None:
            raise LookupError('Learner not found')
        history = load_learner_history(db, learner_id, months)
        if engagement is None:
            start, end = window_bounds(months)
            engagement = engagement_signal(db, learner_id, start=start, end=end)
    payload = compute_score(
        history['feedback'],
        history['timesheets'],
        history['documents'],
        engagement,
        months=months,
        now=time_provider.naive_now(),
        applicable_documents=history['applicable_documents'],
    )
    payload['learner_id'] = learner_id
    payload['months'] = [f'{year:04d}-{month:02d}' for year, month in months]
    return payload


def default_months(db: Session, learner_id: int, *, time_provider: TimeProvider = default_time_provider) -> list[MonthKey]:
    today = time_provider.today()
    learner = db.get(LearnerProfile, learner_id)
    start = learner.learnership_start_date if learner else None
    return month_window(today.year, today.month, DEFAULT_WINDOW_MONTHS, start=start)


def cache_compliance_score(db: Session, learner_id: int, overall: float) -> None:
    with store_access(db, 'cache_compliance_score', learner_id=learner_id):
        (
            db.query(LearnerProfile)
            .filter(LearnerProfile.id == learner_id)
            .update({LearnerProfile.compliance_score: float(overall)}, synchronize_session=False)
        )
        db.commit()


@timed_service('compute_learner_score')
def compute_learner_score(
    db: Session,
    learner_id: int,
    *,
    months: list[MonthKey] | None = None,
    engagement: float | None = None,
    persist: bool = True,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    months = months or default_months(db, learner_id, time_provider=time_provider)
    payload = compute_learner_score_for_months(
        db,
        learner_id,
        months,
        engagement=engagement,
        time_provider=time_provider,
    )
    if persist:
        cache_compliance_score(db, learner_id, payload['overall'])
    return payload


def _score_one(
    session_factory: Callable[[], Session],
    learner_id: int,
    cancel_event: threading.Event,
    time_provider: TimeProvider,
) -> dict | None:
    if cancel_event.is_set():
        return None
    db = session_factory()
    try:
        payload = compute_learner_score(db, learner_id, persist=False, time_provider=time_provider)
        if cancel_event.is_set():
            return None
        cache_compliance_score(db, learner_id, payload['overall'])
        return payload
    finally:
        db.close()


@timed_service('compute_roster_scores')
def compute_roster_scores(
    session_factory: Callable[[], Session],
    learner_ids: list[int],
    *,
    batch_size: int | None = None,
    cancel_event: threading.Event | None = None,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    """Score a roster with at most ``batch_size`` learners in flight.

    Learners are processed batch by batch, each worker on its own session.
    Setting ``cancel_event`` stops new batches and suppresses the cached score
    write of anything still in flight.
    """
    batch_size = max(1, int(batch_size or settings.roster_batch_size))
    cancel_event = cancel_event or threading.Event()
    ordered_ids = list(dict.fromkeys(int(learner_id) for learner_id in learner_ids))
    results: dict[int, dict] = {}
    failures: dict[int, str] = {}
    cancelled = False

    with ThreadPoolExecutor(max_workers=batch_size, thread_name_prefix='roster-score') as pool:
        for start in range(0, len(ordered_ids), batch_size):
            if cancel_event.is_set():
                cancelled = True
                break
            batch = ordered_ids[start:start + batch_size]
            futures = {
                pool.submit(_score_one, session_factory, learner_id, cancel_event, time_provider): learner_id
                for learner_id in batch
            }
            for future in as_completed(futures):
                learner_id = futures[future]
                try:
                    payload = future.result()
                except (StoreAccessError, LookupError) as exc:
                    logger.error('roster_score_failed', extra={'learner_id': learner_id, 'error': str(exc)})
                    failures[learner_id] = str(exc)
                    continue
                if payload is not None:
                    results[learner_id] = payload
        if cancel_event.is_set():
            cancelled = True

    logger.info(
        'roster_scores_done',
        extra={'requested': len(ordered_ids), 'scored': len(results), 'failed': len(failures), 'cancelled': cancelled},
    )
    return {
        'results': [results[learner_id] for learner_id in ordered_ids if learner_id in results],
        'failures': failures,
        'cancelled': cancelled,
    }
