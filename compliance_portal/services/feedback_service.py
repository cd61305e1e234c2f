from __future__ import annotations

import logging
from datetime import date, timedelta

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from compliance_portal.config import settings
from compliance_portal.core.store_guard import SafeConflictError, store_access
from compliance_portal.core.time_provider import TimeProvider, default_time_provider
from compliance_portal.models import FeedbackResponse, FeedbackSubmission, LearnerProfile, SubmissionStatus
from compliance_portal.schemas import FEEDBACK_SCHEMA_VERSION, FeedbackPayload
from compliance_portal.services.achievement_service import (
    STREAK_RULES,
    BadgeType,
    announce_award,
    stage_award,
    stage_rating_points,
    stage_streak,
)
from compliance_portal.services.notification_service import NotificationDispatcher, default_dispatcher, notify_safely
from compliance_portal.services.status_resolver import feedback_status, resolve_status


logger = logging.getLogger(__name__)

MONTHLY_SUBMISSION_POINTS = 50


def month_label(month: int, year: int) -> str:
    return date(year, month, 1).strftime('%B %Y')


def feedback_due_date(month: int, year: int) -> date:
    """Feedback for a month is due on the configured day of the following month."""
    if month == 12:
        return date(year + 1, 1, settings.feedback_due_day)
    return date(year, month + 1, settings.feedback_due_day)


def parse_feedback_payload(response: FeedbackResponse | None) -> FeedbackPayload | None:
    if response is None:
        return None
    try:
        return FeedbackPayload.model_validate_json(response.payload_json or '')
    except ValidationError:
        logger.warning(
            'feedback_payload_unparsable feedback_id=%s schema_version=%s',
            response.feedback_id,
            response.schema_version,
        )
        return None


def submit_feedback(
    db: Session,
    learner_id: int,
    month: int,
    year: int,
    payload: FeedbackPayload,
    *,
    dispatcher: NotificationDispatcher = default_dispatcher,
    time_provider: TimeProvider = default_time_provider,
) -> FeedbackSubmission:
    now = time_provider.naive_now()
    with store_access(db, 'submit_feedback', learner_id=learner_id, month=month, year=year):
        if db.get(LearnerProfile, learner_id) is None:
            raise LookupError('Learner not found')
        row = FeedbackSubmission(
            learner_id=learner_id,
            month=month,
            year=year,
            due_date=feedback_due_date(month, year),
            submitted_at=now,
            is_editable_by_learner=True,
        )
        row.status = feedback_status(row, now=now).value
        row.response = FeedbackResponse(
            schema_version=FEEDBACK_SCHEMA_VERSION,
            payload_json=payload.model_dump_json(),
            updated_at=now,
        )
        try:
            db.add(row)
            db.flush()
            badge = stage_award(
                db,
                learner_id,
                BadgeType.MONTHLY_SUBMISSION.value,
                f'Monthly Report Submitted: {month_label(month, year)}',
                f'Submitted monthly report for {month_label(month, year)}',
                MONTHLY_SUBMISSION_POINTS,
                time_provider=time_provider,
            )
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise SafeConflictError(f'Feedback for {month_label(month, year)} was already submitted.') from exc
        db.refresh(row)

    logger.info('feedback_submitted', extra={'learner_id': learner_id, 'feedback_id': row.id, 'month': month, 'year': year})
    if badge is not None:
        announce_award(db, dispatcher, badge)
    return row


def update_feedback(
    db: Session,
    feedback_id: int,
    learner_id: int,
    payload: FeedbackPayload,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> FeedbackSubmission:
    now = time_provider.naive_now()
    with store_access(db, 'update_feedback', feedback_id=feedback_id):
        row = (
            db.query(FeedbackSubmission)
            .options(selectinload(FeedbackSubmission.response))
            .filter(FeedbackSubmission.id == feedback_id, FeedbackSubmission.learner_id == learner_id)
            .first()
        )
        if row is None:
            raise LookupError('Feedback not found')
        if not row.is_editable_by_learner:
            raise SafeConflictError('Feedback is locked for editing.')
        window = timedelta(days=settings.feedback_edit_window_days)
        if row.submitted_at is not None and now - row.submitted_at > window:
            raise SafeConflictError('Feedback edit window has closed.')
        if row.response is None:
            row.response = FeedbackResponse(schema_version=FEEDBACK_SCHEMA_VERSION)
        row.response.schema_version = FEEDBACK_SCHEMA_VERSION
        row.response.payload_json = payload.model_dump_json()
        row.response.updated_at = now
        row.edited_at = now
        db.commit()
        db.refresh(row)
    return row


def rate_feedback(
    db: Session,
    feedback_id: int,
    rating: int,
    *,
    dispatcher: NotificationDispatcher = default_dispatcher,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    """Store a mentor rating with its points and any streak milestone in one transaction.

    A streak milestone inserted concurrently by another rating rolls the whole
    transaction back and surfaces as ``SafeConflictError``; retrying finds the
    milestone already held.
    """
    rating = int(rating)
    if rating not in (1, 2, 3):
        raise ValueError('rating must be between 1 and 3')
    with store_access(db, 'rate_feedback', feedback_id=feedback_id):
        row = db.get(FeedbackSubmission, feedback_id)
        if row is None:
            raise LookupError('Feedback not found')
        learner_id = int(row.learner_id)
        label = month_label(row.month, row.year)
        try:
            row.mentor_rating = rating
            rating_award = stage_rating_points(db, learner_id, rating, period_label=label, time_provider=time_provider)
            streak_awards = [
                badge
                for badge in (stage_streak(db, learner_id, rule, time_provider=time_provider) for rule in STREAK_RULES)
                if badge is not None
            ]
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            logger.warning('rate_feedback_conflict feedback_id=%s learner_id=%s', feedback_id, learner_id)
            raise SafeConflictError('A streak badge was awarded concurrently; retry the rating.') from exc

    if rating_award is not None:
        announce_award(db, dispatcher, rating_award)
    for badge in streak_awards:
        announce_award(db, dispatcher, badge)
    notify_safely(
        db,
        dispatcher,
        user_id=learner_id,
        title='Feedback Rated',
        message=f'Your {label} feedback was rated {rating}★.',
    )
    return {
        'feedback_id': feedback_id,
        'rating': rating,
        'rating_achievement_id': int(rating_award.id) if rating_award is not None else None,
        'streak_badges_awarded': len(streak_awards),
    }


def acknowledge_feedback(
    db: Session,
    feedback_id: int,
    *,
    expected_acknowledged: bool,
    acknowledged: bool,
    dispatcher: NotificationDispatcher = default_dispatcher,
    time_provider: TimeProvider = default_time_provider,
) -> FeedbackSubmission:
    """Toggle the mentor's "received" mark only if it still holds the expected value."""
    now = time_provider.naive_now()
    with store_access(db, 'acknowledge_feedback', feedback_id=feedback_id):
        query = db.query(FeedbackSubmission).filter(FeedbackSubmission.id == feedback_id)
        if expected_acknowledged:
            query = query.filter(FeedbackSubmission.mentor_approved_at.isnot(None))
        else:
            query = query.filter(FeedbackSubmission.mentor_approved_at.is_(None))
        updated = query.update(
            {FeedbackSubmission.mentor_approved_at: now if acknowledged else None},
            synchronize_session=False,
        )
        db.commit()
        row = db.get(FeedbackSubmission, feedback_id)
        if row is not None:
            db.refresh(row)
    if row is None:
        raise LookupError('Feedback not found')
    if not updated:
        logger.warning('acknowledge_conflict feedback_id=%s expected=%s', feedback_id, expected_acknowledged)
        raise SafeConflictError('Feedback acknowledgement was changed by someone else.')

    if acknowledged and not expected_acknowledged:
        notify_safely(
            db,
            dispatcher,
            user_id=int(row.learner_id),
            title='Feedback Received',
            message=f'Your monthly feedback for {month_label(row.month, row.year)} was received.',
            type='success',
        )
    return row


def yearly_feedback_overview(
    db: Session,
    learner_id: int,
    year: int,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> list[dict]:
    now = time_provider.naive_now()
    rows = (
        db.query(FeedbackSubmission)
        .options(selectinload(FeedbackSubmission.response))
        .filter(FeedbackSubmission.learner_id == learner_id, FeedbackSubmission.year == year)
        .all()
    )
    by_month = {row.month: row for row in rows}
    cells = []
    for month in range(1, 13):
        row = by_month.get(month)
        if row is None:
            status = resolve_status(feedback_due_date(month, year), now=now)
            cells.append(
                {
                    'month': month,
                    'label': month_label(month, year),
                    'status': status.value,
                    'approved': False,
                    'mentor_rating': None,
                    'attendance_rating': None,
                }
            )
            continue
        payload = parse_feedback_payload(row.response)
        cells.append(
            {
                'month': month,
                'label': month_label(month, year),
                'status': feedback_status(row, now=now).value,
                'approved': row.mentor_approved_at is not None,
                'mentor_rating': row.mentor_rating,
                'attendance_rating': payload.attendance_rating if payload else None,
            }
        )
    return cells


def submitted_count(cells: list[dict]) -> int:
    return sum(1 for cell in cells if cell['status'] == SubmissionStatus.SUBMITTED.value)
