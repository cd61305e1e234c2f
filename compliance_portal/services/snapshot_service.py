from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from compliance_portal.core.store_guard import store_access
from compliance_portal.core.time_provider import TimeProvider, default_time_provider
from compliance_portal.metrics import timed_snapshot
from compliance_portal.models import Achievement, LearnerProfile, MonthlyComplianceSnapshot
from compliance_portal.services.achievement_service import BadgeType, streak_category
from compliance_portal.services.compliance_score_service import (
    compute_learner_score_for_months,
    month_window,
    window_bounds,
)


logger = logging.getLogger(__name__)

TREND_WINDOW = 3
DEFAULT_HISTORY_MONTHS = 6

POINT_CATEGORIES: dict[str, str] = {
    BadgeType.MONTHLY_SUBMISSION.value: 'feedback',
    BadgeType.FEEDBACK_RATING.value: 'feedback',
    BadgeType.TIMESHEET_UPLOAD.value: 'timesheet',
    BadgeType.PERFECT_ATTENDANCE.value: 'timesheet',
    BadgeType.DOCUMENT_UPLOAD.value: 'document',
}


def point_category(badge_type: str, badge_name: str | None = None) -> str:
    if badge_name is not None:
        category = streak_category(badge_type, badge_name)
        if category is not None:
            return category
    return POINT_CATEGORIES.get(str(badge_type), 'engagement')


def lifetime_points(db: Session, learner_id: int) -> int:
    """Sum of points over the learner's achievement rows; never derived from snapshots."""
    with store_access(db, 'lifetime_points', learner_id=learner_id):
        total = (
            db.query(func.coalesce(func.sum(Achievement.points_awarded), 0))
            .filter(Achievement.learner_id == learner_id)
            .scalar()
        )
    return int(total or 0)


def monthly_points(db: Session, learner_id: int, month: int, year: int) -> dict[str, int]:
    start, end = window_bounds([(year, month)])
    rows = (
        db.query(Achievement.badge_type, Achievement.badge_name, func.coalesce(func.sum(Achievement.points_awarded), 0))
        .filter(
            Achievement.learner_id == learner_id,
            Achievement.earned_at >= start,
            Achievement.earned_at < end,
        )
        .group_by(Achievement.badge_type, Achievement.badge_name)
        .all()
    )
    totals = {'feedback': 0, 'timesheet': 0, 'document': 0, 'engagement': 0}
    for badge_type, badge_name, points in rows:
        totals[point_category(badge_type, badge_name)] += int(points or 0)
    return totals


def on_time_ratio(snapshot: MonthlyComplianceSnapshot) -> float:
    required = int(snapshot.required_items or 0)
    if required <= 0:
        return 1.0
    return int(snapshot.on_time_items or 0) / required


def trend(history: Iterable[MonthlyComplianceSnapshot]) -> str:
    """'up', 'down' or 'stable' from the newest three snapshots against the three before them."""
    ordered = sorted(history, key=lambda row: (int(row.year), int(row.month)), reverse=True)
    recent = ordered[:TREND_WINDOW]
    prior = ordered[TREND_WINDOW:TREND_WINDOW * 2]
    if not recent or not prior:
        return 'stable'
    recent_ratio = sum(on_time_ratio(row) for row in recent) / len(recent)
    prior_ratio = sum(on_time_ratio(row) for row in prior) / len(prior)
    if recent_ratio > prior_ratio:
        return 'up'
    if recent_ratio < prior_ratio:
        return 'down'
    return 'stable'


def serialize_snapshot(row: MonthlyComplianceSnapshot) -> dict:
    return {
        'learner_id': row.learner_id,
        'month': row.month,
        'year': row.year,
        'feedback_score': row.feedback_score,
        'timesheet_score': row.timesheet_score,
        'document_score': row.document_score,
        'engagement_score': row.engagement_score,
        'overall_compliance_percent': row.overall_compliance_percent,
        'feedback_points': row.feedback_points,
        'timesheet_points': row.timesheet_points,
        'document_points': row.document_points,
        'engagement_points': row.engagement_points,
        'total_monthly_points': row.total_monthly_points,
        'on_time_ratio': round(on_time_ratio(row), 4),
        'computed_at': row.computed_at.isoformat() if row.computed_at else None,
    }


def _apply(row: MonthlyComplianceSnapshot, score: dict, points: dict[str, int], computed_at) -> None:
    row.feedback_score = score['feedback']
    row.timesheet_score = score['timesheet']
    row.document_score = score['document']
    row.engagement_score = score['engagement']
    row.overall_compliance_percent = score['overall']
    row.feedback_points = points['feedback']
    row.timesheet_points = points['timesheet']
    row.document_points = points['document']
    row.engagement_points = points['engagement']
    row.total_monthly_points = sum(points.values())
    row.on_time_items = score['on_time_items']
    row.required_items = score['required_items']
    row.computed_at = computed_at


def _find_snapshot(db: Session, learner_id: int, month: int, year: int) -> MonthlyComplianceSnapshot | None:
    return (
        db.query(MonthlyComplianceSnapshot)
        .filter(
            MonthlyComplianceSnapshot.learner_id == learner_id,
            MonthlyComplianceSnapshot.month == month,
            MonthlyComplianceSnapshot.year == year,
        )
        .first()
    )


@timed_snapshot('build_snapshot')
def build_snapshot(
    db: Session,
    learner_id: int,
    month: int,
    year: int,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> MonthlyComplianceSnapshot:
    """Recompute and store one learner-month rollup from the underlying rows."""
    score = compute_learner_score_for_months(db, learner_id, [(year, month)], time_provider=time_provider)
    now = time_provider.naive_now()
    with store_access(db, 'build_snapshot', learner_id=learner_id, month=month, year=year):
        points = monthly_points(db, learner_id, month, year)
        row = _find_snapshot(db, learner_id, month, year)
        if row is None:
            row = MonthlyComplianceSnapshot(learner_id=learner_id, month=month, year=year)
            _apply(row, score, points, now)
            try:
                db.add(row)
                db.commit()
            except IntegrityError:
                # Built concurrently; overwrite with this computation.
                db.rollback()
                row = _find_snapshot(db, learner_id, month, year)
                _apply(row, score, points, now)
                db.commit()
        else:
            _apply(row, score, points, now)
            db.commit()
        db.refresh(row)
    return row


def snapshot_history(db: Session, learner_id: int, *, limit: int = DEFAULT_HISTORY_MONTHS) -> list[MonthlyComplianceSnapshot]:
    return (
        db.query(MonthlyComplianceSnapshot)
        .filter(MonthlyComplianceSnapshot.learner_id == learner_id)
        .order_by(MonthlyComplianceSnapshot.year.desc(), MonthlyComplianceSnapshot.month.desc())
        .limit(max(1, int(limit)))
        .all()
    )


def compliance_report(
    db: Session,
    learner_id: int,
    *,
    months_back: int = DEFAULT_HISTORY_MONTHS,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    """Rebuild the recent monthly snapshots and report them with trend and lifetime points."""
    learner = db.get(LearnerProfile, learner_id)
    if learner is None:
        raise LookupError('Learner not found')
    today = time_provider.today()
    window = month_window(today.year, today.month, months_back, start=learner.learnership_start_date)
    rows = [build_snapshot(db, learner_id, month, year, time_provider=time_provider) for year, month in window]
    history = sorted(rows, key=lambda row: (row.year, row.month), reverse=True)
    logger.info('compliance_report_built', extra={'learner_id': learner_id, 'months': len(history)})
    return {
        'learner_id': learner_id,
        'history': [serialize_snapshot(row) for row in history],
        'trend': trend(history),
        'lifetime_points': lifetime_points(db, learner_id),
    }
