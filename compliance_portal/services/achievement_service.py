from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from compliance_portal.core.store_guard import store_access
from compliance_portal.core.time_provider import TimeProvider, default_time_provider
from compliance_portal.models import Achievement, FeedbackSubmission, LearnerProfile
from compliance_portal.services.notification_service import NotificationDispatcher, default_dispatcher, notify_safely


logger = logging.getLogger(__name__)


class BadgeType(str, Enum):
    MONTHLY_SUBMISSION = 'monthly_submission'
    FEEDBACK_RATING = 'feedback_rating'
    TIMESHEET_UPLOAD = 'timesheet_upload'
    PERFECT_ATTENDANCE = 'perfect_attendance'
    DOCUMENT_UPLOAD = 'document_upload'
    SPECIAL_BADGE = 'special_badge'
    PROFILE_COMPLETION = 'profile_completion'
    ACTIVITY = 'activity'


MILESTONE_BADGE_TYPES = frozenset(
    {
        BadgeType.SPECIAL_BADGE.value,
        BadgeType.MONTHLY_SUBMISSION.value,
        BadgeType.PROFILE_COMPLETION.value,
    }
)

BADGE_STYLES: dict[str, tuple[str, str]] = {
    BadgeType.MONTHLY_SUBMISSION.value: ('#10B981', 'clipboard-check'),
    BadgeType.FEEDBACK_RATING.value: ('#F59E0B', 'star'),
    BadgeType.TIMESHEET_UPLOAD.value: ('#8B5CF6', 'clock'),
    BadgeType.PERFECT_ATTENDANCE.value: ('#8B5CF6', 'calendar-check'),
    BadgeType.DOCUMENT_UPLOAD.value: ('#3B82F6', 'file-text'),
    BadgeType.SPECIAL_BADGE.value: ('#10B981', 'award'),
    BadgeType.PROFILE_COMPLETION.value: ('#F59E0B', 'user'),
}

RATING_POINTS = {1: 1, 2: 5, 3: 10}


class AwardOutcome(str, Enum):
    CREATED = 'created'
    ALREADY_EXISTS = 'already_exists'


@dataclass(frozen=True)
class AwardResult:
    outcome: AwardOutcome
    achievement_id: int | None = None

    @property
    def created(self) -> bool:
        return self.outcome == AwardOutcome.CREATED


def is_milestone(badge_type: str) -> bool:
    return str(badge_type) in MILESTONE_BADGE_TYPES


def badge_style(badge_type: str) -> tuple[str, str]:
    return BADGE_STYLES.get(str(badge_type), ('#6B7280', 'award'))


def _dedup_key(badge_type: str, badge_name: str) -> str:
    return f'{badge_type}:{badge_name}'


def _find_existing(db: Session, learner_id: int, badge_type: str, badge_name: str) -> Achievement | None:
    return (
        db.query(Achievement)
        .filter(
            Achievement.learner_id == learner_id,
            Achievement.badge_type == badge_type,
            Achievement.badge_name == badge_name,
        )
        .first()
    )


def stage_award(
    db: Session,
    learner_id: int,
    badge_type: str,
    badge_name: str,
    description: str,
    points: int,
    color: str | None = None,
    icon: str | None = None,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> Achievement | None:
    """Insert the achievement and add its points inside the caller's transaction.

    Nothing is committed; the caller commits together with the change that
    earned the badge. Returns None when the milestone is already held. An
    ``IntegrityError`` on the ``dedup_key`` constraint propagates to the caller.
    """
    badge_type = str(badge_type)
    points = int(points or 0)
    if points < 0:
        raise ValueError('points must be non-negative')
    milestone = is_milestone(badge_type)
    default_color, default_icon = badge_style(badge_type)

    if milestone and _find_existing(db, learner_id, badge_type, badge_name) is not None:
        logger.info('award_skipped_existing learner_id=%s badge_type=%s badge_name=%s', learner_id, badge_type, badge_name)
        return None

    if db.get(LearnerProfile, learner_id) is None:
        raise LookupError('Learner not found')

    row = Achievement(
        learner_id=learner_id,
        badge_type=badge_type,
        badge_name=badge_name,
        description=description or '',
        points_awarded=points,
        badge_color=color or default_color,
        badge_icon=icon or default_icon,
        dedup_key=_dedup_key(badge_type, badge_name) if milestone else None,
        earned_at=time_provider.naive_now(),
    )
    db.add(row)
    db.flush()
    (
        db.query(LearnerProfile)
        .filter(LearnerProfile.id == learner_id)
        .update({LearnerProfile.points: LearnerProfile.points + points}, synchronize_session=False)
    )
    return row


def announce_award(db: Session, dispatcher: NotificationDispatcher, row: Achievement) -> None:
    """Log a committed achievement and notify the learner when it is a milestone."""
    logger.info(
        'award_created',
        extra={
            'learner_id': row.learner_id,
            'badge_type': row.badge_type,
            'points': row.points_awarded,
            'achievement_id': row.id,
        },
    )
    if is_milestone(row.badge_type):
        notify_safely(
            db,
            dispatcher,
            user_id=int(row.learner_id),
            title='Badge Earned',
            message=f'Congratulations! You earned the {row.badge_name} badge (+{row.points_awarded} pts).',
            type='success',
        )


def award_badge(
    db: Session,
    learner_id: int,
    badge_type: str,
    badge_name: str,
    description: str,
    points: int,
    color: str | None = None,
    icon: str | None = None,
    *,
    dispatcher: NotificationDispatcher = default_dispatcher,
    time_provider: TimeProvider = default_time_provider,
) -> AwardResult:
    """Grant a badge and add its points to the learner's lifetime total.

    Milestone badges exist at most once per (learner, badge_type, badge_name):
    the lookup in ``stage_award`` is a fast path and the unique ``dedup_key``
    constraint is the authoritative guard. Repeatable badges are always
    inserted. The session must not carry unrelated pending work; it is
    committed here.
    """
    badge_type = str(badge_type)
    milestone = is_milestone(badge_type)
    with store_access(db, 'award_badge', learner_id=learner_id, badge_type=badge_type):
        try:
            row = stage_award(
                db,
                learner_id,
                badge_type,
                badge_name,
                description,
                points,
                color,
                icon,
                time_provider=time_provider,
            )
            if row is None:
                return AwardResult(AwardOutcome.ALREADY_EXISTS)
            db.commit()
        except IntegrityError:
            db.rollback()
            if not milestone:
                raise
            logger.info('award_race_lost learner_id=%s badge_type=%s badge_name=%s', learner_id, badge_type, badge_name)
            return AwardResult(AwardOutcome.ALREADY_EXISTS)

    announce_award(db, dispatcher, row)
    return AwardResult(AwardOutcome.CREATED, int(row.id))


def _rating_badge(rating: int, period_label: str) -> tuple[str, str, int] | None:
    points = RATING_POINTS.get(int(rating), 0)
    if points <= 0:
        return None
    plural = 's' if int(rating) > 1 else ''
    return (
        f'{int(rating)}★ Feedback Rating',
        f'Rated {int(rating)} star{plural} for {period_label} feedback',
        points,
    )


def award_rating_points(
    db: Session,
    learner_id: int,
    rating: int,
    *,
    period_label: str,
    time_provider: TimeProvider = default_time_provider,
) -> AwardResult | None:
    badge = _rating_badge(rating, period_label)
    if badge is None:
        return None
    name, description, points = badge
    return award_badge(
        db,
        learner_id,
        BadgeType.FEEDBACK_RATING.value,
        name,
        description,
        points,
        time_provider=time_provider,
    )


def stage_rating_points(
    db: Session,
    learner_id: int,
    rating: int,
    *,
    period_label: str,
    time_provider: TimeProvider = default_time_provider,
) -> Achievement | None:
    badge = _rating_badge(rating, period_label)
    if badge is None:
        return None
    name, description, points = badge
    return stage_award(
        db,
        learner_id,
        BadgeType.FEEDBACK_RATING.value,
        name,
        description,
        points,
        time_provider=time_provider,
    )


@dataclass(frozen=True)
class StreakRule:
    """Milestone granted once a learner's count of qualifying records reaches ``threshold``.

    ``category`` names the compliance area the qualifying records belong to,
    so the milestone's points roll up with that area.
    """

    badge_type: str
    badge_name: str
    description: str
    points: int
    threshold: int
    qualifying_query: Callable[[Session, int], Query]
    category: str = 'engagement'


def _three_star_feedback(db: Session, learner_id: int) -> Query:
    return db.query(FeedbackSubmission.id).filter(
        FeedbackSubmission.learner_id == learner_id,
        FeedbackSubmission.mentor_rating == 3,
    )


THREE_STAR_EXCELLENCE = StreakRule(
    badge_type=BadgeType.SPECIAL_BADGE.value,
    badge_name='3-Star Excellence',
    description='Consistently achieved 3-star feedback ratings',
    points=20,
    threshold=3,
    qualifying_query=_three_star_feedback,
    category='feedback',
)

STREAK_RULES: tuple[StreakRule, ...] = (THREE_STAR_EXCELLENCE,)


def streak_category(badge_type: str, badge_name: str) -> str | None:
    for rule in STREAK_RULES:
        if rule.badge_type == str(badge_type) and rule.badge_name == str(badge_name):
            return rule.category
    return None


def stage_streak(
    db: Session,
    learner_id: int,
    rule: StreakRule,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> Achievement | None:
    """Stage the rule's milestone when the qualifying count, including pending rows, meets the threshold."""
    db.flush()
    if rule.qualifying_query(db, learner_id).count() < rule.threshold:
        return None
    return stage_award(
        db,
        learner_id,
        rule.badge_type,
        rule.badge_name,
        rule.description,
        rule.points,
        time_provider=time_provider,
    )


def check_streak(
    db: Session,
    learner_id: int,
    rule: StreakRule,
    *,
    dispatcher: NotificationDispatcher = default_dispatcher,
    time_provider: TimeProvider = default_time_provider,
) -> AwardResult | None:
    with store_access(db, 'check_streak', learner_id=learner_id, badge_name=rule.badge_name):
        count = rule.qualifying_query(db, learner_id).count()
    if count < rule.threshold:
        return None
    return award_badge(
        db,
        learner_id,
        rule.badge_type,
        rule.badge_name,
        rule.description,
        rule.points,
        dispatcher=dispatcher,
        time_provider=time_provider,
    )


def list_achievements(db: Session, learner_id: int) -> list[dict]:
    rows = (
        db.query(Achievement)
        .filter(Achievement.learner_id == learner_id)
        .order_by(Achievement.earned_at.desc(), Achievement.id.desc())
        .all()
    )
    return [
        {
            'id': row.id,
            'badge_type': row.badge_type,
            'badge_name': row.badge_name,
            'description': row.description,
            'points_awarded': row.points_awarded,
            'badge_color': row.badge_color,
            'badge_icon': row.badge_icon,
            'earned_at': row.earned_at.isoformat() if row.earned_at else None,
        }
        for row in rows
    ]
