from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy.orm import Session

from compliance_portal.core.time_provider import TimeProvider, default_time_provider
from compliance_portal.models import Notification


logger = logging.getLogger(__name__)


class NotificationDispatcher:
    def dispatch(self, db: Session, *, user_id: int, title: str, message: str, type: str = 'info') -> None:
        raise NotImplementedError


class StoreNotificationDispatcher(NotificationDispatcher):
    """Persists the message as a notification row for the learner's inbox."""

    def __init__(self, time_provider: TimeProvider = default_time_provider) -> None:
        self._time_provider = time_provider

    def dispatch(self, db: Session, *, user_id: int, title: str, message: str, type: str = 'info') -> None:
        db.add(
            Notification(
                user_id=int(user_id),
                title=str(title or ''),
                message=str(message or ''),
                type=str(type or 'info'),
                created_at=self._time_provider.naive_now(),
            )
        )
        db.commit()


default_dispatcher: NotificationDispatcher = StoreNotificationDispatcher()


def notify_safely(
    db: Session,
    dispatcher: NotificationDispatcher,
    *,
    user_id: int,
    title: str,
    message: str,
    type: str = 'info',
) -> bool:
    try:
        dispatcher.dispatch(db, user_id=user_id, title=title, message=message, type=type)
    except Exception:
        # The triggering change is already committed.
        db.rollback()
        logger.exception('notification_dispatch_failed', extra={'user_id': int(user_id), 'title': title})
        return False
    return True


def unread_count(db: Session, user_id: int) -> int:
    return (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.read_at.is_(None))
        .count()
    )


def engagement_signal(db: Session, learner_id: int, *, start: datetime, end: datetime) -> float:
    """Percentage of notifications delivered in [start, end) that the learner has read.

    Returns 100 when nothing was delivered in the window.
    """
    rows = (
        db.query(Notification.read_at)
        .filter(
            Notification.user_id == learner_id,
            Notification.created_at >= start,
            Notification.created_at < end,
        )
        .all()
    )
    if not rows:
        return 100.0
    read = sum(1 for (read_at,) in rows if read_at is not None)
    return round(read / len(rows) * 100.0, 2)


def mark_read(
    db: Session,
    notification_id: int,
    *,
    user_id: int,
    time_provider: TimeProvider = default_time_provider,
) -> bool:
    updated = (
        db.query(Notification)
        .filter(
            Notification.id == notification_id,
            Notification.user_id == user_id,
            Notification.read_at.is_(None),
        )
        .update({Notification.read_at: time_provider.naive_now()}, synchronize_session=False)
    )
    db.commit()
    return bool(updated)
