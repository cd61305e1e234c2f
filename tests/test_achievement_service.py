import tempfile
import unittest
from datetime import date, datetime
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from compliance_portal.core.time_provider import APP_ZONEINFO, TimeProvider
from compliance_portal.db import Base
from compliance_portal.models import Achievement, FeedbackSubmission, LearnerProfile, Notification
import compliance_portal.services.achievement_service as achievement_module
from compliance_portal.services.achievement_service import (
    THREE_STAR_EXCELLENCE,
    AwardOutcome,
    BadgeType,
    award_badge,
    award_rating_points,
    check_streak,
    list_achievements,
)
from compliance_portal.services.notification_service import NotificationDispatcher
from compliance_portal.services.snapshot_service import lifetime_points


class FixedTimeProvider(TimeProvider):
    def __init__(self, frozen_dt: datetime):
        self._frozen_dt = frozen_dt

    def now(self) -> datetime:
        return self._frozen_dt


class RecordingDispatcher(NotificationDispatcher):
    def __init__(self):
        self.calls = []

    def dispatch(self, db, *, user_id, title, message, type='info'):
        self.calls.append({'user_id': user_id, 'title': title, 'message': message, 'type': type})


class FailingDispatcher(NotificationDispatcher):
    def dispatch(self, db, *, user_id, title, message, type='info'):
        raise RuntimeError('mail relay down')


class AchievementServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_achievement_service.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)
        cls._time = FixedTimeProvider(datetime(2026, 3, 20, 10, 0, tzinfo=APP_ZONEINFO))

    @classmethod
    def tearDownClass(cls):
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def setUp(self):
        db = self._session_factory()
        try:
            for table in (Notification, Achievement, FeedbackSubmission, LearnerProfile):
                db.query(table).delete()
            learner = LearnerProfile(full_name='Thandi Mokoena', email='thandi@example.com', learnership_start_date=date(2026, 1, 1))
            db.add(learner)
            db.commit()
            self.learner_id = int(learner.id)
        finally:
            db.close()

    def _award(self, db, badge_type, badge_name, points, dispatcher):
        return award_badge(
            db,
            self.learner_id,
            badge_type,
            badge_name,
            'test award',
            points,
            dispatcher=dispatcher,
            time_provider=self._time,
        )

    def test_milestone_award_is_idempotent_with_single_notification(self):
        dispatcher = RecordingDispatcher()
        db = self._session_factory()
        try:
            first = self._award(db, BadgeType.SPECIAL_BADGE.value, 'First Steps', 20, dispatcher)
            second = self._award(db, BadgeType.SPECIAL_BADGE.value, 'First Steps', 20, dispatcher)

            self.assertEqual(first.outcome, AwardOutcome.CREATED)
            self.assertIsNotNone(first.achievement_id)
            self.assertEqual(second.outcome, AwardOutcome.ALREADY_EXISTS)
            self.assertEqual(db.query(Achievement).filter(Achievement.learner_id == self.learner_id).count(), 1)
            self.assertEqual(len(dispatcher.calls), 1)
            self.assertEqual(dispatcher.calls[0]['title'], 'Badge Earned')
            self.assertEqual(db.get(LearnerProfile, self.learner_id).points, 20)
        finally:
            db.close()

    def test_store_constraint_resolves_lost_race_as_already_exists(self):
        dispatcher = RecordingDispatcher()
        original_find_existing = achievement_module._find_existing
        achievement_module._find_existing = lambda *args, **kwargs: None
        db = self._session_factory()
        try:
            first = self._award(db, BadgeType.PROFILE_COMPLETION.value, 'Profile Complete', 15, dispatcher)
            second = self._award(db, BadgeType.PROFILE_COMPLETION.value, 'Profile Complete', 15, dispatcher)

            self.assertTrue(first.created)
            self.assertEqual(second.outcome, AwardOutcome.ALREADY_EXISTS)
            self.assertEqual(db.query(Achievement).count(), 1)
            self.assertEqual(len(dispatcher.calls), 1)
            self.assertEqual(db.get(LearnerProfile, self.learner_id).points, 15)
        finally:
            achievement_module._find_existing = original_find_existing
            db.close()

    def test_repeatable_badges_are_always_inserted_without_notification(self):
        dispatcher = RecordingDispatcher()
        db = self._session_factory()
        try:
            self._award(db, BadgeType.DOCUMENT_UPLOAD.value, 'Document Uploaded', 10, dispatcher)
            self._award(db, BadgeType.DOCUMENT_UPLOAD.value, 'Document Uploaded', 10, dispatcher)
            self.assertEqual(db.query(Achievement).count(), 2)
            self.assertEqual(dispatcher.calls, [])
            self.assertEqual(db.get(LearnerProfile, self.learner_id).points, 20)
        finally:
            db.close()

    def test_notification_failure_keeps_the_award(self):
        db = self._session_factory()
        try:
            result = self._award(db, BadgeType.SPECIAL_BADGE.value, 'Resilient', 5, FailingDispatcher())
            self.assertTrue(result.created)
            self.assertEqual(db.query(Achievement).count(), 1)
            self.assertEqual(db.get(LearnerProfile, self.learner_id).points, 5)
        finally:
            db.close()

    def test_rejects_negative_points_and_unknown_learner(self):
        db = self._session_factory()
        try:
            with self.assertRaises(ValueError):
                self._award(db, BadgeType.ACTIVITY.value, 'Negative', -1, RecordingDispatcher())
            with self.assertRaises(LookupError):
                award_badge(db, 9999, BadgeType.ACTIVITY.value, 'Ghost', '', 1, time_provider=self._time)
        finally:
            db.close()

    def test_rating_points_follow_rating_table(self):
        db = self._session_factory()
        try:
            awarded = [
                award_rating_points(db, self.learner_id, rating, period_label='March 2026', time_provider=self._time)
                for rating in (1, 2, 3)
            ]
            self.assertTrue(all(result.created for result in awarded))
            rows = list_achievements(db, self.learner_id)
            self.assertEqual(sorted(row['points_awarded'] for row in rows), [1, 5, 10])
            self.assertIn('3★ Feedback Rating', {row['badge_name'] for row in rows})
        finally:
            db.close()

    def test_three_star_streak_awards_exactly_once_at_threshold(self):
        dispatcher = RecordingDispatcher()
        db = self._session_factory()
        try:
            outcomes = []
            for month, rating in enumerate((3, 2, 3, 3, 3), start=1):
                db.add(
                    FeedbackSubmission(
                        learner_id=self.learner_id,
                        month=month,
                        year=2025,
                        due_date=date(2025, month + 1, 5),
                        submitted_at=datetime(2025, month + 1, 1, 9, 0),
                        mentor_rating=rating,
                    )
                )
                db.commit()
                outcomes.append(check_streak(db, self.learner_id, THREE_STAR_EXCELLENCE, dispatcher=dispatcher, time_provider=self._time))

            self.assertIsNone(outcomes[0])
            self.assertIsNone(outcomes[1])
            self.assertIsNone(outcomes[2])
            self.assertEqual(outcomes[3].outcome, AwardOutcome.CREATED)
            self.assertEqual(outcomes[4].outcome, AwardOutcome.ALREADY_EXISTS)
            badges = db.query(Achievement).filter(Achievement.badge_name == '3-Star Excellence').all()
            self.assertEqual(len(badges), 1)
            self.assertEqual(badges[0].points_awarded, 20)
            self.assertEqual(len(dispatcher.calls), 1)
        finally:
            db.close()

    def test_lifetime_points_match_achievement_rows(self):
        dispatcher = RecordingDispatcher()
        db = self._session_factory()
        try:
            self.assertEqual(lifetime_points(db, self.learner_id), 0)
            self._award(db, BadgeType.MONTHLY_SUBMISSION.value, 'Monthly Report Submitted: March 2026', 50, dispatcher)
            self._award(db, BadgeType.MONTHLY_SUBMISSION.value, 'Monthly Report Submitted: March 2026', 50, dispatcher)
            self._award(db, BadgeType.TIMESHEET_UPLOAD.value, 'Timesheet Uploaded', 15, dispatcher)
            self._award(db, BadgeType.FEEDBACK_RATING.value, '2★ Feedback Rating', 5, dispatcher)

            row_total = sum(row.points_awarded for row in db.query(Achievement).filter(Achievement.learner_id == self.learner_id))
            self.assertEqual(row_total, 70)
            self.assertEqual(lifetime_points(db, self.learner_id), row_total)
            db.expire_all()
            self.assertEqual(db.get(LearnerProfile, self.learner_id).points, row_total)
        finally:
            db.close()


if __name__ == '__main__':
    unittest.main()
