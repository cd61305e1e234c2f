import sqlite3
import tempfile
import threading
import unittest
from datetime import date, datetime
from pathlib import Path

from sqlalchemy import create_engine, event
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from compliance_portal.core.store_guard import SafeConflictError, StoreAccessError
from compliance_portal.core.time_provider import APP_ZONEINFO, TimeProvider
from compliance_portal.db import Base
from compliance_portal.models import Achievement, LearnerProfile, Notification, TimesheetSchedule, TimesheetSubmission
from compliance_portal.services.timesheet_service import (
    DownloadOutcome,
    ensure_month_schedule,
    list_month_periods,
    mark_expired_timesheets,
    month_complete,
    period_due_date,
    record_download,
    record_timesheet_upload,
)


class FixedTimeProvider(TimeProvider):
    def __init__(self, frozen_dt: datetime):
        self._frozen_dt = frozen_dt

    def now(self) -> datetime:
        return self._frozen_dt


def _at(*args) -> FixedTimeProvider:
    return FixedTimeProvider(datetime(*args, tzinfo=APP_ZONEINFO))


def _fail_achievement_inserts(conn, cursor, statement, parameters, context, executemany):
    if statement.lstrip().upper().startswith('INSERT INTO ACHIEVEMENTS'):
        raise OperationalError(statement, parameters, sqlite3.OperationalError('disk I/O error'))


class PeriodRuleTests(unittest.TestCase):
    def test_due_dates_follow_mid_and_month_end(self):
        self.assertEqual(period_due_date(2, 2024, 1), date(2024, 2, 15))
        self.assertEqual(period_due_date(2, 2024, 2), date(2024, 2, 29))
        self.assertEqual(period_due_date(4, 2026, 2), date(2026, 4, 30))
        with self.assertRaises(ValueError):
            period_due_date(4, 2026, 3)

    def test_month_complete_requires_two_uploaded_periods(self):
        def period(number, uploaded_at=None, **fields):
            schedule = TimesheetSchedule(learner_id=1, month=3, year=2026, period=number, due_date=date(2026, 3, 15))
            if uploaded_at is not None:
                schedule.submission = TimesheetSubmission(learner_id=1, file_path='x.pdf', uploaded_at=uploaded_at, **fields)
            return schedule

        uploaded = datetime(2026, 3, 10, 9, 0)
        self.assertFalse(month_complete([]))
        self.assertFalse(month_complete([period(1, uploaded)]))
        self.assertFalse(month_complete([period(1, uploaded), period(2)]))
        self.assertTrue(month_complete([period(1, uploaded), period(2, uploaded)]))
        self.assertTrue(month_complete([period(1, uploaded, is_expired=True), period(2, uploaded)]))


class TimesheetServiceTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls._tmpdir = tempfile.TemporaryDirectory()
        db_path = Path(cls._tmpdir.name) / 'test_timesheet_service.db'
        cls._engine = create_engine(f"sqlite:///{db_path}", connect_args={'check_same_thread': False})
        cls._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=cls._engine)
        Base.metadata.create_all(bind=cls._engine)

    @classmethod
    def tearDownClass(cls):
        cls._engine.dispose()
        cls._tmpdir.cleanup()

    def setUp(self):
        db = self._session_factory()
        try:
            for table in (Notification, Achievement, TimesheetSubmission, TimesheetSchedule, LearnerProfile):
                db.query(table).delete()
            learner = LearnerProfile(full_name='Sipho Dlamini', email='sipho@example.com', learnership_start_date=date(2026, 1, 1))
            db.add(learner)
            db.commit()
            self.learner_id = int(learner.id)
        finally:
            db.close()

    def _upload(self, db, period=1, *, time_provider, absent_days=None):
        return record_timesheet_upload(
            db,
            self.learner_id,
            3,
            2026,
            period,
            file_path=f'timesheets/2026-03-p{period}.pdf',
            absent_days=absent_days,
            time_provider=time_provider,
        )

    def test_month_schedule_is_created_once(self):
        db = self._session_factory()
        try:
            first = ensure_month_schedule(db, self.learner_id, 3, 2026)
            second = ensure_month_schedule(db, self.learner_id, 3, 2026)
            self.assertEqual([row.period for row in first], [1, 2])
            self.assertEqual([row.id for row in first], [row.id for row in second])
            self.assertEqual(db.query(TimesheetSchedule).count(), 2)
            with self.assertRaises(LookupError):
                ensure_month_schedule(db, 99999, 3, 2026)
        finally:
            db.close()

    def test_first_upload_awards_points_and_perfect_attendance(self):
        db = self._session_factory()
        try:
            submission = self._upload(db, 1, time_provider=_at(2026, 3, 14, 9, 0), absent_days=0)
            self.assertEqual(submission.file_name, '2026-03-p1.pdf')
            self.assertEqual(submission.expiration_date, datetime(2026, 6, 12, 9, 0))
            badge_types = sorted(row.badge_type for row in db.query(Achievement).all())
            self.assertEqual(badge_types, ['perfect_attendance', 'timesheet_upload'])
            self.assertEqual(db.get(LearnerProfile, self.learner_id).points, 25)

            self._upload(db, 1, time_provider=_at(2026, 3, 15, 9, 0), absent_days=0)
            self.assertEqual(db.query(Achievement).count(), 2)
            self.assertEqual(db.query(TimesheetSubmission).count(), 1)
        finally:
            db.close()

    def test_failed_award_leaves_no_submission_behind(self):
        db = self._session_factory()
        event.listen(self._engine, 'before_cursor_execute', _fail_achievement_inserts)
        try:
            with self.assertRaises(StoreAccessError):
                self._upload(db, 1, time_provider=_at(2026, 3, 10, 9, 0), absent_days=0)
        finally:
            event.remove(self._engine, 'before_cursor_execute', _fail_achievement_inserts)
            db.close()

        check = self._session_factory()
        try:
            self.assertEqual(check.query(TimesheetSubmission).count(), 0)
            self.assertEqual(check.query(Achievement).count(), 0)
            self.assertEqual(check.get(LearnerProfile, self.learner_id).points, 0)

            self._upload(check, 1, time_provider=_at(2026, 3, 10, 9, 5), absent_days=0)
            self.assertEqual(check.query(Achievement).count(), 2)
            self.assertEqual(check.get(LearnerProfile, self.learner_id).points, 25)
        finally:
            check.close()

    def test_replacement_after_edit_window_is_refused(self):
        db = self._session_factory()
        try:
            self._upload(db, 2, time_provider=_at(2026, 3, 30, 9, 0))
            with self.assertRaises(SafeConflictError):
                self._upload(db, 2, time_provider=_at(2026, 4, 3, 9, 1))
        finally:
            db.close()

    def test_period_listing_reports_status_and_completion(self):
        db = self._session_factory()
        try:
            self._upload(db, 1, time_provider=_at(2026, 3, 14, 9, 0))
            overview = list_month_periods(db, self.learner_id, 3, 2026, time_provider=_at(2026, 4, 2, 9, 0))
            self.assertFalse(overview['complete'])
            self.assertEqual([item['status'] for item in overview['periods']], ['submitted', 'overdue'])
            self.assertEqual([item['can_download'] for item in overview['periods']], [True, False])

            self._upload(db, 2, time_provider=_at(2026, 3, 31, 9, 0))
            overview = list_month_periods(db, self.learner_id, 3, 2026, time_provider=_at(2026, 4, 2, 9, 0))
            self.assertTrue(overview['complete'])
        finally:
            db.close()

    def test_download_outcomes(self):
        db = self._session_factory()
        try:
            rows = ensure_month_schedule(db, self.learner_id, 3, 2026)
            schedule_id = rows[0].id
            now = _at(2026, 3, 20, 9, 0)
            self.assertEqual(record_download(db, 99999, time_provider=now), DownloadOutcome.NOT_FOUND)
            self.assertEqual(record_download(db, schedule_id, time_provider=now), DownloadOutcome.FORBIDDEN)

            self._upload(db, 1, time_provider=_at(2026, 3, 14, 9, 0))
            self.assertEqual(record_download(db, schedule_id, time_provider=now), DownloadOutcome.RECORDED)
            self.assertEqual(record_download(db, schedule_id, time_provider=now), DownloadOutcome.RECORDED)

            later = _at(2026, 7, 1, 9, 0)
            self.assertEqual(record_download(db, schedule_id, time_provider=later), DownloadOutcome.FORBIDDEN)
            db.expire_all()
            submission = db.query(TimesheetSubmission).filter(TimesheetSubmission.schedule_id == schedule_id).one()
            self.assertEqual(submission.download_count, 2)
        finally:
            db.close()

    def test_concurrent_downloads_never_lose_counts(self):
        db = self._session_factory()
        try:
            self._upload(db, 1, time_provider=_at(2026, 3, 14, 9, 0))
            schedule_id = db.query(TimesheetSchedule.id).filter(TimesheetSchedule.period == 1).scalar()
        finally:
            db.close()

        outcomes = []
        outcome_lock = threading.Lock()

        def worker():
            session = self._session_factory()
            try:
                outcome = record_download(session, schedule_id, time_provider=_at(2026, 3, 20, 9, 0))
                with outcome_lock:
                    outcomes.append(outcome)
            finally:
                session.close()

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        db = self._session_factory()
        try:
            count = db.query(TimesheetSubmission.download_count).filter(TimesheetSubmission.schedule_id == schedule_id).scalar()
        finally:
            db.close()
        self.assertEqual(outcomes.count(DownloadOutcome.RECORDED), 8)
        self.assertEqual(count, 8)

    def test_mark_expired_flags_each_submission_once(self):
        db = self._session_factory()
        try:
            self._upload(db, 1, time_provider=_at(2026, 3, 14, 9, 0))
            self._upload(db, 2, time_provider=_at(2026, 3, 31, 9, 0))
            self.assertEqual(mark_expired_timesheets(db, time_provider=_at(2026, 6, 20, 9, 0)), 1)
            self.assertEqual(mark_expired_timesheets(db, time_provider=_at(2026, 6, 20, 9, 0)), 0)
            self.assertEqual(mark_expired_timesheets(db, time_provider=_at(2026, 7, 1, 9, 0)), 1)

            with self.assertRaises(SafeConflictError):
                self._upload(db, 1, time_provider=_at(2026, 6, 20, 9, 0))
        finally:
            db.close()


if __name__ == '__main__':
    unittest.main()
