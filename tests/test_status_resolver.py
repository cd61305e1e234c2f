import unittest
from datetime import date, datetime, timezone

from compliance_portal.models import SubmissionStatus, TimesheetSchedule, TimesheetSubmission
from compliance_portal.services.status_resolver import count_by_status, resolve_status, timesheet_status


class ResolveStatusTests(unittest.TestCase):
    def test_expired_flag_wins_over_submission(self):
        status = resolve_status(
            date(2026, 3, 15),
            submitted_at=datetime(2026, 3, 10, 9, 0),
            is_expired=True,
            now=datetime(2026, 3, 11, 9, 0),
        )
        self.assertEqual(status, SubmissionStatus.EXPIRED)

    def test_passed_expiration_date_wins_over_submission(self):
        status = resolve_status(
            date(2026, 3, 15),
            submitted_at=datetime(2026, 3, 10, 9, 0),
            expiration_date=datetime(2026, 6, 8, 9, 0),
            now=datetime(2026, 6, 8, 9, 1),
        )
        self.assertEqual(status, SubmissionStatus.EXPIRED)

    def test_bare_expiration_date_lasts_until_end_of_day(self):
        status = resolve_status(
            date(2026, 3, 15),
            submitted_at=datetime(2026, 3, 10, 9, 0),
            expiration_date=date(2026, 6, 8),
            now=datetime(2026, 6, 8, 23, 59),
        )
        self.assertEqual(status, SubmissionStatus.SUBMITTED)

    def test_late_submission_is_still_submitted(self):
        status = resolve_status(
            date(2026, 3, 15),
            submitted_at=datetime(2026, 3, 20, 9, 0),
            now=datetime(2026, 3, 21, 9, 0),
        )
        self.assertEqual(status, SubmissionStatus.SUBMITTED)

    def test_missing_submission_after_due_day_is_overdue(self):
        self.assertEqual(
            resolve_status(date(2026, 3, 15), now=datetime(2026, 3, 16, 0, 0)),
            SubmissionStatus.OVERDUE,
        )

    def test_missing_submission_on_due_day_is_pending(self):
        self.assertEqual(
            resolve_status(date(2026, 3, 15), now=datetime(2026, 3, 15, 23, 0)),
            SubmissionStatus.PENDING,
        )

    def test_aware_now_compares_against_naive_rows(self):
        status = resolve_status(
            date(2026, 3, 15),
            expiration_date=datetime(2026, 3, 20, 12, 0),
            submitted_at=datetime(2026, 3, 1, 8, 0),
            now=datetime(2026, 3, 20, 12, 30, tzinfo=timezone.utc),
        )
        self.assertEqual(status, SubmissionStatus.EXPIRED)

    def test_precedence_holds_for_every_combination(self):
        due = date(2026, 3, 15)
        submitted_values = (None, datetime(2026, 3, 10, 9, 0))
        expiration_values = (None, datetime(2026, 3, 12, 0, 0), datetime(2026, 12, 31, 0, 0))
        flag_values = (None, False, True)
        now_values = (datetime(2026, 3, 1, 0, 0), datetime(2026, 3, 18, 0, 0))
        for submitted_at in submitted_values:
            for expiration_date in expiration_values:
                for is_expired in flag_values:
                    for now in now_values:
                        status = resolve_status(due, submitted_at, expiration_date, is_expired, now=now)
                        if is_expired or (expiration_date is not None and now > expiration_date):
                            expected = SubmissionStatus.EXPIRED
                        elif submitted_at is not None:
                            expected = SubmissionStatus.SUBMITTED
                        elif now.date() > due:
                            expected = SubmissionStatus.OVERDUE
                        else:
                            expected = SubmissionStatus.PENDING
                        self.assertEqual(status, expected, (submitted_at, expiration_date, is_expired, now))


class TimesheetStatusTests(unittest.TestCase):
    def test_schedule_without_submission_uses_due_date_only(self):
        schedule = TimesheetSchedule(learner_id=1, month=3, year=2026, period=1, due_date=date(2026, 3, 15))
        self.assertEqual(timesheet_status(schedule, None, now=datetime(2026, 3, 16, 8, 0)), SubmissionStatus.OVERDUE)

    def test_uploaded_submission_reads_expiry_fields(self):
        schedule = TimesheetSchedule(learner_id=1, month=3, year=2026, period=2, due_date=date(2026, 3, 31))
        submission = TimesheetSubmission(
            schedule_id=1,
            learner_id=1,
            file_path='timesheets/march-p2.pdf',
            uploaded_at=datetime(2026, 3, 30, 10, 0),
            expiration_date=datetime(2026, 6, 28, 10, 0),
            is_expired=False,
        )
        self.assertEqual(timesheet_status(schedule, submission, now=datetime(2026, 4, 2, 8, 0)), SubmissionStatus.SUBMITTED)
        self.assertEqual(timesheet_status(schedule, submission, now=datetime(2026, 7, 1, 8, 0)), SubmissionStatus.EXPIRED)

    def test_count_by_status_lists_every_state(self):
        counts = count_by_status([SubmissionStatus.SUBMITTED, SubmissionStatus.SUBMITTED, SubmissionStatus.OVERDUE])
        self.assertEqual(counts, {'pending': 0, 'submitted': 2, 'overdue': 1, 'expired': 0})


if __name__ == '__main__':
    unittest.main()
