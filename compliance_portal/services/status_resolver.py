from __future__ import annotations

from datetime import date, datetime, time

from compliance_portal.models import FeedbackSubmission, SubmissionStatus, TimesheetSchedule, TimesheetSubmission


def _as_naive_datetime(value: date | datetime | None, *, end_of_day: bool = False) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    if isinstance(value, date):
        return datetime.combine(value, time.max if end_of_day else time.min)
    return None


def resolve_status(
    due_date: date | datetime | None,
    submitted_at: date | datetime | None = None,
    expiration_date: date | datetime | None = None,
    is_expired: bool | None = None,
    *,
    now: date | datetime,
) -> SubmissionStatus:
    """Derive the lifecycle state of a submission.

    Precedence is expired > submitted > overdue > pending. Expiry wins even
    over an accepted submission. A bare date deadline lasts until the end of
    that day.
    """
    current = _as_naive_datetime(now)
    expires_at = _as_naive_datetime(expiration_date, end_of_day=True)
    if bool(is_expired) or (expires_at is not None and current is not None and current > expires_at):
        return SubmissionStatus.EXPIRED
    if submitted_at is not None:
        return SubmissionStatus.SUBMITTED
    deadline = _as_naive_datetime(due_date, end_of_day=True)
    if deadline is not None and current is not None and current > deadline:
        return SubmissionStatus.OVERDUE
    return SubmissionStatus.PENDING


def feedback_status(row: FeedbackSubmission, *, now: date | datetime) -> SubmissionStatus:
    return resolve_status(row.due_date, row.submitted_at, now=now)


def timesheet_status(
    schedule: TimesheetSchedule,
    submission: TimesheetSubmission | None = None,
    *,
    now: date | datetime,
) -> SubmissionStatus:
    if submission is None:
        return resolve_status(schedule.due_date, now=now)
    return resolve_status(
        schedule.due_date,
        submission.uploaded_at,
        submission.expiration_date,
        submission.is_expired,
        now=now,
    )


def count_by_status(statuses: list[SubmissionStatus]) -> dict[str, int]:
    counts = {status.value: 0 for status in SubmissionStatus}
    for status in statuses:
        counts[status.value] += 1
    return counts
