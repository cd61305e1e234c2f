from datetime import date, datetime
from enum import Enum

from sqlalchemy import Boolean, CheckConstraint, Date, DateTime, Float, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from compliance_portal.core.time_provider import default_time_provider
from compliance_portal.db import Base


def _naive_now() -> datetime:
    return default_time_provider.naive_now()


class Role(str, Enum):
    LEARNER = 'learner'
    MENTOR = 'mentor'
    ADMIN = 'admin'


class SubmissionStatus(str, Enum):
    PENDING = 'pending'
    SUBMITTED = 'submitted'
    OVERDUE = 'overdue'
    EXPIRED = 'expired'


class DocumentType(str, Enum):
    ATTENDANCE_PROOF = 'attendance_proof'
    LOGBOOK_PAGE = 'logbook_page'
    ASSESSMENT = 'assessment'
    OTHER = 'other'
    QUALIFICATIONS = 'qualifications'
    CERTIFIED_ID = 'certified_id'
    CERTIFIED_PROOF_RESIDENCE = 'certified_proof_residence'
    PROOF_BANK_ACCOUNT = 'proof_bank_account'
    DRIVERS_LICENSE = 'drivers_license'
    CV_UPLOAD = 'cv_upload'
    WORK_ATTENDANCE_LOG = 'work_attendance_log'
    CLASS_ATTENDANCE_PROOF = 'class_attendance_proof'
    INDUCTION_FORM = 'induction_form'
    POPIA_FORM = 'popia_form'
    LEARNER_CONSENT_POLICY = 'learner_consent_policy'
    EMPLOYMENT_CONTRACT = 'employment_contract'
    LEARNERSHIP_CONTRACT = 'learnership_contract'


class LearnerProfile(Base):
    __tablename__ = 'learner_profiles'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    full_name: Mapped[str] = mapped_column(String(180), default='')
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    role: Mapped[str] = mapped_column(String(20), default=Role.LEARNER.value, index=True)
    compliance_score: Mapped[float] = mapped_column(Float, default=0.0)
    points: Mapped[int] = mapped_column(Integer, default=0)
    learnership_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_naive_now)

    feedback_submissions: Mapped[list['FeedbackSubmission']] = relationship('FeedbackSubmission', back_populates='learner')
    achievements: Mapped[list['Achievement']] = relationship('Achievement', back_populates='learner')
    document_requirements: Mapped[list['LearnerDocumentRequirement']] = relationship(
        'LearnerDocumentRequirement',
        back_populates='learner',
        cascade='all, delete-orphan',
    )


class LearnerDocumentRequirement(Base):
    __tablename__ = 'learner_document_requirements'
    __table_args__ = (
        UniqueConstraint('learner_id', 'document_type', name='uq_learner_document_requirements_learner_type'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    learner_id: Mapped[int] = mapped_column(ForeignKey('learner_profiles.id'), index=True)
    document_type: Mapped[str] = mapped_column(String(40))

    learner: Mapped['LearnerProfile'] = relationship('LearnerProfile', back_populates='document_requirements')


class FeedbackSubmission(Base):
    __tablename__ = 'feedback_submissions'
    __table_args__ = (
        UniqueConstraint('learner_id', 'month', 'year', name='uq_feedback_submissions_learner_month_year'),
        CheckConstraint('mentor_rating IS NULL OR (mentor_rating BETWEEN 1 AND 3)', name='ck_feedback_submissions_rating'),
        Index('ix_feedback_submissions_learner_year_month', 'learner_id', 'year', 'month'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    learner_id: Mapped[int] = mapped_column(ForeignKey('learner_profiles.id'), index=True)
    month: Mapped[int] = mapped_column(Integer)
    year: Mapped[int] = mapped_column(Integer)
    due_date: Mapped[date] = mapped_column(Date)
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    status: Mapped[str] = mapped_column(String(20), default=SubmissionStatus.PENDING.value, index=True)
    mentor_rating: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    mentor_approved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    edited_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    is_editable_by_learner: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_naive_now)

    learner: Mapped['LearnerProfile'] = relationship('LearnerProfile', back_populates='feedback_submissions')
    response: Mapped['FeedbackResponse | None'] = relationship(
        'FeedbackResponse',
        back_populates='submission',
        uselist=False,
        cascade='all, delete-orphan',
    )


class FeedbackResponse(Base):
    __tablename__ = 'feedback_responses'
    __table_args__ = (
        UniqueConstraint('feedback_id', name='uq_feedback_responses_feedback_id'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    feedback_id: Mapped[int] = mapped_column(ForeignKey('feedback_submissions.id'), index=True)
    schema_version: Mapped[int] = mapped_column(Integer, default=1)
    payload_json: Mapped[str] = mapped_column(Text, default='{}')
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=_naive_now)

    submission: Mapped['FeedbackSubmission'] = relationship('FeedbackSubmission', back_populates='response')


class TimesheetSchedule(Base):
    __tablename__ = 'timesheet_schedules'
    __table_args__ = (
        UniqueConstraint('learner_id', 'month', 'year', 'period', name='uq_timesheet_schedules_learner_month_year_period'),
        CheckConstraint('period IN (1, 2)', name='ck_timesheet_schedules_period'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    learner_id: Mapped[int] = mapped_column(ForeignKey('learner_profiles.id'), index=True)
    month: Mapped[int] = mapped_column(Integer)
    year: Mapped[int] = mapped_column(Integer)
    period: Mapped[int] = mapped_column(Integer)
    due_date: Mapped[date] = mapped_column(Date)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_naive_now)

    submission: Mapped['TimesheetSubmission | None'] = relationship(
        'TimesheetSubmission',
        back_populates='schedule',
        uselist=False,
    )


class TimesheetSubmission(Base):
    __tablename__ = 'timesheet_submissions'
    __table_args__ = (
        UniqueConstraint('schedule_id', name='uq_timesheet_submissions_schedule_id'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    schedule_id: Mapped[int] = mapped_column(ForeignKey('timesheet_schedules.id'), index=True)
    learner_id: Mapped[int] = mapped_column(ForeignKey('learner_profiles.id'), index=True)
    file_path: Mapped[str | None] = mapped_column(String(500), nullable=True)
    file_name: Mapped[str] = mapped_column(String(255), default='')
    uploaded_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    absent_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    expiration_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    is_expired: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    download_count: Mapped[int] = mapped_column(Integer, default=0)

    schedule: Mapped['TimesheetSchedule'] = relationship('TimesheetSchedule', back_populates='submission')


class Document(Base):
    __tablename__ = 'documents'

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    learner_id: Mapped[int] = mapped_column(ForeignKey('learner_profiles.id'), index=True)
    document_type: Mapped[str] = mapped_column(String(40), index=True)
    file_name: Mapped[str] = mapped_column(String(255), default='')
    file_path: Mapped[str] = mapped_column(String(500), default='')
    file_size: Mapped[int] = mapped_column(Integer, default=0)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime, default=_naive_now, index=True)


class Achievement(Base):
    __tablename__ = 'achievements'
    __table_args__ = (
        # dedup_key is NULL for repeatable badges, so only milestones collide.
        UniqueConstraint('learner_id', 'dedup_key', name='uq_achievements_learner_dedup_key'),
        CheckConstraint('points_awarded >= 0', name='ck_achievements_points_non_negative'),
        Index('ix_achievements_learner_earned_at', 'learner_id', 'earned_at'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    learner_id: Mapped[int] = mapped_column(ForeignKey('learner_profiles.id'), index=True)
    badge_type: Mapped[str] = mapped_column(String(40), index=True)
    badge_name: Mapped[str] = mapped_column(String(180))
    description: Mapped[str] = mapped_column(Text, default='')
    points_awarded: Mapped[int] = mapped_column(Integer, default=0)
    badge_color: Mapped[str] = mapped_column(String(16), default='#6B7280')
    badge_icon: Mapped[str] = mapped_column(String(40), default='award')
    dedup_key: Mapped[str | None] = mapped_column(String(240), nullable=True)
    earned_at: Mapped[datetime] = mapped_column(DateTime, default=_naive_now)

    learner: Mapped['LearnerProfile'] = relationship('LearnerProfile', back_populates='achievements')


class Notification(Base):
    __tablename__ = 'notifications'
    __table_args__ = (
        Index('ix_notifications_user_created_at', 'user_id', 'created_at'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey('learner_profiles.id'), index=True)
    title: Mapped[str] = mapped_column(String(180))
    message: Mapped[str] = mapped_column(Text, default='')
    type: Mapped[str] = mapped_column(String(20), default='info')
    read_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_naive_now)


class MonthlyComplianceSnapshot(Base):
    __tablename__ = 'monthly_compliance_snapshots'
    __table_args__ = (
        UniqueConstraint('learner_id', 'month', 'year', name='uq_monthly_compliance_snapshots_learner_month_year'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    learner_id: Mapped[int] = mapped_column(ForeignKey('learner_profiles.id'), index=True)
    month: Mapped[int] = mapped_column(Integer)
    year: Mapped[int] = mapped_column(Integer)
    feedback_score: Mapped[float] = mapped_column(Float, default=0.0)
    timesheet_score: Mapped[float] = mapped_column(Float, default=0.0)
    document_score: Mapped[float] = mapped_column(Float, default=0.0)
    engagement_score: Mapped[float] = mapped_column(Float, default=0.0)
    overall_compliance_percent: Mapped[float] = mapped_column(Float, default=0.0)
    feedback_points: Mapped[int] = mapped_column(Integer, default=0)
    timesheet_points: Mapped[int] = mapped_column(Integer, default=0)
    document_points: Mapped[int] = mapped_column(Integer, default=0)
    engagement_points: Mapped[int] = mapped_column(Integer, default=0)
    total_monthly_points: Mapped[int] = mapped_column(Integer, default=0)
    on_time_items: Mapped[int] = mapped_column(Integer, default=0)
    required_items: Mapped[int] = mapped_column(Integer, default=0)
    computed_at: Mapped[datetime] = mapped_column(DateTime, default=_naive_now)
