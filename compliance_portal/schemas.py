from typing import Literal

from pydantic import BaseModel, Field


FEEDBACK_SCHEMA_VERSION = 1


class FeedbackPayload(BaseModel):
    attendance_rating: int = Field(default=5, ge=1, le=5)
    self_evaluation: str = ''
    mentorship_received: str = ''
    challenges_faced: str = ''
    supervisor_name: str = ''
    additional_comments: str = ''


class FeedbackSubmitRequest(BaseModel):
    learner_id: int
    month: int = Field(ge=1, le=12)
    year: int = Field(ge=2000, le=2100)
    payload: FeedbackPayload


class FeedbackUpdateRequest(BaseModel):
    learner_id: int
    payload: FeedbackPayload


class FeedbackRatingRequest(BaseModel):
    rating: int = Field(ge=1, le=3)


class FeedbackAcknowledgeRequest(BaseModel):
    expected_acknowledged: bool
    acknowledged: bool


class TimesheetUploadRequest(BaseModel):
    learner_id: int
    month: int = Field(ge=1, le=12)
    year: int = Field(ge=2000, le=2100)
    period: Literal[1, 2]
    file_path: str = Field(min_length=1)
    file_name: str = ''
    absent_days: int | None = Field(default=None, ge=0)


class DocumentUploadRequest(BaseModel):
    learner_id: int
    document_type: str
    file_path: str = Field(min_length=1)
    file_name: str = ''
    file_size: int = Field(default=0, ge=0)
