from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from compliance_portal.core.store_guard import SafeConflictError
from compliance_portal.db import get_db
from compliance_portal.schemas import (
    FeedbackAcknowledgeRequest,
    FeedbackRatingRequest,
    FeedbackSubmitRequest,
    FeedbackUpdateRequest,
)
from compliance_portal.services.feedback_service import (
    acknowledge_feedback,
    month_label,
    rate_feedback,
    submit_feedback,
    submitted_count,
    update_feedback,
    yearly_feedback_overview,
)


router = APIRouter(prefix='/api/feedback', tags=['Feedback'])


def _serialize(row) -> dict:
    return {
        'feedback_id': row.id,
        'learner_id': row.learner_id,
        'month': row.month,
        'year': row.year,
        'label': month_label(row.month, row.year),
        'due_date': row.due_date.isoformat() if row.due_date else None,
        'submitted_at': row.submitted_at.isoformat() if row.submitted_at else None,
        'edited_at': row.edited_at.isoformat() if row.edited_at else None,
        'mentor_rating': row.mentor_rating,
        'acknowledged': row.mentor_approved_at is not None,
    }


@router.post('')
def submit(payload: FeedbackSubmitRequest, db: Session = Depends(get_db)):
    try:
        row = submit_feedback(db, payload.learner_id, payload.month, payload.year, payload.payload)
    except SafeConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _serialize(row)


@router.put('/{feedback_id}')
def update(feedback_id: int, payload: FeedbackUpdateRequest, db: Session = Depends(get_db)):
    try:
        row = update_feedback(db, feedback_id, payload.learner_id, payload.payload)
    except SafeConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _serialize(row)


@router.post('/{feedback_id}/rating')
def rate(feedback_id: int, payload: FeedbackRatingRequest, db: Session = Depends(get_db)):
    try:
        return rate_feedback(db, feedback_id, payload.rating)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except SafeConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


@router.post('/{feedback_id}/acknowledgement')
def acknowledge(feedback_id: int, payload: FeedbackAcknowledgeRequest, db: Session = Depends(get_db)):
    try:
        row = acknowledge_feedback(
            db,
            feedback_id,
            expected_acknowledged=payload.expected_acknowledged,
            acknowledged=payload.acknowledged,
        )
    except SafeConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _serialize(row)


@router.get('/learners/{learner_id}/years/{year}')
def yearly_overview(learner_id: int, year: int, db: Session = Depends(get_db)):
    cells = yearly_feedback_overview(db, learner_id, year)
    return {
        'learner_id': learner_id,
        'year': year,
        'submitted': submitted_count(cells),
        'months': cells,
    }
