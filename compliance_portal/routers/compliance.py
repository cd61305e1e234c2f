from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from compliance_portal.db import get_db, get_session_factory
from compliance_portal.services.achievement_service import list_achievements
from compliance_portal.services.compliance_score_service import compute_learner_score, compute_roster_scores
from compliance_portal.services.notification_service import mark_read, unread_count
from compliance_portal.services.snapshot_service import compliance_report, lifetime_points


router = APIRouter(prefix='/api/compliance', tags=['Compliance'])


class RosterScoreRequest(BaseModel):
    learner_ids: list[int] = Field(default_factory=list, max_length=500)
    batch_size: int | None = Field(default=None, ge=1, le=32)


@router.get('/learners/{learner_id}')
def learner_score(learner_id: int, db: Session = Depends(get_db)):
    try:
        return compute_learner_score(db, learner_id)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.get('/learners/{learner_id}/report')
def learner_report(
    learner_id: int,
    months_back: int = Query(default=6, ge=1, le=24),
    db: Session = Depends(get_db),
):
    try:
        return compliance_report(db, learner_id, months_back=months_back)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.get('/learners/{learner_id}/points')
def learner_points(learner_id: int, db: Session = Depends(get_db)):
    return {'learner_id': learner_id, 'lifetime_points': lifetime_points(db, learner_id)}


@router.get('/learners/{learner_id}/achievements')
def learner_achievements(learner_id: int, db: Session = Depends(get_db)):
    return list_achievements(db, learner_id)


@router.post('/roster')
def roster_scores(payload: RosterScoreRequest, session_factory=Depends(get_session_factory)):
    return compute_roster_scores(session_factory, payload.learner_ids, batch_size=payload.batch_size)


@router.get('/learners/{learner_id}/notifications/unread')
def learner_unread_notifications(learner_id: int, db: Session = Depends(get_db)):
    return {'learner_id': learner_id, 'unread': unread_count(db, learner_id)}


@router.post('/notifications/{notification_id}/read')
def read_notification(notification_id: int, user_id: int = Query(...), db: Session = Depends(get_db)):
    if not mark_read(db, notification_id, user_id=user_id):
        raise HTTPException(status_code=404, detail='Unread notification not found')
    return {'notification_id': notification_id, 'read': True}
