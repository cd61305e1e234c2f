from fastapi import APIRouter, Depends, HTTPException, Path
from sqlalchemy.orm import Session

from compliance_portal.core.store_guard import SafeConflictError
from compliance_portal.db import get_db
from compliance_portal.schemas import TimesheetUploadRequest
from compliance_portal.services.timesheet_service import (
    DownloadOutcome,
    list_month_periods,
    record_download,
    record_timesheet_upload,
)


router = APIRouter(prefix='/api/timesheets', tags=['Timesheets'])


@router.get('/learners/{learner_id}/{year}/{month}')
def month_periods(
    learner_id: int,
    year: int = Path(ge=2000, le=2100),
    month: int = Path(ge=1, le=12),
    db: Session = Depends(get_db),
):
    try:
        return list_month_periods(db, learner_id, month, year)
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.post('/uploads')
def upload_timesheet(payload: TimesheetUploadRequest, db: Session = Depends(get_db)):
    try:
        submission = record_timesheet_upload(
            db,
            payload.learner_id,
            payload.month,
            payload.year,
            payload.period,
            file_path=payload.file_path,
            file_name=payload.file_name,
            absent_days=payload.absent_days,
        )
    except SafeConflictError as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return {
        'submission_id': submission.id,
        'schedule_id': submission.schedule_id,
        'uploaded_at': submission.uploaded_at.isoformat() if submission.uploaded_at else None,
        'expiration_date': submission.expiration_date.isoformat() if submission.expiration_date else None,
        'month_complete': list_month_periods(db, payload.learner_id, payload.month, payload.year)['complete'],
    }


@router.post('/{schedule_id}/downloads')
def download_timesheet(schedule_id: int, db: Session = Depends(get_db)):
    outcome = record_download(db, schedule_id)
    if outcome == DownloadOutcome.NOT_FOUND:
        raise HTTPException(status_code=404, detail='Timesheet period not found')
    if outcome == DownloadOutcome.FORBIDDEN:
        raise HTTPException(status_code=403, detail='This timesheet has expired or has no file to download.')
    return {'schedule_id': schedule_id, 'outcome': outcome.value}
