from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from compliance_portal.db import get_db
from compliance_portal.schemas import DocumentUploadRequest
from compliance_portal.services.document_service import (
    applicable_document_types,
    checklist_for,
    document_label,
    flag_document_requirement,
    record_document_upload,
)


router = APIRouter(prefix='/api/documents', tags=['Documents'])


class DocumentRequirementRequest(BaseModel):
    document_type: str


@router.post('')
def upload_document(payload: DocumentUploadRequest, db: Session = Depends(get_db)):
    try:
        row = record_document_upload(
            db,
            payload.learner_id,
            payload.document_type,
            file_path=payload.file_path,
            file_name=payload.file_name,
            file_size=payload.file_size,
        )
    except LookupError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return {
        'document_id': row.id,
        'learner_id': row.learner_id,
        'document_type': row.document_type,
        'label': document_label(row.document_type),
        'file_name': row.file_name,
        'uploaded_at': row.uploaded_at.isoformat() if row.uploaded_at else None,
    }


@router.get('/learners/{learner_id}/checklist')
def learner_checklist(learner_id: int, db: Session = Depends(get_db)):
    required = checklist_for(applicable_document_types(db, learner_id))
    return {
        'learner_id': learner_id,
        'required': [{'document_type': item, 'label': document_label(item)} for item in required],
    }


@router.post('/learners/{learner_id}/requirements')
def flag_requirement(learner_id: int, payload: DocumentRequirementRequest, db: Session = Depends(get_db)):
    try:
        created = flag_document_requirement(db, learner_id, payload.document_type)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return {'learner_id': learner_id, 'document_type': payload.document_type, 'created': created}
