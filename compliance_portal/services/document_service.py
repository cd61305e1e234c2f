from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from compliance_portal.core.store_guard import store_access
from compliance_portal.core.time_provider import TimeProvider, default_time_provider
from compliance_portal.models import Document, DocumentType, LearnerDocumentRequirement, LearnerProfile
from compliance_portal.services.achievement_service import BadgeType, announce_award, stage_award
from compliance_portal.services.notification_service import NotificationDispatcher, default_dispatcher


logger = logging.getLogger(__name__)

DOCUMENT_UPLOAD_POINTS = 10

REQUIRED_DOCUMENT_TYPES: tuple[str, ...] = (
    DocumentType.CERTIFIED_ID.value,
    DocumentType.CERTIFIED_PROOF_RESIDENCE.value,
    DocumentType.PROOF_BANK_ACCOUNT.value,
    DocumentType.QUALIFICATIONS.value,
    DocumentType.CV_UPLOAD.value,
    DocumentType.INDUCTION_FORM.value,
    DocumentType.POPIA_FORM.value,
    DocumentType.LEARNER_CONSENT_POLICY.value,
    DocumentType.LEARNERSHIP_CONTRACT.value,
)

# Counted only for learners flagged as needing them.
WHEN_REQUIRED_DOCUMENT_TYPES: tuple[str, ...] = (
    DocumentType.DRIVERS_LICENSE.value,
    DocumentType.EMPLOYMENT_CONTRACT.value,
)

DOCUMENT_LABELS: dict[str, str] = {
    DocumentType.ATTENDANCE_PROOF.value: 'Attendance Proof',
    DocumentType.LOGBOOK_PAGE.value: 'Logbook Page',
    DocumentType.ASSESSMENT.value: 'Assessment',
    DocumentType.OTHER.value: 'Other',
    DocumentType.QUALIFICATIONS.value: 'Qualifications',
    DocumentType.CERTIFIED_ID.value: 'Certified ID',
    DocumentType.CERTIFIED_PROOF_RESIDENCE.value: 'Certified Proof of Residence',
    DocumentType.PROOF_BANK_ACCOUNT.value: 'Proof of Bank Account',
    DocumentType.DRIVERS_LICENSE.value: "Driver's Licence",
    DocumentType.CV_UPLOAD.value: 'CV',
    DocumentType.WORK_ATTENDANCE_LOG.value: 'Work Attendance Log',
    DocumentType.CLASS_ATTENDANCE_PROOF.value: 'Class Attendance Proof',
    DocumentType.INDUCTION_FORM.value: 'Induction Form',
    DocumentType.POPIA_FORM.value: 'POPIA Form',
    DocumentType.LEARNER_CONSENT_POLICY.value: 'Learner Consent Policy',
    DocumentType.EMPLOYMENT_CONTRACT.value: 'Employment Contract',
    DocumentType.LEARNERSHIP_CONTRACT.value: 'Learnership Contract',
}


def checklist_for(applicable_documents: list[str] | tuple[str, ...] | set[str] = ()) -> list[str]:
    applicable = set(applicable_documents or ())
    return list(REQUIRED_DOCUMENT_TYPES) + [doc for doc in WHEN_REQUIRED_DOCUMENT_TYPES if doc in applicable]


def document_label(document_type: str) -> str:
    return DOCUMENT_LABELS.get(str(document_type), str(document_type))


def applicable_document_types(db: Session, learner_id: int) -> list[str]:
    return [
        document_type
        for (document_type,) in db.query(LearnerDocumentRequirement.document_type)
        .filter(LearnerDocumentRequirement.learner_id == learner_id)
        .order_by(LearnerDocumentRequirement.document_type.asc())
        .all()
    ]


def flag_document_requirement(db: Session, learner_id: int, document_type: str) -> bool:
    if document_type not in WHEN_REQUIRED_DOCUMENT_TYPES:
        raise ValueError(f'{document_type} is not a when-required document')
    with store_access(db, 'flag_document_requirement', learner_id=learner_id):
        try:
            db.add(LearnerDocumentRequirement(learner_id=learner_id, document_type=document_type))
            db.commit()
        except IntegrityError:
            db.rollback()
            return False
    return True


def record_document_upload(
    db: Session,
    learner_id: int,
    document_type: str,
    *,
    file_path: str,
    file_name: str = '',
    file_size: int = 0,
    dispatcher: NotificationDispatcher = default_dispatcher,
    time_provider: TimeProvider = default_time_provider,
) -> Document:
    try:
        DocumentType(document_type)
    except ValueError as exc:
        raise ValueError(f'Unknown document type: {document_type}') from exc
    with store_access(db, 'record_document_upload', learner_id=learner_id, document_type=document_type):
        if db.get(LearnerProfile, learner_id) is None:
            raise LookupError('Learner not found')
        row = Document(
            learner_id=learner_id,
            document_type=document_type,
            file_path=file_path,
            file_name=file_name or file_path.rsplit('/', 1)[-1],
            file_size=max(0, int(file_size or 0)),
            uploaded_at=time_provider.naive_now(),
        )
        db.add(row)
        badge = stage_award(
            db,
            learner_id,
            BadgeType.DOCUMENT_UPLOAD.value,
            'Document Uploaded',
            f'Uploaded {document_label(document_type)}',
            DOCUMENT_UPLOAD_POINTS,
            time_provider=time_provider,
        )
        db.commit()
        db.refresh(row)
    logger.info('document_uploaded', extra={'learner_id': learner_id, 'document_type': document_type, 'document_id': row.id})
    if badge is not None:
        announce_award(db, dispatcher, badge)
    return row
