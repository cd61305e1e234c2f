from compliance_portal.routers import compliance, documents, feedback, timesheets

__all__ = [
    'compliance',
    'documents',
    'feedback',
    'timesheets',
]
