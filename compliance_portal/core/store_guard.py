from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session


logger = logging.getLogger(__name__)


class StoreAccessError(RuntimeError):
    """A backing-store call failed; the unit of work was rolled back."""

    def __init__(self, operation: str, cause: Exception):
        super().__init__(f'{operation} failed: {cause}')
        self.operation = operation
        self.cause = cause


class SafeConflictError(ValueError):
    pass


@contextmanager
def store_access(db: Session, operation: str, **context: object) -> Iterator[Session]:
    try:
        yield db
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('store_access_failed operation=%s', operation, extra=dict(context))
        raise StoreAccessError(operation, exc) from exc
