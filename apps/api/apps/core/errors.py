"""
Domain error taxonomy.

Every failure surfaced by the procedure, imaging and archival services is a
DomainError with a stable ``code`` and a human readable message. Callers
(HTTP layer, Celery tasks, management commands) map them with ``to_dict()``;
no internal stack detail crosses the boundary.

Infrastructure failures (MinIO ``S3Error``, ``django.db.Error``) are NOT
wrapped here. They propagate to the caller, which owns retry/backoff.
"""
from typing import Any, Dict, Optional


class DomainError(Exception):
    """Base class for local, synchronous, non-retryable failures."""

    code = 'DOMAIN_ERROR'

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        payload = {'code': self.code, 'message': self.message}
        if self.details:
            payload['details'] = self.details
        return payload


class ValidationError(DomainError):
    """Malformed, oversized or wrong-type input. Fix the input, then retry."""

    code = 'VALIDATION_ERROR'


class NotFoundError(DomainError):
    """Referenced entity identity does not exist."""

    code = 'NOT_FOUND'

    def __init__(self, resource: str, identity: Optional[Any] = None):
        if identity is None:
            message = f'{resource} not found'
        else:
            message = f'{resource} with id {identity} not found'
        super().__init__(message, {'resource': resource})
        self.resource = resource
        self.identity = identity


class IllegalStateError(DomainError):
    """Attempted transition violates the procedure or step state machine."""

    code = 'ILLEGAL_STATE'


class UnknownCategoryError(ValidationError):
    """Procedure category absent from the definition registry."""

    code = 'UNKNOWN_CATEGORY'

    def __init__(self, category: Any):
        super().__init__(f'Unknown procedure category: {category}', {'category': str(category)})
        self.category = category


class ConcurrencyConflictError(DomainError):
    """
    Compare-and-swap update lost against a concurrent writer.

    Raised by record stores when ``expected`` attributes no longer match.
    """

    code = 'CONFLICT'


class ArchivalError(DomainError):
    """An image could not be migrated to cold storage; the procedure stays active."""

    code = 'ARCHIVAL_FAILED'
