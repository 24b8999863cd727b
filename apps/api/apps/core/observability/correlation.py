"""
Correlation context for logs.

Services in this project are async and run many handlers on one event loop,
so the context lives in ``contextvars`` rather than thread-locals. Callers
(request layer, Celery tasks, management commands) open a context with
``correlation_context``; every log line emitted inside picks it up through
``CorrelationFilter``.
"""
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterable, Optional

_request_id: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
_trace_id: ContextVar[Optional[str]] = ContextVar('trace_id', default=None)
_actor_id: ContextVar[Optional[str]] = ContextVar('actor_id', default=None)
_actor_roles: ContextVar[tuple] = ContextVar('actor_roles', default=())


def get_request_id():
    """Get current request ID."""
    return _request_id.get()


def get_trace_id():
    """Get current trace ID."""
    return _trace_id.get()


def get_user_id():
    """Get the opaque actor identity of the current operation."""
    return _actor_id.get()


def get_user_roles():
    """Get the roles supplied by the identity context."""
    return list(_actor_roles.get())


@contextmanager
def correlation_context(
    request_id: Optional[str] = None,
    trace_id: Optional[str] = None,
    actor_id: Optional[str] = None,
    actor_roles: Iterable[str] = (),
):
    """
    Bind correlation fields for the duration of a block.

    A request id is generated when the caller does not propagate one.

    Usage:
        with correlation_context(actor_id=str(user_id)):
            await service.complete_step(step_id)
    """
    tokens = [
        (_request_id, _request_id.set(request_id or str(uuid.uuid4()))),
        (_trace_id, _trace_id.set(trace_id)),
        (_actor_id, _actor_id.set(actor_id)),
        (_actor_roles, _actor_roles.set(tuple(actor_roles))),
    ]
    try:
        yield get_request_id()
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def clear_request_context():
    """Clear correlation context (useful for testing)."""
    _request_id.set(None)
    _trace_id.set(None)
    _actor_id.set(None)
    _actor_roles.set(())
