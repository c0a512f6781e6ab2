"""
Typed errors raised by the queue services and the DRF exception handler
that renders them.

Every error reaches the client in the same envelope::

    {"ok": false, "error": {"code": "...", "message": "...", "retryable": false}}

``retryable`` tells the desk UI to show "please retry" instead of an
informative message.
"""
from __future__ import annotations

import logging

from rest_framework.views import exception_handler as drf_exception_handler
from rest_framework.response import Response

logger = logging.getLogger(__name__)


class QueueError(Exception):
    """Base class for dispatcher errors."""
    code = 'queue_error'
    status_code = 400
    retryable = False
    default_message = 'Queue operation failed'

    def __init__(self, message: str | None = None, **context):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)


class QueueNotFound(QueueError):
    code = 'queue_not_found'
    status_code = 404
    default_message = 'Queue not found'


class EntryNotFound(QueueError):
    code = 'entry_not_found'
    status_code = 404
    default_message = 'Queue entry not found'


class DuplicateCheckIn(QueueError):
    code = 'duplicate_check_in'
    status_code = 409
    default_message = 'Patient is already checked in today'


class InvalidTransition(QueueError):
    code = 'invalid_transition'
    status_code = 409
    default_message = 'Status change not allowed'

    def __init__(self, current: str, requested: str, message: str | None = None):
        self.current = current
        self.requested = requested
        super().__init__(
            message or f'Cannot change status from {current} to {requested}',
            current=current,
            requested=requested,
        )


class EmptyQueue(QueueError):
    code = 'empty_queue'
    status_code = 409
    default_message = 'No patients are waiting'


class QueueClosed(QueueError):
    code = 'queue_closed'
    status_code = 409
    default_message = 'Queue is closed'


class ConcurrencyConflict(QueueError):
    code = 'concurrency_conflict'
    status_code = 409
    retryable = True
    default_message = 'The queue changed while the request was processed'


class PersistenceUnavailable(QueueError):
    code = 'persistence_unavailable'
    status_code = 503
    retryable = True
    default_message = 'Queue storage is unavailable'


def api_exception_handler(exc, context):
    if isinstance(exc, QueueError):
        if exc.retryable:
            logger.warning("queue request failed (%s): %s", exc.code, exc.message)
        return Response(
            {'ok': False, 'error': {'code': exc.code, 'message': exc.message, 'retryable': exc.retryable}},
            status=exc.status_code,
        )
    resp = drf_exception_handler(exc, context)
    if resp is None:
        logger.exception("unhandled error in %s", context.get('view').__class__.__name__ if context else 'view')
        return Response(
            {'ok': False, 'error': {'code': 'server_error', 'message': str(exc), 'retryable': False}},
            status=500,
        )
    if isinstance(resp.data, dict):
        detail = resp.data.get('detail') or resp.data
    else:
        detail = str(resp.data)
    return Response(
        {'ok': False, 'error': {'code': 'api_error', 'message': detail, 'retryable': False}},
        status=resp.status_code,
    )
