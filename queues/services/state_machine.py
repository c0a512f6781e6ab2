"""
Lifecycle of a queue entry.

::

    waiting -> called -> in_consultation -> completed
    waiting | called -> no_show | cancelled | transferred

Anything else raises :class:`~queues.exceptions.InvalidTransition` and the
entry is left exactly as it was.
"""
from __future__ import annotations

import datetime

from queues.exceptions import InvalidTransition
from queues.models import QueueEntry

TRANSITIONS: dict[str, tuple[str, ...]] = {
    QueueEntry.STATUS_WAITING: (
        QueueEntry.STATUS_CALLED,
        QueueEntry.STATUS_NO_SHOW,
        QueueEntry.STATUS_CANCELLED,
        QueueEntry.STATUS_TRANSFERRED,
    ),
    QueueEntry.STATUS_CALLED: (
        QueueEntry.STATUS_IN_CONSULTATION,
        QueueEntry.STATUS_NO_SHOW,
        QueueEntry.STATUS_CANCELLED,
        QueueEntry.STATUS_TRANSFERRED,
    ),
    QueueEntry.STATUS_IN_CONSULTATION: (QueueEntry.STATUS_COMPLETED,),
    QueueEntry.STATUS_COMPLETED: (),
    QueueEntry.STATUS_NO_SHOW: (),
    QueueEntry.STATUS_CANCELLED: (),
    QueueEntry.STATUS_TRANSFERRED: (),
}

TERMINAL_STATUSES = frozenset(status for status, targets in TRANSITIONS.items() if not targets)

# Timestamp field stamped when an entry enters the status
_TIMESTAMP_FIELDS = {
    QueueEntry.STATUS_CALLED: 'called_at',
    QueueEntry.STATUS_IN_CONSULTATION: 'consultation_started_at',
    QueueEntry.STATUS_COMPLETED: 'completed_at',
}


def can_transition(current: str, new: str) -> bool:
    """Return True if an entry may move from ``current`` to ``new``."""
    return new in TRANSITIONS.get(current, ())


def apply_transition(entry: QueueEntry, new_status: str, now: datetime.datetime) -> list[str]:
    """Move ``entry`` to ``new_status`` in memory and return the changed field names.

    Nothing is saved; the caller persists the returned fields.
    """
    if not can_transition(entry.status, new_status):
        raise InvalidTransition(entry.status, new_status)
    entry.status = new_status
    fields = ['status']
    stamp = _TIMESTAMP_FIELDS.get(new_status)
    if stamp:
        setattr(entry, stamp, now)
        fields.append(stamp)
    if new_status in TERMINAL_STATUSES:
        entry.position_in_queue = None
        entry.estimated_wait_minutes = None
        fields += ['position_in_queue', 'estimated_wait_minutes']
    elif new_status in QueueEntry.SERVING_STATUSES:
        entry.position_in_queue = 0
        entry.estimated_wait_minutes = 0
        fields += ['position_in_queue', 'estimated_wait_minutes']
    return fields
