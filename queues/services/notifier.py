"""
Fan-out of queue changes to live viewers.

Each daily queue has its own channel-layer group (``queue.<id>``) for
physician consoles and reception desks; every event is also sent to the
``queues.active`` group that waiting-room displays join.  Events carry the
queue ``version`` so a subscriber that notices a gap can re-read the full
state instead of trusting the stream.

Delivery is best effort and always happens after the database commit.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer
from django.db import transaction
from django.utils import timezone

logger = logging.getLogger(__name__)

ACTIVE_QUEUES_GROUP = 'queues.active'

ENTRY_CHECKED_IN = 'entry.checked_in'
ENTRY_CALLED = 'entry.called'
ENTRY_CONSULTATION_STARTED = 'entry.consultation_started'
ENTRY_COMPLETED = 'entry.completed'
ENTRY_NO_SHOW = 'entry.no_show'
ENTRY_CANCELLED = 'entry.cancelled'
ENTRY_TRANSFERRED = 'entry.transferred'
QUEUE_CLOSED = 'queue.closed'
BOARD_RESYNC = 'board.resync'


def queue_group(queue_id) -> str:
    return f"queue.{queue_id}"


def build_event(name: str, queue, *, entry=None, now=None) -> dict[str, Any]:
    now = now or timezone.now()
    payload: dict[str, Any] = {
        'type': 'queue.event',
        'event': name,
        'queueId': str(queue.id),
        'doctorId': queue.doctor_id,
        'departmentId': queue.department_id or None,
        'version': int(queue.version),
        'ts': now.isoformat(),
        'entry': None,
    }
    if entry is not None:
        payload['entry'] = {
            'id': str(entry.id),
            'tokenNumber': entry.token_number,
            'status': entry.status,
            'priority': entry.priority,
            'position': entry.position_in_queue,
            'estimatedWaitMinutes': entry.estimated_wait_minutes,
        }
    return payload


def publish(queue_id, event: dict[str, Any], *, include_global: bool = True) -> bool:
    """Send ``event`` to the queue's subscribers and the global board.

    Returns False when no channel layer is configured or delivery failed;
    subscribers recover by re-reading state.
    """
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return False
    groups = [queue_group(queue_id)]
    if include_global:
        groups.append(ACTIVE_QUEUES_GROUP)
    try:
        for group in groups:
            async_to_sync(channel_layer.group_send)(group, event)
    except Exception:
        logger.exception("failed to publish %s for queue %s", event.get('event'), queue_id)
        return False
    return True


def publish_on_commit(queue_id, event: dict[str, Any], *, using: Optional[str] = None) -> None:
    transaction.on_commit(lambda: publish(queue_id, event), using=using)


def publish_board_resync(now=None) -> bool:
    """Ask every board viewer to re-read the active queues."""
    now = now or timezone.now()
    channel_layer = get_channel_layer()
    if channel_layer is None:
        return False
    event = {'type': 'queue.event', 'event': BOARD_RESYNC, 'ts': now.isoformat()}
    try:
        async_to_sync(channel_layer.group_send)(ACTIVE_QUEUES_GROUP, event)
    except Exception:
        logger.exception("failed to publish board resync")
        return False
    return True
