"""
Queue position and wait-time estimation.

Waiting entries are served by priority tier first (emergency, then
priority, then normal) and by check-in time within a tier.  Tokens are
handed out in arrival order, so a late emergency check-in holds a higher
token number but a lower position.

The wait estimate is the number of patients ahead (including whoever is
currently called or in consultation) times the doctor's rolling average
consultation length.  The average is an exponentially weighted moving
average updated on every completed consultation.
"""
from __future__ import annotations

import datetime
import logging
from typing import Iterable, Optional

from django.conf import settings
from django.db.models import Q

from queues.models import DailyQueue, QueueEntry

logger = logging.getLogger(__name__)

PRIORITY_RANK = {
    QueueEntry.PRIORITY_EMERGENCY: 0,
    QueueEntry.PRIORITY_PRIORITY: 1,
    QueueEntry.PRIORITY_NORMAL: 2,
}
_LAST = float('inf')


def service_order_key(entry: QueueEntry):
    return (
        PRIORITY_RANK.get(entry.priority, PRIORITY_RANK[QueueEntry.PRIORITY_NORMAL]),
        entry.checked_in_at,
        entry.sequence if entry.sequence is not None else _LAST,
    )


def order_for_service(entries: Iterable[QueueEntry]) -> list[QueueEntry]:
    return sorted(entries, key=service_order_key)


def estimate_wait(position: int, serving: int, avg_minutes: float) -> int:
    ahead = max(0, position - 1) + max(0, serving)
    return int(round(ahead * avg_minutes))


def compute_position(queue: DailyQueue, priority: str, checked_in_at: datetime.datetime,
                     sequence: Optional[int] = None) -> tuple[int, int]:
    """Position and wait a new waiting entry would get in ``queue`` right now."""
    candidate = QueueEntry(priority=priority, checked_in_at=checked_in_at, sequence=sequence)
    key = service_order_key(candidate)
    ahead = 0
    serving = 0
    for entry in queue.entries.filter(status__in=QueueEntry.ACTIVE_STATUSES).only(
        'priority', 'checked_in_at', 'sequence', 'status'
    ):
        if entry.status in QueueEntry.SERVING_STATUSES:
            serving += 1
        elif service_order_key(entry) < key:
            ahead += 1
    position = ahead + 1
    return position, estimate_wait(position, serving, queue.avg_consultation_minutes)


def recompute_all(queue: DailyQueue) -> list[QueueEntry]:
    """Rewrite position and wait for every entry of ``queue`` that needs it.

    Waiting entries get 1..n in service order, called and in-consultation
    entries get 0 ("now serving") and finished entries get NULL.  Returns
    the waiting entries in service order.
    """
    entries = list(
        queue.entries.filter(
            Q(status__in=QueueEntry.ACTIVE_STATUSES) | Q(position_in_queue__isnull=False)
        )
    )
    waiting = order_for_service(e for e in entries if e.status == QueueEntry.STATUS_WAITING)
    serving = [e for e in entries if e.status in QueueEntry.SERVING_STATUSES]
    finished = [e for e in entries if not e.is_active]

    changed = []

    def assign(entry, position, wait):
        if entry.position_in_queue != position or entry.estimated_wait_minutes != wait:
            entry.position_in_queue = position
            entry.estimated_wait_minutes = wait
            changed.append(entry)

    for index, entry in enumerate(waiting, start=1):
        assign(entry, index, estimate_wait(index, len(serving), queue.avg_consultation_minutes))
    for entry in serving:
        assign(entry, 0, 0)
    for entry in finished:
        assign(entry, None, None)

    if changed:
        QueueEntry.objects.bulk_update(changed, ['position_in_queue', 'estimated_wait_minutes'])
    return waiting


def record_consultation(queue: DailyQueue, started_at: Optional[datetime.datetime],
                        completed_at: Optional[datetime.datetime]) -> float:
    """Fold one consultation duration into the doctor's rolling average.

    ``queue`` must be locked by the caller.  Returns the new average.
    """
    if not started_at or not completed_at:
        return queue.avg_consultation_minutes
    sample = (completed_at - started_at).total_seconds() / 60.0
    if sample <= 0:
        logger.warning("ignoring non-positive consultation sample %.2f min on queue %s", sample, queue.id)
        return queue.avg_consultation_minutes
    alpha = float(getattr(settings, 'QUEUE_WAIT_EWMA_ALPHA', 0.2))
    average = alpha * sample + (1 - alpha) * queue.avg_consultation_minutes
    DailyQueue.objects.filter(pk=queue.pk).update(
        avg_consultation_minutes=average,
        consultation_samples=queue.consultation_samples + 1,
    )
    queue.avg_consultation_minutes = average
    queue.consultation_samples += 1
    logger.debug("queue %s average consultation %.2f min after %.2f min sample", queue.id, average, sample)
    return average
