from __future__ import annotations

import datetime
import logging
from typing import Optional

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.utils import timezone

from queues.exceptions import QueueNotFound
from queues.models import DailyQueue

logger = logging.getLogger(__name__)


def token_prefix_for(department_id: Optional[str]) -> str:
    prefixes = getattr(settings, 'QUEUE_DEPARTMENT_PREFIXES', {}) or {}
    if department_id and department_id in prefixes:
        return prefixes[department_id]
    return getattr(settings, 'QUEUE_DEFAULT_TOKEN_PREFIX', 'A')


def _seed_average(doctor_id: str, queue_date: datetime.date) -> tuple[float, int]:
    """Carry the doctor's rolling consultation average over from their last queue."""
    previous = (
        DailyQueue.objects.filter(doctor_id=doctor_id, queue_date__lt=queue_date, consultation_samples__gt=0)
        .order_by('-queue_date')
        .only('avg_consultation_minutes', 'consultation_samples')
        .first()
    )
    if previous:
        return previous.avg_consultation_minutes, previous.consultation_samples
    return float(settings.QUEUE_DEFAULT_CONSULTATION_MINUTES), 0


def resolve_or_create(doctor_id: str, department_id: Optional[str] = None,
                      queue_date: Optional[datetime.date] = None, *, now=None) -> DailyQueue:
    """Return the daily queue for ``(doctor, department, date)``, creating it on first use.

    Concurrent first check-ins race on the unique constraint; the loser
    re-reads and gets the winner's row.  A queue closed earlier the same day
    is reopened with its counter untouched; a past day's closed queue stays
    closed.
    """
    now = now or timezone.now()
    queue_date = queue_date or timezone.localdate(now)
    department_id = department_id or ''

    lookup = {'doctor_id': doctor_id, 'department_id': department_id, 'queue_date': queue_date}
    queue = DailyQueue.objects.filter(**lookup).first()
    if queue is None:
        avg, samples = _seed_average(doctor_id, queue_date)
        try:
            with transaction.atomic():
                queue = DailyQueue.objects.create(
                    token_prefix=token_prefix_for(department_id),
                    avg_consultation_minutes=avg,
                    consultation_samples=samples,
                    **lookup,
                )
            logger.info("opened daily queue %s for doctor=%s dept=%s date=%s",
                        queue.id, doctor_id, department_id or '-', queue_date)
        except IntegrityError:
            queue = DailyQueue.objects.get(**lookup)
    if not queue.is_active and queue_date == timezone.localdate(now):
        DailyQueue.objects.filter(pk=queue.pk, is_active=False).update(is_active=True)
        queue.is_active = True
        logger.info("reopened daily queue %s", queue.id)
    return queue


def get_queue(queue_id, *, for_update: bool = False) -> DailyQueue:
    qs = DailyQueue.objects.all()
    if for_update:
        qs = qs.select_for_update()
    try:
        return qs.get(pk=queue_id)
    except (DailyQueue.DoesNotExist, ValueError, ValidationError):
        raise QueueNotFound(f'Queue {queue_id} not found')


def active_queues(on_date: Optional[datetime.date] = None, *, doctor_id: Optional[str] = None,
                  department_id: Optional[str] = None):
    on_date = on_date or timezone.localdate()
    qs = DailyQueue.objects.filter(queue_date=on_date, is_active=True)
    if doctor_id:
        qs = qs.filter(doctor_id=doctor_id)
    if department_id:
        qs = qs.filter(department_id=department_id)
    return qs.order_by('doctor_id', 'department_id')
