"""
Queue dispatcher: the single entry point for every queue mutation.

Each operation runs in one database transaction.  Queue-wide decisions
(token issue, picking the next patient) happen while the daily queue row
is locked; single-entry transitions lock the queue row and then the entry
row, always in that order, and guard the status write with a
compare-and-set on the previous status.  Notifications are scheduled with
``transaction.on_commit`` so nothing is broadcast for work that rolled
back and no lock is held while broadcasting.

Errors are raised as the typed exceptions in :mod:`queues.exceptions`;
nothing here retries on its own.
"""
from __future__ import annotations

import functools
import logging
from typing import Optional

import bleach
from django.core.exceptions import ValidationError
from django.db import DatabaseError, IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from queues.exceptions import (
    ConcurrencyConflict,
    DuplicateCheckIn,
    EmptyQueue,
    EntryNotFound,
    InvalidTransition,
    PersistenceUnavailable,
    QueueClosed,
    QueueError,
)
from queues.models import DailyQueue, QueueEntry, QueueEntryTransition
from queues.services import estimator, notifier, registry, tokens
from queues.services.state_machine import apply_transition

logger = logging.getLogger(__name__)

_DEFAULT_PRIORITY = {
    QueueEntry.TYPE_EMERGENCY: QueueEntry.PRIORITY_EMERGENCY,
    QueueEntry.TYPE_APPOINTMENT: QueueEntry.PRIORITY_NORMAL,
    QueueEntry.TYPE_WALK_IN: QueueEntry.PRIORITY_NORMAL,
}


def _persistence_guard(fn):
    """Translate database failures into dispatcher errors."""
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except QueueError:
            raise
        except IntegrityError as exc:
            logger.warning("%s lost a race: %s", fn.__name__, exc)
            raise ConcurrencyConflict() from exc
        except DatabaseError as exc:
            logger.error("%s failed against the database: %s", fn.__name__, exc)
            raise PersistenceUnavailable() from exc
    return wrapper


def _clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = bleach.clean(value.strip(), strip=True)
    return value or None


def _bump_version(queue: DailyQueue) -> None:
    DailyQueue.objects.filter(pk=queue.pk).update(version=F('version') + 1)
    queue.version = DailyQueue.objects.filter(pk=queue.pk).values_list('version', flat=True).get()


def _record(entry: QueueEntry, from_status: Optional[str], to_status: str, operator, now, reason: str = '') -> None:
    QueueEntryTransition.objects.create(
        entry=entry,
        from_status=from_status,
        to_status=to_status,
        operator=operator if getattr(operator, 'pk', None) else None,
        timestamp=now,
        reason=reason[:255],
    )


def _ensure_not_active(patient_id: str, queue_date) -> None:
    active = QueueEntry.objects.filter(
        patient_id=patient_id, queue_date=queue_date, status__in=QueueEntry.ACTIVE_STATUSES
    ).only('token_number', 'status').first()
    if active:
        raise DuplicateCheckIn(
            f'Patient already holds token {active.token_number} ({active.status}) today'
        )


def _enqueue(queue: DailyQueue, *, patient_id: str, appointment_id: Optional[str], entry_type: str,
             priority: str, symptoms: Optional[str], notes: Optional[str], created_by, now) -> QueueEntry:
    """Issue a token and create a waiting entry; caller holds the transaction."""
    issued = tokens.next_token(queue.pk)
    queue = registry.get_queue(queue.pk, for_update=True)
    position, wait = estimator.compute_position(queue, priority, now, issued.sequence)
    try:
        with transaction.atomic():
            entry = QueueEntry.objects.create(
                queue=queue,
                queue_date=queue.queue_date,
                patient_id=patient_id,
                appointment_id=appointment_id or None,
                sequence=issued.sequence,
                token_number=issued.token_number,
                entry_type=entry_type,
                priority=priority,
                status=QueueEntry.STATUS_WAITING,
                position_in_queue=position,
                estimated_wait_minutes=wait,
                symptoms=symptoms,
                notes=notes,
                created_by=created_by if getattr(created_by, 'pk', None) else None,
                checked_in_at=now,
            )
    except IntegrityError:
        _ensure_not_active(patient_id, queue.queue_date)
        raise
    _record(entry, None, QueueEntry.STATUS_WAITING, created_by, now, 'check-in')
    estimator.recompute_all(queue)
    entry.refresh_from_db()
    notifier.publish_on_commit(queue.id, notifier.build_event(notifier.ENTRY_CHECKED_IN, queue, entry=entry, now=now))
    return entry


@_persistence_guard
def check_in(patient_id: str, doctor_id: str, department_id: Optional[str] = None,
             appointment_id: Optional[str] = None, entry_type: str = QueueEntry.TYPE_WALK_IN,
             priority: Optional[str] = None, symptoms: Optional[str] = None, notes: Optional[str] = None,
             *, created_by=None, now=None) -> QueueEntry:
    """Check a patient into today's queue for ``doctor_id`` and return the new entry."""
    now = now or timezone.now()
    if entry_type not in _DEFAULT_PRIORITY:
        raise ValueError(f'unknown entry type {entry_type!r}')
    priority = priority or _DEFAULT_PRIORITY[entry_type]
    if priority not in estimator.PRIORITY_RANK:
        raise ValueError(f'unknown priority {priority!r}')
    queue_date = timezone.localdate(now)

    with transaction.atomic():
        _ensure_not_active(patient_id, queue_date)
        queue = registry.resolve_or_create(doctor_id, department_id, queue_date, now=now)
        entry = _enqueue(
            queue,
            patient_id=patient_id,
            appointment_id=appointment_id,
            entry_type=entry_type,
            priority=priority,
            symptoms=_clean_text(symptoms),
            notes=_clean_text(notes),
            created_by=created_by,
            now=now,
        )
    logger.info("checked in entry %s token=%s queue=%s priority=%s position=%s",
                entry.id, entry.token_number, entry.queue_id, entry.priority, entry.position_in_queue)
    return entry


@_persistence_guard
def call_next(queue_id, *, operator=None, reason: str = '', now=None) -> QueueEntry:
    """Call the highest-ranked waiting patient of the queue."""
    now = now or timezone.now()
    with transaction.atomic():
        queue = registry.get_queue(queue_id, for_update=True)
        if not queue.is_active:
            raise QueueClosed(f'Queue {queue.id} is closed')
        waiting = estimator.order_for_service(queue.entries.filter(status=QueueEntry.STATUS_WAITING))
        if not waiting:
            raise EmptyQueue(f'No patients are waiting in queue {queue.id}')
        entry = waiting[0]
        previous = entry.status
        fields = apply_transition(entry, QueueEntry.STATUS_CALLED, now)
        claimed = QueueEntry.objects.filter(pk=entry.pk, status=previous).update(
            updated_at=timezone.now(), **{f: getattr(entry, f) for f in fields}
        )
        if not claimed:
            raise ConcurrencyConflict(f'Entry {entry.token_number} was taken by another caller')
        _record(entry, previous, QueueEntry.STATUS_CALLED, operator, now, reason or 'call next')
        _bump_version(queue)
        estimator.recompute_all(queue)
        entry.refresh_from_db()
        notifier.publish_on_commit(queue.id, notifier.build_event(notifier.ENTRY_CALLED, queue, entry=entry, now=now))
    logger.info("called entry %s token=%s queue=%s", entry.id, entry.token_number, queue.id)
    return entry


def _lock_entry(entry_id) -> tuple[DailyQueue, QueueEntry]:
    """Lock the entry's queue row, then the entry row."""
    try:
        queue_id = QueueEntry.objects.filter(pk=entry_id).values_list('queue_id', flat=True).first()
    except (ValueError, TypeError, ValidationError):
        queue_id = None
    if queue_id is None:
        raise EntryNotFound(f'Queue entry {entry_id} not found')
    queue = registry.get_queue(queue_id, for_update=True)
    entry = QueueEntry.objects.select_for_update().get(pk=entry_id)
    return queue, entry


def _transition(entry_id, new_status: str, event_name: str, *, operator, reason: str, now):
    now = now or timezone.now()
    with transaction.atomic():
        queue, entry = _lock_entry(entry_id)
        previous = entry.status
        fields = apply_transition(entry, new_status, now)
        updated = QueueEntry.objects.filter(pk=entry.pk, status=previous).update(
            updated_at=timezone.now(), **{f: getattr(entry, f) for f in fields}
        )
        if not updated:
            raise ConcurrencyConflict(f'Entry {entry.token_number} changed while it was being updated')
        _record(entry, previous, new_status, operator, now, reason)
        if new_status == QueueEntry.STATUS_COMPLETED:
            estimator.record_consultation(queue, entry.consultation_started_at, entry.completed_at)
        _bump_version(queue)
        estimator.recompute_all(queue)
        entry.refresh_from_db()
        notifier.publish_on_commit(queue.id, notifier.build_event(event_name, queue, entry=entry, now=now))
    logger.info("entry %s token=%s %s -> %s", entry.id, entry.token_number, previous, new_status)
    return entry


@_persistence_guard
def start_consultation(entry_id, *, operator=None, reason: str = '', now=None) -> QueueEntry:
    return _transition(entry_id, QueueEntry.STATUS_IN_CONSULTATION, notifier.ENTRY_CONSULTATION_STARTED,
                       operator=operator, reason=reason, now=now)


@_persistence_guard
def complete_consultation(entry_id, *, operator=None, reason: str = '', now=None) -> QueueEntry:
    return _transition(entry_id, QueueEntry.STATUS_COMPLETED, notifier.ENTRY_COMPLETED,
                       operator=operator, reason=reason, now=now)


@_persistence_guard
def mark_no_show(entry_id, *, operator=None, reason: str = '', now=None) -> QueueEntry:
    return _transition(entry_id, QueueEntry.STATUS_NO_SHOW, notifier.ENTRY_NO_SHOW,
                       operator=operator, reason=reason, now=now)


@_persistence_guard
def cancel(entry_id, *, operator=None, reason: str = '', now=None) -> QueueEntry:
    return _transition(entry_id, QueueEntry.STATUS_CANCELLED, notifier.ENTRY_CANCELLED,
                       operator=operator, reason=reason, now=now)


@_persistence_guard
def transfer(entry_id, to_doctor_id: str, to_department_id: Optional[str] = None, *,
             operator=None, reason: str = '', now=None) -> QueueEntry:
    """Hand a waiting or called patient over to another doctor's queue.

    The source entry ends ``transferred`` and points at a fresh waiting entry
    in the target doctor's queue for today with a new token.  Returns the
    new entry.
    """
    now = now or timezone.now()
    target_date = timezone.localdate(now)
    with transaction.atomic():
        source_queue, entry = _lock_entry(entry_id)
        source_key = (source_queue.doctor_id, source_queue.department_id, source_queue.queue_date)
        if source_key == (to_doctor_id, to_department_id or '', target_date):
            raise InvalidTransition(entry.status, QueueEntry.STATUS_TRANSFERRED,
                                    'Cannot transfer an entry to the queue it is already in')
        previous = entry.status
        fields = apply_transition(entry, QueueEntry.STATUS_TRANSFERRED, now)
        updated = QueueEntry.objects.filter(pk=entry.pk, status=previous).update(
            updated_at=timezone.now(), **{f: getattr(entry, f) for f in fields}
        )
        if not updated:
            raise ConcurrencyConflict(f'Entry {entry.token_number} changed while it was being transferred')
        _record(entry, previous, QueueEntry.STATUS_TRANSFERRED, operator, now,
                reason or f'transferred to {to_doctor_id}')
        _bump_version(source_queue)
        estimator.recompute_all(source_queue)

        target_queue = registry.resolve_or_create(to_doctor_id, to_department_id, target_date, now=now)
        new_entry = _enqueue(
            target_queue,
            patient_id=entry.patient_id,
            appointment_id=entry.appointment_id,
            entry_type=entry.entry_type,
            priority=entry.priority,
            symptoms=entry.symptoms,
            notes=entry.notes,
            created_by=operator,
            now=now,
        )
        entry.transferred_to = new_entry
        entry.save(update_fields=['transferred_to'])
        notifier.publish_on_commit(
            source_queue.id,
            notifier.build_event(notifier.ENTRY_TRANSFERRED, source_queue, entry=entry, now=now),
        )
    logger.info("transferred entry %s (%s) to entry %s token=%s queue=%s",
                entry.id, entry.token_number, new_entry.id, new_entry.token_number, new_entry.queue_id)
    return new_entry


@_persistence_guard
def close_queue(queue_id, *, now=None) -> DailyQueue:
    """Mark a daily queue inactive; its entries are left as they are."""
    now = now or timezone.now()
    with transaction.atomic():
        queue = registry.get_queue(queue_id, for_update=True)
        if queue.is_active:
            DailyQueue.objects.filter(pk=queue.pk).update(is_active=False)
            queue.is_active = False
            _bump_version(queue)
            notifier.publish_on_commit(queue.id, notifier.build_event(notifier.QUEUE_CLOSED, queue, now=now))
            logger.info("closed daily queue %s", queue.id)
    return queue
