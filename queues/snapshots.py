"""
Read-side projections of queue state.

These are what reception boards, physician consoles and waiting-room
displays fetch over HTTP, and what the WebSocket consumers send when a
viewer connects or asks to resynchronise.  Keys are camelCase to match the
front-end.
"""
from typing import Optional

from django.conf import settings
from django.utils import timezone

from queues.models import DailyQueue, QueueEntry
from queues.services.estimator import order_for_service
from queues.services.registry import active_queues


def _iso(value):
    return value.isoformat() if value else None


def format_queue(queue: DailyQueue) -> dict:
    return {
        'id': str(queue.id),
        'doctorId': queue.doctor_id,
        'departmentId': queue.department_id or None,
        'queueDate': queue.queue_date.isoformat(),
        'tokenPrefix': queue.token_prefix,
        'currentTokenNumber': queue.current_token_number,
        'isActive': queue.is_active,
        'avgConsultationMinutes': round(queue.avg_consultation_minutes, 2),
        'version': queue.version,
    }


def format_entry(entry: QueueEntry) -> dict:
    return {
        'id': str(entry.id),
        'queueId': str(entry.queue_id),
        'patientId': entry.patient_id,
        'appointmentId': entry.appointment_id,
        'tokenNumber': entry.token_number,
        'entryType': entry.entry_type,
        'priority': entry.priority,
        'status': entry.status,
        'position': entry.position_in_queue,
        'estimatedWaitMinutes': entry.estimated_wait_minutes,
        'symptoms': entry.symptoms,
        'notes': entry.notes,
        'checkedInAt': _iso(entry.checked_in_at),
        'calledAt': _iso(entry.called_at),
        'consultationStartedAt': _iso(entry.consultation_started_at),
        'completedAt': _iso(entry.completed_at),
        'transferredToId': str(entry.transferred_to_id) if entry.transferred_to_id else None,
    }


def format_slip(entry: QueueEntry) -> dict:
    """Fields the print collaborator needs for a token slip."""
    queue = entry.queue
    return {
        'tokenNumber': entry.token_number,
        'patientId': entry.patient_id,
        'doctorId': queue.doctor_id,
        'departmentId': queue.department_id or None,
        'position': entry.position_in_queue,
        'estimatedWaitMinutes': entry.estimated_wait_minutes,
        'checkedInAt': _iso(entry.checked_in_at),
    }


def _ordered_entries(queue: DailyQueue) -> list[QueueEntry]:
    entries = list(queue.entries.all())
    serving = sorted(
        (e for e in entries if e.status in QueueEntry.SERVING_STATUSES),
        key=lambda e: (e.status != QueueEntry.STATUS_IN_CONSULTATION, e.called_at or e.checked_in_at),
    )
    waiting = order_for_service(e for e in entries if e.status == QueueEntry.STATUS_WAITING)
    finished = sorted((e for e in entries if not e.is_active), key=lambda e: e.sequence)
    return serving + waiting + finished


def queue_snapshot(queue: DailyQueue) -> dict:
    return {
        'queue': format_queue(queue),
        'entries': [format_entry(e) for e in _ordered_entries(queue)],
    }


def queue_stats(queue: DailyQueue) -> dict:
    entries = list(queue.entries.filter(
        status__in=[QueueEntry.STATUS_WAITING, QueueEntry.STATUS_CALLED,
                    QueueEntry.STATUS_IN_CONSULTATION, QueueEntry.STATUS_COMPLETED]
    ))
    serving = next((e for e in entries if e.status == QueueEntry.STATUS_IN_CONSULTATION), None)
    return {
        'queueId': str(queue.id),
        'totalWaiting': sum(1 for e in entries if e.status in (QueueEntry.STATUS_WAITING, QueueEntry.STATUS_CALLED)),
        'totalServed': sum(1 for e in entries if e.status == QueueEntry.STATUS_COMPLETED),
        'avgWaitTime': int(round(queue.avg_consultation_minutes)),
        'currentlyServing': format_entry(serving) if serving else None,
        'version': queue.version,
    }


def active_board(on_date=None, *, doctor_id: Optional[str] = None, department_id: Optional[str] = None) -> dict:
    """Now-serving and up-next tokens for every active queue of the day."""
    on_date = on_date or timezone.localdate()
    up_next = getattr(settings, 'QUEUE_BOARD_UP_NEXT', 5)
    boards = []
    total_waiting = 0
    for queue in active_queues(on_date, doctor_id=doctor_id, department_id=department_id):
        ordered = _ordered_entries(queue)
        serving = [e for e in ordered if e.status in QueueEntry.SERVING_STATUSES]
        waiting = [e for e in ordered if e.status == QueueEntry.STATUS_WAITING]
        total_waiting += len(waiting)
        boards.append({
            'queue': format_queue(queue),
            'serving': format_entry(serving[0]) if serving else None,
            'waiting': [format_entry(e) for e in waiting[:up_next]],
            'waitingCount': len(waiting),
        })
    return {'date': on_date.isoformat(), 'totalWaiting': total_waiting, 'queues': boards}


def entry_detail(entry: QueueEntry) -> dict:
    data = format_entry(entry)
    data['queue'] = format_queue(entry.queue)
    data['transitionHistory'] = [
        {
            'from': t.from_status,
            'to': t.to_status,
            'operator': t.operator.username if t.operator else '',
            'timestamp': _iso(t.timestamp),
            'reason': t.reason,
        }
        for t in entry.transitions.select_related('operator').order_by('timestamp', 'id')
    ]
    return data


def patient_status(patient_id: str, on_date=None) -> Optional[dict]:
    """The patient's active entry for the day, or None."""
    on_date = on_date or timezone.localdate()
    entry = (
        QueueEntry.objects.select_related('queue')
        .filter(patient_id=patient_id, queue_date=on_date, status__in=QueueEntry.ACTIVE_STATUSES)
        .first()
    )
    if entry is None:
        return None
    data = format_entry(entry)
    data['queue'] = format_queue(entry.queue)
    return data
