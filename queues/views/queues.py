"""
Queue endpoints.

Reception desks check patients in and manage entries, physician consoles
call the next patient and run consultations, and waiting-room displays
read the board.  Every mutation goes through :mod:`queues.services.dispatcher`;
its typed errors are rendered by ``queues.exceptions.api_exception_handler``.
"""
from __future__ import annotations

from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework import status

from ..exceptions import EntryNotFound
from ..models import QueueEntry
from ..permissions import IsAdminRole, IsQueueStaff
from ..serializers.queue import (
    BoardQuerySerializer,
    CheckInSerializer,
    EntryActionSerializer,
    PatientStatusQuerySerializer,
    TransferSerializer,
)
from ..services import dispatcher
from ..services.registry import get_queue
from .. import snapshots


def _get_entry(entry_id) -> QueueEntry:
    entry = QueueEntry.objects.select_related('queue').filter(id=entry_id).first()
    if not entry:
        raise EntryNotFound(f'Queue entry {entry_id} not found')
    return entry


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsQueueStaff])
def check_in(request):
    """Check a patient in and return the entry plus the token slip fields."""
    s = CheckInSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    data = s.validated_data
    entry = dispatcher.check_in(
        patient_id=data['patientId'],
        doctor_id=data['doctorId'],
        department_id=data.get('departmentId') or None,
        appointment_id=data.get('appointmentId') or None,
        entry_type=data.get('entryType'),
        priority=data.get('priority') or None,
        symptoms=data.get('symptoms'),
        notes=data.get('notes'),
        created_by=request.user,
    )
    return Response(
        {'ok': True, 'data': snapshots.format_entry(entry), 'slip': snapshots.format_slip(entry)},
        status=status.HTTP_201_CREATED,
    )


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsQueueStaff])
def call_next(request, queue_id):
    s = EntryActionSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    entry = dispatcher.call_next(queue_id, operator=request.user, reason=s.validated_data['reason'])
    return Response({'ok': True, 'data': snapshots.format_entry(entry)})


def _entry_action(operation):
    @api_view(['POST'])
    @permission_classes([IsAuthenticated, IsQueueStaff])
    def view(request, entry_id):
        s = EntryActionSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        entry = operation(entry_id, operator=request.user, reason=s.validated_data['reason'])
        return Response({'ok': True, 'data': snapshots.format_entry(entry)})
    view.__name__ = f'entry_{operation.__name__}'
    view.__doc__ = operation.__doc__
    return view


start_consultation = _entry_action(dispatcher.start_consultation)
complete_consultation = _entry_action(dispatcher.complete_consultation)
mark_no_show = _entry_action(dispatcher.mark_no_show)
cancel_entry = _entry_action(dispatcher.cancel)


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsQueueStaff])
def transfer_entry(request, entry_id):
    """Hand the patient over to another doctor's queue."""
    s = TransferSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    new_entry = dispatcher.transfer(
        entry_id,
        s.validated_data['doctorId'],
        s.validated_data.get('departmentId') or None,
        operator=request.user,
        reason=s.validated_data['reason'],
    )
    return Response({
        'ok': True,
        'data': snapshots.format_entry(new_entry),
        'slip': snapshots.format_slip(new_entry),
        'transferredFromId': str(entry_id),
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsAdminRole])
def close_queue(request, queue_id):
    """Administrators close a daily queue ahead of the nightly job."""
    queue = dispatcher.close_queue(queue_id)
    return Response({'ok': True, 'data': snapshots.format_queue(queue)})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def entry_detail(request, entry_id):
    """Entry with its transition history."""
    return Response({'ok': True, 'data': snapshots.entry_detail(_get_entry(entry_id))})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def patient_status(request):
    """The patient's active entry today, or ``null``."""
    q = PatientStatusQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    data = snapshots.patient_status(q.validated_data['patientId'], q.validated_data.get('date'))
    return Response({'ok': True, 'data': data})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def queue_detail(request, queue_id):
    """Full snapshot of one queue; viewers re-read this after missing events."""
    return Response({'ok': True, 'data': snapshots.queue_snapshot(get_queue(queue_id))})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def queue_stats(request, queue_id):
    return Response({'ok': True, 'data': snapshots.queue_stats(get_queue(queue_id))})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def active_board(request):
    """Waiting-room board: now serving and up next for each active queue."""
    q = BoardQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    data = snapshots.active_board(
        q.validated_data.get('date'),
        doctor_id=q.validated_data.get('doctorId'),
        department_id=q.validated_data.get('departmentId'),
    )
    return Response({'ok': True, 'data': data})
