"""
Dispatcher behaviour: check-in, call-next, the consultation lifecycle,
transfer and the events broadcast after each committed change.
"""
import datetime
import threading

import pytest
from django.db import OperationalError, connection

from queues.exceptions import (
    ConcurrencyConflict,
    DuplicateCheckIn,
    EmptyQueue,
    EntryNotFound,
    InvalidTransition,
    PersistenceUnavailable,
    QueueClosed,
)
from queues.models import DailyQueue, QueueEntry, QueueEntryTransition
from queues.services import dispatcher, notifier

pytestmark = pytest.mark.django_db


def _check_in(clock, patient, **kwargs):
    kwargs.setdefault('doctor_id', 'dr-x')
    return dispatcher.check_in(patient, now=clock.tick(), **kwargs)


def _positions(queue_id):
    return {
        e.patient_id: e.position_in_queue
        for e in QueueEntry.objects.filter(queue_id=queue_id, status=QueueEntry.STATUS_WAITING)
    }


def test_two_walk_ins_get_sequential_tokens(clock, reception):
    p1 = _check_in(clock, 'P1', created_by=reception)
    p2 = _check_in(clock, 'P2', created_by=reception)
    assert (p1.token_number, p2.token_number) == ('A001', 'A002')
    assert (p1.position_in_queue, p2.position_in_queue) == (1, 2)
    assert (p1.estimated_wait_minutes, p2.estimated_wait_minutes) == (0, 15)
    assert p1.queue_id == p2.queue_id
    assert p1.status == QueueEntry.STATUS_WAITING
    assert p1.created_by == reception
    transition = QueueEntryTransition.objects.get(entry=p1)
    assert (transition.from_status, transition.to_status) == (None, QueueEntry.STATUS_WAITING)


def test_emergency_jumps_ahead_but_keeps_arrival_token(clock):
    p1 = _check_in(clock, 'P1')
    _check_in(clock, 'P2')
    p3 = _check_in(clock, 'P3', entry_type=QueueEntry.TYPE_EMERGENCY)
    assert p3.priority == QueueEntry.PRIORITY_EMERGENCY
    assert p3.token_number == 'A003'
    assert p3.position_in_queue == 1
    assert _positions(p1.queue_id) == {'P3': 1, 'P1': 2, 'P2': 3}


def test_priority_tier_sits_between_emergency_and_normal(clock):
    p1 = _check_in(clock, 'P1')
    _check_in(clock, 'P2', priority=QueueEntry.PRIORITY_PRIORITY)
    _check_in(clock, 'P3', priority=QueueEntry.PRIORITY_EMERGENCY)
    assert _positions(p1.queue_id) == {'P3': 1, 'P2': 2, 'P1': 3}


def test_call_next_serves_highest_priority_then_arrival(clock, doctor_user):
    p1 = _check_in(clock, 'P1')
    _check_in(clock, 'P2')
    p3 = _check_in(clock, 'P3', entry_type=QueueEntry.TYPE_EMERGENCY)
    queue_id = p1.queue_id

    called = dispatcher.call_next(queue_id, operator=doctor_user, now=clock.tick())
    assert called.pk == p3.pk
    assert called.status == QueueEntry.STATUS_CALLED
    assert called.position_in_queue == 0
    assert _positions(queue_id) == {'P1': 1, 'P2': 2}

    assert dispatcher.call_next(queue_id, now=clock.tick()).patient_id == 'P1'
    assert dispatcher.call_next(queue_id, now=clock.tick()).patient_id == 'P2'
    with pytest.raises(EmptyQueue):
        dispatcher.call_next(queue_id, now=clock.tick())


def test_completed_consultation_feeds_wait_estimate(clock):
    _check_in(clock, 'P1')
    _check_in(clock, 'P2')
    p3 = _check_in(clock, 'P3', entry_type=QueueEntry.TYPE_EMERGENCY)
    dispatcher.call_next(p3.queue_id, now=clock.tick())
    started = dispatcher.start_consultation(p3.pk, now=clock.tick())
    assert started.status == QueueEntry.STATUS_IN_CONSULTATION
    waits = dict(QueueEntry.objects.filter(status='waiting').values_list('patient_id', 'estimated_wait_minutes'))
    assert waits == {'P1': 15, 'P2': 30}

    done = dispatcher.complete_consultation(p3.pk, now=clock.tick(minutes=20))
    assert done.status == QueueEntry.STATUS_COMPLETED
    assert done.position_in_queue is None
    queue = DailyQueue.objects.get(pk=p3.queue_id)
    assert queue.avg_consultation_minutes == pytest.approx(16.0)
    assert queue.consultation_samples == 1
    waits = dict(QueueEntry.objects.filter(status='waiting').values_list('patient_id', 'estimated_wait_minutes'))
    assert waits == {'P1': 0, 'P2': 16}


def test_duplicate_active_check_in_is_rejected(clock):
    first = _check_in(clock, 'P1')
    with pytest.raises(DuplicateCheckIn):
        _check_in(clock, 'P1', doctor_id='dr-y')
    queue = DailyQueue.objects.get(pk=first.queue_id)
    assert queue.current_token_number == 1
    assert not DailyQueue.objects.filter(doctor_id='dr-y', current_token_number__gt=0).exists()


def test_patient_may_check_in_again_after_finishing(clock):
    first = _check_in(clock, 'P1')
    dispatcher.cancel(first.pk, reason='left', now=clock.tick())
    again = _check_in(clock, 'P1')
    assert again.token_number == 'A002'
    assert again.position_in_queue == 1


def test_check_in_rejects_unknown_type_and_priority(clock):
    with pytest.raises(ValueError):
        _check_in(clock, 'P1', entry_type='vip')
    with pytest.raises(ValueError):
        _check_in(clock, 'P1', priority='urgent')
    assert not QueueEntry.objects.exists()


def test_check_in_strips_markup_from_free_text(clock):
    entry = _check_in(clock, 'P1', symptoms='  <span onclick="x()">fever</span> ', notes='')
    assert entry.symptoms == 'fever'
    assert entry.notes is None


def test_no_show_and_cancel_free_their_position(clock, reception):
    p1 = _check_in(clock, 'P1')
    p2 = _check_in(clock, 'P2')
    p3 = _check_in(clock, 'P3')
    dispatcher.call_next(p1.queue_id, now=clock.tick())
    gone = dispatcher.mark_no_show(p1.pk, operator=reception, reason='not present', now=clock.tick())
    assert gone.status == QueueEntry.STATUS_NO_SHOW
    assert gone.position_in_queue is None
    dispatcher.cancel(p2.pk, operator=reception, now=clock.tick())
    p3.refresh_from_db()
    assert (p3.position_in_queue, p3.estimated_wait_minutes) == (1, 0)
    last = QueueEntryTransition.objects.filter(entry=p1).order_by('timestamp').last()
    assert (last.to_status, last.reason, last.operator) == ('no_show', 'not present', reception)


def test_invalid_transitions_leave_entry_untouched(clock):
    entry = _check_in(clock, 'P1')
    with pytest.raises(InvalidTransition):
        dispatcher.complete_consultation(entry.pk, now=clock.tick())
    with pytest.raises(InvalidTransition):
        dispatcher.start_consultation(entry.pk, now=clock.tick())
    dispatcher.cancel(entry.pk, now=clock.tick())
    with pytest.raises(InvalidTransition):
        dispatcher.cancel(entry.pk, now=clock.tick())
    entry.refresh_from_db()
    assert entry.status == QueueEntry.STATUS_CANCELLED
    assert entry.transitions.count() == 2


def test_unknown_entry(clock):
    with pytest.raises(EntryNotFound):
        dispatcher.start_consultation('00000000-0000-0000-0000-000000000000', now=clock.tick())
    with pytest.raises(EntryNotFound):
        dispatcher.cancel('garbage', now=clock.tick())


def test_transfer_moves_patient_to_new_queue(clock, reception):
    p1 = _check_in(clock, 'P1')
    _check_in(clock, 'P2')
    _check_in(clock, 'Q1', doctor_id='dr-y', department_id='derm')

    new_entry = dispatcher.transfer(p1.pk, 'dr-y', 'derm', operator=reception, reason='specialist', now=clock.tick())
    p1.refresh_from_db()
    assert p1.status == QueueEntry.STATUS_TRANSFERRED
    assert p1.transferred_to_id == new_entry.pk
    assert p1.position_in_queue is None
    assert new_entry.queue.doctor_id == 'dr-y'
    assert new_entry.token_number == 'A002'
    assert new_entry.status == QueueEntry.STATUS_WAITING
    assert new_entry.position_in_queue == 2
    assert new_entry.patient_id == 'P1'
    assert _positions(p1.queue_id) == {'P2': 1}


def test_transfer_to_same_queue_is_rejected(clock):
    p1 = _check_in(clock, 'P1', department_id='cardio')
    with pytest.raises(InvalidTransition):
        dispatcher.transfer(p1.pk, 'dr-x', 'cardio', now=clock.tick())
    p1.refresh_from_db()
    assert p1.status == QueueEntry.STATUS_WAITING


def test_close_queue_is_idempotent(clock):
    p1 = _check_in(clock, 'P1')
    queue = dispatcher.close_queue(p1.queue_id, now=clock.tick())
    assert not queue.is_active
    version = queue.version
    assert dispatcher.close_queue(p1.queue_id, now=clock.tick()).version == version


def test_lost_compare_and_set_raises_conflict(clock, monkeypatch):
    p1 = _check_in(clock, 'P1')
    original = QueueEntry.objects.filter

    def stale_filter(*args, **kwargs):
        qs = original(*args, **kwargs)
        if 'status' in kwargs and 'pk' in kwargs:
            return qs.none()
        return qs

    monkeypatch.setattr(QueueEntry.objects, 'filter', stale_filter)
    with pytest.raises(ConcurrencyConflict) as exc:
        dispatcher.call_next(p1.queue_id, now=clock.tick())
    assert exc.value.retryable
    monkeypatch.undo()
    p1.refresh_from_db()
    assert p1.status == QueueEntry.STATUS_WAITING


def test_database_failure_becomes_persistence_unavailable(clock, monkeypatch):
    def broken(*args, **kwargs):
        raise OperationalError('database is locked')

    monkeypatch.setattr('queues.services.tokens.next_token', broken)
    with pytest.raises(PersistenceUnavailable) as exc:
        _check_in(clock, 'P1')
    assert exc.value.retryable
    assert not QueueEntry.objects.exists()


def test_events_follow_commit_with_increasing_versions(clock, monkeypatch, django_capture_on_commit_callbacks):
    published = []
    monkeypatch.setattr(notifier, 'publish', lambda queue_id, event, **kw: published.append((queue_id, event)))

    with django_capture_on_commit_callbacks(execute=True):
        p1 = _check_in(clock, 'P1')
        _check_in(clock, 'P2')
        dispatcher.call_next(p1.queue_id, now=clock.tick())
        dispatcher.start_consultation(p1.pk, now=clock.tick())
        dispatcher.complete_consultation(p1.pk, now=clock.tick(minutes=10))

    names = [event['event'] for _, event in published]
    assert names == [
        notifier.ENTRY_CHECKED_IN,
        notifier.ENTRY_CHECKED_IN,
        notifier.ENTRY_CALLED,
        notifier.ENTRY_CONSULTATION_STARTED,
        notifier.ENTRY_COMPLETED,
    ]
    versions = [event['version'] for _, event in published]
    assert versions == sorted(versions) and len(set(versions)) == len(versions)
    assert all(qid == p1.queue_id for qid, _ in published)
    assert published[2][1]['entry']['tokenNumber'] == 'A001'


def test_failed_operation_publishes_nothing(clock, monkeypatch, django_capture_on_commit_callbacks):
    published = []
    monkeypatch.setattr(notifier, 'publish', lambda queue_id, event, **kw: published.append(event))
    p1 = _check_in(clock, 'P1')
    with django_capture_on_commit_callbacks(execute=True):
        with pytest.raises(InvalidTransition):
            dispatcher.complete_consultation(p1.pk, now=clock.tick())
        with pytest.raises(DuplicateCheckIn):
            _check_in(clock, 'P1')
    assert published == []


def _replay(clock):
    history = []
    a = _check_in(clock, 'P1')
    history.append(_positions(a.queue_id))
    _check_in(clock, 'P2', entry_type=QueueEntry.TYPE_APPOINTMENT, appointment_id='apt-9')
    _check_in(clock, 'P3', entry_type=QueueEntry.TYPE_EMERGENCY)
    history.append(_positions(a.queue_id))
    first = dispatcher.call_next(a.queue_id, now=clock.tick())
    dispatcher.start_consultation(first.pk, now=clock.tick())
    dispatcher.complete_consultation(first.pk, now=clock.tick(minutes=12))
    history.append(_positions(a.queue_id))
    tokens = list(QueueEntry.objects.order_by('sequence').values_list('patient_id', 'token_number', 'status'))
    return tokens, history


def test_replay_with_fixed_clock_is_deterministic(clock):
    start = clock.now
    first = _replay(clock)
    QueueEntry.objects.all().delete()
    DailyQueue.objects.all().delete()
    clock.now = start
    assert _replay(clock) == first


def test_transfer_from_past_day_lands_in_todays_queue(clock):
    p1 = _check_in(clock, 'P1')
    dispatcher.close_queue(p1.queue_id, now=clock.tick())
    next_day = clock.tick(days=1)

    new_entry = dispatcher.transfer(p1.pk, 'dr-y', now=next_day)
    assert new_entry.queue_date == next_day.date()
    assert new_entry.queue.queue_date == next_day.date()
    assert new_entry.queue.is_active
    source = DailyQueue.objects.get(pk=p1.queue_id)
    assert not source.is_active
    assert not DailyQueue.objects.filter(doctor_id='dr-y', queue_date=p1.queue_date).exists()


def test_transfer_to_same_doctor_on_a_later_day_is_allowed(clock):
    p1 = _check_in(clock, 'P1')
    new_entry = dispatcher.transfer(p1.pk, 'dr-x', now=clock.tick(days=1))
    assert new_entry.queue_id != p1.queue_id
    assert new_entry.token_number == 'A001'


def test_call_next_on_closed_queue_is_rejected(clock):
    p1 = _check_in(clock, 'P1')
    dispatcher.close_queue(p1.queue_id, now=clock.tick())
    with pytest.raises(QueueClosed):
        dispatcher.call_next(p1.queue_id, now=clock.tick())
    p1.refresh_from_db()
    assert p1.status == QueueEntry.STATUS_WAITING


def _run_together(target, count):
    barrier = threading.Barrier(count)
    results, errors = [], []

    def worker(n):
        try:
            barrier.wait()
            results.append(target(n))
        except Exception as exc:
            errors.append(exc)
        finally:
            connection.close()

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results, errors


@pytest.mark.django_db(transaction=True)
def test_concurrent_call_next_serves_every_waiting_patient(clock):
    head = _check_in(clock, 'P0')
    for n in range(1, 6):
        _check_in(clock, f'P{n}')

    results, errors = _run_together(lambda n: dispatcher.call_next(head.queue_id).pk, 6)
    assert errors == []
    assert len(results) == len(set(results)) == 6
    assert QueueEntry.objects.filter(status=QueueEntry.STATUS_CALLED).count() == 6
    assert not QueueEntry.objects.filter(status=QueueEntry.STATUS_WAITING).exists()


@pytest.mark.django_db(transaction=True)
def test_concurrent_check_ins_get_consecutive_tokens():
    results, errors = _run_together(lambda n: dispatcher.check_in(f'P{n}', 'dr-x').token_number, 6)
    assert errors == []
    assert sorted(results) == ['A001', 'A002', 'A003', 'A004', 'A005', 'A006']
    assert DailyQueue.objects.count() == 1
    queue = DailyQueue.objects.get()
    assert queue.current_token_number == 6
    positions = sorted(queue.entries.values_list('position_in_queue', flat=True))
    assert positions == [1, 2, 3, 4, 5, 6]
