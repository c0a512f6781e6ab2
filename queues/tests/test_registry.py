import datetime

import pytest
from django.test import override_settings

from queues.exceptions import QueueNotFound
from queues.models import DailyQueue
from queues.services import registry

pytestmark = pytest.mark.django_db


def test_resolve_or_create_is_idempotent(clock, day):
    first = registry.resolve_or_create('dr-x', 'cardio', now=clock.now)
    second = registry.resolve_or_create('dr-x', 'cardio', day)
    assert first.pk == second.pk
    assert first.queue_date == day
    assert DailyQueue.objects.count() == 1


def test_department_and_day_make_distinct_queues(clock, day):
    base = registry.resolve_or_create('dr-x', now=clock.now)
    by_dept = registry.resolve_or_create('dr-x', 'cardio', now=clock.now)
    next_day = registry.resolve_or_create('dr-x', queue_date=day + datetime.timedelta(days=1), now=clock.now)
    assert len({base.pk, by_dept.pk, next_day.pk}) == 3
    assert base.department_id == ''


@override_settings(QUEUE_DEPARTMENT_PREFIXES={'cardio': 'C'})
def test_department_prefix(clock):
    assert registry.resolve_or_create('dr-x', 'cardio', now=clock.now).token_prefix == 'C'
    assert registry.resolve_or_create('dr-x', 'derm', now=clock.now).token_prefix == 'A'


def test_closed_queue_is_reopened_with_counter_kept(clock):
    queue = registry.resolve_or_create('dr-x', now=clock.now)
    DailyQueue.objects.filter(pk=queue.pk).update(is_active=False, current_token_number=4)
    again = registry.resolve_or_create('dr-x', now=clock.now)
    assert again.pk == queue.pk
    assert again.is_active
    assert again.current_token_number == 4


def test_average_carries_over_from_previous_day(clock, day):
    DailyQueue.objects.create(
        doctor_id='dr-x', queue_date=day - datetime.timedelta(days=3),
        avg_consultation_minutes=11.5, consultation_samples=8,
    )
    queue = registry.resolve_or_create('dr-x', now=clock.now)
    assert queue.avg_consultation_minutes == 11.5
    assert queue.consultation_samples == 8
    assert registry.resolve_or_create('dr-y', now=clock.now).avg_consultation_minutes == 15.0


def test_get_queue_not_found():
    with pytest.raises(QueueNotFound):
        registry.get_queue('00000000-0000-0000-0000-000000000000')
    with pytest.raises(QueueNotFound):
        registry.get_queue('not-a-uuid')


def test_active_queues_filters(clock, day):
    qx = registry.resolve_or_create('dr-x', 'cardio', now=clock.now)
    qy = registry.resolve_or_create('dr-y', now=clock.now)
    DailyQueue.objects.filter(pk=qy.pk).update(is_active=False)
    assert list(registry.active_queues(day)) == [qx]
    assert list(registry.active_queues(day, department_id='derm')) == []
    assert list(registry.active_queues(day, doctor_id='dr-x')) == [qx]


def test_losing_a_creation_race_returns_the_winners_queue(clock, monkeypatch):
    winner = registry.resolve_or_create('dr-x', now=clock.now)
    original = DailyQueue.objects.filter
    missed = []

    def stale_first_lookup(*args, **kwargs):
        qs = original(*args, **kwargs)
        if not missed:
            missed.append(kwargs)
            return qs.none()
        return qs

    monkeypatch.setattr(DailyQueue.objects, 'filter', stale_first_lookup)
    loser = registry.resolve_or_create('dr-x', now=clock.now)
    monkeypatch.undo()

    assert missed and missed[0]['doctor_id'] == 'dr-x'
    assert loser.pk == winner.pk
    assert DailyQueue.objects.count() == 1


def test_past_day_closed_queue_stays_closed(clock, day):
    yesterday = day - datetime.timedelta(days=1)
    old = registry.resolve_or_create('dr-x', queue_date=yesterday, now=clock.now)
    DailyQueue.objects.filter(pk=old.pk).update(is_active=False)
    again = registry.resolve_or_create('dr-x', queue_date=yesterday, now=clock.now)
    assert again.pk == old.pk
    assert not again.is_active
    old.refresh_from_db()
    assert not old.is_active
