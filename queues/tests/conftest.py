import datetime

import pytest
from django.utils import timezone

from queues.models import User


class Clock:
    """Deterministic clock; every ``tick`` advances it by ``step``."""

    def __init__(self, start, step=datetime.timedelta(minutes=1)):
        self.now = start
        self.step = step

    def tick(self, **delta):
        self.now = self.now + (datetime.timedelta(**delta) if delta else self.step)
        return self.now


@pytest.fixture
def clock():
    return Clock(datetime.datetime(2026, 3, 2, 9, 0, tzinfo=datetime.timezone.utc))


@pytest.fixture
def day(clock):
    return timezone.localdate(clock.now)


@pytest.fixture
def reception(db):
    return User.objects.create_user(username='desk1', password='P@ssw0rd1', role=User.ROLE_RECEPTION)


@pytest.fixture
def doctor_user(db):
    return User.objects.create_user(username='drx', password='P@ssw0rd1', role=User.ROLE_DOCTOR)


@pytest.fixture
def admin_user(db):
    return User.objects.create_user(username='admin1', password='P@ssw0rd1', role=User.ROLE_ADMIN)


@pytest.fixture
def display_user(db):
    return User.objects.create_user(username='screen1', password='P@ssw0rd1', role=User.ROLE_DISPLAY)
