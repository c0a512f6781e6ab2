"""
Database models for the queue dispatcher.

A :class:`DailyQueue` exists per doctor (optionally per department) per
calendar day and owns the token counter.  Each check-in becomes a
:class:`QueueEntry` that moves through a small status lifecycle; every
status change is recorded as a :class:`QueueEntryTransition`.

Patients, doctors and departments are owned by other systems and are
referenced here by their opaque string identifiers only.
"""
from __future__ import annotations

import uuid

from django.conf import settings
from django.contrib.auth.models import AbstractUser
from django.db import models
from django.db.models import Q


class User(AbstractUser):
    """Staff account with a desk role.

    ``display`` accounts are used by waiting-room screens and may only
    read queue state.
    """
    ROLE_RECEPTION = 'reception'
    ROLE_DOCTOR = 'doctor'
    ROLE_ADMIN = 'admin'
    ROLE_DISPLAY = 'display'
    ROLE_CHOICES = [
        (ROLE_RECEPTION, 'Reception'),
        (ROLE_DOCTOR, 'Doctor'),
        (ROLE_ADMIN, 'Administrator'),
        (ROLE_DISPLAY, 'Display'),
    ]
    role = models.CharField(max_length=16, choices=ROLE_CHOICES, default=ROLE_RECEPTION)

    def __str__(self) -> str:
        return f"{self.username} ({self.role})"


class DailyQueue(models.Model):
    """The ordered set of check-ins for one doctor on one day.

    ``department_id`` is an empty string rather than NULL when the queue is
    not scoped to a department, so the uniqueness constraint also covers
    department-less queues.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    doctor_id = models.CharField(max_length=64, db_index=True)
    department_id = models.CharField(max_length=64, blank=True, default='')
    queue_date = models.DateField(db_index=True)
    token_prefix = models.CharField(max_length=8, default='A')
    # Last issued counter value; only ever incremented
    current_token_number = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True, db_index=True)
    avg_consultation_minutes = models.FloatField(default=15.0)
    consultation_samples = models.PositiveIntegerField(default=0)
    # Bumped on every committed mutation and stamped onto broadcast events
    version = models.PositiveBigIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['doctor_id', 'department_id', 'queue_date'],
                name='uniq_daily_queue_per_doctor_department_day',
            ),
        ]
        indexes = [
            models.Index(fields=['queue_date', 'is_active'], name='queues_dq_date_active_idx'),
        ]

    def __str__(self) -> str:
        dept = f"/{self.department_id}" if self.department_id else ''
        return f"Queue {self.doctor_id}{dept} {self.queue_date:%F}"


class QueueEntry(models.Model):
    """One patient's visit to a daily queue."""
    TYPE_APPOINTMENT = 'appointment'
    TYPE_WALK_IN = 'walk_in'
    TYPE_EMERGENCY = 'emergency'
    ENTRY_TYPE_CHOICES = [
        (TYPE_APPOINTMENT, 'Appointment'),
        (TYPE_WALK_IN, 'Walk-in'),
        (TYPE_EMERGENCY, 'Emergency'),
    ]

    PRIORITY_NORMAL = 'normal'
    PRIORITY_PRIORITY = 'priority'
    PRIORITY_EMERGENCY = 'emergency'
    PRIORITY_CHOICES = [
        (PRIORITY_NORMAL, 'Normal'),
        (PRIORITY_PRIORITY, 'Priority'),
        (PRIORITY_EMERGENCY, 'Emergency'),
    ]

    STATUS_WAITING = 'waiting'
    STATUS_CALLED = 'called'
    STATUS_IN_CONSULTATION = 'in_consultation'
    STATUS_COMPLETED = 'completed'
    STATUS_NO_SHOW = 'no_show'
    STATUS_CANCELLED = 'cancelled'
    STATUS_TRANSFERRED = 'transferred'
    STATUS_CHOICES = [
        (STATUS_WAITING, 'Waiting'),
        (STATUS_CALLED, 'Called'),
        (STATUS_IN_CONSULTATION, 'In consultation'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_NO_SHOW, 'No show'),
        (STATUS_CANCELLED, 'Cancelled'),
        (STATUS_TRANSFERRED, 'Transferred'),
    ]
    ACTIVE_STATUSES = (STATUS_WAITING, STATUS_CALLED, STATUS_IN_CONSULTATION)
    SERVING_STATUSES = (STATUS_CALLED, STATUS_IN_CONSULTATION)

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    queue = models.ForeignKey(DailyQueue, related_name='entries', on_delete=models.CASCADE)
    # Copied from the queue so the one-active-entry-per-day rule can be a constraint
    queue_date = models.DateField()
    patient_id = models.CharField(max_length=64, db_index=True)
    appointment_id = models.CharField(max_length=64, blank=True, null=True)
    sequence = models.PositiveIntegerField()
    token_number = models.CharField(max_length=32)
    entry_type = models.CharField(max_length=16, choices=ENTRY_TYPE_CHOICES, default=TYPE_WALK_IN)
    priority = models.CharField(max_length=16, choices=PRIORITY_CHOICES, default=PRIORITY_NORMAL)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_WAITING, db_index=True)
    position_in_queue = models.PositiveIntegerField(null=True, blank=True)
    estimated_wait_minutes = models.PositiveIntegerField(null=True, blank=True)
    symptoms = models.TextField(blank=True, null=True)
    notes = models.TextField(blank=True, null=True)
    created_by = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL, related_name='queue_entries'
    )
    transferred_to = models.OneToOneField(
        'self', null=True, blank=True, on_delete=models.SET_NULL, related_name='transferred_from'
    )
    checked_in_at = models.DateTimeField()
    called_at = models.DateTimeField(null=True, blank=True)
    consultation_started_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['queue', 'sequence'], name='uniq_entry_sequence_per_queue'),
            models.UniqueConstraint(fields=['queue', 'token_number'], name='uniq_entry_token_per_queue'),
            models.UniqueConstraint(
                fields=['patient_id', 'queue_date'],
                condition=Q(status__in=['waiting', 'called', 'in_consultation']),
                name='uniq_active_entry_per_patient_day',
            ),
        ]
        indexes = [
            models.Index(fields=['queue', 'status'], name='queues_entry_queue_status_idx'),
        ]

    @property
    def is_active(self) -> bool:
        return self.status in self.ACTIVE_STATUSES

    def __str__(self) -> str:
        return f"{self.token_number} ({self.status})"


class QueueEntryTransition(models.Model):
    """Records a status transition for a queue entry."""
    entry = models.ForeignKey(QueueEntry, related_name='transitions', on_delete=models.CASCADE)
    from_status = models.CharField(max_length=20, null=True, blank=True)
    to_status = models.CharField(max_length=20)
    operator = models.ForeignKey(
        settings.AUTH_USER_MODEL, null=True, blank=True, on_delete=models.SET_NULL, related_name='queue_transitions'
    )
    timestamp = models.DateTimeField()
    reason = models.CharField(max_length=255, blank=True)

    class Meta:
        indexes = [
            models.Index(fields=['entry', 'timestamp'], name='queues_trans_entry_ts_idx'),
        ]

    def __str__(self) -> str:
        return f"{self.entry_id}: {self.from_status} → {self.to_status}"
