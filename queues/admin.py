"""
Django admin registrations for the queue models.

Lets administrators inspect daily queues, their entries and the
transition log via ``/admin/``.
"""
from django.contrib import admin

from .models import DailyQueue, QueueEntry, QueueEntryTransition, User


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ('username', 'role', 'is_staff', 'is_superuser')
    list_filter = ('role',)
    search_fields = ('username', 'first_name', 'last_name')


@admin.register(DailyQueue)
class DailyQueueAdmin(admin.ModelAdmin):
    list_display = ('id', 'doctor_id', 'department_id', 'queue_date', 'current_token_number', 'is_active', 'version')
    list_filter = ('is_active', 'queue_date')
    search_fields = ('id', 'doctor_id', 'department_id')


@admin.register(QueueEntry)
class QueueEntryAdmin(admin.ModelAdmin):
    list_display = ('token_number', 'queue', 'patient_id', 'entry_type', 'priority', 'status', 'position_in_queue')
    list_filter = ('status', 'priority', 'entry_type', 'queue_date')
    search_fields = ('id', 'patient_id', 'token_number', 'appointment_id')


@admin.register(QueueEntryTransition)
class QueueEntryTransitionAdmin(admin.ModelAdmin):
    list_display = ('entry', 'from_status', 'to_status', 'operator', 'timestamp')
    list_filter = ('to_status',)
    search_fields = ('entry__id', 'entry__token_number', 'operator__username')
