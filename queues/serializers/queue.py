import bleach
from rest_framework import serializers

from queues.models import QueueEntry


class CheckInSerializer(serializers.Serializer):
    patientId = serializers.CharField(max_length=64)
    doctorId = serializers.CharField(max_length=64)
    departmentId = serializers.CharField(max_length=64, required=False, allow_blank=True, allow_null=True)
    appointmentId = serializers.CharField(max_length=64, required=False, allow_blank=True, allow_null=True)
    entryType = serializers.ChoiceField(
        choices=[c for c, _ in QueueEntry.ENTRY_TYPE_CHOICES], required=False, default=QueueEntry.TYPE_WALK_IN
    )
    priority = serializers.ChoiceField(
        choices=[c for c, _ in QueueEntry.PRIORITY_CHOICES], required=False, allow_null=True
    )
    symptoms = serializers.CharField(max_length=2000, required=False, allow_blank=True, allow_null=True)
    notes = serializers.CharField(max_length=2000, required=False, allow_blank=True, allow_null=True)

    def validate_patientId(self, v):
        v = bleach.clean((v or '').strip(), strip=True)
        if not v:
            raise serializers.ValidationError('patientId is required')
        return v

    def validate_doctorId(self, v):
        v = bleach.clean((v or '').strip(), strip=True)
        if not v:
            raise serializers.ValidationError('doctorId is required')
        return v


class EntryActionSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')


class TransferSerializer(EntryActionSerializer):
    doctorId = serializers.CharField(max_length=64)
    departmentId = serializers.CharField(max_length=64, required=False, allow_blank=True, allow_null=True)


class BoardQuerySerializer(serializers.Serializer):
    date = serializers.DateField(required=False)
    doctorId = serializers.CharField(max_length=64, required=False)
    departmentId = serializers.CharField(max_length=64, required=False)


class PatientStatusQuerySerializer(serializers.Serializer):
    patientId = serializers.CharField(max_length=64)
    date = serializers.DateField(required=False)
