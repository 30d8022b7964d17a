from rest_framework import serializers

from flow.models import QueueStatus
from flow.services.triage import resolve_priority


class PriorityField(serializers.Field):
    """Numeric rank or triage category label (``Emergency``, ``Urgent``...)."""

    def to_internal_value(self, data):
        try:
            return resolve_priority(data)
        except ValueError as exc:
            raise serializers.ValidationError(str(exc))

    def to_representation(self, value):
        return value


class CheckInSerializer(serializers.Serializer):
    patientId = serializers.UUIDField()
    department = serializers.CharField(max_length=100)
    priority = PriorityField(required=False)
    triageCategory = PriorityField(required=False)


class EnqueueSerializer(serializers.Serializer):
    checkinId = serializers.UUIDField()
    department = serializers.CharField(max_length=100)
    priority = PriorityField(required=False)
    triageCategory = PriorityField(required=False)


class QueueQuerySerializer(serializers.Serializer):
    department = serializers.CharField(max_length=100)
    status = serializers.ChoiceField(choices=[*QueueStatus.values, 'all'], required=False,
                                     default=QueueStatus.WAITING)


class NextQuerySerializer(serializers.Serializer):
    department = serializers.CharField(max_length=100)


class TransitionSerializer(serializers.Serializer):
    # unknown targets fall through to the state machine as invalid transitions
    status = serializers.CharField(max_length=20)


class PrioritySerializer(serializers.Serializer):
    priority = PriorityField(required=False)
    triageCategory = PriorityField(required=False)

    def validate(self, attrs):
        if attrs.get('priority') is None and attrs.get('triageCategory') is None:
            raise serializers.ValidationError('priority or triageCategory is required')
        return attrs


class AdmitSerializer(serializers.Serializer):
    bedId = serializers.UUIDField()
    notes = serializers.CharField(max_length=2000, required=False, allow_blank=True, default='')


class SlaQuerySerializer(serializers.Serializer):
    department = serializers.CharField(max_length=100)
    status = serializers.ChoiceField(choices=[QueueStatus.WAITING, QueueStatus.IN_SERVICE], required=False)
    p = serializers.FloatField(min_value=0, max_value=100, required=False)
    hours = serializers.FloatField(min_value=0, required=False)


class QueueEventsExportQuerySerializer(serializers.Serializer):
    department = serializers.CharField(max_length=100, required=False)
    toStatus = serializers.ChoiceField(choices=QueueStatus.values, required=False)
    start = serializers.DateTimeField(required=False)
    end = serializers.DateTimeField(required=False)
