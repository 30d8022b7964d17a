import bleach
from rest_framework import serializers

from flow.models import AssignmentStatus, BedStatus, BedType


class BedCreateSerializer(serializers.Serializer):
    bedNumber = serializers.CharField(max_length=32)
    ward = serializers.CharField(max_length=100)
    bedType = serializers.ChoiceField(choices=BedType.choices, required=False, default=BedType.STANDARD)
    location = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')
    equipment = serializers.ListField(child=serializers.CharField(max_length=100), required=False, default=list)
    notes = serializers.CharField(max_length=2000, required=False, allow_blank=True, default='')

    def validate_bedNumber(self, v):
        v = bleach.clean((v or '').strip(), strip=True)
        if not v:
            raise serializers.ValidationError('Bed number is required')
        return v

    def validate_ward(self, v):
        v = bleach.clean((v or '').strip(), strip=True)
        if not v:
            raise serializers.ValidationError('Ward is required')
        return v


class BedUpdateSerializer(BedCreateSerializer):
    """All fields optional; status is not editable through this path."""
    bedNumber = serializers.CharField(max_length=32, required=False)
    ward = serializers.CharField(max_length=100, required=False)
    bedType = serializers.ChoiceField(choices=BedType.choices, required=False)
    location = serializers.CharField(max_length=255, required=False, allow_blank=True)
    equipment = serializers.ListField(child=serializers.CharField(max_length=100), required=False)
    notes = serializers.CharField(max_length=2000, required=False, allow_blank=True)

    def validate(self, attrs):
        if 'status' in self.initial_data:
            raise serializers.ValidationError({'status': 'Bed status changes go through assign, discharge or overrides'})
        return attrs


class BedListQuerySerializer(serializers.Serializer):
    ward = serializers.CharField(max_length=100, required=False)
    status = serializers.ChoiceField(choices=BedStatus.choices, required=False)
    bedType = serializers.ChoiceField(choices=BedType.choices, required=False)
    hasPatient = serializers.ChoiceField(choices=['assigned', 'unassigned'], required=False)


class OverrideSerializer(serializers.Serializer):
    on = serializers.BooleanField()


class AssignSerializer(serializers.Serializer):
    bedId = serializers.UUIDField()
    patientId = serializers.UUIDField()
    notes = serializers.CharField(max_length=2000, required=False, allow_blank=True, default='')


class DischargeSerializer(serializers.Serializer):
    notes = serializers.CharField(max_length=2000, required=False, allow_blank=True, allow_null=True)


class TransferSerializer(serializers.Serializer):
    toBedId = serializers.UUIDField()
    notes = serializers.CharField(max_length=2000, required=False, allow_blank=True, allow_null=True)


class AssignmentListQuerySerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=[*AssignmentStatus.values, 'all'], required=False,
                                     default=AssignmentStatus.ACTIVE)
    ward = serializers.CharField(max_length=100, required=False)
    bedId = serializers.UUIDField(required=False)
    start = serializers.DateTimeField(required=False)
    end = serializers.DateTimeField(required=False)
