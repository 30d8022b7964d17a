"""
Bed inventory and bed assignment endpoints.

Reads are open to any authenticated staff member.  Creating and editing
beds is reserved for hospital admins; placing, discharging and moving
patients, as well as the maintenance and reservation overrides, are
nursing actions.  Every write goes through ``flow.services.resources``
so the one-occupant-per-bed rule holds whichever endpoint is used.
"""
from __future__ import annotations

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ..permissions import IsAdminOrReadOnly, IsAdminRole, IsWardStaff, IsWardStaffOrReadOnly
from ..serializers.beds import (
    AssignmentListQuerySerializer,
    AssignSerializer,
    BedCreateSerializer,
    BedListQuerySerializer,
    BedUpdateSerializer,
    DischargeSerializer,
    OverrideSerializer,
    TransferSerializer,
)
from ..services import coordinator, resources
from ..services.cache import BED_SUMMARY_KEY, cached_aggregate


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, IsAdminOrReadOnly])
def beds(request):
    """List beds with their occupants, or create a bed (admin)."""
    if request.method == 'POST':
        s = BedCreateSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        d = s.validated_data
        bed = resources.create_bed(
            number=d['bedNumber'],
            ward=d['ward'],
            bed_type=d['bedType'],
            location=d['location'],
            equipment=d['equipment'],
            notes=d['notes'],
        )
        return Response({'ok': True, 'data': resources.format_bed(bed)}, status=status.HTTP_201_CREATED)

    q = BedListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    qs = resources.list_beds(
        ward=q.validated_data.get('ward'),
        status=q.validated_data.get('status'),
        bed_type=q.validated_data.get('bedType'),
        has_patient=q.validated_data.get('hasPatient'),
    )
    return Response({
        'ok': True,
        'data': [resources.format_bed(b) for b in qs],
        'summary': resources.summary(q.validated_data.get('ward')),
    })


@api_view(['PATCH'])
@permission_classes([IsAuthenticated, IsAdminRole])
def bed_detail(request, bed_id):
    s = BedUpdateSerializer(data=request.data, partial=True)
    s.is_valid(raise_exception=True)
    d = s.validated_data
    bed = resources.update_bed(
        bed_id,
        number=d.get('bedNumber'),
        ward=d.get('ward'),
        bed_type=d.get('bedType'),
        location=d.get('location'),
        equipment=d.get('equipment'),
        notes=d.get('notes'),
    )
    return Response({'ok': True, 'data': resources.format_bed(bed)})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsWardStaff])
def bed_maintenance(request, bed_id):
    s = OverrideSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    bed = resources.set_maintenance(bed_id, s.validated_data['on'])
    return Response({'ok': True, 'data': resources.format_bed(bed)})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsWardStaff])
def bed_reserve(request, bed_id):
    s = OverrideSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    bed = resources.set_reserved(bed_id, s.validated_data['on'])
    return Response({'ok': True, 'data': resources.format_bed(bed)})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def bed_summary(request):
    """Occupancy counts, optionally for one ward (cached briefly when hospital-wide)."""
    ward = request.query_params.get('ward')
    if ward:
        data = resources.summary(ward)
    else:
        data = cached_aggregate(BED_SUMMARY_KEY, resources.summary)
    return Response({'ok': True, 'data': data})


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, IsWardStaffOrReadOnly])
def assignments(request):
    """Assignment history (Active by default), or place a patient in a bed."""
    if request.method == 'POST':
        s = AssignSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        assignment = resources.assign(
            s.validated_data['bedId'],
            s.validated_data['patientId'],
            assigned_by=request.user,
            notes=s.validated_data['notes'],
        )
        return Response(
            {'ok': True, 'data': resources.format_assignment(assignment)}, status=status.HTTP_201_CREATED
        )

    q = AssignmentListQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    qs = resources.list_assignments(
        status=q.validated_data['status'],
        ward=q.validated_data.get('ward'),
        bed_id=q.validated_data.get('bedId'),
        start=q.validated_data.get('start'),
        end=q.validated_data.get('end'),
    )
    return Response({'ok': True, 'data': [resources.format_assignment(a) for a in qs]})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsWardStaff])
def assignment_discharge(request, assignment_id):
    s = DischargeSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    assignment = coordinator.discharge_and_release(assignment_id, s.validated_data.get('notes'))
    return Response({'ok': True, 'data': resources.format_assignment(assignment)})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsWardStaff])
def assignment_transfer(request, assignment_id):
    s = TransferSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    assignment = resources.transfer(
        assignment_id,
        s.validated_data['toBedId'],
        assigned_by=request.user,
        notes=s.validated_data.get('notes'),
    )
    return Response({'ok': True, 'data': resources.format_assignment(assignment)}, status=status.HTTP_201_CREATED)
