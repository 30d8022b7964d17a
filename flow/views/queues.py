"""
Check-in and department queue endpoints.

Front-desk and clinical staff register arrivals, move entries through
the queue state machine and adjust triage priority.  The serving order
is always recomputed from stored rows, so any board can reload the lane
at any time and see the same order.
"""
from __future__ import annotations

from django.utils import timezone
from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ..models import QueueStatus
from ..permissions import IsQueueStaff, IsQueueStaffOrReadOnly, IsWardStaff
from ..serializers.queues import (
    AdmitSerializer,
    CheckInSerializer,
    EnqueueSerializer,
    NextQuerySerializer,
    PrioritySerializer,
    QueueQuerySerializer,
    TransitionSerializer,
)
from ..services import coordinator, events, queues, resources
from ..services.triage import STANDARD


def _priority(data) -> int:
    # an explicit number wins over a triage label
    if data.get('priority') is not None:
        return data['priority']
    if data.get('triageCategory') is not None:
        return data['triageCategory']
    return STANDARD


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsQueueStaff])
def checkins(request):
    """Register an arrival; the returned entry id is the patient's token."""
    s = CheckInSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    entry = queues.check_in(
        s.validated_data['patientId'],
        s.validated_data['department'],
        priority=_priority(s.validated_data),
        receptionist=request.user,
    )
    return Response({'ok': True, 'data': {
        'token': str(entry.pk),
        'checkinId': str(entry.checkin_id),
        **queues.format_entry(entry),
    }}, status=status.HTTP_201_CREATED)


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated, IsQueueStaffOrReadOnly])
def queue(request):
    if request.method == 'POST':
        s = EnqueueSerializer(data=request.data)
        s.is_valid(raise_exception=True)
        entry = queues.enqueue(
            s.validated_data['department'],
            s.validated_data['checkinId'],
            priority=_priority(s.validated_data),
        )
        return Response({'ok': True, 'data': queues.format_entry(entry)}, status=status.HTTP_201_CREATED)

    q = QueueQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    department = q.validated_data['department']
    rows = queues.department_queue(department, q.validated_data['status'])
    return Response({'ok': True, 'data': rows, 'meta': {'department': department, 'count': len(rows)}})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def queue_next(request):
    q = NextQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    entry = queues.next_in_line(q.validated_data['department'])
    return Response({'ok': True, 'data': queues.format_entry(entry) if entry else None})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsQueueStaff])
def queue_transition(request, entry_id):
    s = TransitionSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    entry = queues.transition(entry_id, s.validated_data['status'])
    return Response({'ok': True, 'data': queues.format_entry(entry)})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsQueueStaff])
def queue_priority(request, entry_id):
    s = PrioritySerializer(data=request.data)
    s.is_valid(raise_exception=True)
    entry = queues.reprioritize(entry_id, _priority(s.validated_data))
    return Response({'ok': True, 'data': queues.format_entry(entry)})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def queue_events(request, entry_id):
    """Status history of one entry with time spent waiting and in service."""
    trail = events.history(entry_id)
    now = timezone.now()
    waiting = events.time_in(trail, QueueStatus.WAITING, now).total_seconds() / 60
    in_service = events.time_in(trail, QueueStatus.IN_SERVICE, now).total_seconds() / 60
    return Response({'ok': True, 'data': {
        'entryId': str(entry_id),
        'events': [events.format_event(e) for e in trail],
        'waitingMinutes': round(waiting, 2),
        'serviceMinutes': round(in_service, 2),
        'waitingLevel': events.sla_level(waiting, QueueStatus.WAITING),
        'serviceLevel': events.sla_level(in_service, QueueStatus.IN_SERVICE),
    }})


@api_view(['POST'])
@permission_classes([IsAuthenticated, IsWardStaff])
def queue_admit(request, entry_id):
    """Close the queue visit and place the patient in a bed, all or nothing."""
    s = AdmitSerializer(data=request.data)
    s.is_valid(raise_exception=True)
    assignment = coordinator.admit_from_queue(
        entry_id,
        s.validated_data['bedId'],
        assigned_by=request.user,
        notes=s.validated_data['notes'],
    )
    return Response(
        {'ok': True, 'data': resources.format_assignment(assignment)}, status=status.HTTP_201_CREATED
    )
