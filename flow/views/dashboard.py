"""
Dashboard aggregates: per-ward and per-department breakdowns and SLAs.

These are derived views for the dashboards, never authoritative state.
Hospital-wide breakdowns are cached for ``FLOW_AGGREGATE_CACHE_SECONDS``
and dropped whenever a ledger write commits.
"""
from __future__ import annotations

from datetime import timedelta

from django.conf import settings
from rest_framework.decorators import api_view, permission_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response

from ..models import QueueStatus
from ..serializers.queues import SlaQuerySerializer
from ..services import coordinator, events
from ..services.cache import DEPARTMENTS_KEY, WARDS_KEY, cached_aggregate


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def ward_breakdown(request):
    return Response({'ok': True, 'data': cached_aggregate(WARDS_KEY, coordinator.ward_breakdown)})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def department_breakdown(request):
    return Response({'ok': True, 'data': cached_aggregate(DEPARTMENTS_KEY, coordinator.department_breakdown)})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def sla(request):
    """Wait/service percentiles for one department over a trailing window.

    With ``p`` the single percentile for ``status`` is returned, otherwise
    the full median/p95 report.
    """
    q = SlaQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    d = q.validated_data
    window = timedelta(hours=d.get('hours', settings.FLOW_SLA_WINDOW_HOURS))
    if 'p' in d:
        state = d.get('status', QueueStatus.WAITING)
        minutes = events.percentile_wait(d['department'], state, window, d['p'])
        return Response({'ok': True, 'data': {
            'department': d['department'],
            'status': state,
            'p': d['p'],
            'minutes': minutes,
            'level': events.sla_level(minutes, state),
        }})
    return Response({'ok': True, 'data': events.sla_report(d['department'], window)})
