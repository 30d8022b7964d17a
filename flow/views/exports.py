"""Read-only history feeds for the reporting collaborator."""
from rest_framework.decorators import api_view, permission_classes, throttle_classes
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.throttling import UserRateThrottle

from ..serializers.beds import AssignmentListQuerySerializer
from ..serializers.queues import QueueEventsExportQuerySerializer
from ..services import events, resources

EXPORT_LIMIT = 10000


class ExportRateThrottle(UserRateThrottle):
    scope = 'flow_export'


@api_view(['GET'])
@permission_classes([IsAuthenticated])
@throttle_classes([ExportRateThrottle])
def bed_assignments(request):
    q = AssignmentListQuerySerializer(data={'status': 'all', **request.query_params.dict()})
    q.is_valid(raise_exception=True)
    qs = resources.list_assignments(
        status=q.validated_data['status'],
        ward=q.validated_data.get('ward'),
        bed_id=q.validated_data.get('bedId'),
        start=q.validated_data.get('start'),
        end=q.validated_data.get('end'),
    )
    rows = [resources.format_assignment(a) for a in qs[:EXPORT_LIMIT]]
    return Response({'ok': True, 'data': rows, 'meta': {'count': len(rows)}})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
@throttle_classes([ExportRateThrottle])
def queue_events(request):
    q = QueueEventsExportQuerySerializer(data=request.query_params)
    q.is_valid(raise_exception=True)
    qs = events.list_events(
        start=q.validated_data.get('start'),
        end=q.validated_data.get('end'),
        department=q.validated_data.get('department'),
        to_status=q.validated_data.get('toStatus'),
    )
    rows = [events.format_event(e) for e in qs[:EXPORT_LIMIT]]
    return Response({'ok': True, 'data': rows, 'meta': {'count': len(rows)}})
