"""
Flow coordinator.

Operations that span the queue ledger and the resource ledger, and the
derived per-ward / per-department views the dashboards read.  Both
ledgers live in one database, so cross-ledger commands are a single
transaction: when any step raises, nothing from the earlier steps is
committed.
"""
from __future__ import annotations

from typing import Optional

import structlog
from django.db.models import Count, Max, Min, Q
from django.utils import timezone

from flow.models import AssignmentStatus, Bed, BedAssignment, BedStatus, QueueEntry, QueueStatus
from flow.services import queues, resources
from flow.services.notifications import SCOPE_DEPARTMENT, SCOPE_WARD, notify
from flow.services.transactions import atomic_with_retry

logger = structlog.get_logger(__name__)


@atomic_with_retry
def admit_from_queue(entry_id, bed_id, assigned_by=None, notes: str = '') -> BedAssignment:
    """Finish a queue visit by admitting the patient into a bed.

    A waiting entry is walked through in_service to done so the event
    trail keeps both moves.  The bed is claimed last; if that fails the
    queue changes roll back with it.
    """
    entry = queues.get_entry(entry_id, lock=True)
    if entry.status == QueueStatus.WAITING:
        entry = queues.transition(entry.pk, QueueStatus.IN_SERVICE)
    entry = queues.transition(entry.pk, QueueStatus.DONE)
    patient_id = entry.checkin.patient_id
    assignment = resources.assign(bed_id, patient_id, assigned_by=assigned_by, notes=notes)
    bed = assignment.bed
    logger.info(
        'patient_admitted',
        entry_id=str(entry.pk),
        department=entry.department,
        assignment_id=str(assignment.pk),
        bed_id=str(bed.pk),
        patient_id=str(patient_id),
    )
    payload = {
        'entryId': str(entry.pk),
        'assignmentId': str(assignment.pk),
        'bedId': str(bed.pk),
        'bedNumber': bed.number,
        'ward': bed.ward,
        'patientId': str(patient_id),
    }
    notify(SCOPE_DEPARTMENT, entry.department, 'patient.admitted', payload)
    notify(SCOPE_WARD, bed.ward, 'patient.admitted', payload)
    return assignment


def discharge_and_release(assignment_id, notes: Optional[str] = None) -> BedAssignment:
    """Discharge a patient and free the bed.  Queue entries are untouched."""
    return resources.discharge(assignment_id, notes)


def ward_breakdown() -> list[dict]:
    per_ward = (
        Bed.objects.values('ward')
        .annotate(
            total=Count('id'),
            occupied=Count('id', filter=Q(status=BedStatus.OCCUPIED)),
            available=Count('id', filter=Q(status=BedStatus.AVAILABLE)),
            maintenance=Count('id', filter=Q(status=BedStatus.MAINTENANCE)),
            reserved=Count('id', filter=Q(status=BedStatus.RESERVED)),
        )
        .order_by('ward')
    )
    # Occupants who also have a queue visit still open somewhere
    queued = dict(
        BedAssignment.objects.filter(
            status=AssignmentStatus.ACTIVE,
            patient__checkins__queue_entries__status__in=queues.OPEN_STATUSES,
        )
        .values('bed__ward')
        .annotate(n=Count('patient', distinct=True))
        .values_list('bed__ward', 'n')
    )
    return [
        {
            'ward': row['ward'],
            'totalBeds': row['total'],
            'occupiedBeds': row['occupied'],
            'availableBeds': row['available'],
            'maintenanceBeds': row['maintenance'],
            'reservedBeds': row['reserved'],
            'occupancyRate': round(row['occupied'] * 100 / row['total'], 2) if row['total'] else 0,
            'occupantsInQueue': queued.get(row['ward'], 0),
        }
        for row in per_ward
    ]


def department_breakdown() -> list[dict]:
    now = timezone.now()
    per_department = (
        QueueEntry.objects.values('department')
        .annotate(
            waiting=Count('id', filter=Q(status=QueueStatus.WAITING)),
            in_service=Count('id', filter=Q(status=QueueStatus.IN_SERVICE)),
            done=Count('id', filter=Q(status=QueueStatus.DONE)),
            cancelled=Count('id', filter=Q(status=QueueStatus.CANCELLED)),
            oldest_waiting=Min('created_at', filter=Q(status=QueueStatus.WAITING)),
            last_activity=Max('updated_at'),
        )
        .order_by('department')
    )
    admitted = dict(
        QueueEntry.objects.filter(
            status__in=queues.OPEN_STATUSES,
            checkin__patient__bed_assignments__status=AssignmentStatus.ACTIVE,
        )
        .values('department')
        .annotate(n=Count('id', distinct=True))
        .values_list('department', 'n')
    )
    rows = []
    for row in per_department:
        head = queues.next_in_line(row['department'])
        oldest = row['oldest_waiting']
        rows.append({
            'department': row['department'],
            'waiting': row['waiting'],
            'inService': row['in_service'],
            'done': row['done'],
            'cancelled': row['cancelled'],
            'queueDepth': row['waiting'] + row['in_service'],
            'nextEntryId': str(head.pk) if head else None,
            'longestWaitMinutes': round((now - oldest).total_seconds() / 60, 1) if oldest else 0,
            'openWithBed': admitted.get(row['department'], 0),
            'lastActivity': row['last_activity'].isoformat() if row['last_activity'] else None,
        })
    return rows
