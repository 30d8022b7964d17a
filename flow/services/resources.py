"""
Resource ledger: bed inventory and exclusive occupancy.

A bed is Occupied exactly when one Active assignment points at it, and a
patient holds at most one Active assignment.  Both invariants are kept
three ways: the bed and patient rows are locked while the preconditions
are checked, the status flip is a compare-and-set (``UPDATE ... WHERE status =
'Available'``) so a stale read can never double-book, and partial unique
constraints on ``bed_assignments`` reject whatever slips past both where
the backend supports them (MySQL does not, so there the patient lock is
the only per-patient guard).
"""
from __future__ import annotations

from typing import Any, Iterable, Optional

import bleach
import structlog
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.db.models import Count, Prefetch, Q
from django.utils import timezone

from flow.errors import AlreadyAssigned, DuplicateIdentifier, InvalidTransition, NotFound, ResourceUnavailable
from flow.models import AssignmentStatus, Bed, BedAssignment, BedStatus, BedType, Patient
from flow.services.cache import invalidate_aggregates
from flow.services.notifications import SCOPE_WARD, notify
from flow.services.transactions import atomic_with_retry

logger = structlog.get_logger(__name__)

EDITABLE_FIELDS = ('number', 'ward', 'bed_type', 'location', 'equipment', 'notes')
MANUAL_OVERRIDES = (BedStatus.MAINTENANCE, BedStatus.RESERVED)


def clean_notes(value: Optional[str]) -> str:
    return bleach.clean((value or '').strip(), strip=True)


def _get_bed(bed_id, *, lock: bool = False) -> Bed:
    qs = Bed.objects.select_for_update() if lock else Bed.objects.all()
    try:
        return qs.get(pk=bed_id)
    except (Bed.DoesNotExist, ValidationError, ValueError):
        raise NotFound('Bed not found', bed_id=str(bed_id))


def _locked_bed(bed_id) -> Bed:
    return _get_bed(bed_id, lock=True)


def _get_patient(patient_id, *, lock: bool = False) -> Patient:
    qs = Patient.objects.select_for_update() if lock else Patient.objects.all()
    try:
        return qs.get(pk=patient_id)
    except (Patient.DoesNotExist, ValidationError, ValueError):
        raise NotFound('Patient not found', patient_id=str(patient_id))


def _locked_assignment(assignment_id) -> BedAssignment:
    try:
        return BedAssignment.objects.select_for_update().get(pk=assignment_id)
    except (BedAssignment.DoesNotExist, ValidationError, ValueError):
        raise NotFound('Bed assignment not found', assignment_id=str(assignment_id))


def _has_active_assignment(bed: Bed) -> bool:
    return BedAssignment.objects.filter(bed=bed, status=AssignmentStatus.ACTIVE).exists()


def _patient_in_bed(patient: Patient) -> bool:
    return BedAssignment.objects.filter(patient=patient, status=AssignmentStatus.ACTIVE).exists()


# ---------------------------------------------------------------------------
# Inventory
# ---------------------------------------------------------------------------

@atomic_with_retry
def create_bed(number: str, ward: str, bed_type: str = BedType.STANDARD, location: str = '',
               equipment: Optional[Iterable[str]] = None, notes: str = '') -> Bed:
    number = (number or '').strip()
    if Bed.objects.filter(number=number).exists():
        raise DuplicateIdentifier(f'Bed number {number} already exists', number=number)
    try:
        with transaction.atomic():
            bed = Bed.objects.create(
                number=number,
                ward=ward.strip(),
                bed_type=bed_type,
                location=location or '',
                equipment=list(equipment or []),
                notes=clean_notes(notes),
            )
    except IntegrityError as exc:
        raise DuplicateIdentifier(f'Bed number {number} already exists', number=number) from exc
    logger.info('bed_created', bed_id=str(bed.id), number=bed.number, ward=bed.ward, bed_type=bed.bed_type)
    invalidate_aggregates()
    return bed


@atomic_with_retry
def update_bed(bed_id, **fields: Any) -> Bed:
    """Edit a bed's descriptive fields.  Status is not editable here."""
    bed = _locked_bed(bed_id)
    changes = {k: v for k, v in fields.items() if k in EDITABLE_FIELDS and v is not None}
    number = changes.get('number')
    if number is not None:
        number = number.strip()
        changes['number'] = number
        if Bed.objects.filter(number=number).exclude(pk=bed.pk).exists():
            raise DuplicateIdentifier(f'Bed number {number} already exists', number=number)
    if 'notes' in changes:
        changes['notes'] = clean_notes(changes['notes'])
    if 'equipment' in changes:
        changes['equipment'] = list(changes['equipment'])
    if not changes:
        return bed
    for name, value in changes.items():
        setattr(bed, name, value)
    try:
        with transaction.atomic():
            bed.save(update_fields=[*changes.keys(), 'updated_at'])
    except IntegrityError as exc:
        raise DuplicateIdentifier(f'Bed number {number} already exists', number=number) from exc
    logger.info('bed_updated', bed_id=str(bed.id), fields=sorted(changes))
    invalidate_aggregates()
    return bed


def _set_override(bed_id, override: str, on: bool) -> Bed:
    bed = _locked_bed(bed_id)
    if bed.status == BedStatus.OCCUPIED or _has_active_assignment(bed):
        raise InvalidTransition(f'Bed {bed.number} is occupied', bed_id=str(bed.id))
    if on:
        if bed.status == override:
            return bed
        if bed.status != BedStatus.AVAILABLE:
            raise InvalidTransition(f'Bed {bed.number} is {bed.status}, clear that first', bed_id=str(bed.id))
        target = override
    else:
        if bed.status != override:
            raise InvalidTransition(f'Bed {bed.number} is not in {override}', bed_id=str(bed.id))
        target = BedStatus.AVAILABLE
    changed = Bed.objects.filter(pk=bed.pk, status=bed.status).update(status=target, updated_at=timezone.now())
    if not changed:
        raise InvalidTransition(f'Bed {bed.number} changed meanwhile, refresh and retry', bed_id=str(bed.id))
    logger.info('bed_override', bed_id=str(bed.id), number=bed.number, from_status=bed.status, to_status=target)
    bed.status = target
    invalidate_aggregates()
    return bed


@atomic_with_retry
def set_maintenance(bed_id, on: bool) -> Bed:
    return _set_override(bed_id, BedStatus.MAINTENANCE, on)


@atomic_with_retry
def set_reserved(bed_id, on: bool) -> Bed:
    return _set_override(bed_id, BedStatus.RESERVED, on)


# ---------------------------------------------------------------------------
# Occupancy
# ---------------------------------------------------------------------------

@atomic_with_retry
def assign(bed_id, patient_id, assigned_by=None, notes: str = '') -> BedAssignment:
    """Place a patient in an Available bed.

    Raises ``ResourceUnavailable`` for any bed that is not Available
    (Reserved included) and ``AlreadyAssigned`` when the patient is
    already in a bed.  A retried call on a bed it already filled fails
    with ``ResourceUnavailable`` rather than booking twice.
    """
    bed = _locked_bed(bed_id)
    # lock order: bed, then patient
    patient = _get_patient(patient_id, lock=True)
    if bed.status != BedStatus.AVAILABLE:
        raise ResourceUnavailable(
            f'Bed {bed.number} is {bed.status.lower()}, refresh and retry', bed_id=str(bed.id)
        )
    if _patient_in_bed(patient):
        raise AlreadyAssigned(patient_id=str(patient.pk))

    now = timezone.now()
    claimed = Bed.objects.filter(pk=bed.pk, status=BedStatus.AVAILABLE).update(
        status=BedStatus.OCCUPIED, updated_at=now
    )
    if not claimed:
        raise ResourceUnavailable(f'Bed {bed.number} was just taken, refresh and retry', bed_id=str(bed.id))
    try:
        with transaction.atomic():
            assignment = BedAssignment.objects.create(
                bed=bed,
                patient=patient,
                assigned_by=assigned_by,
                assigned_at=now,
                notes=clean_notes(notes),
            )
    except IntegrityError as exc:
        if _has_active_assignment(bed):
            raise ResourceUnavailable(bed_id=str(bed.id)) from exc
        raise AlreadyAssigned(patient_id=str(patient.pk)) from exc
    bed.status = BedStatus.OCCUPIED

    logger.info(
        'bed_assigned',
        assignment_id=str(assignment.id),
        bed_id=str(bed.id),
        number=bed.number,
        patient_id=str(patient.pk),
        assigned_by=getattr(assigned_by, 'pk', None),
    )
    notify(SCOPE_WARD, bed.ward, 'bed.assigned', {
        'assignmentId': str(assignment.id),
        'bedId': str(bed.id),
        'bedNumber': bed.number,
        'patientId': str(patient.pk),
    })
    invalidate_aggregates()
    return assignment


def _close(assignment: BedAssignment, status: str, notes: Optional[str]) -> BedAssignment:
    if assignment.status != AssignmentStatus.ACTIVE:
        raise NotFound('No active bed assignment with that id', assignment_id=str(assignment.pk))
    now = timezone.now()
    updates: dict[str, Any] = {'status': status, 'discharge_date': now, 'updated_at': now}
    if notes:
        updates['notes'] = clean_notes(notes)
    closed = BedAssignment.objects.filter(pk=assignment.pk, status=AssignmentStatus.ACTIVE).update(**updates)
    if not closed:
        raise NotFound('No active bed assignment with that id', assignment_id=str(assignment.pk))
    Bed.objects.filter(pk=assignment.bed_id, status=BedStatus.OCCUPIED).update(
        status=BedStatus.AVAILABLE, updated_at=now
    )
    for name, value in updates.items():
        setattr(assignment, name, value)
    return assignment


@atomic_with_retry
def discharge(assignment_id, notes: Optional[str] = None) -> BedAssignment:
    """Close an Active assignment and give the bed back."""
    assignment = _close(_locked_assignment(assignment_id), AssignmentStatus.DISCHARGED, notes)
    bed = assignment.bed
    logger.info(
        'bed_discharged',
        assignment_id=str(assignment.pk),
        bed_id=str(bed.pk),
        number=bed.number,
        patient_id=str(assignment.patient_id),
    )
    notify(SCOPE_WARD, bed.ward, 'bed.discharged', {
        'assignmentId': str(assignment.pk),
        'bedId': str(bed.pk),
        'bedNumber': bed.number,
        'patientId': str(assignment.patient_id),
    })
    invalidate_aggregates()
    return assignment


@atomic_with_retry
def transfer(assignment_id, to_bed_id, assigned_by=None, notes: Optional[str] = None) -> BedAssignment:
    """Move a patient to another bed.

    The old assignment ends with status Transfer and its bed is freed;
    the new assignment is created in the same transaction, so a failure
    to claim the target leaves the patient where they were.
    """
    current = _locked_assignment(assignment_id)
    if current.status != AssignmentStatus.ACTIVE:
        raise NotFound('No active bed assignment with that id', assignment_id=str(current.pk))
    if str(current.bed_id) == str(to_bed_id):
        raise InvalidTransition('Patient is already in that bed', assignment_id=str(current.pk))
    target = _locked_bed(to_bed_id)
    if target.status != BedStatus.AVAILABLE:
        raise ResourceUnavailable(
            f'Bed {target.number} is {target.status.lower()}, refresh and retry', bed_id=str(target.id)
        )
    source_bed = current.bed
    _close(current, AssignmentStatus.TRANSFER, notes)
    moved = assign(target.pk, current.patient_id, assigned_by=assigned_by, notes=notes or current.notes)
    logger.info(
        'bed_transferred',
        from_assignment_id=str(current.pk),
        to_assignment_id=str(moved.pk),
        from_bed=source_bed.number,
        to_bed=target.number,
    )
    notify(SCOPE_WARD, source_bed.ward, 'bed.transferred', {
        'assignmentId': str(current.pk),
        'newAssignmentId': str(moved.pk),
        'fromBedId': str(source_bed.pk),
        'toBedId': str(target.pk),
        'patientId': str(current.patient_id),
    })
    return moved


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------

def _rate(part: int, whole: int, digits: int = 2) -> float:
    return round(part * 100 / whole, digits) if whole else 0


def summary(ward: Optional[str] = None) -> dict:
    """Bed counts and per-ward occupancy computed from current statuses."""
    qs = Bed.objects.all()
    if ward:
        qs = qs.filter(ward=ward)
    counts = qs.aggregate(
        total=Count('id'),
        occupied=Count('id', filter=Q(status=BedStatus.OCCUPIED)),
        available=Count('id', filter=Q(status=BedStatus.AVAILABLE)),
        maintenance=Count('id', filter=Q(status=BedStatus.MAINTENANCE)),
        reserved=Count('id', filter=Q(status=BedStatus.RESERVED)),
        total_wards=Count('ward', distinct=True),
    )
    per_ward = (
        qs.values('ward')
        .annotate(total_beds=Count('id'), occupied_beds=Count('id', filter=Q(status=BedStatus.OCCUPIED)))
        .order_by('ward')
    )
    return {
        'total': counts['total'],
        'occupied': counts['occupied'],
        'available': counts['available'],
        'maintenance': counts['maintenance'],
        'reserved': counts['reserved'],
        'occupancyRate': int(_rate(counts['occupied'], counts['total'], 0)),
        'totalWards': counts['total_wards'],
        'wardBreakdown': [
            {
                'ward': row['ward'],
                'totalBeds': row['total_beds'],
                'occupiedBeds': row['occupied_beds'],
                'occupancyRate': _rate(row['occupied_beds'], row['total_beds']),
            }
            for row in per_ward
        ],
    }


def list_beds(*, ward: Optional[str] = None, status: Optional[str] = None, bed_type: Optional[str] = None,
              has_patient: Optional[str] = None):
    qs = Bed.objects.prefetch_related(
        Prefetch(
            'assignments',
            queryset=BedAssignment.objects.filter(status=AssignmentStatus.ACTIVE).select_related('patient'),
            to_attr='active_assignments',
        )
    )
    if ward:
        qs = qs.filter(ward=ward)
    if status:
        qs = qs.filter(status=status)
    if bed_type:
        qs = qs.filter(bed_type=bed_type)
    if has_patient == 'assigned':
        qs = qs.filter(assignments__status=AssignmentStatus.ACTIVE)
    elif has_patient == 'unassigned':
        qs = qs.exclude(assignments__status=AssignmentStatus.ACTIVE)
    return qs.order_by('ward', 'number')


def list_assignments(*, status: Optional[str] = AssignmentStatus.ACTIVE, ward: Optional[str] = None,
                     bed_id=None, start=None, end=None):
    qs = BedAssignment.objects.select_related('bed', 'patient', 'assigned_by')
    if status and status.lower() != 'all':
        qs = qs.filter(status=status)
    if ward:
        qs = qs.filter(bed__ward=ward)
    if bed_id:
        qs = qs.filter(bed_id=bed_id)
    if start:
        qs = qs.filter(assigned_at__gte=start)
    if end:
        qs = qs.filter(assigned_at__lte=end)
    return qs.order_by('-assigned_at')


def format_bed(bed: Bed) -> dict:
    active = getattr(bed, 'active_assignments', None)
    if active is None:
        active = list(bed.assignments.filter(status=AssignmentStatus.ACTIVE).select_related('patient'))
    current = active[0] if active else None
    return {
        'id': str(bed.id),
        'bedNumber': bed.number,
        'ward': bed.ward,
        'bedType': bed.bed_type,
        'status': bed.status,
        'location': bed.location,
        'equipment': bed.equipment,
        'notes': bed.notes,
        'assignmentId': str(current.id) if current else None,
        'patient': {
            'id': str(current.patient_id),
            'name': current.patient.full_name,
            'patientNumber': current.patient.patient_number,
            'assignedAt': current.assigned_at.isoformat(),
        } if current else None,
        'createdAt': bed.created_at.isoformat() if bed.created_at else None,
        'updatedAt': bed.updated_at.isoformat() if bed.updated_at else None,
    }


def format_assignment(assignment: BedAssignment) -> dict:
    by = assignment.assigned_by
    return {
        'id': str(assignment.id),
        'bedId': str(assignment.bed_id),
        'bedNumber': assignment.bed.number,
        'ward': assignment.bed.ward,
        'bedType': assignment.bed.bed_type,
        'patient': {
            'id': str(assignment.patient_id),
            'name': assignment.patient.full_name,
            'patientNumber': assignment.patient.patient_number,
        },
        'assignedBy': {'id': by.pk, 'name': by.get_full_name() or by.username} if by else None,
        'assignedAt': assignment.assigned_at.isoformat(),
        'dischargeDate': assignment.discharge_date.isoformat() if assignment.discharge_date else None,
        'status': assignment.status,
        'notes': assignment.notes,
    }
