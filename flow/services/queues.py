"""
Queue ledger: department queues, priority ranking and status changes.

The serving order is never stored.  It is the query ``ORDER BY
priority, position, created_at`` over waiting entries, where ``position``
comes from a per-department counter that only ever grows.  Changing an
entry's priority therefore re-ranks it without disturbing anyone else's
place among equals.
"""
from __future__ import annotations

from typing import Optional

import structlog
from django.core.exceptions import ValidationError
from django.utils import timezone

from flow.errors import InvalidTransition, NotFound
from flow.models import CheckIn, DepartmentCounter, Patient, QueueEntry, QueueStatus
from flow.services import events
from flow.services.cache import invalidate_aggregates
from flow.services.notifications import SCOPE_DEPARTMENT, notify
from flow.services.transactions import atomic_with_retry
from flow.services.triage import STANDARD

logger = structlog.get_logger(__name__)

TRANSITIONS = {
    QueueStatus.WAITING: (QueueStatus.IN_SERVICE, QueueStatus.CANCELLED),
    QueueStatus.IN_SERVICE: (QueueStatus.DONE, QueueStatus.CANCELLED),
    QueueStatus.DONE: (),
    QueueStatus.CANCELLED: (),
}
OPEN_STATUSES = (QueueStatus.WAITING, QueueStatus.IN_SERVICE)
SERVING_ORDER = ('priority', 'position', 'created_at')


def can_transition(current: str, new: str) -> bool:
    """Return True if a queue entry may move from ``current`` to ``new``."""
    return new in TRANSITIONS.get(current, ())


def get_entry(entry_id, *, lock: bool = False) -> QueueEntry:
    qs = QueueEntry.objects.select_for_update() if lock else QueueEntry.objects.all()
    try:
        return qs.get(pk=entry_id)
    except (QueueEntry.DoesNotExist, ValidationError, ValueError):
        raise NotFound('Queue entry not found', entry_id=str(entry_id))


def _next_position(department: str) -> int:
    counter, _ = DepartmentCounter.objects.select_for_update().get_or_create(department=department)
    counter.last_position += 1
    counter.save(update_fields=['last_position'])
    return counter.last_position


@atomic_with_retry
def enqueue(department: str, checkin_id, priority: int = STANDARD) -> QueueEntry:
    department = (department or '').strip()
    if not department:
        raise InvalidTransition('Department is required to join a queue')
    try:
        checkin = CheckIn.objects.get(pk=checkin_id)
    except (CheckIn.DoesNotExist, ValidationError, ValueError):
        raise NotFound('Check-in not found', checkin_id=str(checkin_id))
    now = timezone.now()
    entry = QueueEntry.objects.create(
        department=department,
        checkin=checkin,
        status=QueueStatus.WAITING,
        priority=priority,
        position=_next_position(department),
        created_at=now,
    )
    events.append(entry.pk, None, QueueStatus.WAITING, at=now)
    logger.info(
        'queue_entry_created',
        entry_id=str(entry.pk),
        department=department,
        priority=priority,
        position=entry.position,
    )
    notify(SCOPE_DEPARTMENT, department, 'queue.enqueued', {
        'entryId': str(entry.pk),
        'priority': priority,
        'position': entry.position,
    })
    invalidate_aggregates()
    return entry


@atomic_with_retry
def check_in(patient_id, department: str, priority: int = STANDARD, receptionist=None) -> QueueEntry:
    """Register an arrival and put it in the department's queue.

    The returned entry's id is the token printed for the patient.
    """
    try:
        patient = Patient.objects.get(pk=patient_id)
    except (Patient.DoesNotExist, ValidationError, ValueError):
        raise NotFound('Patient not found', patient_id=str(patient_id))
    checkin = CheckIn.objects.create(
        patient=patient,
        department=(department or '').strip(),
        receptionist=receptionist,
    )
    return enqueue(checkin.department, checkin.pk, priority)


@atomic_with_retry
def reprioritize(entry_id, new_priority: int) -> QueueEntry:
    entry = get_entry(entry_id, lock=True)
    if entry.status != QueueStatus.WAITING:
        raise InvalidTransition(
            f'Priority can only change while waiting (entry is {entry.status})', entry_id=str(entry.pk)
        )
    if entry.priority == new_priority:
        return entry
    updated = QueueEntry.objects.filter(pk=entry.pk, status=QueueStatus.WAITING).update(
        priority=new_priority, updated_at=timezone.now()
    )
    if not updated:
        raise InvalidTransition('Queue entry changed meanwhile, refresh and retry', entry_id=str(entry.pk))
    logger.info(
        'queue_entry_reprioritized',
        entry_id=str(entry.pk),
        department=entry.department,
        old_priority=entry.priority,
        new_priority=new_priority,
    )
    entry.priority = new_priority
    invalidate_aggregates()
    return entry


@atomic_with_retry
def transition(entry_id, new_status: str) -> QueueEntry:
    """Move an entry along the queue state machine and record the move."""
    entry = get_entry(entry_id, lock=True)
    old_status = entry.status
    if not can_transition(old_status, new_status):
        raise InvalidTransition(
            f'Cannot move queue entry from {old_status} to {new_status}', entry_id=str(entry.pk)
        )
    now = timezone.now()
    changed = QueueEntry.objects.filter(pk=entry.pk, status=old_status).update(status=new_status, updated_at=now)
    if not changed:
        raise InvalidTransition('Queue entry changed meanwhile, refresh and retry', entry_id=str(entry.pk))
    events.append(entry.pk, old_status, new_status, at=now)
    entry.status = new_status
    entry.updated_at = now
    logger.info(
        'queue_entry_transitioned',
        entry_id=str(entry.pk),
        department=entry.department,
        from_status=old_status,
        to_status=new_status,
    )
    notify(SCOPE_DEPARTMENT, entry.department, 'queue.transition', {
        'entryId': str(entry.pk),
        'from': old_status,
        'to': new_status,
    })
    invalidate_aggregates()
    return entry


def waiting(department: str):
    return QueueEntry.objects.filter(department=department, status=QueueStatus.WAITING).order_by(*SERVING_ORDER)


def next_in_line(department: str) -> Optional[QueueEntry]:
    """The waiting entry that should be served next, or None."""
    return waiting(department).first()


def department_queue(department: str, status: Optional[str] = QueueStatus.WAITING) -> list[dict]:
    """One department lane, in serving order, with minutes spent so far."""
    qs = QueueEntry.objects.filter(department=department).select_related('checkin__patient')
    if status and status != 'all':
        qs = qs.filter(status=status)
    entries = list(qs.order_by(*SERVING_ORDER))
    trail = events.events_by_entry([e.pk for e in entries]) if entries else {}
    now = timezone.now()
    rows = []
    for entry in entries:
        history = trail.get(entry.pk, [])
        rows.append(format_entry(
            entry,
            waiting_minutes=events.time_in(history, QueueStatus.WAITING, now).total_seconds() / 60,
            service_minutes=events.time_in(history, QueueStatus.IN_SERVICE, now).total_seconds() / 60,
        ))
    return rows


def format_entry(entry: QueueEntry, waiting_minutes: Optional[float] = None,
                 service_minutes: Optional[float] = None) -> dict:
    data = {
        'id': str(entry.pk),
        'department': entry.department,
        'checkinId': str(entry.checkin_id),
        'status': entry.status,
        'priority': entry.priority,
        'position': entry.position,
        'createdAt': entry.created_at.isoformat(),
        'updatedAt': entry.updated_at.isoformat() if entry.updated_at else None,
    }
    checkin = entry.checkin if QueueEntry.checkin.is_cached(entry) else None
    if checkin is not None and CheckIn.patient.is_cached(checkin):
        data['patient'] = {
            'id': str(checkin.patient_id),
            'name': checkin.patient.full_name,
            'patientNumber': checkin.patient.patient_number,
        }
    if waiting_minutes is not None:
        data['waitingMinutes'] = round(waiting_minutes, 1)
        data['waitingLevel'] = events.sla_level(waiting_minutes, QueueStatus.WAITING)
    if service_minutes is not None:
        data['serviceMinutes'] = round(service_minutes, 1)
        data['serviceLevel'] = events.sla_level(service_minutes, QueueStatus.IN_SERVICE)
    return data
