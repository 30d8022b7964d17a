"""
Event trail for queue entries.

Every status change of a queue entry is appended here as a
``(from_status, to_status, created_at)`` row and never touched again.
Wait and service times are not stored anywhere: they are recomputed by
pairing consecutive events, so a backfilled or corrected threshold
applies to history as well.
"""
from __future__ import annotations

import math
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Iterable, Optional, Sequence, Union

import structlog
from django.conf import settings
from django.core.exceptions import ValidationError
from django.utils import timezone

from flow.errors import NotFound
from flow.models import QueueEntry, QueueEvent, QueueStatus

logger = structlog.get_logger(__name__)

SLA_OK = 'ok'
SLA_WARN = 'warn'
SLA_CRITICAL = 'critical'

Window = Union[timedelta, Sequence[Optional[datetime]], None]


def append(entry_id, from_status: Optional[str], to_status: str, at: Optional[datetime] = None) -> QueueEvent:
    _ensure_entry(entry_id)
    event = QueueEvent.objects.create(
        entry_id=entry_id,
        from_status=from_status,
        to_status=to_status,
        created_at=at or timezone.now(),
    )
    logger.debug('queue_event_appended', entry_id=str(entry_id), from_status=from_status, to_status=to_status)
    return event


def _ensure_entry(entry_id) -> None:
    try:
        found = entry_id is not None and QueueEntry.objects.filter(pk=entry_id).exists()
    except (ValidationError, ValueError):
        found = False
    if not found:
        raise NotFound('Queue entry not found', entry_id=str(entry_id))


def history(entry_id) -> list[QueueEvent]:
    _ensure_entry(entry_id)
    return list(
        QueueEvent.objects.filter(entry_id=entry_id).select_related('entry__checkin').order_by('created_at', 'id')
    )


def time_in(events: Sequence[QueueEvent], status: str, now: datetime) -> timedelta:
    """Sum the intervals opened by a move into ``status``.

    Each interval runs to the next event; the last one, when the entry is
    still in ``status``, runs to ``now``.
    """
    total = timedelta(0)
    for current, following in zip(events, [*events[1:], None]):
        if current.to_status != status:
            continue
        end = following.created_at if following is not None else now
        if end > current.created_at:
            total += end - current.created_at
    return total


def events_by_entry(entries) -> dict:
    """Group the events of ``entries`` (a queryset or ids) per entry, in order."""
    grouped: dict = defaultdict(list)
    for event in QueueEvent.objects.filter(entry__in=entries).order_by('entry_id', 'created_at', 'id'):
        grouped[event.entry_id].append(event)
    return grouped


def duration_in(entry_id, status: str, now: Optional[datetime] = None) -> timedelta:
    return time_in(history(entry_id), status, now or timezone.now())


def percentile(values: Iterable[float], p: float) -> Optional[float]:
    """Linear-interpolated percentile, ``p`` in [0, 100]."""
    ordered = sorted(values)
    if not ordered:
        return None
    if not 0 <= p <= 100:
        raise ValueError('p must be between 0 and 100')
    rank = (len(ordered) - 1) * p / 100
    low, high = math.floor(rank), math.ceil(rank)
    if low == high:
        return float(ordered[low])
    return ordered[low] + (ordered[high] - ordered[low]) * (rank - low)


def _bounds(window: Window, now: datetime) -> tuple[Optional[datetime], Optional[datetime]]:
    if window is None:
        window = timedelta(hours=settings.FLOW_SLA_WINDOW_HOURS)
    if isinstance(window, timedelta):
        return now - window, now
    start, end = window
    return start, end


def minutes_in(department: str, status: str = QueueStatus.WAITING, window: Window = None,
               now: Optional[datetime] = None) -> list[float]:
    """Minutes each entry created inside ``window`` spent in ``status``.

    Entries that never reached ``status`` are left out.
    """
    now = now or timezone.now()
    start, end = _bounds(window, now)
    entries = QueueEntry.objects.filter(department=department)
    if start:
        entries = entries.filter(created_at__gte=start)
    if end:
        entries = entries.filter(created_at__lte=end)
    by_entry = events_by_entry(entries)
    return [
        time_in(events, status, now).total_seconds() / 60
        for events in by_entry.values()
        if any(e.to_status == status for e in events)
    ]


def percentile_wait(department: str, status: str = QueueStatus.WAITING, window: Window = None,
                    p: float = 50, now: Optional[datetime] = None) -> Optional[float]:
    value = percentile(minutes_in(department, status, window, now), p)
    return round(value, 2) if value is not None else None


def _thresholds(status: str) -> tuple[int, int]:
    if status == QueueStatus.IN_SERVICE:
        return settings.FLOW_SERVICE_WARN_MINUTES, settings.FLOW_SERVICE_CRITICAL_MINUTES
    return settings.FLOW_WAIT_WARN_MINUTES, settings.FLOW_WAIT_CRITICAL_MINUTES


def sla_level(minutes: Optional[float], status: str = QueueStatus.WAITING) -> str:
    if minutes is None:
        return SLA_OK
    warn, critical = _thresholds(status)
    if minutes >= critical:
        return SLA_CRITICAL
    if minutes >= warn:
        return SLA_WARN
    return SLA_OK


def sla_report(department: str, window: Window = None, now: Optional[datetime] = None) -> dict:
    """Median and 95th percentile wait and service times for a department."""
    now = now or timezone.now()
    report = {'department': department}
    for key, status in (('waiting', QueueStatus.WAITING), ('inService', QueueStatus.IN_SERVICE)):
        values = minutes_in(department, status, window, now)
        median = percentile(values, 50)
        p95 = percentile(values, 95)
        warn, critical = _thresholds(status)
        report[key] = {
            'count': len(values),
            'medianMinutes': round(median, 2) if median is not None else None,
            'p95Minutes': round(p95, 2) if p95 is not None else None,
            'level': sla_level(p95, status),
            'warnMinutes': warn,
            'criticalMinutes': critical,
        }
    return report


def list_events(*, start: Optional[datetime] = None, end: Optional[datetime] = None,
                department: Optional[str] = None, to_status: Optional[str] = None):
    qs = QueueEvent.objects.select_related('entry', 'entry__checkin__patient')
    if start:
        qs = qs.filter(created_at__gte=start)
    if end:
        qs = qs.filter(created_at__lte=end)
    if department:
        qs = qs.filter(entry__department=department)
    if to_status:
        qs = qs.filter(to_status=to_status)
    return qs.order_by('created_at', 'id')


def format_event(event: QueueEvent) -> dict:
    return {
        'id': event.id,
        'entryId': str(event.entry_id),
        'department': event.entry.department,
        'patientId': str(event.entry.checkin.patient_id),
        'from': event.from_status,
        'to': event.to_status,
        'createdAt': event.created_at.isoformat(),
    }
