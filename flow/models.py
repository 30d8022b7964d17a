"""
Database models for the patient-flow backend.

Two ledgers live here: the bed inventory with its assignments, and the
department queues with their append-only event trail.  Patients and
check-ins are owned by registration and only kept so that queue entries
and assignments can reference them.
"""
from __future__ import annotations

import uuid

from django.contrib.auth.models import AbstractUser
from django.db import models
from django.db.models import Q
from django.utils import timezone
from django_prometheus.models import ExportModelOperationsMixin

from .errors import InvalidTransition


class User(AbstractUser):
    """Staff account with a single role.

    Roles decide which flow commands a user may issue: admins manage the
    bed inventory, nurses place and discharge patients, receptionists and
    clinicians move patients through department queues.
    """
    ROLE_ADMIN = 'admin'
    ROLE_NURSE = 'nurse'
    ROLE_CLINICIAN = 'clinician'
    ROLE_RECEPTIONIST = 'receptionist'
    ROLE_CHOICES = [
        (ROLE_ADMIN, 'Hospital Admin'),
        (ROLE_NURSE, 'Nurse'),
        (ROLE_CLINICIAN, 'Clinician'),
        (ROLE_RECEPTIONIST, 'Receptionist'),
    ]
    role = models.CharField(max_length=20, choices=ROLE_CHOICES, default=ROLE_RECEPTIONIST)

    def __str__(self) -> str:
        return f"{self.username} ({self.role})"


class Patient(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    patient_number = models.CharField(max_length=32, unique=True)
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100, blank=True)
    phone = models.CharField(max_length=32, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def __str__(self) -> str:
        return f"{self.full_name} ({self.patient_number})"


class CheckIn(models.Model):
    """A patient's arrival at the front desk."""
    STATUS_CHOICES = [
        ('Arrived', 'Arrived'),
        ('With Nurse', 'With Nurse'),
        ('In Room', 'In Room'),
        ('Complete', 'Complete'),
        ('Cancelled', 'Cancelled'),
    ]
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name='checkins')
    department = models.CharField(max_length=100, blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default='Arrived')
    receptionist = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='checkins_taken'
    )
    created_at = models.DateTimeField(default=timezone.now, db_index=True)

    def __str__(self) -> str:
        return f"Check-in {self.id} ({self.patient_id})"


# ---------------------------------------------------------------------------
# Resource ledger
# ---------------------------------------------------------------------------

class BedType(models.TextChoices):
    STANDARD = 'Standard', 'Standard'
    ICU = 'ICU', 'ICU'
    EMERGENCY = 'Emergency', 'Emergency'
    SURGICAL = 'Surgical', 'Surgical'
    PEDIATRIC = 'Pediatric', 'Pediatric'
    MATERNITY = 'Maternity', 'Maternity'
    ISOLATION = 'Isolation', 'Isolation'


class BedStatus(models.TextChoices):
    AVAILABLE = 'Available', 'Available'
    OCCUPIED = 'Occupied', 'Occupied'
    MAINTENANCE = 'Maintenance', 'Maintenance'
    RESERVED = 'Reserved', 'Reserved'


class Bed(ExportModelOperationsMixin('bed'), models.Model):
    """A physical bed.

    ``status`` is never edited directly by callers: Occupied is entered
    only through an assignment and left only through a discharge or a
    transfer, while Maintenance and Reserved are operator overrides that
    can only be set on a bed nobody occupies.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    number = models.CharField(max_length=32, unique=True)
    # Ward is the main grouping for occupancy breakdowns
    ward = models.CharField(max_length=100, db_index=True)
    bed_type = models.CharField(max_length=20, choices=BedType.choices, default=BedType.STANDARD)
    status = models.CharField(
        max_length=20, choices=BedStatus.choices, default=BedStatus.AVAILABLE, db_index=True
    )
    location = models.CharField(max_length=255, blank=True)
    equipment = models.JSONField(default=list, blank=True)
    notes = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['ward', 'number']

    def __str__(self) -> str:
        return f"{self.number} ({self.ward}, {self.status})"


class AssignmentStatus(models.TextChoices):
    ACTIVE = 'Active', 'Active'
    DISCHARGED = 'Discharged', 'Discharged'
    TRANSFER = 'Transfer', 'Transfer'


class BedAssignment(ExportModelOperationsMixin('bed_assignment'), models.Model):
    """A patient placed in a bed.  Rows are kept forever for audit."""
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    bed = models.ForeignKey(Bed, on_delete=models.PROTECT, related_name='assignments')
    patient = models.ForeignKey(Patient, on_delete=models.PROTECT, related_name='bed_assignments')
    assigned_by = models.ForeignKey(
        User, null=True, blank=True, on_delete=models.SET_NULL, related_name='bed_assignments_made'
    )
    assigned_at = models.DateTimeField(default=timezone.now)
    discharge_date = models.DateTimeField(null=True, blank=True)
    status = models.CharField(
        max_length=20, choices=AssignmentStatus.choices, default=AssignmentStatus.ACTIVE, db_index=True
    )
    notes = models.TextField(blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=['bed'], condition=Q(status='Active'), name='uniq_active_assignment_per_bed'
            ),
            models.UniqueConstraint(
                fields=['patient'], condition=Q(status='Active'), name='uniq_active_assignment_per_patient'
            ),
        ]
        indexes = [
            models.Index(fields=['assigned_at'], name='flow_assignment_assigned_idx'),
        ]

    def __str__(self) -> str:
        return f"{self.patient_id} in {self.bed_id} ({self.status})"


# ---------------------------------------------------------------------------
# Queue ledger & event trail
# ---------------------------------------------------------------------------

class QueueStatus(models.TextChoices):
    WAITING = 'waiting', 'waiting'
    IN_SERVICE = 'in_service', 'in_service'
    DONE = 'done', 'done'
    CANCELLED = 'cancelled', 'cancelled'


class DepartmentCounter(models.Model):
    """Insertion counter behind queue positions; only ever incremented."""
    department = models.CharField(max_length=100, primary_key=True)
    last_position = models.PositiveIntegerField(default=0)

    def __str__(self) -> str:
        return f"{self.department}: {self.last_position}"


class QueueEntry(ExportModelOperationsMixin('queue_entry'), models.Model):
    """One visit waiting for, or receiving, service in a department.

    Lower ``priority`` is served first; ``position`` breaks ties by
    arrival and is never rewritten, so reprioritising keeps an entry's
    place among peers of equal urgency.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    department = models.CharField(max_length=100)
    checkin = models.ForeignKey(CheckIn, on_delete=models.PROTECT, related_name='queue_entries')
    status = models.CharField(max_length=20, choices=QueueStatus.choices, default=QueueStatus.WAITING)
    priority = models.IntegerField(default=0)
    position = models.PositiveIntegerField()
    created_at = models.DateTimeField(default=timezone.now)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=['department', 'position'], name='uniq_queue_position_per_department'),
        ]
        indexes = [
            models.Index(fields=['department', 'status', 'priority', 'position'], name='flow_queue_order_idx'),
            models.Index(fields=['department', 'created_at'], name='flow_queue_created_idx'),
        ]

    def __str__(self) -> str:
        return f"{self.department} #{self.position} ({self.status})"


class QueueEvent(models.Model):
    """Append-only record of a queue entry status change."""
    id = models.BigAutoField(primary_key=True)
    entry = models.ForeignKey(QueueEntry, on_delete=models.PROTECT, related_name='events')
    from_status = models.CharField(max_length=20, choices=QueueStatus.choices, null=True, blank=True)
    to_status = models.CharField(max_length=20, choices=QueueStatus.choices)
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['created_at', 'id']
        indexes = [
            models.Index(fields=['entry', 'created_at'], name='flow_event_entry_idx'),
            models.Index(fields=['created_at'], name='flow_event_created_idx'),
        ]

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise InvalidTransition('Queue events are append-only')
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise InvalidTransition('Queue events are append-only')

    def __str__(self) -> str:
        return f"{self.entry_id}: {self.from_status} → {self.to_status}"
