"""
Django admin registrations for the flow models.

Beds, patients and staff are editable.  Assignments, queue entries and
queue events are history: they are shown read-only so that status
changes keep going through the ledgers.
"""
from django.contrib import admin
from django.contrib.auth.admin import UserAdmin as BaseUserAdmin

from .models import Bed, BedAssignment, CheckIn, DepartmentCounter, Patient, QueueEntry, QueueEvent, User


class ReadOnlyAdmin(admin.ModelAdmin):
    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(User)
class UserAdmin(BaseUserAdmin):
    list_display = ('username', 'role', 'is_staff', 'is_superuser')
    list_filter = ('role', 'is_staff')
    fieldsets = BaseUserAdmin.fieldsets + (('Flow', {'fields': ('role',)}),)


@admin.register(Patient)
class PatientAdmin(admin.ModelAdmin):
    list_display = ('patient_number', 'first_name', 'last_name', 'phone', 'created_at')
    search_fields = ('patient_number', 'first_name', 'last_name', 'phone')


@admin.register(CheckIn)
class CheckInAdmin(ReadOnlyAdmin):
    list_display = ('id', 'patient', 'department', 'status', 'receptionist', 'created_at')
    list_filter = ('department', 'status')


@admin.register(Bed)
class BedAdmin(admin.ModelAdmin):
    list_display = ('number', 'ward', 'bed_type', 'status', 'location')
    list_filter = ('ward', 'bed_type', 'status')
    search_fields = ('number', 'ward', 'location')
    readonly_fields = ('status',)


@admin.register(BedAssignment)
class BedAssignmentAdmin(ReadOnlyAdmin):
    list_display = ('bed', 'patient', 'status', 'assigned_by', 'assigned_at', 'discharge_date')
    list_filter = ('status', 'bed__ward')
    search_fields = ('bed__number', 'patient__patient_number')


@admin.register(QueueEntry)
class QueueEntryAdmin(ReadOnlyAdmin):
    list_display = ('id', 'department', 'status', 'priority', 'position', 'created_at')
    list_filter = ('department', 'status')


@admin.register(QueueEvent)
class QueueEventAdmin(ReadOnlyAdmin):
    list_display = ('entry', 'from_status', 'to_status', 'created_at')
    list_filter = ('to_status',)
    search_fields = ('entry__id',)


@admin.register(DepartmentCounter)
class DepartmentCounterAdmin(ReadOnlyAdmin):
    list_display = ('department', 'last_position')
