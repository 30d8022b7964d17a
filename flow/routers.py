"""
URL mappings for the patient-flow API.

Paths carry no trailing slash, matching what the staff UI calls.
"""
from django.urls import include, path

from .views import beds, dashboard, exports, health, queues

urlpatterns = [
    path('', include('django_prometheus.urls')),
    path('healthz', health.healthz),
    # Beds
    path('api/beds', beds.beds),
    path('api/beds/summary', beds.bed_summary),
    path('api/beds/assignments', beds.assignments),
    path('api/beds/assignments/<str:assignment_id>/discharge', beds.assignment_discharge),
    path('api/beds/assignments/<str:assignment_id>/transfer', beds.assignment_transfer),
    path('api/beds/<str:bed_id>', beds.bed_detail),
    path('api/beds/<str:bed_id>/maintenance', beds.bed_maintenance),
    path('api/beds/<str:bed_id>/reserve', beds.bed_reserve),
    # Check-ins and queues
    path('api/checkins', queues.checkins),
    path('api/queues', queues.queue),
    path('api/queues/next', queues.queue_next),
    path('api/queues/<str:entry_id>/transition', queues.queue_transition),
    path('api/queues/<str:entry_id>/priority', queues.queue_priority),
    path('api/queues/<str:entry_id>/events', queues.queue_events),
    path('api/queues/<str:entry_id>/admit', queues.queue_admit),
    # Dashboards
    path('api/flow/wards', dashboard.ward_breakdown),
    path('api/flow/departments', dashboard.department_breakdown),
    path('api/flow/sla', dashboard.sla),
    # Reporting
    path('api/exports/bed-assignments', exports.bed_assignments),
    path('api/exports/queue-events', exports.queue_events),
]
