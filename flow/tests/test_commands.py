from io import StringIO

import pytest
from django.core.cache import cache
from django.core.management import call_command

from flow.models import Bed, BedAssignment, BedStatus, Patient, QueueEntry, QueueEvent, User
from flow.services.cache import BED_SUMMARY_KEY, DEPARTMENTS_KEY, WARDS_KEY

pytestmark = pytest.mark.django_db


def test_populate_data_builds_consistent_demo():
    out = StringIO()
    call_command('populate_data', patients=5, seed=1, stdout=out)
    assert 'Demo data created.' in out.getvalue()
    assert User.objects.filter(username='nurse1', role=User.ROLE_NURSE).exists()
    assert Patient.objects.count() == 5
    assert QueueEntry.objects.count() == 5
    assert QueueEvent.objects.filter(from_status__isnull=True).count() == 5
    active = BedAssignment.objects.filter(status='Active').count()
    assert Bed.objects.filter(status=BedStatus.OCCUPIED).count() == active


def test_populate_data_is_rerunnable():
    call_command('populate_data', patients=3, seed=2, stdout=StringIO())
    beds = Bed.objects.count()
    out = StringIO()
    call_command('populate_data', patients=3, seed=2, stdout=out)
    assert Bed.objects.count() == beds
    assert QueueEntry.objects.count() == 3
    assert 'skipping check-ins' in out.getvalue()


def test_refresh_caches_warms_and_clears(make_bed):
    make_bed(ward='ICU')
    call_command('refresh_caches', ttl=60, stdout=StringIO())
    assert cache.get(BED_SUMMARY_KEY)['total'] == 1
    assert cache.get(WARDS_KEY)[0]['ward'] == 'ICU'
    assert cache.get(DEPARTMENTS_KEY) == []
    call_command('refresh_caches', ttl=0, stdout=StringIO())
    assert cache.get(BED_SUMMARY_KEY) is None
