import itertools

import pytest
from django.core.cache import cache
from rest_framework.test import APIClient

from flow.models import CheckIn, Patient, User
from flow.services import queues, resources

_seq = itertools.count(1)


@pytest.fixture(autouse=True)
def _isolated_flow(settings):
    # aggregates are read fresh and throttle counters start at zero
    settings.FLOW_AGGREGATE_CACHE_SECONDS = 0
    cache.clear()
    yield
    cache.clear()


@pytest.fixture
def make_user(db):
    def _make(role=User.ROLE_NURSE, **extra):
        n = next(_seq)
        return User.objects.create_user(username=f'{role}{n}', password='P@ssw0rd1', role=role, **extra)
    return _make


@pytest.fixture
def nurse(make_user):
    return make_user(User.ROLE_NURSE)


@pytest.fixture
def make_patient(db):
    def _make(first_name='Pat', last_name='Doe'):
        n = next(_seq)
        return Patient.objects.create(patient_number=f'P{n:06d}', first_name=first_name, last_name=last_name)
    return _make


@pytest.fixture
def make_bed(db):
    def _make(number=None, ward='Emergency', **extra):
        return resources.create_bed(number=number or f'B-{next(_seq):04d}', ward=ward, **extra)
    return _make


@pytest.fixture
def make_checkin(make_patient):
    def _make(department='General', patient=None):
        return CheckIn.objects.create(patient=patient or make_patient(), department=department)
    return _make


@pytest.fixture
def make_entry(make_checkin):
    def _make(department='General', priority=4, patient=None):
        checkin = make_checkin(department, patient)
        return queues.enqueue(department, checkin.pk, priority)
    return _make


@pytest.fixture
def api():
    def _client(user=None) -> APIClient:
        client = APIClient()
        if user is not None:
            client.force_authenticate(user=user)
        return client
    return _client
