import pytest
from django.db import OperationalError

from flow.errors import TransactionConflict
from flow.models import BedAssignment, BedStatus
from flow.services import resources


def _flaky(real, failures):
    calls = {'n': 0}

    def wrapper(*args, **kwargs):
        calls['n'] += 1
        if calls['n'] <= failures:
            raise OperationalError('deadlock detected')
        return real(*args, **kwargs)
    wrapper.calls = calls
    return wrapper


@pytest.mark.django_db(transaction=True)
def test_conflict_is_retried_once_transparently(make_bed, make_patient, monkeypatch):
    bed = make_bed()
    patient = make_patient()
    flaky = _flaky(resources._locked_bed, failures=1)
    monkeypatch.setattr(resources, '_locked_bed', flaky)
    assignment = resources.assign(bed.pk, patient.pk)
    bed.refresh_from_db()
    assert flaky.calls['n'] == 2
    assert bed.status == BedStatus.OCCUPIED
    assert assignment.pk is not None


@pytest.mark.django_db(transaction=True)
def test_second_conflict_surfaces_as_transaction_conflict(make_bed, make_patient, monkeypatch):
    bed = make_bed()
    patient = make_patient()
    flaky = _flaky(resources._locked_bed, failures=2)
    monkeypatch.setattr(resources, '_locked_bed', flaky)
    with pytest.raises(TransactionConflict):
        resources.assign(bed.pk, patient.pk)
    bed.refresh_from_db()
    assert flaky.calls['n'] == 2
    assert bed.status == BedStatus.AVAILABLE
    assert not BedAssignment.objects.exists()


@pytest.mark.django_db
def test_no_retry_inside_callers_transaction(make_bed, make_patient, monkeypatch):
    # the test itself holds the outer transaction
    flaky = _flaky(resources._locked_bed, failures=1)
    monkeypatch.setattr(resources, '_locked_bed', flaky)
    with pytest.raises(OperationalError):
        resources.assign(make_bed().pk, make_patient().pk)
    assert flaky.calls['n'] == 1
