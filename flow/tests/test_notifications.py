import pytest

from flow.errors import ResourceUnavailable
from flow.services import coordinator, notifications, resources

pytestmark = pytest.mark.django_db


@pytest.fixture
def published(monkeypatch):
    sent = []
    monkeypatch.setattr(notifications, 'publish', sent.append)
    return sent


def test_assign_and_discharge_emit_ward_events(make_bed, make_patient, published,
                                               django_capture_on_commit_callbacks):
    bed = make_bed(ward='Emergency')
    with django_capture_on_commit_callbacks(execute=True):
        assignment = resources.assign(bed.pk, make_patient().pk)
    with django_capture_on_commit_callbacks(execute=True):
        resources.discharge(assignment.pk)
    assert [(e['scope'], e['name'], e['kind']) for e in published] == [
        ('ward', 'Emergency', 'bed.assigned'),
        ('ward', 'Emergency', 'bed.discharged'),
    ]
    assert published[0]['payload']['bedId'] == str(bed.pk)


def test_nothing_emitted_before_commit(make_bed, make_patient, published, django_capture_on_commit_callbacks):
    with django_capture_on_commit_callbacks(execute=False) as callbacks:
        resources.assign(make_bed().pk, make_patient().pk)
    assert published == []
    assert callbacks


def test_failed_admission_emits_nothing(make_entry, make_bed, make_patient, published,
                                        django_capture_on_commit_callbacks):
    bed = make_bed()
    resources.assign(bed.pk, make_patient().pk)
    entry = make_entry()
    with django_capture_on_commit_callbacks(execute=True):
        with pytest.raises(ResourceUnavailable):
            coordinator.admit_from_queue(entry.pk, bed.pk)
    assert published == []


def test_admission_notifies_department_and_ward(make_entry, make_bed, published,
                                                django_capture_on_commit_callbacks):
    entry = make_entry('General')
    bed = make_bed(ward='ICU')
    with django_capture_on_commit_callbacks(execute=True):
        coordinator.admit_from_queue(entry.pk, bed.pk)
    admitted = [(e['scope'], e['name']) for e in published if e['kind'] == 'patient.admitted']
    assert admitted == [('department', 'General'), ('ward', 'ICU')]


class FakeLayer:
    def __init__(self):
        self.sent = []

    async def group_send(self, group, message):
        self.sent.append((group, message))


def test_publish_fans_out_to_scope_and_global_groups(monkeypatch):
    layer = FakeLayer()
    monkeypatch.setattr(notifications, 'get_channel_layer', lambda: layer)
    notifications.publish({'scope': 'ward', 'name': 'General Ward A', 'kind': 'bed.assigned', 'payload': {}})
    groups = [g for g, _ in layer.sent]
    assert groups == ['flow.ward.general-ward-a', notifications.UPDATES_GROUP]
    assert layer.sent[0][1]['type'] == 'flow.event'


def test_publish_without_layer_is_a_no_op(monkeypatch):
    monkeypatch.setattr(notifications, 'get_channel_layer', lambda: None)
    notifications.publish({'scope': 'ward', 'name': 'X', 'kind': 'bed.assigned', 'payload': {}})


def test_group_names_are_channel_safe():
    assert notifications.group_name('department', 'Médecine Générale') == 'flow.department.medecine-generale'
    assert notifications.group_name('ward', '***') == 'flow.ward.unnamed'
    assert len(notifications.group_name('ward', 'x' * 300)) < 100
