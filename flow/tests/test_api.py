"""
Integration tests for the patient-flow API.

These exercise the HTTP surface end to end: role checks, the response
envelope, error codes for every failure kind and the bed / queue flows
the staff UI drives.  They use Django REST Framework's APIClient within
the APITestCase base class.
"""
from unittest import mock

from rest_framework import status
from rest_framework.test import APIClient, APITestCase

from ..models import Bed, BedAssignment, BedStatus, CheckIn, Patient, QueueEntry, QueueStatus, User
from ..services import queues, resources


class FlowAPITests(APITestCase):
    def setUp(self) -> None:
        self.admin = User.objects.create_user(username='admin1', password='P@ssw0rd1', role='admin')
        self.nurse = User.objects.create_user(username='nurse1', password='P@ssw0rd1', role='nurse')
        self.desk = User.objects.create_user(username='desk1', password='P@ssw0rd1', role='receptionist')
        self.doctor = User.objects.create_user(username='doc1', password='P@ssw0rd1', role='clinician')
        self.p1 = Patient.objects.create(patient_number='P001', first_name='Ada', last_name='Moreau')
        self.p2 = Patient.objects.create(patient_number='P002', first_name='Ben', last_name='Okafor')
        self.bed = resources.create_bed(number='ER-001', ward='Emergency', bed_type='Emergency')

    def authenticate(self, user: User) -> APIClient:
        client = APIClient()
        client.force_authenticate(user=user)
        return client

    # -- beds ---------------------------------------------------------------

    def test_anonymous_requests_are_rejected(self):
        response = APIClient().get('/api/beds')
        self.assertIn(response.status_code, (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN))
        self.assertFalse(response.data['ok'])

    def test_list_beds_with_summary(self):
        response = self.authenticate(self.desk).get('/api/beds', {'ward': 'Emergency'})
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['ok'])
        self.assertEqual([b['bedNumber'] for b in response.data['data']], ['ER-001'])
        self.assertEqual(response.data['summary']['total'], 1)

    def test_only_admin_creates_beds(self):
        payload = {'bedNumber': 'ER-002', 'ward': 'Emergency', 'bedType': 'Emergency'}
        response = self.authenticate(self.nurse).post('/api/beds', payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        response = self.authenticate(self.admin).post('/api/beds', payload, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['data']['status'], BedStatus.AVAILABLE)

    def test_duplicate_bed_number_is_409(self):
        response = self.authenticate(self.admin).post(
            '/api/beds', {'bedNumber': 'ER-001', 'ward': 'ICU'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error']['code'], 'duplicate_identifier')

    def test_validation_errors_use_envelope(self):
        response = self.authenticate(self.admin).post('/api/beds', {'ward': 'ICU'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertFalse(response.data['ok'])
        self.assertEqual(response.data['error']['code'], 'invalid')
        self.assertIn('bedNumber', response.data['error']['message'])

    def test_patch_bed_refuses_status(self):
        client = self.authenticate(self.admin)
        response = client.patch(f'/api/beds/{self.bed.pk}', {'status': 'Occupied'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        response = client.patch(f'/api/beds/{self.bed.pk}', {'location': 'Bay 3'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['location'], 'Bay 3')

    def test_unknown_bed_is_404(self):
        response = self.authenticate(self.nurse).post('/api/beds/nope/maintenance', {'on': True}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error']['code'], 'not_found')

    def test_assign_then_second_assign_conflicts(self):
        client = self.authenticate(self.nurse)
        response = client.post('/api/beds/assignments', {'bedId': str(self.bed.pk), 'patientId': str(self.p1.pk)},
                               format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['data']['assignedBy']['id'], self.nurse.pk)
        response = client.post('/api/beds/assignments', {'bedId': str(self.bed.pk), 'patientId': str(self.p2.pk)},
                               format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error']['code'], 'resource_unavailable')
        self.assertIn('refresh and retry', response.data['error']['message'])

    def test_receptionist_cannot_assign(self):
        response = self.authenticate(self.desk).post(
            '/api/beds/assignments', {'bedId': str(self.bed.pk), 'patientId': str(self.p1.pk)}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        self.assertFalse(BedAssignment.objects.exists())

    def test_discharge_and_list(self):
        assignment = resources.assign(self.bed.pk, self.p1.pk)
        client = self.authenticate(self.nurse)
        response = client.get('/api/beds/assignments')
        self.assertEqual([a['id'] for a in response.data['data']], [str(assignment.pk)])
        response = client.post(f'/api/beds/assignments/{assignment.pk}/discharge', {'notes': 'home'},
                               format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['data']['status'], 'Discharged')
        response = client.post(f'/api/beds/assignments/{assignment.pk}/discharge', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.bed.refresh_from_db()
        self.assertEqual(self.bed.status, BedStatus.AVAILABLE)

    def test_transfer_endpoint(self):
        icu = resources.create_bed(number='ICU-001', ward='ICU')
        assignment = resources.assign(self.bed.pk, self.p1.pk)
        response = self.authenticate(self.nurse).post(
            f'/api/beds/assignments/{assignment.pk}/transfer', {'toBedId': str(icu.pk)}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['data']['bedNumber'], 'ICU-001')

    def test_maintenance_on_occupied_bed_is_invalid_transition(self):
        resources.assign(self.bed.pk, self.p1.pk)
        response = self.authenticate(self.nurse).post(
            f'/api/beds/{self.bed.pk}/maintenance', {'on': True}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error']['code'], 'invalid_transition')

    def test_reserve_toggle(self):
        client = self.authenticate(self.nurse)
        response = client.post(f'/api/beds/{self.bed.pk}/reserve', {'on': True}, format='json')
        self.assertEqual(response.data['data']['status'], BedStatus.RESERVED)
        response = client.post(f'/api/beds/{self.bed.pk}/reserve', {'on': False}, format='json')
        self.assertEqual(response.data['data']['status'], BedStatus.AVAILABLE)

    def test_summary_endpoint(self):
        resources.assign(self.bed.pk, self.p1.pk)
        response = self.authenticate(self.desk).get('/api/beds/summary')
        self.assertEqual(response.data['data']['occupied'], 1)
        self.assertEqual(response.data['data']['occupancyRate'], 100)

    # -- queues -------------------------------------------------------------

    def test_check_in_with_triage_category(self):
        response = self.authenticate(self.desk).post(
            '/api/checkins',
            {'patientId': str(self.p1.pk), 'department': 'General', 'triageCategory': 'Very Urgent'},
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        data = response.data['data']
        self.assertEqual(data['priority'], 2)
        self.assertEqual(data['status'], QueueStatus.WAITING)
        entry = QueueEntry.objects.get(pk=data['token'])
        self.assertEqual(entry.checkin.receptionist, self.desk)

    def test_unknown_triage_category_is_400(self):
        response = self.authenticate(self.desk).post(
            '/api/checkins',
            {'patientId': str(self.p1.pk), 'department': 'General', 'triageCategory': 'Whenever'},
            format='json',
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_out_of_range_priority_is_400(self):
        client = self.authenticate(self.desk)
        for priority in (-1, -7, 2**31, 10**20):
            response = client.post(
                '/api/checkins',
                {'patientId': str(self.p1.pk), 'department': 'General', 'priority': priority},
                format='json',
            )
            self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
            self.assertEqual(response.data['error']['code'], 'invalid')
        self.assertFalse(QueueEntry.objects.exists())

    def test_queue_order_and_next(self):
        client = self.authenticate(self.desk)
        ids = []
        for patient, category in ((self.p1, 'Urgent'), (self.p2, 'Emergency')):
            checkin = CheckIn.objects.create(patient=patient, department='General')
            response = client.post('/api/queues', {'checkinId': str(checkin.pk), 'department': 'General',
                                                   'triageCategory': category}, format='json')
            self.assertEqual(response.status_code, status.HTTP_201_CREATED)
            ids.append(response.data['data']['id'])
        response = client.get('/api/queues', {'department': 'General'})
        self.assertEqual([r['id'] for r in response.data['data']], [ids[1], ids[0]])
        response = client.get('/api/queues/next', {'department': 'General'})
        self.assertEqual(response.data['data']['id'], ids[1])
        response = client.get('/api/queues/next', {'department': 'Nowhere'})
        self.assertIsNone(response.data['data'])

    def test_transition_endpoint_and_terminal_state(self):
        entry = queues.check_in(self.p1.pk, 'General')
        client = self.authenticate(self.doctor)
        for target in (QueueStatus.IN_SERVICE, QueueStatus.DONE):
            response = client.post(f'/api/queues/{entry.pk}/transition', {'status': target}, format='json')
            self.assertEqual(response.status_code, status.HTTP_200_OK)
        response = client.post(f'/api/queues/{entry.pk}/transition', {'status': QueueStatus.CANCELLED},
                               format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error']['code'], 'invalid_transition')
        response = client.get(f'/api/queues/{entry.pk}/events')
        self.assertEqual([e['to'] for e in response.data['data']['events']],
                         [QueueStatus.WAITING, QueueStatus.IN_SERVICE, QueueStatus.DONE])

    def test_priority_endpoint(self):
        entry = queues.check_in(self.p1.pk, 'General')
        client = self.authenticate(self.doctor)
        response = client.post(f'/api/queues/{entry.pk}/priority', {'priority': 1}, format='json')
        self.assertEqual(response.data['data']['priority'], 1)
        response = client.post(f'/api/queues/{entry.pk}/priority', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_admit_endpoint(self):
        entry = queues.check_in(self.p1.pk, 'Emergency')
        response = self.authenticate(self.nurse).post(
            f'/api/queues/{entry.pk}/admit', {'bedId': str(self.bed.pk)}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        entry.refresh_from_db()
        self.assertEqual(entry.status, QueueStatus.DONE)
        self.assertEqual(Bed.objects.get(pk=self.bed.pk).status, BedStatus.OCCUPIED)

    # -- dashboards & exports -------------------------------------------------

    def test_breakdowns_and_sla(self):
        entry = queues.check_in(self.p1.pk, 'General')
        client = self.authenticate(self.desk)
        response = client.get('/api/flow/wards')
        self.assertEqual(response.data['data'][0]['ward'], 'Emergency')
        response = client.get('/api/flow/departments')
        self.assertEqual(response.data['data'][0]['nextEntryId'], str(entry.pk))
        response = client.get('/api/flow/sla', {'department': 'General'})
        self.assertEqual(response.data['data']['waiting']['count'], 1)
        response = client.get('/api/flow/sla', {'department': 'General', 'p': 95})
        self.assertEqual(response.data['data']['level'], 'ok')

    def test_exports(self):
        assignment = resources.assign(self.bed.pk, self.p1.pk)
        resources.discharge(assignment.pk)
        queues.check_in(self.p2.pk, 'General')
        client = self.authenticate(self.admin)
        response = client.get('/api/exports/bed-assignments')
        self.assertEqual(response.data['meta']['count'], 1)
        response = client.get('/api/exports/queue-events', {'department': 'General'})
        self.assertEqual(response.data['data'][0]['to'], QueueStatus.WAITING)

    def test_unexpected_errors_are_500_envelope(self):
        client = self.authenticate(self.desk)
        with mock.patch('flow.views.beds.resources.summary', side_effect=RuntimeError('boom')):
            response = client.get('/api/beds/summary', {'ward': 'Emergency'})
        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data['error']['code'], 'server_error')

    def test_healthz(self):
        response = self.client.get('/healthz')
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()['ok'])
