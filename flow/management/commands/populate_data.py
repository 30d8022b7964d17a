"""
Management command to populate the database with demo data.
"""
import random

from django.contrib.auth.hashers import make_password
from django.core.management.base import BaseCommand

from flow.models import Bed, BedStatus, BedType, Patient, QueueEntry, QueueStatus, User
from flow.services import coordinator, queues, resources
from flow.services.triage import CATEGORY_PRIORITY

WARDS = {
    'Emergency': ('ER', BedType.EMERGENCY, 6),
    'ICU': ('ICU', BedType.ICU, 4),
    'General Ward A': ('GA', BedType.STANDARD, 10),
    'Pediatrics': ('PED', BedType.PEDIATRIC, 5),
}
DEPARTMENTS = ['General', 'Emergency', 'Cardiology', 'Pediatrics']
FIRST_NAMES = ['Ada', 'Ben', 'Chloe', 'Dev', 'Elif', 'Femi', 'Grace', 'Hugo', 'Iris', 'Jonas', 'Kemi', 'Luca']
LAST_NAMES = ['Moreau', 'Okafor', 'Nakamura', 'Silva', 'Novak', 'Haddad', 'Larsen', 'Reyes']


class Command(BaseCommand):
    help = 'Populate database with demo staff, beds, patients and queues'

    def add_arguments(self, parser):
        parser.add_argument('--patients', type=int, default=20)
        parser.add_argument('--seed', type=int, default=None)

    def handle(self, *args, **options):
        rng = random.Random(options['seed'])
        self.stdout.write('Creating demo data...')

        staff = self.create_staff()
        self.create_beds()
        patients = self.create_patients(options['patients'])

        if QueueEntry.objects.exists():
            self.stdout.write('Queues already populated, skipping check-ins')
        else:
            self.create_checkins(patients, staff['receptionist'], rng)
            self.admit_some(staff['nurse'], rng)

        self.stdout.write(self.style.SUCCESS('Demo data created.'))

    def create_staff(self):
        staff = {}
        for role, _ in User.ROLE_CHOICES:
            user, created = User.objects.get_or_create(
                username=f'{role}1',
                defaults={
                    'password': make_password('changeme123'),
                    'role': role,
                    'first_name': role.title(),
                    'is_staff': role == User.ROLE_ADMIN,
                },
            )
            staff[role] = user
            if created:
                self.stdout.write(f'Created staff user: {user.username} ({user.role})')
        return staff

    def create_beds(self):
        for ward, (prefix, bed_type, count) in WARDS.items():
            for n in range(1, count + 1):
                number = f'{prefix}-{n:03d}'
                if Bed.objects.filter(number=number).exists():
                    continue
                resources.create_bed(
                    number=number,
                    ward=ward,
                    bed_type=bed_type,
                    location=f'{ward}, bay {(n - 1) // 4 + 1}',
                    equipment=['monitor'] if bed_type in (BedType.ICU, BedType.EMERGENCY) else [],
                )
            self.stdout.write(f'Ward ready: {ward} ({count} beds)')

    def create_patients(self, count):
        patients = []
        for i in range(1, count + 1):
            patient, created = Patient.objects.get_or_create(
                patient_number=f'P{i:05d}',
                defaults={
                    'first_name': FIRST_NAMES[i % len(FIRST_NAMES)],
                    'last_name': LAST_NAMES[i % len(LAST_NAMES)],
                    'phone': f'555-01{i:02d}',
                },
            )
            patients.append(patient)
        self.stdout.write(f'{len(patients)} patients available')
        return patients

    def create_checkins(self, patients, receptionist, rng):
        ranks = sorted(set(CATEGORY_PRIORITY.values()))
        for patient in patients:
            entry = queues.check_in(
                patient.pk,
                rng.choice(DEPARTMENTS),
                priority=rng.choice(ranks),
                receptionist=receptionist,
            )
            roll = rng.random()
            if roll < 0.3:
                queues.transition(entry.pk, QueueStatus.IN_SERVICE)
            elif roll < 0.4:
                queues.transition(entry.pk, QueueStatus.CANCELLED)
        self.stdout.write(f'Checked in {len(patients)} patients')

    def admit_some(self, nurse, rng):
        in_service = list(QueueEntry.objects.filter(status=QueueStatus.IN_SERVICE)[:3])
        free_beds = list(Bed.objects.filter(status=BedStatus.AVAILABLE))
        rng.shuffle(free_beds)
        for entry, bed in zip(in_service, free_beds):
            assignment = coordinator.admit_from_queue(entry.pk, bed.pk, assigned_by=nurse)
            self.stdout.write(f'Admitted {assignment.patient_id} to {bed.number}')
