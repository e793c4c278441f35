import random
from datetime import date
from decimal import Decimal

from django.core.management.base import BaseCommand
from django.db import transaction
from faker import Faker

from apps.core.academic_sessions.models import AcademicSession, AcademicTerm
from apps.core.academic_sessions.periods import Period, Term, parse_session
from apps.core.academic_sessions.services import activate_term
from apps.core.academics.models import SchoolClass, Section
from apps.core.fees.models import ClassFeeStructure, LedgerEntry
from apps.core.fees.services import record_payment, seed_term_bills
from apps.core.schools.models import School
from apps.core.students.models import Student
from apps.core.users.models import User

CLASS_FEES = {
    'JSS 1': Decimal('75000'),
    'JSS 2': Decimal('75000'),
    'JSS 3': Decimal('80000'),
    'SS 1': Decimal('90000'),
    'SS 2': Decimal('90000'),
    'SS 3': Decimal('95000'),
}
SENIOR_STREAMS = ('Science', 'Arts', 'Commercial')


class Command(BaseCommand):
    help = 'Seeds a demo school with classes, students, term bills and payments.'

    def add_arguments(self, parser):
        parser.add_argument('--session', default='2024/2025', help='Session to create, e.g. 2024/2025.')
        parser.add_argument('--students-per-class', type=int, default=8)
        parser.add_argument('--seed', type=int, default=None, help='Random seed for repeatable data.')

    @transaction.atomic
    def handle(self, *args, **options):
        self.stdout.write('Seeding ledger...')

        fake = Faker()
        if options['seed'] is not None:
            Faker.seed(options['seed'])
            random.seed(options['seed'])

        period = Period.parse(Term.FIRST, options['session'])
        start_year, end_year = parse_session(period.session)

        school, created = School.objects.get_or_create(
            name=fake.company() + ' School',
            defaults={
                'address': fake.address(),
                'phone': fake.phone_number()[:20],
                'email': fake.email(),
            },
        )
        if created:
            self.stdout.write(self.style.SUCCESS(f'Created school: {school.name}'))

        session, _ = AcademicSession.objects.get_or_create(
            school=school,
            name=period.session,
            defaults={
                'start_date': date(start_year, 9, 1),
                'end_date': date(end_year, 7, 31),
            },
        )
        terms = [AcademicTerm.objects.get_or_create(session=session, name=term)[0] for term in Term.values]
        activate_term(school=school, term=terms[0])
        self.stdout.write(self.style.SUCCESS(f'Active period: {period}'))

        admin_user, created = User.objects.get_or_create(
            username=f'admin-{school.code}',
            defaults={'role': User.ROLE_SCHOOLADMIN, 'school': school},
        )
        if created:
            admin_user.set_password('password')
            admin_user.save()
            self.stdout.write(self.style.SUCCESS(f'Created school admin: {admin_user.username}'))

        accountant, created = User.objects.get_or_create(
            username=f'accounts-{school.code}',
            defaults={'role': User.ROLE_ACCOUNTANT, 'school': school},
        )
        if created:
            accountant.set_password('password')
            accountant.save()
            self.stdout.write(self.style.SUCCESS(f'Created accountant: {accountant.username}'))

        prefix = ''.join(word[0] for word in school.name.split()[:3]).upper()
        next_number = Student.objects.filter(school=school).count() + 1

        for order, (level, amount) in enumerate(CLASS_FEES.items(), start=1):
            school_class, _ = SchoolClass.objects.get_or_create(
                school=school,
                name=level,
                defaults={'display_order': order},
            )
            streams = [None]
            if level.startswith('SS'):
                streams = [Section.objects.get_or_create(school_class=school_class, name=name)[0] for name in SENIOR_STREAMS]

            ClassFeeStructure.objects.get_or_create(
                school=school,
                school_class=school_class,
                section=None,
                term=period.term,
                session=period.session,
                defaults={'amount': amount, 'description': f'{level} tuition'},
            )

            for _ in range(options['students_per_class']):
                Student.objects.create(
                    school=school,
                    admission_number=f'{prefix}{next_number:03d}',
                    first_name=fake.first_name(),
                    last_name=fake.last_name(),
                    current_class=school_class,
                    current_section=random.choice(streams),
                )
                next_number += 1

        billing = seed_term_bills(school=school, period=period, recorded_by=admin_user)
        self.stdout.write(self.style.SUCCESS(f'Billed {billing.billed_count} students ({billing.total_amount}).'))

        paid = 0
        methods = [value for value, _ in LedgerEntry.METHOD_CHOICES]
        for student in Student.objects.filter(school=school, is_active=True):
            bill = LedgerEntry.objects.for_school(school).for_period(period).filter(
                student_code=student.admission_number,
                entry_type=LedgerEntry.TYPE_BILL,
            ).first()
            if bill is None:
                continue
            share = random.choice((Decimal('0'), Decimal('0.5'), Decimal('1')))
            if not share:
                continue
            record_payment(
                school=school,
                student_id=student.admission_number,
                period=period,
                amount=bill.amount * share,
                method=random.choice(methods),
                recorded_by=accountant,
            )
            paid += 1

        self.stdout.write(self.style.SUCCESS(f'Recorded {paid} payments. Done.'))
