import json
from datetime import date

from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.test import SimpleTestCase, TestCase
from django.urls import reverse

from apps.core.academic_sessions.models import AcademicSession, AcademicTerm
from apps.core.academic_sessions.periods import Period, normalize_session, normalize_term
from apps.core.academic_sessions.services import (
    activate_term,
    current_period,
    find_current_period,
    resolve_period,
)
from apps.core.schools.models import School
from apps.core.users.models import AuditLog
from apps.core.utils.exceptions import NotFoundError


class PeriodNormalisationTests(SimpleTestCase):
    def test_term_aliases(self):
        for raw in ('First', 'first term', '1st Term', ' 1ST ', '1', 'First  Term'):
            self.assertEqual(normalize_term(raw), 'First Term')
        self.assertEqual(normalize_term('2nd'), 'Second Term')
        self.assertEqual(normalize_term('Third'), 'Third Term')

    def test_unknown_term(self):
        with self.assertRaises(ValidationError):
            normalize_term('Fourth Term')
        with self.assertRaises(ValidationError):
            normalize_term('')

    def test_session_formats(self):
        for raw in ('2024/2025', '2024-2025', '2024-25', ' 2024 / 2025 '):
            self.assertEqual(normalize_session(raw), '2024/2025')
        self.assertEqual(normalize_session('2099-00'), '2099/2100')

    def test_session_must_span_consecutive_years(self):
        for raw in ('2024/2026', '2025/2024', '24/25', 'next year'):
            with self.assertRaises(ValidationError):
                normalize_session(raw)

    def test_parse_reports_both_fields(self):
        with self.assertRaises(ValidationError) as raised:
            Period.parse('Fourth', 'soon')
        self.assertEqual(set(raised.exception.message_dict), {'term', 'session'})

    def test_first_term_rolls_back_to_previous_session(self):
        period = Period.parse('First', '2024/2025')
        self.assertEqual(period.previous(), Period(term='Third Term', session='2023/2024'))

    def test_moving_within_a_session_keeps_the_session(self):
        period = Period.parse('First', '2024/2025')
        self.assertEqual(period.next(), Period(term='Second Term', session='2024/2025'))
        self.assertEqual(period.next().previous(), period)

    def test_third_term_rolls_into_next_session(self):
        period = Period.parse('Third', '2024-25')
        self.assertEqual(period.next(), Period(term='First Term', session='2025/2026'))

    def test_ordering_and_display(self):
        periods = [Period.parse('First', '2024/2025'), Period.parse('Third', '2023/2024'), Period.parse('Second', '2024/2025')]
        ordered = sorted(periods, key=lambda period: period.sort_key)
        self.assertEqual([str(period) for period in ordered], [
            '2023/2024 Third Term',
            '2024/2025 First Term',
            '2024/2025 Second Term',
        ])


class AcademicSessionServiceTests(TestCase):
    def setUp(self):
        self.school = School.objects.create(name='Session School', code='session_school')
        self.session = AcademicSession.objects.create(
            school=self.school,
            name='2024-25',
            start_date=date(2024, 9, 1),
            end_date=date(2025, 7, 31),
        )
        self.first = AcademicTerm.objects.create(session=self.session, name='First Term')
        self.second = AcademicTerm.objects.create(session=self.session, name='Second Term')

    def test_session_name_is_stored_canonically(self):
        self.assertEqual(self.session.name, '2024/2025')

    def test_no_current_period_until_a_term_is_active(self):
        self.assertIsNone(find_current_period(self.school))
        with self.assertRaises(NotFoundError):
            current_period(self.school)

    def test_activate_term_activates_its_session(self):
        activate_term(school=self.school, term=self.first)
        activate_term(school=self.school, term=self.second)

        self.session.refresh_from_db()
        self.first.refresh_from_db()
        self.assertTrue(self.session.is_active)
        self.assertFalse(self.first.is_active)
        self.assertEqual(current_period(self.school), Period(term='Second Term', session='2024/2025'))

    def test_activate_term_of_another_school_is_rejected(self):
        other = School.objects.create(name='Other School')
        with self.assertRaises(ValidationError):
            activate_term(school=other, term=self.first)

    def test_resolve_period_checks_configuration(self):
        self.assertEqual(
            resolve_period(school=self.school, term='1st', session='2024-25'),
            Period(term='First Term', session='2024/2025'),
        )
        with self.assertRaises(NotFoundError):
            resolve_period(school=self.school, term='Third', session='2024/2025')
        with self.assertRaises(NotFoundError):
            resolve_period(school=self.school, term='First', session='2025/2026')
        with self.assertRaises(ValidationError):
            resolve_period(school=self.school, term='First', session='2025')

    def test_only_one_active_session_per_school(self):
        AcademicSession.objects.filter(pk=self.session.pk).update(is_active=True)
        with self.assertRaises(IntegrityError), transaction.atomic():
            AcademicSession.objects.create(
                school=self.school,
                name='2025/2026',
                start_date=date(2025, 9, 1),
                end_date=date(2026, 7, 31),
                is_active=True,
            )


class AcademicSessionApiTests(TestCase):
    def setUp(self):
        user_model = get_user_model()
        self.school = School.objects.create(name='Api School', code='api_school')
        self.school_admin = user_model.objects.create_user(
            username='session_admin',
            password='pass12345',
            role='schooladmin',
            school=self.school,
        )
        self.accountant = user_model.objects.create_user(
            username='session_accountant',
            password='pass12345',
            role='accountant',
            school=self.school,
        )
        self.old_session = AcademicSession.objects.create(
            school=self.school,
            name='2023/2024',
            start_date=date(2023, 9, 1),
            end_date=date(2024, 7, 31),
            is_active=True,
        )

    def post_json(self, url, payload):
        return self.client.post(url, data=json.dumps(payload), content_type='application/json')

    def test_create_active_session_replaces_the_old_one(self):
        self.client.login(username='session_admin', password='pass12345')

        response = self.post_json(reverse('session_list'), {
            'name': '2024-25',
            'start_date': '2024-09-01',
            'end_date': '2025-07-31',
            'is_active': True,
        })

        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()['name'], '2024/2025')
        self.old_session.refresh_from_db()
        self.assertFalse(self.old_session.is_active)
        self.assertTrue(AuditLog.objects.filter(action='session.created').exists())

    def test_duplicate_or_malformed_session_name(self):
        self.client.login(username='session_admin', password='pass12345')
        url = reverse('session_list')

        duplicate = self.post_json(url, {'name': '2023-24', 'start_date': '2023-09-01', 'end_date': '2024-07-31'})
        self.assertEqual(duplicate.status_code, 400)
        self.assertIn('name', duplicate.json()['fields'])

        malformed = self.post_json(url, {'name': '2023', 'start_date': '2023-09-01', 'end_date': '2024-07-31'})
        self.assertEqual(malformed.status_code, 400)

    def test_create_and_activate_term_sets_context(self):
        self.client.login(username='session_admin', password='pass12345')

        created = self.post_json(reverse('term_create', args=[self.old_session.id]), {'name': '2nd'})
        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.json()['name'], 'Second Term')

        activated = self.client.post(reverse('term_activate', args=[created.json()['id']]))
        self.assertEqual(activated.status_code, 200)

        context = self.client.get(reverse('academic_context')).json()
        self.assertEqual(context['current'], {'term': 'Second Term', 'session': '2023/2024'})
        self.assertEqual(context['next'], {'term': 'Third Term', 'session': '2023/2024'})

    def test_session_of_another_school_is_not_found(self):
        other = School.objects.create(name='Elsewhere')
        foreign = AcademicSession.objects.create(
            school=other,
            name='2024/2025',
            start_date=date(2024, 9, 1),
            end_date=date(2025, 7, 31),
        )
        self.client.login(username='session_admin', password='pass12345')

        response = self.client.post(reverse('session_activate', args=[foreign.id]))

        self.assertEqual(response.status_code, 404)

    def test_listing_requires_school_admin(self):
        self.client.login(username='session_accountant', password='pass12345')
        self.assertEqual(self.client.get(reverse('session_list')).status_code, 403)

        context = self.client.get(reverse('academic_context'))
        self.assertEqual(context.status_code, 200)
        self.assertIsNone(context.json()['current'])
