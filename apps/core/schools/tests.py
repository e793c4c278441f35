from datetime import date

from django.contrib.auth import get_user_model
from django.test import RequestFactory, TestCase

from apps.core.academic_sessions.models import AcademicSession, AcademicTerm
from apps.core.academic_sessions.periods import Period
from apps.core.schools.middleware import CurrentSchoolMiddleware
from apps.core.schools.models import School


class SchoolModelTests(TestCase):
    def test_code_is_generated_and_unique(self):
        first = School.objects.create(name='Green Valley')
        second = School.objects.create(name='Green Valley', currency=' ngn ')

        self.assertEqual(first.code, 'green_valley')
        self.assertEqual(second.code, 'green_valley_1')
        self.assertEqual(second.currency, 'NGN')


class CurrentSchoolMiddlewareTests(TestCase):
    def setUp(self):
        self.school = School.objects.create(name='Middleware School')
        self.user = get_user_model().objects.create_user(
            username='mw_admin',
            password='pass12345',
            role='schooladmin',
            school=self.school,
        )
        self.factory = RequestFactory()
        self.middleware = CurrentSchoolMiddleware(lambda request: request)

    def test_resolves_school_and_active_period(self):
        session = AcademicSession.objects.create(
            school=self.school,
            name='2024/2025',
            start_date=date(2024, 9, 1),
            end_date=date(2025, 7, 31),
            is_active=True,
        )
        AcademicTerm.objects.create(session=session, name='Third Term', is_active=True)
        request = self.factory.get('/')
        request.user = self.user

        self.middleware(request)

        self.assertEqual(request.current_school, self.school)
        self.assertEqual(request.current_period, Period(term='Third Term', session='2024/2025'))

    def test_school_without_active_term(self):
        request = self.factory.get('/')
        request.user = self.user

        self.middleware(request)

        self.assertEqual(request.current_school, self.school)
        self.assertIsNone(request.current_period)
