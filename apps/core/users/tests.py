from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.http import HttpRequest
from django.test import RequestFactory, TestCase

from apps.core.schools.models import School
from apps.core.students.models import Student
from apps.core.users.audit import log_audit_event
from apps.core.users.models import AuditLog


class UserRoleTests(TestCase):
    def setUp(self):
        self.user_model = get_user_model()
        self.school = School.objects.create(name='Alpha School')
        self.other_school = School.objects.create(name='Beta School')
        self.student = Student.objects.create(school=self.school, admission_number='A001', first_name='Ada')

    def test_superuser_is_detached_from_schools(self):
        user = self.user_model.objects.create_superuser('root', 'root@example.com', 'pass12345')
        self.assertEqual(user.role, 'superadmin')
        self.assertIsNone(user.school)

    def test_school_users_need_a_school(self):
        with self.assertRaises(ValueError):
            self.user_model.objects.create_user(username='nobody', password='pass12345', role='accountant')

    def test_student_link_is_kept_only_for_student_role(self):
        accountant = self.user_model.objects.create_user(
            username='accounts',
            password='pass12345',
            role='accountant',
            school=self.school,
            student=self.student,
        )
        self.assertIsNone(accountant.student)

        portal = self.user_model.objects.create_user(
            username='ada',
            password='pass12345',
            role='student',
            school=self.school,
            student=self.student,
        )
        self.assertEqual(self.student.portal_user, portal)

    def test_student_link_must_stay_within_school(self):
        with self.assertRaises(ValidationError):
            self.user_model.objects.create_user(
                username='stray',
                password='pass12345',
                role='student',
                school=self.other_school,
                student=self.student,
            )


class AuditLogTests(TestCase):
    def setUp(self):
        self.school = School.objects.create(name='Audit School')
        self.user = get_user_model().objects.create_user(
            username='auditor',
            password='pass12345',
            role='schooladmin',
            school=self.school,
        )
        self.factory = RequestFactory()

    def test_event_records_request_and_details(self):
        request = self.factory.post('/fees/payments/', HTTP_X_FORWARDED_FOR='10.0.0.7, 10.0.0.1')
        request.user = self.user

        log = log_audit_event(request, 'fees.payment_recorded', target=self.school, details={'amount': 10})

        self.assertEqual(log.school, self.school)
        self.assertEqual(log.target_model, 'School')
        self.assertEqual(log.ip_address, '10.0.0.7')
        self.assertEqual(log.details, {'amount': 10})
        self.assertEqual(log.method, 'POST')

    def test_role_required_rejects_wrong_role_as_json(self):
        teacher = get_user_model().objects.create_user(
            username='teacher1',
            password='pass12345',
            role='teacher',
            school=self.school,
        )
        self.client.force_login(teacher)

        response = self.client.get('/fees/summary/')

        self.assertEqual(response.status_code, 403)
        self.assertIn('error', response.json())
        self.assertFalse(AuditLog.objects.filter(action__startswith='fees.').exists())

    def test_login_is_audited(self):
        self.assertTrue(self.client.login(username='auditor', password='pass12345'))

        log = AuditLog.objects.get(action='user.login')
        self.assertEqual(log.user, self.user)
        self.assertEqual(log.details, {'role': 'schooladmin'})

    def test_request_without_user_falls_back_to_given_user(self):
        log = log_audit_event(HttpRequest(), 'user.login', user=self.user, details={'role': 'schooladmin'})

        self.assertEqual(log.user, self.user)
        self.assertEqual(log.school, self.school)
        self.assertEqual(log.method, '')

    def test_anonymous_request_is_recorded_without_user(self):
        log = log_audit_event(HttpRequest(), 'session.viewed', school=self.school)

        self.assertIsNone(log.user)
        self.assertEqual(log.school, self.school)
