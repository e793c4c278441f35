from django.core.exceptions import ValidationError
from django.db import transaction
from django.test import TestCase

from apps.core.academics.models import SchoolClass, Section
from apps.core.schools.models import School
from apps.core.students.models import Student
from apps.core.students.services import (
    active_students,
    lock_student,
    lookup_student,
    lookup_students,
    require_student,
)
from apps.core.utils.exceptions import NotFoundError


class StudentDirectoryTests(TestCase):
    def setUp(self):
        self.school = School.objects.create(name='Directory School', code='directory_school')
        self.other_school = School.objects.create(name='Other School', code='other_school')
        self.ss1 = SchoolClass.objects.create(school=self.school, name='SS 1', display_order=4)
        self.arts = Section.objects.create(school_class=self.ss1, name='Arts')

        self.streamed = Student.objects.create(
            school=self.school,
            admission_number='YAN006',
            first_name='Ngozi',
            last_name='Okafor',
            current_class=self.ss1,
            current_section=self.arts,
        )
        self.unplaced = Student.objects.create(school=self.school, admission_number='YAN007', first_name='Tunde')
        Student.objects.create(school=self.other_school, admission_number='YAN008', first_name='Kemi')

    def test_class_labels(self):
        self.assertEqual(self.streamed.class_label, 'SS 1 Arts')
        self.assertEqual(self.unplaced.class_label, 'Unknown')
        self.streamed.current_section = None
        self.assertEqual(self.streamed.class_label, 'SS 1')

    def test_lookup_is_scoped_to_school(self):
        self.assertEqual(lookup_student(school=self.school, student_id=' YAN006 '), self.streamed)
        self.assertIsNone(lookup_student(school=self.school, student_id='YAN008'))
        self.assertIsNone(lookup_student(school=self.school, student_id=''))

    def test_lookup_students_returns_only_known_ids(self):
        found = lookup_students(school=self.school, student_ids=['YAN006', 'YAN007', 'YAN008', 'NOPE'])
        self.assertEqual(set(found), {'YAN006', 'YAN007'})
        self.assertEqual(lookup_students(school=self.school, student_ids=[]), {})

    def test_archived_students_stay_in_the_directory(self):
        self.unplaced.delete()
        self.unplaced.refresh_from_db()

        self.assertTrue(self.unplaced.is_archived)
        self.assertEqual(self.unplaced.status, Student.STATUS_ALUMNI)
        self.assertEqual(require_student(school=self.school, student_id='YAN007'), self.unplaced)
        self.assertNotIn(self.unplaced, list(active_students(school=self.school)))

    def test_lock_student(self):
        with transaction.atomic():
            self.assertEqual(lock_student(school=self.school, student_id='YAN006'), self.streamed)
            with self.assertRaises(NotFoundError):
                lock_student(school=self.school, student_id='YAN008')

    def test_stream_must_belong_to_class(self):
        other_class = SchoolClass.objects.create(school=self.school, name='SS 2')
        student = Student(
            school=self.school,
            admission_number='YAN010',
            first_name='Ife',
            current_class=other_class,
            current_section=self.arts,
        )
        with self.assertRaises(ValidationError):
            student.full_clean()

    def test_class_must_belong_to_school(self):
        student = Student(
            school=self.other_school,
            admission_number='YAN011',
            first_name='Femi',
            current_class=self.ss1,
        )
        with self.assertRaises(ValidationError):
            student.full_clean()
