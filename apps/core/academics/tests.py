from django.core.exceptions import ValidationError
from django.test import TestCase

from apps.core.academics.models import SchoolClass, Section
from apps.core.schools.models import School


class SchoolClassTests(TestCase):
    def setUp(self):
        self.school = School.objects.create(name='Class School')
        self.school_class = SchoolClass.objects.create(school=self.school, name='JSS 2')

    def test_delete_deactivates(self):
        self.school_class.delete()
        self.school_class.refresh_from_db()
        self.assertFalse(self.school_class.is_active)

    def test_class_with_streams_cannot_be_deleted(self):
        Section.objects.create(school_class=self.school_class, name='Gold')
        with self.assertRaises(ValidationError):
            self.school_class.delete()

    def test_blank_class_level_is_rejected(self):
        with self.assertRaises(ValidationError):
            SchoolClass(school=self.school, name='   ').full_clean()
