from django.core.exceptions import ValidationError
from django.db import models
from django.utils import timezone

from apps.core.academics.models import SchoolClass, Section
from apps.core.schools.models import School
from apps.core.utils.managers import SchoolManager


UNKNOWN_CLASS_LABEL = 'Unknown'


def build_class_label(class_level, stream=''):
    class_level = (class_level or '').strip()
    stream = (stream or '').strip()
    if not class_level:
        return UNKNOWN_CLASS_LABEL
    return f"{class_level} {stream}" if stream else class_level


class Student(models.Model):
    STATUS_ACTIVE = 'active'
    STATUS_GRADUATED = 'graduated'
    STATUS_WITHDRAWN = 'withdrawn'
    STATUS_ALUMNI = 'alumni'
    STATUS_CHOICES = (
        (STATUS_ACTIVE, 'Active'),
        (STATUS_GRADUATED, 'Graduated'),
        (STATUS_WITHDRAWN, 'Withdrawn'),
        (STATUS_ALUMNI, 'Alumni'),
    )

    school = models.ForeignKey(School, on_delete=models.CASCADE, related_name='students')
    objects = SchoolManager()

    # The school-issued student id (e.g. YAN006); ledger rows refer to students by it.
    admission_number = models.CharField(max_length=50)
    first_name = models.CharField(max_length=100)
    last_name = models.CharField(max_length=100, blank=True)

    current_class = models.ForeignKey(
        SchoolClass,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='students',
    )
    current_section = models.ForeignKey(
        Section,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='students',
    )

    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_ACTIVE)
    is_active = models.BooleanField(default=True)
    is_archived = models.BooleanField(default=False)
    archived_at = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['admission_number', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['school', 'admission_number'],
                name='unique_student_admission_number_per_school',
            ),
        ]
        indexes = [
            models.Index(fields=['school', 'is_active'], name='student_school_active_idx'),
            models.Index(fields=['school', 'current_class'], name='student_school_class_idx'),
        ]

    @property
    def student_id(self):
        return self.admission_number

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def class_level(self):
        return self.current_class.name if self.current_class_id else ''

    @property
    def stream(self):
        return self.current_section.name if self.current_section_id else ''

    @property
    def class_label(self):
        return build_class_label(self.class_level, self.stream)

    def clean(self):
        super().clean()
        if self.admission_number:
            self.admission_number = self.admission_number.strip()
        if not self.admission_number:
            raise ValidationError({'admission_number': 'Student id is required.'})

        if self.current_class_id and self.current_class.school_id != self.school_id:
            raise ValidationError({'current_class': 'Selected class does not belong to your school.'})

        if self.current_section_id:
            if not self.current_class_id:
                raise ValidationError({'current_section': 'Select class before stream.'})
            if self.current_section.school_class_id != self.current_class_id:
                raise ValidationError({'current_section': 'Selected stream does not belong to selected class.'})

    def delete(self, *args, **kwargs):
        if self.is_archived:
            return
        self.is_active = False
        self.is_archived = True
        self.status = self.STATUS_ALUMNI
        self.archived_at = timezone.now()
        self.save(update_fields=['is_active', 'is_archived', 'status', 'archived_at'])

    def __str__(self):
        return f"{self.admission_number} - {self.full_name}"
