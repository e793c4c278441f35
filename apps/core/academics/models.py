from django.core.exceptions import ValidationError
from django.db import models

from apps.core.schools.models import School
from apps.core.utils.managers import SchoolManager


class SchoolClass(models.Model):
    school = models.ForeignKey(
        School,
        on_delete=models.CASCADE,
        related_name='classes',
    )
    objects = SchoolManager()

    name = models.CharField(max_length=50)  # class level, e.g. JSS 1, SS 2
    code = models.CharField(max_length=20, blank=True)
    display_order = models.PositiveIntegerField(default=0)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ['display_order', 'name', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['school', 'name'],
                name='unique_class_name_per_school',
            ),
        ]
        indexes = [
            models.Index(fields=['school', 'is_active'], name='class_school_active_idx'),
        ]

    def clean(self):
        super().clean()
        if self.name:
            self.name = self.name.strip()
        if not self.name:
            raise ValidationError({'name': 'Class level is required.'})

    def delete(self, *args, **kwargs):
        if self.sections.exists():
            raise ValidationError('Cannot delete class while streams exist.')
        if self.is_active:
            self.is_active = False
            self.save(update_fields=['is_active'])

    def __str__(self):
        return self.name


class Section(models.Model):
    """A stream within a class level (e.g. Science, Arts, Gold)."""

    school_class = models.ForeignKey(
        SchoolClass,
        on_delete=models.CASCADE,
        related_name='sections',
    )
    name = models.CharField(max_length=50)
    is_active = models.BooleanField(default=True)

    class Meta:
        ordering = ['name', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['school_class', 'name'],
                name='unique_section_name_per_class',
            ),
        ]

    @property
    def school(self):
        return self.school_class.school

    def delete(self, *args, **kwargs):
        if self.is_active:
            self.is_active = False
            self.save(update_fields=['is_active'])

    def __str__(self):
        return f"{self.school_class.name} {self.name}"
