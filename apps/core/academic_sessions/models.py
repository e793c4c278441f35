from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import F, Q

from apps.core.utils.managers import SchoolManager

from .periods import Period, Term, normalize_session


class AcademicSession(models.Model):
    school = models.ForeignKey(
        'schools.School',
        on_delete=models.CASCADE,
        related_name='academic_sessions'
    )
    objects = SchoolManager()

    name = models.CharField(max_length=20)  # e.g. 2024/2025
    start_date = models.DateField()
    end_date = models.DateField()
    is_active = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-start_date', '-id']
        constraints = [
            models.UniqueConstraint(fields=['school', 'name'], name='unique_session_name_per_school'),
            models.UniqueConstraint(
                fields=['school'],
                condition=Q(is_active=True),
                name='unique_active_session_per_school',
            ),
            models.CheckConstraint(
                condition=Q(end_date__gt=F('start_date')),
                name='session_end_after_start',
            ),
        ]
        indexes = [
            models.Index(fields=['school', 'is_active'], name='session_school_active_idx'),
            models.Index(fields=['school', 'start_date'], name='session_school_start_idx'),
        ]

    def clean(self):
        super().clean()
        self.name = normalize_session(self.name, field='name')
        if self.start_date and self.end_date and self.end_date <= self.start_date:
            raise ValidationError({'end_date': 'Session must end after it starts.'})

    def save(self, *args, **kwargs):
        self.name = normalize_session(self.name, field='name')
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.school.name} - {self.name}"


class AcademicTerm(models.Model):
    session = models.ForeignKey(
        AcademicSession,
        on_delete=models.CASCADE,
        related_name='terms',
    )
    name = models.CharField(max_length=20, choices=Term.choices)
    start_date = models.DateField(null=True, blank=True)
    end_date = models.DateField(null=True, blank=True)
    is_active = models.BooleanField(default=False)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['session__start_date', 'name', 'id']
        constraints = [
            models.UniqueConstraint(fields=['session', 'name'], name='unique_term_name_per_session'),
            models.UniqueConstraint(
                fields=['session'],
                condition=Q(is_active=True),
                name='unique_active_term_per_session',
            ),
        ]

    @property
    def school(self):
        return self.session.school

    @property
    def period(self):
        return Period(term=self.name, session=self.session.name)

    def clean(self):
        super().clean()
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValidationError({'end_date': 'Term cannot end before it starts.'})
        if self.session_id and self.start_date and self.start_date < self.session.start_date:
            raise ValidationError({'start_date': 'Term must start within its session.'})
        if self.session_id and self.end_date and self.end_date > self.session.end_date:
            raise ValidationError({'end_date': 'Term must end within its session.'})

    def __str__(self):
        return f"{self.session.name} {self.name}"
