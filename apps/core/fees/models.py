from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import models
from django.db.models import Q
from django.utils import timezone

from apps.core.academic_sessions.periods import Period, Term, normalize_session, normalize_term
from apps.core.academics.models import SchoolClass, Section
from apps.core.schools.models import School
from apps.core.utils.managers import PeriodManager, SchoolManager


class FinancialRecordModel(models.Model):
    class Meta:
        abstract = True

    def delete(self, *args, **kwargs):
        raise ValidationError('Ledger records cannot be deleted. Post an adjustment instead.')


class PeriodFieldsMixin:
    """Normalises ``term`` / ``session`` free text before validation and save."""

    def normalize_period_fields(self):
        if self.term:
            self.term = normalize_term(self.term)
        if self.session:
            self.session = normalize_session(self.session)

    @property
    def period(self):
        return Period(term=self.term, session=self.session)


class ClassFeeStructure(PeriodFieldsMixin, models.Model):
    school = models.ForeignKey(
        School,
        on_delete=models.CASCADE,
        related_name='class_fee_structures',
    )
    school_class = models.ForeignKey(
        SchoolClass,
        on_delete=models.CASCADE,
        related_name='fee_structures',
    )
    section = models.ForeignKey(
        Section,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name='fee_structures',
    )
    objects = PeriodManager()

    term = models.CharField(max_length=20, choices=Term.choices)
    session = models.CharField(max_length=20)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    description = models.CharField(max_length=255, blank=True)
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ['school_class__display_order', 'section__name', 'id']
        constraints = [
            models.UniqueConstraint(
                fields=['school_class', 'section', 'term', 'session'],
                condition=Q(section__isnull=False),
                name='unique_stream_fee_per_period',
            ),
            models.UniqueConstraint(
                fields=['school_class', 'term', 'session'],
                condition=Q(section__isnull=True),
                name='unique_class_fee_per_period',
            ),
        ]
        indexes = [
            models.Index(fields=['school', 'term', 'session', 'is_active'], name='fee_structure_period_idx'),
        ]

    def clean(self):
        super().clean()
        self.normalize_period_fields()

        if self.amount is None or self.amount <= 0:
            raise ValidationError({'amount': 'Amount must be greater than zero.'})

        if self.school_class_id and self.school_class.school_id != self.school_id:
            raise ValidationError({'school_class': 'Class must belong to selected school.'})

        if self.section_id and self.section.school_class_id != self.school_class_id:
            raise ValidationError({'section': 'Stream must belong to selected class.'})

    def save(self, *args, **kwargs):
        self.normalize_period_fields()
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        if self.is_active:
            self.is_active = False
            self.save(update_fields=['is_active'])

    def __str__(self):
        target = f"{self.school_class.name} {self.section.name}" if self.section_id else self.school_class.name
        return f"{target} - {self.amount} ({self.session} {self.term})"


class LedgerEntry(PeriodFieldsMixin, FinancialRecordModel):
    TYPE_BILL = 'Bill'
    TYPE_PAYMENT = 'Payment'
    TYPE_ADJUSTMENT = 'Adjustment'
    TYPE_CARRY_FORWARD = 'CarryForward'
    ENTRY_TYPE_CHOICES = (
        (TYPE_BILL, 'Bill'),
        (TYPE_PAYMENT, 'Payment'),
        (TYPE_ADJUSTMENT, 'Adjustment'),
        (TYPE_CARRY_FORWARD, 'Carry forward'),
    )
    # Entry types that raise what the student owes. Adjustments are signed.
    BILLED_TYPES = (TYPE_BILL, TYPE_CARRY_FORWARD, TYPE_ADJUSTMENT)

    METHOD_CASH = 'Cash'
    METHOD_TRANSFER = 'Transfer'
    METHOD_POS = 'POS'
    METHOD_ONLINE = 'Online'
    METHOD_CHOICES = (
        (METHOD_CASH, 'Cash'),
        (METHOD_TRANSFER, 'Bank transfer'),
        (METHOD_POS, 'POS'),
        (METHOD_ONLINE, 'Online'),
    )

    school = models.ForeignKey(
        School,
        on_delete=models.CASCADE,
        related_name='ledger_entries',
    )
    objects = PeriodManager()

    # Opaque student id, matched against Student.admission_number at read time.
    student_code = models.CharField(max_length=50)
    term = models.CharField(max_length=20, choices=Term.choices)
    session = models.CharField(max_length=20)
    entry_type = models.CharField(max_length=20, choices=ENTRY_TYPE_CHOICES)
    amount = models.DecimalField(max_digits=12, decimal_places=2)
    description = models.CharField(max_length=255, blank=True)
    method = models.CharField(max_length=20, choices=METHOD_CHOICES, blank=True)
    balance_after = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    recorded_by = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='ledger_entries_recorded',
    )
    created_at = models.DateTimeField(default=timezone.now)

    class Meta:
        ordering = ['created_at', 'id']
        verbose_name_plural = 'ledger entries'
        constraints = [
            models.UniqueConstraint(
                fields=['school', 'student_code', 'term', 'session'],
                condition=Q(entry_type='CarryForward'),
                name='unique_carry_forward_per_student_period',
            ),
            models.CheckConstraint(
                condition=Q(amount__gt=0) | Q(entry_type='Adjustment'),
                name='ledger_amount_positive_unless_adjustment',
            ),
        ]
        indexes = [
            models.Index(fields=['school', 'session', 'term'], name='ledger_period_idx'),
            models.Index(fields=['school', 'student_code', 'session', 'term'], name='ledger_student_period_idx'),
        ]

    @property
    def signed_amount(self) -> Decimal:
        if self.entry_type == self.TYPE_PAYMENT:
            return -self.amount
        return self.amount

    def clean(self):
        super().clean()
        self.normalize_period_fields()
        self.student_code = (self.student_code or '').strip()
        if not self.student_code:
            raise ValidationError({'student_code': 'Student id is required.'})

        if self.amount is None:
            raise ValidationError({'amount': 'Amount is required.'})
        if self.entry_type == self.TYPE_ADJUSTMENT:
            if self.amount == 0:
                raise ValidationError({'amount': 'Adjustment amount cannot be zero.'})
        elif self.amount <= 0:
            raise ValidationError({'amount': 'Amount must be greater than zero.'})

        if self.entry_type == self.TYPE_PAYMENT:
            if not self.method:
                raise ValidationError({'method': 'Payment method is required.'})
        elif self.method:
            raise ValidationError({'method': 'Only payments carry a payment method.'})

    def __str__(self):
        return f"{self.entry_type} {self.amount} for {self.student_code} ({self.session} {self.term})"


class Receipt(models.Model):
    receipt_number = models.CharField(max_length=50, unique=True)
    school = models.ForeignKey(
        School,
        on_delete=models.CASCADE,
        related_name='fee_receipts',
    )
    entry = models.OneToOneField(
        LedgerEntry,
        on_delete=models.CASCADE,
        related_name='receipt',
    )
    objects = SchoolManager()
    issued_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-issued_at', '-id']
        indexes = [
            models.Index(fields=['school', 'issued_at'], name='receipt_school_issued_idx'),
        ]

    def clean(self):
        super().clean()
        if self.entry_id:
            if self.entry.school_id != self.school_id:
                raise ValidationError({'entry': 'Payment school mismatch.'})
            if self.entry.entry_type != LedgerEntry.TYPE_PAYMENT:
                raise ValidationError({'entry': 'Receipts are only issued for payments.'})

    def __str__(self):
        return self.receipt_number
