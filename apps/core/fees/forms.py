from decimal import Decimal

from django import forms
from django.core.exceptions import ValidationError

from .models import LedgerEntry


class StudentIdsField(forms.Field):
    """A list of student ids, sent as repeated values, a JSON array or a comma-separated string."""

    widget = forms.MultipleHiddenInput

    def to_python(self, value):
        if not value:
            return []
        if isinstance(value, str):
            value = [value]
        student_ids = []
        for item in value:
            for student_id in str(item).split(','):
                student_id = student_id.strip()
                if student_id and student_id not in student_ids:
                    student_ids.append(student_id)
        return student_ids


class PeriodForm(forms.Form):
    """Optional term/session; views fall back to the school's current period."""

    term = forms.CharField(max_length=30, required=False)
    session = forms.CharField(max_length=20, required=False)

    def clean(self):
        cleaned = super().clean()
        term = (cleaned.get('term') or '').strip()
        session = (cleaned.get('session') or '').strip()
        if bool(term) != bool(session):
            raise ValidationError('Provide both term and session, or neither.')
        return cleaned


class StudentPeriodForm(PeriodForm):
    student_id = forms.CharField(max_length=50)


class PaymentForm(StudentPeriodForm):
    amount = forms.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0.01'))
    method = forms.CharField(max_length=30)
    description = forms.CharField(max_length=255, required=False)


class AdjustmentForm(StudentPeriodForm):
    amount = forms.DecimalField(max_digits=12, decimal_places=2)
    description = forms.CharField(max_length=255, required=False)

    def clean_amount(self):
        amount = self.cleaned_data['amount']
        if amount == 0:
            raise ValidationError('Adjustment amount cannot be zero.')
        return amount


class BillForm(StudentPeriodForm):
    amount = forms.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0.01'))
    description = forms.CharField(max_length=255, required=False)


class BulkSettleForm(PeriodForm):
    student_ids = StudentIdsField()
    method = forms.CharField(max_length=30)


class CarryForwardForm(forms.Form):
    from_term = forms.CharField(max_length=30, required=False)
    from_session = forms.CharField(max_length=20, required=False)
    to_term = forms.CharField(max_length=30, required=False)
    to_session = forms.CharField(max_length=20, required=False)
    student_ids = StudentIdsField(required=False)

    def clean(self):
        cleaned = super().clean()
        for prefix in ('from', 'to'):
            term = (cleaned.get(f'{prefix}_term') or '').strip()
            session = (cleaned.get(f'{prefix}_session') or '').strip()
            if bool(term) != bool(session):
                raise ValidationError(f'Provide both {prefix}_term and {prefix}_session, or neither.')
        return cleaned


class OpenTermForm(PeriodForm):
    carry_forward = forms.BooleanField(required=False)


class ResetPaymentsForm(StudentPeriodForm):
    confirm = forms.BooleanField(
        error_messages={'required': 'Confirm the reset; deleted payments cannot be recovered.'},
    )


class LedgerFilterForm(PeriodForm):
    student_id = forms.CharField(max_length=50, required=False)
    entry_type = forms.ChoiceField(choices=LedgerEntry.ENTRY_TYPE_CHOICES, required=False)


class ReceiptFilterForm(PeriodForm):
    student_id = forms.CharField(max_length=50, required=False)
    limit = forms.IntegerField(min_value=1, max_value=500, required=False)
