from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from PIL import Image, ImageDraw
from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import DatabaseError, transaction
from django.db.models import Sum

from apps.core.academic_sessions.periods import Period
from apps.core.students.services import active_students, lock_student, lookup_students, require_student
from apps.core.utils.documents import format_money, image_to_pdf_bytes
from apps.core.utils.exceptions import LedgerError, NotFoundError, StoreError

from . import store
from .balances import ZERO, PeriodBalance, calculate_balance, calculate_balances, quantize, to_decimal
from .models import LedgerEntry, Receipt
from .reports import fee_for_student, fee_structures

logger = logging.getLogger(__name__)

DEFAULT_BILL_DESCRIPTION = 'School fees'
DEFAULT_ADJUSTMENT_DESCRIPTION = 'Manual adjustment'
BULK_SETTLEMENT_DESCRIPTION = 'Bulk settlement'

_METHOD_LOOKUP = {
    **{value.lower(): value for value, _ in LedgerEntry.METHOD_CHOICES},
    **{label.lower(): value for value, label in LedgerEntry.METHOD_CHOICES},
}


def normalize_method(value) -> str:
    method = _METHOD_LOOKUP.get(' '.join(str(value or '').split()).lower())
    if method is None:
        choices = ', '.join(value for value, _ in LedgerEntry.METHOD_CHOICES)
        raise ValidationError({'method': f'Payment method must be one of {choices}.'})
    return method


def parse_amount(value, *, allow_negative=False) -> Decimal:
    try:
        amount = quantize(to_decimal(value))
    except InvalidOperation as exc:
        raise ValidationError({'amount': f'"{value}" is not a valid amount.'}) from exc
    if not amount.is_finite():
        raise ValidationError({'amount': f'"{value}" is not a valid amount.'})
    if allow_negative:
        if amount == 0:
            raise ValidationError({'amount': 'Amount cannot be zero.'})
    elif amount <= 0:
        raise ValidationError({'amount': 'Amount must be greater than zero.'})
    return amount


def _clean_student_ids(student_ids) -> list[str]:
    cleaned = []
    for student_id in student_ids or []:
        student_id = str(student_id or '').strip()
        if student_id and student_id not in cleaned:
            cleaned.append(student_id)
    return cleaned


def _student_balance(school, student_id, period) -> tuple[PeriodBalance, list]:
    entries = store.list_entries(school=school, period=period, student_ids=[student_id])
    return calculate_balance(entries, student_id=student_id, period=period), entries


def get_balance(*, school, student_id, period: Period) -> PeriodBalance:
    student = require_student(school=school, student_id=student_id)
    balance, _ = _student_balance(school, student.admission_number, period)
    return balance


# Receipts

def _receipt_number(entry: LedgerEntry) -> str:
    prefix = getattr(settings, 'LEDGER_RECEIPT_PREFIX', 'RCP')
    date_part = entry.created_at.strftime('%Y%m%d')
    return f"{prefix}-{entry.school_id}-{date_part}-{entry.pk:06d}"


def issue_receipt(entry: LedgerEntry) -> Receipt:
    receipt = Receipt(school_id=entry.school_id, entry=entry, receipt_number=_receipt_number(entry))
    receipt.full_clean(validate_unique=False)
    try:
        with transaction.atomic():
            receipt.save(force_insert=True)
    except DatabaseError as exc:
        raise StoreError(f'Could not issue receipt for payment {entry.pk}: {exc}') from exc
    return receipt


def build_receipt_image(receipt: Receipt):
    width = 1240
    height = 1754
    page = Image.new('RGB', (width, height), color='white')
    draw = ImageDraw.Draw(page)

    entry = receipt.entry
    school = receipt.school
    currency = school.currency or getattr(settings, 'LEDGER_CURRENCY', '')
    students = lookup_students(school=school, student_ids=[entry.student_code])
    student = students.get(entry.student_code)
    student_name = student.full_name if student else 'Unknown student'
    class_label = student.class_label if student else '-'

    draw.rectangle((30, 30, width - 30, height - 30), outline='black', width=3)
    draw.text((60, 60), f"{school.name} - Fee Receipt", fill='black')
    draw.text((60, 110), f"Receipt No: {receipt.receipt_number}", fill='black')
    draw.text((60, 150), f"Issued On: {receipt.issued_at.strftime('%Y-%m-%d %H:%M')}", fill='black')
    draw.text((60, 190), f"Period: {entry.session} {entry.term}", fill='black')
    draw.text((60, 230), f"Student: {student_name} ({entry.student_code})", fill='black')
    draw.text((60, 270), f"Class: {class_label}", fill='black')
    draw.text((60, 310), f"Method: {entry.get_method_display()}", fill='black')
    draw.text((60, 350), f"Description: {entry.description or '-'}", fill='black')

    y = 430
    draw.line((60, y, width - 60, y), fill='black')
    y += 30
    draw.text((60, y), f"Amount Paid: {format_money(entry.amount, currency)}", fill='black')
    y += 36
    if entry.balance_after is not None:
        draw.text((60, y), f"Balance After Payment: {format_money(entry.balance_after, currency)}", fill='black')
        y += 36
    if entry.recorded_by_id:
        draw.text((60, y), f"Received By: {entry.recorded_by.get_full_name() or entry.recorded_by.username}", fill='black')

    return page


def generate_receipt_pdf(receipt: Receipt) -> bytes:
    image = build_receipt_image(receipt)
    return image_to_pdf_bytes([image])


# Single-student writes

def _post_entry(*, school, student_id, period, entry_type, amount, description, method='', recorded_by=None, check=None):
    """Lock the student, recompute its balance and append one entry.

    ``check`` receives the balance before the write and may raise to refuse it.
    """
    with transaction.atomic():
        student = lock_student(school=school, student_id=student_id)
        before, entries = _student_balance(school, student.admission_number, period)
        if check is not None:
            check(before)

        entry = LedgerEntry(
            school=school,
            student_code=student.admission_number,
            term=period.term,
            session=period.session,
            entry_type=entry_type,
            amount=amount,
            description=description,
            method=method,
            recorded_by=recorded_by,
        )
        after = calculate_balance([*entries, entry], student_id=student.admission_number, period=period)
        entry.balance_after = after.outstanding
        store.insert_entry(entry)

        receipt = issue_receipt(entry) if entry_type == LedgerEntry.TYPE_PAYMENT else None

    return {'entry': entry, 'receipt': receipt, 'balance': after}


def record_payment(*, school, student_id, period: Period, amount, method, description='', recorded_by=None):
    amount = parse_amount(amount)
    method = normalize_method(method)

    def refuse_overpayment(balance):
        if amount > balance.outstanding:
            raise ValidationError({'amount': f'Payment exceeds outstanding balance ({balance.outstanding}).'})

    result = _post_entry(
        school=school,
        student_id=student_id,
        period=period,
        entry_type=LedgerEntry.TYPE_PAYMENT,
        amount=amount,
        description=(description or f'{method} payment').strip()[:255],
        method=method,
        recorded_by=recorded_by,
        check=refuse_overpayment,
    )
    logger.info('Recorded payment of %s for %s in %s', amount, student_id, period)
    return result


def record_adjustment(*, school, student_id, period: Period, amount, description='', recorded_by=None):
    """Post a signed adjustment; negative amounts are credits."""
    amount = parse_amount(amount, allow_negative=True)
    return _post_entry(
        school=school,
        student_id=student_id,
        period=period,
        entry_type=LedgerEntry.TYPE_ADJUSTMENT,
        amount=amount,
        description=(description or DEFAULT_ADJUSTMENT_DESCRIPTION).strip()[:255],
        recorded_by=recorded_by,
    )


def post_bill(*, school, student_id, period: Period, amount, description='', recorded_by=None):
    amount = parse_amount(amount)
    return _post_entry(
        school=school,
        student_id=student_id,
        period=period,
        entry_type=LedgerEntry.TYPE_BILL,
        amount=amount,
        description=(description or DEFAULT_BILL_DESCRIPTION).strip()[:255],
        recorded_by=recorded_by,
    )


# Carry-forward

@dataclass
class CarryForwardResult:
    from_period: Period
    to_period: Period
    carried_count: int = 0
    total_amount: Decimal = ZERO
    skipped: list = field(default_factory=list)
    entries: list = field(default_factory=list)

    def as_dict(self):
        return {
            'from': self.from_period.as_dict(),
            'to': self.to_period.as_dict(),
            'carried_count': self.carried_count,
            'total_amount': self.total_amount,
            'skipped': self.skipped,
            'students': [
                {'student_id': entry.student_code, 'amount': entry.amount}
                for entry in self.entries
            ],
        }


def carry_forward(*, school, from_period: Period, to_period: Period, student_ids=None, recorded_by=None) -> CarryForwardResult:
    """Open ``to_period`` with each student's unpaid balance from ``from_period``.

    All-or-nothing: any store failure rolls back every carried entry. Students
    already carried into ``to_period`` are skipped, so a repeated run writes
    nothing new for them.
    """
    if from_period == to_period:
        raise ValidationError('Cannot carry a balance forward into the same period.')

    if student_ids is not None:
        student_ids = _clean_student_ids(student_ids)
        if not student_ids:
            raise ValidationError({'student_ids': 'Provide at least one student id.'})
        known = lookup_students(school=school, student_ids=student_ids)
        missing = [student_id for student_id in student_ids if student_id not in known]
        if missing:
            raise NotFoundError(f"Unknown students: {', '.join(missing)}.")

    result = CarryForwardResult(from_period=from_period, to_period=to_period)
    description = f'Carry-over from {from_period.session} {from_period.term}'

    with transaction.atomic():
        entries = store.list_entries(school=school, period=from_period, student_ids=student_ids)
        balances = calculate_balances(entries, period=from_period)
        owing = sorted(student_id for student_id, balance in balances.items() if balance.outstanding > 0)

        already_carried = set(
            LedgerEntry.objects.for_school(school)
            .for_period(to_period)
            .filter(entry_type=LedgerEntry.TYPE_CARRY_FORWARD, student_code__in=owing)
            .values_list('student_code', flat=True)
        )

        new_entries = []
        for student_id in owing:
            if student_id in already_carried:
                result.skipped.append(student_id)
                continue
            outstanding = balances[student_id].outstanding
            new_entries.append(LedgerEntry(
                school=school,
                student_code=student_id,
                term=to_period.term,
                session=to_period.session,
                entry_type=LedgerEntry.TYPE_CARRY_FORWARD,
                amount=outstanding,
                description=description,
                balance_after=outstanding,
                recorded_by=recorded_by,
            ))

        result.entries = store.insert_entries(new_entries)

    result.carried_count = len(result.entries)
    result.total_amount = quantize(sum((entry.amount for entry in result.entries), ZERO))
    logger.info(
        'Carried %s balances (%s) from %s to %s for %s; %s already carried',
        result.carried_count,
        result.total_amount,
        from_period,
        to_period,
        school,
        len(result.skipped),
    )
    return result


# Bulk settlement

@dataclass
class SettlementOutcome:
    STATUS_SETTLED = 'settled'
    STATUS_ALREADY_SETTLED = 'already_settled'
    STATUS_FAILED = 'failed'

    student_id: str
    status: str
    amount: Decimal = ZERO
    receipt_number: str = ''
    error: str = ''

    def as_dict(self):
        return {
            'student_id': self.student_id,
            'status': self.status,
            'amount': self.amount,
            'receipt_number': self.receipt_number,
            'error': self.error,
        }


@dataclass
class SettlementResult:
    period: Period
    method: str
    outcomes: list = field(default_factory=list)

    @property
    def settled(self):
        return [outcome for outcome in self.outcomes if outcome.status == SettlementOutcome.STATUS_SETTLED]

    @property
    def failed(self):
        return [outcome for outcome in self.outcomes if outcome.status == SettlementOutcome.STATUS_FAILED]

    @property
    def settled_count(self) -> int:
        return len(self.settled)

    @property
    def total_amount(self) -> Decimal:
        return quantize(sum((outcome.amount for outcome in self.settled), ZERO))

    @property
    def partial(self) -> bool:
        return bool(self.failed) and len(self.failed) < len(self.outcomes)

    def as_dict(self):
        return {
            **self.period.as_dict(),
            'method': self.method,
            'settled_count': self.settled_count,
            'total_amount': self.total_amount,
            'partial': self.partial,
            'results': [outcome.as_dict() for outcome in self.outcomes],
        }


def _settle_student(*, school, student_id, period, method, recorded_by):
    with transaction.atomic():
        student = lock_student(school=school, student_id=student_id)
        balance, _ = _student_balance(school, student.admission_number, period)
        if balance.outstanding <= 0:
            return SettlementOutcome(student_id=student_id, status=SettlementOutcome.STATUS_ALREADY_SETTLED)

        entry = store.insert_entry(LedgerEntry(
            school=school,
            student_code=student.admission_number,
            term=period.term,
            session=period.session,
            entry_type=LedgerEntry.TYPE_PAYMENT,
            amount=balance.outstanding,
            description=BULK_SETTLEMENT_DESCRIPTION,
            method=method,
            balance_after=ZERO,
            recorded_by=recorded_by,
        ))
        receipt = issue_receipt(entry)

    return SettlementOutcome(
        student_id=student_id,
        status=SettlementOutcome.STATUS_SETTLED,
        amount=entry.amount,
        receipt_number=receipt.receipt_number,
    )


def bulk_settle(*, school, student_ids, period: Period, method, recorded_by=None) -> SettlementResult:
    """Pay off each student's outstanding balance, one transaction per student.

    A failure for one student is reported in its outcome and does not stop
    the others.
    """
    student_ids = _clean_student_ids(student_ids)
    if not student_ids:
        raise ValidationError({'student_ids': 'Provide at least one student id.'})
    method = normalize_method(method)

    result = SettlementResult(period=period, method=method)
    for student_id in student_ids:
        try:
            outcome = _settle_student(
                school=school,
                student_id=student_id,
                period=period,
                method=method,
                recorded_by=recorded_by,
            )
        except (LedgerError, ValidationError, DatabaseError) as exc:
            error = '; '.join(exc.messages) if hasattr(exc, 'messages') else str(exc)
            logger.warning('Bulk settlement failed for %s in %s: %s', student_id, period, error)
            outcome = SettlementOutcome(
                student_id=student_id,
                status=SettlementOutcome.STATUS_FAILED,
                error=error,
            )
        result.outcomes.append(outcome)

    logger.info(
        'Bulk settlement in %s: %s settled (%s), %s failed',
        period,
        result.settled_count,
        result.total_amount,
        len(result.failed),
    )
    return result


# Term billing

@dataclass
class BillingResult:
    period: Period
    billed_count: int = 0
    total_amount: Decimal = ZERO
    already_billed: list = field(default_factory=list)
    without_fee: list = field(default_factory=list)

    def as_dict(self):
        return {
            **self.period.as_dict(),
            'billed_count': self.billed_count,
            'total_amount': self.total_amount,
            'already_billed': self.already_billed,
            'without_fee': self.without_fee,
        }


def seed_term_bills(*, school, period: Period, recorded_by=None) -> BillingResult:
    """Bill every active student the fee set for their class (or stream) this period."""
    result = BillingResult(period=period)
    fees = fee_structures(school, period)

    with transaction.atomic():
        students = list(active_students(school=school))
        entries = store.list_entries(
            school=school,
            period=period,
            student_ids=[student.admission_number for student in students],
        )
        billed_before = {entry.student_code for entry in entries if entry.entry_type == LedgerEntry.TYPE_BILL}
        grouped = {}
        for entry in entries:
            grouped.setdefault(entry.student_code, []).append(entry)

        new_entries = []
        for student in students:
            student_id = student.admission_number
            if student_id in billed_before:
                result.already_billed.append(student_id)
                continue

            structure = fee_for_student(fees, student)
            if structure is None:
                result.without_fee.append(student_id)
                continue

            entry = LedgerEntry(
                school=school,
                student_code=student_id,
                term=period.term,
                session=period.session,
                entry_type=LedgerEntry.TYPE_BILL,
                amount=quantize(structure.amount),
                description=structure.description or f'{period} fees',
                recorded_by=recorded_by,
            )
            after = calculate_balance([*grouped.get(student_id, []), entry], student_id=student_id, period=period)
            entry.balance_after = after.outstanding
            new_entries.append(entry)

        store.insert_entries(new_entries)

    result.billed_count = len(new_entries)
    result.total_amount = quantize(sum((entry.amount for entry in new_entries), ZERO))
    if result.without_fee:
        logger.warning('No fee structure for %s students in %s: %s', len(result.without_fee), period, ', '.join(result.without_fee))
    logger.info('Billed %s students (%s) for %s', result.billed_count, result.total_amount, period)
    return result


def open_term(*, school, period: Period, carry_forward_balances=False, recorded_by=None):
    """Start a term: optionally carry last term's balances in, then bill term fees."""
    with transaction.atomic():
        carried = None
        if carry_forward_balances:
            carried = carry_forward(
                school=school,
                from_period=period.previous(),
                to_period=period,
                recorded_by=recorded_by,
            )
        billing = seed_term_bills(school=school, period=period, recorded_by=recorded_by)

    return {
        **period.as_dict(),
        'bills': billing.as_dict(),
        'carry_forward': carried.as_dict() if carried else None,
    }


def reset_period_payments(*, school, student_id, period: Period):
    """Delete a student's payments (and their receipts) for one period."""
    student = require_student(school=school, student_id=student_id)

    with transaction.atomic():
        lock_student(school=school, student_id=student.admission_number)
        payments = LedgerEntry.objects.for_school(school).for_period(period).filter(
            student_code=student.admission_number,
            entry_type=LedgerEntry.TYPE_PAYMENT,
        )
        amount = quantize(payments.aggregate(total=Sum('amount')).get('total'))
        count = payments.count()
        try:
            payments.delete()
        except DatabaseError as exc:
            raise StoreError(f'Could not reset payments for {student.admission_number}: {exc}') from exc
        balance, _ = _student_balance(school, student.admission_number, period)

    logger.warning('Reset %s payments (%s) for %s in %s', count, amount, student.admission_number, period)
    return {'deleted_count': count, 'deleted_amount': amount, 'balance': balance}
