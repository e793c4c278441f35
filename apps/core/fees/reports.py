"""
Period reports built on the balance calculator.

Ledger entries are joined to the student directory by student id. Entries
whose student is missing from the directory are left out of every total and
counted in ``dropped_entries``.
"""
from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from decimal import Decimal

from apps.core.academic_sessions.periods import Period
from apps.core.students.services import active_students, lookup_students, require_student

from . import store
from .balances import (
    STATUS_PAID,
    STATUSES,
    ZERO,
    PeriodBalance,
    calculate_balance,
    calculate_balances,
    group_by_student,
    quantize,
)
from .models import ClassFeeStructure, LedgerEntry

logger = logging.getLogger(__name__)


def _owing_sort_key(row):
    return (row['class_label'], row['student_name'])


def _percent(part: Decimal, whole: Decimal) -> Decimal:
    if whole <= 0:
        return ZERO
    return quantize(part * 100 / whole)


def _student_row(student, balance: PeriodBalance):
    return {
        'student_id': student.admission_number,
        'student_name': student.full_name,
        'class_label': student.class_label,
        **{key: value for key, value in balance.as_dict().items() if key not in ('student_id', 'term', 'session')},
    }


def _matched_balances(school, period):
    """Balances per directory student, plus how many entries had no student."""
    entries = store.list_entries(school=school, period=period)
    grouped = group_by_student(entries)
    directory = lookup_students(school=school, student_ids=grouped.keys())

    dropped = sum(len(rows) for student_id, rows in grouped.items() if student_id not in directory)
    if dropped:
        missing = sorted(student_id for student_id in grouped if student_id not in directory)
        logger.warning(
            'Dropped %s ledger entries for %s in %s: unknown students %s',
            dropped,
            school,
            period,
            ', '.join(missing),
        )

    balances = {
        student_id: calculate_balance(rows, student_id=student_id, period=period)
        for student_id, rows in grouped.items()
        if student_id in directory
    }
    return balances, directory, dropped, grouped


@dataclass
class ClassTotals:
    expected: Decimal = ZERO
    collected: Decimal = ZERO
    outstanding: Decimal = ZERO
    students: int = 0

    def add(self, balance: PeriodBalance):
        self.expected = quantize(self.expected + balance.billed)
        self.collected = quantize(self.collected + balance.paid)
        self.outstanding = quantize(self.outstanding + balance.outstanding)
        self.students += 1

    def as_dict(self):
        return {
            'expected': self.expected,
            'collected': self.collected,
            'outstanding': self.outstanding,
            'students': self.students,
        }


@dataclass
class ClassSummary:
    period: Period
    per_class: dict = field(default_factory=dict)
    owing: list = field(default_factory=list)
    totals: ClassTotals = field(default_factory=ClassTotals)
    dropped_entries: int = 0

    def as_dict(self):
        return {
            **self.period.as_dict(),
            'per_class': {label: totals.as_dict() for label, totals in sorted(self.per_class.items())},
            'owing': self.owing,
            'totals': self.totals.as_dict(),
            'dropped_entries': self.dropped_entries,
        }


def build_class_summary(*, school, period: Period) -> ClassSummary:
    balances, directory, dropped, _ = _matched_balances(school, period)
    summary = ClassSummary(period=period, dropped_entries=dropped)

    for student_id, balance in balances.items():
        student = directory[student_id]
        summary.per_class.setdefault(student.class_label, ClassTotals()).add(balance)
        summary.totals.add(balance)
        if balance.outstanding > 0:
            summary.owing.append({
                'student_id': student_id,
                'student_name': student.full_name,
                'class_label': student.class_label,
                'outstanding': balance.outstanding,
            })

    summary.owing.sort(key=_owing_sort_key)
    return summary


def build_payment_history(*, school, period: Period):
    balances, directory, dropped, grouped = _matched_balances(school, period)

    rows = []
    for student_id, balance in balances.items():
        payments = [entry for entry in grouped[student_id] if entry.entry_type == LedgerEntry.TYPE_PAYMENT]
        row = _student_row(directory[student_id], balance)
        row['last_payment_at'] = max((entry.created_at for entry in payments), default=None)
        row['payments'] = len(payments)
        rows.append(row)

    rows.sort(key=_owing_sort_key)
    return {**period.as_dict(), 'students': rows, 'dropped_entries': dropped}


def _active_student_balances(school, period):
    students = list(active_students(school=school))
    entries = store.list_entries(
        school=school,
        period=period,
        student_ids=[student.admission_number for student in students],
    )
    balances = calculate_balances(entries, period=period)
    for student in students:
        balance = balances.get(student.admission_number) or PeriodBalance(
            student_id=student.admission_number,
            term=period.term,
            session=period.session,
        )
        yield student, balance


def build_period_statistics(*, school, period: Period):
    """Collection figures over active students; students with no entries count as Pending."""
    counts = Counter()
    amounts = {status: ZERO for status in STATUSES}
    totals = ClassTotals()

    for _, balance in _active_student_balances(school, period):
        counts[balance.status] += 1
        amounts[balance.status] = quantize(amounts[balance.status] + balance.outstanding)
        totals.add(balance)

    return {
        **period.as_dict(),
        'students': totals.students,
        'status_counts': {status: counts[status] for status in STATUSES},
        'outstanding_by_status': amounts,
        'expected': totals.expected,
        'collected': totals.collected,
        'outstanding': totals.outstanding,
        'collection_rate': _percent(totals.collected, totals.expected),
        'completion_rate': _percent(Decimal(counts[STATUS_PAID]), Decimal(totals.students)),
    }


def build_class_status(*, school, period: Period):
    classes = {}
    for student, balance in _active_student_balances(school, period):
        classes.setdefault(student.class_label, []).append(_student_row(student, balance))

    return {
        **period.as_dict(),
        'classes': [
            {
                'class_label': label,
                'students': sorted(rows, key=lambda row: row['student_name']),
            }
            for label, rows in sorted(classes.items())
        ],
    }


def entry_line(entry):
    return {
        'id': entry.pk,
        'entry_type': entry.entry_type,
        'amount': entry.amount,
        'description': entry.description,
        'method': entry.method,
        'balance_after': entry.balance_after,
        'created_at': entry.created_at,
        'receipt_number': getattr(getattr(entry, 'receipt', None), 'receipt_number', None),
    }


def build_student_statement(*, school, student_id, period: Period | None = None):
    student = require_student(school=school, student_id=student_id)
    entries = store.list_student_entries(school=school, student_id=student.admission_number, period=period)

    by_period = {}
    for entry in entries:
        by_period.setdefault(entry.period, []).append(entry)
    if period is not None:
        by_period.setdefault(period, [])

    periods = []
    for entry_period in sorted(by_period, key=lambda value: value.sort_key):
        rows = by_period[entry_period]
        balance = calculate_balance(rows, student_id=student.admission_number, period=entry_period)
        periods.append({
            **balance.as_dict(),
            'entries': [entry_line(entry) for entry in rows],
        })

    return {
        'student_id': student.admission_number,
        'student_name': student.full_name,
        'class_label': student.class_label,
        'periods': periods,
    }


def carry_forward_preview(*, school, period: Period):
    summary = build_class_summary(school=school, period=period)
    return {
        'from': period.as_dict(),
        'to': period.next().as_dict(),
        'students': summary.owing,
        'total_amount': summary.totals.outstanding,
        'dropped_entries': summary.dropped_entries,
    }


def fee_structures(school, period: Period):
    structures = ClassFeeStructure.objects.for_school(school).for_period(period).filter(is_active=True)
    return {(structure.school_class_id, structure.section_id): structure for structure in structures}


def fee_for_student(fees, student):
    """The stream's fee when one is set, else the class-wide fee."""
    return fees.get((student.current_class_id, student.current_section_id)) or fees.get(
        (student.current_class_id, None)
    )


def build_expected_revenue(*, school, period: Period):
    """
    Projected term revenue from the fee structures.

    Every active student counts at the fee set for their class or stream,
    billed or not. ``collected`` and ``outstanding`` come from the ledger.
    """
    fees = fee_structures(school, period)
    per_class = {}
    totals = {'students': 0, 'expected_revenue': ZERO, 'billed': ZERO, 'collected': ZERO, 'outstanding': ZERO}
    not_billed = []
    without_fee = []

    for student, balance in _active_student_balances(school, period):
        structure = fee_for_student(fees, student)
        fee = quantize(structure.amount) if structure is not None else ZERO
        if structure is None:
            without_fee.append(student.admission_number)
        elif balance.nothing_billed:
            not_billed.append(student.admission_number)

        row = per_class.setdefault(student.class_label, {
            'students': 0,
            'expected_revenue': ZERO,
            'billed': ZERO,
            'collected': ZERO,
            'outstanding': ZERO,
        })
        for bucket in (row, totals):
            bucket['students'] += 1
            bucket['expected_revenue'] = quantize(bucket['expected_revenue'] + fee)
            bucket['billed'] = quantize(bucket['billed'] + balance.billed)
            bucket['collected'] = quantize(bucket['collected'] + balance.paid)
            bucket['outstanding'] = quantize(bucket['outstanding'] + balance.outstanding)

    return {
        **period.as_dict(),
        **totals,
        'collection_rate': _percent(totals['collected'], totals['expected_revenue']),
        'per_class': dict(sorted(per_class.items())),
        'not_billed': not_billed,
        'without_fee': without_fee,
    }


def build_receipt_list(*, school, student_id=None, period: Period | None = None, limit=None):
    receipts = store.list_receipts(school=school, student_id=student_id, period=period, limit=limit)
    directory = lookup_students(school=school, student_ids={receipt.entry.student_code for receipt in receipts})

    rows = []
    for receipt in receipts:
        entry = receipt.entry
        student = directory.get(entry.student_code)
        rows.append({
            'receipt_number': receipt.receipt_number,
            'issued_at': receipt.issued_at,
            'student_id': entry.student_code,
            'student_name': student.full_name if student else None,
            'class_label': student.class_label if student else None,
            **entry.period.as_dict(),
            'amount': entry.amount,
            'method': entry.method,
            'description': entry.description,
        })
    return {'receipts': rows}
