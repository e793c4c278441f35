"""
Balance calculation over ledger entries.

Every view, report and write path derives billed / paid / outstanding from
here; no balance is stored anywhere authoritative.
"""
from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from .models import LedgerEntry

ZERO = Decimal('0.00')

STATUS_PAID = 'Paid'
STATUS_PARTIAL = 'Partial'
STATUS_OUTSTANDING = 'Outstanding'
STATUS_PENDING = 'Pending'
STATUSES = (STATUS_PAID, STATUS_PARTIAL, STATUS_OUTSTANDING, STATUS_PENDING)


def to_decimal(value) -> Decimal:
    return Decimal(str(value or '0'))


def quantize(value) -> Decimal:
    return to_decimal(value).quantize(Decimal('0.01'), rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PeriodBalance:
    student_id: str
    term: str
    session: str
    billed: Decimal = ZERO
    paid: Decimal = ZERO
    outstanding: Decimal = ZERO
    status: str = STATUS_PENDING

    @property
    def nothing_billed(self) -> bool:
        return self.billed <= 0

    @property
    def fully_paid(self) -> bool:
        return self.billed > 0 and self.outstanding == 0

    def as_dict(self):
        return {
            'student_id': self.student_id,
            'term': self.term,
            'session': self.session,
            'billed': self.billed,
            'paid': self.paid,
            'outstanding': self.outstanding,
            'status': self.status,
            'nothing_billed': self.nothing_billed,
            'fully_paid': self.fully_paid,
        }


def derive_status(billed: Decimal, paid: Decimal, outstanding: Decimal) -> str:
    if outstanding == 0 and billed > 0:
        return STATUS_PAID
    if paid > 0 and outstanding > 0:
        return STATUS_PARTIAL
    if outstanding > 0:
        return STATUS_OUTSTANDING
    return STATUS_PENDING


def calculate_balance(entries: Iterable[LedgerEntry], *, student_id: str, period) -> PeriodBalance:
    """Balance for one student in one period.

    ``entries`` must already be limited to that student and period. Adjustments
    are summed into billed with their sign and only the final outstanding
    figure is clamped at zero.
    """
    billed = ZERO
    paid = ZERO
    for entry in entries:
        amount = to_decimal(entry.amount)
        if entry.entry_type == LedgerEntry.TYPE_PAYMENT:
            paid += amount
        elif entry.entry_type in LedgerEntry.BILLED_TYPES:
            billed += amount

    billed = quantize(billed)
    paid = quantize(paid)
    outstanding = quantize(max(ZERO, billed - paid))
    return PeriodBalance(
        student_id=student_id,
        term=period.term,
        session=period.session,
        billed=billed,
        paid=paid,
        outstanding=outstanding,
        status=derive_status(billed, paid, outstanding),
    )


def group_by_student(entries: Iterable[LedgerEntry]) -> dict[str, list[LedgerEntry]]:
    grouped = defaultdict(list)
    for entry in entries:
        grouped[entry.student_code].append(entry)
    return dict(grouped)


def calculate_balances(entries: Iterable[LedgerEntry], *, period) -> dict[str, PeriodBalance]:
    return {
        student_id: calculate_balance(student_entries, student_id=student_id, period=period)
        for student_id, student_entries in group_by_student(entries).items()
    }
