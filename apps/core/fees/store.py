"""Ledger entry store: the only module that reads or writes LedgerEntry rows and their receipts."""
from __future__ import annotations

import logging

from django.db import DatabaseError, transaction

from apps.core.utils.exceptions import StoreError

from .models import LedgerEntry, Receipt

logger = logging.getLogger(__name__)


def _read(build_queryset):
    try:
        return list(build_queryset())
    except DatabaseError as exc:
        logger.warning('Ledger read failed: %s', exc)
        raise StoreError(str(exc)) from exc


def list_entries(*, school, period, student_ids=None):
    def build_queryset():
        entries = LedgerEntry.objects.for_school(school).for_period(period).select_related('receipt')
        if student_ids is not None:
            entries = entries.filter(student_code__in=list(student_ids))
        return entries.order_by('created_at', 'id')

    return _read(build_queryset)


def list_student_entries(*, school, student_id, period=None):
    def build_queryset():
        entries = LedgerEntry.objects.for_school(school).filter(student_code=student_id).select_related('receipt')
        if period is not None:
            entries = entries.for_period(period)
        return entries.order_by('created_at', 'id')

    return _read(build_queryset)


def list_receipts(*, school, student_id=None, period=None, limit=None):
    """Receipts newest first, optionally for one student and/or one period."""
    def build_queryset():
        receipts = Receipt.objects.for_school(school).select_related('entry')
        if student_id:
            receipts = receipts.filter(entry__student_code=student_id)
        if period is not None:
            receipts = receipts.filter(entry__term=period.term, entry__session=period.session)
        receipts = receipts.order_by('-issued_at', '-id')
        return receipts[:limit] if limit else receipts

    return _read(build_queryset)


def insert_entries(entries):
    """Validate and write ``entries`` as one batch; either all rows land or none."""
    entries = list(entries)
    if not entries:
        return []

    # Model validation errors surface as ValidationError before the database is touched.
    for entry in entries:
        entry.full_clean(validate_unique=False, validate_constraints=False)

    try:
        with transaction.atomic():
            created = LedgerEntry.objects.bulk_create(entries)
    except DatabaseError as exc:
        logger.warning('Ledger batch of %s entries rejected: %s', len(entries), exc)
        raise StoreError(f'Could not save ledger entries: {exc}') from exc
    return created


def insert_entry(entry):
    entry.full_clean(validate_unique=False, validate_constraints=False)
    try:
        with transaction.atomic():
            entry.save(force_insert=True)
    except DatabaseError as exc:
        logger.warning('Ledger entry for %s rejected: %s', entry.student_code, exc)
        raise StoreError(f'Could not save ledger entry: {exc}') from exc
    return entry
