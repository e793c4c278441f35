import json
from datetime import date
from decimal import Decimal
from unittest import mock

from django.contrib import admin
from django.contrib.auth import get_user_model
from django.core.exceptions import ValidationError
from django.db import DatabaseError, OperationalError
from django.test import RequestFactory, SimpleTestCase, TestCase
from django.urls import reverse

from apps.core.academic_sessions.models import AcademicSession, AcademicTerm
from apps.core.academic_sessions.periods import Period
from apps.core.academics.models import SchoolClass, Section
from apps.core.schools.models import School
from apps.core.students.models import Student
from apps.core.students.services import lock_student
from apps.core.users.models import AuditLog
from apps.core.utils.exceptions import NotFoundError, StoreError

from . import store
from .admin import ReceiptAdmin
from .balances import calculate_balance, calculate_balances
from .models import ClassFeeStructure, LedgerEntry, Receipt
from .reports import (
    build_class_status,
    build_class_summary,
    build_expected_revenue,
    build_payment_history,
    build_period_statistics,
    build_student_statement,
    carry_forward_preview,
)
from .services import (
    bulk_settle,
    carry_forward,
    generate_receipt_pdf,
    get_balance,
    open_term,
    post_bill,
    record_adjustment,
    record_payment,
    reset_period_payments,
    seed_term_bills,
)

FIRST = Period(term='First Term', session='2024/2025')
SECOND = Period(term='Second Term', session='2024/2025')
LAST_THIRD = Period(term='Third Term', session='2023/2024')


def entry(entry_type, amount):
    return LedgerEntry(entry_type=entry_type, amount=Decimal(str(amount)))


class BalanceCalculatorTests(SimpleTestCase):
    def balance(self, *entries):
        return calculate_balance(list(entries), student_id='S1', period=FIRST)

    def test_partial_payment(self):
        balance = self.balance(entry('Bill', 90000), entry('Payment', 60000))
        self.assertEqual(balance.billed, Decimal('90000.00'))
        self.assertEqual(balance.paid, Decimal('60000.00'))
        self.assertEqual(balance.outstanding, Decimal('30000.00'))
        self.assertEqual(balance.status, 'Partial')

    def test_full_payment_is_paid(self):
        balance = self.balance(entry('Bill', 50000), entry('Payment', 50000))
        self.assertEqual(balance.outstanding, Decimal('0.00'))
        self.assertEqual(balance.status, 'Paid')
        self.assertTrue(balance.fully_paid)
        self.assertFalse(balance.nothing_billed)

    def test_no_entries_is_pending(self):
        balance = self.balance()
        self.assertEqual((balance.billed, balance.paid, balance.outstanding), (0, 0, 0))
        self.assertEqual(balance.status, 'Pending')
        self.assertTrue(balance.nothing_billed)
        self.assertFalse(balance.fully_paid)
        self.assertEqual((balance.term, balance.session), ('First Term', '2024/2025'))

    def test_carry_forward_counts_as_billed(self):
        balance = self.balance(entry('CarryForward', 20000), entry('Bill', 80000), entry('Payment', 100000))
        self.assertEqual(balance.billed, Decimal('100000.00'))
        self.assertEqual(balance.paid, Decimal('100000.00'))
        self.assertEqual(balance.outstanding, Decimal('0.00'))
        self.assertEqual(balance.status, 'Paid')

    def test_unpaid_bill_is_outstanding(self):
        balance = self.balance(entry('Bill', 15000))
        self.assertEqual(balance.outstanding, Decimal('15000.00'))
        self.assertEqual(balance.status, 'Outstanding')

    def test_adjustments_fold_into_billed_with_sign(self):
        balance = self.balance(entry('Bill', 50000), entry('Adjustment', -20000), entry('Payment', 30000))
        self.assertEqual(balance.billed, Decimal('30000.00'))
        self.assertEqual(balance.paid, Decimal('30000.00'))
        self.assertEqual(balance.status, 'Paid')

    def test_credit_is_not_clamped_before_the_final_step(self):
        balance = self.balance(entry('Bill', 10000), entry('Adjustment', -15000), entry('Bill', 20000))
        self.assertEqual(balance.billed, Decimal('15000.00'))
        self.assertEqual(balance.outstanding, Decimal('15000.00'))

    def test_overpayment_never_goes_negative(self):
        balance = self.balance(entry('Bill', 100), entry('Payment', 150))
        self.assertEqual(balance.outstanding, Decimal('0.00'))
        self.assertEqual(balance.status, 'Paid')

    def test_decimal_accumulation(self):
        balance = self.balance(entry('Bill', '0.10'), entry('Bill', '0.10'), entry('Bill', '0.10'), entry('Payment', '0.30'))
        self.assertEqual(balance.outstanding, Decimal('0.00'))
        self.assertEqual(balance.status, 'Paid')

    def test_outstanding_is_billed_minus_paid_floored_at_zero(self):
        cases = [
            [],
            [entry('Bill', 100)],
            [entry('Payment', 40)],
            [entry('Bill', 100), entry('Payment', 250)],
            [entry('Adjustment', -30)],
            [entry('Bill', 100), entry('Adjustment', 5), entry('Payment', 35)],
            [entry('CarryForward', '10.55'), entry('Payment', '0.55')],
        ]
        for entries in cases:
            balance = self.balance(*entries)
            self.assertEqual(balance.outstanding, max(Decimal('0'), balance.billed - balance.paid))
            self.assertGreaterEqual(balance.outstanding, 0)
            if balance.billed <= 0:
                self.assertEqual(balance.status, 'Pending')
            if balance.paid >= balance.billed > 0:
                self.assertEqual(balance.status, 'Paid')

    def test_calculator_is_idempotent(self):
        entries = [entry('Bill', 90000), entry('Adjustment', -500), entry('Payment', 1000)]
        first = calculate_balance(entries, student_id='S1', period=FIRST)
        second = calculate_balance(entries, student_id='S1', period=FIRST)
        self.assertEqual(first, second)

    def test_calculate_balances_groups_by_student(self):
        rows = [
            LedgerEntry(student_code='S1', entry_type='Bill', amount=Decimal('100')),
            LedgerEntry(student_code='S2', entry_type='Bill', amount=Decimal('200')),
            LedgerEntry(student_code='S1', entry_type='Payment', amount=Decimal('100')),
        ]
        balances = calculate_balances(rows, period=FIRST)
        self.assertEqual(balances['S1'].status, 'Paid')
        self.assertEqual(balances['S2'].outstanding, Decimal('200.00'))


class LedgerTestCase(TestCase):
    def setUp(self):
        user_model = get_user_model()

        self.school = School.objects.create(name='Ledger School', code='ledger_school')
        self.session = AcademicSession.objects.create(
            school=self.school,
            name='2024/2025',
            start_date=date(2024, 9, 1),
            end_date=date(2025, 7, 31),
            is_active=True,
        )
        self.first_term = AcademicTerm.objects.create(session=self.session, name='First Term', is_active=True)
        self.second_term = AcademicTerm.objects.create(session=self.session, name='Second Term')
        AcademicTerm.objects.create(session=self.session, name='Third Term')

        self.previous_session = AcademicSession.objects.create(
            school=self.school,
            name='2023/2024',
            start_date=date(2023, 9, 1),
            end_date=date(2024, 7, 31),
        )
        AcademicTerm.objects.create(session=self.previous_session, name='Third Term')

        self.jss1 = SchoolClass.objects.create(school=self.school, name='JSS 1', display_order=1)
        self.ss2 = SchoolClass.objects.create(school=self.school, name='SS 2', display_order=5)
        self.science = Section.objects.create(school_class=self.ss2, name='Science')

        self.s1 = Student.objects.create(
            school=self.school, admission_number='S1', first_name='Ada', last_name='Obi', current_class=self.jss1,
        )
        self.s2 = Student.objects.create(
            school=self.school, admission_number='S2', first_name='Bola', last_name='Ade', current_class=self.jss1,
        )
        self.s3 = Student.objects.create(
            school=self.school,
            admission_number='S3',
            first_name='Chi',
            last_name='Eze',
            current_class=self.ss2,
            current_section=self.science,
        )

        self.school_admin = user_model.objects.create_user(
            username='ledger_admin', password='pass12345', role='schooladmin', school=self.school,
        )
        self.accountant = user_model.objects.create_user(
            username='ledger_accountant', password='pass12345', role='accountant', school=self.school,
        )
        self.teacher = user_model.objects.create_user(
            username='ledger_teacher', password='pass12345', role='teacher', school=self.school,
        )
        self.student_user = user_model.objects.create_user(
            username='ada', password='pass12345', role='student', school=self.school, student=self.s1,
        )

    def add(self, student_id, entry_type, amount, period=FIRST, **extra):
        if entry_type == LedgerEntry.TYPE_PAYMENT:
            extra.setdefault('method', LedgerEntry.METHOD_CASH)
        return LedgerEntry.objects.create(
            school=self.school,
            student_code=student_id,
            term=period.term,
            session=period.session,
            entry_type=entry_type,
            amount=Decimal(str(amount)),
            **extra,
        )

    def seed_first_term(self):
        self.add('S1', 'Bill', 90000)
        self.add('S1', 'Payment', 60000)
        self.add('S2', 'Bill', 50000)
        self.add('S2', 'Payment', 50000)
        self.add('S3', 'Bill', 80000)


class LedgerEntryModelTests(LedgerTestCase):
    def test_entries_cannot_be_deleted(self):
        row = self.add('S1', 'Bill', 100)
        with self.assertRaises(ValidationError):
            row.delete()

    def test_receipts_are_read_only_in_admin(self):
        request = RequestFactory().get('/admin/fees/receipt/')
        request.user = self.school_admin
        receipt_admin = ReceiptAdmin(Receipt, admin.site)

        self.assertFalse(receipt_admin.has_add_permission(request))
        self.assertFalse(receipt_admin.has_change_permission(request))
        self.assertFalse(receipt_admin.has_delete_permission(request))

    def test_store_read_failure_becomes_store_error(self):
        with mock.patch.object(LedgerEntry.objects, 'for_school', side_effect=OperationalError('disk I/O error')):
            with self.assertRaises(StoreError) as raised:
                store.list_entries(school=self.school, period=FIRST)
            with self.assertRaises(StoreError):
                store.list_student_entries(school=self.school, student_id='S1')
        self.assertEqual(raised.exception.message, 'disk I/O error')

    def test_clean_normalises_period_text(self):
        row = LedgerEntry(
            school=self.school,
            student_code=' S1 ',
            term='2nd',
            session='2024-25',
            entry_type='Bill',
            amount=Decimal('10'),
        )
        row.clean()
        self.assertEqual((row.student_code, row.term, row.session), ('S1', 'Second Term', '2024/2025'))

    def test_clean_rejects_zero_adjustment_and_negative_bill(self):
        for entry_type, amount in (('Adjustment', '0'), ('Bill', '-5')):
            row = LedgerEntry(
                school=self.school,
                student_code='S1',
                term='First Term',
                session='2024/2025',
                entry_type=entry_type,
                amount=Decimal(amount),
            )
            with self.assertRaises(ValidationError):
                row.clean()

    def test_only_payments_carry_a_method(self):
        row = LedgerEntry(
            school=self.school,
            student_code='S1',
            term='First Term',
            session='2024/2025',
            entry_type='Bill',
            amount=Decimal('10'),
            method='Cash',
        )
        with self.assertRaises(ValidationError):
            row.clean()


class ClassSummaryTests(LedgerTestCase):
    def test_per_class_totals_and_owing_list(self):
        self.seed_first_term()

        summary = build_class_summary(school=self.school, period=FIRST)

        self.assertEqual(summary.per_class['JSS 1'].expected, Decimal('140000.00'))
        self.assertEqual(summary.per_class['JSS 1'].collected, Decimal('110000.00'))
        self.assertEqual(summary.per_class['JSS 1'].outstanding, Decimal('30000.00'))
        self.assertEqual(summary.per_class['JSS 1'].students, 2)
        self.assertEqual(summary.per_class['SS 2 Science'].outstanding, Decimal('80000.00'))
        self.assertEqual(
            [(row['student_id'], row['class_label'], row['outstanding']) for row in summary.owing],
            [('S1', 'JSS 1', Decimal('30000.00')), ('S3', 'SS 2 Science', Decimal('80000.00'))],
        )
        self.assertEqual(summary.owing[0]['student_name'], 'Ada Obi')
        self.assertEqual(summary.totals.expected, Decimal('220000.00'))
        self.assertEqual(summary.dropped_entries, 0)

    def test_entries_for_unknown_students_are_dropped_and_counted(self):
        self.seed_first_term()
        self.add('GHOST', 'Bill', 10000)
        self.add('GHOST', 'Payment', 500)

        with self.assertLogs('apps.core.fees.reports', level='WARNING') as logs:
            summary = build_class_summary(school=self.school, period=FIRST)

        self.assertEqual(summary.dropped_entries, 2)
        self.assertEqual(summary.totals.expected, Decimal('220000.00'))
        self.assertNotIn('GHOST', [row['student_id'] for row in summary.owing])
        self.assertIn('GHOST', logs.output[0])

    def test_archived_students_still_resolve(self):
        self.add('S2', 'Bill', 5000)
        self.s2.delete()

        summary = build_class_summary(school=self.school, period=FIRST)

        self.assertEqual(summary.dropped_entries, 0)
        self.assertEqual(summary.owing[0]['student_id'], 'S2')

    def test_student_without_class_is_labelled_unknown(self):
        Student.objects.create(school=self.school, admission_number='S4', first_name='Dayo')
        self.add('S4', 'Bill', 1000)

        summary = build_class_summary(school=self.school, period=FIRST)

        self.assertIn('Unknown', summary.per_class)
        self.assertEqual(summary.owing[0]['class_label'], 'Unknown')

    def test_owing_is_sorted_by_class_then_case_sensitive_name(self):
        Student.objects.create(
            school=self.school, admission_number='S5', first_name='adam', current_class=self.jss1,
        )
        self.add('S5', 'Bill', 100)
        self.add('S2', 'Bill', 100)
        self.add('S3', 'Bill', 100)

        summary = build_class_summary(school=self.school, period=FIRST)

        self.assertEqual([row['student_id'] for row in summary.owing], ['S2', 'S5', 'S3'])

    def test_other_periods_do_not_leak_in(self):
        self.add('S1', 'Bill', 700, period=SECOND)

        summary = build_class_summary(school=self.school, period=FIRST)

        self.assertEqual(summary.per_class, {})
        self.assertEqual(summary.owing, [])


class PeriodReportTests(LedgerTestCase):
    def setUp(self):
        super().setUp()
        self.seed_first_term()
        Student.objects.create(school=self.school, admission_number='S4', first_name='Dayo', current_class=self.ss2)

    def test_payment_history_rows(self):
        history = build_payment_history(school=self.school, period=FIRST)

        rows = {row['student_id']: row for row in history['students']}
        self.assertEqual(list(rows), ['S1', 'S2', 'S3'])
        self.assertEqual(rows['S1']['status'], 'Partial')
        self.assertEqual(rows['S1']['payments'], 1)
        self.assertIsNotNone(rows['S1']['last_payment_at'])
        self.assertIsNone(rows['S3']['last_payment_at'])

    def test_statistics_count_students_without_entries_as_pending(self):
        stats = build_period_statistics(school=self.school, period=FIRST)

        self.assertEqual(stats['students'], 4)
        self.assertEqual(stats['status_counts'], {'Paid': 1, 'Partial': 1, 'Outstanding': 1, 'Pending': 1})
        self.assertEqual(stats['expected'], Decimal('220000.00'))
        self.assertEqual(stats['collected'], Decimal('110000.00'))
        self.assertEqual(stats['outstanding'], Decimal('110000.00'))
        self.assertEqual(stats['collection_rate'], Decimal('50.00'))
        self.assertEqual(stats['completion_rate'], Decimal('25.00'))

    def test_class_status_groups_active_students(self):
        status = build_class_status(school=self.school, period=FIRST)

        labels = [row['class_label'] for row in status['classes']]
        self.assertEqual(labels, ['JSS 1', 'SS 2', 'SS 2 Science'])
        ss2 = status['classes'][1]['students']
        self.assertEqual(ss2[0]['student_id'], 'S4')
        self.assertEqual(ss2[0]['status'], 'Pending')
        self.assertTrue(ss2[0]['nothing_billed'])

    def test_student_statement_lists_periods_in_order(self):
        self.add('S1', 'Bill', 4000, period=LAST_THIRD)

        statement = build_student_statement(school=self.school, student_id='S1')

        self.assertEqual(statement['student_name'], 'Ada Obi')
        self.assertEqual(
            [(row['session'], row['term']) for row in statement['periods']],
            [('2023/2024', 'Third Term'), ('2024/2025', 'First Term')],
        )
        self.assertEqual(statement['periods'][1]['outstanding'], Decimal('30000.00'))
        self.assertEqual(len(statement['periods'][1]['entries']), 2)

    def test_statement_for_unknown_student(self):
        with self.assertRaises(NotFoundError):
            build_student_statement(school=self.school, student_id='NOPE')

    def test_carry_forward_preview(self):
        preview = carry_forward_preview(school=self.school, period=FIRST)

        self.assertEqual(preview['to'], SECOND.as_dict())
        self.assertEqual(preview['total_amount'], Decimal('110000.00'))
        self.assertEqual([row['student_id'] for row in preview['students']], ['S1', 'S3'])


class CarryForwardTests(LedgerTestCase):
    def setUp(self):
        super().setUp()
        self.seed_first_term()

    def carried(self, period=SECOND):
        return LedgerEntry.objects.for_school(self.school).for_period(period).filter(
            entry_type=LedgerEntry.TYPE_CARRY_FORWARD,
        )

    def test_carries_outstanding_balances(self):
        result = carry_forward(school=self.school, from_period=FIRST, to_period=SECOND, recorded_by=self.school_admin)

        self.assertEqual(result.carried_count, 2)
        self.assertEqual(result.total_amount, Decimal('110000.00'))
        row = self.carried().get(student_code='S1')
        self.assertEqual(row.amount, Decimal('30000.00'))
        self.assertEqual(row.balance_after, Decimal('30000.00'))
        self.assertEqual(row.description, 'Carry-over from 2024/2025 First Term')
        self.assertEqual(get_balance(school=self.school, student_id='S1', period=SECOND).status, 'Outstanding')
        self.assertFalse(self.carried().filter(student_code='S2').exists())

    def test_second_run_does_not_double_the_carried_amount(self):
        carry_forward(school=self.school, from_period=FIRST, to_period=SECOND)
        again = carry_forward(school=self.school, from_period=FIRST, to_period=SECOND)

        self.assertEqual(again.carried_count, 0)
        self.assertEqual(again.skipped, ['S1', 'S3'])
        self.assertEqual(self.carried().count(), 2)
        self.assertEqual(get_balance(school=self.school, student_id='S1', period=SECOND).billed, Decimal('30000.00'))

    def test_subset_of_students(self):
        result = carry_forward(school=self.school, from_period=FIRST, to_period=SECOND, student_ids=['S1'])

        self.assertEqual(result.carried_count, 1)
        self.assertEqual(list(self.carried().values_list('student_code', flat=True)), ['S1'])

    def test_unknown_student_in_subset_writes_nothing(self):
        with self.assertRaises(NotFoundError):
            carry_forward(school=self.school, from_period=FIRST, to_period=SECOND, student_ids=['S1', 'NOPE'])
        self.assertFalse(self.carried().exists())

    def test_same_period_is_rejected(self):
        with self.assertRaises(ValidationError):
            carry_forward(school=self.school, from_period=FIRST, to_period=FIRST)

    def test_store_failure_writes_nothing(self):
        with mock.patch.object(LedgerEntry.objects, 'bulk_create', side_effect=DatabaseError('disk full')):
            with self.assertRaises(StoreError) as raised:
                carry_forward(school=self.school, from_period=FIRST, to_period=SECOND)

        self.assertIn('disk full', raised.exception.message)
        self.assertFalse(self.carried().exists())

    def test_rolling_back_from_first_term_wraps_to_previous_session(self):
        carry_forward(school=self.school, from_period=FIRST, to_period=FIRST.previous())

        rows = self.carried(LAST_THIRD)
        self.assertEqual(rows.count(), 2)
        self.assertEqual({row.session for row in rows}, {'2023/2024'})

    def test_rolling_forward_within_a_session_keeps_the_session(self):
        result = carry_forward(school=self.school, from_period=FIRST, to_period=FIRST.next())

        self.assertEqual({row.session for row in result.entries}, {'2024/2025'})
        self.assertEqual({row.term for row in result.entries}, {'Second Term'})


class BulkSettlementTests(LedgerTestCase):
    def setUp(self):
        super().setUp()
        self.seed_first_term()

    def payments(self, student_id):
        return LedgerEntry.objects.for_school(self.school).for_period(FIRST).filter(
            student_code=student_id,
            entry_type=LedgerEntry.TYPE_PAYMENT,
        )

    def test_settles_only_students_who_owe(self):
        result = bulk_settle(school=self.school, student_ids=['S1', 'S2'], period=FIRST, method='Cash')

        outcomes = {outcome.student_id: outcome for outcome in result.outcomes}
        self.assertEqual(outcomes['S1'].status, 'settled')
        self.assertEqual(outcomes['S1'].amount, Decimal('30000.00'))
        self.assertEqual(outcomes['S2'].status, 'already_settled')
        self.assertEqual(result.settled_count, 1)
        self.assertEqual(result.total_amount, Decimal('30000.00'))
        self.assertFalse(result.partial)

        self.assertEqual(self.payments('S2').count(), 1)
        latest = self.payments('S1').order_by('-id').first()
        self.assertEqual(latest.amount, Decimal('30000.00'))
        self.assertEqual(latest.description, 'Bulk settlement')
        self.assertEqual(latest.balance_after, Decimal('0.00'))
        self.assertTrue(Receipt.objects.filter(entry=latest, receipt_number=outcomes['S1'].receipt_number).exists())

        balance = get_balance(school=self.school, student_id='S1', period=FIRST)
        self.assertEqual(balance.outstanding, Decimal('0.00'))
        self.assertEqual(balance.status, 'Paid')

    def test_one_failure_does_not_block_the_rest(self):
        result = bulk_settle(school=self.school, student_ids=['NOPE', 'S3'], period=FIRST, method='transfer')

        outcomes = {outcome.student_id: outcome for outcome in result.outcomes}
        self.assertEqual(outcomes['NOPE'].status, 'failed')
        self.assertIn('NOPE', outcomes['NOPE'].error)
        self.assertEqual(outcomes['S3'].status, 'settled')
        self.assertEqual(result.method, 'Transfer')
        self.assertTrue(result.partial)

    def test_store_failure_is_reported_per_student(self):
        with mock.patch('apps.core.fees.services.store.insert_entry', side_effect=StoreError('locked')):
            result = bulk_settle(school=self.school, student_ids=['S1', 'S3'], period=FIRST, method='Cash')

        self.assertEqual([outcome.status for outcome in result.outcomes], ['failed', 'failed'])
        self.assertFalse(result.partial)
        self.assertEqual(self.payments('S3').count(), 0)

    def test_database_error_for_one_student_does_not_stop_the_batch(self):
        real_lock = lock_student

        def lock_or_fail(*, school, student_id):
            if student_id == 'S1':
                raise OperationalError('database is locked')
            return real_lock(school=school, student_id=student_id)

        with mock.patch('apps.core.fees.services.lock_student', side_effect=lock_or_fail):
            result = bulk_settle(school=self.school, student_ids=['S1', 'S3'], period=FIRST, method='Cash')

        outcomes = {outcome.student_id: outcome for outcome in result.outcomes}
        self.assertEqual(outcomes['S1'].status, 'failed')
        self.assertEqual(outcomes['S1'].error, 'database is locked')
        self.assertEqual(outcomes['S3'].status, 'settled')
        self.assertTrue(result.partial)
        self.assertEqual(self.payments('S1').count(), 1)

    def test_request_is_validated_before_writing(self):
        with self.assertRaises(ValidationError):
            bulk_settle(school=self.school, student_ids=[], period=FIRST, method='Cash')
        with self.assertRaises(ValidationError):
            bulk_settle(school=self.school, student_ids=['S1'], period=FIRST, method='Cheque')
        self.assertEqual(self.payments('S1').count(), 1)

    def test_rerun_is_already_settled(self):
        bulk_settle(school=self.school, student_ids=['S1'], period=FIRST, method='Cash')
        again = bulk_settle(school=self.school, student_ids=['S1'], period=FIRST, method='Cash')

        self.assertEqual(again.outcomes[0].status, 'already_settled')
        self.assertEqual(self.payments('S1').count(), 2)

    def test_late_bill_reopens_a_paid_balance(self):
        bulk_settle(school=self.school, student_ids=['S1'], period=FIRST, method='Cash')
        result = post_bill(school=self.school, student_id='S1', period=FIRST, amount='2500', description='Late fee')

        self.assertEqual(result['balance'].status, 'Partial')
        self.assertEqual(result['balance'].outstanding, Decimal('2500.00'))
        self.assertEqual(result['entry'].balance_after, Decimal('2500.00'))


class WriteOperationTests(LedgerTestCase):
    def setUp(self):
        super().setUp()
        self.add('S1', 'Bill', 90000)

    def test_record_payment_issues_receipt(self):
        result = record_payment(
            school=self.school,
            student_id='S1',
            period=FIRST,
            amount='40000',
            method='bank transfer',
            recorded_by=self.accountant,
        )

        self.assertEqual(result['entry'].method, 'Transfer')
        self.assertEqual(result['entry'].balance_after, Decimal('50000.00'))
        self.assertEqual(result['balance'].status, 'Partial')
        self.assertTrue(result['receipt'].receipt_number.startswith(f'RCP-{self.school.id}-'))

    def test_overpayment_is_rejected(self):
        with self.assertRaises(ValidationError):
            record_payment(school=self.school, student_id='S1', period=FIRST, amount='90000.01', method='Cash')
        self.assertFalse(LedgerEntry.objects.filter(entry_type='Payment').exists())

    def test_non_positive_and_malformed_amounts(self):
        for amount in ('0', '-10', 'abc', 'NaN'):
            with self.assertRaises(ValidationError):
                record_payment(school=self.school, student_id='S1', period=FIRST, amount=amount, method='Cash')

    def test_unknown_student(self):
        with self.assertRaises(NotFoundError):
            record_payment(school=self.school, student_id='NOPE', period=FIRST, amount='10', method='Cash')
        with self.assertRaises(NotFoundError):
            get_balance(school=self.school, student_id='NOPE', period=FIRST)

    def test_adjustment_credit_reduces_billed(self):
        result = record_adjustment(school=self.school, student_id='S1', period=FIRST, amount='-10000')

        self.assertEqual(result['entry'].description, 'Manual adjustment')
        self.assertEqual(result['balance'].billed, Decimal('80000.00'))
        self.assertIsNone(result['receipt'])

    def test_zero_adjustment_is_rejected(self):
        with self.assertRaises(ValidationError):
            record_adjustment(school=self.school, student_id='S1', period=FIRST, amount='0')

    def test_reset_period_payments(self):
        record_payment(school=self.school, student_id='S1', period=FIRST, amount='1000', method='Cash')
        record_payment(school=self.school, student_id='S1', period=FIRST, amount='2000', method='POS')

        result = reset_period_payments(school=self.school, student_id='S1', period=FIRST)

        self.assertEqual(result['deleted_count'], 2)
        self.assertEqual(result['deleted_amount'], Decimal('3000.00'))
        self.assertEqual(result['balance'].outstanding, Decimal('90000.00'))
        self.assertFalse(Receipt.objects.exists())

    def test_receipt_pdf(self):
        result = record_payment(school=self.school, student_id='S1', period=FIRST, amount='1000', method='Cash')

        pdf_bytes = generate_receipt_pdf(result['receipt'])

        self.assertTrue(pdf_bytes.startswith(b'%PDF'))


class TermBillingTests(LedgerTestCase):
    def setUp(self):
        super().setUp()
        ClassFeeStructure.objects.create(
            school=self.school, school_class=self.jss1, term='First', session='2024-25', amount=Decimal('75000'),
        )
        ClassFeeStructure.objects.create(
            school=self.school, school_class=self.ss2, term='First Term', session='2024/2025', amount=Decimal('90000'),
        )
        ClassFeeStructure.objects.create(
            school=self.school,
            school_class=self.ss2,
            section=self.science,
            term='First Term',
            session='2024/2025',
            amount=Decimal('95000'),
            description='SS 2 Science fees',
        )
        ClassFeeStructure.objects.create(
            school=self.school, school_class=self.jss1, term='Second Term', session='2024/2025', amount=Decimal('70000'),
        )
        Student.objects.create(school=self.school, admission_number='S4', first_name='Dayo')

    def test_seed_bills_uses_stream_fee_first(self):
        result = seed_term_bills(school=self.school, period=FIRST)

        self.assertEqual(result.billed_count, 3)
        self.assertEqual(result.total_amount, Decimal('245000.00'))
        self.assertEqual(result.without_fee, ['S4'])
        bill = LedgerEntry.objects.get(student_code='S3', entry_type='Bill')
        self.assertEqual(bill.amount, Decimal('95000.00'))
        self.assertEqual(bill.description, 'SS 2 Science fees')

    def test_seed_bills_skips_students_already_billed(self):
        seed_term_bills(school=self.school, period=FIRST)
        again = seed_term_bills(school=self.school, period=FIRST)

        self.assertEqual(again.billed_count, 0)
        self.assertEqual(again.already_billed, ['S1', 'S2', 'S3'])

    def test_open_term_carries_forward_then_bills(self):
        self.add('S1', 'Bill', 75000)
        self.add('S1', 'Payment', 45000)

        result = open_term(school=self.school, period=SECOND, carry_forward_balances=True)

        self.assertEqual(result['carry_forward']['carried_count'], 1)
        self.assertEqual(result['bills']['billed_count'], 2)
        bill = LedgerEntry.objects.get(student_code='S1', entry_type='Bill', term='Second Term')
        self.assertEqual(bill.balance_after, Decimal('100000.00'))
        self.assertEqual(get_balance(school=self.school, student_id='S1', period=SECOND).outstanding, Decimal('100000.00'))


    def test_expected_revenue_counts_students_not_yet_billed(self):
        self.add('S1', 'Bill', 75000)
        self.add('S1', 'Payment', 45000)

        report = build_expected_revenue(school=self.school, period=FIRST)

        self.assertEqual(report['students'], 4)
        self.assertEqual(report['expected_revenue'], Decimal('245000.00'))
        self.assertEqual(report['billed'], Decimal('75000.00'))
        self.assertEqual(report['collected'], Decimal('45000.00'))
        self.assertEqual(report['outstanding'], Decimal('30000.00'))
        self.assertEqual(report['collection_rate'], Decimal('18.37'))
        self.assertEqual(report['not_billed'], ['S2', 'S3'])
        self.assertEqual(report['without_fee'], ['S4'])
        self.assertEqual(report['per_class']['JSS 1']['expected_revenue'], Decimal('150000.00'))
        self.assertEqual(report['per_class']['SS 2 Science']['expected_revenue'], Decimal('95000.00'))
        self.assertEqual(report['per_class']['Unknown']['expected_revenue'], Decimal('0.00'))

    def test_expected_revenue_endpoint(self):
        self.client.login(username='ledger_accountant', password='pass12345')

        response = self.client.get(reverse('fee_expected_revenue'), {'term': 'Second', 'session': '2024/2025'})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body['term'], 'Second Term')
        self.assertEqual(body['expected_revenue'], '140000.00')
        self.assertEqual(body['without_fee'], ['S3', 'S4'])

class FeeApiTests(LedgerTestCase):
    def setUp(self):
        super().setUp()
        self.seed_first_term()

    def post_json(self, url, payload):
        return self.client.post(url, data=json.dumps(payload), content_type='application/json')

    def test_anonymous_request_is_rejected(self):
        response = self.client.get(reverse('fee_balance'), {'student_id': 'S1'})
        self.assertEqual(response.status_code, 401)

    def test_teacher_only_sees_class_status(self):
        self.client.login(username='ledger_teacher', password='pass12345')

        self.assertEqual(self.client.get(reverse('fee_balance'), {'student_id': 'S1'}).status_code, 403)
        response = self.client.get(reverse('fee_class_status'))
        self.assertEqual(response.status_code, 200)

    def test_balance_uses_current_period(self):
        self.client.login(username='ledger_accountant', password='pass12345')

        response = self.client.get(reverse('fee_balance'), {'student_id': 'S1'})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body['outstanding'], '30000.00')
        self.assertEqual(body['status'], 'Partial')
        self.assertEqual((body['term'], body['session']), ('First Term', '2024/2025'))
        self.assertFalse(body['nothing_billed'])
        self.assertFalse(body['fully_paid'])

    def test_free_text_period_is_normalised(self):
        self.client.login(username='ledger_accountant', password='pass12345')

        response = self.client.get(reverse('fee_balance'), {'student_id': 'S2', 'term': '1st', 'session': '2024-25'})

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()['fully_paid'])

    def test_period_errors(self):
        self.client.login(username='ledger_accountant', password='pass12345')
        url = reverse('fee_balance')

        self.assertEqual(self.client.get(url, {'student_id': 'S1', 'term': 'Fourth', 'session': '2024/2025'}).status_code, 400)
        self.assertEqual(self.client.get(url, {'student_id': 'S1', 'term': 'First', 'session': '2030/2031'}).status_code, 404)
        self.assertEqual(self.client.get(url, {'student_id': 'NOPE'}).status_code, 404)

    def test_summary_endpoint(self):
        self.add('GHOST', 'Bill', 10)
        self.client.login(username='ledger_admin', password='pass12345')

        response = self.client.get(reverse('fee_class_summary'))

        body = response.json()
        self.assertEqual(body['per_class']['JSS 1']['outstanding'], '30000.00')
        self.assertEqual(body['owing'][0]['student_id'], 'S1')
        self.assertEqual(body['dropped_entries'], 1)

    def test_record_payment_endpoint_writes_audit_event(self):
        self.client.login(username='ledger_accountant', password='pass12345')

        response = self.post_json(reverse('fee_payment_create'), {
            'student_id': 'S3',
            'amount': '20000',
            'method': 'POS',
        })

        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body['balance']['outstanding'], '60000.00')
        self.assertTrue(body['receipt_number'])
        log = AuditLog.objects.get(action='fees.payment_recorded')
        self.assertEqual(log.details['amount'], '20000.00')
        self.assertEqual(log.user, self.accountant)

    def test_payment_form_errors(self):
        self.client.login(username='ledger_accountant', password='pass12345')

        response = self.post_json(reverse('fee_payment_create'), {'student_id': 'S3', 'amount': '-1', 'method': 'Cash'})

        self.assertEqual(response.status_code, 400)
        self.assertIn('amount', response.json()['fields'])

    def test_bulk_settle_endpoint_reports_partial_result(self):
        self.client.login(username='ledger_accountant', password='pass12345')

        response = self.post_json(reverse('fee_bulk_settle'), {
            'student_ids': ['S1', 'S2', 'NOPE'],
            'method': 'Cash',
        })

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body['partial'])
        self.assertEqual(body['settled_count'], 1)
        self.assertEqual([row['status'] for row in body['results']], ['settled', 'already_settled', 'failed'])

    def test_carry_forward_is_admin_only(self):
        self.client.login(username='ledger_accountant', password='pass12345')
        self.assertEqual(self.post_json(reverse('fee_carry_forward'), {}).status_code, 403)

    def test_carry_forward_preview_and_run(self):
        self.client.login(username='ledger_admin', password='pass12345')
        url = reverse('fee_carry_forward')
        params = {'from_term': 'First', 'from_session': '2024/2025', 'to_term': 'Second', 'to_session': '2024/2025'}

        preview = self.client.get(url, params)
        self.assertEqual(preview.status_code, 200)
        self.assertEqual(preview.json()['total_amount'], '110000.00')

        run = self.post_json(url, params)
        self.assertEqual(run.status_code, 201)
        self.assertEqual(run.json()['carried_count'], 2)

        rerun = self.post_json(url, params)
        self.assertEqual(rerun.status_code, 200)
        self.assertEqual(rerun.json()['carried_count'], 0)
        self.assertEqual(AuditLog.objects.filter(action='fees.carry_forward_run').count(), 2)

    def test_reset_requires_confirmation(self):
        self.client.login(username='ledger_admin', password='pass12345')
        url = reverse('fee_payments_reset')

        self.assertEqual(self.post_json(url, {'student_id': 'S1'}).status_code, 400)

        response = self.post_json(url, {'student_id': 'S1', 'confirm': True})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['deleted_count'], 1)
        self.assertTrue(AuditLog.objects.filter(action='fees.payments_reset').exists())

    def test_student_sees_own_statement_and_receipts(self):
        own = record_payment(school=self.school, student_id='S1', period=FIRST, amount='100', method='Cash')
        other = record_payment(school=self.school, student_id='S3', period=FIRST, amount='100', method='Cash')
        self.client.login(username='ada', password='pass12345')

        statement = self.client.get(reverse('fee_my_statement'))
        self.assertEqual(statement.status_code, 200)
        self.assertEqual(statement.json()['student_id'], 'S1')

        pdf = self.client.get(reverse('fee_receipt_pdf', args=[own['receipt'].receipt_number]))
        self.assertEqual(pdf.status_code, 200)
        self.assertEqual(pdf['Content-Type'], 'application/pdf')

        hidden = self.client.get(reverse('fee_receipt_pdf', args=[other['receipt'].receipt_number]))
        self.assertEqual(hidden.status_code, 404)

    def test_ledger_listing(self):
        self.client.login(username='ledger_accountant', password='pass12345')

        response = self.client.get(reverse('fee_ledger_list'), {'student_id': 'S1', 'entry_type': 'Payment'})

        entries = response.json()['entries']
        self.assertEqual(len(entries), 1)
        self.assertEqual(entries[0]['amount'], '60000.00')

    def test_receipt_listing(self):
        record_payment(school=self.school, student_id='S1', period=FIRST, amount='100', method='Cash')
        record_payment(school=self.school, student_id='S3', period=FIRST, amount='250', method='POS')
        record_payment(school=self.school, student_id='S3', period=FIRST, amount='300', method='Cash')
        self.client.login(username='ledger_accountant', password='pass12345')
        url = reverse('fee_receipt_list')

        receipts = self.client.get(url, {'student_id': 'S3'}).json()['receipts']
        self.assertEqual([row['amount'] for row in receipts], ['300.00', '250.00'])
        self.assertEqual(receipts[0]['student_name'], 'Chi Eze')
        self.assertEqual(receipts[0]['class_label'], 'SS 2 Science')
        self.assertEqual(receipts[0]['term'], 'First Term')

        self.assertEqual(len(self.client.get(url, {'limit': 2}).json()['receipts']), 2)
        self.assertEqual(len(self.client.get(url).json()['receipts']), 3)
        self.assertEqual(self.client.get(url, {'term': 'Second', 'session': '2024/2025'}).json()['receipts'], [])

    def test_student_lists_only_own_receipts(self):
        record_payment(school=self.school, student_id='S1', period=FIRST, amount='100', method='Cash')
        record_payment(school=self.school, student_id='S3', period=FIRST, amount='250', method='Cash')
        self.client.login(username='ada', password='pass12345')

        response = self.client.get(reverse('fee_receipt_list'), {'student_id': 'S3'})

        receipts = response.json()['receipts']
        self.assertEqual(len(receipts), 1)
        self.assertEqual(receipts[0]['student_id'], 'S1')

    def test_ledger_read_failure_is_a_json_error(self):
        self.client.login(username='ledger_admin', password='pass12345')

        with mock.patch.object(LedgerEntry.objects, 'for_school', side_effect=OperationalError('boom')):
            response = self.client.get(reverse('fee_class_summary'))

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {'error': 'boom'})

    def test_directory_failure_is_a_json_error(self):
        self.client.login(username='ledger_accountant', password='pass12345')

        with mock.patch('apps.core.fees.reports.lookup_students', side_effect=OperationalError('directory offline')):
            response = self.client.get(reverse('fee_payment_history'))

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()['error'], 'directory offline')

    def test_carry_forward_defaults_to_previous_configured_period(self):
        self.client.login(username='ledger_admin', password='pass12345')

        preview = self.client.get(reverse('fee_carry_forward'))

        self.assertEqual(preview.status_code, 200)
        self.assertEqual(preview.json()['from'], {'term': 'Third Term', 'session': '2023/2024'})
        self.assertEqual(preview.json()['to'], {'term': 'First Term', 'session': '2024/2025'})

    def test_carry_forward_from_unconfigured_previous_period_is_not_found(self):
        AcademicTerm.objects.filter(session=self.previous_session).delete()
        self.client.login(username='ledger_admin', password='pass12345')

        preview = self.client.get(reverse('fee_carry_forward'))
        run = self.post_json(reverse('fee_carry_forward'), {})

        self.assertEqual(preview.status_code, 404)
        self.assertEqual(run.status_code, 404)
        self.assertFalse(LedgerEntry.objects.filter(entry_type=LedgerEntry.TYPE_CARRY_FORWARD).exists())
