from django.urls import path

from .views import (
    adjustment_create,
    balance_detail,
    bill_create,
    bulk_settle_view,
    carry_forward_manage,
    class_status,
    class_summary,
    expected_revenue,
    ledger_list,
    my_statement,
    open_term_view,
    payment_create,
    payment_history,
    payments_reset,
    period_statistics,
    receipt_list,
    receipt_pdf,
    student_statement,
)

urlpatterns = [
    path('balance/', balance_detail, name='fee_balance'),
    path('summary/', class_summary, name='fee_class_summary'),
    path('history/', payment_history, name='fee_payment_history'),
    path('statistics/', period_statistics, name='fee_period_statistics'),
    path('class-status/', class_status, name='fee_class_status'),
    path('expected-revenue/', expected_revenue, name='fee_expected_revenue'),
    path('ledger/', ledger_list, name='fee_ledger_list'),

    path('carry-forward/', carry_forward_manage, name='fee_carry_forward'),
    path('settle/', bulk_settle_view, name='fee_bulk_settle'),
    path('payments/', payment_create, name='fee_payment_create'),
    path('adjustments/', adjustment_create, name='fee_adjustment_create'),
    path('bills/', bill_create, name='fee_bill_create'),
    path('open-term/', open_term_view, name='fee_open_term'),
    path('reset/', payments_reset, name='fee_payments_reset'),

    path('students/<str:student_id>/statement/', student_statement, name='fee_student_statement'),
    path('me/statement/', my_statement, name='fee_my_statement'),
    path('receipts/', receipt_list, name='fee_receipt_list'),
    path('receipts/<str:receipt_number>/pdf/', receipt_pdf, name='fee_receipt_pdf'),
]
