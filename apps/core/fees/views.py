from django.http import HttpResponse, JsonResponse
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from apps.core.academic_sessions.services import resolve_period
from apps.core.users.audit import log_audit_event
from apps.core.users.decorators import role_required
from apps.core.utils.exceptions import NotFoundError
from apps.core.utils.http import form_error_response, json_errors, request_data

from . import reports, store
from .forms import (
    AdjustmentForm,
    BillForm,
    BulkSettleForm,
    CarryForwardForm,
    LedgerFilterForm,
    OpenTermForm,
    PaymentForm,
    PeriodForm,
    ReceiptFilterForm,
    ResetPaymentsForm,
    StudentPeriodForm,
)
from .models import Receipt
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
)

ADMIN_ROLES = ('schooladmin',)
FINANCE_ROLES = ('schooladmin', 'accountant')


def _current_period(request):
    period = getattr(request, 'current_period', None)
    if period is None:
        raise NotFoundError('No active session and term are configured for this school.')
    return period


def _period(request, term, session):
    """Period named in the request, else the school's current one."""
    if term or session:
        return resolve_period(school=request.user.school, term=term, session=session)
    return _current_period(request)


def _form_period(request, form):
    return _period(request, form.cleaned_data.get('term'), form.cleaned_data.get('session'))


def _write_payload(result):
    entry = result['entry']
    return {
        'entry': {
            'student_id': entry.student_code,
            **entry.period.as_dict(),
            **reports.entry_line(entry),
        },
        'receipt_number': result['receipt'].receipt_number if result.get('receipt') else None,
        'balance': result['balance'].as_dict(),
    }


@require_GET
@role_required(FINANCE_ROLES)
@json_errors
def balance_detail(request):
    form = StudentPeriodForm(request.GET)
    if not form.is_valid():
        return form_error_response(form)

    balance = get_balance(
        school=request.user.school,
        student_id=form.cleaned_data['student_id'],
        period=_form_period(request, form),
    )
    return JsonResponse(balance.as_dict())


@require_GET
@role_required(FINANCE_ROLES)
@json_errors
def class_summary(request):
    form = PeriodForm(request.GET)
    if not form.is_valid():
        return form_error_response(form)

    summary = reports.build_class_summary(school=request.user.school, period=_form_period(request, form))
    return JsonResponse(summary.as_dict())


@require_GET
@role_required(FINANCE_ROLES)
@json_errors
def payment_history(request):
    form = PeriodForm(request.GET)
    if not form.is_valid():
        return form_error_response(form)

    return JsonResponse(reports.build_payment_history(school=request.user.school, period=_form_period(request, form)))


@require_GET
@role_required(FINANCE_ROLES)
@json_errors
def period_statistics(request):
    form = PeriodForm(request.GET)
    if not form.is_valid():
        return form_error_response(form)

    return JsonResponse(reports.build_period_statistics(school=request.user.school, period=_form_period(request, form)))


@require_GET
@role_required(FINANCE_ROLES)
@json_errors
def expected_revenue(request):
    form = PeriodForm(request.GET)
    if not form.is_valid():
        return form_error_response(form)

    return JsonResponse(reports.build_expected_revenue(school=request.user.school, period=_form_period(request, form)))


@require_GET
@role_required(('schooladmin', 'accountant', 'teacher'))
@json_errors
def class_status(request):
    form = PeriodForm(request.GET)
    if not form.is_valid():
        return form_error_response(form)

    return JsonResponse(reports.build_class_status(school=request.user.school, period=_form_period(request, form)))


@require_GET
@role_required(FINANCE_ROLES)
@json_errors
def ledger_list(request):
    form = LedgerFilterForm(request.GET)
    if not form.is_valid():
        return form_error_response(form)

    period = _form_period(request, form)
    student_id = form.cleaned_data.get('student_id')
    entries = store.list_entries(
        school=request.user.school,
        period=period,
        student_ids=[student_id] if student_id else None,
    )
    entry_type = form.cleaned_data.get('entry_type')
    if entry_type:
        entries = [entry for entry in entries if entry.entry_type == entry_type]

    return JsonResponse({
        **period.as_dict(),
        'entries': [{'student_id': entry.student_code, **reports.entry_line(entry)} for entry in entries],
    })


@require_http_methods(['GET', 'POST'])
@role_required(ADMIN_ROLES)
@json_errors
def carry_forward_manage(request):
    form = CarryForwardForm(request_data(request))
    if not form.is_valid():
        return form_error_response(form)

    data = form.cleaned_data
    school = request.user.school

    if data.get('to_term'):
        to_period = _period(request, data['to_term'], data['to_session'])
    else:
        to_period = _current_period(request)
    if data.get('from_term'):
        from_period = _period(request, data['from_term'], data['from_session'])
    else:
        previous = to_period.previous()
        from_period = resolve_period(school=school, term=previous.term, session=previous.session)

    if request.method == 'GET':
        preview = reports.carry_forward_preview(school=school, period=from_period)
        preview['to'] = to_period.as_dict()
        return JsonResponse(preview)

    result = carry_forward(
        school=school,
        from_period=from_period,
        to_period=to_period,
        student_ids=data.get('student_ids') or None,
        recorded_by=request.user,
    )
    log_audit_event(
        request=request,
        action='fees.carry_forward_run',
        school=school,
        details={
            'from': str(from_period),
            'to': str(to_period),
            'carried_count': result.carried_count,
            'total_amount': result.total_amount,
            'skipped': len(result.skipped),
        },
    )
    return JsonResponse(result.as_dict(), status=201 if result.carried_count else 200)


@require_POST
@role_required(FINANCE_ROLES)
@json_errors
def bulk_settle_view(request):
    form = BulkSettleForm(request_data(request))
    if not form.is_valid():
        return form_error_response(form)

    period = _form_period(request, form)
    result = bulk_settle(
        school=request.user.school,
        student_ids=form.cleaned_data['student_ids'],
        period=period,
        method=form.cleaned_data['method'],
        recorded_by=request.user,
    )
    log_audit_event(
        request=request,
        action='fees.bulk_settled',
        school=request.user.school,
        details={
            'period': str(period),
            'method': result.method,
            'settled_count': result.settled_count,
            'total_amount': result.total_amount,
            'failed': [outcome.student_id for outcome in result.failed],
        },
    )
    return JsonResponse(result.as_dict())


@require_POST
@role_required(FINANCE_ROLES)
@json_errors
def payment_create(request):
    form = PaymentForm(request_data(request))
    if not form.is_valid():
        return form_error_response(form)

    result = record_payment(
        school=request.user.school,
        student_id=form.cleaned_data['student_id'],
        period=_form_period(request, form),
        amount=form.cleaned_data['amount'],
        method=form.cleaned_data['method'],
        description=form.cleaned_data.get('description', ''),
        recorded_by=request.user,
    )
    log_audit_event(
        request=request,
        action='fees.payment_recorded',
        school=request.user.school,
        target=result['entry'],
        details={
            'student_id': result['entry'].student_code,
            'amount': result['entry'].amount,
            'method': result['entry'].method,
            'receipt_number': result['receipt'].receipt_number,
        },
    )
    return JsonResponse(_write_payload(result), status=201)


@require_POST
@role_required(ADMIN_ROLES)
@json_errors
def adjustment_create(request):
    form = AdjustmentForm(request_data(request))
    if not form.is_valid():
        return form_error_response(form)

    result = record_adjustment(
        school=request.user.school,
        student_id=form.cleaned_data['student_id'],
        period=_form_period(request, form),
        amount=form.cleaned_data['amount'],
        description=form.cleaned_data.get('description', ''),
        recorded_by=request.user,
    )
    log_audit_event(
        request=request,
        action='fees.adjustment_recorded',
        school=request.user.school,
        target=result['entry'],
        details={'student_id': result['entry'].student_code, 'amount': result['entry'].amount},
    )
    return JsonResponse(_write_payload(result), status=201)


@require_POST
@role_required(FINANCE_ROLES)
@json_errors
def bill_create(request):
    form = BillForm(request_data(request))
    if not form.is_valid():
        return form_error_response(form)

    result = post_bill(
        school=request.user.school,
        student_id=form.cleaned_data['student_id'],
        period=_form_period(request, form),
        amount=form.cleaned_data['amount'],
        description=form.cleaned_data.get('description', ''),
        recorded_by=request.user,
    )
    log_audit_event(
        request=request,
        action='fees.bill_posted',
        school=request.user.school,
        target=result['entry'],
        details={'student_id': result['entry'].student_code, 'amount': result['entry'].amount},
    )
    return JsonResponse(_write_payload(result), status=201)


@require_POST
@role_required(ADMIN_ROLES)
@json_errors
def open_term_view(request):
    form = OpenTermForm(request_data(request))
    if not form.is_valid():
        return form_error_response(form)

    period = _form_period(request, form)
    result = open_term(
        school=request.user.school,
        period=period,
        carry_forward_balances=form.cleaned_data['carry_forward'],
        recorded_by=request.user,
    )
    log_audit_event(
        request=request,
        action='fees.term_opened',
        school=request.user.school,
        details={
            'period': str(period),
            'billed_count': result['bills']['billed_count'],
            'carried_count': result['carry_forward']['carried_count'] if result['carry_forward'] else 0,
        },
    )
    return JsonResponse(result)


@require_POST
@role_required(ADMIN_ROLES)
@json_errors
def payments_reset(request):
    form = ResetPaymentsForm(request_data(request))
    if not form.is_valid():
        return form_error_response(form)

    period = _form_period(request, form)
    result = reset_period_payments(
        school=request.user.school,
        student_id=form.cleaned_data['student_id'],
        period=period,
    )
    log_audit_event(
        request=request,
        action='fees.payments_reset',
        school=request.user.school,
        details={
            'student_id': form.cleaned_data['student_id'],
            'period': str(period),
            'deleted_count': result['deleted_count'],
            'deleted_amount': result['deleted_amount'],
        },
    )
    return JsonResponse({
        'deleted_count': result['deleted_count'],
        'deleted_amount': result['deleted_amount'],
        'balance': result['balance'].as_dict(),
    })


def _statement_response(request, student_id):
    form = PeriodForm(request.GET)
    if not form.is_valid():
        return form_error_response(form)

    period = None
    if form.cleaned_data.get('term'):
        period = _form_period(request, form)

    statement = reports.build_student_statement(
        school=request.user.school,
        student_id=student_id,
        period=period,
    )
    return JsonResponse(statement)


@require_GET
@role_required(FINANCE_ROLES)
@json_errors
def student_statement(request, student_id):
    return _statement_response(request, student_id)


@require_GET
@role_required('student')
@json_errors
def my_statement(request):
    student = request.user.student
    if student is None:
        raise NotFoundError('Your account is not linked to a student record.')
    return _statement_response(request, student.admission_number)


@require_GET
@role_required(('schooladmin', 'accountant', 'student'))
@json_errors
def receipt_pdf(request, receipt_number):
    receipt = (
        Receipt.objects.for_school(request.user.school)
        .select_related('entry', 'entry__recorded_by', 'school')
        .filter(receipt_number=receipt_number)
        .first()
    )
    if receipt and request.user.role == 'student':
        student = request.user.student
        if student is None or receipt.entry.student_code != student.admission_number:
            receipt = None
    if receipt is None:
        raise NotFoundError(f'Receipt {receipt_number} not found.')

    pdf_bytes = generate_receipt_pdf(receipt)
    response = HttpResponse(pdf_bytes, content_type='application/pdf')
    response['Content-Disposition'] = f'attachment; filename="{receipt.receipt_number}.pdf"'
    return response


@require_GET
@role_required(('schooladmin', 'accountant', 'student'))
@json_errors
def receipt_list(request):
    form = ReceiptFilterForm(request.GET)
    if not form.is_valid():
        return form_error_response(form)

    student_id = form.cleaned_data.get('student_id') or None
    if request.user.role == 'student':
        student = request.user.student
        if student is None:
            raise NotFoundError('Your account is not linked to a student record.')
        student_id = student.admission_number

    period = None
    if form.cleaned_data.get('term'):
        period = _form_period(request, form)

    return JsonResponse(reports.build_receipt_list(
        school=request.user.school,
        student_id=student_id,
        period=period,
        limit=form.cleaned_data.get('limit'),
    ))
