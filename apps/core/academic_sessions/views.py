from django.http import JsonResponse
from django.views.decorators.http import require_GET, require_http_methods, require_POST

from apps.core.users.audit import log_audit_event
from apps.core.users.decorators import login_required_json, role_required
from apps.core.utils.exceptions import NotFoundError
from apps.core.utils.http import form_error_response, json_errors, request_data

from .forms import AcademicSessionForm, AcademicTermForm
from .models import AcademicSession, AcademicTerm
from .services import activate_session, activate_term


def _term_payload(term):
    return {
        'id': term.pk,
        'name': term.name,
        'start_date': term.start_date,
        'end_date': term.end_date,
        'is_active': term.is_active,
    }


def _session_payload(session):
    return {
        'id': session.pk,
        'name': session.name,
        'start_date': session.start_date,
        'end_date': session.end_date,
        'is_active': session.is_active,
        'terms': [_term_payload(term) for term in session.terms.all()],
    }


def _school_session(request, pk):
    session = AcademicSession.objects.filter(pk=pk, school=request.user.school).first()
    if session is None:
        raise NotFoundError(f'Session {pk} not found.')
    return session


@require_GET
@login_required_json
def academic_context(request):
    """The signed-in user's school and its current period."""
    period = getattr(request, 'current_period', None)
    school = getattr(request, 'current_school', None)
    return JsonResponse({
        'school': {'id': school.pk, 'name': school.name, 'code': school.code} if school else None,
        'current': period.as_dict() if period else None,
        'previous': period.previous().as_dict() if period else None,
        'next': period.next().as_dict() if period else None,
        'role': request.user.role,
    })


@require_http_methods(['GET', 'POST'])
@role_required('schooladmin')
@json_errors
def session_list(request):
    school = request.user.school

    if request.method == 'POST':
        form = AcademicSessionForm(request_data(request), school=school)
        if not form.is_valid():
            return form_error_response(form)

        session = form.save(commit=False)
        make_active = session.is_active
        session.is_active = False
        session.save()
        if make_active:
            activate_session(school=school, session=session)
        log_audit_event(
            request=request,
            action='session.created',
            school=school,
            target=session,
            details={'name': session.name, 'is_active': session.is_active},
        )
        return JsonResponse(_session_payload(session), status=201)

    sessions = AcademicSession.objects.for_school(school).prefetch_related('terms').order_by('-start_date')
    return JsonResponse({'sessions': [_session_payload(session) for session in sessions]})


@require_POST
@role_required('schooladmin')
@json_errors
def session_activate(request, pk):
    school = request.user.school
    session = activate_session(school=school, session=_school_session(request, pk))
    log_audit_event(
        request=request,
        action='session.activated',
        school=school,
        target=session,
        details={'name': session.name},
    )
    return JsonResponse(_session_payload(session))


@require_POST
@role_required('schooladmin')
@json_errors
def term_create(request, pk):
    school = request.user.school
    session = _school_session(request, pk)

    form = AcademicTermForm(request_data(request), session=session)
    if not form.is_valid():
        return form_error_response(form)

    term = form.save(commit=False)
    make_active = term.is_active
    term.is_active = False
    term.save()
    if make_active:
        activate_term(school=school, term=term)
    log_audit_event(
        request=request,
        action='term.created',
        school=school,
        target=term,
        details={'session': session.name, 'term': term.name, 'is_active': term.is_active},
    )
    return JsonResponse(_term_payload(term), status=201)


@require_POST
@role_required('schooladmin')
@json_errors
def term_activate(request, pk):
    school = request.user.school
    term = AcademicTerm.objects.select_related('session').filter(pk=pk, session__school=school).first()
    if term is None:
        raise NotFoundError(f'Term {pk} not found.')

    activate_term(school=school, term=term)
    log_audit_event(
        request=request,
        action='term.activated',
        school=school,
        target=term,
        details={'period': str(term.period)},
    )
    return JsonResponse({**_term_payload(term), **term.period.as_dict()})
