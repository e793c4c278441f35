from django.core.exceptions import ValidationError
from django.db import transaction

from apps.core.academic_sessions.models import AcademicSession, AcademicTerm
from apps.core.utils.exceptions import NotFoundError

from .periods import Period


def activate_session(*, school, session):
    if session.school_id != school.id:
        raise ValidationError('Session does not belong to the provided school.')

    with transaction.atomic():
        AcademicSession.objects.filter(
            school=school,
            is_active=True,
        ).exclude(pk=session.pk).update(is_active=False)

        if not session.is_active:
            session.is_active = True
            session.save(update_fields=['is_active'])

    return session


def activate_term(*, school, term):
    """Make ``term`` the school's current term, activating its session too."""
    if term.session.school_id != school.id:
        raise ValidationError('Term does not belong to the provided school.')

    with transaction.atomic():
        activate_session(school=school, session=term.session)

        AcademicTerm.objects.filter(
            session=term.session,
            is_active=True,
        ).exclude(pk=term.pk).update(is_active=False)

        if not term.is_active:
            term.is_active = True
            term.save(update_fields=['is_active'])

    return term


def find_current_period(school):
    term = (
        AcademicTerm.objects.filter(
            session__school=school,
            session__is_active=True,
            is_active=True,
        )
        .select_related('session')
        .first()
    )
    return term.period if term else None


def current_period(school) -> Period:
    period = find_current_period(school)
    if period is None:
        raise NotFoundError('No active session and term are configured for this school.')
    return period


def resolve_period(*, school, term, session) -> Period:
    """Normalise free-text term/session and check the school has configured them."""
    period = Period.parse(term, session)

    academic_session = AcademicSession.objects.filter(school=school, name=period.session).first()
    if academic_session is None:
        raise NotFoundError(f'Session {period.session} not found.')

    if not academic_session.terms.filter(name=period.term).exists():
        raise NotFoundError(f'{period.term} not found in session {period.session}.')

    return period
