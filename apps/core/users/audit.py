import json
import logging

from django.core.serializers.json import DjangoJSONEncoder
from django.db import DatabaseError, transaction

from apps.core.users.models import AuditLog

logger = logging.getLogger(__name__)


def _extract_ip(request):
    forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR', '')
    if forwarded_for:
        return forwarded_for.split(',')[0].strip()
    return request.META.get('REMOTE_ADDR')


def _json_safe(details):
    # Decimal amounts and dates are stored as strings, as they appear in API responses.
    return json.loads(json.dumps(details or {}, cls=DjangoJSONEncoder))


def log_audit_event(request, action, school=None, target=None, details=None, user=None):
    target_model = ''
    target_id = ''

    if target is not None:
        target_model = target.__class__.__name__
        target_id = str(getattr(target, 'pk', '') or '')

    if user is None:
        user = getattr(request, 'user', None)
    if user is not None and not user.is_authenticated:
        user = None

    try:
        with transaction.atomic():
            return AuditLog.objects.create(
                school=school or getattr(user, 'school', None),
                user=user,
                action=action,
                target_model=target_model,
                target_id=target_id,
                details=_json_safe(details),
                method=request.method or '',
                path=request.path or '',
                ip_address=_extract_ip(request),
            )
    except DatabaseError:
        # Audit failures never undo the business action they describe.
        logger.exception('Could not write audit event %s for %s', action, request.path)
        return None
